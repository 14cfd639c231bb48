# store.py — Storage collaborator over an AsyncSession
"""
All queries issued by the lifecycle engine, the agent run tracker and the
views go through ``Store``. Lookups return ``None`` when a row is absent;
callers decide which NotFound error that becomes.
"""
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import (
    Project, Story, AcceptanceCriterion, AgentRun, ProgressEntry, TeamMember,
    ActivityEvent, AgentRunStatus, ActorType, EventType,
)


class Store:
    def __init__(self, session: AsyncSession):
        self.session = session

    # ── unit of work ────────────────────────────────────────

    def add(self, *rows) -> None:
        self.session.add_all(rows)

    async def delete(self, row) -> None:
        await self.session.delete(row)

    async def flush(self) -> None:
        await self.session.flush()

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()

    async def refresh(self, row) -> None:
        await self.session.refresh(row)

    def record_event(
        self,
        event_type: EventType,
        project_id: str,
        target_type: str,
        target_id: str,
        payload: Optional[dict] = None,
        actor_type: ActorType = ActorType.USER,
        actor_id: str = "system",
    ) -> ActivityEvent:
        event = ActivityEvent(
            type=event_type.value,
            actor_type=actor_type,
            actor_id=actor_id,
            target_type=target_type,
            target_id=target_id,
            project_id=project_id,
            payload=payload or {},
        )
        self.session.add(event)
        return event

    # ── projects ────────────────────────────────────────────

    async def get_project(self, project_id: str) -> Optional[Project]:
        return await self.session.get(Project, project_id)

    async def list_projects(self) -> Sequence[Project]:
        result = await self.session.execute(select(Project).order_by(Project.created_at))
        return result.scalars().all()

    async def events_for_project(self, project_id: str, limit: int = 100) -> Sequence[ActivityEvent]:
        stmt = (
            select(ActivityEvent)
            .where(ActivityEvent.project_id == project_id)
            .order_by(ActivityEvent.timestamp.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    # ── stories & criteria ──────────────────────────────────

    async def get_story(self, story_id: str) -> Optional[Story]:
        return await self.session.get(Story, story_id)

    async def stories_for_project(self, project_id: str) -> Sequence[Story]:
        stmt = (
            select(Story)
            .where(Story.project_id == project_id)
            .order_by(Story.priority, Story.created_at)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def get_criterion(self, criterion_id: str) -> Optional[AcceptanceCriterion]:
        return await self.session.get(AcceptanceCriterion, criterion_id)

    async def criteria_for_story(self, story_id: str) -> List[AcceptanceCriterion]:
        stmt = (
            select(AcceptanceCriterion)
            .where(AcceptanceCriterion.story_id == story_id)
            .order_by(AcceptanceCriterion.position)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def criteria_for_stories(self, story_ids: Iterable[str]) -> Dict[str, List[AcceptanceCriterion]]:
        """Criteria grouped by story id, one query for a whole project"""
        ids = list(story_ids)
        grouped: Dict[str, List[AcceptanceCriterion]] = {sid: [] for sid in ids}
        if not ids:
            return grouped
        stmt = (
            select(AcceptanceCriterion)
            .where(AcceptanceCriterion.story_id.in_(ids))
            .order_by(AcceptanceCriterion.story_id, AcceptanceCriterion.position)
        )
        result = await self.session.execute(stmt)
        for criterion in result.scalars().all():
            grouped[criterion.story_id].append(criterion)
        return grouped

    # ── agent runs ──────────────────────────────────────────

    async def get_run(self, run_id: str) -> Optional[AgentRun]:
        return await self.session.get(AgentRun, run_id)

    async def running_run_for_story(self, story_id: str) -> Optional[AgentRun]:
        stmt = select(AgentRun).where(
            AgentRun.story_id == story_id,
            AgentRun.status == AgentRunStatus.RUNNING,
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def running_runs_for_stories(self, story_ids: Iterable[str]) -> Sequence[AgentRun]:
        ids = list(story_ids)
        if not ids:
            return []
        stmt = (
            select(AgentRun)
            .where(AgentRun.story_id.in_(ids), AgentRun.status == AgentRunStatus.RUNNING)
            .order_by(AgentRun.started_at)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def progress_for_run(self, run_id: str) -> Sequence[ProgressEntry]:
        stmt = (
            select(ProgressEntry)
            .where(ProgressEntry.run_id == run_id)
            .order_by(ProgressEntry.timestamp, ProgressEntry.iteration)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    # ── team ────────────────────────────────────────────────

    async def get_member(self, member_id: str) -> Optional[TeamMember]:
        return await self.session.get(TeamMember, member_id)

    async def members_for_project(self, project_id: str) -> Sequence[TeamMember]:
        stmt = (
            select(TeamMember)
            .where(TeamMember.project_id == project_id)
            .order_by(TeamMember.created_at)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()
