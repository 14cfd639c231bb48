# lifecycle.py — Story status workflow and criteria-driven auto-transitions
"""
Story lifecycle engine.

Workflow graph:
    draft → approved → in_progress → {passed | blocked}
    blocked → in_progress   (a new agent run picks the story up again)
    passed  → in_progress   (a passed criterion was unchecked)

``approve`` is the only command that validates against the graph.
``update_fields`` with an explicit status is a manual override and is
written as-is. Criterion writes re-evaluate the story eagerly:

- every criterion passed (at least one must exist) → ``passed``
- a criterion unchecked while the story is ``passed`` → ``in_progress``
"""
import logging
from typing import Iterable, List, Optional, Tuple

from errors import (
    AlreadyAssigned, CriterionNotFound, InvalidTransition, MemberNotFound,
    ProjectNotFound, StoryNotFound,
)
from locks import story_locks
from models import (
    Project, Story, AcceptanceCriterion, StoryStatus, EventType,
)
from store import Store

logger = logging.getLogger("ralph-multiplayer.lifecycle")


# Maps current status → statuses reachable through workflow commands
ALLOWED_TRANSITIONS: dict[StoryStatus, list[StoryStatus]] = {
    StoryStatus.DRAFT: [StoryStatus.APPROVED],
    StoryStatus.APPROVED: [StoryStatus.IN_PROGRESS],
    StoryStatus.IN_PROGRESS: [StoryStatus.PASSED, StoryStatus.BLOCKED],
    StoryStatus.PASSED: [StoryStatus.IN_PROGRESS],
    StoryStatus.BLOCKED: [StoryStatus.IN_PROGRESS],
}


def is_transition_valid(current: StoryStatus, requested: StoryStatus) -> bool:
    return requested in ALLOWED_TRANSITIONS.get(current, [])


def validate_transition(current: StoryStatus, requested: StoryStatus) -> None:
    if not is_transition_valid(current, requested):
        raise InvalidTransition(StoryStatus(current).value, StoryStatus(requested).value)


def evaluate_auto_transition(
    status: StoryStatus, criteria: Iterable[AcceptanceCriterion], unchecked: bool,
) -> Optional[StoryStatus]:
    """Status a story should move to after a criterion write, or None.

    ``unchecked`` is True when the write set ``passed`` to False.
    """
    criteria = list(criteria)
    if unchecked:
        return StoryStatus.IN_PROGRESS if status == StoryStatus.PASSED else None
    if criteria and all(c.passed for c in criteria) and status != StoryStatus.PASSED:
        return StoryStatus.PASSED
    return None


class StoryLifecycle:
    """Commands on projects, stories and acceptance criteria"""

    def __init__(self, store: Store):
        self.store = store

    # ── lookups ─────────────────────────────────────────────

    async def _project(self, project_id: str) -> Project:
        project = await self.store.get_project(project_id)
        if not project:
            raise ProjectNotFound(project_id)
        return project

    async def _story(self, story_id: str) -> Story:
        story = await self.store.get_story(story_id)
        if not story:
            raise StoryNotFound(story_id)
        return story

    async def get_story(self, story_id: str) -> Tuple[Story, List[AcceptanceCriterion]]:
        story = await self._story(story_id)
        return story, await self.store.criteria_for_story(story_id)

    # ── projects ────────────────────────────────────────────

    async def create_project(
        self, name: str, goal: str, tech_stack: List[str], created_by: str = "system",
    ) -> Project:
        project = Project(name=name, goal=goal, tech_stack=list(tech_stack), created_by=created_by)
        self.store.add(project)
        await self.store.flush()
        self.store.record_event(
            EventType.PROJECT_CREATED, project.id, "project", project.id,
            payload={"name": name, "goal": goal, "techStack": list(tech_stack)},
            actor_id=created_by,
        )
        await self.store.commit()
        logger.info(f"Project created: {project.id[:8]} ({name})")
        return project

    # ── stories ─────────────────────────────────────────────

    async def create_story(
        self,
        project_id: str,
        title: str,
        description: str,
        priority: int,
        criteria: Iterable[str] = (),
    ) -> Tuple[Story, List[AcceptanceCriterion]]:
        await self._project(project_id)
        story = Story(
            project_id=project_id,
            title=title,
            description=description,
            priority=priority,
            status=StoryStatus.DRAFT,
            assigned_agent=None,
            approved_by=[],
            assignees=[],
        )
        self.store.add(story)
        await self.store.flush()

        records = [
            AcceptanceCriterion(
                story_id=story.id, description=desc, position=i, passed=False, evidence=None,
            )
            for i, desc in enumerate(criteria)
        ]
        self.store.add(*records)
        self.store.record_event(
            EventType.STORY_CREATED, project_id, "story", story.id,
            payload={
                "title": title,
                "description": description,
                "priority": priority,
                "criteria": [r.description for r in records],
            },
        )
        await self.store.commit()
        logger.info(f"Story created: {story.id[:8]} p{priority} in project {project_id[:8]}")
        return story, records

    async def approve(self, story_id: str, approver: str = "system") -> Story:
        async with story_locks.hold(story_id):
            story = await self._story(story_id)
            validate_transition(story.status, StoryStatus.APPROVED)
            previous = story.status
            story.status = StoryStatus.APPROVED
            if approver not in (story.approved_by or []):
                story.approved_by = [*(story.approved_by or []), approver]
            self.store.record_event(
                EventType.STORY_APPROVED, story.project_id, "story", story.id,
                payload={"approvedBy": approver, "previousStatus": StoryStatus(previous).value},
                actor_id=approver,
            )
            await self.store.commit()
        return story

    async def update_fields(
        self,
        story_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        priority: Optional[int] = None,
        status: Optional[StoryStatus] = None,
    ) -> Story:
        async with story_locks.hold(story_id):
            story = await self._story(story_id)
            changes = {}
            if title is not None:
                story.title = changes["title"] = title
            if description is not None:
                story.description = changes["description"] = description
            if priority is not None:
                story.priority = changes["priority"] = priority

            previous = StoryStatus(story.status)
            if status is not None and StoryStatus(status) != previous:
                # Manual override: written without consulting the workflow graph
                story.status = StoryStatus(status)
                if not is_transition_valid(previous, story.status):
                    logger.info(
                        f"Story {story.id[:8]} status overridden {previous.value} → {story.status.value}"
                    )
                self.store.record_event(
                    EventType.STORY_STATUS_CHANGED, story.project_id, "story", story.id,
                    payload={"status": story.status.value, "previousStatus": previous.value, **changes},
                )
            else:
                self.store.record_event(
                    EventType.STORY_UPDATED, story.project_id, "story", story.id, payload=changes,
                )
            await self.store.commit()
        return story

    # ── criteria ────────────────────────────────────────────

    async def add_criterion(self, story_id: str, description: str) -> AcceptanceCriterion:
        async with story_locks.hold(story_id):
            story = await self._story(story_id)
            existing = await self.store.criteria_for_story(story_id)
            position = max((c.position for c in existing), default=-1) + 1
            criterion = AcceptanceCriterion(
                story_id=story_id, description=description, position=position,
                passed=False, evidence=None,
            )
            self.store.add(criterion)
            await self.store.flush()
            self.store.record_event(
                EventType.CRITERIA_CREATED, story.project_id, "criteria", criterion.id,
                payload={"storyId": story_id, "description": description},
            )
            await self.store.commit()
        return criterion

    async def update_criterion(
        self,
        criterion_id: str,
        description: Optional[str] = None,
        passed: Optional[bool] = None,
        evidence: Optional[str] = None,
    ) -> AcceptanceCriterion:
        criterion = await self.store.get_criterion(criterion_id)
        if not criterion:
            raise CriterionNotFound(criterion_id)

        async with story_locks.hold(criterion.story_id):
            await self.store.refresh(criterion)
            story = await self._story(criterion.story_id)
            await self.store.refresh(story)

            changes = {}
            if description is not None:
                criterion.description = changes["description"] = description
            if evidence is not None:
                criterion.evidence = changes["evidence"] = evidence
            if passed is not None:
                criterion.passed = changes["passed"] = passed

            self.store.record_event(
                EventType.CRITERIA_PASSED if passed else EventType.CRITERIA_UPDATED,
                story.project_id, "criteria", criterion.id,
                payload={"storyId": story.id, **changes},
            )
            if passed is not None:
                await self._apply_auto_transition(story, unchecked=not passed)
            await self.store.commit()
        return criterion

    async def set_criterion_passed(self, criterion_id: str, passed: bool) -> AcceptanceCriterion:
        return await self.update_criterion(criterion_id, passed=passed)

    async def _apply_auto_transition(self, story: Story, unchecked: bool) -> None:
        await self.store.flush()
        criteria = await self.store.criteria_for_story(story.id)
        target = evaluate_auto_transition(story.status, criteria, unchecked)
        if target is None:
            return
        previous = StoryStatus(story.status)
        story.status = target
        self.store.record_event(
            EventType.STORY_STATUS_CHANGED, story.project_id, "story", story.id,
            payload={"status": target.value, "previousStatus": previous.value, "reason": "criteria"},
        )
        logger.info(f"Story {story.id[:8]} auto-transitioned {previous.value} → {target.value}")

    # ── assignment ──────────────────────────────────────────

    async def assign(self, story_id: str, member_id: str) -> Story:
        async with story_locks.hold(story_id):
            story = await self._story(story_id)
            member = await self.store.get_member(member_id)
            if not member or member.project_id != story.project_id:
                raise MemberNotFound(member_id)
            assignees = list(story.assignees or [])
            if any(a.get("id") == member_id for a in assignees):
                raise AlreadyAssigned(member_id)

            story.assignees = [*assignees, member.snapshot()]
            self.store.record_event(
                EventType.STORY_ASSIGNED, story.project_id, "story", story.id,
                payload={"memberId": member_id, "name": member.name},
            )
            await self.store.commit()
        return story

    async def unassign(self, story_id: str, member_id: str) -> Story:
        async with story_locks.hold(story_id):
            story = await self._story(story_id)
            assignees = list(story.assignees or [])
            remaining = [a for a in assignees if a.get("id") != member_id]
            if len(remaining) == len(assignees):
                return story

            story.assignees = remaining
            self.store.record_event(
                EventType.STORY_UNASSIGNED, story.project_id, "story", story.id,
                payload={"memberId": member_id},
            )
            await self.store.commit()
        return story
