# agent_tracker.py — Agent run lifecycle with a single active run per story
"""
Agent run tracker.

A story is worked by at most one ``running`` run at a time. The check for
an existing run and the insert of the new one happen under the story lock,
and the partial unique index on ``agent_runs(story_id) WHERE status =
'running'`` rejects anything that slips past it from another process.
"""
import os
import logging
from typing import Iterable, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError

from errors import RunAlreadyActive, RunNotActive, RunNotFound, StoryNotFound
from locks import story_locks
from telemetry import tracer
from models import (
    AgentRun, ProgressEntry, Story, AgentRunStatus, AgentType, ExitSignal,
    StoryStatus, ActorType, EventType, utcnow,
)
from store import Store

logger = logging.getLogger("ralph-multiplayer.agents")

AGENT_DEFAULT_MAX_ITERATIONS = int(os.getenv("AGENT_DEFAULT_MAX_ITERATIONS", "30"))


class AgentRunTracker:
    def __init__(self, store: Store):
        self.store = store

    async def _story(self, story_id: str) -> Story:
        story = await self.store.get_story(story_id)
        if not story:
            raise StoryNotFound(story_id)
        return story

    async def _run(self, run_id: str) -> AgentRun:
        run = await self.store.get_run(run_id)
        if not run:
            raise RunNotFound(run_id)
        return run

    async def get_run(self, run_id: str) -> Tuple[AgentRun, Sequence[ProgressEntry]]:
        run = await self._run(run_id)
        return run, await self.store.progress_for_run(run_id)

    async def _start_run(
        self,
        story_id: str,
        agent_type: AgentType = AgentType.RALPH,
        max_iterations: Optional[int] = None,
    ) -> AgentRun:
        async with story_locks.hold(story_id):
            story = await self._story(story_id)
            existing = await self.store.running_run_for_story(story_id)
            if existing:
                raise RunAlreadyActive(existing.id)

            run = AgentRun(
                story_id=story_id,
                agent_type=AgentType(agent_type),
                status=AgentRunStatus.RUNNING,
                iteration=0,
                max_iterations=max_iterations or AGENT_DEFAULT_MAX_ITERATIONS,
                started_at=utcnow(),
                ended_at=None,
                exit_signal=None,
            )
            self.store.add(run)
            try:
                await self.store.flush()
            except IntegrityError:
                await self.store.rollback()
                existing = await self.store.running_run_for_story(story_id)
                logger.warning(f"Concurrent start rejected by index for story {story_id[:8]}")
                raise RunAlreadyActive(existing.id if existing else "")

            previous = StoryStatus(story.status)
            story.status = StoryStatus.IN_PROGRESS
            story.assigned_agent = run.id
            self.store.record_event(
                EventType.AGENT_STARTED, story.project_id, "story", story_id,
                payload={"runId": run.id, "agentType": run.agent_type.value,
                         "previousStatus": previous.value},
                actor_type=ActorType.AGENT, actor_id=run.id,
            )
            await self.store.commit()

        logger.info(f"Agent run started: {run.id[:8]} ({run.agent_type.value}) on story {story_id[:8]}")
        return run

    async def _record_progress(
        self,
        run_id: str,
        iteration: int,
        action: str,
        files_changed: Iterable[str] = (),
        commit_sha: Optional[str] = None,
    ) -> ProgressEntry:
        run = await self._run(run_id)
        async with story_locks.hold(run.story_id):
            await self.store.refresh(run)
            if run.status != AgentRunStatus.RUNNING:
                raise RunNotActive(run_id, AgentRunStatus(run.status).value)
            story = await self._story(run.story_id)

            entry = ProgressEntry(
                run_id=run_id,
                iteration=iteration,
                action=action,
                files_changed=list(files_changed),
                commit_sha=commit_sha,
                timestamp=utcnow(),
            )
            self.store.add(entry)
            if iteration < run.iteration:
                logger.info(
                    f"Stale progress for run {run_id[:8]}: iteration {iteration} < {run.iteration}"
                )
            run.iteration = max(run.iteration, iteration)
            self.store.record_event(
                EventType.AGENT_PROGRESS, story.project_id, "story", story.id,
                payload={
                    "runId": run_id,
                    "iteration": iteration,
                    "action": action,
                    "filesChanged": list(files_changed),
                    "commitSha": commit_sha,
                },
                actor_type=ActorType.AGENT, actor_id=run_id,
            )
            await self.store.commit()
        return entry

    async def _complete_run(self, run_id: str, exit_signal: ExitSignal) -> AgentRun:
        run = await self._run(run_id)
        exit_signal = ExitSignal(exit_signal)
        completed = exit_signal == ExitSignal.COMPLETE

        async with story_locks.hold(run.story_id):
            await self.store.refresh(run)
            if run.status != AgentRunStatus.RUNNING:
                # Already finished; a repeated or late signal changes nothing
                logger.info(
                    f"Ignoring {exit_signal.value} for finished run {run_id[:8]} "
                    f"({AgentRunStatus(run.status).value})"
                )
                return run

            run.status = AgentRunStatus.COMPLETE if completed else AgentRunStatus.BLOCKED
            run.ended_at = utcnow()
            run.exit_signal = exit_signal

            story = await self.store.get_story(run.story_id)
            if story and story.assigned_agent == run.id:
                story.status = StoryStatus.PASSED if completed else StoryStatus.BLOCKED
                story.assigned_agent = None
            if story:
                self.store.record_event(
                    EventType.AGENT_COMPLETED if completed else EventType.AGENT_BLOCKED,
                    story.project_id, "story", story.id,
                    payload={"runId": run_id, "exitSignal": exit_signal.value},
                    actor_type=ActorType.AGENT, actor_id=run_id,
                )
            await self.store.commit()

        logger.info(f"Agent run {run_id[:8]} finished: {exit_signal.value}")
        return run

    # ── traced entry points ─────────────────────────────────

    async def start_run(
        self,
        story_id: str,
        agent_type: AgentType = AgentType.RALPH,
        max_iterations: Optional[int] = None,
    ) -> AgentRun:
        """Create a running run on the story and move the story to in_progress"""
        with tracer.start_as_current_span(
            "agent.start_run",
            attributes={"story.id": story_id, "agent.type": AgentType(agent_type).value},
        ) as span:
            run = await self._start_run(story_id, agent_type, max_iterations)
            span.set_attribute("run.id", run.id)
            return run

    async def record_progress(
        self,
        run_id: str,
        iteration: int,
        action: str,
        files_changed: Iterable[str] = (),
        commit_sha: Optional[str] = None,
    ) -> ProgressEntry:
        with tracer.start_as_current_span(
            "agent.record_progress",
            attributes={"run.id": run_id, "run.iteration": iteration},
        ):
            return await self._record_progress(run_id, iteration, action, files_changed, commit_sha)

    async def complete_run(self, run_id: str, exit_signal: ExitSignal) -> AgentRun:
        """Terminate a running run; the story follows the exit signal"""
        with tracer.start_as_current_span(
            "agent.complete_run",
            attributes={"run.id": run_id, "run.exit_signal": ExitSignal(exit_signal).value},
        ):
            return await self._complete_run(run_id, exit_signal)
