# routers/agent.py — Agent run control: start, progress, complete
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import Field

from agent_tracker import AgentRunTracker
from dependencies import get_agent_tracker
from models import AgentType, ExitSignal
from schemas import (
    AgentRunDetailOut, AgentRunOut, CamelModel, ProgressEntryOut,
)

router = APIRouter(prefix="/agent", tags=["Agent Runs"])


class RunStart(CamelModel):
    story_id: str
    agent_type: AgentType = AgentType.RALPH
    max_iterations: Optional[int] = Field(None, ge=1)


class RunProgress(CamelModel):
    run_id: str
    iteration: int = Field(..., ge=0)
    action: str
    files_changed: List[str] = Field(default_factory=list)
    commit_sha: Optional[str] = None


class RunComplete(CamelModel):
    run_id: str
    exit_signal: ExitSignal


@router.post("/start", response_model=AgentRunOut, status_code=201)
async def start_run(
    data: RunStart,
    tracker: AgentRunTracker = Depends(get_agent_tracker),
):
    """Start a run; 409 with the existing runId if the story is already occupied"""
    return await tracker.start_run(
        data.story_id, agent_type=data.agent_type, max_iterations=data.max_iterations,
    )


@router.post("/progress", response_model=ProgressEntryOut, status_code=201)
async def record_progress(
    data: RunProgress,
    tracker: AgentRunTracker = Depends(get_agent_tracker),
):
    return await tracker.record_progress(
        data.run_id,
        iteration=data.iteration,
        action=data.action,
        files_changed=data.files_changed,
        commit_sha=data.commit_sha,
    )


@router.post("/complete", response_model=AgentRunOut)
async def complete_run(
    data: RunComplete,
    tracker: AgentRunTracker = Depends(get_agent_tracker),
):
    return await tracker.complete_run(data.run_id, data.exit_signal)


@router.get("/run/{run_id}", response_model=AgentRunDetailOut)
async def get_run(run_id: str, tracker: AgentRunTracker = Depends(get_agent_tracker)):
    """Run status with its progress log"""
    run, progress = await tracker.get_run(run_id)
    return AgentRunDetailOut(
        **AgentRunOut.model_validate(run).model_dump(),
        progress=[ProgressEntryOut.model_validate(p) for p in progress],
    )
