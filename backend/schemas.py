# schemas.py — Response models shared by the routers
# JSON goes out in camelCase; request bodies accept camelCase or snake_case.
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from models import (
    StoryStatus, AgentType, AgentRunStatus, ExitSignal, MemberType, ActorType,
)


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ProjectOut(CamelModel):
    id: str
    name: str
    goal: str
    tech_stack: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    created_by: str


class AssigneeOut(CamelModel):
    id: str
    name: str
    type: MemberType
    color: str
    avatar: Optional[str] = None


class CriterionOut(CamelModel):
    id: str
    story_id: str
    description: str
    passed: bool
    evidence: Optional[str] = None


class StoryOut(CamelModel):
    id: str
    project_id: str
    priority: int
    title: str
    description: str
    status: StoryStatus
    assigned_agent: Optional[str] = None
    approved_by: List[str] = Field(default_factory=list)
    assignees: List[AssigneeOut] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class StoryDetailOut(StoryOut):
    criteria: List[CriterionOut] = Field(default_factory=list)


class ProgressEntryOut(CamelModel):
    id: str
    run_id: str
    iteration: int
    action: str
    files_changed: List[str] = Field(default_factory=list)
    commit_sha: Optional[str] = None
    timestamp: Optional[datetime] = None


class AgentRunOut(CamelModel):
    id: str
    story_id: str
    agent_type: AgentType
    status: AgentRunStatus
    iteration: int
    max_iterations: int
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    exit_signal: Optional[ExitSignal] = None


class AgentRunDetailOut(AgentRunOut):
    progress: List[ProgressEntryOut] = Field(default_factory=list)


class TeamMemberOut(CamelModel):
    id: str
    project_id: str
    type: MemberType
    name: str
    color: str
    avatar: Optional[str] = None


class EventOut(CamelModel):
    id: str
    type: str
    actor_type: ActorType
    actor_id: str
    target_type: str
    target_id: str
    project_id: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[datetime] = None


class PRDViewOut(CamelModel):
    project: ProjectOut
    stories: List[StoryDetailOut]
    active_agents: List[AgentRunOut]
    online_users: List[Dict[str, Any]]
    team_members: List[TeamMemberOut]


class BoardColumnOut(CamelModel):
    status: StoryStatus
    stories: List[StoryOut]


class BoardViewOut(CamelModel):
    project: ProjectOut
    columns: List[BoardColumnOut]
    online_users: List[Dict[str, Any]]
    team_members: List[TeamMemberOut]


def story_detail(story, criteria: Sequence) -> StoryDetailOut:
    """Story plus its criteria, as returned by story endpoints and the PRD view"""
    base = StoryOut.model_validate(story)
    return StoryDetailOut(
        **base.model_dump(),
        criteria=[CriterionOut.model_validate(c) for c in criteria],
    )
