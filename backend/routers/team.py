# routers/team.py — Project team members (humans and agents)
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import Field

from dependencies import get_store
from errors import MemberNotFound, ProjectNotFound
from models import MemberType, TeamMember, EventType
from schemas import CamelModel, TeamMemberOut
from store import Store

router = APIRouter(tags=["Team"])

# Assigned in turn when a member is added without a color
MEMBER_COLORS = [
    "#e91e63", "#9c27b0", "#673ab7", "#3f51b5",
    "#2196f3", "#009688", "#ff5722", "#795548",
]


class TeamMemberCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: MemberType = MemberType.HUMAN
    color: Optional[str] = None
    avatar: Optional[str] = None


@router.get("/projects/{project_id}/team", response_model=List[TeamMemberOut])
async def list_team(project_id: str, store: Store = Depends(get_store)):
    if not await store.get_project(project_id):
        raise ProjectNotFound(project_id)
    return await store.members_for_project(project_id)


@router.post("/projects/{project_id}/team", response_model=TeamMemberOut, status_code=201)
async def add_team_member(
    project_id: str,
    data: TeamMemberCreate,
    store: Store = Depends(get_store),
):
    """Add a human or agent to the project team"""
    if not await store.get_project(project_id):
        raise ProjectNotFound(project_id)

    existing = await store.members_for_project(project_id)
    member = TeamMember(
        project_id=project_id,
        type=data.type,
        name=data.name,
        color=data.color or MEMBER_COLORS[len(existing) % len(MEMBER_COLORS)],
        avatar=data.avatar,
    )
    store.add(member)
    await store.flush()
    store.record_event(
        EventType.TEAM_MEMBER_ADDED, project_id, "team_member", member.id,
        payload={"name": member.name, "type": data.type.value},
    )
    await store.commit()
    return member


@router.delete("/team/{member_id}")
async def remove_team_member(member_id: str, store: Store = Depends(get_store)):
    """Remove a member; snapshots already on stories are left untouched"""
    member = await store.get_member(member_id)
    if not member:
        raise MemberNotFound(member_id)

    project_id = member.project_id
    await store.delete(member)
    store.record_event(
        EventType.TEAM_MEMBER_REMOVED, project_id, "team_member", member_id,
        payload={"name": member.name},
    )
    await store.commit()
    return {"status": "deleted", "memberId": member_id}
