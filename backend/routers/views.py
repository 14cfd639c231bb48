# routers/views.py — Derived project views: PRD document, Markdown export, board
from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from dependencies import get_presence_registry, get_store
from errors import ProjectNotFound
from markdown_export import render_prd
from models import STORY_STATUS_ORDER, StoryStatus
from presence import PresenceRegistry
from schemas import (
    AgentRunOut, BoardColumnOut, BoardViewOut, PRDViewOut, ProjectOut,
    StoryOut, TeamMemberOut, story_detail,
)
from store import Store

router = APIRouter(prefix="/views", tags=["Views"])


async def _project_or_404(store: Store, project_id: str):
    project = await store.get_project(project_id)
    if not project:
        raise ProjectNotFound(project_id)
    return project


@router.get("/prd/{project_id}", response_model=PRDViewOut)
async def prd_view(
    project_id: str,
    store: Store = Depends(get_store),
    presence: PresenceRegistry = Depends(get_presence_registry),
):
    """Project with every story and its criteria, live agents and viewers"""
    project = await _project_or_404(store, project_id)
    stories = await store.stories_for_project(project_id)
    criteria = await store.criteria_for_stories(s.id for s in stories)
    active = await store.running_runs_for_stories(s.id for s in stories)
    members = await store.members_for_project(project_id)

    return PRDViewOut(
        project=ProjectOut.model_validate(project),
        stories=[story_detail(s, criteria[s.id]) for s in stories],
        active_agents=[AgentRunOut.model_validate(r) for r in active],
        online_users=presence.online_users(project_id),
        team_members=[TeamMemberOut.model_validate(m) for m in members],
    )


@router.get("/prd/{project_id}/markdown", response_class=PlainTextResponse)
async def prd_markdown(project_id: str, store: Store = Depends(get_store)):
    project = await _project_or_404(store, project_id)
    stories = await store.stories_for_project(project_id)
    criteria = await store.criteria_for_stories(s.id for s in stories)
    return PlainTextResponse(
        render_prd(project, stories, criteria),
        media_type="text/markdown; charset=utf-8",
    )


@router.get("/board/{project_id}", response_model=BoardViewOut)
async def board_view(
    project_id: str,
    store: Store = Depends(get_store),
    presence: PresenceRegistry = Depends(get_presence_registry),
):
    """Kanban columns, one per status in workflow order"""
    project = await _project_or_404(store, project_id)
    stories = await store.stories_for_project(project_id)
    members = await store.members_for_project(project_id)

    columns = [
        BoardColumnOut(
            status=status,
            stories=[StoryOut.model_validate(s) for s in stories if StoryStatus(s.status) == status],
        )
        for status in STORY_STATUS_ORDER
    ]
    return BoardViewOut(
        project=ProjectOut.model_validate(project),
        columns=columns,
        online_users=presence.online_users(project_id),
        team_members=[TeamMemberOut.model_validate(m) for m in members],
    )
