# routers/projects.py — Project CRUD and activity feed
from typing import List

from fastapi import APIRouter, Depends, Query
from pydantic import Field

from dependencies import get_lifecycle, get_store
from errors import ProjectNotFound
from lifecycle import StoryLifecycle
from schemas import CamelModel, EventOut, ProjectOut
from store import Store

router = APIRouter(prefix="/projects", tags=["Projects"])


class ProjectCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    goal: str = ""
    tech_stack: List[str] = Field(default_factory=list)
    created_by: str = "system"


@router.post("", response_model=ProjectOut, status_code=201)
async def create_project(
    data: ProjectCreate,
    lifecycle: StoryLifecycle = Depends(get_lifecycle),
):
    """Create a project"""
    return await lifecycle.create_project(
        name=data.name, goal=data.goal, tech_stack=data.tech_stack, created_by=data.created_by,
    )


@router.get("", response_model=List[ProjectOut])
async def list_projects(store: Store = Depends(get_store)):
    return await store.list_projects()


@router.get("/{project_id}", response_model=ProjectOut)
async def get_project(project_id: str, store: Store = Depends(get_store)):
    project = await store.get_project(project_id)
    if not project:
        raise ProjectNotFound(project_id)
    return project


@router.get("/{project_id}/events", response_model=List[EventOut])
async def list_project_events(
    project_id: str,
    limit: int = Query(100, ge=1, le=1000),
    store: Store = Depends(get_store),
):
    """Most recent activity first"""
    if not await store.get_project(project_id):
        raise ProjectNotFound(project_id)
    return await store.events_for_project(project_id, limit=limit)
