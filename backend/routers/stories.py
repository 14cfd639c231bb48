# routers/stories.py — Stories, acceptance criteria and assignment
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import Field

from dependencies import get_lifecycle, get_store
from errors import ProjectNotFound
from lifecycle import StoryLifecycle
from models import StoryStatus
from schemas import (
    CamelModel, CriterionOut, StoryDetailOut, StoryOut, story_detail,
)
from store import Store

router = APIRouter(tags=["Stories"])


# ============================================================
# SCHEMAS
# ============================================================

class StoryCreate(CamelModel):
    project_id: str
    title: str = Field(..., min_length=1, max_length=500)
    description: str = ""
    priority: int = 0
    criteria: List[str] = Field(default_factory=list)


class StoryUpdate(CamelModel):
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    priority: Optional[int] = None
    status: Optional[StoryStatus] = None


class StoryApprove(CamelModel):
    approved_by: str = "system"


class CriterionCreate(CamelModel):
    description: str = Field(..., min_length=1)


class CriterionUpdate(CamelModel):
    description: Optional[str] = Field(None, min_length=1)
    passed: Optional[bool] = None
    evidence: Optional[str] = None


class Assignment(CamelModel):
    member_id: str


# ============================================================
# STORY ENDPOINTS
# ============================================================

@router.post("/stories", response_model=StoryDetailOut, status_code=201)
async def create_story(
    data: StoryCreate,
    lifecycle: StoryLifecycle = Depends(get_lifecycle),
):
    """Create a draft story with one unpassed criterion per description"""
    story, criteria = await lifecycle.create_story(
        project_id=data.project_id,
        title=data.title,
        description=data.description,
        priority=data.priority,
        criteria=data.criteria,
    )
    return story_detail(story, criteria)


@router.get("/stories/project/{project_id}", response_model=List[StoryOut])
async def list_project_stories(project_id: str, store: Store = Depends(get_store)):
    """Stories of a project in priority order"""
    if not await store.get_project(project_id):
        raise ProjectNotFound(project_id)
    return await store.stories_for_project(project_id)


@router.get("/stories/{story_id}", response_model=StoryDetailOut)
async def get_story(story_id: str, lifecycle: StoryLifecycle = Depends(get_lifecycle)):
    story, criteria = await lifecycle.get_story(story_id)
    return story_detail(story, criteria)


@router.patch("/stories/{story_id}", response_model=StoryOut)
async def update_story(
    story_id: str,
    data: StoryUpdate,
    lifecycle: StoryLifecycle = Depends(get_lifecycle),
):
    """Merge fields; an explicit status is written directly (manual override)"""
    return await lifecycle.update_fields(
        story_id,
        title=data.title,
        description=data.description,
        priority=data.priority,
        status=data.status,
    )


@router.post("/stories/{story_id}/approve", response_model=StoryOut)
async def approve_story(
    story_id: str,
    data: Optional[StoryApprove] = None,
    lifecycle: StoryLifecycle = Depends(get_lifecycle),
):
    approver = data.approved_by if data else "system"
    return await lifecycle.approve(story_id, approver=approver)


# ============================================================
# CRITERIA ENDPOINTS
# ============================================================

@router.post("/stories/{story_id}/criteria", response_model=CriterionOut, status_code=201)
async def add_criterion(
    story_id: str,
    data: CriterionCreate,
    lifecycle: StoryLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.add_criterion(story_id, data.description)


@router.patch("/criteria/{criterion_id}", response_model=CriterionOut)
async def update_criterion(
    criterion_id: str,
    data: CriterionUpdate,
    lifecycle: StoryLifecycle = Depends(get_lifecycle),
):
    """Update a criterion; writing ``passed`` re-evaluates the story status"""
    return await lifecycle.update_criterion(
        criterion_id,
        description=data.description,
        passed=data.passed,
        evidence=data.evidence,
    )


# ============================================================
# ASSIGNMENT ENDPOINTS
# ============================================================

@router.post("/stories/{story_id}/assign", response_model=StoryOut)
async def assign_member(
    story_id: str,
    data: Assignment,
    lifecycle: StoryLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.assign(story_id, data.member_id)


@router.post("/stories/{story_id}/unassign", response_model=StoryOut)
async def unassign_member(
    story_id: str,
    data: Assignment,
    lifecycle: StoryLifecycle = Depends(get_lifecycle),
):
    """Removing a member that is not assigned is a no-op"""
    return await lifecycle.unassign(story_id, data.member_id)
