# models.py — Database models for Ralph Multiplayer
# - UUID string primary keys everywhere
# - Stories with acceptance criteria, tracked through a status workflow
# - Agent runs with append-only progress entries
# - Project team members, snapshotted onto stories as assignees
# - Activity events for every domain mutation

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, JSON, Boolean, Integer,
    Enum as SQLEnum, ForeignKey, Text, Index, text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


def _enum(enum_cls):
    """Store enum values (``in_progress``) rather than member names."""
    return SQLEnum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=32,
    )


# ============================================================
# ENUMS
# ============================================================

class StoryStatus(str, PyEnum):
    DRAFT = "draft"
    APPROVED = "approved"
    IN_PROGRESS = "in_progress"
    PASSED = "passed"
    BLOCKED = "blocked"


# Board column order
STORY_STATUS_ORDER = [
    StoryStatus.DRAFT,
    StoryStatus.APPROVED,
    StoryStatus.IN_PROGRESS,
    StoryStatus.PASSED,
    StoryStatus.BLOCKED,
]


class AgentType(str, PyEnum):
    RALPH = "ralph"
    REVIEWER = "reviewer"
    WRITER = "writer"


class AgentRunStatus(str, PyEnum):
    RUNNING = "running"
    COMPLETE = "complete"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"


class ExitSignal(str, PyEnum):
    COMPLETE = "COMPLETE"
    BLOCKED = "BLOCKED"


class MemberType(str, PyEnum):
    HUMAN = "human"
    AGENT = "agent"


class ActorType(str, PyEnum):
    USER = "user"
    AGENT = "agent"


class EventType(str, PyEnum):
    PROJECT_CREATED = "project.created"
    STORY_CREATED = "story.created"
    STORY_UPDATED = "story.updated"
    STORY_STATUS_CHANGED = "story.status_changed"
    STORY_APPROVED = "story.approved"
    STORY_ASSIGNED = "story.assigned"
    STORY_UNASSIGNED = "story.unassigned"
    CRITERIA_CREATED = "criteria.created"
    CRITERIA_UPDATED = "criteria.updated"
    CRITERIA_PASSED = "criteria.passed"
    AGENT_STARTED = "agent.started"
    AGENT_PROGRESS = "agent.progress"
    AGENT_COMPLETED = "agent.completed"
    AGENT_BLOCKED = "agent.blocked"
    TEAM_MEMBER_ADDED = "team.member_added"
    TEAM_MEMBER_REMOVED = "team.member_removed"


# ============================================================
# PROJECTS & TEAM
# ============================================================

class Project(Base):
    """Root aggregate: a product being specified and built"""
    __tablename__ = "projects"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    goal = Column(Text, nullable=False, default="")
    tech_stack = Column(JSON, default=list)
    created_by = Column(String, nullable=False, default="system")
    created_at = Column(DateTime(timezone=True), default=utcnow)

    stories = relationship("Story", back_populates="project")
    team_members = relationship("TeamMember", back_populates="project")


class TeamMember(Base):
    """Human or agent participant available for assignment within a project"""
    __tablename__ = "team_members"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id"), nullable=False, index=True)
    type = Column(_enum(MemberType), nullable=False, default=MemberType.HUMAN)
    name = Column(String, nullable=False)
    color = Column(String, nullable=False)
    avatar = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    project = relationship("Project", back_populates="team_members")

    def snapshot(self) -> dict:
        """Denormalised copy attached to a story's assignee list"""
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value if isinstance(self.type, MemberType) else self.type,
            "color": self.color,
            "avatar": self.avatar,
        }


# ============================================================
# STORIES & ACCEPTANCE CRITERIA
# ============================================================

class Story(Base):
    """Prioritised unit of work with acceptance criteria"""
    __tablename__ = "stories"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id"), nullable=False, index=True)
    priority = Column(Integer, nullable=False, default=0)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    status = Column(_enum(StoryStatus), nullable=False, default=StoryStatus.DRAFT, index=True)
    assigned_agent = Column(String, nullable=True)  # id of the run occupying the story
    approved_by = Column(JSON, default=list)
    assignees = Column(JSON, default=list)  # TeamMember snapshots
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    project = relationship("Project", back_populates="stories")
    criteria = relationship(
        "AcceptanceCriterion", back_populates="story", order_by="AcceptanceCriterion.position",
    )

    __table_args__ = (
        Index("idx_story_project_priority", "project_id", "priority"),
    )


class AcceptanceCriterion(Base):
    """Checkable condition on a story; all passed signals completion"""
    __tablename__ = "acceptance_criteria"

    id = Column(String, primary_key=True, default=new_uuid)
    story_id = Column(String, ForeignKey("stories.id", ondelete="CASCADE"), nullable=False, index=True)
    description = Column(Text, nullable=False)
    position = Column(Integer, nullable=False, default=0)  # Order within the story
    passed = Column(Boolean, nullable=False, default=False)
    evidence = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    story = relationship("Story", back_populates="criteria")

    __table_args__ = (
        Index("idx_criteria_story_pos", "story_id", "position"),
    )


# ============================================================
# AGENT RUNS
# ============================================================

class AgentRun(Base):
    """One execution attempt by an automated worker against a story"""
    __tablename__ = "agent_runs"

    id = Column(String, primary_key=True, default=new_uuid)
    story_id = Column(String, ForeignKey("stories.id"), nullable=False, index=True)
    agent_type = Column(_enum(AgentType), nullable=False, default=AgentType.RALPH)
    status = Column(_enum(AgentRunStatus), nullable=False, default=AgentRunStatus.RUNNING)
    iteration = Column(Integer, nullable=False, default=0)
    max_iterations = Column(Integer, nullable=False, default=30)
    started_at = Column(DateTime(timezone=True), default=utcnow)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    exit_signal = Column(_enum(ExitSignal), nullable=True)

    progress = relationship("ProgressEntry", back_populates="run", order_by="ProgressEntry.timestamp")

    __table_args__ = (
        # At most one running run per story
        Index(
            "uq_agent_run_running_story", "story_id",
            unique=True,
            sqlite_where=text("status = 'running'"),
            postgresql_where=text("status = 'running'"),
        ),
    )


class ProgressEntry(Base):
    """Append-only iteration log of an agent run"""
    __tablename__ = "progress_entries"

    id = Column(String, primary_key=True, default=new_uuid)
    run_id = Column(String, ForeignKey("agent_runs.id"), nullable=False, index=True)
    iteration = Column(Integer, nullable=False)
    action = Column(Text, nullable=False)
    files_changed = Column(JSON, default=list)
    commit_sha = Column(String, nullable=True)
    timestamp = Column(DateTime(timezone=True), default=utcnow)

    run = relationship("AgentRun", back_populates="progress")


# ============================================================
# ACTIVITY EVENTS
# ============================================================

class ActivityEvent(Base):
    """Record of a domain mutation, scoped to a project"""
    __tablename__ = "events"

    id = Column(String, primary_key=True, default=new_uuid)
    type = Column(String, nullable=False, index=True)
    actor_type = Column(_enum(ActorType), nullable=False, default=ActorType.USER)
    actor_id = Column(String, nullable=False, default="system")
    target_type = Column(String, nullable=False)
    target_id = Column(String, nullable=False)
    project_id = Column(String, ForeignKey("projects.id"), nullable=False, index=True)
    payload = Column(JSON, default=dict)
    timestamp = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_event_project_time", "project_id", "timestamp"),
    )
