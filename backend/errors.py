# errors.py — Domain error taxonomy
# Every error carries the HTTP status it maps to; main.py renders them as
# {"error": message, ...extra}.
from typing import Any, Dict


class DomainError(Exception):
    """Base class for failures raised by the lifecycle and agent engines"""

    status_code = 400

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra: Dict[str, Any] = extra

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, **self.extra}


# ── 404 ─────────────────────────────────────────────────────

class NotFound(DomainError):
    status_code = 404


class ProjectNotFound(NotFound):
    def __init__(self, project_id: str):
        super().__init__("Project not found")
        self.project_id = project_id


class StoryNotFound(NotFound):
    def __init__(self, story_id: str):
        super().__init__("Story not found")
        self.story_id = story_id


class CriterionNotFound(NotFound):
    def __init__(self, criterion_id: str):
        super().__init__("Criterion not found")
        self.criterion_id = criterion_id


class RunNotFound(NotFound):
    def __init__(self, run_id: str):
        super().__init__("Run not found")
        self.run_id = run_id


class MemberNotFound(NotFound):
    def __init__(self, member_id: str):
        super().__init__("Team member not found")
        self.member_id = member_id


# ── 409 / 400 conflicts ─────────────────────────────────────

class Conflict(DomainError):
    status_code = 409


class RunAlreadyActive(Conflict):
    """Another run is already working the story; carries its id"""

    def __init__(self, run_id: str):
        super().__init__("Agent already running on this story", runId=run_id)
        self.run_id = run_id


class AlreadyAssigned(DomainError):
    status_code = 400

    def __init__(self, member_id: str):
        super().__init__("Team member already assigned to this story", memberId=member_id)
        self.member_id = member_id


# ── 400 invalid state ───────────────────────────────────────

class InvalidState(DomainError):
    status_code = 400


class InvalidTransition(InvalidState):
    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Invalid status transition: {current} → {requested}",
            currentStatus=current,
            requestedStatus=requested,
        )
        self.current_status = current
        self.requested_status = requested


class RunNotActive(InvalidState):
    def __init__(self, run_id: str, status: str):
        super().__init__("Run is not active", runId=run_id, status=status)
        self.run_id = run_id
