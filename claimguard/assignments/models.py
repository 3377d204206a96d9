"""Data models for assignments, their activity trail and notifications."""

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any

from pydantic import BaseModel, Field, model_validator

from claimguard.clock import utcnow


class AssignmentStatus(str, Enum):
    """Lifecycle states of an assignment."""
    ACTIVE = "ACTIVE"
    WARNING = "WARNING"
    ALERT = "ALERT"
    AUTO_UNASSIGNED = "AUTO_UNASSIGNED"  # Terminal, kept for audit
    UNKNOWN = "UNKNOWN"  # Automation could not evaluate it
    MANUAL_OVERRIDE = "MANUAL_OVERRIDE"  # A maintainer took over


TRACKABLE_STATUSES = (AssignmentStatus.ACTIVE, AssignmentStatus.WARNING, AssignmentStatus.ALERT)


class WorkType(str, Enum):
    """Nature of the work, as judged from the assignee's comments."""
    CODING = "coding"
    RESEARCH = "research"
    PLANNING = "planning"
    TESTING = "testing"
    DOCUMENTATION = "documentation"
    BLOCKED = "blocked"
    WAITING = "waiting"
    UNKNOWN = "unknown"


class AIContext(BaseModel):
    """Latest classifier output attached to an assignment."""
    work_type: WorkType = WorkType.UNKNOWN
    is_blocked: bool = False
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reasoning: str = ""
    analyzed_at: Optional[datetime] = None

    @classmethod
    def neutral(cls, reasoning: str = "") -> "AIContext":
        return cls(reasoning=reasoning)


class ForkReference(BaseModel):
    """Coordinates of the assignee's fork. `fork_name=None` records "no fork"."""
    repository: str
    fork_owner: str
    fork_name: Optional[str] = None
    default_branch: Optional[str] = None
    html_url: Optional[str] = None
    is_private: bool = False
    expires_at: Optional[datetime] = None

    @property
    def exists(self) -> bool:
        return self.fork_name is not None

    @property
    def full_name(self) -> Optional[str]:
        if not self.fork_name:
            return None
        return f"{self.fork_owner}/{self.fork_name}"


class ActivityKind(str, Enum):
    COMMENT = "comment"
    COMMIT = "commit"
    FORK_COMMIT = "fork_commit"
    MANUAL_ACTION = "manual_action"
    AI_ANALYSIS = "ai_analysis"


class ActivitySource(str, Enum):
    MAIN_REPO = "main_repo"
    FORK = "fork"
    SYSTEM = "system"


class ActivityEvent(BaseModel):
    """An immutable fact about an assignment, appended to its trail."""
    id: Optional[int] = None
    assignment_id: Optional[str] = None  # Readers leave this empty; the merger stamps it
    timestamp: datetime
    kind: ActivityKind
    source: ActivitySource
    external_id: Optional[str] = None  # e.g. "commit:<sha>", "comment:<id>"
    payload: Dict[str, Any] = {}
    ingested_at: Optional[datetime] = None

    @property
    def is_genuine(self) -> bool:
        """Activity by the assignee themselves, as opposed to system bookkeeping."""
        return self.source in (ActivitySource.MAIN_REPO, ActivitySource.FORK)


class NotificationType(str, Enum):
    WARNING = "warning"
    ALERT = "alert"
    AUTO_UNASSIGNED = "auto_unassigned"
    AI_UPDATE = "ai_update"
    DIAGNOSTIC = "diagnostic"


class NotificationPriority(str, Enum):
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class Notification(BaseModel):
    """Side-effect record; delivery is someone else's job."""
    id: Optional[int] = None
    assignment_id: Optional[str] = None
    type: NotificationType
    title: str
    message: str
    priority: NotificationPriority = NotificationPriority.NORMAL
    created_at: datetime = Field(default_factory=utcnow)
    metadata: Dict[str, Any] = {}
    dedupe_key: Optional[str] = None
    delivered_at: Optional[datetime] = None


class Assignment(BaseModel):
    """One issue, one assignee, tracked until resolved or reclaimed."""
    id: str
    repository: str  # "owner/name"
    issue_number: int
    assignee: str
    assigned_at: datetime
    last_activity_at: datetime  # The watermark
    status: AssignmentStatus = AssignmentStatus.ACTIVE
    is_whitelisted: bool = False
    manual_override: bool = False
    override_until: Optional[datetime] = None
    ai_context: AIContext = Field(default_factory=AIContext)
    fork_reference: Optional[ForkReference] = None
    consecutive_failures: int = 0
    last_error: Optional[str] = None
    status_reason: Optional[str] = None
    last_checked_at: Optional[datetime] = None
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _watermark_not_before_assignment(self) -> "Assignment":
        if self.last_activity_at < self.assigned_at:
            raise ValueError("last_activity_at cannot be earlier than assigned_at")
        return self

    @property
    def issue_url(self) -> str:
        return f"https://github.com/{self.repository}/issues/{self.issue_number}"

    @property
    def label(self) -> str:
        return f"{self.repository}#{self.issue_number} ({self.assignee})"


class TransitionResult(BaseModel):
    """What the store committed for one transition."""
    assignment: Assignment
    notifications: list[Notification] = []
    events_recorded: int = 0
