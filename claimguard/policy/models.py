"""Data models for the threshold policy."""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, model_validator

from claimguard.assignments.models import AIContext, Assignment, AssignmentStatus


class Thresholds(BaseModel):
    """Inactivity limits for one context, in the regime's unit."""
    warning: float
    alert: float
    auto_unassign: float

    @model_validator(mode="after")
    def _increasing(self) -> "Thresholds":
        if not 0 < self.warning < self.alert < self.auto_unassign:
            raise ValueError(
                f"thresholds must satisfy 0 < warning < alert < auto_unassign, got "
                f"{self.warning}/{self.alert}/{self.auto_unassign}"
            )
        return self


class ThresholdRegime(BaseModel):
    """A named threshold table. Pure data: context key -> Thresholds."""
    name: str
    unit_seconds: int = 86400
    unit_name: str = "days"
    table: Dict[str, Thresholds]

    @model_validator(mode="after")
    def _has_default(self) -> "ThresholdRegime":
        if "default" not in self.table:
            raise ValueError(f"regime {self.name!r} has no 'default' thresholds")
        return self

    def for_key(self, key: str) -> Thresholds:
        return self.table.get(key) or self.table["default"]

    def to_timedelta(self, value: float) -> timedelta:
        return timedelta(seconds=value * self.unit_seconds)

    def in_units(self, elapsed: timedelta) -> float:
        return elapsed.total_seconds() / self.unit_seconds


class SideEffect(str, Enum):
    """Platform action that accompanies a status change."""
    NONE = "none"
    REMINDER = "reminder"  # Gentle reminder comment
    ALERT_COMMENT = "alert_comment"
    UNASSIGN = "unassign"


class PolicyInput(BaseModel):
    """Everything the policy looks at for one assignment."""
    status: AssignmentStatus
    watermark: datetime
    ai_context: AIContext = AIContext()
    is_whitelisted: bool = False
    manual_override: bool = False
    had_new_activity: bool = False

    @classmethod
    def from_assignment(
        cls,
        assignment: Assignment,
        had_new_activity: bool = False,
        watermark: Optional[datetime] = None,
        ai_context: Optional[AIContext] = None,
    ) -> "PolicyInput":
        return cls(
            status=assignment.status,
            watermark=watermark or assignment.last_activity_at,
            ai_context=ai_context or assignment.ai_context,
            is_whitelisted=assignment.is_whitelisted,
            manual_override=assignment.manual_override,
            had_new_activity=had_new_activity,
        )


class PolicyDecision(BaseModel):
    """Outcome of one policy evaluation, with the numbers behind it."""
    previous_status: AssignmentStatus
    status: AssignmentStatus
    side_effect: SideEffect = SideEffect.NONE
    skipped: bool = False
    context_key: str = "default"
    regime: str = "strict"
    thresholds: Optional[Thresholds] = None
    elapsed: timedelta = timedelta(0)
    reason: str = ""
    factors: Dict[str, Any] = {}

    @property
    def changed(self) -> bool:
        return self.status != self.previous_status
