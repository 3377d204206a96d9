"""Background monitoring of assignments."""

from claimguard.monitor.effects import GitHubPlatformActions, PlatformActions, idempotency_key
from claimguard.monitor.leases import AssignmentLeases
from claimguard.monitor.runner import (
    AssignmentMonitor, CheckOutcome, CheckResult, FailureKind, MonitorReport,
    classify_failure
)

__all__ = [
    "AssignmentLeases",
    "AssignmentMonitor",
    "CheckOutcome",
    "CheckResult",
    "FailureKind",
    "GitHubPlatformActions",
    "MonitorReport",
    "PlatformActions",
    "classify_failure",
    "idempotency_key",
]
