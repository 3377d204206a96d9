"""
Error types shared across claimguard.

Platform errors carry the HTTP status that produced them so the monitor can
tell an expected absence from a transient outage or a permanent denial.
"""

from datetime import datetime
from typing import Optional


class ClaimguardError(Exception):
    """Base class for every error raised by claimguard."""


class AssignmentNotFoundError(ClaimguardError):
    """No assignment with the requested id exists."""


class AssignmentExistsError(ClaimguardError):
    """An assignment for the same repository, issue and assignee already exists."""


class InvalidTransitionError(ClaimguardError):
    """The requested status change is not allowed from the current state."""


class WriteConflictError(ClaimguardError):
    """Another writer updated the assignment since it was read."""


class AssignmentBusyError(ClaimguardError):
    """Another evaluation of the same assignment is in progress."""


class MonitorCycleError(ClaimguardError):
    """The monitor could not even list the assignments it should check."""


class PlatformError(ClaimguardError):
    """A call to the code-hosting platform failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ResourceNotFoundError(PlatformError):
    """The repository, issue or fork does not exist (or is hidden from us)."""


class TransientPlatformError(PlatformError):
    """Network failure, timeout or 5xx; worth retrying on the next cycle."""


class RateLimitedError(TransientPlatformError):
    """The platform rate limit is exhausted until ``reset_at``."""

    def __init__(self, message: str, status_code: Optional[int] = None, reset_at: Optional[datetime] = None):
        super().__init__(message, status_code)
        self.reset_at = reset_at


class PermanentPlatformError(PlatformError):
    """Credentials rejected or access denied; retrying will not help."""
