"""
claimguard HTTP API.

Exposes assignment intake, the maintainer actions and a cron hook that runs
one monitor cycle.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from claimguard import __version__
from claimguard.assignments.models import AssignmentStatus
from claimguard.config import get_settings
from claimguard.errors import (
    AssignmentBusyError, AssignmentExistsError, AssignmentNotFoundError,
    InvalidTransitionError, MonitorCycleError, PlatformError, WriteConflictError
)
from claimguard.monitor.runner import CheckOutcome

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    from claimguard.db.database import SessionLocal, init_db
    from claimguard.monitor.scheduler import start_scheduler, stop_scheduler
    from claimguard.runtime import build_runtime

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    owns_runtime = getattr(app.state, "runtime", None) is None
    if owns_runtime:
        init_db()
        app.state.runtime = build_runtime(settings, SessionLocal)
    if settings.scheduler_enabled:
        start_scheduler(app.state.runtime)

    yield

    stop_scheduler()
    if owns_runtime:
        await app.state.runtime.close()
        app.state.runtime = None


app = FastAPI(
    title="claimguard",
    description="Detects stale issue assignments and reclaims them",
    version=__version__,
    lifespan=lifespan,
)


class RecordAssignmentRequest(BaseModel):
    repository: str = Field(..., description="owner/name")
    issue_number: int
    assignee: str
    assigned_at: Optional[datetime] = None


class ManualActionRequest(BaseModel):
    actor: Optional[str] = None


class ExtendDeadlineRequest(ManualActionRequest):
    days: float = Field(..., gt=0)


def _runtime(request: Request):
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="claimguard is not initialized")
    return runtime


def _http_error(e: Exception) -> HTTPException:
    """Map claimguard errors onto HTTP statuses."""
    if isinstance(e, AssignmentNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (AssignmentExistsError, InvalidTransitionError, WriteConflictError)):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, AssignmentBusyError):
        return HTTPException(status_code=423, detail=str(e))
    if isinstance(e, ValueError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, PlatformError):
        return HTTPException(status_code=502, detail=f"GitHub error: {e}")
    logger.error(f"Unhandled error: {e}", exc_info=True)
    return HTTPException(status_code=500, detail="Internal error")


@app.get("/")
async def root():
    """API root - shows available endpoints."""
    return {
        "service": "claimguard",
        "version": __version__,
        "docs": "/docs",
        "endpoints": {
            "health": "/health",
            "assignments": "/assignments",
            "assignment": "/assignments/{assignment_id}",
            "check": "/assignments/{assignment_id}/check",
            "mark_active": "/assignments/{assignment_id}/mark-active",
            "extend_deadline": "/assignments/{assignment_id}/extend-deadline",
            "whitelist": "/assignments/{assignment_id}/whitelist",
            "sync_repository": "/repositories/{owner}/{repo}/sync",
            "monitor": "/cron/monitor-assignments",
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "service": "claimguard"}


# =============================================================================
# Assignments
# =============================================================================

@app.get("/assignments")
async def list_assignments(request: Request, status: Optional[AssignmentStatus] = None, repository: Optional[str] = None):
    """List assignments. Use ?status=WARNING and/or ?repository=owner/name"""
    runtime = _runtime(request)
    assignments = runtime.store.list_assignments(status=status, repository=repository)
    return [a.model_dump(mode="json") for a in assignments]


@app.post("/assignments", status_code=201)
async def record_assignment(request: Request, body: RecordAssignmentRequest):
    """Start tracking an assignment (idempotent)."""
    runtime = _runtime(request)
    try:
        assignment = runtime.service.record_assignment(
            body.repository, body.issue_number, body.assignee, body.assigned_at
        )
    except Exception as e:
        raise _http_error(e) from e
    return assignment.model_dump(mode="json")


@app.get("/assignments/{assignment_id}")
async def get_assignment(request: Request, assignment_id: str):
    """An assignment with its activity trail and notifications."""
    runtime = _runtime(request)
    try:
        detail = runtime.service.get_detail(assignment_id)
    except Exception as e:
        raise _http_error(e) from e
    return detail.model_dump(mode="json")


@app.post("/assignments/{assignment_id}/check")
async def check_assignment(request: Request, assignment_id: str):
    """Check one assignment now."""
    runtime = _runtime(request)
    try:
        result = await runtime.monitor.check_assignment(assignment_id)
    except Exception as e:
        raise _http_error(e) from e
    if result.outcome == CheckOutcome.BUSY:
        raise HTTPException(status_code=423, detail=result.reason)
    return result.model_dump(mode="json")


@app.post("/assignments/{assignment_id}/mark-active")
async def mark_active(request: Request, assignment_id: str, body: Optional[ManualActionRequest] = None):
    """Maintainer override: the assignee is active."""
    runtime = _runtime(request)
    try:
        assignment = await runtime.service.mark_active(assignment_id, actor=body.actor if body else None)
    except Exception as e:
        raise _http_error(e) from e
    return assignment.model_dump(mode="json")


@app.post("/assignments/{assignment_id}/extend-deadline")
async def extend_deadline(request: Request, assignment_id: str, body: ExtendDeadlineRequest):
    """Maintainer override: suspend escalation for a number of days."""
    runtime = _runtime(request)
    try:
        assignment = await runtime.service.extend_deadline(assignment_id, body.days, actor=body.actor)
    except Exception as e:
        raise _http_error(e) from e
    return assignment.model_dump(mode="json")


@app.post("/assignments/{assignment_id}/whitelist")
async def whitelist(request: Request, assignment_id: str, body: Optional[ManualActionRequest] = None):
    """Maintainer override: exempt the assignment from automation."""
    runtime = _runtime(request)
    try:
        assignment = await runtime.service.whitelist(assignment_id, actor=body.actor if body else None)
    except Exception as e:
        raise _http_error(e) from e
    return assignment.model_dump(mode="json")


# =============================================================================
# Repositories & monitor
# =============================================================================

@app.post("/repositories/{owner}/{repo}/sync")
async def sync_repository(request: Request, owner: str, repo: str):
    """Record the assignees of every open issue in a repository."""
    runtime = _runtime(request)
    try:
        assignments = await runtime.service.sync_repository(f"{owner}/{repo}")
    except Exception as e:
        raise _http_error(e) from e
    return {"repository": f"{owner}/{repo}", "assignments": [a.model_dump(mode="json") for a in assignments]}


@app.api_route("/cron/monitor-assignments", methods=["GET", "POST"])
async def monitor_assignments(request: Request):
    """Run one monitor cycle (for external cron)."""
    runtime = _runtime(request)
    try:
        report = await runtime.monitor.run()
    except MonitorCycleError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e
    return report.model_dump(mode="json")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("claimguard.main:app", host="0.0.0.0", port=8000)
