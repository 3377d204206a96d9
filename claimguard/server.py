"""
claimguard MCP Server

Exposes assignment inspection and the maintainer actions via Model Context
Protocol (MCP).
"""

import argparse
import logging
from typing import Optional

from fastmcp import FastMCP

from claimguard.assignments.models import AssignmentStatus
from claimguard.config import get_settings

logger = logging.getLogger(__name__)

mcp = FastMCP(
    name="claimguard",
    instructions="""
    You are claimguard, a maintainer assistant for GitHub issue assignments.

    You can:
    - List tracked assignments and their staleness status
    - Inspect an assignment's activity trail and notifications
    - Check an assignment now
    - Mark an assignee active, extend their deadline, or whitelist them

    Manual actions override automation until the assignee shows new activity.
    """
)

_runtime = None


def _get_runtime():
    global _runtime
    if _runtime is None:
        from claimguard.db.database import SessionLocal, init_db
        from claimguard.runtime import build_runtime
        init_db()
        _runtime = build_runtime(get_settings(), SessionLocal)
    return _runtime


@mcp.tool
async def list_assignments(status: Optional[str] = None, repository: Optional[str] = None) -> list[dict]:
    """
    List tracked assignments.

    Args:
        status: Optional filter: ACTIVE, WARNING, ALERT, AUTO_UNASSIGNED, UNKNOWN or MANUAL_OVERRIDE
        repository: Optional "owner/name" filter
    """
    runtime = _get_runtime()
    status_filter = AssignmentStatus(status.upper()) if status else None
    assignments = runtime.store.list_assignments(status=status_filter, repository=repository)
    return [a.model_dump(mode="json") for a in assignments]


@mcp.tool
async def get_assignment(assignment_id: str) -> dict:
    """
    Get an assignment with its activity trail and notifications.

    Args:
        assignment_id: The assignment id
    """
    return _get_runtime().service.get_detail(assignment_id).model_dump(mode="json")


@mcp.tool
async def check_assignment(assignment_id: str) -> dict:
    """Re-check one assignment against the staleness thresholds now."""
    result = await _get_runtime().monitor.check_assignment(assignment_id)
    return result.model_dump(mode="json")


@mcp.tool
async def mark_assignment_active(assignment_id: str, actor: Optional[str] = None) -> dict:
    """Treat the assignee as active as of now and suspend escalation until they show activity."""
    assignment = await _get_runtime().service.mark_active(assignment_id, actor=actor)
    return assignment.model_dump(mode="json")


@mcp.tool
async def extend_assignment_deadline(assignment_id: str, days: float, actor: Optional[str] = None) -> dict:
    """
    Suspend escalation for a number of days.

    Args:
        assignment_id: The assignment id
        days: Length of the extension (must be positive)
        actor: Who is granting it
    """
    assignment = await _get_runtime().service.extend_deadline(assignment_id, days, actor=actor)
    return assignment.model_dump(mode="json")


@mcp.tool
async def whitelist_assignment(assignment_id: str, actor: Optional[str] = None) -> dict:
    """Exempt an assignment from automatic reminders and unassignment."""
    assignment = await _get_runtime().service.whitelist(assignment_id, actor=actor)
    return assignment.model_dump(mode="json")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="claimguard MCP Server")
    parser.add_argument(
        "--transport",
        choices=["stdio", "http"],
        default="stdio",
        help="Transport protocol (default: stdio)"
    )
    parser.add_argument(
        "--host",
        default="0.0.0.0",
        help="Host to bind to (for HTTP transport, default: 0.0.0.0)"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8001,
        help="Port to bind to (for HTTP transport, default: 8001)"
    )

    args = parser.parse_args()
    logging.basicConfig(level=get_settings().log_level)

    if args.transport == "http":
        logger.info(f"Starting claimguard MCP server on http://{args.host}:{args.port}/mcp/")
        mcp.run(transport="http", host=args.host, port=args.port)
    else:
        mcp.run()
