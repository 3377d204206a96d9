"""Tests for assignment intake and maintainer actions."""
from datetime import timedelta

import httpx
import pytest

from claimguard.assignments.models import ActivityKind, AssignmentStatus
from claimguard.assignments.service import AssignmentService
from claimguard.errors import AssignmentNotFoundError, InvalidTransitionError
from claimguard.tools.github import GitHubClient

from conftest import REPO, T0


def test_record_assignment_is_idempotent(service, store):
    first = service.record_assignment(REPO, 12, "alice", T0)
    second = service.record_assignment(REPO, 12, "alice", T0 + timedelta(days=1))

    assert first.id == second.id
    assert second.assigned_at == T0
    assert len(store.list_assignments()) == 1


def test_record_assignment_defaults_to_now(service, clock):
    clock.set(days=2)
    assignment = service.record_assignment(REPO, 1, "bob")
    assert assignment.assigned_at == T0 + timedelta(days=2)
    assert assignment.last_activity_at == assignment.assigned_at


def test_reassignment_reactivates_terminal_record(service, store, clock):
    original = service.record_assignment(REPO, 3, "alice", T0)
    store.apply_transition(original.id, AssignmentStatus.AUTO_UNASSIGNED)

    clock.set(days=20)
    again = service.record_assignment(REPO, 3, "alice", T0 + timedelta(days=19))

    assert again.id == original.id
    assert again.status == AssignmentStatus.ACTIVE
    assert again.assigned_at == T0 + timedelta(days=19)
    assert again.last_activity_at == T0 + timedelta(days=19)
    assert not again.manual_override


def test_reassignment_without_newer_time_uses_now(service, store, clock):
    original = service.record_assignment(REPO, 3, "alice", T0)
    store.apply_transition(original.id, AssignmentStatus.AUTO_UNASSIGNED)

    clock.set(days=20)
    again = service.record_assignment(REPO, 3, "alice", T0)
    assert again.assigned_at == T0 + timedelta(days=20)


@pytest.mark.asyncio
async def test_mark_active_resets_clock(service, store, make_assignment, clock):
    assignment = make_assignment()
    store.apply_transition(assignment.id, AssignmentStatus.ALERT)

    clock.set(days=9)
    updated = await service.mark_active(assignment.id, actor="maintainer")

    assert updated.status == AssignmentStatus.ACTIVE
    assert updated.last_activity_at == T0 + timedelta(days=9)
    assert updated.manual_override
    events = store.list_activity(assignment.id)
    assert [e.kind for e in events] == [ActivityKind.MANUAL_ACTION]
    assert events[0].payload["actor"] == "maintainer"


@pytest.mark.asyncio
async def test_extend_deadline(service, make_assignment, clock):
    assignment = make_assignment()
    clock.set(days=1)
    updated = await service.extend_deadline(assignment.id, 7)

    assert updated.status == AssignmentStatus.MANUAL_OVERRIDE
    assert updated.manual_override
    assert updated.override_until == T0 + timedelta(days=8)
    assert "7 days" in updated.status_reason


@pytest.mark.asyncio
@pytest.mark.parametrize("days", [0, -3])
async def test_extend_deadline_requires_positive_days(service, make_assignment, days):
    assignment = make_assignment()
    with pytest.raises(ValueError):
        await service.extend_deadline(assignment.id, days)


@pytest.mark.asyncio
async def test_whitelist(service, store, make_assignment):
    assignment = make_assignment()
    updated = await service.whitelist(assignment.id)

    assert updated.status == AssignmentStatus.MANUAL_OVERRIDE
    assert updated.is_whitelisted
    assert updated.manual_override
    assert store.list_activity(assignment.id)[0].payload["action"] == "whitelist"


@pytest.mark.asyncio
async def test_manual_actions_reject_auto_unassigned(service, store, make_assignment):
    assignment = make_assignment()
    store.apply_transition(assignment.id, AssignmentStatus.AUTO_UNASSIGNED)

    with pytest.raises(InvalidTransitionError):
        await service.mark_active(assignment.id)
    with pytest.raises(InvalidTransitionError):
        await service.whitelist(assignment.id)
    assert store.get(assignment.id).status == AssignmentStatus.AUTO_UNASSIGNED


@pytest.mark.asyncio
async def test_manual_action_on_missing_assignment(service):
    with pytest.raises(AssignmentNotFoundError):
        await service.mark_active("missing")


def test_get_detail(service, store, make_assignment):
    assignment = make_assignment()
    detail = service.get_detail(assignment.id)
    assert detail.assignment.id == assignment.id
    assert detail.activity == []
    assert detail.notifications == []


# =============================================================================
# Repository sync
# =============================================================================

def _github_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/repos/octo/widgets/issues":
        return httpx.Response(200, json=[
            {
                "number": 1,
                "title": "Fix parser",
                "state": "open",
                "assignees": [{"login": "alice"}],
                "created_at": "2024-04-20T09:00:00Z",
            },
            {
                "number": 2,
                "title": "A pull request",
                "state": "open",
                "assignees": [{"login": "bob"}],
                "pull_request": {"url": "https://api.github.com/repos/octo/widgets/pulls/2"},
            },
        ])
    if path == "/repos/octo/widgets/issues/1/events":
        return httpx.Response(200, json=[
            {"event": "labeled", "created_at": "2024-04-21T09:00:00Z"},
            {"event": "assigned", "assignee": {"login": "Alice"}, "created_at": "2024-04-22T09:00:00Z"},
        ])
    return httpx.Response(404, json={"message": "Not Found"})


@pytest.mark.asyncio
async def test_sync_repository(store, leases, clock):
    async with httpx.AsyncClient(transport=httpx.MockTransport(_github_handler)) as http:
        service = AssignmentService(store, leases, github=GitHubClient(token="t", client=http), clock=clock)
        recorded = await service.sync_repository(REPO)
        again = await service.sync_repository(REPO)

    assert len(recorded) == 1
    assert recorded[0].issue_number == 1
    assert recorded[0].assignee == "alice"
    assert recorded[0].assigned_at.isoformat() == "2024-04-22T09:00:00+00:00"
    assert [a.id for a in again] == [recorded[0].id]
    assert len(store.list_assignments()) == 1


@pytest.mark.asyncio
async def test_sync_skips_still_assigned_after_auto_unassign(store, leases, clock):
    async with httpx.AsyncClient(transport=httpx.MockTransport(_github_handler)) as http:
        service = AssignmentService(store, leases, github=GitHubClient(token="t", client=http), clock=clock)
        [assignment] = await service.sync_repository(REPO)
        store.apply_transition(assignment.id, AssignmentStatus.AUTO_UNASSIGNED)

        recorded = await service.sync_repository(REPO)

    assert recorded == []
    assert store.get(assignment.id).status == AssignmentStatus.AUTO_UNASSIGNED


@pytest.mark.asyncio
async def test_sync_requires_github(service):
    with pytest.raises(ValueError):
        await service.sync_repository(REPO)


@pytest.mark.asyncio
async def test_sync_releases_claims_that_ended_on_github(store, leases, clock, make_assignment):
    closed = make_assignment(issue_number=4)
    reassigned = make_assignment(issue_number=5)
    vanished = make_assignment(issue_number=6)

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/repos/octo/widgets/issues/4":
            return httpx.Response(200, json={"number": 4, "title": "Done", "state": "closed", "assignees": [{"login": "alice"}]})
        if path == "/repos/octo/widgets/issues/5":
            return httpx.Response(200, json={"number": 5, "title": "Taken over", "state": "open", "assignees": [{"login": "carol"}]})
        return _github_handler(request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        service = AssignmentService(store, leases, github=GitHubClient(token="t", client=http), clock=clock)
        [recorded] = await service.sync_repository(REPO)

    assert recorded.issue_number == 1
    assert store.get(closed.id).status == AssignmentStatus.AUTO_UNASSIGNED
    assert "closed" in store.get(closed.id).status_reason
    assert store.get(reassigned.id).status == AssignmentStatus.AUTO_UNASSIGNED
    assert "no longer assigned" in store.get(reassigned.id).status_reason
    # A missing issue is left to the monitor's failure handling
    assert store.get(vanished.id).status == AssignmentStatus.ACTIVE
    assert store.list_notifications(closed.id) == []
