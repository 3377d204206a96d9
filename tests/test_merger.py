"""Tests for activity merging and fork resolution."""
from datetime import timedelta

import pytest

from claimguard.activity.forks import ForkResolver, InMemoryForkCache, SqlForkCache
from claimguard.activity.merger import ActivityMerger, merge_events
from claimguard.activity.readers import IssueState
from claimguard.assignments.models import (
    ActivityEvent, ActivityKind, ActivitySource, ForkReference
)
from claimguard.errors import RateLimitedError, ResourceNotFoundError, TransientPlatformError

from conftest import REPO, T0, FrozenClock, comment_event, commit_event


def test_merge_drops_events_at_or_before_watermark():
    watermark = T0 + timedelta(days=1)
    result = merge_events("a1", watermark, [
        comment_event(T0, 1),
        comment_event(watermark, 2),
        comment_event(watermark + timedelta(seconds=1), 3),
    ])
    assert [e.external_id for e in result.events] == ["comment:3"]
    assert result.watermark == watermark + timedelta(seconds=1)
    assert result.previous_watermark == watermark
    assert result.had_new_activity


def test_merge_never_moves_watermark_backward():
    result = merge_events("a1", T0 + timedelta(days=5), [commit_event(T0 + timedelta(days=2), "old")])
    assert result.events == []
    assert result.watermark == T0 + timedelta(days=5)
    assert not result.had_new_activity


def test_merge_dedupes_across_sources_first_stream_wins():
    main = [commit_event(T0 + timedelta(days=2), "abc")]
    fork = [
        commit_event(T0 + timedelta(days=2), "abc", ActivitySource.FORK),
        commit_event(T0 + timedelta(days=3), "def", ActivitySource.FORK),
    ]
    result = merge_events("a1", T0, main, fork)

    assert [(e.external_id, e.source) for e in result.events] == [
        ("commit:abc", ActivitySource.MAIN_REPO),
        ("commit:def", ActivitySource.FORK),
    ]
    assert all(e.assignment_id == "a1" for e in result.events)
    assert result.watermark == T0 + timedelta(days=3)


def test_merge_sorts_by_timestamp_and_normalizes_to_utc():
    naive = ActivityEvent(
        timestamp=(T0 + timedelta(hours=5)).replace(tzinfo=None),
        kind=ActivityKind.COMMIT,
        source=ActivitySource.MAIN_REPO,
        external_id="commit:naive",
    )
    result = merge_events("a1", T0, [comment_event(T0 + timedelta(hours=9), 1)], [naive])
    assert [e.external_id for e in result.events] == ["commit:naive", "comment:1"]
    assert result.events[0].timestamp.tzinfo is not None


def test_system_events_do_not_count_as_activity():
    system = ActivityEvent(
        timestamp=T0 + timedelta(days=1),
        kind=ActivityKind.AI_ANALYSIS,
        source=ActivitySource.SYSTEM,
    )
    result = merge_events("a1", T0, [system])
    assert len(result.events) == 1
    assert not result.had_new_activity
    assert result.watermark == T0


def test_classification_text_uses_comments_only():
    result = merge_events("a1", T0, [
        comment_event(T0 + timedelta(hours=1), 1, body="Started on the parser"),
        commit_event(T0 + timedelta(hours=2), "abc"),
        comment_event(T0 + timedelta(hours=3), 2, body="Stuck on CI"),
    ])
    assert result.classification_text() == "Started on the parser\n\nStuck on CI"


# =============================================================================
# ActivityMerger
# =============================================================================

def _merger(main_reader, fork_reader, clock, cache=None):
    return ActivityMerger(
        main_reader=main_reader,
        fork_resolver=ForkResolver(fork_reader, cache or InMemoryForkCache(), clock=clock),
        fork_reader=fork_reader,
        clock=clock,
    )


@pytest.mark.asyncio
async def test_fork_commits_count_as_activity(make_assignment, main_reader, fork_reader, clock):
    assignment = make_assignment(issue_number=1)
    fork_reader.add_fork("alice")
    fork_reader.commits["alice"] = [commit_event(T0 + timedelta(days=9), "f1", ActivitySource.FORK)]

    result = await _merger(main_reader, fork_reader, clock).collect(assignment)

    assert result.had_new_activity
    assert result.watermark == T0 + timedelta(days=9)
    assert result.fork_reference.full_name == "alice/widgets"
    assert result.fork_error is None


@pytest.mark.asyncio
async def test_closed_issue_skips_activity_reads(make_assignment, main_reader, fork_reader, clock):
    assignment = make_assignment(issue_number=3)
    main_reader.issues[3] = IssueState(number=3, state="closed", assignees=["alice"])
    main_reader.events[3] = [comment_event(T0 + timedelta(days=1), 1)]
    fork_reader.add_fork("alice")

    result = await _merger(main_reader, fork_reader, clock).collect(assignment)

    assert "closed" in result.release_reason
    assert result.issue.state == "closed"
    assert result.events == []
    assert result.watermark == T0
    assert main_reader.calls == 0
    assert fork_reader.find_calls == 0


@pytest.mark.asyncio
async def test_fork_failure_degrades_to_main_repo(make_assignment, main_reader, fork_reader, clock):
    assignment = make_assignment(issue_number=1)
    main_reader.events[1] = [comment_event(T0 + timedelta(days=1), 1)]
    fork_reader.add_fork("alice")
    fork_reader.error = TransientPlatformError("fork read timed out")

    result = await _merger(main_reader, fork_reader, clock).collect(assignment)

    assert [e.external_id for e in result.events] == ["comment:1"]
    assert "timed out" in result.fork_error


@pytest.mark.asyncio
async def test_fork_rate_limit_is_reported(make_assignment, main_reader, fork_reader, clock):
    assignment = make_assignment(issue_number=1)
    fork_reader.add_fork("alice")
    reset_at = T0 + timedelta(hours=1)
    fork_reader.error = RateLimitedError("rate limited", status_code=403, reset_at=reset_at)

    result = await _merger(main_reader, fork_reader, clock).collect(assignment)
    assert result.rate_limited_until == reset_at
    assert result.fork_error


@pytest.mark.asyncio
async def test_missing_fork_invalidates_cache(make_assignment, main_reader, fork_reader, clock):
    assignment = make_assignment(issue_number=1)
    cache = InMemoryForkCache()
    fork_reader.add_fork("alice")
    merger = _merger(main_reader, fork_reader, clock, cache)

    await merger.collect(assignment)
    assert cache.get(REPO, "alice", clock()) is not None

    fork_reader.error = ResourceNotFoundError("gone", status_code=404)
    result = await merger.collect(assignment)
    assert result.fork_reference is None
    assert cache.get(REPO, "alice", clock()) is None


@pytest.mark.asyncio
async def test_main_repo_errors_propagate(make_assignment, main_reader, fork_reader, clock):
    assignment = make_assignment(issue_number=1)
    main_reader.errors[1] = ResourceNotFoundError("issue not found", status_code=404)
    with pytest.raises(ResourceNotFoundError):
        await _merger(main_reader, fork_reader, clock).collect(assignment)


# =============================================================================
# Fork cache
# =============================================================================

@pytest.mark.asyncio
async def test_resolver_caches_hits(fork_reader):
    clock = FrozenClock()
    fork_reader.add_fork("alice")
    resolver = ForkResolver(fork_reader, InMemoryForkCache(), clock=clock)

    first = await resolver.resolve(REPO, "alice")
    second = await resolver.resolve(REPO, "Alice")
    assert first.full_name == second.full_name == "alice/widgets"
    assert fork_reader.find_calls == 1

    clock.set(hours=13)
    await resolver.resolve(REPO, "alice")
    assert fork_reader.find_calls == 2


@pytest.mark.asyncio
async def test_resolver_caches_misses_briefly(fork_reader):
    clock = FrozenClock()
    resolver = ForkResolver(fork_reader, InMemoryForkCache(), clock=clock)

    assert await resolver.resolve(REPO, "bob") is None
    assert await resolver.resolve(REPO, "bob") is None
    assert fork_reader.find_calls == 1

    clock.set(minutes=61)
    fork_reader.add_fork("bob")
    found = await resolver.resolve(REPO, "bob")
    assert found is not None
    assert fork_reader.find_calls == 2


def test_sql_fork_cache_roundtrip_and_expiry(session_factory):
    cache = SqlForkCache(session_factory)
    reference = ForkReference(
        repository=REPO,
        fork_owner="alice",
        fork_name="widgets-fork",
        default_branch="dev",
        expires_at=T0 + timedelta(hours=12),
    )
    cache.put(reference)

    hit = cache.get("Octo/Widgets", "ALICE", T0 + timedelta(hours=1))
    assert hit.fork_name == "widgets-fork"
    assert hit.default_branch == "dev"

    cache.put(reference.model_copy(update={"default_branch": "main"}))
    assert cache.get(REPO, "alice", T0).default_branch == "main"

    assert cache.get(REPO, "alice", T0 + timedelta(hours=12)) is None
    assert cache.get(REPO, "alice", T0) is None


def test_sql_fork_cache_invalidate(session_factory):
    cache = SqlForkCache(session_factory)
    cache.put(ForkReference(repository=REPO, fork_owner="bob", expires_at=T0 + timedelta(hours=1)))
    assert cache.get(REPO, "bob", T0).exists is False

    cache.invalidate(REPO, "bob")
    assert cache.get(REPO, "bob", T0) is None
