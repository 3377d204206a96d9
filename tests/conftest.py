"""Pytest configuration and fixtures."""
import os
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

# Keep tests away from any real database or credentials
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CLAIMGUARD_CLASSIFIER"] = "keywords"
os.environ.pop("GITHUB_TOKEN", None)
os.environ.pop("SLACK_BOT_TOKEN", None)

import pytest

from claimguard.activity.forks import ForkResolver, InMemoryForkCache
from claimguard.activity.merger import ActivityMerger
from claimguard.activity.readers import IssueState
from claimguard.assignments.models import (
    ActivityEvent, ActivityKind, ActivitySource, Assignment, ForkReference
)
from claimguard.assignments.service import AssignmentService
from claimguard.classifier.base import ActivityJudgment
from claimguard.classifier.keywords import KeywordClassifier
from claimguard.db.database import init_db, make_engine, make_session_factory
from claimguard.db.models import Base
from claimguard.db.store import AssignmentStore, new_assignment_id
from claimguard.monitor.leases import AssignmentLeases
from claimguard.monitor.runner import AssignmentMonitor

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
REPO = "octo/widgets"


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, **delta):
        self.now = T0 + timedelta(**delta)


def comment_event(timestamp: datetime, comment_id: int, body: str = "working on it", author: str = "alice") -> ActivityEvent:
    return ActivityEvent(
        timestamp=timestamp,
        kind=ActivityKind.COMMENT,
        source=ActivitySource.MAIN_REPO,
        external_id=f"comment:{comment_id}",
        payload={"comment_id": comment_id, "body": body, "author": author},
    )


def commit_event(timestamp: datetime, sha: str, source: ActivitySource = ActivitySource.MAIN_REPO) -> ActivityEvent:
    return ActivityEvent(
        timestamp=timestamp,
        kind=ActivityKind.FORK_COMMIT if source == ActivitySource.FORK else ActivityKind.COMMIT,
        source=source,
        external_id=f"commit:{sha}",
        payload={"sha": sha},
    )


class FakeMainReader:
    """Per-issue canned events or errors. Issues are open and assigned to alice and bob unless set."""

    def __init__(self):
        self.events: Dict[int, List[ActivityEvent]] = {}
        self.errors: Dict[int, Exception] = {}
        self.issues: Dict[int, IssueState] = {}
        self.calls = 0

    async def get_issue_state(self, repository, issue_number):
        if issue_number in self.errors:
            raise self.errors[issue_number]
        return self.issues.get(issue_number) or IssueState(number=issue_number, assignees=["alice", "bob"])

    async def list_activity_since(self, repository, issue_number, since, author):
        self.calls += 1
        if issue_number in self.errors:
            raise self.errors[issue_number]
        return [e for e in self.events.get(issue_number, []) if e.timestamp > since]


class FakeForkReader:
    """Forks and fork commits keyed by username."""

    def __init__(self):
        self.forks: Dict[str, ForkReference] = {}
        self.commits: Dict[str, List[ActivityEvent]] = {}
        self.error: Optional[Exception] = None
        self.find_calls = 0

    async def find_fork_owned_by(self, repository, username):
        self.find_calls += 1
        return self.forks.get(username)

    async def list_commits_since(self, fork_owner, fork_repo, author, since, branch=None):
        if self.error is not None:
            raise self.error
        return [e for e in self.commits.get(fork_owner, []) if e.timestamp > since]

    def add_fork(self, username: str, name: str = "widgets"):
        self.forks[username] = ForkReference(
            repository=REPO, fork_owner=username, fork_name=name, default_branch="main"
        )


class FakeClassifier:
    def __init__(self, judgment: Optional[ActivityJudgment] = None, error: Optional[Exception] = None):
        self.judgment = judgment or ActivityJudgment()
        self.error = error
        self.calls = 0

    async def classify(self, text):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.judgment


class FakePlatform:
    """Records comments and unassignments; honours idempotency keys."""

    def __init__(self):
        self.comments: List[dict] = []
        self.unassigned: List[tuple] = []
        self._keys = set()

    async def post_comment(self, repository, issue_number, body, idempotency_key):
        if idempotency_key in self._keys:
            return False
        self._keys.add(idempotency_key)
        self.comments.append({"repository": repository, "issue_number": issue_number, "body": body, "key": idempotency_key})
        return True

    async def unassign(self, repository, issue_number, username):
        self.unassigned.append((repository, issue_number, username))


class RecordingSink:
    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send(self, notification, assignment):
        if self.fail:
            raise RuntimeError("sink down")
        self.sent.append(notification)
        return True


@pytest.fixture
def session_factory():
    """In-memory SQLite with all tables."""
    engine = make_engine("sqlite://")
    init_db(bind=engine)
    yield make_session_factory(engine)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return AssignmentStore(session_factory)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def leases(session_factory):
    return AssignmentLeases(session_factory, lease_seconds=60)


@pytest.fixture
def main_reader():
    return FakeMainReader()


@pytest.fixture
def fork_reader():
    return FakeForkReader()


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def make_assignment(store):
    def _make(issue_number: int = 1, assignee: str = "alice", assigned_at: datetime = T0, **fields) -> Assignment:
        return store.create(Assignment(
            id=new_assignment_id(),
            repository=REPO,
            issue_number=issue_number,
            assignee=assignee,
            assigned_at=assigned_at,
            last_activity_at=fields.pop("last_activity_at", assigned_at),
            **fields,
        ))
    return _make


@pytest.fixture
def make_monitor(store, leases, main_reader, fork_reader, platform, sink, clock):
    def _make(classifier=None, **options) -> AssignmentMonitor:
        merger = ActivityMerger(
            main_reader=main_reader,
            fork_resolver=ForkResolver(fork_reader, InMemoryForkCache(), clock=clock),
            fork_reader=fork_reader,
            clock=clock,
        )
        return AssignmentMonitor(
            store=store,
            merger=merger,
            classifier=classifier or KeywordClassifier(),
            platform=platform,
            sink=sink,
            leases=leases,
            clock=clock,
            **options,
        )
    return _make


@pytest.fixture
def monitor(make_monitor):
    return make_monitor()


@pytest.fixture
def service(store, leases, clock):
    return AssignmentService(store, leases, clock=clock)
