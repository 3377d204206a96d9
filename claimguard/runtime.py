"""Wires settings into the store, readers, monitor and service."""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import httpx
from sqlalchemy.orm import sessionmaker

from claimguard.activity import (
    ActivityMerger, ForkResolver, GitHubForkReader, GitHubIssueActivityReader, SqlForkCache
)
from claimguard.assignments.service import AssignmentService
from claimguard.classifier import ActivityClassifier, build_classifier
from claimguard.config import Settings
from claimguard.db.database import is_single_connection
from claimguard.db.store import AssignmentStore
from claimguard.monitor import AssignmentLeases, AssignmentMonitor, GitHubPlatformActions
from claimguard.notifications import NotificationSink, build_sink
from claimguard.policy import get_regime
from claimguard.tools.github import GitHubClient

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    settings: Settings
    store: AssignmentStore
    github: GitHubClient
    monitor: AssignmentMonitor
    service: AssignmentService

    async def close(self):
        await self.github.close()


def build_runtime(
    settings: Settings,
    session_factory: sessionmaker,
    http_client: Optional[httpx.AsyncClient] = None,
    classifier: Optional[ActivityClassifier] = None,
    sink: Optional[NotificationSink] = None,
) -> Runtime:
    """Assemble the engine. `http_client` replaces network access (tests)."""
    store = AssignmentStore(session_factory)
    github = GitHubClient(
        token=settings.github_token,
        base_url=settings.github_api_url,
        timeout=settings.github_timeout_seconds,
        client=http_client,
    )
    leases = AssignmentLeases(session_factory, lease_seconds=settings.lease_seconds)

    fork_reader = GitHubForkReader(github)
    merger = ActivityMerger(
        main_reader=GitHubIssueActivityReader(github),
        fork_resolver=ForkResolver(
            fork_reader,
            SqlForkCache(session_factory),
            ttl=timedelta(hours=settings.fork_cache_hours),
            miss_ttl=timedelta(hours=settings.fork_miss_cache_hours),
        ),
        fork_reader=fork_reader,
    )

    monitor = AssignmentMonitor(
        store=store,
        merger=merger,
        classifier=classifier or build_classifier(settings),
        platform=GitHubPlatformActions(github, dry_run=settings.dry_run),
        sink=sink or build_sink(settings, client=http_client),
        leases=leases,
        regime=get_regime(settings.threshold_regime),
        max_concurrency=settings.max_concurrency,
        assignment_timeout=settings.assignment_timeout_seconds,
        cycle_deadline=settings.cycle_deadline_seconds,
        transient_failure_limit=settings.transient_failure_limit,
        permanent_failure_limit=settings.permanent_failure_limit,
        store_in_thread=not is_single_connection(settings.database_url),
    )
    service = AssignmentService(store, leases, github=github)

    logger.info(
        f"Runtime ready: regime={settings.threshold_regime} classifier={settings.classifier} "
        f"dry_run={settings.dry_run}"
    )
    return Runtime(settings=settings, store=store, github=github, monitor=monitor, service=service)
