"""
Monitor loop.

One cycle reads every assignment that automation still owns, checks each one
under its lease, and reports what happened. A check is:

    read -> merge -> release overrides -> classify -> evaluate policy
         -> platform side effects -> one atomic store transition -> notify

Failures stay inside the check that hit them. Repeated failures move an
assignment to UNKNOWN so a human looks at it.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, List, Optional

import httpx
from pydantic import BaseModel

from claimguard.activity.merger import ActivityMerger, MergeResult
from claimguard.assignments.models import (
    ActivityEvent, ActivityKind, ActivitySource, AIContext, Assignment,
    AssignmentStatus, ForkReference, Notification
)
from claimguard.classifier.base import ActivityClassifier, classify_safely
from claimguard.clock import utcnow
from claimguard.db.store import AssignmentStore
from claimguard.errors import (
    AssignmentBusyError, AssignmentNotFoundError, ClaimguardError,
    MonitorCycleError, PermanentPlatformError, RateLimitedError,
    ResourceNotFoundError, TransientPlatformError, WriteConflictError
)
from claimguard.monitor.effects import PlatformActions, idempotency_key
from claimguard.monitor.leases import AssignmentLeases
from claimguard.notifications.sinks import NotificationSink, dispatch_notification
from claimguard.policy.decision import evaluate
from claimguard.policy.messages import (
    ai_update_notification, comment_for, diagnostic_notification, notification_for
)
from claimguard.policy.models import PolicyDecision, PolicyInput, SideEffect, ThresholdRegime
from claimguard.policy.thresholds import STRICT

logger = logging.getLogger(__name__)

# Pause length when the platform does not say when the limit resets
_DEFAULT_RATE_LIMIT_PAUSE = timedelta(minutes=5)


class FailureKind(str, Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    CONFLICT = "conflict"


class CheckOutcome(str, Enum):
    UNCHANGED = "unchanged"
    TRANSITIONED = "transitioned"
    SKIPPED = "skipped"  # Override, whitelist or terminal status
    FAILED = "failed"  # Counted toward UNKNOWN
    WENT_UNKNOWN = "went_unknown"
    BUSY = "busy"
    CONFLICT = "conflict"
    DEFERRED = "deferred"


class CheckResult(BaseModel):
    """Outcome of checking one assignment."""
    assignment_id: str
    outcome: CheckOutcome
    previous_status: Optional[AssignmentStatus] = None
    status: Optional[AssignmentStatus] = None
    side_effect: SideEffect = SideEffect.NONE
    new_events: int = 0
    reason: str = ""
    error: Optional[str] = None


class MonitorReport(BaseModel):
    """Summary of one monitor cycle."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    checked: int = 0
    transitions: int = 0
    failures: int = 0
    skipped: int = 0
    deferred: int = 0
    results: List[CheckResult] = []


def classify_failure(error: BaseException) -> FailureKind:
    """
    Sort an evaluation failure into transient, permanent or conflict.

    Not-found counts as permanent: the issue is gone or hidden from us.
    Anything unrecognized is treated as transient.
    """
    if isinstance(error, (WriteConflictError, AssignmentBusyError)):
        return FailureKind.CONFLICT
    if isinstance(error, (ResourceNotFoundError, PermanentPlatformError)):
        return FailureKind.PERMANENT
    if isinstance(error, (TransientPlatformError, asyncio.TimeoutError, httpx.TransportError)):
        return FailureKind.TRANSIENT
    return FailureKind.TRANSIENT


def _same_fork(a: Optional[ForkReference], b: Optional[ForkReference]) -> bool:
    if a is None or b is None:
        return a is b
    return (a.fork_owner, a.fork_name, a.default_branch) == (b.fork_owner, b.fork_name, b.default_branch)


class AssignmentMonitor:
    """Applies the threshold policy to every tracked assignment."""

    def __init__(
        self,
        store: AssignmentStore,
        merger: ActivityMerger,
        classifier: ActivityClassifier,
        platform: PlatformActions,
        sink: NotificationSink,
        leases: AssignmentLeases,
        regime: ThresholdRegime = STRICT,
        max_concurrency: int = 4,
        assignment_timeout: float = 120.0,
        cycle_deadline: float = 1800.0,
        transient_failure_limit: int = 3,
        permanent_failure_limit: int = 2,
        store_in_thread: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.merger = merger
        self.classifier = classifier
        self.platform = platform
        self.sink = sink
        self.leases = leases
        self.regime = regime
        self.max_concurrency = max_concurrency
        self.assignment_timeout = assignment_timeout
        self.cycle_deadline = cycle_deadline
        self.transient_failure_limit = transient_failure_limit
        self.permanent_failure_limit = permanent_failure_limit
        self.store_in_thread = store_in_thread
        self.clock = clock
        self._paused_until: Optional[datetime] = None

    # =========================================================================
    # Cycle
    # =========================================================================

    async def run(self) -> MonitorReport:
        """Run one monitor cycle over all trackable and overridden assignments."""
        report = MonitorReport(started_at=self.clock())
        try:
            trackable = await self._call_store(self.store.list_trackable)
            overridden = await self._call_store(self.store.list_overridden)
            assignments = trackable + overridden
        except Exception as e:
            logger.error(f"Monitor cycle aborted, could not list assignments: {e}", exc_info=True)
            raise MonitorCycleError(f"Could not list assignments: {e}") from e

        logger.info(f"Monitor cycle started: {len(assignments)} assignments")
        deadline = time.monotonic() + self.cycle_deadline
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def unit(assignment: Assignment) -> CheckResult:
            async with semaphore:
                if time.monotonic() >= deadline:
                    return CheckResult(
                        assignment_id=assignment.id,
                        outcome=CheckOutcome.DEFERRED,
                        reason="cycle deadline reached",
                    )
                if self.is_paused():
                    return CheckResult(
                        assignment_id=assignment.id,
                        outcome=CheckOutcome.DEFERRED,
                        reason=f"rate limited until {self._paused_until.isoformat()}",
                    )
                try:
                    return await asyncio.wait_for(self.check_assignment(assignment.id), timeout=self.assignment_timeout)
                except asyncio.TimeoutError as e:
                    logger.warning(f"{assignment.label}: check timed out after {self.assignment_timeout}s")
                    return await self._fail_with_lease(assignment.id, e)
                except Exception as e:
                    logger.error(f"{assignment.label}: unexpected error: {e}", exc_info=True)
                    return CheckResult(assignment_id=assignment.id, outcome=CheckOutcome.FAILED, error=str(e))

        results = await asyncio.gather(*(unit(a) for a in assignments))

        for result in results:
            if result.outcome == CheckOutcome.DEFERRED:
                report.deferred += 1
                continue
            report.checked += 1
            if result.outcome in (CheckOutcome.TRANSITIONED, CheckOutcome.WENT_UNKNOWN):
                report.transitions += 1
            if result.outcome in (CheckOutcome.FAILED, CheckOutcome.WENT_UNKNOWN):
                report.failures += 1
            if result.outcome in (CheckOutcome.SKIPPED, CheckOutcome.BUSY, CheckOutcome.CONFLICT):
                report.skipped += 1
        report.results = list(results)
        report.finished_at = self.clock()

        logger.info(
            f"Monitor cycle finished: checked={report.checked} transitions={report.transitions} "
            f"failures={report.failures} skipped={report.skipped} deferred={report.deferred}"
        )
        return report

    def is_paused(self, now: Optional[datetime] = None) -> bool:
        if self._paused_until is None:
            return False
        if (now or self.clock()) >= self._paused_until:
            self._paused_until = None
            return False
        return True

    async def _call_store(self, method, *args, **kwargs):
        """Run a blocking store call, off the event loop when `store_in_thread` is set."""
        if self.store_in_thread:
            return await asyncio.to_thread(method, *args, **kwargs)
        return method(*args, **kwargs)

    def _pause(self, until: Optional[datetime]) -> None:
        until = until or self.clock() + _DEFAULT_RATE_LIMIT_PAUSE
        if self._paused_until is None or until > self._paused_until:
            self._paused_until = until
            logger.warning(f"Platform rate limit hit, pausing checks until {until.isoformat()}")

    # =========================================================================
    # Single assignment
    # =========================================================================

    async def check_assignment(self, assignment_id: str) -> CheckResult:
        """
        Check one assignment now.

        Raises AssignmentNotFoundError for unknown ids; every other failure
        is reported in the returned CheckResult.
        """
        await self._call_store(self.store.get, assignment_id)
        try:
            async with self.leases.hold(assignment_id):
                try:
                    return await self._evaluate(assignment_id)
                except AssignmentNotFoundError:
                    raise
                except Exception as e:
                    return await self._handle_failure(assignment_id, e)
        except AssignmentBusyError as e:
            logger.info(f"Skipping {assignment_id}: {e}")
            return CheckResult(assignment_id=assignment_id, outcome=CheckOutcome.BUSY, reason=str(e))

    async def _fail_with_lease(self, assignment_id: str, error: BaseException) -> CheckResult:
        try:
            async with self.leases.hold(assignment_id):
                return await self._handle_failure(assignment_id, error)
        except AssignmentBusyError as e:
            return CheckResult(assignment_id=assignment_id, outcome=CheckOutcome.BUSY, reason=str(e))

    async def _evaluate(self, assignment_id: str) -> CheckResult:
        assignment = await self._call_store(self.store.get, assignment_id)
        if assignment.status == AssignmentStatus.AUTO_UNASSIGNED:
            return CheckResult(
                assignment_id=assignment_id,
                outcome=CheckOutcome.SKIPPED,
                previous_status=assignment.status,
                status=assignment.status,
                reason="terminal status",
            )

        now = self.clock()
        merge = await self.merger.collect(assignment)
        if merge.rate_limited_until is not None:
            self._pause(merge.rate_limited_until)

        if merge.release_reason is not None:
            return await self._retire(assignment, merge.release_reason, now)

        events: List[ActivityEvent] = list(merge.events)
        notifications: List[Notification] = []
        watermark = merge.watermark

        # Genuine activity or an expired deadline extension releases the override
        status = assignment.status
        manual_override = assignment.manual_override
        override_until = assignment.override_until
        overridden = manual_override or status == AssignmentStatus.MANUAL_OVERRIDE
        if overridden and (merge.had_new_activity or (override_until is not None and now >= override_until)):
            why = "new activity" if merge.had_new_activity else "deadline extension expired"
            logger.info(f"{assignment.label}: manual override released ({why})")
            if not merge.had_new_activity:
                # The inactivity clock restarts where the extension ended
                watermark = max(watermark, override_until)
            manual_override = False
            override_until = None
            if status in (AssignmentStatus.MANUAL_OVERRIDE, AssignmentStatus.UNKNOWN) and not assignment.is_whitelisted:
                status = AssignmentStatus.ACTIVE
        elif status == AssignmentStatus.UNKNOWN:
            # A successful read is enough to resume tracking
            status = AssignmentStatus.ACTIVE

        ai_context = await self._classify(assignment, merge, now, events, notifications)

        decision = evaluate(
            PolicyInput(
                status=status,
                watermark=watermark,
                ai_context=ai_context,
                is_whitelisted=assignment.is_whitelisted,
                manual_override=manual_override,
                had_new_activity=merge.had_new_activity,
            ),
            now,
            self.regime,
        )

        if decision.side_effect != SideEffect.NONE:
            key = idempotency_key(assignment.id, decision.status, watermark)
            await self._apply_side_effect(assignment, decision, key)
            notification = notification_for(assignment, decision, key)
            if notification is not None:
                notifications.append(notification)

        updates = {}
        if merge.fork_error is None and not _same_fork(assignment.fork_reference, merge.fork_reference):
            updates["fork_reference"] = merge.fork_reference

        result = await self._call_store(
            self.store.apply_transition,
            assignment.id,
            decision.status,
            expected_version=assignment.version,
            events=events,
            notifications=notifications,
            watermark=watermark,
            ai_context=ai_context,
            manual_override=manual_override,
            override_until=override_until,
            status_reason=decision.reason,
            last_error=None,
            consecutive_failures=0,
            checked_at=now,
            **updates,
        )

        await self._deliver(result.assignment, result.notifications)

        if decision.skipped:
            outcome = CheckOutcome.SKIPPED
        elif result.assignment.status != assignment.status:
            outcome = CheckOutcome.TRANSITIONED
        else:
            outcome = CheckOutcome.UNCHANGED
        return CheckResult(
            assignment_id=assignment.id,
            outcome=outcome,
            previous_status=assignment.status,
            status=result.assignment.status,
            side_effect=decision.side_effect,
            new_events=len(merge.events),
            reason=decision.reason,
            error=merge.fork_error,
        )

    async def _classify(
        self,
        assignment: Assignment,
        merge: MergeResult,
        now: datetime,
        events: List[ActivityEvent],
        notifications: List[Notification],
    ) -> AIContext:
        """Classify new comment text; the previous context stands when there is none."""
        text = merge.classification_text()
        if not text:
            return assignment.ai_context

        judgment = await classify_safely(self.classifier, text)
        ai_context = judgment.to_ai_context(now)
        marker = f"ai:{merge.watermark.isoformat()}"
        events.append(ActivityEvent(
            assignment_id=assignment.id,
            timestamp=now,
            kind=ActivityKind.AI_ANALYSIS,
            source=ActivitySource.SYSTEM,
            external_id=marker,
            payload=judgment.model_dump(mode="json"),
        ))

        previous = assignment.ai_context
        changed = (ai_context.work_type, ai_context.is_blocked) != (previous.work_type, previous.is_blocked)
        if changed and judgment.confidence > 0:
            notifications.append(ai_update_notification(
                assignment, previous, ai_context, f"claimguard:{assignment.id}:{marker}"
            ))
        return ai_context

    async def _apply_side_effect(self, assignment: Assignment, decision: PolicyDecision, key: str) -> None:
        body = comment_for(assignment, decision)
        if decision.side_effect == SideEffect.UNASSIGN:
            await self.platform.unassign(assignment.repository, assignment.issue_number, assignment.assignee)
        if body:
            await self.platform.post_comment(assignment.repository, assignment.issue_number, body, key)

    async def _retire(self, assignment: Assignment, reason: str, now: datetime) -> CheckResult:
        """End tracking for a claim that was resolved or released on GitHub. No comment, no unassign."""
        result = await self._call_store(
            self.store.apply_transition,
            assignment.id,
            AssignmentStatus.AUTO_UNASSIGNED,
            expected_version=assignment.version,
            manual_override=False,
            override_until=None,
            status_reason=reason,
            last_error=None,
            consecutive_failures=0,
            checked_at=now,
        )
        logger.info(f"{assignment.label}: tracking ended ({reason})")
        return CheckResult(
            assignment_id=assignment.id,
            outcome=CheckOutcome.TRANSITIONED,
            previous_status=assignment.status,
            status=result.assignment.status,
            reason=reason,
        )

    # =========================================================================
    # Failures
    # =========================================================================

    async def _handle_failure(self, assignment_id: str, error: BaseException) -> CheckResult:
        kind = classify_failure(error)
        message = f"{type(error).__name__}: {error}"

        if kind == FailureKind.CONFLICT:
            logger.info(f"{assignment_id}: skipped after write conflict: {error}")
            return CheckResult(assignment_id=assignment_id, outcome=CheckOutcome.CONFLICT, error=message)

        if isinstance(error, RateLimitedError):
            self._pause(error.reset_at)

        if kind == FailureKind.TRANSIENT and not isinstance(error, (ClaimguardError, asyncio.TimeoutError)):
            logger.error(f"{assignment_id}: unexpected failure: {error}", exc_info=True)
        else:
            logger.warning(f"{assignment_id}: {kind.value} failure: {message}")

        try:
            assignment = await self._call_store(self.store.record_failure, assignment_id, message)
        except ClaimguardError as e:
            logger.error(f"{assignment_id}: could not record failure: {e}")
            return CheckResult(assignment_id=assignment_id, outcome=CheckOutcome.FAILED, error=message)

        limit = self.permanent_failure_limit if kind == FailureKind.PERMANENT else self.transient_failure_limit
        if assignment.consecutive_failures < limit or assignment.status == AssignmentStatus.UNKNOWN:
            return CheckResult(
                assignment_id=assignment_id,
                outcome=CheckOutcome.FAILED,
                previous_status=assignment.status,
                status=assignment.status,
                error=message,
            )

        reason = f"{assignment.consecutive_failures} consecutive {kind.value} failures, last: {message}"
        # One diagnostic per UNKNOWN transition, even when the watermark has not moved
        key = f"claimguard:{assignment.id}:{AssignmentStatus.UNKNOWN.value}:v{assignment.version}"
        try:
            result = await self._call_store(
                self.store.apply_transition,
                assignment.id,
                AssignmentStatus.UNKNOWN,
                expected_version=assignment.version,
                notifications=[diagnostic_notification(assignment, reason, key)],
                status_reason=reason,
            )
        except ClaimguardError as e:
            logger.error(f"{assignment_id}: could not mark UNKNOWN: {e}")
            return CheckResult(assignment_id=assignment_id, outcome=CheckOutcome.FAILED, error=message)

        await self._deliver(result.assignment, result.notifications)

        logger.warning(f"{assignment.label}: moved to UNKNOWN ({reason})")
        return CheckResult(
            assignment_id=assignment_id,
            outcome=CheckOutcome.WENT_UNKNOWN,
            previous_status=assignment.status,
            status=AssignmentStatus.UNKNOWN,
            reason=reason,
            error=message,
        )

    # =========================================================================
    # Notifications
    # =========================================================================

    async def _deliver(self, assignment: Assignment, notifications: List[Notification]) -> None:
        for notification in notifications:
            await dispatch_notification(self.sink, self.store, notification, assignment)

