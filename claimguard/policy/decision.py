"""
Decision engine - maps elapsed inactivity onto an assignment status.

Pure and synchronous: no I/O, no clock reads. The monitor supplies `now`.
"""

from datetime import datetime, timedelta
from typing import Optional

from claimguard.assignments.models import AssignmentStatus
from claimguard.clock import ensure_utc
from claimguard.policy.models import PolicyDecision, PolicyInput, SideEffect, ThresholdRegime
from claimguard.policy.thresholds import STRICT, context_key

# Escalation order. UNKNOWN and MANUAL_OVERRIDE sit outside it.
_TIER_RANK = {
    AssignmentStatus.ACTIVE: 0,
    AssignmentStatus.WARNING: 1,
    AssignmentStatus.ALERT: 2,
    AssignmentStatus.AUTO_UNASSIGNED: 3,
}

_SIDE_EFFECTS = {
    AssignmentStatus.WARNING: SideEffect.REMINDER,
    AssignmentStatus.ALERT: SideEffect.ALERT_COMMENT,
    AssignmentStatus.AUTO_UNASSIGNED: SideEffect.UNASSIGN,
}


def tier_rank(status: AssignmentStatus) -> Optional[int]:
    return _TIER_RANK.get(status)


def evaluate(
    policy_input: PolicyInput,
    now: datetime,
    regime: ThresholdRegime = STRICT,
) -> PolicyDecision:
    """
    Decide the status an assignment should be in.

    Decision logic:
    - whitelisted or manual override → skipped, status unchanged
    - elapsed >= auto_unassign → AUTO_UNASSIGNED (unassign)
    - elapsed >= alert → ALERT (alert comment)
    - elapsed >= warning → WARNING (reminder comment)
    - otherwise → ACTIVE

    Without new activity the status never drops below its current tier. A
    side effect is attached only when the status moves up to a higher tier,
    so re-evaluating an unchanged assignment does nothing.

    Args:
        policy_input: Status, watermark, AI context and flags
        now: Evaluation time
        regime: Threshold table to use

    Returns:
        PolicyDecision with the target status, side effect and reasoning
    """
    key = context_key(policy_input.ai_context)
    thresholds = regime.for_key(key)
    elapsed = ensure_utc(now) - ensure_utc(policy_input.watermark)
    if elapsed.total_seconds() < 0:
        elapsed = timedelta(0)
    elapsed_units = regime.in_units(elapsed)
    current = policy_input.status

    factors = {
        "regime": regime.name,
        "context_key": key,
        "elapsed": round(elapsed_units, 2),
        "unit": regime.unit_name,
        "work_type": policy_input.ai_context.work_type.value,
        "is_blocked": policy_input.ai_context.is_blocked,
        "had_new_activity": policy_input.had_new_activity,
        "current_status": current.value,
    }

    if policy_input.is_whitelisted or policy_input.manual_override:
        why = "Whitelisted" if policy_input.is_whitelisted else "Manual override in place"
        return PolicyDecision(
            previous_status=current,
            status=current,
            skipped=True,
            context_key=key,
            regime=regime.name,
            thresholds=thresholds,
            elapsed=elapsed,
            reason=f"{why}; escalation suppressed",
            factors=factors,
        )

    reasoning_parts = []
    if elapsed_units >= thresholds.auto_unassign:
        target = AssignmentStatus.AUTO_UNASSIGNED
        reasoning_parts.append(
            f"Inactive {elapsed_units:.1f} {regime.unit_name} >= auto-unassign threshold {thresholds.auto_unassign:g}"
        )
    elif elapsed_units >= thresholds.alert:
        target = AssignmentStatus.ALERT
        reasoning_parts.append(f"Inactive {elapsed_units:.1f} {regime.unit_name} >= alert threshold {thresholds.alert:g}")
    elif elapsed_units >= thresholds.warning:
        target = AssignmentStatus.WARNING
        reasoning_parts.append(f"Inactive {elapsed_units:.1f} {regime.unit_name} >= warning threshold {thresholds.warning:g}")
    else:
        target = AssignmentStatus.ACTIVE
        reasoning_parts.append(
            f"Inactive {elapsed_units:.1f} {regime.unit_name}, below warning threshold {thresholds.warning:g}"
        )
    reasoning_parts.append(f"context '{key}' ({regime.name} regime)")

    current_rank = tier_rank(current)
    target_rank = tier_rank(target)

    # Hold the current tier unless the assignee did something
    if not policy_input.had_new_activity and current_rank is not None and target_rank < current_rank:
        reasoning_parts.append(f"no new activity, staying {current.value}")
        target = current
        target_rank = current_rank
    elif policy_input.had_new_activity and current_rank is not None and target_rank < current_rank:
        reasoning_parts.append(f"new activity, downgraded from {current.value}")

    side_effect = SideEffect.NONE
    baseline = current_rank if current_rank is not None else 0
    if target_rank > baseline:
        side_effect = _SIDE_EFFECTS[target]

    factors["target_status"] = target.value
    factors["side_effect"] = side_effect.value

    return PolicyDecision(
        previous_status=current,
        status=target,
        side_effect=side_effect,
        context_key=key,
        regime=regime.name,
        thresholds=thresholds,
        elapsed=elapsed,
        reason=". ".join(reasoning_parts),
        factors=factors,
    )
