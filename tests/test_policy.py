"""Tests for the threshold policy."""
from datetime import timedelta

import pytest

from claimguard.assignments.models import AIContext, AssignmentStatus, WorkType
from claimguard.policy import (
    LENIENT, RAPID, STRICT, PolicyInput, SideEffect, Thresholds, context_key,
    evaluate, get_regime, thresholds_for
)

from conftest import T0


def _input(status=AssignmentStatus.ACTIVE, ai_context=None, **fields):
    return PolicyInput(status=status, watermark=T0, ai_context=ai_context or AIContext(), **fields)


@pytest.mark.parametrize("days,expected,effect", [
    (2, AssignmentStatus.ACTIVE, SideEffect.NONE),
    (3, AssignmentStatus.WARNING, SideEffect.REMINDER),
    (8, AssignmentStatus.ALERT, SideEffect.ALERT_COMMENT),
    (14, AssignmentStatus.AUTO_UNASSIGNED, SideEffect.UNASSIGN),
])
def test_default_tiers(days, expected, effect):
    decision = evaluate(_input(), T0 + timedelta(days=days))
    assert decision.status == expected
    assert decision.side_effect == effect
    assert decision.context_key == "default"


def test_blocked_context_extends_thresholds():
    blocked = AIContext(work_type=WorkType.CODING, is_blocked=True, confidence=0.8)

    assert evaluate(_input(ai_context=blocked), T0 + timedelta(days=5)).status == AssignmentStatus.ACTIVE
    assert evaluate(_input(), T0 + timedelta(days=5)).status == AssignmentStatus.WARNING


def test_context_key_precedence():
    assert context_key(AIContext(work_type=WorkType.RESEARCH, is_blocked=True)) == "blocked"
    assert context_key(AIContext(work_type=WorkType.BLOCKED)) == "blocked"
    assert context_key(AIContext(work_type=WorkType.PLANNING)) == "planning"
    assert context_key(AIContext(work_type=WorkType.DOCUMENTATION)) == "documentation"
    assert context_key(AIContext(work_type=WorkType.WAITING)) == "default"
    assert context_key(AIContext(work_type=WorkType.CODING)) == "default"


def test_strict_table_values():
    assert thresholds_for(AIContext()) == Thresholds(warning=3, alert=7, auto_unassign=14)
    assert thresholds_for(AIContext(is_blocked=True)) == Thresholds(warning=6, alert=14, auto_unassign=28)
    assert thresholds_for(AIContext(work_type=WorkType.TESTING)) == Thresholds(warning=2, alert=5, auto_unassign=10)


def test_lenient_regime():
    decision = evaluate(_input(), T0 + timedelta(days=10), LENIENT)
    assert decision.status == AssignmentStatus.ACTIVE
    decision = evaluate(_input(), T0 + timedelta(days=30), LENIENT)
    assert decision.status == AssignmentStatus.ALERT


def test_rapid_regime_uses_minutes():
    decision = evaluate(_input(), T0 + timedelta(minutes=8), RAPID)
    assert decision.status == AssignmentStatus.ALERT
    assert decision.factors["unit"] == "minutes"


def test_unknown_regime():
    assert get_regime("STRICT") is STRICT
    with pytest.raises(ValueError):
        get_regime("relaxed")


def test_thresholds_must_increase():
    with pytest.raises(ValueError):
        Thresholds(warning=5, alert=3, auto_unassign=10)


def test_no_downgrade_without_activity():
    # Thresholds grew (blocked) but nothing new happened: stay at ALERT
    blocked = AIContext(is_blocked=True)
    decision = evaluate(_input(status=AssignmentStatus.ALERT, ai_context=blocked), T0 + timedelta(days=8))
    assert decision.status == AssignmentStatus.ALERT
    assert decision.side_effect == SideEffect.NONE


def test_downgrade_with_new_activity():
    decision = evaluate(
        _input(status=AssignmentStatus.ALERT, had_new_activity=True),
        T0 + timedelta(hours=2),
    )
    assert decision.status == AssignmentStatus.ACTIVE
    assert decision.side_effect == SideEffect.NONE
    assert decision.changed


def test_re_evaluation_fires_nothing():
    decision = evaluate(_input(status=AssignmentStatus.WARNING), T0 + timedelta(days=4))
    assert decision.status == AssignmentStatus.WARNING
    assert decision.side_effect == SideEffect.NONE
    assert not decision.changed


def test_skipping_tiers_fires_only_the_highest():
    decision = evaluate(_input(), T0 + timedelta(days=20))
    assert decision.status == AssignmentStatus.AUTO_UNASSIGNED
    assert decision.side_effect == SideEffect.UNASSIGN


@pytest.mark.parametrize("flags", [{"is_whitelisted": True}, {"manual_override": True}])
def test_overrides_skip_evaluation(flags):
    decision = evaluate(_input(status=AssignmentStatus.MANUAL_OVERRIDE, **flags), T0 + timedelta(days=90))
    assert decision.skipped
    assert decision.status == AssignmentStatus.MANUAL_OVERRIDE
    assert decision.side_effect == SideEffect.NONE


def test_decision_explains_itself():
    decision = evaluate(_input(), T0 + timedelta(days=4))
    assert "warning threshold 3" in decision.reason
    assert decision.thresholds.warning == 3
    assert decision.elapsed == timedelta(days=4)
    assert decision.factors["context_key"] == "default"


def test_clock_skew_counts_as_zero_elapsed():
    decision = evaluate(_input(), T0 - timedelta(hours=1))
    assert decision.status == AssignmentStatus.ACTIVE
    assert decision.elapsed == timedelta(0)
