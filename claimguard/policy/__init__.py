"""
Threshold policy.

Turns (status, watermark, AI context, flags) into a target status and at most
one side effect.
"""

from claimguard.policy.decision import evaluate, tier_rank
from claimguard.policy.models import (
    PolicyDecision, PolicyInput, SideEffect, ThresholdRegime, Thresholds
)
from claimguard.policy.thresholds import (
    LENIENT, RAPID, REGIMES, STRICT, context_key, get_regime, thresholds_for
)

__all__ = [
    "LENIENT",
    "PolicyDecision",
    "PolicyInput",
    "RAPID",
    "REGIMES",
    "STRICT",
    "SideEffect",
    "ThresholdRegime",
    "Thresholds",
    "context_key",
    "evaluate",
    "get_regime",
    "thresholds_for",
    "tier_rank",
]
