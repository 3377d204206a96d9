"""
Built-in threshold regimes.

Each regime is a plain table keyed by context; picking thresholds for an
assignment is a lookup, never a branch per work type.
"""

from typing import Dict

from claimguard.assignments.models import AIContext, WorkType
from claimguard.policy.models import ThresholdRegime, Thresholds

STRICT_TABLE: Dict[str, Thresholds] = {
    "default": Thresholds(warning=3, alert=7, auto_unassign=14),
    "blocked": Thresholds(warning=6, alert=14, auto_unassign=28),
    "research": Thresholds(warning=5, alert=10, auto_unassign=21),
    "planning": Thresholds(warning=5, alert=10, auto_unassign=21),
    "testing": Thresholds(warning=2, alert=5, auto_unassign=10),
    "documentation": Thresholds(warning=2, alert=5, auto_unassign=10),
}

LENIENT_TABLE: Dict[str, Thresholds] = {
    "default": Thresholds(warning=14, alert=30, auto_unassign=60),
    "blocked": Thresholds(warning=30, alert=60, auto_unassign=90),
    "research": Thresholds(warning=21, alert=45, auto_unassign=75),
    "planning": Thresholds(warning=21, alert=45, auto_unassign=75),
    "testing": Thresholds(warning=10, alert=21, auto_unassign=45),
    "documentation": Thresholds(warning=10, alert=21, auto_unassign=45),
}

STRICT = ThresholdRegime(name="strict", table=STRICT_TABLE)
LENIENT = ThresholdRegime(name="lenient", table=LENIENT_TABLE)
# Strict numbers read as minutes, for staging repositories and demos
RAPID = ThresholdRegime(name="rapid", unit_seconds=60, unit_name="minutes", table=STRICT_TABLE)

REGIMES: Dict[str, ThresholdRegime] = {r.name: r for r in (STRICT, LENIENT, RAPID)}

# Work types with their own row; everything else uses "default"
_KEYED_WORK_TYPES = {
    WorkType.RESEARCH: "research",
    WorkType.PLANNING: "planning",
    WorkType.TESTING: "testing",
    WorkType.DOCUMENTATION: "documentation",
}


def get_regime(name: str) -> ThresholdRegime:
    try:
        return REGIMES[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown threshold regime {name!r}; expected one of {sorted(REGIMES)}") from None


def context_key(ai_context: AIContext) -> str:
    """Blocked beats work type; unrecognized work types fall back to default."""
    if ai_context.is_blocked or ai_context.work_type == WorkType.BLOCKED:
        return "blocked"
    return _KEYED_WORK_TYPES.get(ai_context.work_type, "default")


def thresholds_for(ai_context: AIContext, regime: ThresholdRegime = STRICT) -> Thresholds:
    return regime.for_key(context_key(ai_context))
