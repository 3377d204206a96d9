"""
Rule-based classifier.

Matches phrases an assignee typically uses when they are stuck or when they
describe what they are working on. Cheap, deterministic, and the default when
no language model is configured.
"""

import re
from typing import Dict, List

from claimguard.assignments.models import WorkType
from claimguard.classifier.base import ActivityJudgment

BLOCKED_KEYWORDS = [
    "waiting",
    "blocked",
    "need help",
    "stuck",
    "can't proceed",
    "cannot proceed",
    "depends on",
    "pending",
]

WORK_TYPE_KEYWORDS: Dict[WorkType, List[str]] = {
    WorkType.TESTING: ["test", "tests", "testing", "coverage", "unit test", "e2e"],
    WorkType.DOCUMENTATION: ["docs", "documentation", "readme", "docstring", "changelog"],
    WorkType.RESEARCH: ["research", "investigating", "looking into", "reading up", "exploring", "figuring out"],
    WorkType.PLANNING: ["plan", "planning", "design", "proposal", "approach", "rfc"],
    WorkType.CODING: ["implement", "implementing", "coding", "pushed", "commit", "pr ", "pull request", "refactor", "fix"],
}


def _contains(text: str, phrase: str) -> bool:
    return re.search(rf"(?<![a-z]){re.escape(phrase.strip())}(?![a-z])", text) is not None


class KeywordClassifier:
    """Keyword matching over lower-cased comment text."""

    async def classify(self, text: str) -> ActivityJudgment:
        lowered = text.lower().replace("’", "'")

        blocked_hits = [k for k in BLOCKED_KEYWORDS if _contains(lowered, k)]
        if blocked_hits:
            return ActivityJudgment(
                work_type=WorkType.BLOCKED,
                is_blocked=True,
                confidence=min(0.5 + 0.1 * len(blocked_hits), 0.9),
                reasoning=f"Blocked keywords: {', '.join(blocked_hits)}",
            )

        best_type = WorkType.UNKNOWN
        best_hits: List[str] = []
        for work_type, keywords in WORK_TYPE_KEYWORDS.items():
            hits = [k for k in keywords if _contains(lowered, k)]
            if len(hits) > len(best_hits):
                best_type, best_hits = work_type, hits

        if not best_hits:
            return ActivityJudgment(reasoning="No recognizable work indicators")

        return ActivityJudgment(
            work_type=best_type,
            is_blocked=False,
            confidence=min(0.4 + 0.1 * len(best_hits), 0.8),
            reasoning=f"{best_type.value} keywords: {', '.join(best_hits)}",
        )
