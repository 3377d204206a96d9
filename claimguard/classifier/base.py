"""Classifier contract shared by every activity classifier."""

import logging
from datetime import datetime
from typing import Optional, Protocol

from pydantic import BaseModel, Field

from claimguard.assignments.models import AIContext, WorkType
from claimguard.clock import utcnow

logger = logging.getLogger(__name__)


class ActivityJudgment(BaseModel):
    """What a classifier thinks the assignee's latest comments say about the work."""
    work_type: WorkType = WorkType.UNKNOWN
    is_blocked: bool = False
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reasoning: str = ""

    def to_ai_context(self, analyzed_at: Optional[datetime] = None) -> AIContext:
        return AIContext(
            work_type=self.work_type,
            is_blocked=self.is_blocked,
            confidence=self.confidence,
            reasoning=self.reasoning,
            analyzed_at=analyzed_at or utcnow(),
        )


NEUTRAL_JUDGMENT = ActivityJudgment()


class ActivityClassifier(Protocol):
    async def classify(self, text: str) -> ActivityJudgment:
        ...


async def classify_safely(classifier: ActivityClassifier, text: str) -> ActivityJudgment:
    """
    Run a classifier without letting it break the caller.

    Empty input, exceptions and malformed output all collapse to the neutral
    judgment, which maps to the default thresholds.
    """
    if not text or not text.strip():
        return NEUTRAL_JUDGMENT
    try:
        judgment = await classifier.classify(text)
    except Exception as e:
        logger.warning(f"Classifier {type(classifier).__name__} failed, using neutral judgment: {e}", exc_info=True)
        return NEUTRAL_JUDGMENT
    if not isinstance(judgment, ActivityJudgment):
        logger.warning(f"Classifier {type(classifier).__name__} returned {type(judgment).__name__}, using neutral judgment")
        return NEUTRAL_JUDGMENT
    return judgment
