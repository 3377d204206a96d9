"""Activity classifiers: keyword rules or a Gemini model behind one protocol."""

import logging

from claimguard.classifier.base import (
    ActivityClassifier, ActivityJudgment, NEUTRAL_JUDGMENT, classify_safely
)
from claimguard.classifier.keywords import KeywordClassifier
from claimguard.config import Settings

logger = logging.getLogger(__name__)


def build_classifier(settings: Settings) -> ActivityClassifier:
    """Pick the classifier named by CLAIMGUARD_CLASSIFIER."""
    if settings.classifier == "gemini":
        from claimguard.classifier.gemini import GeminiClassifier
        return GeminiClassifier(
            model=settings.gemini_model,
            project_id=settings.gcp_project_id,
            location=settings.gcp_location,
            api_key=settings.gemini_api_key,
        )
    if settings.classifier != "keywords":
        logger.warning(f"Unknown classifier {settings.classifier!r}, using keyword rules")
    return KeywordClassifier()


__all__ = [
    "ActivityClassifier",
    "ActivityJudgment",
    "KeywordClassifier",
    "NEUTRAL_JUDGMENT",
    "build_classifier",
    "classify_safely",
]
