"""
Gemini-backed activity classifier.

Uses google-genai against Vertex AI (project/location credentials) or the
Gemini API (API key). The model is asked for a small JSON object; anything
that does not parse into an ActivityJudgment is treated as a failure and the
caller falls back to the neutral judgment.
"""

import json
import logging
import re
from typing import Optional

from google import genai
from google.genai import types

from claimguard.assignments.models import WorkType
from claimguard.classifier.base import ActivityJudgment

logger = logging.getLogger(__name__)

_PROMPT = """Analyze these GitHub issue comments, written by the person assigned to the issue, for work progress indicators.

Return ONLY a valid JSON object with this exact structure:
{{
    "workType": "coding" | "research" | "planning" | "blocked" | "waiting" | "testing" | "documentation",
    "isBlocked": boolean,
    "confidence": number (0-1),
    "reasoning": "one sentence"
}}

Do not include any markdown, code blocks, or text outside the JSON object.

Comments:
{text}"""

_MAX_INPUT_CHARS = 8000


def parse_judgment(text: str) -> ActivityJudgment:
    """Parse the model's reply; raises ValueError when it is not usable."""
    cleaned = re.sub(r'```json\s*', '', text.strip())
    cleaned = re.sub(r'```\s*', '', cleaned)
    json_match = re.search(r'\{.*\}', cleaned, re.DOTALL)
    if not json_match:
        raise ValueError(f"No JSON object in classifier reply: {text[:200]}")

    data = json.loads(json_match.group(0))
    raw_type = str(data.get("workType") or "unknown").lower()
    try:
        work_type = WorkType(raw_type)
    except ValueError:
        work_type = WorkType.UNKNOWN

    confidence = float(data.get("confidence") or 0)
    is_blocked = bool(data.get("isBlocked")) or work_type == WorkType.BLOCKED
    return ActivityJudgment(
        work_type=work_type,
        is_blocked=is_blocked,
        confidence=max(0.0, min(1.0, confidence)),
        reasoning=str(data.get("reasoning") or ""),
    )


class GeminiClassifier:
    """Classifies comment text with a Gemini model."""

    def __init__(
        self,
        model: str = "gemini-2.5-flash",
        project_id: Optional[str] = None,
        location: str = "global",
        api_key: Optional[str] = None,
        client: Optional[genai.Client] = None,
    ):
        self.model = model
        if client is not None:
            self.client = client
        elif api_key:
            self.client = genai.Client(api_key=api_key)
        else:
            self.client = genai.Client(vertexai=True, project=project_id, location=location)
        logger.info(f"Gemini classifier initialized with model {model}")

    async def classify(self, text: str) -> ActivityJudgment:
        response = await self.client.aio.models.generate_content(
            model=self.model,
            contents=_PROMPT.format(text=text[-_MAX_INPUT_CHARS:]),
            config=types.GenerateContentConfig(
                temperature=0.3,
                response_mime_type="application/json",
            ),
        )
        judgment = parse_judgment(response.text or "")
        logger.debug(f"Gemini judgment: {judgment.work_type.value} blocked={judgment.is_blocked} ({judgment.confidence:.2f})")
        return judgment
