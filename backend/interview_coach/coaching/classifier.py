from __future__ import annotations

import logging
import math
from typing import Any

from interview_coach.coaching.models import CoachingPrompt
from interview_coach.coaching.thresholds import CoachingFunctionType

logger = logging.getLogger("coaching.classifier")

DEFAULT_PROMPT_TEXT = "Consider this approach..."
DEFAULT_CONFIDENCE = 0.85

# first matching family wins
KEYWORD_FAMILIES: list[tuple[tuple[str, ...], CoachingFunctionType]] = [
    (("follow", "question"), CoachingFunctionType.SUGGEST_FOLLOW_UP),
    (("deep", "explore"), CoachingFunctionType.EXPLORE_DEEPER),
    (("topic", "uncovered"), CoachingFunctionType.UNCOVERED_TOPIC),
    (("pivot", "redirect"), CoachingFunctionType.SUGGEST_PIVOT),
    (("encourage", "good"), CoachingFunctionType.ENCOURAGEMENT),
    (("tip", "hint"), CoachingFunctionType.GENERAL_TIP),
]


def _first_present(arguments: dict, keys: tuple[str, ...], default: str) -> str:
    for key in keys:
        value = arguments.get(key)
        if value is not None:
            return str(value)
    return default


def _parse_confidence(raw: Any) -> float:
    if raw is None:
        return DEFAULT_CONFIDENCE
    try:
        value = float(str(raw).strip())
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    if not math.isfinite(value):
        return DEFAULT_CONFIDENCE
    return min(1.0, max(0.0, value))


class PromptClassifier:
    def infer_type(self, event_name: str) -> CoachingFunctionType | None:
        name = str(event_name or "").strip()
        try:
            return CoachingFunctionType(name)
        except ValueError:
            pass

        lowered = name.lower()
        for keywords, function_type in KEYWORD_FAMILIES:
            if any(keyword in lowered for keyword in keywords):
                return function_type
        return None

    def classify(self, event_name: str, arguments: dict | None, timestamp: float) -> CoachingPrompt | None:
        function_type = self.infer_type(event_name)
        if function_type is None:
            logger.debug("unknown coaching function: %s", event_name)
            return None

        args = arguments if isinstance(arguments, dict) else {}
        try:
            session_timestamp = float(timestamp)
        except (TypeError, ValueError):
            session_timestamp = 0.0

        return CoachingPrompt(
            type=function_type,
            text=_first_present(args, ("text", "prompt", "message"), DEFAULT_PROMPT_TEXT),
            reason=_first_present(args, ("reason", "context"), ""),
            confidence=_parse_confidence(args.get("confidence")),
            session_timestamp=session_timestamp,
        )
