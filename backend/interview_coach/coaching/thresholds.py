from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


def _clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, float(value)))


@dataclass(frozen=True)
class ThresholdPolicy:
    """Gating parameters for the coaching engine.

    Defaults are deliberately conservative: prompts are rare, confident and
    short-lived. Out-of-range inputs are clamped silently at construction.
    """

    minimum_confidence: float = 0.85
    cooldown_seconds: float = 120.0
    speech_quiet_seconds: float = 5.0
    max_prompts_per_session: int = 3
    auto_dismiss_seconds: float = 8.0
    fade_in_seconds: float = 0.3
    fade_out_seconds: float = 0.25
    sensitivity_multiplier: float = 1.0

    def __post_init__(self):
        object.__setattr__(self, "minimum_confidence", _clamp(self.minimum_confidence, 0.0, 1.0))
        object.__setattr__(self, "cooldown_seconds", max(0.0, float(self.cooldown_seconds)))
        object.__setattr__(self, "speech_quiet_seconds", max(0.0, float(self.speech_quiet_seconds)))
        object.__setattr__(self, "max_prompts_per_session", max(0, int(self.max_prompts_per_session)))
        object.__setattr__(self, "auto_dismiss_seconds", max(1.0, float(self.auto_dismiss_seconds)))
        object.__setattr__(self, "fade_in_seconds", max(0.1, float(self.fade_in_seconds)))
        object.__setattr__(self, "fade_out_seconds", max(0.1, float(self.fade_out_seconds)))
        object.__setattr__(self, "sensitivity_multiplier", _clamp(self.sensitivity_multiplier, 0.1, 3.0))

    @property
    def effective_confidence_threshold(self) -> float:
        # higher sensitivity lowers the bar, never below 0.5
        return _clamp(self.minimum_confidence / self.sensitivity_multiplier, 0.5, 1.0)

    @property
    def effective_cooldown(self) -> float:
        return self.cooldown_seconds / self.sensitivity_multiplier

    def to_dict(self) -> dict:
        return {
            "minimum_confidence": self.minimum_confidence,
            "cooldown_seconds": self.cooldown_seconds,
            "speech_quiet_seconds": self.speech_quiet_seconds,
            "max_prompts_per_session": self.max_prompts_per_session,
            "auto_dismiss_seconds": self.auto_dismiss_seconds,
            "fade_in_seconds": self.fade_in_seconds,
            "fade_out_seconds": self.fade_out_seconds,
            "sensitivity_multiplier": self.sensitivity_multiplier,
            "effective_confidence_threshold": round(self.effective_confidence_threshold, 4),
            "effective_cooldown": round(self.effective_cooldown, 4),
        }


DEFAULT_THRESHOLDS = ThresholdPolicy()

MINIMAL_THRESHOLDS = ThresholdPolicy(
    minimum_confidence=0.95,
    cooldown_seconds=180.0,
    speech_quiet_seconds=8.0,
    max_prompts_per_session=2,
    auto_dismiss_seconds=6.0,
    sensitivity_multiplier=0.5,
)

BALANCED_THRESHOLDS = ThresholdPolicy(
    minimum_confidence=0.80,
    cooldown_seconds=90.0,
    speech_quiet_seconds=4.0,
    max_prompts_per_session=4,
    auto_dismiss_seconds=10.0,
    sensitivity_multiplier=1.0,
)

ACTIVE_THRESHOLDS = ThresholdPolicy(
    minimum_confidence=0.70,
    cooldown_seconds=60.0,
    speech_quiet_seconds=3.0,
    max_prompts_per_session=6,
    auto_dismiss_seconds=12.0,
    sensitivity_multiplier=1.5,
)

OFF_THRESHOLDS = ThresholdPolicy(max_prompts_per_session=0)


class CoachingLevel(str, Enum):
    OFF = "off"
    MINIMAL = "minimal"
    BALANCED = "balanced"
    ACTIVE = "active"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    @property
    def description(self) -> str:
        return {
            CoachingLevel.OFF: "No coaching prompts will be shown",
            CoachingLevel.MINIMAL: "Only essential prompts for experienced researchers",
            CoachingLevel.BALANCED: "Moderate guidance for most situations",
            CoachingLevel.ACTIVE: "More frequent prompts for learning researchers",
        }[self]

    @property
    def thresholds(self) -> ThresholdPolicy:
        return {
            CoachingLevel.OFF: OFF_THRESHOLDS,
            CoachingLevel.MINIMAL: MINIMAL_THRESHOLDS,
            CoachingLevel.BALANCED: BALANCED_THRESHOLDS,
            CoachingLevel.ACTIVE: ACTIVE_THRESHOLDS,
        }[self]


class CoachingFunctionType(str, Enum):
    """Coaching intents a function-call event can carry."""

    SUGGEST_FOLLOW_UP = "suggest_follow_up"
    EXPLORE_DEEPER = "explore_deeper"
    UNCOVERED_TOPIC = "uncovered_topic"
    SUGGEST_PIVOT = "suggest_pivot"
    ENCOURAGEMENT = "encouragement"
    GENERAL_TIP = "general_tip"

    @property
    def display_name(self) -> str:
        return _FUNCTION_DISPLAY_NAMES[self]

    @property
    def priority(self) -> int:
        # lower = more urgent
        return _FUNCTION_PRIORITIES[self]


_FUNCTION_DISPLAY_NAMES = {
    CoachingFunctionType.SUGGEST_FOLLOW_UP: "Follow-up Suggestion",
    CoachingFunctionType.EXPLORE_DEEPER: "Explore Deeper",
    CoachingFunctionType.UNCOVERED_TOPIC: "Uncovered Topic",
    CoachingFunctionType.SUGGEST_PIVOT: "Suggested Pivot",
    CoachingFunctionType.ENCOURAGEMENT: "Encouragement",
    CoachingFunctionType.GENERAL_TIP: "Tip",
}

_FUNCTION_PRIORITIES = {
    CoachingFunctionType.UNCOVERED_TOPIC: 1,
    CoachingFunctionType.SUGGEST_FOLLOW_UP: 2,
    CoachingFunctionType.EXPLORE_DEEPER: 3,
    CoachingFunctionType.SUGGEST_PIVOT: 4,
    CoachingFunctionType.ENCOURAGEMENT: 5,
    CoachingFunctionType.GENERAL_TIP: 6,
}
