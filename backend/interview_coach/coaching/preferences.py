from __future__ import annotations

from dataclasses import replace
from enum import Enum
import logging
from typing import Any

from core.logger import log_event
from interview_coach.coaching.storage import KeyValueStore
from interview_coach.coaching.thresholds import CoachingLevel, ThresholdPolicy
from interview_coach.system_metrics import increment_metric

logger = logging.getLogger("coaching.preferences")


class OverlayPosition(str, Enum):
    TOP_LEFT = "top_left"
    TOP_RIGHT = "top_right"
    BOTTOM_LEFT = "bottom_left"
    BOTTOM_RIGHT = "bottom_right"
    CENTER = "center"


class Keys:
    HAS_COMPLETED_ONBOARDING = "coaching.hasCompletedOnboarding"
    COACHING_LEVEL = "coaching.level"
    IS_COACHING_ENABLED = "coaching.isEnabled"
    CUSTOM_SENSITIVITY = "coaching.customSensitivity"
    SHOW_NOTIFICATION_BADGE = "coaching.showNotificationBadge"
    PLAY_SOUND_ON_PROMPT = "coaching.playSoundOnPrompt"
    OVERLAY_POSITION = "coaching.overlayPosition"
    CUSTOM_AUTO_DISMISS = "coaching.customAutoDismissDuration"
    SESSIONS_COMPLETED = "coaching.sessionsCompleted"
    TOTAL_PROMPTS_SHOWN = "coaching.totalPromptsShown"
    TOTAL_PROMPTS_ACCEPTED = "coaching.totalPromptsAccepted"
    TOTAL_PROMPTS_DISMISSED = "coaching.totalPromptsDismissed"


def _safe_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except Exception:
        return default


def _safe_int(value: Any, default: int = 0) -> int:
    try:
        return max(0, int(value))
    except Exception:
        return default


class PreferenceStore:
    """Per-user coaching preferences and lifetime counters.

    Coaching is opt-in: a fresh store reports ``should_coaching_run() is False``
    until ``enable()`` is called and onboarding is completed. Every mutation is
    written through to the backing store immediately; a failed write is logged
    and the in-memory value is kept.
    """

    def __init__(self, store: KeyValueStore):
        self._store = store

        self.has_completed_onboarding = bool(self._read(Keys.HAS_COMPLETED_ONBOARDING, False))
        self.is_coaching_enabled = bool(self._read(Keys.IS_COACHING_ENABLED, False))
        self.coaching_level = self._parse_level(self._read(Keys.COACHING_LEVEL, None))
        self.custom_sensitivity = _safe_float(self._read(Keys.CUSTOM_SENSITIVITY, 1.0), 1.0)
        self.show_notification_badge = bool(self._read(Keys.SHOW_NOTIFICATION_BADGE, True))
        self.play_sound_on_prompt = bool(self._read(Keys.PLAY_SOUND_ON_PROMPT, False))
        self.overlay_position = self._parse_position(self._read(Keys.OVERLAY_POSITION, None))

        raw_dismiss = self._read(Keys.CUSTOM_AUTO_DISMISS, None)
        self.custom_auto_dismiss_seconds: float | None = (
            None if raw_dismiss is None else _safe_float(raw_dismiss, 8.0)
        )

        self.sessions_completed = _safe_int(self._read(Keys.SESSIONS_COMPLETED, 0))
        self.total_prompts_shown = _safe_int(self._read(Keys.TOTAL_PROMPTS_SHOWN, 0))
        self.total_prompts_accepted = _safe_int(self._read(Keys.TOTAL_PROMPTS_ACCEPTED, 0))
        self.total_prompts_dismissed = _safe_int(self._read(Keys.TOTAL_PROMPTS_DISMISSED, 0))

    @staticmethod
    def _parse_level(raw: Any) -> CoachingLevel:
        try:
            return CoachingLevel(str(raw))
        except ValueError:
            return CoachingLevel.BALANCED

    @staticmethod
    def _parse_position(raw: Any) -> OverlayPosition:
        try:
            return OverlayPosition(str(raw))
        except ValueError:
            return OverlayPosition.BOTTOM_RIGHT

    def _read(self, key: str, default: Any) -> Any:
        try:
            return self._store.get(key, default)
        except Exception as exc:
            logger.error("preference read failed key=%s error=%s", key, exc)
            increment_metric("coaching_persistence_errors")
            return default

    def _write(self, key: str, value: Any) -> None:
        try:
            if value is None:
                self._store.delete(key)
            else:
                self._store.set(key, value)
        except Exception as exc:
            logger.error("preference write failed key=%s error=%s", key, exc)
            increment_metric("coaching_persistence_errors")

    # -- derived -----------------------------------------------------------

    @property
    def is_first_session(self) -> bool:
        return self.sessions_completed == 0

    def should_coaching_run(self) -> bool:
        if not self.is_coaching_enabled:
            return False
        if not self.has_completed_onboarding:
            return False
        return self.coaching_level != CoachingLevel.OFF

    def effective_thresholds(self) -> ThresholdPolicy:
        base = self.coaching_level.thresholds
        auto_dismiss = self.custom_auto_dismiss_seconds
        return replace(
            base,
            auto_dismiss_seconds=base.auto_dismiss_seconds if auto_dismiss is None else auto_dismiss,
            sensitivity_multiplier=self.custom_sensitivity,
        )

    def acceptance_rate(self) -> float:
        if self.total_prompts_shown <= 0:
            return 0.0
        return self.total_prompts_accepted / self.total_prompts_shown

    def dismissal_rate(self) -> float:
        if self.total_prompts_shown <= 0:
            return 0.0
        return self.total_prompts_dismissed / self.total_prompts_shown

    # -- settings ----------------------------------------------------------

    def complete_onboarding(self) -> None:
        self.has_completed_onboarding = True
        self._write(Keys.HAS_COMPLETED_ONBOARDING, True)
        log_event("preferences", "coaching_onboarding_completed", "")

    def enable(self, level: CoachingLevel = CoachingLevel.BALANCED) -> None:
        self.set_coaching_enabled(True)
        self.set_level(level)
        log_event("preferences", "coaching_enabled", "", coaching_level=self.coaching_level.value)

    def disable(self) -> None:
        self.set_coaching_enabled(False)
        log_event("preferences", "coaching_disabled", "")

    def set_coaching_enabled(self, value: bool) -> None:
        self.is_coaching_enabled = bool(value)
        self._write(Keys.IS_COACHING_ENABLED, self.is_coaching_enabled)

    def set_level(self, level: CoachingLevel) -> None:
        self.coaching_level = CoachingLevel(level)
        self._write(Keys.COACHING_LEVEL, self.coaching_level.value)

    def set_custom_sensitivity(self, value: float) -> None:
        self.custom_sensitivity = _safe_float(value, 1.0)
        self._write(Keys.CUSTOM_SENSITIVITY, self.custom_sensitivity)

    def set_custom_auto_dismiss(self, seconds: float | None) -> None:
        self.custom_auto_dismiss_seconds = None if seconds is None else max(1.0, _safe_float(seconds, 8.0))
        self._write(Keys.CUSTOM_AUTO_DISMISS, self.custom_auto_dismiss_seconds)

    def set_show_notification_badge(self, value: bool) -> None:
        self.show_notification_badge = bool(value)
        self._write(Keys.SHOW_NOTIFICATION_BADGE, self.show_notification_badge)

    def set_play_sound_on_prompt(self, value: bool) -> None:
        self.play_sound_on_prompt = bool(value)
        self._write(Keys.PLAY_SOUND_ON_PROMPT, self.play_sound_on_prompt)

    def set_overlay_position(self, position: OverlayPosition) -> None:
        self.overlay_position = OverlayPosition(position)
        self._write(Keys.OVERLAY_POSITION, self.overlay_position.value)

    # -- lifetime counters -------------------------------------------------

    def record_session_completed(self) -> None:
        self.sessions_completed += 1
        self._write(Keys.SESSIONS_COMPLETED, self.sessions_completed)

    def record_prompt_shown(self) -> None:
        self.total_prompts_shown += 1
        self._write(Keys.TOTAL_PROMPTS_SHOWN, self.total_prompts_shown)

    def record_prompt_accepted(self) -> None:
        self.total_prompts_accepted += 1
        self._write(Keys.TOTAL_PROMPTS_ACCEPTED, self.total_prompts_accepted)

    def record_prompt_dismissed(self) -> None:
        self.total_prompts_dismissed += 1
        self._write(Keys.TOTAL_PROMPTS_DISMISSED, self.total_prompts_dismissed)

    def reset_statistics(self) -> None:
        self.sessions_completed = 0
        self.total_prompts_shown = 0
        self.total_prompts_accepted = 0
        self.total_prompts_dismissed = 0
        for key in (
            Keys.SESSIONS_COMPLETED,
            Keys.TOTAL_PROMPTS_SHOWN,
            Keys.TOTAL_PROMPTS_ACCEPTED,
            Keys.TOTAL_PROMPTS_DISMISSED,
        ):
            self._write(key, 0)
        log_event("preferences", "coaching_statistics_reset", "")

    def reset_to_defaults(self) -> None:
        self.has_completed_onboarding = False
        self._write(Keys.HAS_COMPLETED_ONBOARDING, False)
        self.disable()
        self.set_level(CoachingLevel.BALANCED)
        self.set_custom_sensitivity(1.0)
        self.set_show_notification_badge(True)
        self.set_play_sound_on_prompt(False)
        self.set_overlay_position(OverlayPosition.BOTTOM_RIGHT)
        self.set_custom_auto_dismiss(None)
        self.reset_statistics()

    def snapshot(self) -> dict:
        return {
            "has_completed_onboarding": self.has_completed_onboarding,
            "is_coaching_enabled": self.is_coaching_enabled,
            "coaching_level": self.coaching_level.value,
            "custom_sensitivity": self.custom_sensitivity,
            "custom_auto_dismiss_seconds": self.custom_auto_dismiss_seconds,
            "show_notification_badge": self.show_notification_badge,
            "play_sound_on_prompt": self.play_sound_on_prompt,
            "overlay_position": self.overlay_position.value,
            "sessions_completed": self.sessions_completed,
            "total_prompts_shown": self.total_prompts_shown,
            "total_prompts_accepted": self.total_prompts_accepted,
            "total_prompts_dismissed": self.total_prompts_dismissed,
            "acceptance_rate": round(self.acceptance_rate(), 4),
            "dismissal_rate": round(self.dismissal_rate(), 4),
            "should_coaching_run": self.should_coaching_run(),
        }
