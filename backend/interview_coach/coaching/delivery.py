from __future__ import annotations

from enum import Enum
import logging
from threading import Lock
from typing import Any

from core.logger import log_event
from interview_coach.coaching.models import CoachingPrompt
from interview_coach.coaching.storage import KeyValueStore
from interview_coach.system_metrics import increment_metric

logger = logging.getLogger("coaching.delivery")

DELIVERY_MODE_KEY = "coaching.timing.deliveryMode"
AUTO_DISMISS_PRESET_KEY = "coaching.timing.autoDismissPreset"


class AutoDismissPreset(str, Enum):
    QUICK = "quick"
    STANDARD = "standard"
    RELAXED = "relaxed"
    EXTENDED = "extended"
    MANUAL = "manual"

    @property
    def duration(self) -> float | None:
        # None: prompts stay until the user acts
        return {
            AutoDismissPreset.QUICK: 5.0,
            AutoDismissPreset.STANDARD: 8.0,
            AutoDismissPreset.RELAXED: 15.0,
            AutoDismissPreset.EXTENDED: 30.0,
            AutoDismissPreset.MANUAL: None,
        }[self]


class CoachingDeliveryMode(str, Enum):
    REALTIME = "realtime"
    PULL = "pull"
    PREVIEW = "preview"

    @property
    def description(self) -> str:
        return {
            CoachingDeliveryMode.REALTIME: "Prompts appear automatically when triggered",
            CoachingDeliveryMode.PULL: "Prompts queue silently; pull them when you're ready",
            CoachingDeliveryMode.PREVIEW: "See what would trigger without interruptions",
        }[self]


class DeliveryModeRouter:
    """Decides how a validated prompt reaches the interviewer.

    ``realtime`` hands the prompt back to the engine, ``pull`` parks it in a
    priority-ordered queue the user drains explicitly, ``preview`` only logs
    it. Both collections live for the lifetime of the router; changing the
    mode never moves items between them.
    """

    def __init__(self, store: KeyValueStore):
        self._store = store
        self._lock = Lock()
        self._pull_queue: list[CoachingPrompt] = []
        self._preview_log: list[CoachingPrompt] = []
        self.delivery_mode = self._load_enum(DELIVERY_MODE_KEY, CoachingDeliveryMode, CoachingDeliveryMode.REALTIME)
        self.auto_dismiss_preset = self._load_enum(AUTO_DISMISS_PRESET_KEY, AutoDismissPreset, AutoDismissPreset.STANDARD)

    def _load_enum(self, key: str, enum_cls: type[Enum], default: Any) -> Any:
        try:
            raw = self._store.get(key, None)
        except Exception as exc:
            logger.error("delivery setting read failed key=%s error=%s", key, exc)
            increment_metric("coaching_persistence_errors")
            return default
        try:
            return enum_cls(str(raw))
        except ValueError:
            return default

    def _write(self, key: str, value: str) -> None:
        try:
            self._store.set(key, value)
        except Exception as exc:
            logger.error("delivery setting write failed key=%s error=%s", key, exc)
            increment_metric("coaching_persistence_errors")

    def set_delivery_mode(self, mode: CoachingDeliveryMode) -> None:
        self.delivery_mode = CoachingDeliveryMode(mode)
        self._write(DELIVERY_MODE_KEY, self.delivery_mode.value)
        log_event("delivery", "delivery_mode_changed", "", mode=self.delivery_mode.value)

    def set_auto_dismiss_preset(self, preset: AutoDismissPreset) -> None:
        self.auto_dismiss_preset = AutoDismissPreset(preset)
        self._write(AUTO_DISMISS_PRESET_KEY, self.auto_dismiss_preset.value)
        log_event("delivery", "auto_dismiss_preset_changed", "", preset=self.auto_dismiss_preset.value)

    @property
    def effective_auto_dismiss_seconds(self) -> float | None:
        return self.auto_dismiss_preset.duration

    def route(self, prompt: CoachingPrompt) -> CoachingDeliveryMode:
        mode = self.delivery_mode
        if mode == CoachingDeliveryMode.PULL:
            self.enqueue_for_pull(prompt)
        elif mode == CoachingDeliveryMode.PREVIEW:
            self.log_preview(prompt)
        return mode

    def enqueue_for_pull(self, prompt: CoachingPrompt) -> None:
        with self._lock:
            self._pull_queue.append(prompt)
            self._pull_queue.sort(key=lambda item: item.sort_key())
            size = len(self._pull_queue)
        increment_metric("coaching_pull_enqueued")
        log_event("delivery", "prompt_enqueued_for_pull", "", prompt_type=prompt.type.value, queue_size=size)

    def pull_next(self) -> CoachingPrompt | None:
        with self._lock:
            if not self._pull_queue:
                return None
            prompt = self._pull_queue.pop(0)
            remaining = len(self._pull_queue)
        log_event("delivery", "prompt_pulled", "", prompt_type=prompt.type.value, remaining=remaining)
        return prompt

    def requeue_for_pull(self, prompt: CoachingPrompt) -> None:
        with self._lock:
            self._pull_queue.append(prompt)
            self._pull_queue.sort(key=lambda item: item.sort_key())

    def log_preview(self, prompt: CoachingPrompt) -> None:
        with self._lock:
            self._preview_log.append(prompt)
            size = len(self._preview_log)
        increment_metric("coaching_preview_logged")
        log_event("delivery", "prompt_preview_logged", "", prompt_type=prompt.type.value, log_size=size)

    @property
    def pull_queue(self) -> list[CoachingPrompt]:
        with self._lock:
            return list(self._pull_queue)

    @property
    def preview_log(self) -> list[CoachingPrompt]:
        with self._lock:
            return list(self._preview_log)

    @property
    def pull_queue_count(self) -> int:
        with self._lock:
            return len(self._pull_queue)

    @property
    def preview_log_count(self) -> int:
        with self._lock:
            return len(self._preview_log)

    @property
    def has_pending_pull_prompts(self) -> bool:
        return self.pull_queue_count > 0

    def clear_pull_queue(self) -> int:
        with self._lock:
            count = len(self._pull_queue)
            self._pull_queue = []
        log_event("delivery", "pull_queue_cleared", "", removed=count)
        return count

    def clear_preview_log(self) -> int:
        with self._lock:
            count = len(self._preview_log)
            self._preview_log = []
        log_event("delivery", "preview_log_cleared", "", removed=count)
        return count

    def reset_to_defaults(self) -> None:
        self.set_auto_dismiss_preset(AutoDismissPreset.STANDARD)
        self.set_delivery_mode(CoachingDeliveryMode.REALTIME)
        self.clear_pull_queue()
        self.clear_preview_log()

    def snapshot(self) -> dict:
        return {
            "delivery_mode": self.delivery_mode.value,
            "auto_dismiss_preset": self.auto_dismiss_preset.value,
            "effective_auto_dismiss_seconds": self.effective_auto_dismiss_seconds,
            "pull_queue_count": self.pull_queue_count,
            "preview_log_count": self.preview_log_count,
        }


def apply_auto_dismiss_preset(router: DeliveryModeRouter, preferences: Any, preset: AutoDismissPreset) -> None:
    """Persist ``preset``; timed presets also become the custom auto-dismiss override."""
    preset = AutoDismissPreset(preset)
    router.set_auto_dismiss_preset(preset)
    if preset.duration is not None:
        preferences.set_custom_auto_dismiss(preset.duration)
