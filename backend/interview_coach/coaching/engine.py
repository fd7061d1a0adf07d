from __future__ import annotations

import asyncio
import logging
from typing import Any

from core.logger import log_event
from interview_coach.coaching.classifier import PromptClassifier
from interview_coach.coaching.delivery import (
    AutoDismissPreset,
    CoachingDeliveryMode,
    DeliveryModeRouter,
    apply_auto_dismiss_preset,
)
from interview_coach.coaching.event_bus import CoachingEventBus, CoachingEventKind, CoachingStateEvent
from interview_coach.coaching.event_tracker import EventRecorder
from interview_coach.coaching.models import (
    CoachingPrompt,
    CoachingResponse,
    FunctionCallEvent,
    PromptOutcome,
    SessionCoachingStats,
)
from interview_coach.coaching.preferences import PreferenceStore
from interview_coach.coaching.scheduler import ScheduledCall, Scheduler
from interview_coach.coaching.thresholds import DEFAULT_THRESHOLDS, ThresholdPolicy
from interview_coach.system_metrics import increment_metric

logger = logging.getLogger("coaching.engine")

SETTLE_DELAY_SECONDS = 0.5
MIN_RETRY_DELAY_SECONDS = 1.0
RETRY_PADDING_SECONDS = 0.5


class CoachingEngine:
    """Decides whether, when and what coaching prompt to surface for one session.

    All mutable state is guarded by one ``asyncio.Lock``. The auto-dismiss
    timer and user responses race on the visible prompt; whoever clears it
    first wins and the other side becomes a no-op because it re-checks the
    prompt id under the lock. State-change events are collected while the lock
    is held and published after it is released, in mutation order.
    """

    def __init__(
        self,
        preferences: PreferenceStore,
        recorder: EventRecorder,
        delivery: DeliveryModeRouter,
        bus: CoachingEventBus,
        scheduler: Scheduler,
        classifier: PromptClassifier | None = None,
    ):
        self.preferences = preferences
        self.recorder = recorder
        self.delivery = delivery
        self.bus = bus
        self.scheduler = scheduler
        self.classifier = classifier or PromptClassifier()

        self.session_id: str | None = None
        self.enabled = False
        self.thresholds: ThresholdPolicy = DEFAULT_THRESHOLDS
        self.current_prompt: CoachingPrompt | None = None
        self.current_timestamp = 0.0
        self.last_prompt_shown_at: float | None = None
        self.last_speech_at: float | None = None

        self._pending: list[CoachingPrompt] = []
        self._prompt_count = 0
        self._auto_dismiss_call: ScheduledCall | None = None
        self._retry_call: ScheduledCall | None = None
        self._retry_seq = 0

        self._lock = asyncio.Lock()
        self._outbox: list[CoachingStateEvent] = []
        self._publishing = False

    # -- observable state --------------------------------------------------

    @property
    def pending_prompts(self) -> list[CoachingPrompt]:
        return list(self._pending)

    @property
    def prompt_count(self) -> int:
        return self._prompt_count

    @property
    def has_reached_max_prompts(self) -> bool:
        return self._prompt_count >= self.thresholds.max_prompts_per_session

    @property
    def cooldown_remaining(self) -> float:
        if self.last_prompt_shown_at is None:
            return 0.0
        elapsed = self.scheduler.now() - self.last_prompt_shown_at
        return max(0.0, self.thresholds.effective_cooldown - elapsed)

    @property
    def is_in_cooldown(self) -> bool:
        return self.cooldown_remaining > 0.0

    @property
    def speech_quiet_remaining(self) -> float:
        if self.last_speech_at is None:
            return 0.0
        elapsed = self.scheduler.now() - self.last_speech_at
        return max(0.0, self.thresholds.speech_quiet_seconds - elapsed)

    @property
    def has_pending_retry(self) -> bool:
        return self._retry_call is not None and self._retry_call.pending

    @property
    def has_pending_auto_dismiss(self) -> bool:
        return self._auto_dismiss_call is not None and self._auto_dismiss_call.pending

    def snapshot(self) -> dict:
        return {
            "session_id": self.session_id,
            "enabled": self.enabled,
            "current_prompt": self.current_prompt.to_dict() if self.current_prompt else None,
            "pending_prompts": [prompt.to_dict() for prompt in self._pending],
            "prompt_count": self._prompt_count,
            "has_reached_max_prompts": self.has_reached_max_prompts,
            "cooldown_remaining": round(self.cooldown_remaining, 3),
            "speech_quiet_remaining": round(self.speech_quiet_remaining, 3),
            "current_timestamp": self.current_timestamp,
            "thresholds": self.thresholds.to_dict(),
            "delivery": self.delivery.snapshot(),
        }

    # -- gates ---------------------------------------------------------------

    def validate(self, prompt: CoachingPrompt) -> bool:
        if self.has_reached_max_prompts:
            logger.debug("max prompts reached (%s)", self.thresholds.max_prompts_per_session)
            return False
        threshold = self.thresholds.effective_confidence_threshold
        if prompt.confidence < threshold:
            logger.debug("confidence too low: %.2f < %.2f", prompt.confidence, threshold)
            return False
        return True

    def can_show_now(self) -> bool:
        if self.current_prompt is not None:
            return False
        if self.is_in_cooldown:
            logger.debug("in cooldown: %.1fs remaining", self.cooldown_remaining)
            return False
        if self.speech_quiet_remaining > 0.0:
            logger.debug("speech quiet window: %.1fs remaining", self.speech_quiet_remaining)
            return False
        return True

    def retry_delay(self) -> float:
        delay = MIN_RETRY_DELAY_SECONDS
        cooldown = self.cooldown_remaining
        if cooldown > 0.0:
            delay = max(delay, cooldown + RETRY_PADDING_SECONDS)
        speech = self.speech_quiet_remaining
        if speech > 0.0:
            delay = max(delay, speech + RETRY_PADDING_SECONDS)
        return delay

    # -- session lifecycle ---------------------------------------------------

    async def start_session(self, session_id: str) -> None:
        async with self._lock:
            self._cancel_timers()
            self.session_id = str(session_id)
            self.recorder.start_session(self.session_id)

            self.current_prompt = None
            self._pending = []
            self._prompt_count = 0
            self.last_prompt_shown_at = None
            self.last_speech_at = None
            self.current_timestamp = 0.0

            self.enabled = self.preferences.should_coaching_run()
            self.thresholds = self.recorder.adaptive_thresholds(self.preferences.effective_thresholds())

            log_event(
                "engine",
                "coaching_session_started",
                self.session_id,
                enabled=self.enabled,
                coaching_level=self.preferences.coaching_level.value,
                max_prompts=self.thresholds.max_prompts_per_session,
                confidence_threshold=round(self.thresholds.effective_confidence_threshold, 4),
            )
            self._emit(CoachingEventKind.SESSION_STARTED, enabled=self.enabled)
        await self._flush_events()

    async def end_session(self, duration_seconds: float | None = None) -> SessionCoachingStats | None:
        async with self._lock:
            if self.session_id is None:
                return None
            session_id = self.session_id
            self._cancel_timers()

            # session end is not a user action; nothing is recorded for the visible prompt
            had_prompt = self.current_prompt is not None
            self.current_prompt = None

            stats = self.recorder.end_session(duration_seconds)
            self._pending = []
            self.session_id = None
            self.enabled = False

            log_event("engine", "coaching_session_ended", session_id, prompt_count=self._prompt_count)
            if had_prompt:
                self._emit(CoachingEventKind.PROMPT_CLEARED, session_id=session_id, reason="session_ended")
            self._emit(
                CoachingEventKind.SESSION_ENDED,
                session_id=session_id,
                stats=stats.to_dict() if stats else {},
            )
        await self._flush_events()
        return stats

    # -- driver input ----------------------------------------------------------

    async def process_function_call(self, event: FunctionCallEvent) -> PromptOutcome:
        async with self._lock:
            if not self.enabled:
                logger.debug("coaching disabled, ignoring function call: %s", event.name)
                return PromptOutcome.DISABLED

            prompt = self.classifier.classify(event.name, event.arguments, event.timestamp)
            if prompt is None:
                increment_metric("coaching_prompts_unclassified")
                log_event("engine", "coaching_event_unclassified", self.session_id or "", event_name=event.name)
                return PromptOutcome.UNCLASSIFIED

            outcome = self._queue_prompt_locked(prompt)
        await self._flush_events()
        return outcome

    async def queue_prompt(self, prompt: CoachingPrompt) -> PromptOutcome:
        async with self._lock:
            if not self.enabled:
                return PromptOutcome.DISABLED
            outcome = self._queue_prompt_locked(prompt)
        await self._flush_events()
        return outcome

    def notify_speech_detected(self) -> None:
        self.last_speech_at = self.scheduler.now()

    def update_timestamp(self, timestamp: float) -> None:
        self.current_timestamp = float(timestamp)

    # -- user control --------------------------------------------------------

    async def dismiss(self, response: CoachingResponse = CoachingResponse.DISMISSED) -> bool:
        async with self._lock:
            resolved = self._dismiss_locked(CoachingResponse(response))
        await self._flush_events()
        return resolved

    async def accept(self) -> bool:
        return await self.dismiss(CoachingResponse.ACCEPTED)

    async def snooze(self) -> bool:
        async with self._lock:
            if self.current_prompt is None:
                return False
            # defers the next prompt; the snoozed one is not shown again
            self.last_prompt_shown_at = self.scheduler.now()
            resolved = self._dismiss_locked(CoachingResponse.SNOOZED)
        await self._flush_events()
        return resolved

    async def enable(self) -> bool:
        async with self._lock:
            if self.enabled:
                return False
            self.enabled = True
            self.preferences.set_coaching_enabled(True)
            log_event("engine", "coaching_enabled", self.session_id or "")
            self._emit(CoachingEventKind.COACHING_ENABLED)
            self._drain_locked()
        await self._flush_events()
        return True

    async def disable(self) -> bool:
        async with self._lock:
            if not self.enabled:
                return False
            self.enabled = False
            self.preferences.disable()
            if self.current_prompt is not None:
                self._dismiss_locked(CoachingResponse.DISMISSED, settle=False)
            if self._pending:
                self._pending = []
                self._emit(CoachingEventKind.QUEUE_CHANGED, size=0)
            self._cancel_retry()
            log_event("engine", "coaching_disabled", self.session_id or "")
            self._emit(CoachingEventKind.COACHING_DISABLED)
        await self._flush_events()
        return True

    async def pull_next(self) -> CoachingPrompt | None:
        """Show the best pull-queue item on explicit request.

        Cooldown and speech gates do not apply, a visible prompt is never
        replaced, and the session prompt cap still applies.
        """
        async with self._lock:
            if not self.enabled or self.session_id is None or self.current_prompt is not None:
                return None
            prompt = self.delivery.pull_next()
            if prompt is None:
                return None
            if self.has_reached_max_prompts:
                self.delivery.requeue_for_pull(prompt)
                return None
            self._show_locked(prompt)
            self._emit(CoachingEventKind.PULL_QUEUE_CHANGED, size=self.delivery.pull_queue_count)
        await self._flush_events()
        return prompt

    async def set_auto_dismiss_preset(self, preset: AutoDismissPreset) -> None:
        async with self._lock:
            apply_auto_dismiss_preset(self.delivery, self.preferences, preset)

    async def set_delivery_mode(self, mode: CoachingDeliveryMode) -> None:
        async with self._lock:
            self.delivery.set_delivery_mode(CoachingDeliveryMode(mode))

    async def refresh_thresholds(self) -> ThresholdPolicy:
        """Re-read level and sensitivity from preferences for the running session.

        Prompts already counted against the cap stay counted; a looser cooldown
        lets the pending queue drain sooner.
        """
        async with self._lock:
            if self.session_id is None:
                return self.thresholds
            self.thresholds = self.recorder.adaptive_thresholds(self.preferences.effective_thresholds())
            log_event(
                "engine",
                "coaching_thresholds_refreshed",
                self.session_id,
                coaching_level=self.preferences.coaching_level.value,
                max_prompts=self.thresholds.max_prompts_per_session,
                confidence_threshold=round(self.thresholds.effective_confidence_threshold, 4),
            )
            if self.current_prompt is None and self._pending:
                self._cancel_retry()
                self._drain_locked()
            thresholds = self.thresholds
        await self._flush_events()
        return thresholds

    # -- internals (lock held) -----------------------------------------------

    def _queue_prompt_locked(self, prompt: CoachingPrompt) -> PromptOutcome:
        if not self.validate(prompt):
            increment_metric("coaching_prompts_rejected")
            logger.debug("prompt failed validation: %s", prompt.type.value)
            return PromptOutcome.REJECTED

        mode = self.delivery.route(prompt)
        if mode == CoachingDeliveryMode.PULL:
            self._emit(CoachingEventKind.PULL_QUEUE_CHANGED, size=self.delivery.pull_queue_count)
            return PromptOutcome.PULL_QUEUED
        if mode == CoachingDeliveryMode.PREVIEW:
            self._emit(CoachingEventKind.PREVIEW_LOGGED, prompt=prompt.to_dict())
            return PromptOutcome.PREVIEW_LOGGED

        if self.can_show_now():
            self._show_locked(prompt)
            return PromptOutcome.SHOWN

        self._pending.append(prompt)
        self._pending.sort(key=lambda item: item.sort_key())
        increment_metric("coaching_prompts_queued")
        logger.debug("prompt queued: %s, queue size: %s", prompt.type.value, len(self._pending))
        self._emit(CoachingEventKind.QUEUE_CHANGED, size=len(self._pending))

        # a visible prompt drains the queue when it clears
        if self.current_prompt is None and not self.has_pending_retry:
            self._schedule_drain(self.retry_delay())
        return PromptOutcome.QUEUED

    def _show_locked(self, prompt: CoachingPrompt) -> None:
        self.recorder.record_shown(prompt, self.current_timestamp)
        self.last_prompt_shown_at = self.scheduler.now()
        self.current_prompt = prompt
        self._prompt_count += 1

        duration = self._auto_dismiss_duration()
        if duration is not None:
            self._auto_dismiss_call = self.scheduler.call_later(
                duration,
                lambda prompt_id=prompt.id: self._on_auto_dismiss(prompt_id),
                name="auto_dismiss",
            )

        log_event(
            "engine",
            "coaching_prompt_shown",
            self.session_id or "",
            prompt_id=prompt.id,
            prompt_type=prompt.type.value,
            confidence=round(prompt.confidence, 4),
            text=prompt.text,
            auto_dismiss_seconds=duration,
        )
        self._emit(CoachingEventKind.PROMPT_SHOWN, prompt=prompt.to_dict(), auto_dismiss_seconds=duration)

    def _auto_dismiss_duration(self) -> float | None:
        if self.delivery.auto_dismiss_preset == AutoDismissPreset.MANUAL:
            return None
        override = self.preferences.custom_auto_dismiss_seconds
        if override is None:
            return self.thresholds.auto_dismiss_seconds
        return min(float(override), self.thresholds.auto_dismiss_seconds)

    def _dismiss_locked(self, response: CoachingResponse, settle: bool = True) -> bool:
        prompt = self.current_prompt
        if prompt is None:
            return False

        self._cancel_auto_dismiss()
        self.recorder.record_response(prompt.id, response)
        self.current_prompt = None
        log_event("engine", "coaching_prompt_dismissed", self.session_id or "", prompt_id=prompt.id, response=response.value)
        self._emit(CoachingEventKind.PROMPT_CLEARED, prompt_id=prompt.id, reason=response.value)

        if settle and self._pending:
            self._schedule_drain(SETTLE_DELAY_SECONDS)
        return True

    def _drain_locked(self) -> None:
        if not self.enabled or not self._pending:
            return
        if not self.can_show_now():
            if self.current_prompt is None:
                self._schedule_drain(self.retry_delay())
            return

        prompt = self._pending.pop(0)
        self._emit(CoachingEventKind.QUEUE_CHANGED, size=len(self._pending))
        if not self.validate(prompt):
            increment_metric("coaching_prompts_rejected")
            logger.debug("queued prompt no longer valid: %s", prompt.type.value)
            self._drain_locked()
            return
        self._show_locked(prompt)

    def _schedule_drain(self, delay: float) -> None:
        self._cancel_retry()
        self._retry_call = self.scheduler.call_later(
            delay,
            lambda seq=self._retry_seq: self._on_retry(seq),
            name="drain_retry",
        )

    def _cancel_auto_dismiss(self) -> None:
        if self._auto_dismiss_call is not None:
            self._auto_dismiss_call.cancel()
            self._auto_dismiss_call = None

    def _cancel_retry(self) -> None:
        self._retry_seq += 1
        if self._retry_call is not None:
            self._retry_call.cancel()
            self._retry_call = None

    def _cancel_timers(self) -> None:
        self._cancel_auto_dismiss()
        self._cancel_retry()

    def _emit(self, kind: CoachingEventKind, session_id: str | None = None, **payload: Any) -> None:
        self._outbox.append(
            CoachingStateEvent(kind=kind, session_id=str(session_id or self.session_id or ""), payload=payload)
        )

    # -- scheduled callbacks -------------------------------------------------

    async def _on_auto_dismiss(self, prompt_id: str) -> None:
        async with self._lock:
            if self.current_prompt is None or self.current_prompt.id != prompt_id:
                logger.debug("stale auto-dismiss for %s ignored", prompt_id)
                return
            self._auto_dismiss_call = None
            self.recorder.record_auto_dismiss(prompt_id)
            self.current_prompt = None
            log_event("engine", "coaching_prompt_auto_dismissed", self.session_id or "", prompt_id=prompt_id)
            self._emit(CoachingEventKind.PROMPT_CLEARED, prompt_id=prompt_id, reason=CoachingResponse.NOT_RESPONDED.value)
            self._drain_locked()
        await self._flush_events()

    async def _on_retry(self, seq: int) -> None:
        async with self._lock:
            # a retry that fired while its successor was being armed must not clear it
            if seq != self._retry_seq:
                logger.debug("stale drain retry %s ignored", seq)
                return
            self._retry_call = None
            self._drain_locked()
        await self._flush_events()

    async def _flush_events(self) -> None:
        # re-entrant calls leave delivery to the outer loop
        if self._publishing:
            return
        self._publishing = True
        try:
            while self._outbox:
                event = self._outbox.pop(0)
                await self.bus.publish(event)
        finally:
            self._publishing = False
