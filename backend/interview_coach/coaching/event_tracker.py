from __future__ import annotations

from dataclasses import replace
import logging
import time
from typing import Callable

from core.logger import log_event
from interview_coach.coaching.models import (
    CoachingEventRecord,
    CoachingPrompt,
    CoachingResponse,
    PromptTypeAnalytics,
    SessionCoachingStats,
)
from interview_coach.coaching.preferences import PreferenceStore
from interview_coach.coaching.storage import CoachingEventStore
from interview_coach.coaching.thresholds import CoachingFunctionType, ThresholdPolicy
from interview_coach.system_metrics import increment_metric, observe_response_latency, record_response

logger = logging.getLogger("coaching.event_tracker")

MIN_LIFETIME_PROMPTS_FOR_ADAPTATION = 10
MIN_SAMPLES_FOR_EFFECTIVENESS = 3


def _format_timestamp(seconds: float) -> str:
    total = int(max(0.0, float(seconds or 0.0)))
    return f"{total // 60:02d}:{total % 60:02d}"


class EventRecorder:
    """Logs shown prompts and user responses for one session at a time.

    Records are created once per shown prompt and resolved at most once, either
    by a user response or by the auto-dismiss timer. Lifetime counters live in
    the preference store and feed ``adaptive_thresholds``.
    """

    def __init__(
        self,
        preferences: PreferenceStore,
        event_store: CoachingEventStore,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.preferences = preferences
        self.event_store = event_store
        self._clock = clock
        self.session_id: str | None = None
        self.session_events: list[CoachingEventRecord] = []
        self.session_stats = SessionCoachingStats()
        self._shown_clock: dict[str, float] = {}
        self._session_started_at: float | None = None

    def start_session(self, session_id: str) -> None:
        self.session_id = str(session_id)
        self.session_events = []
        self._shown_clock = {}
        self.session_stats = SessionCoachingStats()
        self._session_started_at = self._clock()
        log_event("event_tracker", "coaching_tracking_started", self.session_id)

    def end_session(self, duration_seconds: float | None = None) -> SessionCoachingStats | None:
        if self.session_id is None:
            return None

        session_id = self.session_id
        if duration_seconds is None and self._session_started_at is not None:
            duration_seconds = self._clock() - self._session_started_at
        self.session_stats.session_duration = max(0.0, float(duration_seconds or 0.0))

        summary = self.session_stats.to_dict()
        try:
            self.event_store.save_summary(session_id, summary)
        except Exception as exc:
            logger.error("failed to persist coaching summary session=%s error=%s", session_id, exc)
            increment_metric("coaching_persistence_errors")

        self.preferences.record_session_completed()
        increment_metric("coaching_sessions_completed")
        log_event("event_tracker", "coaching_session_summary", session_id, **summary)

        self.session_id = None
        self._session_started_at = None
        return self.session_stats

    def record_shown(self, prompt: CoachingPrompt, timestamp: float) -> CoachingEventRecord:
        record = CoachingEventRecord(
            id=prompt.id,
            prompt_type=prompt.type,
            prompt_text=prompt.text,
            reason=prompt.reason,
            confidence=prompt.confidence,
            timestamp_seconds=float(timestamp),
            shown_at=time.time(),
        )

        self.session_events.append(record)
        self._shown_clock[prompt.id] = self._clock()
        self.session_stats.prompts_shown += 1
        self.preferences.record_prompt_shown()
        increment_metric("coaching_prompts_shown")

        self._persist_append(record)
        log_event(
            "event_tracker",
            "coaching_prompt_shown",
            self.session_id or "",
            prompt_id=prompt.id,
            prompt_type=prompt.type.value,
            at=_format_timestamp(timestamp),
        )
        return record

    def find(self, prompt_id: str) -> CoachingEventRecord | None:
        for record in self.session_events:
            if record.id == prompt_id:
                return record
        return None

    def record_response(self, prompt_id: str, response: CoachingResponse) -> CoachingEventRecord | None:
        record = self.find(prompt_id)
        if record is None:
            logger.warning("no coaching event for prompt %s", prompt_id)
            return None
        if record.is_resolved:
            logger.warning(
                "coaching event %s already resolved as %s, ignoring %s",
                prompt_id,
                record.response.value,
                CoachingResponse(response).value,
            )
            return record

        response = CoachingResponse(response)
        record.response = response
        record.responded_at = time.time()
        started = self._shown_clock.pop(prompt_id, None)
        if started is not None:
            record.response_time_seconds = max(0.0, self._clock() - started)

        latency = float(record.response_time_seconds or 0.0)
        if response == CoachingResponse.ACCEPTED:
            self.session_stats.prompts_accepted += 1
            self.preferences.record_prompt_accepted()
        elif response == CoachingResponse.DISMISSED:
            self.session_stats.prompts_dismissed += 1
            self.preferences.record_prompt_dismissed()
        elif response == CoachingResponse.SNOOZED:
            self.session_stats.prompts_snoozed += 1
        else:
            self.session_stats.prompts_timed_out += 1

        if response != CoachingResponse.NOT_RESPONDED:
            self.session_stats.total_response_time += latency
            observe_response_latency(latency)
        record_response(response.value)

        self._persist_update(record)
        log_event(
            "event_tracker",
            "coaching_response_recorded",
            self.session_id or "",
            prompt_id=prompt_id,
            response=response.value,
            response_time_seconds=record.response_time_seconds,
        )
        return record

    def record_auto_dismiss(self, prompt_id: str) -> CoachingEventRecord | None:
        return self.record_response(prompt_id, CoachingResponse.NOT_RESPONDED)

    def _persist_append(self, record: CoachingEventRecord) -> None:
        if self.session_id is None:
            return
        try:
            self.event_store.append_event(self.session_id, record.to_dict())
        except Exception as exc:
            logger.error("failed to persist coaching event %s error=%s", record.id, exc)
            increment_metric("coaching_persistence_errors")

    def _persist_update(self, record: CoachingEventRecord) -> None:
        if self.session_id is None:
            return
        try:
            self.event_store.update_event(
                self.session_id,
                record.id,
                {
                    "response": record.response.value,
                    "responded_at": record.responded_at,
                    "response_time_seconds": record.response_time_seconds,
                },
            )
        except Exception as exc:
            logger.error("failed to update coaching event %s error=%s", record.id, exc)
            increment_metric("coaching_persistence_errors")

    def adaptive_thresholds(self, base: ThresholdPolicy) -> ThresholdPolicy:
        """Tune ``base`` from lifetime behaviour.

        The dismissal adjustment is applied first and the acceptance adjustment
        is applied on top of its result when both rates exceed their limits.
        """
        if self.preferences.total_prompts_shown < MIN_LIFETIME_PROMPTS_FOR_ADAPTATION:
            return base
        if base.max_prompts_per_session == 0:
            return base

        adapted = base

        if self.preferences.dismissal_rate() > 0.7:
            adapted = replace(
                adapted,
                minimum_confidence=min(0.95, adapted.minimum_confidence + 0.05),
                cooldown_seconds=adapted.cooldown_seconds * 1.2,
                max_prompts_per_session=max(2, adapted.max_prompts_per_session - 1),
                sensitivity_multiplier=adapted.sensitivity_multiplier * 0.8,
            )
            log_event("event_tracker", "adaptive_thresholds_reduced", self.session_id or "")

        if self.preferences.acceptance_rate() > 0.8:
            adapted = replace(
                adapted,
                minimum_confidence=max(0.70, adapted.minimum_confidence - 0.03),
                cooldown_seconds=adapted.cooldown_seconds * 0.9,
            )
            log_event("event_tracker", "adaptive_thresholds_increased", self.session_id or "")

        return adapted

    def type_analytics(self, function_type: CoachingFunctionType) -> PromptTypeAnalytics:
        events = [record for record in self.session_events if record.prompt_type == function_type]
        total = len(events)
        accepted = sum(1 for record in events if record.response == CoachingResponse.ACCEPTED)
        dismissed = sum(1 for record in events if record.response == CoachingResponse.DISMISSED)
        response_times = [record.response_time_seconds for record in events if record.response_time_seconds is not None]

        return PromptTypeAnalytics(
            type=function_type,
            total_shown=total,
            accepted=accepted,
            dismissed=dismissed,
            acceptance_rate=(accepted / total) if total else 0.0,
            average_response_time=(sum(response_times) / len(response_times)) if response_times else 0.0,
        )

    def most_effective_types(self) -> list[CoachingFunctionType]:
        analytics = [self.type_analytics(function_type) for function_type in CoachingFunctionType]
        eligible = [item for item in analytics if item.total_shown >= MIN_SAMPLES_FOR_EFFECTIVENESS]
        eligible.sort(key=lambda item: item.acceptance_rate, reverse=True)
        return [item.type for item in eligible]
