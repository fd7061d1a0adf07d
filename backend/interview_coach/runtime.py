from __future__ import annotations

import asyncio
import logging
from typing import Callable

from core.config import COACHING_INSTANCE_ID
from core.logger import log_event
from interview_coach.coaching.classifier import PromptClassifier
from interview_coach.coaching.delivery import (
    AutoDismissPreset,
    CoachingDeliveryMode,
    DeliveryModeRouter,
    apply_auto_dismiss_preset,
)
from interview_coach.coaching.engine import CoachingEngine
from interview_coach.coaching.event_bus import CoachingEventBus, build_coaching_event_bus
from interview_coach.coaching.event_tracker import EventRecorder
from interview_coach.coaching.models import SessionCoachingStats
from interview_coach.coaching.preferences import PreferenceStore
from interview_coach.coaching.scheduler import AsyncioScheduler, Scheduler
from interview_coach.coaching.storage import (
    CoachingEventStore,
    KeyValueStore,
    build_coaching_event_store,
    build_key_value_store,
)
from interview_coach.coaching.view_model import CoachingViewModel
from interview_coach.session.registry import CoachingSessionEntry, SessionRegistry
from interview_coach.system_metrics import decrement_metric, increment_metric

logger = logging.getLogger("coaching.runtime")


class CoachingRuntime:
    """Process-wide collaborators plus one engine per live session.

    Preferences, the delivery router, the event store and the bus are shared;
    every session gets its own scheduler, recorder, engine and view model.
    """

    def __init__(
        self,
        kv_store: KeyValueStore,
        event_store: CoachingEventStore,
        bus: CoachingEventBus,
        scheduler_factory: Callable[[], Scheduler] = AsyncioScheduler,
    ):
        self.kv_store = kv_store
        self.event_store = event_store
        self.bus = bus
        self.preferences = PreferenceStore(kv_store)
        self.delivery = DeliveryModeRouter(kv_store)
        self.classifier = PromptClassifier()
        self.registry = SessionRegistry()
        self._scheduler_factory = scheduler_factory
        self._lock = asyncio.Lock()

    async def start_session(self, session_id: str) -> CoachingEngine:
        sid = str(session_id or "").strip()
        if not sid:
            raise ValueError("session_id is required")

        async with self._lock:
            if self.registry.get_active(sid) is not None:
                logger.info("restarting live coaching session %s", sid)
                await self._end_locked(sid, None)

            scheduler = self._scheduler_factory()
            recorder = EventRecorder(self.preferences, self.event_store, clock=scheduler.now)
            engine = CoachingEngine(
                preferences=self.preferences,
                recorder=recorder,
                delivery=self.delivery,
                bus=self.bus,
                scheduler=scheduler,
                classifier=self.classifier,
            )
            view_model = CoachingViewModel(engine, sid)
            self.registry.register(sid, engine, view_model)
            increment_metric("coaching_sessions_active")

        await engine.start_session(sid)
        log_event("runtime", "coaching_runtime_session_started", sid, enabled=engine.enabled)
        return engine

    def get_entry(self, session_id: str) -> CoachingSessionEntry | None:
        entry = self.registry.get(str(session_id or "").strip())
        if entry is not None and entry.active:
            self.registry.touch(entry.session_id)
        return entry

    def get_engine(self, session_id: str) -> CoachingEngine | None:
        entry = self.registry.get_active(str(session_id or "").strip())
        if entry is None:
            return None
        self.registry.touch(entry.session_id)
        return entry.engine

    def get_view_model(self, session_id: str) -> CoachingViewModel | None:
        entry = self.registry.get_active(str(session_id or "").strip())
        return entry.view_model if entry else None

    def live_engines(self) -> list[CoachingEngine]:
        engines = []
        for session_id in self.registry.active_session_ids():
            entry = self.registry.get_active(session_id)
            if entry is not None:
                engines.append(entry.engine)
        return engines

    async def refresh_thresholds(self) -> int:
        engines = self.live_engines()
        for engine in engines:
            await engine.refresh_thresholds()
        return len(engines)

    async def set_delivery_mode(self, mode: CoachingDeliveryMode) -> None:
        # the router is shared; going through each engine serialises with its lock
        engines = self.live_engines()
        if not engines:
            self.delivery.set_delivery_mode(mode)
        for engine in engines:
            await engine.set_delivery_mode(mode)

    async def set_auto_dismiss_preset(self, preset: AutoDismissPreset) -> None:
        engines = self.live_engines()
        if not engines:
            apply_auto_dismiss_preset(self.delivery, self.preferences, preset)
        for engine in engines:
            await engine.set_auto_dismiss_preset(preset)

    def cleanup_inactive(self, ttl_sec: float) -> int:
        removed = self.registry.cleanup_inactive(ttl_sec)
        if removed > 0:
            logger.info("[SYSTEM] cleaned inactive coaching sessions=%s", removed)
        return removed

    async def end_session(self, session_id: str, duration_seconds: float | None = None) -> SessionCoachingStats | None:
        async with self._lock:
            return await self._end_locked(str(session_id or "").strip(), duration_seconds)

    async def _end_locked(self, session_id: str, duration_seconds: float | None) -> SessionCoachingStats | None:
        entry = self.registry.get_active(session_id)
        if entry is None:
            return None

        engine: CoachingEngine = entry.engine
        stats = await engine.end_session(duration_seconds)
        entry.view_model.close()
        await engine.scheduler.shutdown()
        self.registry.mark_inactive(session_id)
        decrement_metric("coaching_sessions_active")
        log_event("runtime", "coaching_runtime_session_ended", session_id)
        return stats

    async def shutdown(self) -> int:
        ended = 0
        async with self._lock:
            for session_id in self.registry.active_session_ids():
                try:
                    await self._end_locked(session_id, None)
                    ended += 1
                except Exception as exc:
                    logger.error("failed to end coaching session %s on shutdown: %s", session_id, exc)
        logger.info("[SYSTEM] coaching runtime shutdown ended_sessions=%s", ended)
        return ended


def build_coaching_runtime() -> CoachingRuntime:
    return CoachingRuntime(
        kv_store=build_key_value_store(),
        event_store=build_coaching_event_store(),
        bus=build_coaching_event_bus(COACHING_INSTANCE_ID),
    )
