from __future__ import annotations

from enum import Enum
import logging

from interview_coach.coaching.engine import CoachingEngine
from interview_coach.coaching.event_bus import CoachingEventKind, CoachingStateEvent
from interview_coach.coaching.scheduler import ScheduledCall

logger = logging.getLogger("coaching.view_model")


class CoachingViewState(str, Enum):
    INACTIVE = "inactive"
    IDLE = "idle"
    APPEARING = "appearing"
    VISIBLE = "visible"
    DISAPPEARING = "disappearing"
    COOLDOWN = "cooldown"

    @property
    def is_visible(self) -> bool:
        return self in {CoachingViewState.APPEARING, CoachingViewState.VISIBLE, CoachingViewState.DISAPPEARING}


KEY_ACTIONS = {
    "escape": "dismiss",
    "return": "accept",
    "enter": "accept",
    "space": "snooze",
}


class CoachingViewModel:
    """Overlay state for one session, driven by engine events on the bus."""

    def __init__(self, engine: CoachingEngine, session_id: str):
        self.engine = engine
        self.session_id = str(session_id)
        self.state = CoachingViewState.INACTIVE
        self.prompt: dict | None = None
        self.auto_dismiss_seconds: float | None = None
        self._transition_call: ScheduledCall | None = None
        self._unsubscribe = engine.bus.subscribe(self._on_event)

    def close(self) -> None:
        self._cancel_transition()
        self._unsubscribe()

    def _cancel_transition(self) -> None:
        if self._transition_call is not None:
            self._transition_call.cancel()
            self._transition_call = None

    def _after(self, delay: float, target: CoachingViewState, expected: CoachingViewState) -> None:
        self._cancel_transition()

        async def _transition() -> None:
            self._transition_call = None
            if self.state != expected:
                return
            if expected == CoachingViewState.DISAPPEARING:
                self.prompt = None
                self.auto_dismiss_seconds = None
                self._settle()
                return
            self.state = target

        self._transition_call = self.engine.scheduler.call_later(delay, _transition, name=f"view_{target.value}")

    def _settle(self) -> None:
        if not self.engine.enabled:
            self.state = CoachingViewState.INACTIVE
            return
        remaining = self.engine.cooldown_remaining
        if remaining > 0.0:
            self.state = CoachingViewState.COOLDOWN
            self._after(remaining, CoachingViewState.IDLE, CoachingViewState.COOLDOWN)
            return
        self.state = CoachingViewState.IDLE

    async def _on_event(self, event: CoachingStateEvent) -> None:
        if event.session_id != self.session_id:
            return

        kind = event.kind
        if kind == CoachingEventKind.SESSION_STARTED:
            self._cancel_transition()
            self.state = CoachingViewState.IDLE if event.payload.get("enabled") else CoachingViewState.INACTIVE
        elif kind == CoachingEventKind.COACHING_ENABLED:
            if not self.state.is_visible:
                self._cancel_transition()
                self.state = CoachingViewState.IDLE
        elif kind in {CoachingEventKind.COACHING_DISABLED, CoachingEventKind.SESSION_ENDED}:
            self._cancel_transition()
            self.prompt = None
            self.auto_dismiss_seconds = None
            self.state = CoachingViewState.INACTIVE
        elif kind == CoachingEventKind.PROMPT_SHOWN:
            self.prompt = dict(event.payload.get("prompt") or {})
            self.auto_dismiss_seconds = event.payload.get("auto_dismiss_seconds")
            self.state = CoachingViewState.APPEARING
            self._after(self.engine.thresholds.fade_in_seconds, CoachingViewState.VISIBLE, CoachingViewState.APPEARING)
        elif kind == CoachingEventKind.PROMPT_CLEARED:
            self.state = CoachingViewState.DISAPPEARING
            self._after(self.engine.thresholds.fade_out_seconds, CoachingViewState.IDLE, CoachingViewState.DISAPPEARING)

    async def handle_key(self, key: str) -> bool:
        action = KEY_ACTIONS.get(str(key or "").strip().lower())
        if action is None or self.engine.current_prompt is None:
            return False
        if action == "dismiss":
            return await self.engine.dismiss()
        if action == "accept":
            return await self.engine.accept()
        return await self.engine.snooze()

    async def toggle(self) -> bool:
        if self.engine.enabled:
            await self.engine.disable()
        else:
            await self.engine.enable()
        return self.engine.enabled

    async def enable(self) -> bool:
        return await self.engine.enable()

    async def disable(self) -> bool:
        return await self.engine.disable()

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "is_visible": self.state.is_visible,
            "prompt": self.prompt,
            "auto_dismiss_seconds": self.auto_dismiss_seconds,
        }
