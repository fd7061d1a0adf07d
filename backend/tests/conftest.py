import sys
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from interview_coach.coaching.delivery import DeliveryModeRouter  # noqa: E402
from interview_coach.coaching.engine import CoachingEngine  # noqa: E402
from interview_coach.coaching.event_bus import LocalCoachingEventBus  # noqa: E402
from interview_coach.coaching.event_tracker import EventRecorder  # noqa: E402
from interview_coach.coaching.preferences import PreferenceStore  # noqa: E402
from interview_coach.coaching.scheduler import ScheduledCall  # noqa: E402
from interview_coach.coaching.storage import LocalCoachingEventStore, MemoryKeyValueStore  # noqa: E402
from interview_coach.coaching.thresholds import CoachingLevel  # noqa: E402
from interview_coach.system_metrics import reset_metrics  # noqa: E402


class ManualScheduler:
    """Deterministic clock + timer queue; time only moves through ``advance``."""

    def __init__(self, start: float = 0.0):
        self._now = float(start)
        self._seq = 0
        self._calls: list[tuple[float, int, ScheduledCall, object]] = []

    def now(self) -> float:
        return self._now

    def call_later(self, delay, callback, name=None) -> ScheduledCall:
        handle = ScheduledCall(self._now + max(0.0, float(delay or 0.0)), name=name)
        self._calls.append((handle.when, self._seq, handle, callback))
        self._seq += 1
        return handle

    def pending_calls(self) -> list[ScheduledCall]:
        return [handle for _, _, handle, _ in self._calls if handle.pending]

    async def advance(self, seconds: float) -> None:
        target = self._now + float(seconds)
        while True:
            due = sorted(
                (item for item in self._calls if item[0] <= target and item[2].pending),
                key=lambda item: (item[0], item[1]),
            )
            if not due:
                break
            item = due[0]
            self._calls.remove(item)
            when, _, handle, callback = item
            self._now = max(self._now, when)
            if handle._mark_fired():
                await callback()
        self._now = target
        self._calls = [item for item in self._calls if item[2].pending]

    async def advance_to(self, when: float) -> None:
        await self.advance(max(0.0, float(when) - self._now))

    async def shutdown(self) -> None:
        for _, _, handle, _ in self._calls:
            handle.cancel()
        self._calls = []


@pytest.fixture(autouse=True)
def _test_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("COACHING_STORE_BACKEND", "memory")
    monkeypatch.setenv("COACHING_EVENT_BUS_ENABLED", "false")
    monkeypatch.delenv("REDIS_URL", raising=False)
    reset_metrics()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def kv_store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def preferences(kv_store) -> PreferenceStore:
    return PreferenceStore(kv_store)


@pytest.fixture
def enabled_preferences(preferences) -> PreferenceStore:
    preferences.complete_onboarding()
    preferences.enable(CoachingLevel.BALANCED)
    return preferences


@pytest.fixture
def event_store() -> LocalCoachingEventStore:
    return LocalCoachingEventStore()


@pytest.fixture
def bus() -> LocalCoachingEventBus:
    return LocalCoachingEventBus()


@pytest.fixture
def make_engine(kv_store, event_store, bus, scheduler):
    def _make(preferences: PreferenceStore) -> CoachingEngine:
        recorder = EventRecorder(preferences, event_store, clock=scheduler.now)
        return CoachingEngine(
            preferences=preferences,
            recorder=recorder,
            delivery=DeliveryModeRouter(kv_store),
            bus=bus,
            scheduler=scheduler,
        )

    return _make


@pytest.fixture
def scheduler_factory():
    return ManualScheduler
