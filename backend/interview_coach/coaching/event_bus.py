from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import json
import logging
import os
import time
from typing import Awaitable, Callable, Protocol

from core.config import env_flag

logger = logging.getLogger("coaching.event_bus")


class CoachingEventKind(str, Enum):
    SESSION_STARTED = "session_started"
    SESSION_ENDED = "session_ended"
    COACHING_ENABLED = "coaching_enabled"
    COACHING_DISABLED = "coaching_disabled"
    PROMPT_SHOWN = "prompt_shown"
    PROMPT_CLEARED = "prompt_cleared"
    QUEUE_CHANGED = "queue_changed"
    PULL_QUEUE_CHANGED = "pull_queue_changed"
    PREVIEW_LOGGED = "preview_logged"


@dataclass(frozen=True)
class CoachingStateEvent:
    kind: CoachingEventKind
    session_id: str
    payload: dict = field(default_factory=dict)
    published_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "session_id": self.session_id,
            "payload": dict(self.payload or {}),
            "published_at": self.published_at,
        }


CoachingEventHandler = Callable[[CoachingStateEvent], Awaitable[None]]


class CoachingEventBus(Protocol):
    def subscribe(self, handler: CoachingEventHandler) -> Callable[[], None]:
        ...

    async def publish(self, event: CoachingStateEvent) -> None:
        ...


class LocalCoachingEventBus:
    """In-process fan-out. Handlers run in subscription order."""

    def __init__(self):
        self._handlers: list[CoachingEventHandler] = []

    def subscribe(self, handler: CoachingEventHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    async def publish(self, event: CoachingStateEvent) -> None:
        for handler in list(self._handlers):
            try:
                await handler(event)
            except Exception as exc:
                logger.error(
                    "coaching event handler failed kind=%s session=%s error=%s",
                    event.kind.value,
                    event.session_id,
                    exc,
                )


class RedisCoachingEventBus(LocalCoachingEventBus):
    """Local fan-out plus a copy on ``coaching:{session_id}:events`` for outside listeners."""

    def __init__(self, redis_url: str, instance_id: str):
        super().__init__()
        try:
            import redis.asyncio as redis_async  # type: ignore
        except Exception as exc:
            raise RuntimeError("redis package not installed; install 'redis' to enable coaching event bus") from exc

        self._redis = redis_async.from_url(redis_url, decode_responses=True)
        self._instance_id = str(instance_id or "instance-unknown")

    @staticmethod
    def _channel(session_id: str) -> str:
        return f"coaching:{session_id}:events"

    async def publish(self, event: CoachingStateEvent) -> None:
        await super().publish(event)
        if not event.session_id:
            return
        envelope = {
            "source_instance": self._instance_id,
            "published_at": event.published_at,
            "payload": event.to_dict(),
        }
        try:
            await self._redis.publish(self._channel(event.session_id), json.dumps(envelope, default=str))
        except Exception as exc:
            logger.error("coaching event publish failed session=%s error=%s", event.session_id, exc)


def build_coaching_event_bus(instance_id: str) -> CoachingEventBus:
    if not env_flag("COACHING_EVENT_BUS_ENABLED"):
        return LocalCoachingEventBus()

    redis_url = str(os.getenv("REDIS_URL") or "").strip()
    if not redis_url:
        raise RuntimeError("COACHING_EVENT_BUS_ENABLED=true requires REDIS_URL")

    return RedisCoachingEventBus(redis_url=redis_url, instance_id=instance_id)
