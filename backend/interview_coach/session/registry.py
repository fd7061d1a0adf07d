from __future__ import annotations

from dataclasses import dataclass, field, replace
import time
from threading import Lock
from typing import Any


@dataclass(frozen=True)
class CoachingSessionEntry:
    session_id: str
    engine: Any
    view_model: Any
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    active: bool = True

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "active": self.active,
        }


class SessionRegistry:
    """Live coaching engines keyed by session id.

    Ended sessions stay readable (inactive) until ``cleanup_inactive`` evicts
    them, so analytics can still be fetched right after a session ends.
    """

    def __init__(self):
        self._lock = Lock()
        self._sessions: dict[str, CoachingSessionEntry] = {}

    def register(self, session_id: str, engine, view_model) -> CoachingSessionEntry:
        entry = CoachingSessionEntry(session_id=str(session_id), engine=engine, view_model=view_model)
        with self._lock:
            self._sessions[entry.session_id] = entry
        return entry

    def get(self, session_id: str) -> CoachingSessionEntry | None:
        with self._lock:
            return self._sessions.get(str(session_id))

    def get_active(self, session_id: str) -> CoachingSessionEntry | None:
        entry = self.get(session_id)
        if entry is None or not entry.active:
            return None
        return entry

    def touch(self, session_id: str) -> None:
        with self._lock:
            entry = self._sessions.get(str(session_id))
            if entry is not None:
                self._sessions[entry.session_id] = replace(entry, updated_at=time.time())

    def mark_inactive(self, session_id: str) -> None:
        with self._lock:
            entry = self._sessions.get(str(session_id))
            if entry is not None:
                self._sessions[entry.session_id] = replace(entry, active=False, updated_at=time.time())

    def active_session_ids(self) -> list[str]:
        with self._lock:
            return [session_id for session_id, entry in self._sessions.items() if entry.active]

    def cleanup_inactive(self, ttl_sec: float) -> int:
        cutoff = time.time() - max(30.0, float(ttl_sec or 900.0))
        with self._lock:
            stale = [
                session_id
                for session_id, entry in self._sessions.items()
                if not entry.active and entry.updated_at <= cutoff
            ]
            for session_id in stale:
                self._sessions.pop(session_id, None)
        return len(stale)
