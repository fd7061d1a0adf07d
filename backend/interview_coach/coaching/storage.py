from __future__ import annotations

import json
import os
from pathlib import Path
from threading import Lock
from typing import Any, Protocol

from core.config import COACHING_DATA_DIR


class KeyValueStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any:
        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class MemoryKeyValueStore:
    def __init__(self, initial: dict[str, Any] | None = None):
        self._lock = Lock()
        self._values: dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._values.get(str(key), default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._values[str(key)] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(str(key), None)


class JsonFileKeyValueStore(MemoryKeyValueStore):
    """Whole-file JSON store; every write is flushed synchronously."""

    def __init__(self, path: Path):
        super().__init__()
        self._path = Path(path)
        self._load()

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except Exception:
            payload = {}
        if isinstance(payload, dict):
            self._values = {str(key): value for key, value in payload.items()}

    def _persist(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self._path.with_suffix(".tmp")
        temp_path.write_text(json.dumps(self._values, ensure_ascii=False), encoding="utf-8")
        temp_path.replace(self._path)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._values[str(key)] = value
            self._persist()

    def delete(self, key: str) -> None:
        with self._lock:
            if self._values.pop(str(key), None) is not None:
                self._persist()


class RedisKeyValueStore:
    """Redis-backed preferences.

    Keys:
    - {prefix}{key} (string, JSON encoded value)
    """

    def __init__(self, redis_url: str, prefix: str = "interview_coach:"):
        try:
            import redis  # type: ignore
        except Exception as exc:
            raise RuntimeError("redis package not installed; install 'redis' to enable the redis preference store") from exc

        self._redis = redis.Redis.from_url(redis_url, decode_responses=True)
        self._prefix = str(prefix or "")

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get(self, key: str, default: Any = None) -> Any:
        raw = self._redis.get(self._key(key))
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except Exception:
            return default

    def set(self, key: str, value: Any) -> None:
        self._redis.set(self._key(key), json.dumps(value))

    def delete(self, key: str) -> None:
        self._redis.delete(self._key(key))


def _store_backend() -> str:
    return str(os.getenv("COACHING_STORE_BACKEND", "json")).strip().lower() or "json"


def build_key_value_store() -> KeyValueStore:
    backend = _store_backend()
    if backend == "memory":
        return MemoryKeyValueStore()
    if backend == "redis":
        redis_url = str(os.getenv("REDIS_URL") or "").strip()
        if not redis_url:
            raise RuntimeError("COACHING_STORE_BACKEND=redis requires REDIS_URL")
        return RedisKeyValueStore(redis_url)
    return JsonFileKeyValueStore(COACHING_DATA_DIR / "coaching_preferences.json")


class CoachingEventStore(Protocol):
    def append_event(self, session_id: str, event: dict) -> None:
        ...

    def update_event(self, session_id: str, event_id: str, changes: dict) -> bool:
        ...

    def list_events(self, session_id: str) -> list[dict]:
        ...

    def save_summary(self, session_id: str, summary: dict) -> None:
        ...

    def get_summary(self, session_id: str) -> dict | None:
        ...


class LocalCoachingEventStore:
    def __init__(self):
        self._lock = Lock()
        self._sessions: dict[str, dict[str, Any]] = {}

    def _bucket(self, session_id: str) -> dict[str, Any]:
        return self._sessions.setdefault(str(session_id), {"events": [], "summary": None})

    def _after_write(self) -> None:
        return

    def append_event(self, session_id: str, event: dict) -> None:
        sid = str(session_id or "").strip()
        if not sid:
            return
        with self._lock:
            self._bucket(sid)["events"].append(dict(event or {}))
            self._after_write()

    def update_event(self, session_id: str, event_id: str, changes: dict) -> bool:
        sid = str(session_id or "").strip()
        with self._lock:
            bucket = self._sessions.get(sid)
            if not bucket:
                return False
            for row in bucket["events"]:
                if str(row.get("id") or "") == str(event_id):
                    row.update(dict(changes or {}))
                    self._after_write()
                    return True
        return False

    def list_events(self, session_id: str) -> list[dict]:
        with self._lock:
            bucket = self._sessions.get(str(session_id or "").strip())
            if not bucket:
                return []
            return [dict(row) for row in bucket["events"]]

    def save_summary(self, session_id: str, summary: dict) -> None:
        sid = str(session_id or "").strip()
        if not sid:
            return
        with self._lock:
            self._bucket(sid)["summary"] = dict(summary or {})
            self._after_write()

    def get_summary(self, session_id: str) -> dict | None:
        with self._lock:
            bucket = self._sessions.get(str(session_id or "").strip())
            if not bucket or not isinstance(bucket.get("summary"), dict):
                return None
            return dict(bucket["summary"])


class JsonFileCoachingEventStore(LocalCoachingEventStore):
    def __init__(self, path: Path):
        super().__init__()
        self._path = Path(path)
        self._load()

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except Exception:
            payload = {}
        if not isinstance(payload, dict):
            return
        for session_id, bucket in payload.items():
            if not isinstance(bucket, dict):
                continue
            events = [row for row in bucket.get("events") or [] if isinstance(row, dict)]
            summary = bucket.get("summary") if isinstance(bucket.get("summary"), dict) else None
            self._sessions[str(session_id)] = {"events": events, "summary": summary}

    def _after_write(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self._path.with_suffix(".tmp")
        temp_path.write_text(json.dumps(self._sessions, ensure_ascii=False), encoding="utf-8")
        temp_path.replace(self._path)


def build_coaching_event_store() -> CoachingEventStore:
    if _store_backend() == "memory":
        return LocalCoachingEventStore()
    return JsonFileCoachingEventStore(COACHING_DATA_DIR / "coaching_events.json")
