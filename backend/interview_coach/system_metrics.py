import threading
import time
from typing import Any


_lock = threading.Lock()
_COUNTER_NAMES = (
    "coaching_sessions_active",
    "coaching_sessions_completed",
    "coaching_prompts_shown",
    "coaching_prompts_queued",
    "coaching_prompts_rejected",
    "coaching_prompts_unclassified",
    "coaching_prompts_auto_dismissed",
    "coaching_responses_accepted",
    "coaching_responses_dismissed",
    "coaching_responses_snoozed",
    "coaching_pull_enqueued",
    "coaching_preview_logged",
    "coaching_persistence_errors",
    "response_latency_total_sec",
    "response_latency_samples",
)
_metrics: dict[str, float] = {name: 0.0 for name in _COUNTER_NAMES}


def increment_metric(name: str, amount: float = 1.0) -> None:
    key = str(name or "").strip()
    if not key:
        return
    with _lock:
        _metrics[key] = float(_metrics.get(key, 0.0)) + float(amount)


def decrement_metric(name: str, amount: float = 1.0) -> None:
    key = str(name or "").strip()
    if not key:
        return
    with _lock:
        next_value = float(_metrics.get(key, 0.0)) - float(amount)
        _metrics[key] = max(0.0, next_value)


def observe_response_latency(seconds: float) -> None:
    latency = max(0.0, float(seconds or 0.0))
    with _lock:
        _metrics["response_latency_total_sec"] = float(_metrics.get("response_latency_total_sec", 0.0)) + latency
        _metrics["response_latency_samples"] = float(_metrics.get("response_latency_samples", 0.0)) + 1.0


def record_response(response: str) -> None:
    normalized = str(response or "").strip().lower()
    key_map = {
        "accepted": "coaching_responses_accepted",
        "dismissed": "coaching_responses_dismissed",
        "snoozed": "coaching_responses_snoozed",
        "not_responded": "coaching_prompts_auto_dismissed",
    }
    metric_key = key_map.get(normalized)
    if metric_key is None:
        return
    increment_metric(metric_key)


def reset_metrics() -> None:
    with _lock:
        for key in list(_metrics.keys()):
            _metrics[key] = 0.0


def get_metrics_snapshot(extra: dict[str, Any] | None = None) -> dict[str, Any]:
    with _lock:
        data = dict(_metrics)

    latency_samples = max(1.0, float(data.get("response_latency_samples") or 0.0))

    payload: dict[str, Any] = {"generated_at": time.time()}
    for name in _COUNTER_NAMES:
        if name == "response_latency_total_sec":
            payload[name] = round(float(data.get(name) or 0.0), 4)
            continue
        payload[name] = int(data.get(name) or 0.0)
    payload["avg_response_latency_sec"] = round(float(data.get("response_latency_total_sec") or 0.0) / latency_samples, 4)

    if extra:
        payload.update(extra)
    return payload
