import pytest
from fastapi.testclient import TestClient

from interview_coach.coaching.event_bus import LocalCoachingEventBus
from interview_coach.coaching.storage import LocalCoachingEventStore, MemoryKeyValueStore
from interview_coach import main as main_module
from interview_coach.main import app
from interview_coach.runtime import CoachingRuntime


@pytest.fixture
def runtime(scheduler_factory):
    return CoachingRuntime(
        kv_store=MemoryKeyValueStore(),
        event_store=LocalCoachingEventStore(),
        bus=LocalCoachingEventBus(),
        scheduler_factory=scheduler_factory,
    )


@pytest.fixture
def client(runtime):
    app.state.coaching = runtime
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.state.coaching = None


def _opt_in(client):
    assert client.post("/api/coaching/onboarding/complete").status_code == 200
    res = client.post("/api/coaching/preferences", json={"enabled": True, "level": "balanced"})
    assert res.status_code == 200
    return res.json()


def _function_call(client, session_id="s1", name="suggest_follow_up", confidence=0.9):
    return client.post(
        f"/api/coaching/sessions/{session_id}/function-call",
        json={"name": name, "arguments": {"text": "Ask about the rollback plan", "confidence": confidence}},
    )


def test_healthz(client):
    res = client.get("/healthz")
    assert res.status_code == 200
    assert res.json()["status"] == "ok"


def test_preferences_default_to_silence(client):
    body = client.get("/api/coaching/preferences").json()
    assert body["is_coaching_enabled"] is False
    assert body["should_coaching_run"] is False

    body = _opt_in(client)
    assert body["coaching_level"] == "balanced"
    assert body["should_coaching_run"] is True


def test_preferences_reject_unknown_level(client):
    res = client.post("/api/coaching/preferences", json={"level": "aggressive"})
    assert res.status_code == 400
    assert "level must be one of" in res.json()["detail"]


def test_session_flow_show_accept_end(client):
    _opt_in(client)

    started = client.post("/api/coaching/sessions/s1/start").json()
    assert started["enabled"] is True
    assert started["thresholds"]["cooldown_seconds"] == 90.0

    res = _function_call(client)
    assert res.status_code == 200
    assert res.json()["outcome"] == "shown"
    assert res.json()["state"]["current_prompt"]["type"] == "suggest_follow_up"

    view = client.get("/api/coaching/sessions/s1").json()
    assert view["active"] is True
    assert view["view"]["state"] == "appearing"

    res = client.post("/api/coaching/sessions/s1/respond", json={"response": "accepted"})
    assert res.json()["resolved"] is True
    assert res.json()["state"]["current_prompt"] is None

    analytics = client.get("/api/coaching/sessions/s1/analytics").json()
    assert analytics["stats"]["prompts_accepted"] == 1
    assert analytics["events"][0]["response"] == "accepted"
    by_type = {item["type"]: item for item in analytics["by_type"]}
    assert by_type["suggest_follow_up"]["accepted"] == 1
    assert analytics["most_effective_types"] == []

    ended = client.post("/api/coaching/sessions/s1/end", json={"duration_seconds": 120.0}).json()
    assert ended["stats"]["prompts_shown"] == 1
    assert ended["summary"]["session_duration"] == 120.0

    assert client.post("/api/coaching/sessions/s1/end").status_code == 404
    assert _function_call(client).status_code == 404
    assert client.get("/api/coaching/preferences").json()["sessions_completed"] == 1


def test_silenced_session_reports_disabled(client):
    client.post("/api/coaching/sessions/s1/start")

    res = _function_call(client)
    assert res.json()["outcome"] == "disabled"


def test_second_prompt_queues_during_visible_prompt(client):
    _opt_in(client)
    client.post("/api/coaching/sessions/s1/start")

    assert _function_call(client).json()["outcome"] == "shown"
    res = _function_call(client, name="uncovered_topic")
    assert res.json()["outcome"] == "queued"
    assert len(res.json()["state"]["pending_prompts"]) == 1

    assert _function_call(client, confidence=0.2).json()["outcome"] == "rejected"
    assert _function_call(client, name="transcript_update").json()["outcome"] == "unclassified"


def test_respond_validates_response(client):
    _opt_in(client)
    client.post("/api/coaching/sessions/s1/start")

    assert client.post("/api/coaching/sessions/s1/respond", json={"response": "not_responded"}).status_code == 400
    assert client.post("/api/coaching/sessions/s1/respond", json={"response": "maybe"}).status_code == 400
    assert client.post("/api/coaching/sessions/s1/respond", json={"response": "dismissed"}).json()["resolved"] is False


def test_unknown_session_is_404(client):
    assert client.get("/api/coaching/sessions/missing").status_code == 404
    assert client.post("/api/coaching/sessions/missing/speech").status_code == 404
    assert client.get("/api/coaching/sessions/missing/analytics").status_code == 404


def test_speech_and_timestamp_updates(client):
    _opt_in(client)
    client.post("/api/coaching/sessions/s1/start")

    res = client.post("/api/coaching/sessions/s1/speech")
    assert res.json()["speech_quiet_remaining"] == 4.0
    assert _function_call(client).json()["outcome"] == "queued"

    res = client.post("/api/coaching/sessions/s1/timestamp", json={"timestamp": 42.5})
    assert res.json()["current_timestamp"] == 42.5


def test_pull_mode_flow(client):
    _opt_in(client)
    res = client.post("/api/coaching/delivery", json={"delivery_mode": "pull", "auto_dismiss_preset": "quick"})
    assert res.json()["delivery_mode"] == "pull"
    assert res.json()["effective_auto_dismiss_seconds"] == 5.0
    assert client.get("/api/coaching/preferences").json()["custom_auto_dismiss_seconds"] == 5.0

    client.post("/api/coaching/sessions/s1/start")
    assert _function_call(client).json()["outcome"] == "pull_queued"
    assert client.get("/api/coaching/pull-queue").json()["count"] == 1

    pulled = client.post("/api/coaching/sessions/s1/pull").json()
    assert pulled["prompt"]["type"] == "suggest_follow_up"
    assert client.get("/api/coaching/pull-queue").json()["count"] == 0
    assert client.post("/api/coaching/sessions/s1/pull").json()["prompt"] is None


def test_preview_log_and_clear(client):
    _opt_in(client)
    client.post("/api/coaching/delivery", json={"delivery_mode": "preview"})
    client.post("/api/coaching/sessions/s1/start")

    assert _function_call(client).json()["outcome"] == "preview_logged"
    assert client.get("/api/coaching/preview-log").json()["count"] == 1
    assert client.delete("/api/coaching/preview-log").json() == {"removed": 1}


def test_delivery_rejects_unknown_mode(client):
    assert client.post("/api/coaching/delivery", json={"delivery_mode": "broadcast"}).status_code == 400


def test_session_disable_and_enable(client):
    _opt_in(client)
    client.post("/api/coaching/sessions/s1/start")

    res = client.post("/api/coaching/sessions/s1/disable").json()
    assert res["changed"] is True
    assert res["state"]["enabled"] is False
    assert client.get("/api/coaching/preferences").json()["is_coaching_enabled"] is False

    res = client.post("/api/coaching/sessions/s1/enable").json()
    assert res["changed"] is True
    assert res["state"]["enabled"] is True


def test_metrics_include_live_sessions(client):
    _opt_in(client)
    client.post("/api/coaching/sessions/s1/start")
    _function_call(client)

    metrics = client.get("/api/system/metrics").json()
    assert metrics["coaching_live_sessions"] == 1
    assert metrics["coaching_sessions_active"] == 1
    assert metrics["coaching_prompts_shown"] == 1
    assert metrics["coaching_pull_queue_size"] == 0


def test_runtime_not_ready_returns_503():
    app.state.coaching = None
    client = TestClient(app)
    assert client.get("/api/coaching/preferences").status_code == 503


def test_level_change_applies_to_running_session(client):
    _opt_in(client)
    client.post("/api/coaching/sessions/s1/start")

    client.post("/api/coaching/preferences", json={"level": "minimal"})

    state = client.get("/api/coaching/sessions/s1").json()["engine"]
    assert state["thresholds"]["max_prompts_per_session"] == 2
    assert state["thresholds"]["minimum_confidence"] == 0.95
    assert _function_call(client, confidence=0.9).json()["outcome"] == "rejected"


def test_delivery_change_reaches_running_session(client, runtime):
    _opt_in(client)
    client.post("/api/coaching/sessions/s1/start")

    client.post("/api/coaching/delivery", json={"delivery_mode": "pull"})

    assert runtime.get_engine("s1").delivery.delivery_mode.value == "pull"
    assert _function_call(client).json()["outcome"] == "pull_queued"


def test_session_cleanup_task_follows_app_lifecycle(runtime):
    app.state.coaching = runtime
    try:
        with TestClient(app):
            task = main_module._session_cleanup_task
            assert task is not None
            assert not task.done()
        assert main_module._session_cleanup_task is None
    finally:
        app.state.coaching = None
