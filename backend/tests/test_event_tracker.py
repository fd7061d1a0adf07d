import pytest

from interview_coach.coaching.event_tracker import EventRecorder
from interview_coach.coaching.models import CoachingPrompt, CoachingResponse
from interview_coach.coaching.thresholds import (
    BALANCED_THRESHOLDS,
    OFF_THRESHOLDS,
    CoachingFunctionType,
    ThresholdPolicy,
)
from interview_coach.system_metrics import get_metrics_snapshot


def _prompt(function_type=CoachingFunctionType.SUGGEST_FOLLOW_UP, confidence=0.9, timestamp=0.0) -> CoachingPrompt:
    return CoachingPrompt(
        type=function_type,
        text="Ask what happened next",
        reason="short answer",
        confidence=confidence,
        session_timestamp=timestamp,
    )


@pytest.fixture
def recorder(preferences, event_store, scheduler) -> EventRecorder:
    recorder = EventRecorder(preferences, event_store, clock=scheduler.now)
    recorder.start_session("session-1")
    return recorder


def _set_lifetime(preferences, shown: int, accepted: int, dismissed: int) -> None:
    preferences.total_prompts_shown = shown
    preferences.total_prompts_accepted = accepted
    preferences.total_prompts_dismissed = dismissed


def test_record_shown_updates_stats_and_store(recorder, preferences, event_store):
    prompt = _prompt()
    record = recorder.record_shown(prompt, 65.0)

    assert record.id == prompt.id
    assert record.response == CoachingResponse.NOT_RESPONDED
    assert recorder.session_stats.prompts_shown == 1
    assert preferences.total_prompts_shown == 1
    assert event_store.list_events("session-1")[0]["id"] == prompt.id


@pytest.mark.asyncio
async def test_response_latency_comes_from_shown_clock(recorder, scheduler):
    prompt = _prompt()
    recorder.record_shown(prompt, 0.0)
    await scheduler.advance(3.0)

    record = recorder.record_response(prompt.id, CoachingResponse.ACCEPTED)

    assert record.response_time_seconds == pytest.approx(3.0)
    assert recorder.session_stats.total_response_time == pytest.approx(3.0)
    assert get_metrics_snapshot()["coaching_responses_accepted"] == 1


def test_second_response_for_same_prompt_is_ignored(recorder, preferences):
    prompt = _prompt()
    recorder.record_shown(prompt, 0.0)

    recorder.record_response(prompt.id, CoachingResponse.ACCEPTED)
    recorder.record_response(prompt.id, CoachingResponse.ACCEPTED)
    recorder.record_auto_dismiss(prompt.id)

    assert recorder.session_stats.prompts_accepted == 1
    assert recorder.session_stats.prompts_timed_out == 0
    assert preferences.total_prompts_accepted == 1
    assert recorder.find(prompt.id).response == CoachingResponse.ACCEPTED


def test_unknown_prompt_id_is_a_noop(recorder):
    assert recorder.record_response("missing", CoachingResponse.DISMISSED) is None
    assert recorder.session_stats.prompts_dismissed == 0


def test_timeouts_do_not_count_towards_response_time(recorder):
    first, second = _prompt(), _prompt()
    recorder.record_shown(first, 0.0)
    recorder.record_shown(second, 1.0)

    recorder.record_auto_dismiss(first.id)
    recorder.record_response(second.id, CoachingResponse.SNOOZED)

    stats = recorder.session_stats
    assert stats.prompts_timed_out == 1
    assert stats.prompts_snoozed == 1
    assert stats.average_response_time == 0.0
    assert get_metrics_snapshot()["coaching_prompts_auto_dismissed"] == 1


def test_end_session_saves_summary_and_counts_session(recorder, preferences, event_store):
    recorder.record_shown(_prompt(), 0.0)
    stats = recorder.end_session(duration_seconds=300.0)

    assert stats.session_duration == 300.0
    assert preferences.sessions_completed == 1
    assert event_store.get_summary("session-1")["prompts_shown"] == 1
    assert recorder.session_id is None
    assert recorder.end_session() is None


def test_adaptive_thresholds_need_history(recorder, preferences):
    _set_lifetime(preferences, shown=9, accepted=0, dismissed=9)
    assert recorder.adaptive_thresholds(BALANCED_THRESHOLDS) is BALANCED_THRESHOLDS


def test_adaptive_thresholds_back_off_after_dismissals(recorder, preferences):
    _set_lifetime(preferences, shown=10, accepted=1, dismissed=8)
    adapted = recorder.adaptive_thresholds(BALANCED_THRESHOLDS)

    assert adapted.minimum_confidence == pytest.approx(0.85)
    assert adapted.cooldown_seconds == pytest.approx(108.0)
    assert adapted.max_prompts_per_session == 3
    assert adapted.sensitivity_multiplier == pytest.approx(0.8)


def test_adaptive_thresholds_open_up_after_acceptances(recorder, preferences):
    _set_lifetime(preferences, shown=10, accepted=9, dismissed=0)
    adapted = recorder.adaptive_thresholds(BALANCED_THRESHOLDS)

    assert adapted.minimum_confidence == pytest.approx(0.77)
    assert adapted.cooldown_seconds == pytest.approx(81.0)
    assert adapted.max_prompts_per_session == 4


def test_adaptive_acceptance_adjustment_builds_on_dismissal_adjustment(recorder, preferences):
    # dismissal rate 0.75 and acceptance rate 0.85 both exceed their limits
    _set_lifetime(preferences, shown=20, accepted=17, dismissed=15)

    adapted = recorder.adaptive_thresholds(BALANCED_THRESHOLDS)
    assert adapted.minimum_confidence == pytest.approx(0.82)
    assert adapted.cooldown_seconds == pytest.approx(97.2)
    assert adapted.max_prompts_per_session == 3
    assert adapted.sensitivity_multiplier == pytest.approx(0.8)
    assert adapted.effective_confidence_threshold == pytest.approx(1.0)

    sensitive = ThresholdPolicy(
        minimum_confidence=0.80,
        cooldown_seconds=90.0,
        max_prompts_per_session=4,
        sensitivity_multiplier=2.0,
    )
    adapted = recorder.adaptive_thresholds(sensitive)
    # sequential: 0.82 / 1.6; applying both branches to the base would give 0.77 / 1.6
    assert adapted.effective_confidence_threshold == pytest.approx(0.5125)


def test_adaptive_thresholds_leave_off_policy_alone(recorder, preferences):
    _set_lifetime(preferences, shown=30, accepted=0, dismissed=30)
    assert recorder.adaptive_thresholds(OFF_THRESHOLDS) is OFF_THRESHOLDS


def test_type_analytics_and_most_effective(recorder):
    follow = [_prompt(CoachingFunctionType.SUGGEST_FOLLOW_UP) for _ in range(3)]
    explore = [_prompt(CoachingFunctionType.EXPLORE_DEEPER) for _ in range(3)]
    tips = [_prompt(CoachingFunctionType.GENERAL_TIP) for _ in range(2)]
    for prompt in follow + explore + tips:
        recorder.record_shown(prompt, 0.0)

    recorder.record_response(follow[0].id, CoachingResponse.ACCEPTED)
    recorder.record_response(follow[1].id, CoachingResponse.ACCEPTED)
    recorder.record_response(follow[2].id, CoachingResponse.DISMISSED)
    for prompt in explore + tips:
        recorder.record_response(prompt.id, CoachingResponse.ACCEPTED)

    analytics = recorder.type_analytics(CoachingFunctionType.SUGGEST_FOLLOW_UP)
    assert analytics.total_shown == 3
    assert analytics.accepted == 2
    assert analytics.dismissed == 1
    assert analytics.acceptance_rate == pytest.approx(2 / 3)

    assert recorder.most_effective_types() == [
        CoachingFunctionType.EXPLORE_DEEPER,
        CoachingFunctionType.SUGGEST_FOLLOW_UP,
    ]
