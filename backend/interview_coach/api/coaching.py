from __future__ import annotations

from enum import Enum

from fastapi import APIRouter, HTTPException, Request

from interview_coach.coaching.delivery import AutoDismissPreset, CoachingDeliveryMode
from interview_coach.coaching.engine import CoachingEngine
from interview_coach.coaching.models import CoachingResponse, FunctionCallEvent
from interview_coach.coaching.preferences import OverlayPosition
from interview_coach.coaching.thresholds import CoachingFunctionType, CoachingLevel
from interview_coach.runtime import CoachingRuntime
from interview_coach.schemas import (
    DeliveryUpdateRequest,
    EndSessionRequest,
    FunctionCallRequest,
    PreferencesUpdateRequest,
    RespondRequest,
    TimestampRequest,
)

router = APIRouter(prefix="/api/coaching")

_USER_RESPONSES = {CoachingResponse.ACCEPTED, CoachingResponse.DISMISSED, CoachingResponse.SNOOZED}


def _runtime(request: Request) -> CoachingRuntime:
    runtime = getattr(request.app.state, "coaching", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Coaching runtime not ready")
    return runtime


def _engine(request: Request, session_id: str) -> CoachingEngine:
    engine = _runtime(request).get_engine(session_id)
    if engine is None:
        raise HTTPException(status_code=404, detail="Coaching session not found")
    return engine


def _parse_enum(enum_cls: type[Enum], raw: str, field: str):
    try:
        return enum_cls(str(raw or "").strip().lower())
    except ValueError:
        allowed = ", ".join(item.value for item in enum_cls)
        raise HTTPException(status_code=400, detail=f"{field} must be one of: {allowed}")


# -- preferences ---------------------------------------------------------


@router.get("/preferences")
def get_preferences(request: Request):
    return _runtime(request).preferences.snapshot()


@router.post("/preferences")
async def update_preferences(req: PreferencesUpdateRequest, request: Request):
    runtime = _runtime(request)
    preferences = runtime.preferences

    if req.reset_to_defaults:
        preferences.reset_to_defaults()
    if req.reset_statistics:
        preferences.reset_statistics()

    level = _parse_enum(CoachingLevel, req.level, "level") if req.level is not None else None
    position = (
        _parse_enum(OverlayPosition, req.overlay_position, "overlay_position")
        if req.overlay_position is not None
        else None
    )

    if req.enabled is True:
        preferences.enable(level or preferences.coaching_level)
    elif req.enabled is False:
        preferences.disable()
        if level is not None:
            preferences.set_level(level)
    elif level is not None:
        preferences.set_level(level)

    if req.custom_sensitivity is not None:
        preferences.set_custom_sensitivity(req.custom_sensitivity)
    if req.clear_custom_auto_dismiss:
        preferences.set_custom_auto_dismiss(None)
    elif req.custom_auto_dismiss_seconds is not None:
        preferences.set_custom_auto_dismiss(req.custom_auto_dismiss_seconds)
    if req.show_notification_badge is not None:
        preferences.set_show_notification_badge(req.show_notification_badge)
    if req.play_sound_on_prompt is not None:
        preferences.set_play_sound_on_prompt(req.play_sound_on_prompt)
    if position is not None:
        preferences.set_overlay_position(position)

    if req.reset_to_defaults or req.reset_statistics or level is not None or req.custom_sensitivity is not None:
        await runtime.refresh_thresholds()
    return preferences.snapshot()


@router.post("/onboarding/complete")
def complete_onboarding(request: Request):
    preferences = _runtime(request).preferences
    preferences.complete_onboarding()
    return preferences.snapshot()


# -- delivery ------------------------------------------------------------


@router.get("/delivery")
def get_delivery(request: Request):
    return _runtime(request).delivery.snapshot()


@router.post("/delivery")
async def update_delivery(req: DeliveryUpdateRequest, request: Request):
    runtime = _runtime(request)
    mode = _parse_enum(CoachingDeliveryMode, req.delivery_mode, "delivery_mode") if req.delivery_mode is not None else None
    preset = (
        _parse_enum(AutoDismissPreset, req.auto_dismiss_preset, "auto_dismiss_preset")
        if req.auto_dismiss_preset is not None
        else None
    )
    if mode is not None:
        await runtime.set_delivery_mode(mode)
    if preset is not None:
        await runtime.set_auto_dismiss_preset(preset)
    return runtime.delivery.snapshot()


@router.get("/pull-queue")
def get_pull_queue(request: Request):
    items = _runtime(request).delivery.pull_queue
    return {"count": len(items), "items": [prompt.to_dict() for prompt in items]}


@router.delete("/pull-queue")
def clear_pull_queue(request: Request):
    return {"removed": _runtime(request).delivery.clear_pull_queue()}


@router.get("/preview-log")
def get_preview_log(request: Request):
    items = _runtime(request).delivery.preview_log
    return {"count": len(items), "items": [prompt.to_dict() for prompt in items]}


@router.delete("/preview-log")
def clear_preview_log(request: Request):
    return {"removed": _runtime(request).delivery.clear_preview_log()}


# -- sessions ------------------------------------------------------------


@router.post("/sessions/{session_id}/start")
async def start_session(session_id: str, request: Request):
    engine = await _runtime(request).start_session(session_id)
    return engine.snapshot()


@router.post("/sessions/{session_id}/end")
async def end_session(session_id: str, request: Request, req: EndSessionRequest | None = None):
    runtime = _runtime(request)
    stats = await runtime.end_session(session_id, req.duration_seconds if req else None)
    if stats is None:
        raise HTTPException(status_code=404, detail="Coaching session not found")
    return {
        "session_id": session_id,
        "stats": stats.to_dict(),
        "summary": runtime.event_store.get_summary(session_id),
    }


@router.post("/sessions/{session_id}/enable")
async def enable_session(session_id: str, request: Request):
    engine = _engine(request, session_id)
    changed = await engine.enable()
    return {"changed": changed, "state": engine.snapshot()}


@router.post("/sessions/{session_id}/disable")
async def disable_session(session_id: str, request: Request):
    engine = _engine(request, session_id)
    changed = await engine.disable()
    return {"changed": changed, "state": engine.snapshot()}


@router.post("/sessions/{session_id}/function-call")
async def function_call(session_id: str, req: FunctionCallRequest, request: Request):
    engine = _engine(request, session_id)
    event = FunctionCallEvent(name=req.name, arguments=dict(req.arguments or {}), timestamp=req.timestamp)
    outcome = await engine.process_function_call(event)
    return {"outcome": outcome.value, "state": engine.snapshot()}


@router.post("/sessions/{session_id}/speech")
async def speech_detected(session_id: str, request: Request):
    engine = _engine(request, session_id)
    engine.notify_speech_detected()
    return {"speech_quiet_remaining": round(engine.speech_quiet_remaining, 3)}


@router.post("/sessions/{session_id}/timestamp")
async def update_timestamp(session_id: str, req: TimestampRequest, request: Request):
    engine = _engine(request, session_id)
    engine.update_timestamp(req.timestamp)
    return {"current_timestamp": engine.current_timestamp}


@router.post("/sessions/{session_id}/respond")
async def respond(session_id: str, req: RespondRequest, request: Request):
    engine = _engine(request, session_id)
    response = _parse_enum(CoachingResponse, req.response, "response")
    if response not in _USER_RESPONSES:
        raise HTTPException(status_code=400, detail="response must be one of: accepted, dismissed, snoozed")

    if response == CoachingResponse.SNOOZED:
        resolved = await engine.snooze()
    else:
        resolved = await engine.dismiss(response)
    return {"resolved": resolved, "state": engine.snapshot()}


@router.post("/sessions/{session_id}/pull")
async def pull_next(session_id: str, request: Request):
    engine = _engine(request, session_id)
    prompt = await engine.pull_next()
    return {"prompt": prompt.to_dict() if prompt else None, "state": engine.snapshot()}


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, request: Request):
    runtime = _runtime(request)
    entry = runtime.get_entry(session_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Coaching session not found")
    payload = entry.to_dict()
    payload["engine"] = entry.engine.snapshot()
    payload["view"] = entry.view_model.to_dict()
    return payload


@router.get("/sessions/{session_id}/analytics")
async def get_session_analytics(session_id: str, request: Request):
    runtime = _runtime(request)
    entry = runtime.get_entry(session_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Coaching session not found")

    recorder = entry.engine.recorder
    return {
        "session_id": session_id,
        "active": entry.active,
        "stats": recorder.session_stats.to_dict(),
        "by_type": [recorder.type_analytics(function_type).to_dict() for function_type in CoachingFunctionType],
        "most_effective_types": [function_type.value for function_type in recorder.most_effective_types()],
        "adaptive_thresholds": recorder.adaptive_thresholds(runtime.preferences.effective_thresholds()).to_dict(),
        "events": runtime.event_store.list_events(session_id),
        "summary": runtime.event_store.get_summary(session_id),
    }
