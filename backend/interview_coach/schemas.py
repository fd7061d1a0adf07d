from typing import Any

from pydantic import BaseModel, Field


class PreferencesUpdateRequest(BaseModel):
    enabled: bool | None = None
    level: str | None = None
    custom_sensitivity: float | None = None
    custom_auto_dismiss_seconds: float | None = None
    clear_custom_auto_dismiss: bool = False
    show_notification_badge: bool | None = None
    play_sound_on_prompt: bool | None = None
    overlay_position: str | None = None
    reset_statistics: bool = False
    reset_to_defaults: bool = False


class DeliveryUpdateRequest(BaseModel):
    delivery_mode: str | None = None
    auto_dismiss_preset: str | None = None


class FunctionCallRequest(BaseModel):
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    timestamp: float = 0.0


class TimestampRequest(BaseModel):
    timestamp: float


class RespondRequest(BaseModel):
    response: str = "dismissed"


class EndSessionRequest(BaseModel):
    duration_seconds: float | None = None
