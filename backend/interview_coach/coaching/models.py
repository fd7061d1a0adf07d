from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import time
import uuid

from interview_coach.coaching.thresholds import CoachingFunctionType


class CoachingResponse(str, Enum):
    ACCEPTED = "accepted"
    DISMISSED = "dismissed"
    SNOOZED = "snoozed"
    NOT_RESPONDED = "not_responded"

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()


class PromptOutcome(str, Enum):
    """What the engine did with an inbound event or prompt."""

    DISABLED = "disabled"
    UNCLASSIFIED = "unclassified"
    REJECTED = "rejected"
    SHOWN = "shown"
    QUEUED = "queued"
    PULL_QUEUED = "pull_queued"
    PREVIEW_LOGGED = "preview_logged"


@dataclass(frozen=True)
class FunctionCallEvent:
    name: str
    arguments: dict = field(default_factory=dict)
    timestamp: float = 0.0


@dataclass(frozen=True)
class CoachingPrompt:
    type: CoachingFunctionType
    text: str
    reason: str
    confidence: float
    session_timestamp: float
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: float = field(default_factory=time.time)

    @property
    def priority(self) -> int:
        return self.type.priority

    def sort_key(self) -> tuple[int, float]:
        return (self.type.priority, float(self.session_timestamp))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "priority": self.type.priority,
            "text": self.text,
            "reason": self.reason,
            "confidence": self.confidence,
            "session_timestamp": self.session_timestamp,
            "created_at": self.created_at,
        }


@dataclass
class CoachingEventRecord:
    id: str
    prompt_type: CoachingFunctionType
    prompt_text: str
    reason: str
    confidence: float
    timestamp_seconds: float
    shown_at: float
    response: CoachingResponse = CoachingResponse.NOT_RESPONDED
    responded_at: float | None = None
    response_time_seconds: float | None = None

    @property
    def is_resolved(self) -> bool:
        return self.responded_at is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "prompt_type": self.prompt_type.value,
            "prompt_text": self.prompt_text,
            "reason": self.reason,
            "confidence": self.confidence,
            "timestamp_seconds": self.timestamp_seconds,
            "shown_at": self.shown_at,
            "response": self.response.value,
            "responded_at": self.responded_at,
            "response_time_seconds": self.response_time_seconds,
        }


@dataclass
class SessionCoachingStats:
    prompts_shown: int = 0
    prompts_accepted: int = 0
    prompts_dismissed: int = 0
    prompts_snoozed: int = 0
    prompts_timed_out: int = 0
    total_response_time: float = 0.0
    session_duration: float = 0.0

    @property
    def acceptance_rate(self) -> float:
        if self.prompts_shown <= 0:
            return 0.0
        return self.prompts_accepted / self.prompts_shown

    @property
    def average_response_time(self) -> float:
        responded = self.prompts_accepted + self.prompts_dismissed + self.prompts_snoozed
        if responded <= 0:
            return 0.0
        return self.total_response_time / responded

    def to_dict(self) -> dict:
        return {
            "prompts_shown": self.prompts_shown,
            "prompts_accepted": self.prompts_accepted,
            "prompts_dismissed": self.prompts_dismissed,
            "prompts_snoozed": self.prompts_snoozed,
            "prompts_timed_out": self.prompts_timed_out,
            "total_response_time": round(self.total_response_time, 3),
            "session_duration": round(self.session_duration, 3),
            "acceptance_rate": round(self.acceptance_rate, 4),
            "average_response_time": round(self.average_response_time, 3),
        }


@dataclass(frozen=True)
class PromptTypeAnalytics:
    type: CoachingFunctionType
    total_shown: int
    accepted: int
    dismissed: int
    acceptance_rate: float
    average_response_time: float

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "total_shown": self.total_shown,
            "accepted": self.accepted,
            "dismissed": self.dismissed,
            "acceptance_rate": round(self.acceptance_rate, 4),
            "average_response_time": round(self.average_response_time, 3),
        }
