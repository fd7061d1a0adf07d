from interview_coach.coaching.classifier import PromptClassifier
from interview_coach.coaching.delivery import AutoDismissPreset, CoachingDeliveryMode, DeliveryModeRouter
from interview_coach.coaching.engine import CoachingEngine
from interview_coach.coaching.event_bus import (
    CoachingEventKind,
    CoachingStateEvent,
    LocalCoachingEventBus,
    build_coaching_event_bus,
)
from interview_coach.coaching.event_tracker import EventRecorder
from interview_coach.coaching.models import (
    CoachingPrompt,
    CoachingResponse,
    FunctionCallEvent,
    PromptOutcome,
    SessionCoachingStats,
)
from interview_coach.coaching.preferences import PreferenceStore
from interview_coach.coaching.scheduler import AsyncioScheduler, ScheduledCall
from interview_coach.coaching.thresholds import CoachingFunctionType, CoachingLevel, ThresholdPolicy
from interview_coach.coaching.view_model import CoachingViewModel, CoachingViewState

__all__ = [
    "AsyncioScheduler",
    "AutoDismissPreset",
    "CoachingDeliveryMode",
    "CoachingEngine",
    "CoachingEventKind",
    "CoachingFunctionType",
    "CoachingLevel",
    "CoachingPrompt",
    "CoachingResponse",
    "CoachingStateEvent",
    "CoachingViewModel",
    "CoachingViewState",
    "DeliveryModeRouter",
    "EventRecorder",
    "FunctionCallEvent",
    "LocalCoachingEventBus",
    "PreferenceStore",
    "PromptClassifier",
    "PromptOutcome",
    "ScheduledCall",
    "SessionCoachingStats",
    "ThresholdPolicy",
    "build_coaching_event_bus",
]
