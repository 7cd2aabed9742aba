"""Models for the TheFit client."""

from thefit.models.cache import CacheEntry
from thefit.models.exercise import (
    DaySets,
    ExerciseSet,
    ExerciseType,
    SetState,
    default_day_sets,
    exercise_id_for,
    generate_sets,
    pad_sets,
)
from thefit.models.feedback import (
    NO_FEEDBACK_MEMO,
    PENDING_MEMO,
    Feedback,
    NoFeedback,
    PendingFeedback,
    PlainTextFeedback,
    StructuredFeedback,
)
from thefit.models.user import UserProfile

__all__ = [
    # Cache
    "CacheEntry",
    # Exercise
    "DaySets",
    "ExerciseSet",
    "ExerciseType",
    "SetState",
    "default_day_sets",
    "exercise_id_for",
    "generate_sets",
    "pad_sets",
    # Feedback
    "NO_FEEDBACK_MEMO",
    "PENDING_MEMO",
    "Feedback",
    "NoFeedback",
    "PendingFeedback",
    "PlainTextFeedback",
    "StructuredFeedback",
    # User
    "UserProfile",
]
