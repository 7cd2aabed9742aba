"""Service layer for TheFit.

Services hold the sync policy, set lifecycle and session control logic.
"""

from thefit.services.local_cache import LocalCacheStore, WorkoutSetCache
from thefit.services.polling import FeedbackPoller, PollerState
from thefit.services.sync_policy import DaySource, SyncPolicyResolver
from thefit.services.workout_session import FutureDateError, WorkoutSession

__all__ = [
    "DaySource",
    "FeedbackPoller",
    "FutureDateError",
    "LocalCacheStore",
    "PollerState",
    "SyncPolicyResolver",
    "WorkoutSession",
    "WorkoutSetCache",
]
