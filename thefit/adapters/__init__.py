"""Adapters for the workout API and result storage."""

from thefit.adapters.result_storage import ResultStorage
from thefit.adapters.workout_api import (
    WorkoutApiClient,
    WorkoutApiError,
    WorkoutApiProtocol,
)

__all__ = [
    "ResultStorage",
    "WorkoutApiClient",
    "WorkoutApiError",
    "WorkoutApiProtocol",
]
