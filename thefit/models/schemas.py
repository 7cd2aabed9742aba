from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, field_validator


# Workout API payloads
class WorkoutItem(BaseModel):
    """One analyzed (or analyzing) set as reported by the workout API."""

    model_config = ConfigDict(extra="ignore")

    load_kg: Optional[Union[float, str]] = None
    weight: Optional[Union[float, str]] = None
    rep_cnt: Optional[int] = None
    ai_feedback: Any = None
    s3_key: Optional[str] = None
    video_url: Optional[str] = None
    analysis_video_url: Optional[str] = None
    analyzed_video_url: Optional[str] = None

    @field_validator("rep_cnt", mode="before")
    @classmethod
    def _blank_reps(cls, value: Any) -> Any:
        if value in ("", None):
            return None
        return value

    @property
    def result_video_url(self) -> Optional[str]:
        return self.video_url or self.analysis_video_url or self.analyzed_video_url or None


class WorkoutsByDateResponse(BaseModel):
    """Response of ``GET /workouts/users/{user_id}/date={date}``."""

    model_config = ConfigDict(extra="ignore")

    user_id: Optional[Union[int, str]] = None
    date: Optional[str] = None
    exercise_id: Optional[int] = None
    total_reps: int = 0
    items: list[WorkoutItem] = []

    @field_validator("total_reps", mode="before")
    @classmethod
    def _default_total_reps(cls, value: Any) -> Any:
        return 0 if value in (None, "") else value

    @field_validator("items", mode="before")
    @classmethod
    def _default_items(cls, value: Any) -> Any:
        return [] if value is None else value


class UrlResponse(BaseModel):
    """``{"url": ...}`` responses of the presign and analyzed-url endpoints."""

    model_config = ConfigDict(extra="ignore")

    url: Optional[str] = None
