"""Object keys for uploaded and analyzed exercise videos.

Upload key format expected by the analysis pipeline:

    fitvideo/{userId}_{userName}_{weightKg}_{exerciseId}_{YYYYMMDDHHmmss}.mp4

Result videos live at:

    {resultFolder}/{userId}_{userName}/{YYYYMMDD}/{exercise}/set{N}_{YYYYMMDD}160000.mp4
"""

import logging
import re
from datetime import date, datetime
from typing import Optional, Union

from thefit.models.exercise import ExerciseType, exercise_id_for
from thefit.models.user import UserProfile

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def sanitize_name(user: UserProfile) -> str:
    """Username (or name) with all whitespace removed.

    Upload and download paths must use the same folder name.
    """
    return _WHITESPACE.sub("", user.username or user.name or "")


def to_yyyymmdd(day: date) -> str:
    return day.strftime("%Y%m%d")


def build_timestamp14(moment: datetime) -> str:
    """``YYYYMMDDHHmmss`` in the moment's own (device local) time."""
    return moment.strftime("%Y%m%d%H%M%S")


def format_weight(value: Union[int, float, str, None]) -> str:
    """Render a weight as text: ``80.0`` -> ``"80"``, ``82.5`` -> ``"82.5"``."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return ""
    if isinstance(value, (int, float)):
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value)
    return str(value).strip()


def build_upload_key(
    user: UserProfile,
    weight_kg: Union[int, float, str, None],
    exercise: Union[ExerciseType, str],
    timestamp14: str,
    folder: str = "fitvideo",
) -> str:
    """Object key for a set video upload."""
    weight = format_weight(weight_kg) or "0"
    exercise_id = exercise_id_for(exercise)
    return f"{folder}/{user.id}_{sanitize_name(user)}_{weight}_{exercise_id}_{timestamp14}.mp4"


def extract_weight_from_upload_key(key: Optional[str]) -> Optional[float]:
    """Weight token of an upload key, or None.

    Example: ``fitvideo/20_박승민_80_2_20251021160856.mp4`` -> ``80.0``.
    """
    if not key:
        return None
    file_name = key.rsplit("/", 1)[-1]
    parts = file_name.split("_")
    if len(parts) < 3:
        return None
    # parseFloat 호환: 앞쪽 숫자 부분만 읽음
    match = re.match(r"\s*[-+]?\d*\.?\d+", parts[2])
    if not match:
        return None
    try:
        return float(match.group())
    except ValueError:
        logger.debug("Could not parse weight from upload key %s", key)
        return None


def result_video_key(
    user: UserProfile,
    yyyymmdd: str,
    exercise: ExerciseType,
    set_no: int,
    folder: str = "fitvideoresult",
) -> str:
    """Conventional storage key of an analysis result video."""
    return (
        f"{folder}/{user.id}_{sanitize_name(user)}/{yyyymmdd}/{exercise.value}/"
        f"set{set_no}_{yyyymmdd}160000.mp4"
    )
