"""Legal transitions of a single exercise set.

    EMPTY / EDITABLE --upload--> LOCKED_PENDING_ANALYSIS --feedback--> ANALYZED

The last transition only happens in the sync layer when the server reports a
real feedback narrative. Nothing here ever moves a set backwards.
"""

import logging
import re
from dataclasses import dataclass, replace
from enum import Enum

from thefit.models.exercise import ExerciseSet, ExerciseType, SetState
from thefit.models.feedback import PendingFeedback
from thefit.models.user import UserProfile
from thefit.services.upload_keys import build_upload_key

logger = logging.getLogger(__name__)

MAX_WEIGHT_DIGITS = 3

_NON_DIGITS = re.compile(r"[^0-9]")


class LifecycleViolation(str, Enum):
    """Why a set action was rejected. Values are the user-facing notices."""

    NOT_TODAY_EDIT = "오늘 날짜에만 무게를 수정할 수 있습니다."
    NOT_TODAY_UPLOAD = "오늘 날짜에만 영상 업로드가 가능합니다."
    NOT_TODAY_ADD = "오늘 날짜에만 세트를 추가할 수 있습니다."
    WEIGHT_REQUIRED = "무게를 먼저 입력해주세요."
    ALREADY_UPLOADED = "이미 영상을 업로드한 세트입니다."
    WEIGHT_LOCKED = "무게가 고정된 세트입니다."
    SET_NOT_FOUND = "존재하지 않는 세트입니다."


class LifecycleError(Exception):
    """A set action violated a lifecycle guard. Nothing was changed."""

    def __init__(self, violation: LifecycleViolation):
        super().__init__(violation.value)
        self.violation = violation

    @property
    def message(self) -> str:
        return self.violation.value


@dataclass(frozen=True)
class UploadRequest:
    """Hand-off to the upload collaborator."""

    s3_key: str
    exercise: ExerciseType
    exercise_id: int


def sanitize_weight_input(value: str) -> str:
    """Keep digits only, at most three of them."""
    return _NON_DIGITS.sub("", value or "")[:MAX_WEIGHT_DIGITS]


def can_edit_weight(exercise_set: ExerciseSet, is_today: bool) -> bool:
    return is_today and exercise_set.state in (SetState.EMPTY, SetState.EDITABLE)


def can_upload(exercise_set: ExerciseSet, is_today: bool) -> bool:
    return (
        is_today
        and exercise_set.has_weight
        and not (exercise_set.video_uploaded or exercise_set.weight_locked)
        and exercise_set.state in (SetState.EMPTY, SetState.EDITABLE)
    )


def _get_set(sets: list[ExerciseSet], index: int) -> ExerciseSet:
    if index < 0 or index >= len(sets):
        raise LifecycleError(LifecycleViolation.SET_NOT_FOUND)
    return sets[index]


def edit_weight(
    sets: list[ExerciseSet],
    index: int,
    value: str,
    is_today: bool,
) -> list[ExerciseSet]:
    """Return a new collection with the weight of ``sets[index]`` replaced.

    Raises:
        LifecycleError: If the date is not today or the set is locked.
    """
    if not is_today:
        raise LifecycleError(LifecycleViolation.NOT_TODAY_EDIT)
    current = _get_set(sets, index)
    if not can_edit_weight(current, is_today):
        raise LifecycleError(LifecycleViolation.WEIGHT_LOCKED)

    updated = list(sets)
    updated[index] = replace(current, weight=sanitize_weight_input(value))
    return updated


def begin_upload(
    sets: list[ExerciseSet],
    index: int,
    is_today: bool,
    user: UserProfile,
    exercise: ExerciseType,
    timestamp14: str,
    folder: str = "fitvideo",
) -> tuple[list[ExerciseSet], UploadRequest]:
    """Lock ``sets[index]`` for upload.

    Returns:
        The new collection and the upload request for the collaborator.

    Raises:
        LifecycleError: If any upload precondition fails.
    """
    if not is_today:
        raise LifecycleError(LifecycleViolation.NOT_TODAY_UPLOAD)
    current = _get_set(sets, index)
    if not current.has_weight:
        raise LifecycleError(LifecycleViolation.WEIGHT_REQUIRED)
    if current.video_uploaded or current.weight_locked or not can_upload(current, is_today):
        raise LifecycleError(LifecycleViolation.ALREADY_UPLOADED)

    updated = list(sets)
    updated[index] = replace(
        current,
        weight_locked=True,
        video_uploaded=True,
        feedback=PendingFeedback(),
    )
    request = UploadRequest(
        s3_key=build_upload_key(user, current.weight, exercise, timestamp14, folder=folder),
        exercise=exercise,
        exercise_id=exercise.exercise_id,
    )
    logger.info("Set %d locked for upload: %s", current.set_number, request.s3_key)
    return updated, request


def add_set(sets: list[ExerciseSet], is_today: bool) -> list[ExerciseSet]:
    """Append an empty set numbered after the last one.

    Raises:
        LifecycleError: If the date is not today.
    """
    if not is_today:
        raise LifecycleError(LifecycleViolation.NOT_TODAY_ADD)
    return [*sets, ExerciseSet(set_number=len(sets) + 1)]
