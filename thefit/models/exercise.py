"""Exercise set domain model."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional

from thefit.models.feedback import (
    Feedback,
    NoFeedback,
    PendingFeedback,
    decode_memo,
)

DEFAULT_MIN_SETS = 5


class ExerciseType(str, Enum):
    """Tracked lifts. The numeric id is the server pipeline's exercise code."""

    DEADLIFT = "deadlift"
    SQUAT = "squat"
    BENCH_PRESS = "bench_press"

    @property
    def exercise_id(self) -> int:
        return _EXERCISE_IDS[self]

    @property
    def label(self) -> str:
        return _EXERCISE_LABELS[self]

    @classmethod
    def parse(cls, value: "ExerciseType | str") -> "ExerciseType":
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())


_EXERCISE_IDS = {
    ExerciseType.DEADLIFT: 1,
    ExerciseType.SQUAT: 2,
    ExerciseType.BENCH_PRESS: 3,
}

_EXERCISE_LABELS = {
    ExerciseType.DEADLIFT: "Deadlift",
    ExerciseType.SQUAT: "Squat",
    ExerciseType.BENCH_PRESS: "Bench Press",
}


def exercise_id_for(value: "ExerciseType | str | None") -> int:
    """Exercise code for an exercise value; unknown values map to squat (2)."""
    try:
        return ExerciseType.parse(value).exercise_id
    except ValueError:
        return ExerciseType.SQUAT.exercise_id


class SetState(str, Enum):
    """Lifecycle state of a single set."""

    EMPTY = "empty"
    EDITABLE = "editable"
    LOCKED_PENDING_ANALYSIS = "locked_pending_analysis"
    ANALYZED = "analyzed"


@dataclass
class ExerciseSet:
    """One row of a workout session."""

    set_number: int
    weight: str = ""
    reps: Optional[int] = None
    feedback: Feedback = field(default_factory=NoFeedback)
    analysis_video_url: Optional[str] = None
    weight_locked: bool = False
    video_uploaded: bool = False

    @property
    def has_weight(self) -> bool:
        return bool(self.weight and self.weight.strip())

    @property
    def memo(self) -> str:
        return self.feedback.memo

    @property
    def state(self) -> SetState:
        if self.feedback.is_analyzed:
            return SetState.ANALYZED
        if self.weight_locked or self.video_uploaded or isinstance(self.feedback, PendingFeedback):
            return SetState.LOCKED_PENDING_ANALYSIS
        if self.has_weight:
            return SetState.EDITABLE
        return SetState.EMPTY

    @property
    def is_awaiting_analysis(self) -> bool:
        """Uploaded, but feedback or the analysis video has not arrived."""
        if not self.video_uploaded:
            return False
        return (
            isinstance(self.feedback, (NoFeedback, PendingFeedback))
            or not self.analysis_video_url
        )

    def renumbered(self, set_number: int) -> "ExerciseSet":
        return replace(self, set_number=set_number)

    def to_storage(self) -> dict[str, Any]:
        """Serialize with the mobile client's cache field names."""
        return {
            "set": self.set_number,
            "weight": self.weight,
            "reps": self.reps if self.reps is not None else "",
            "memo": self.memo,
            "analysisVideoUrl": self.analysis_video_url,
            "weightLocked": self.weight_locked,
            "videoUploaded": self.video_uploaded,
        }

    @classmethod
    def from_storage(cls, data: dict[str, Any], position: int) -> "ExerciseSet":
        """Rebuild a set from a cached dict; ``position`` is 0-based."""
        set_number = data.get("set")
        if not isinstance(set_number, int) or set_number < 1:
            set_number = position + 1

        weight = data.get("weight")
        weight = "" if weight is None else str(weight).strip()

        reps = data.get("reps")
        try:
            reps = int(reps) if reps not in (None, "") else None
        except (TypeError, ValueError):
            reps = None

        video_uploaded = bool(data.get("videoUploaded"))
        return cls(
            set_number=set_number,
            weight=weight,
            reps=reps,
            feedback=decode_memo(data.get("memo")),
            analysis_video_url=data.get("analysisVideoUrl") or None,
            # 업로드된 세트는 항상 무게가 잠겨 있어야 함
            weight_locked=bool(data.get("weightLocked")) or video_uploaded,
            video_uploaded=video_uploaded,
        )


DaySets = dict[ExerciseType, list[ExerciseSet]]


def generate_sets(count: int = DEFAULT_MIN_SETS) -> list[ExerciseSet]:
    """``count`` empty sets numbered from 1."""
    return [ExerciseSet(set_number=i + 1) for i in range(count)]


def pad_sets(sets: list[ExerciseSet], minimum: int = DEFAULT_MIN_SETS) -> list[ExerciseSet]:
    """Pad with empty sets up to ``minimum``; never truncates."""
    padded = list(sets)
    while len(padded) < minimum:
        padded.append(ExerciseSet(set_number=len(padded) + 1))
    return padded


def default_day_sets(minimum: int = DEFAULT_MIN_SETS) -> DaySets:
    return {exercise: generate_sets(minimum) for exercise in ExerciseType}


def copy_day_sets(day_sets: DaySets) -> DaySets:
    return {exercise: list(sets) for exercise, sets in day_sets.items()}


def day_sets_to_storage(day_sets: DaySets) -> dict[str, list[dict[str, Any]]]:
    return {
        exercise.value: [s.to_storage() for s in sets]
        for exercise, sets in day_sets.items()
    }


def day_sets_from_storage(
    data: dict[str, Any],
    minimum: int = DEFAULT_MIN_SETS,
) -> DaySets:
    """Rebuild a per-date structure; missing exercises get empty sets."""
    day_sets: DaySets = {}
    for exercise in ExerciseType:
        raw_sets = data.get(exercise.value)
        if not isinstance(raw_sets, list):
            day_sets[exercise] = generate_sets(minimum)
            continue
        sets = [
            ExerciseSet.from_storage(raw, i)
            for i, raw in enumerate(raw_sets)
            if isinstance(raw, dict)
        ]
        day_sets[exercise] = pad_sets(sets, minimum)
    return day_sets
