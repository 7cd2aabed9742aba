"""Server-first synchronization policy for exercise sets.

Policy:
1. The workout API is the single source of truth.
2. The local cache only avoids a blank screen (latency, offline viewing).
3. Load order: server first, cache only when the server has nothing.
4. A successful server load replaces the exercise's collection wholesale;
   local edits are never merged into it.
5. Incremental feedback refreshes overlay server fields position by
   position but never clear locally known upload state.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Optional

from thefit.adapters.workout_api import WorkoutApiError, WorkoutApiProtocol
from thefit.models.exercise import (
    DEFAULT_MIN_SETS,
    DaySets,
    ExerciseSet,
    ExerciseType,
    copy_day_sets,
    default_day_sets,
    pad_sets,
)
from thefit.models.feedback import (
    Feedback,
    NoFeedback,
    PendingFeedback,
    feedback_from_ai,
)
from thefit.models.schemas import WorkoutItem
from thefit.observability import MetricsBackend, get_metrics_backend
from thefit.services.local_cache import WorkoutSetCache
from thefit.services.upload_keys import extract_weight_from_upload_key, format_weight

logger = logging.getLogger(__name__)


class DaySource(str, Enum):
    """Where a resolved day's sets came from."""

    REMOTE = "remote"
    MEMORY = "memory"
    CACHE = "cache"
    DEFAULT = "default"


@dataclass
class RemoteSnapshot:
    """Result of one remote fetch for a (date, exercise) pair."""

    day: date
    exercise: ExerciseType
    sets: list[ExerciseSet] = field(default_factory=list)
    total_reps: int = 0
    success: bool = False
    error: Optional[str] = None

    @property
    def has_items(self) -> bool:
        return bool(self.sets)


@dataclass
class ResolvedDay:
    """Authoritative per-date structure after applying the fallback chain."""

    day_sets: DaySets
    total_reps: int
    source: DaySource

    @property
    def remote_loaded(self) -> bool:
        return self.source in (DaySource.REMOTE, DaySource.MEMORY)


@dataclass
class FeedbackRefresh:
    """Result of an incremental feedback refresh."""

    sets: list[ExerciseSet]
    total_reps: int
    changed: bool
    remote_items: int = 0


def resolve_item_weight(item: WorkoutItem) -> str:
    """Weight of a remote item as text.

    Field priority: ``load_kg`` -> ``weight`` -> weight token of ``s3_key``.
    Zero and empty values fall through to the next source.
    """
    for candidate in (item.load_kg, item.weight, extract_weight_from_upload_key(item.s3_key)):
        text = format_weight(candidate)
        if text and text not in ("0", "0.0"):
            return text
    return ""


def set_from_item(item: WorkoutItem, set_number: int) -> ExerciseSet:
    """Build a set from a remote item.

    A resolved weight means a video was uploaded for the set; without AI
    feedback such a set is still being analyzed.
    """
    weight = resolve_item_weight(item)
    feedback: Optional[Feedback] = feedback_from_ai(item.ai_feedback)
    if feedback is None:
        feedback = PendingFeedback() if weight else NoFeedback()

    uploaded = bool(weight)
    return ExerciseSet(
        set_number=set_number,
        weight=weight,
        reps=item.rep_cnt or None,
        feedback=feedback,
        analysis_video_url=item.result_video_url,
        weight_locked=uploaded,
        video_uploaded=uploaded,
    )


def _merge_feedback(local: Feedback, remote: Feedback) -> Feedback:
    # 분석 완료 상태에서 되돌아가지 않음
    if remote.is_analyzed:
        return remote
    if local.is_analyzed:
        return local
    if isinstance(local, PendingFeedback) or isinstance(remote, PendingFeedback):
        return PendingFeedback()
    return NoFeedback()


def overlay_set(local: ExerciseSet, remote: ExerciseSet) -> ExerciseSet:
    """Overlay a remote set onto a local one without losing upload state."""
    return replace(
        local,
        weight=remote.weight if remote.has_weight else local.weight,
        reps=remote.reps if remote.reps is not None else local.reps,
        feedback=_merge_feedback(local.feedback, remote.feedback),
        analysis_video_url=remote.analysis_video_url or local.analysis_video_url,
        weight_locked=remote.weight_locked or local.weight_locked,
        video_uploaded=remote.video_uploaded or local.video_uploaded,
    )


def overlay_sets(local: list[ExerciseSet], remote: list[ExerciseSet]) -> list[ExerciseSet]:
    """Overlay remote sets by position; positions without a remote set stay."""
    return [
        overlay_set(current, remote[i]) if i < len(remote) else current
        for i, current in enumerate(local)
    ]


class SyncPolicyResolver:
    """Decides between server data, cached data and defaults."""

    def __init__(
        self,
        api: WorkoutApiProtocol,
        cache: WorkoutSetCache,
        min_sets: int = DEFAULT_MIN_SETS,
        metrics: Optional[MetricsBackend] = None,
    ):
        self.api = api
        self.cache = cache
        self.min_sets = min_sets
        self.metrics = metrics or get_metrics_backend()

    async def resolve(self, user_id: int, day: date, exercise: ExerciseType) -> RemoteSnapshot:
        """Fetch one (date, exercise) collection from the server.

        Failures are logged and reported as an empty snapshot; they never
        propagate to the caller.
        """
        snapshot = RemoteSnapshot(day=day, exercise=exercise)
        start_time = time.perf_counter()
        try:
            payload = await self.api.get_workouts_by_date(user_id, day, exercise)
            snapshot.sets = [
                set_from_item(item, i + 1) for i, item in enumerate(payload.items)
            ]
            snapshot.total_reps = payload.total_reps if snapshot.sets else 0
            snapshot.success = True
        except WorkoutApiError as e:
            logger.error("❌ 날짜별 서버 데이터 불러오기 실패 (%s %s): %s", day, exercise.value, e)
            snapshot.error = str(e)

        duration_ms = (time.perf_counter() - start_time) * 1000
        self.metrics.observe_sync_job(
            exercise.value,
            snapshot.success,
            duration_ms,
            items_fetched=len(snapshot.sets),
        )
        logger.info(
            "Fetched %s for user %s on %s: success=%s items=%d total_reps=%d duration_ms=%.2f",
            exercise.value,
            user_id,
            day,
            snapshot.success,
            len(snapshot.sets),
            snapshot.total_reps,
            duration_ms,
        )
        return snapshot

    def apply_remote(self, day_sets: DaySets, snapshot: RemoteSnapshot) -> DaySets:
        """Replace the snapshot's exercise wholesale; other exercises untouched."""
        updated = copy_day_sets(day_sets)
        updated[snapshot.exercise] = pad_sets(snapshot.sets, self.min_sets)
        return updated

    async def settle_day(
        self,
        user_id: int,
        snapshot: RemoteSnapshot,
        in_memory: Optional[DaySets] = None,
        remote_loaded: bool = False,
    ) -> ResolvedDay:
        """Apply the fallback chain to an already fetched snapshot.

        Nothing is written to the cache here; the caller persists a remote
        result once it has been applied to its latest state.

        Args:
            user_id: User ID.
            snapshot: Result of ``resolve`` for the day being viewed.
            in_memory: Current in-memory sets, only if they belong to the
                snapshot's day.
            remote_loaded: Whether ``in_memory`` already holds a successful
                server load for the snapshot's exercise.
        """
        day, exercise = snapshot.day, snapshot.exercise

        if snapshot.has_items:
            base = in_memory
            if base is None:
                base = await self.cache.load_day(user_id, day) or default_day_sets(self.min_sets)
            day_sets = self.apply_remote(base, snapshot)
            logger.info(
                "✅ 서버 데이터로 직접 교체 완료: %s %d sets (server: %d)",
                exercise.value,
                len(day_sets[exercise]),
                len(snapshot.sets),
            )
            return ResolvedDay(day_sets, snapshot.total_reps, DaySource.REMOTE)

        if remote_loaded and in_memory is not None:
            logger.info("서버 데이터 우선 사용 - 로컬 캐시 무시 (%s %s)", day, exercise.value)
            return ResolvedDay(in_memory, 0, DaySource.MEMORY)

        cached = await self.cache.load_day(user_id, day)
        if cached is not None:
            logger.info("서버 데이터 없음 - 로컬 캐시 사용 (%s)", day)
            return ResolvedDay(cached, 0, DaySource.CACHE)

        logger.info("로컬 캐시 없음 - 기본 세트로 초기화 (%s)", day)
        return ResolvedDay(default_day_sets(self.min_sets), 0, DaySource.DEFAULT)

    async def resolve_day(
        self,
        user_id: int,
        day: date,
        exercise: ExerciseType,
        in_memory: Optional[DaySets] = None,
        remote_loaded: bool = False,
    ) -> ResolvedDay:
        """Fetch ``day`` and resolve the full per-date structure.

        A remote result is written to the cache. Callers that keep their own
        state across the fetch should use ``resolve`` and ``settle_day``
        instead, so the result lands on their latest state.
        """
        snapshot = await self.resolve(user_id, day, exercise)
        resolved = await self.settle_day(user_id, snapshot, in_memory, remote_loaded)
        if resolved.source == DaySource.MEMORY:
            resolved.day_sets = copy_day_sets(resolved.day_sets)
        if resolved.source == DaySource.REMOTE:
            await self.cache.save_day(user_id, day, resolved.day_sets)
        return resolved

    def apply_feedback(self, sets: list[ExerciseSet], snapshot: RemoteSnapshot) -> FeedbackRefresh:
        """Overlay a refreshed snapshot onto the current sets.

        Zero items leave the sets as they are and reset the total reps.
        """
        if not snapshot.has_items:
            return FeedbackRefresh(sets=list(sets), total_reps=0, changed=False)

        merged = overlay_sets(sets, snapshot.sets)
        return FeedbackRefresh(
            sets=merged,
            total_reps=snapshot.total_reps,
            changed=merged != list(sets),
            remote_items=len(snapshot.sets),
        )
