"""Session-scoped controller for the workout log.

One ``WorkoutSession`` exists per signed-in user and open workout view. It
owns the selected date and exercise, the per-date set collections, the
daily total reps and the feedback poller. Every user action is a coroutine
method; after each state change the active collection is handed to the
poller.

Each remote fetch is tagged with the (user, date, exercise) it was issued
for. A response that arrives after the session moved to another key is
dropped.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Awaitable, Callable, Literal, Optional

from thefit.adapters.result_storage import ResultStorage
from thefit.adapters.workout_api import WorkoutApiProtocol
from thefit.core.config import Settings, get_settings
from thefit.models.exercise import (
    DaySets,
    ExerciseSet,
    ExerciseType,
    copy_day_sets,
    default_day_sets,
)
from thefit.models.user import UserProfile
from thefit.services.analyzed_video import AnalyzedVideoService, PermissionGate
from thefit.services.local_cache import WorkoutSetCache
from thefit.services.polling import FeedbackPoller
from thefit.services.set_lifecycle import UploadRequest, add_set, begin_upload, edit_weight
from thefit.services.sync_policy import DaySource, ResolvedDay, SyncPolicyResolver
from thefit.services.upload_keys import build_timestamp14, to_yyyymmdd

logger = logging.getLogger(__name__)

UploadHandoff = Callable[[UploadRequest], Awaitable[None]]
Clock = Callable[[], datetime]


class FutureDateError(Exception):
    """A date after today was selected."""

    def __init__(self, requested: date, today: date):
        super().__init__("오늘 날짜까지만 선택할 수 있습니다.")
        self.requested = requested
        self.today = today


@dataclass(frozen=True)
class ViewKey:
    """Target of a fetch: whose sets, which day, which exercise."""

    user_id: int
    day: date
    exercise: ExerciseType


@dataclass
class PreviousWorkout:
    day: date
    display_date: str
    day_sets: DaySets


def format_display_date(day: date) -> str:
    """``YY.MM.DD``"""
    return day.strftime("%y.%m.%d")


class WorkoutSession:
    """Controller for one user's workout log."""

    def __init__(
        self,
        user: UserProfile,
        api: WorkoutApiProtocol,
        cache: WorkoutSetCache,
        settings: Optional[Settings] = None,
        resolver: Optional[SyncPolicyResolver] = None,
        analyzed_videos: Optional[AnalyzedVideoService] = None,
        upload_handoff: Optional[UploadHandoff] = None,
        clock: Optional[Clock] = None,
        poller: Optional[FeedbackPoller] = None,
    ):
        self.settings = settings or get_settings()
        self.user = user
        self.api = api
        self.cache = cache
        self.min_sets = self.settings.min_sets_per_exercise
        self.resolver = resolver or SyncPolicyResolver(api, cache, min_sets=self.min_sets)
        self.analyzed_videos = analyzed_videos or AnalyzedVideoService(
            api,
            storage=ResultStorage(self.settings),
            result_folder=self.settings.result_folder,
        )
        self.upload_handoff = upload_handoff
        self._clock = clock or datetime.now
        self.poller = poller or FeedbackPoller(
            self.fetch_feedback,
            interval_seconds=self.settings.poll_interval_seconds,
            final_delay_seconds=self.settings.final_refresh_delay_seconds,
        )

        self.selected_date: date = self.today()
        self.selected_exercise: ExerciseType = ExerciseType.SQUAT
        self.day_sets: DaySets = default_day_sets(self.min_sets)
        self.total_reps = 0
        self.source: Optional[DaySource] = None
        # day_sets가 속한 날짜 (아직 불러오지 않았으면 None)
        self._sets_day: Optional[date] = None
        self._remote_loaded: set[ExerciseType] = set()
        # 로컬 변경마다 증가
        self._revision = 0

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    def today(self) -> date:
        return self._clock().date()

    @property
    def is_today(self) -> bool:
        return self.selected_date == self.today()

    @property
    def view_key(self) -> ViewKey:
        return ViewKey(self.user.id, self.selected_date, self.selected_exercise)

    @property
    def active_sets(self) -> list[ExerciseSet]:
        return self.day_sets[self.selected_exercise]

    def _is_stale(self, key: ViewKey) -> bool:
        if key != self.view_key:
            logger.info(
                "Discarding stale response for %s %s (now %s %s)",
                key.day,
                key.exercise.value,
                self.selected_date,
                self.selected_exercise.value,
            )
            return True
        return False

    async def _persist(self) -> None:
        if self._sets_day is None:
            return
        await self.cache.save_day(self.user.id, self._sets_day, self.day_sets)

    def _set_active(self, sets: list[ExerciseSet]) -> None:
        updated = copy_day_sets(self.day_sets)
        updated[self.selected_exercise] = sets
        self.day_sets = updated
        self._revision += 1

    def _observe(self) -> None:
        self.poller.observe(self.active_sets, self.selected_exercise)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self) -> Optional[ResolvedDay]:
        """Resolve the selected (date, exercise); server first.

        The fetched result is applied to the sets as they are when it
        arrives, so local edits made during the fetch survive.

        Returns:
            The resolved day, or None if the response went stale.
        """
        key = self.view_key
        revision = self._revision
        snapshot = await self.resolver.resolve(key.user_id, key.day, key.exercise)
        if self._is_stale(key):
            return None

        same_day = self._sets_day == key.day
        in_memory = self.day_sets if same_day else None
        resolved = await self.resolver.settle_day(
            key.user_id,
            snapshot,
            in_memory=in_memory,
            remote_loaded=same_day and key.exercise in self._remote_loaded,
        )
        if self._is_stale(key):
            return None

        same_day = self._sets_day == key.day
        edited = same_day and self._revision != revision
        if resolved.source == DaySource.MEMORY or (
            edited and resolved.source != DaySource.REMOTE
        ):
            # 불러오는 동안 바뀐 로컬 상태 유지
            resolved = ResolvedDay(self.day_sets, 0, DaySource.MEMORY)
        elif resolved.source == DaySource.REMOTE and same_day:
            resolved = ResolvedDay(
                self.resolver.apply_remote(self.day_sets, snapshot),
                resolved.total_reps,
                DaySource.REMOTE,
            )

        if not same_day:
            self._remote_loaded = set()
        if resolved.source == DaySource.REMOTE:
            self._remote_loaded.add(key.exercise)

        self.day_sets = resolved.day_sets
        self.total_reps = resolved.total_reps
        self.source = resolved.source
        self._sets_day = key.day
        logger.info(
            "🔄 데이터 로딩 완료 (%s %s): source=%s total_reps=%d",
            key.day,
            key.exercise.value,
            resolved.source.value,
            resolved.total_reps,
        )
        self._observe()
        if resolved.source == DaySource.REMOTE:
            await self._persist()
        return resolved

    async def focus(self) -> Optional[ResolvedDay]:
        """View came into focus: reload, then sync upload state."""
        resolved = await self.load()
        if resolved is not None:
            await self.fetch_feedback()
        return resolved

    async def change_date(self, direction: Literal["prev", "next"]) -> Optional[ResolvedDay]:
        """Move one day back or forward; forward stops at today."""
        if direction == "prev":
            new_date = self.selected_date - timedelta(days=1)
        elif direction == "next":
            if self.selected_date >= self.today():
                return None
            new_date = self.selected_date + timedelta(days=1)
        else:
            raise ValueError(f"Unknown direction: {direction!r}")

        self.selected_date = new_date
        return await self.load()

    async def select_date(self, day: date) -> Optional[ResolvedDay]:
        """Jump to ``day``.

        Raises:
            FutureDateError: If ``day`` is after today.
        """
        today = self.today()
        if day > today:
            raise FutureDateError(day, today)
        self.selected_date = day
        return await self.load()

    async def change_exercise(self, exercise: ExerciseType) -> Optional[ResolvedDay]:
        """Persist the current day, switch exercise, reload from the server."""
        await self._persist()
        self.selected_exercise = ExerciseType.parse(exercise)
        return await self.load()

    # ------------------------------------------------------------------
    # Set actions
    # ------------------------------------------------------------------

    async def change_weight(self, index: int, value: str) -> ExerciseSet:
        """Edit the weight of the active exercise's set at ``index``.

        Raises:
            LifecycleError: If the set may not be edited.
        """
        sets = edit_weight(self.active_sets, index, value, self.is_today)
        self._set_active(sets)
        await self._persist()
        self._observe()
        return sets[index]

    async def upload_video(
        self,
        index: int,
        moment: Optional[datetime] = None,
    ) -> UploadRequest:
        """Lock the set, persist it, then hand the upload request over.

        Raises:
            LifecycleError: If an upload precondition fails.
        """
        timestamp14 = build_timestamp14(moment or self._clock())
        sets, request = begin_upload(
            self.active_sets,
            index,
            self.is_today,
            self.user,
            self.selected_exercise,
            timestamp14,
            folder=self.settings.upload_folder,
        )
        self._set_active(sets)
        await self._persist()
        self._observe()

        if self.upload_handoff is not None:
            await self.upload_handoff(request)
        return request

    async def add_set(self) -> ExerciseSet:
        """Append an empty set, persist, then check the server.

        Raises:
            LifecycleError: If the selected date is not today.
        """
        sets = add_set(self.active_sets, self.is_today)
        self._set_active(sets)
        await self._persist()
        logger.info("✅ 세트 추가 후 로컬 캐시 저장 완료")
        await self.fetch_feedback()
        return self.active_sets[-1]

    async def on_upload_completed(self) -> None:
        logger.info("✅ 영상 업로드 완료 감지 - 자동 새로고침")
        await self.fetch_feedback()

    async def fetch_feedback(self) -> None:
        """Incremental refresh of the selected (date, exercise)."""
        key = self.view_key
        if self._sets_day != key.day:
            await self.load()
            return

        snapshot = await self.resolver.resolve(key.user_id, key.day, key.exercise)
        if self._is_stale(key) or self._sets_day != key.day:
            return

        # 응답 도착 시점의 세트에 덮어씀
        refresh = self.resolver.apply_feedback(self.active_sets, snapshot)
        self.total_reps = refresh.total_reps
        if refresh.changed:
            self._set_active(refresh.sets)
            self._observe()
        if refresh.remote_items:
            await self._persist()

    # ------------------------------------------------------------------
    # Feedback video
    # ------------------------------------------------------------------

    async def get_feedback_video_url(self, set_index: int) -> str:
        """URL of the analysis video of the set at ``set_index``.

        Works for past dates too.

        Raises:
            AnalyzedVideoError: If no URL could be obtained.
        """
        return await self.analyzed_videos.get_url(
            self.user,
            to_yyyymmdd(self.selected_date),
            set_index + 1,
            self.selected_exercise,
            download=True,
        )

    async def open_feedback_video(self, set_index: int, permission_gate: PermissionGate) -> str:
        """Resolve the analysis video URL and clear the storage permission.

        Raises:
            AnalyzedVideoError: If no URL could be obtained.
            StoragePermissionDenied: If the permission was refused.
        """
        url = await self.get_feedback_video_url(set_index)
        return await self.analyzed_videos.open(url, permission_gate)

    # ------------------------------------------------------------------
    # History / teardown
    # ------------------------------------------------------------------

    async def previous_workouts(self) -> list[PreviousWorkout]:
        """Cached days before the selected date that have any weight entered."""
        workouts: list[PreviousWorkout] = []
        for offset in range(1, self.settings.previous_workout_days + 1):
            day = self.selected_date - timedelta(days=offset)
            day_sets = await self.cache.load_day(self.user.id, day)
            if day_sets is None:
                continue
            if any(s.has_weight for sets in day_sets.values() for s in sets):
                workouts.append(PreviousWorkout(day, format_display_date(day), day_sets))
        return workouts

    async def force_logout(self) -> int:
        """Stop polling and drop the user's session keys and cached days.

        Returns:
            Number of cached days removed.
        """
        await self.poller.close()
        removed = await self.cache.clear_user(self.user.id)
        self.day_sets = default_day_sets(self.min_sets)
        self.total_reps = 0
        self.source = None
        self._sets_day = None
        self._remote_loaded = set()
        logger.info("🚪 강제 로그아웃: user %s, %d cached days removed", self.user.id, removed)
        return removed

    async def close(self) -> None:
        """View torn down: stop polling."""
        await self.poller.close()
