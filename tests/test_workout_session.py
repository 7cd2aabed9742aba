"""Tests for the workout session controller."""

import asyncio
from datetime import date, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from thefit.adapters.workout_api import WorkoutApiError
from thefit.models.exercise import ExerciseSet, ExerciseType, SetState, default_day_sets
from thefit.models.feedback import PendingFeedback
from thefit.services.analyzed_video import StoragePermissionDenied
from thefit.services.local_cache import exercise_sets_key
from thefit.services.polling import PollerState
from thefit.services.set_lifecycle import LifecycleError, LifecycleViolation
from thefit.services.sync_policy import DaySource
from thefit.services.workout_session import FutureDateError, format_display_date

from conftest import TODAY

SQUAT = ExerciseType.SQUAT
PENDING_ITEM = {"load_kg": 80, "rep_cnt": 10, "ai_feedback": None}
ANALYZED_ITEM = {
    "load_kg": 80,
    "rep_cnt": 10,
    "video_url": "https://cdn.example/set1.mp4",
    "ai_feedback": {
        "headline": "Good depth",
        "positives": ["knee tracking"],
        "improvements": [],
        "action_items": ["slow tempo"],
    },
}


def hold_fetch(make_payload, items):
    """Server double that answers only after ``release`` is set."""
    started = asyncio.Event()
    release = asyncio.Event()

    async def fetch(user_id, day, exercise):
        started.set()
        await release.wait()
        return make_payload(items)

    return fetch, started, release


# =============================================================================
# Loading and navigation
# =============================================================================


class TestLoading:
    """Test focus, date and exercise navigation."""

    async def test_focus_loads_remote_and_starts_polling(
        self, workout_session, fake_api, make_payload
    ):
        fake_api.get_workouts_by_date.return_value = make_payload([PENDING_ITEM], total_reps=10)

        resolved = await workout_session.focus()

        assert resolved.source == DaySource.REMOTE
        assert workout_session.total_reps == 10
        assert workout_session.active_sets[0].state == SetState.LOCKED_PENDING_ANALYSIS
        assert len(workout_session.active_sets) == 5
        assert workout_session.poller.state == PollerState.POLLING

    async def test_focus_refreshes_feedback_after_load(
        self, workout_session, fake_api, make_payload
    ):
        fake_api.get_workouts_by_date.side_effect = [
            make_payload([PENDING_ITEM]),
            make_payload([ANALYZED_ITEM], total_reps=10),
        ]

        resolved = await workout_session.focus()

        assert resolved.source == DaySource.REMOTE
        assert fake_api.get_workouts_by_date.await_count == 2
        assert workout_session.active_sets[0].state == SetState.ANALYZED
        assert workout_session.total_reps == 10

    async def test_empty_day_uses_defaults(self, workout_session):
        resolved = await workout_session.focus()

        assert resolved.source == DaySource.DEFAULT
        assert workout_session.total_reps == 0
        assert workout_session.poller.state == PollerState.IDLE

    async def test_reload_without_items_keeps_remote_memory(
        self, workout_session, fake_api, make_payload
    ):
        fake_api.get_workouts_by_date.return_value = make_payload([ANALYZED_ITEM], total_reps=10)
        await workout_session.focus()
        fake_api.get_workouts_by_date.return_value = make_payload()

        resolved = await workout_session.focus()

        assert resolved.source == DaySource.MEMORY
        assert workout_session.active_sets[0].state == SetState.ANALYZED
        assert workout_session.total_reps == 0

    async def test_upload_during_reload_is_kept(
        self, workout_session, fake_api, make_payload, set_cache
    ):
        fake_api.get_workouts_by_date.return_value = make_payload([PENDING_ITEM])
        await workout_session.focus()
        await workout_session.change_weight(1, "90")
        fetch, started, release = hold_fetch(make_payload, [])
        fake_api.get_workouts_by_date.side_effect = fetch

        reload = asyncio.create_task(workout_session.focus())
        await started.wait()
        await workout_session.upload_video(1)
        release.set()
        resolved = await reload

        second = workout_session.active_sets[1]
        assert resolved.source == DaySource.MEMORY
        assert second.video_uploaded is True
        assert second.weight_locked is True
        cached = await set_cache.load_day(20, TODAY)
        assert cached[SQUAT][1].video_uploaded is True

    async def test_next_is_noop_at_today(self, workout_session, fake_api):
        result = await workout_session.change_date("next")

        assert result is None
        assert workout_session.selected_date == TODAY
        fake_api.get_workouts_by_date.assert_not_awaited()

    async def test_prev_and_next(self, workout_session, fake_api):
        await workout_session.change_date("prev")
        assert workout_session.selected_date == TODAY - timedelta(days=1)
        fake_api.get_workouts_by_date.assert_awaited_with(20, TODAY - timedelta(days=1), SQUAT)

        await workout_session.change_date("next")
        assert workout_session.selected_date == TODAY

    async def test_future_date_is_rejected(self, workout_session):
        with pytest.raises(FutureDateError):
            await workout_session.select_date(TODAY + timedelta(days=1))

        assert workout_session.selected_date == TODAY

    async def test_select_past_date(self, workout_session):
        resolved = await workout_session.select_date(date(2025, 10, 1))

        assert resolved is not None
        assert workout_session.selected_date == date(2025, 10, 1)
        assert workout_session.is_today is False

    async def test_change_exercise_persists_then_reloads(
        self, workout_session, fake_api, set_cache
    ):
        await workout_session.focus()
        await workout_session.change_weight(0, "80")

        await workout_session.change_exercise(ExerciseType.DEADLIFT)

        assert workout_session.selected_exercise == ExerciseType.DEADLIFT
        fake_api.get_workouts_by_date.assert_awaited_with(20, TODAY, ExerciseType.DEADLIFT)
        cached = await set_cache.load_day(20, TODAY)
        assert cached[SQUAT][0].weight == "80"
        # 캐시에서 불러와도 스쿼트 입력값 유지
        assert workout_session.day_sets[SQUAT][0].weight == "80"

    async def test_stale_response_is_discarded(self, workout_session, fake_api, make_payload):
        async def navigate_away(user_id, day, exercise):
            workout_session.selected_exercise = ExerciseType.BENCH_PRESS
            return make_payload([PENDING_ITEM], total_reps=10)

        fake_api.get_workouts_by_date.side_effect = navigate_away

        result = await workout_session.load()

        assert result is None
        assert workout_session.total_reps == 0
        assert workout_session.day_sets[SQUAT][0].weight == ""
        assert workout_session.source is None


# =============================================================================
# Set actions
# =============================================================================


class TestSetActions:
    """Test weight entry, upload and add-set flows."""

    async def test_change_weight_is_sanitized_and_cached(self, workout_session, set_cache):
        await workout_session.focus()

        updated = await workout_session.change_weight(0, "8a05kg")

        assert updated.weight == "805"
        cached = await set_cache.load_day(20, TODAY)
        assert cached[SQUAT][0].weight == "805"

    async def test_weight_edit_rejected_on_past_date(self, workout_session):
        await workout_session.change_date("prev")

        with pytest.raises(LifecycleError):
            await workout_session.change_weight(0, "80")

        assert workout_session.active_sets[0].weight == ""

    async def test_upload_locks_persists_and_hands_off(self, workout_session, set_cache):
        handoff = AsyncMock()
        workout_session.upload_handoff = handoff
        await workout_session.focus()
        await workout_session.change_weight(0, "80")

        request = await workout_session.upload_video(0)

        assert request.s3_key == "fitvideo/20_박승민_80_2_20251021160856.mp4"
        handoff.assert_awaited_once_with(request)
        cached = await set_cache.load_day(20, TODAY)
        assert cached[SQUAT][0].video_uploaded is True
        assert cached[SQUAT][0].weight_locked is True
        assert workout_session.poller.state == PollerState.POLLING

    async def test_upload_without_weight_changes_nothing(self, workout_session, set_cache):
        handoff = AsyncMock()
        workout_session.upload_handoff = handoff
        await workout_session.focus()
        before = list(workout_session.active_sets)

        with pytest.raises(LifecycleError) as exc_info:
            await workout_session.upload_video(0)

        assert exc_info.value.violation == LifecycleViolation.WEIGHT_REQUIRED
        assert workout_session.active_sets == before
        handoff.assert_not_awaited()
        assert await set_cache.load_day(20, TODAY) is None

    async def test_add_set_refreshes_from_server(self, workout_session, fake_api):
        await workout_session.focus()
        fake_api.get_workouts_by_date.reset_mock()

        added = await workout_session.add_set()

        assert added.set_number == 6
        assert len(workout_session.active_sets) == 6
        fake_api.get_workouts_by_date.assert_awaited_once_with(20, TODAY, SQUAT)

    async def test_add_set_rejected_on_past_date(self, workout_session):
        await workout_session.change_date("prev")

        with pytest.raises(LifecycleError):
            await workout_session.add_set()

        assert len(workout_session.active_sets) == 5


# =============================================================================
# Feedback refresh
# =============================================================================


class TestFeedbackRefresh:
    """Test incremental refresh through the session."""

    async def test_pending_set_becomes_analyzed_and_polling_stops(
        self, workout_session, fake_api, make_payload, set_cache
    ):
        fake_api.get_workouts_by_date.return_value = make_payload([PENDING_ITEM], total_reps=0)
        await workout_session.focus()
        assert workout_session.poller.was_polling is True

        fake_api.get_workouts_by_date.return_value = make_payload([ANALYZED_ITEM], total_reps=10)
        await workout_session.on_upload_completed()

        first = workout_session.active_sets[0]
        assert first.state == SetState.ANALYZED
        assert first.feedback.headline == "Good depth"
        assert workout_session.total_reps == 10
        assert workout_session.poller.state == PollerState.IDLE
        assert workout_session.poller.was_polling is False
        cached = await set_cache.load_day(20, TODAY)
        assert cached[SQUAT][0].state == SetState.ANALYZED

    async def test_zero_items_only_resets_total_reps(
        self, workout_session, fake_api, make_payload
    ):
        fake_api.get_workouts_by_date.return_value = make_payload([ANALYZED_ITEM], total_reps=10)
        await workout_session.focus()
        fake_api.get_workouts_by_date.return_value = make_payload()

        await workout_session.fetch_feedback()

        assert workout_session.total_reps == 0
        assert workout_session.active_sets[0].state == SetState.ANALYZED

    async def test_upload_during_refresh_is_kept(
        self, workout_session, fake_api, make_payload, set_cache
    ):
        fake_api.get_workouts_by_date.return_value = make_payload([PENDING_ITEM])
        await workout_session.focus()
        await workout_session.change_weight(1, "90")
        fetch, started, release = hold_fetch(make_payload, [PENDING_ITEM])
        fake_api.get_workouts_by_date.side_effect = fetch

        refresh = asyncio.create_task(workout_session.fetch_feedback())
        await started.wait()
        await workout_session.upload_video(1)
        release.set()
        await refresh

        second = workout_session.active_sets[1]
        assert second.weight == "90"
        assert second.video_uploaded is True
        assert second.weight_locked is True
        assert isinstance(second.feedback, PendingFeedback)
        cached = await set_cache.load_day(20, TODAY)
        assert cached[SQUAT][1].video_uploaded is True
        assert cached[SQUAT][1].weight_locked is True


# =============================================================================
# History, feedback video, logout
# =============================================================================


class TestHistoryAndTeardown:
    """Test previous workouts, result videos and force logout."""

    async def test_previous_workouts_lists_days_with_weight(self, workout_session, set_cache):
        with_weight = default_day_sets()
        with_weight[ExerciseType.BENCH_PRESS][1] = ExerciseSet(2, weight="60")
        await set_cache.save_day(20, TODAY - timedelta(days=1), with_weight)
        await set_cache.save_day(20, TODAY - timedelta(days=3), default_day_sets())
        await set_cache.save_day(20, TODAY - timedelta(days=8), with_weight)

        workouts = await workout_session.previous_workouts()

        assert [w.day for w in workouts] == [TODAY - timedelta(days=1)]
        assert workouts[0].display_date == "25.10.20"

    def test_display_date(self):
        assert format_display_date(date(2025, 1, 5)) == "25.01.05"

    async def test_feedback_video_url_for_past_date(self, workout_session, fake_api):
        await workout_session.select_date(date(2025, 10, 1))

        url = await workout_session.get_feedback_video_url(2)

        assert url == "https://signed.example/result.mp4"
        fake_api.get_analyzed_video_url.assert_awaited_once_with(
            "20251001", 3, 20, "박승민", SQUAT, download=True
        )

    async def test_feedback_video_falls_back_to_storage(self, workout_session, fake_api):
        fake_api.get_analyzed_video_url.side_effect = WorkoutApiError("x", status_code=500)
        s3_client = MagicMock()

        with patch("thefit.adapters.result_storage.boto3.client", return_value=s3_client):
            url = await workout_session.get_feedback_video_url(0)

        key = "fitvideoresult/20_박승민/20251021/squat/set1_20251021160000.mp4"
        assert url == f"https://thefit-bucket.s3.ap-northeast-2.amazonaws.com/{key}"
        s3_client.head_object.assert_called_once_with(Bucket="thefit-bucket", Key=key)

    async def test_open_feedback_video_denied(self, workout_session, fake_api, make_payload):
        fake_api.get_workouts_by_date.return_value = make_payload([ANALYZED_ITEM], total_reps=10)
        await workout_session.focus()
        before = workout_session.day_sets
        gate = AsyncMock()
        gate.request_storage_permission.return_value = False

        with pytest.raises(StoragePermissionDenied) as exc_info:
            await workout_session.open_feedback_video(0, gate)

        assert exc_info.value.choices == ("open_settings", "retry")
        assert workout_session.day_sets is before

    async def test_open_feedback_video_granted(self, workout_session):
        gate = AsyncMock()
        gate.request_storage_permission.return_value = True

        url = await workout_session.open_feedback_video(0, gate)

        assert url == "https://signed.example/result.mp4"

    async def test_force_logout_clears_user_keys(self, workout_session, cache_store, set_cache):
        await cache_store.set_item("user", "{}")
        await cache_store.set_item("userToken", "token")
        await set_cache.save_day(20, TODAY, default_day_sets())
        await set_cache.save_day(20, TODAY - timedelta(days=2), default_day_sets())
        await set_cache.save_day(21, TODAY, default_day_sets())

        removed = await workout_session.force_logout()

        assert removed == 2
        assert await cache_store.get_all_keys() == [exercise_sets_key(21, TODAY)]
        assert workout_session.poller.state == PollerState.IDLE
