"""Tests for the local key-value cache."""

from datetime import date
from unittest.mock import AsyncMock

from sqlalchemy.exc import OperationalError

from thefit.models.exercise import ExerciseSet, ExerciseType, default_day_sets
from thefit.models.feedback import StructuredFeedback
from thefit.services.local_cache import WorkoutSetCache, exercise_sets_key

DAY = date(2025, 10, 21)


class TestLocalCacheStore:
    """Test the SQLite-backed key-value store."""

    async def test_set_get_overwrite(self, cache_store):
        await cache_store.set_item("user", '{"id": 20}')
        await cache_store.set_item("user", '{"id": 21}')

        assert await cache_store.get_item("user") == '{"id": 21}'
        assert await cache_store.get_item("missing") is None

    async def test_keys_and_removal(self, cache_store):
        for key in ("b", "a", "c"):
            await cache_store.set_item(key, "1")

        await cache_store.remove_item("b")
        assert await cache_store.get_all_keys() == ["a", "c"]

        await cache_store.multi_remove(["a", "c", "zzz"])
        assert await cache_store.get_all_keys() == []

    async def test_multi_remove_empty_is_noop(self, cache_store):
        await cache_store.set_item("a", "1")

        await cache_store.multi_remove([])

        assert await cache_store.get_all_keys() == ["a"]


class TestWorkoutSetCache:
    """Test the per-date snapshot on top of the store."""

    def test_key_format(self):
        assert exercise_sets_key(20, DAY) == "exerciseSets_20_2025-10-21"

    async def test_round_trip_keeps_feedback(self, set_cache):
        day_sets = default_day_sets()
        day_sets[ExerciseType.SQUAT][0] = ExerciseSet(
            1,
            weight="80",
            reps=10,
            feedback=StructuredFeedback(headline="Good depth", action_items=("slow tempo",)),
            analysis_video_url="https://cdn.example/set1.mp4",
            weight_locked=True,
            video_uploaded=True,
        )

        assert await set_cache.save_day(20, DAY, day_sets) is True
        loaded = await set_cache.load_day(20, DAY)

        assert loaded == day_sets

    async def test_corrupt_entry_reads_as_missing(self, set_cache, cache_store):
        await cache_store.set_item(exercise_sets_key(20, DAY), "{not json")

        assert await set_cache.load_day(20, DAY) is None

    async def test_non_object_entry_reads_as_missing(self, set_cache, cache_store):
        await cache_store.set_item(exercise_sets_key(20, DAY), "[1, 2]")

        assert await set_cache.load_day(20, DAY) is None

    async def test_store_failures_are_swallowed(self):
        store = AsyncMock()
        error = OperationalError("SELECT", {}, Exception("disk I/O error"))
        store.get_item.side_effect = error
        store.set_item.side_effect = error
        store.get_all_keys.side_effect = error
        cache = WorkoutSetCache(store)

        assert await cache.load_day(20, DAY) is None
        assert await cache.save_day(20, DAY, default_day_sets()) is False
        assert await cache.clear_user(20) == 0

    async def test_clear_user_only_touches_that_user(self, set_cache, cache_store):
        await cache_store.set_item("user", "{}")
        await cache_store.set_item("userToken", "t")
        await cache_store.set_item("notifications_20", "{}")
        await set_cache.save_day(20, DAY, default_day_sets())
        await set_cache.save_day(201, DAY, default_day_sets())

        removed = await set_cache.clear_user(20)

        assert removed == 1
        assert await cache_store.get_all_keys() == [
            exercise_sets_key(201, DAY),
            "notifications_20",
        ]
