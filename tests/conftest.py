"""Pytest configuration and fixtures for thefit tests."""

import os
from datetime import date, datetime
from typing import Any, Optional
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import StaticPool
from sqlalchemy.ext.asyncio import create_async_engine

os.environ.setdefault("API_BASE_URL", "https://api.thefit.test")

from thefit.core.config import Settings
from thefit.core.database import init_models
from thefit.models.schemas import WorkoutsByDateResponse
from thefit.models.user import UserProfile
from thefit.observability import MetricsCollector
from thefit.services.local_cache import LocalCacheStore, WorkoutSetCache
from thefit.services.sync_policy import SyncPolicyResolver
from thefit.services.workout_session import WorkoutSession

TODAY = date(2025, 10, 21)
NOW = datetime(2025, 10, 21, 16, 8, 56)


# -------------------------------------------------------------------------
# Database Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
async def async_engine():
    """Create an async SQLite engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def cache_store(async_engine) -> LocalCacheStore:
    return LocalCacheStore(async_engine)


@pytest.fixture
async def set_cache(cache_store) -> WorkoutSetCache:
    return WorkoutSetCache(cache_store, min_sets=5)


# -------------------------------------------------------------------------
# Domain Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the developer's environment."""
    return Settings(
        _env_file=None,
        api_base_url="https://api.thefit.test",
        poll_interval_seconds=10.0,
        final_refresh_delay_seconds=0.1,
        min_sets_per_exercise=5,
        previous_workout_days=7,
    )


@pytest.fixture
def user() -> UserProfile:
    return UserProfile(id=20, username="박승민")


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def make_payload():
    """Factory for ``GET /workouts/users/{id}/date=...`` responses."""

    def _make(
        items: Optional[list[dict[str, Any]]] = None,
        total_reps: int = 0,
        exercise_id: int = 2,
    ) -> WorkoutsByDateResponse:
        return WorkoutsByDateResponse.model_validate(
            {
                "user_id": 20,
                "date": TODAY.isoformat(),
                "exercise_id": exercise_id,
                "total_reps": total_reps,
                "items": items or [],
            }
        )

    return _make


@pytest.fixture
def fake_api(make_payload) -> AsyncMock:
    """Workout API double; returns an empty day unless told otherwise."""
    api = AsyncMock()
    api.get_workouts_by_date.return_value = make_payload()
    api.get_analyzed_video_url.return_value = "https://signed.example/result.mp4"
    api.get_presigned_put_url.return_value = "https://signed.example/upload"
    api.upload_to_presigned_url.return_value = None
    return api


@pytest.fixture
def resolver(fake_api, set_cache, metrics) -> SyncPolicyResolver:
    return SyncPolicyResolver(fake_api, set_cache, min_sets=5, metrics=metrics)


@pytest.fixture
async def workout_session(user, fake_api, set_cache, settings, resolver):
    """Session pinned to ``NOW`` with no real timers firing during a test."""
    session = WorkoutSession(
        user,
        fake_api,
        set_cache,
        settings=settings,
        resolver=resolver,
        clock=lambda: NOW,
    )
    yield session
    await session.close()
