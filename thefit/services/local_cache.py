"""Local key-value cache.

``LocalCacheStore`` is a small async key-value store on SQLite.
``WorkoutSetCache`` keeps one JSON snapshot of all three exercises' sets per
(user, date) on top of it. The snapshot is only a performance cache: every
failure is logged and swallowed.
"""

import json
import logging
from datetime import date
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from thefit.core.database import create_session_maker, init_models
from thefit.models.cache import CacheEntry
from thefit.models.exercise import (
    DEFAULT_MIN_SETS,
    DaySets,
    day_sets_from_storage,
    day_sets_to_storage,
)

logger = logging.getLogger(__name__)

SESSION_KEYS = ("user", "userToken")


def exercise_sets_key(user_id: int, day: date) -> str:
    return f"exerciseSets_{user_id}_{day.isoformat()}"


def exercise_sets_prefix(user_id: int) -> str:
    return f"exerciseSets_{user_id}_"


class LocalCacheStore:
    """Async key-value store with string values."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._session_maker: async_sessionmaker[AsyncSession] = create_session_maker(engine)

    async def init_models(self) -> None:
        await init_models(self.engine)

    async def get_item(self, key: str) -> Optional[str]:
        async with self._session_maker() as session:
            entry = await session.get(CacheEntry, key)
            return entry.value if entry else None

    async def set_item(self, key: str, value: str) -> None:
        async with self._session_maker() as session:
            entry = await session.get(CacheEntry, key)
            if entry:
                entry.value = value
            else:
                session.add(CacheEntry(key=key, value=value))
            await session.commit()

    async def remove_item(self, key: str) -> None:
        await self.multi_remove([key])

    async def get_all_keys(self) -> list[str]:
        async with self._session_maker() as session:
            result = await session.execute(select(CacheEntry.key).order_by(CacheEntry.key))
            return list(result.scalars().all())

    async def multi_remove(self, keys: list[str]) -> None:
        if not keys:
            return
        async with self._session_maker() as session:
            await session.execute(delete(CacheEntry).where(CacheEntry.key.in_(keys)))
            await session.commit()


class WorkoutSetCache:
    """Best-effort per-date snapshot of all exercises' sets."""

    def __init__(self, store: LocalCacheStore, min_sets: int = DEFAULT_MIN_SETS):
        self.store = store
        self.min_sets = min_sets

    async def load_day(self, user_id: int, day: date) -> Optional[DaySets]:
        """Cached sets for (user, day), or None if absent or unreadable."""
        key = exercise_sets_key(user_id, day)
        try:
            raw = await self.store.get_item(key)
        except SQLAlchemyError as e:
            logger.error("세트 데이터 불러오기 실패 (%s): %s", key, e)
            return None
        if raw is None:
            return None

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error("Corrupt cache entry %s: %s", key, e)
            return None
        if not isinstance(data, dict):
            logger.error("Unexpected cache entry shape for %s: %s", key, type(data).__name__)
            return None
        return day_sets_from_storage(data, self.min_sets)

    async def save_day(self, user_id: int, day: date, day_sets: DaySets) -> bool:
        """Overwrite the snapshot for (user, day). Returns False on failure."""
        key = exercise_sets_key(user_id, day)
        try:
            await self.store.set_item(
                key,
                json.dumps(day_sets_to_storage(day_sets), ensure_ascii=False),
            )
        except SQLAlchemyError as e:
            logger.error("세트 데이터 저장 실패 (%s): %s", key, e)
            return False
        logger.debug("Saved cache entry %s", key)
        return True

    async def clear_user(self, user_id: int) -> int:
        """Remove session keys and every cached day of ``user_id``.

        Returns:
            Number of cached days removed.
        """
        prefix = exercise_sets_prefix(user_id)
        try:
            keys = await self.store.get_all_keys()
            day_keys = [k for k in keys if k.startswith(prefix)]
            await self.store.multi_remove([*SESSION_KEYS, *day_keys])
        except SQLAlchemyError as e:
            logger.error("Failed to clear cache for user %s: %s", user_id, e)
            return 0
        logger.info("Cleared %d cached days for user %s", len(day_keys), user_id)
        return len(day_keys)
