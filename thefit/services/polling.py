"""Feedback polling for sets whose analysis has not arrived yet.

``FeedbackPoller`` is a two-state machine (``IDLE`` / ``POLLING``). Every
observation of the active collection re-evaluates the pending predicate:

- nothing pending, was polling: go idle, run one final refresh shortly after
- nothing pending, idle: nothing
- something pending: start a fresh recurring refresh

Each recurring loop holds a lease. Observing revokes the previous lease, so
at most one recurring loop is ever live.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

from thefit.core.config import get_settings
from thefit.models.exercise import ExerciseSet, ExerciseType
from thefit.observability import MetricsBackend, get_metrics_backend

logger = logging.getLogger(__name__)

RefreshCallback = Callable[[], Awaitable[None]]


class PollerState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"


class PollLease:
    """Ownership token of one recurring loop."""

    def __init__(self) -> None:
        self.revoked = False
        self.task: Optional[asyncio.Task] = None

    def revoke(self) -> None:
        self.revoked = True
        # 자기 tick 안에서 회수되면 진행 중인 refresh는 끝까지 실행
        if self.task is not None and self.task is not asyncio.current_task():
            self.task.cancel()


def pending_sets(sets: list[ExerciseSet]) -> list[ExerciseSet]:
    """Sets uploaded but still missing feedback or the analysis video."""
    return [s for s in sets if s.is_awaiting_analysis]


class FeedbackPoller:
    """Drives incremental feedback refreshes while any set is pending."""

    def __init__(
        self,
        refresh: RefreshCallback,
        interval_seconds: Optional[float] = None,
        final_delay_seconds: Optional[float] = None,
        metrics: Optional[MetricsBackend] = None,
    ) -> None:
        settings = get_settings()
        self._refresh = refresh
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None else settings.poll_interval_seconds
        )
        self.final_delay_seconds = (
            final_delay_seconds
            if final_delay_seconds is not None
            else settings.final_refresh_delay_seconds
        )
        self.metrics = metrics or get_metrics_backend()

        self.was_polling = False
        self._lease: Optional[PollLease] = None
        self._final_task: Optional[asyncio.Task] = None
        self._pending_count = 0
        self._closed = False

    @property
    def state(self) -> PollerState:
        if self._lease is not None and not self._lease.revoked:
            return PollerState.POLLING
        return PollerState.IDLE

    @property
    def pending_count(self) -> int:
        return self._pending_count

    def observe(self, sets: list[ExerciseSet], exercise: ExerciseType) -> PollerState:
        """Re-evaluate polling for the active collection.

        Must be called from inside the running event loop.
        """
        if self._closed:
            return PollerState.IDLE

        self._revoke_lease()
        self._pending_count = len(pending_sets(sets))

        if self._pending_count == 0:
            if self.was_polling:
                self.was_polling = False
                logger.info("✅ 모든 분석 완료 - 폴링 중지 (%s)", exercise.value)
                self._schedule_final_refresh()
            return self.state

        self.was_polling = True
        lease = PollLease()
        lease.task = asyncio.create_task(self._poll_loop(lease, exercise))
        self._lease = lease
        logger.info(
            "🔄 분석 대기 중인 세트 %d개 - %.0f초마다 새로고침 (%s)",
            self._pending_count,
            self.interval_seconds,
            exercise.value,
        )
        return self.state

    async def close(self) -> None:
        """Revoke every lease and cancel the final refresh."""
        self._closed = True
        tasks = []
        if self._lease is not None and self._lease.task is not None:
            tasks.append(self._lease.task)
        self._revoke_lease()
        if self._final_task is not None and not self._final_task.done():
            if self._final_task is not asyncio.current_task():
                self._final_task.cancel()
                tasks.append(self._final_task)
        self._final_task = None
        self.was_polling = False

        current = asyncio.current_task()
        tasks = [t for t in tasks if t is not current]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _revoke_lease(self) -> None:
        if self._lease is not None:
            self._lease.revoke()
            self._lease = None

    def _schedule_final_refresh(self) -> None:
        if self._final_task is not None and not self._final_task.done():
            return
        self._final_task = asyncio.create_task(self._final_refresh())

    async def _final_refresh(self) -> None:
        await asyncio.sleep(self.final_delay_seconds)
        await self._run_refresh("final")

    async def _poll_loop(self, lease: PollLease, exercise: ExerciseType) -> None:
        while not lease.revoked:
            await asyncio.sleep(self.interval_seconds)
            if lease.revoked:
                return
            self.metrics.observe_poll_tick(exercise.value, self._pending_count)
            await self._run_refresh("tick")

    async def _run_refresh(self, reason: str) -> None:
        try:
            await self._refresh()
        except Exception:
            logger.exception("Feedback refresh (%s) failed", reason)
