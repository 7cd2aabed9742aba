"""Lightweight observability helpers (logging + metrics)."""

from __future__ import annotations

import json
import logging
import sys
from collections import defaultdict
from threading import Lock
from typing import Iterable, Protocol

from thefit.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

_DEFAULT_BUCKETS_MS = [50, 100, 250, 500, 1000, 2500, 5000, 10000]


class MetricsBackend(Protocol):
    """Metrics backend interface."""

    def observe_sync_job(
        self,
        exercise: str,
        success: bool,
        duration_ms: float,
        items_fetched: int | None = None,
    ) -> None:
        ...

    def observe_external_api(
        self,
        provider: str,
        operation: str,
        status_code: int,
        duration_ms: float,
    ) -> None:
        ...

    def observe_poll_tick(self, exercise: str, pending_sets: int) -> None:
        ...

    def render_prometheus(self) -> str:
        ...


class _Histogram:
    """Cumulative histogram keyed by a label tuple."""

    def __init__(self, buckets_ms: list[int]) -> None:
        self._buckets_ms = buckets_ms
        self.sums: dict[tuple[str, ...], float] = defaultdict(float)
        self.counts: dict[tuple[str, ...], int] = defaultdict(int)
        self.buckets: dict[tuple[str, ...], dict[str, int]] = defaultdict(
            lambda: defaultdict(int)
        )

    def observe(self, key: tuple[str, ...], value_ms: float) -> None:
        self.sums[key] += value_ms
        self.counts[key] += 1
        self.buckets[key][self._bucket_for(value_ms)] += 1

    def render(self, name: str, label_names: tuple[str, ...]) -> list[str]:
        lines: list[str] = []
        for key, total in sorted(self.sums.items()):
            labels = ",".join(f'{n}="{v}"' for n, v in zip(label_names, key))
            buckets = self.buckets[key]
            cumulative = 0
            for bound in self._buckets_ms:
                cumulative += buckets.get(str(bound), 0)
                lines.append(f'{name}_bucket{{{labels},le="{bound}"}} {cumulative}')
            cumulative += buckets.get("+Inf", 0)
            lines.append(f'{name}_bucket{{{labels},le="+Inf"}} {cumulative}')
            lines.append(f"{name}_sum{{{labels}}} {total:.2f}")
            lines.append(f"{name}_count{{{labels}}} {self.counts[key]}")
        return lines

    def _bucket_for(self, duration_ms: float) -> str:
        for bound in self._buckets_ms:
            if duration_ms <= bound:
                return str(bound)
        return "+Inf"


class MetricsCollector:
    """In-process metrics collector with Prometheus text output."""

    def __init__(self, buckets_ms: Iterable[int] | None = None) -> None:
        self._lock = Lock()
        buckets = list(buckets_ms or _DEFAULT_BUCKETS_MS)
        self._sync_counts: dict[tuple[str, str], int] = defaultdict(int)
        self._sync_duration = _Histogram(buckets)
        self._sync_items: dict[str, int] = defaultdict(int)
        self._external_counts: dict[tuple[str, str, str], int] = defaultdict(int)
        self._external_duration = _Histogram(buckets)
        self._poll_ticks: dict[str, int] = defaultdict(int)
        self._pending_sets: dict[str, int] = {}

    def observe_sync_job(
        self,
        exercise: str,
        success: bool,
        duration_ms: float,
        items_fetched: int | None = None,
    ) -> None:
        """Record one remote fetch of a (date, exercise) collection."""
        status = "success" if success else "error"
        with self._lock:
            self._sync_counts[(exercise, status)] += 1
            self._sync_duration.observe((exercise, status), duration_ms)
            if items_fetched is not None:
                self._sync_items[exercise] += items_fetched

    def observe_external_api(
        self,
        provider: str,
        operation: str,
        status_code: int,
        duration_ms: float,
    ) -> None:
        """Record an external API call observation."""
        with self._lock:
            self._external_counts[(provider, operation, str(status_code))] += 1
            self._external_duration.observe((provider, operation), duration_ms)

    def observe_poll_tick(self, exercise: str, pending_sets: int) -> None:
        """Record one feedback-polling tick."""
        with self._lock:
            self._poll_ticks[exercise] += 1
            self._pending_sets[exercise] = pending_sets

    def sync_count(self, exercise: str, success: bool = True) -> int:
        status = "success" if success else "error"
        with self._lock:
            return self._sync_counts.get((exercise, status), 0)

    def render_prometheus(self) -> str:
        """Render metrics in Prometheus text format."""
        lines: list[str] = [
            "# HELP sync_jobs_total Total workout collection fetches",
            "# TYPE sync_jobs_total counter",
        ]
        with self._lock:
            for (exercise, status), count in sorted(self._sync_counts.items()):
                lines.append(
                    f'sync_jobs_total{{exercise="{exercise}",status="{status}"}} {count}'
                )

            lines.extend(
                [
                    "# HELP sync_job_duration_ms Fetch duration in milliseconds",
                    "# TYPE sync_job_duration_ms histogram",
                ]
            )
            lines.extend(self._sync_duration.render("sync_job_duration_ms", ("exercise", "status")))

            lines.extend(
                [
                    "# HELP sync_items_total Workout items fetched",
                    "# TYPE sync_items_total counter",
                ]
            )
            for exercise, count in sorted(self._sync_items.items()):
                lines.append(f'sync_items_total{{exercise="{exercise}"}} {count}')

            lines.extend(
                [
                    "# HELP external_api_requests_total External API requests",
                    "# TYPE external_api_requests_total counter",
                ]
            )
            for (provider, operation, status), count in sorted(self._external_counts.items()):
                lines.append(
                    "external_api_requests_total"
                    f'{{provider="{provider}",operation="{operation}",status="{status}"}} {count}'
                )

            lines.extend(
                [
                    "# HELP external_api_duration_ms External API duration in milliseconds",
                    "# TYPE external_api_duration_ms histogram",
                ]
            )
            lines.extend(
                self._external_duration.render("external_api_duration_ms", ("provider", "operation"))
            )

            lines.extend(
                [
                    "# HELP feedback_poll_ticks_total Feedback polling ticks",
                    "# TYPE feedback_poll_ticks_total counter",
                ]
            )
            for exercise, count in sorted(self._poll_ticks.items()):
                lines.append(f'feedback_poll_ticks_total{{exercise="{exercise}"}} {count}')

            lines.extend(
                [
                    "# HELP feedback_pending_sets Sets awaiting analysis at the last tick",
                    "# TYPE feedback_pending_sets gauge",
                ]
            )
            for exercise, pending in sorted(self._pending_sets.items()):
                lines.append(f'feedback_pending_sets{{exercise="{exercise}"}} {pending}')
        return "\n".join(lines) + "\n"


_metrics_backend: MetricsBackend | None = None


def get_metrics_backend() -> MetricsBackend:
    """Return a cached metrics backend instance."""
    global _metrics_backend
    if _metrics_backend is None:
        settings = get_settings()
        if settings.metrics_backend != "inmemory":
            logger.warning(
                "Unknown metrics backend %r, using in-memory metrics",
                settings.metrics_backend,
            )
        _metrics_backend = MetricsCollector(_DEFAULT_BUCKETS_MS)
    return _metrics_backend


class JsonLogFormatter(logging.Formatter):
    """One JSON object per log record."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def setup_logging(settings: Settings | None = None) -> None:
    """Configure the ``thefit`` logger hierarchy."""
    settings = settings or get_settings()

    handler = logging.StreamHandler(sys.stderr)
    if settings.log_json:
        handler.setFormatter(JsonLogFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )

    root = logging.getLogger("thefit")
    root.handlers = [handler]
    root.setLevel(logging.DEBUG if settings.debug else settings.log_level.upper())

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
