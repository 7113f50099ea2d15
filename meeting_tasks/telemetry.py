"""Logging setup and lightweight operation metrics."""

from __future__ import annotations

import json
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)

MAX_METRICS = 1000


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "level": record.levelname,
            "ts": int(time.time() * 1000),
            "logger": record.name,
            "message": record.getMessage(),
        }
        correlation_id = getattr(record, "correlation_id", None)
        if correlation_id:
            data["correlation_id"] = correlation_id
        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(data, ensure_ascii=False)


def _resolve_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    level = level.strip()
    if level.isdigit():
        return int(level)
    resolved = logging.getLevelName(level.upper())
    if isinstance(resolved, str):
        return logging.INFO
    return int(resolved)


def configure_logging(level: str | int = "INFO", json_output: bool = False) -> None:
    """Install a single stream handler on the root logger."""
    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(_resolve_level(level))


@dataclass
class Metric:
    name: str
    value: float
    unit: str  # "ms", "count" or "bytes"
    tags: dict[str, str] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class OperationTimer:
    """Times one operation; usable directly or as a context manager."""

    def __init__(self, telemetry: Telemetry, operation_name: str, tags: dict[str, str]) -> None:
        self._telemetry = telemetry
        self._operation_name = operation_name
        self._tags = dict(tags)
        self._start = time.perf_counter()
        self._stopped: float | None = None

    def stop(self) -> float:
        """Record the duration (ms) once and return it."""
        if self._stopped is None:
            self._stopped = (time.perf_counter() - self._start) * 1000
            self._telemetry.track_metric(
                f"{self._operation_name}.duration", self._stopped, "ms", self._tags
            )
        return self._stopped

    def __enter__(self) -> OperationTimer:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()


class Telemetry:
    """Bounded in-memory metric buffer backed by the logging module."""

    def __init__(self, enabled: bool = True, max_metrics: int = MAX_METRICS) -> None:
        self.enabled = enabled
        self._metrics: deque[Metric] = deque(maxlen=max_metrics)

    @property
    def metrics(self) -> list[Metric]:
        return list(self._metrics)

    def track_metric(
        self,
        name: str,
        value: float,
        unit: str = "count",
        tags: dict[str, str] | None = None,
    ) -> None:
        if not self.enabled:
            return
        self._metrics.append(Metric(name=name, value=value, unit=unit, tags=dict(tags or {})))
        logger.debug("Metric %s=%s%s %s", name, value, unit, tags or {})

    def start_timer(self, operation_name: str, tags: dict[str, str] | None = None) -> OperationTimer:
        return OperationTimer(self, operation_name, tags or {})

    def track_success(self, operation_name: str, tags: dict[str, str] | None = None) -> None:
        self.track_metric(f"{operation_name}.success", 1, "count", tags)

    def track_failure(
        self,
        operation_name: str,
        error_type: str,
        tags: dict[str, str] | None = None,
    ) -> None:
        self.track_metric(
            f"{operation_name}.failure", 1, "count", {**(tags or {}), "error_type": error_type}
        )

    def track_rate_limit(self, service: str) -> None:
        self.track_metric("rate_limit.hit", 1, "count", {"service": service})
        logger.warning("Rate limit hit for %s", service)

    def metrics_summary(self, window: timedelta = timedelta(minutes=5)) -> dict[str, dict[str, float]]:
        """Aggregate count/total/avg per metric name over a recent window."""
        cutoff = datetime.now(UTC) - window
        summary: dict[str, dict[str, float]] = {}
        for metric in self._metrics:
            if metric.timestamp < cutoff:
                continue
            entry = summary.setdefault(metric.name, {"count": 0, "total": 0.0, "avg": 0.0})
            entry["count"] += 1
            entry["total"] += metric.value
            entry["avg"] = entry["total"] / entry["count"]
        return summary


telemetry = Telemetry()


async def track_operation(
    operation_name: str,
    operation: Callable[[], Awaitable[T]],
    tags: dict[str, str] | None = None,
    tracker: Telemetry | None = None,
) -> T:
    """Await *operation*, recording duration plus success or failure."""
    tracker = tracker or telemetry
    timer = tracker.start_timer(operation_name, tags)
    try:
        result = await operation()
    except Exception as exc:
        timer.stop()
        tracker.track_failure(operation_name, type(exc).__name__, tags)
        raise
    timer.stop()
    tracker.track_success(operation_name, tags)
    return result
