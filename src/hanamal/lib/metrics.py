"""Network operation metrics for a sync run.

``@tracked`` counts calls, failures, wall time and (optionally) bytes moved
for an async operation. One collector lives per process; ``sync_site``
resets it at the start of a run and copies the summary into the report.

Usage:
    @tracked("image_download", size=lambda result: result.size)
    async def fetch(url: str) -> DownloadResult:
        ...

    reset_metrics()
    ...
    report.metrics = get_metrics_summary()
"""

import logging
import time
from collections import defaultdict
from collections.abc import Callable, Coroutine
from functools import wraps
from typing import Any, ParamSpec, TypeVar

from pydantic import BaseModel, PrivateAttr, computed_field

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


class OperationMetrics(BaseModel):
    """Counters for one named operation."""

    call_count: int = 0
    error_count: int = 0
    bytes_total: int = 0
    total_duration_ms: float = 0.0
    max_duration_ms: float = 0.0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def avg_duration_ms(self) -> float:
        if not self.call_count:
            return 0.0
        return round(self.total_duration_ms / self.call_count, 2)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def error_rate(self) -> float:
        if not self.call_count:
            return 0.0
        return round(self.error_count / self.call_count, 3)

    def record_call(
        self, duration_ms: float, *, is_error: bool = False, size: int = 0
    ) -> None:
        self.call_count += 1
        self.error_count += int(is_error)
        self.bytes_total += size
        self.total_duration_ms += duration_ms
        self.max_duration_ms = max(self.max_duration_ms, duration_ms)


class MetricsCollector(BaseModel):
    """Per-operation counters since the last reset."""

    _metrics: dict[str, OperationMetrics] = PrivateAttr(
        default_factory=lambda: defaultdict(OperationMetrics)
    )
    _run_start: float = PrivateAttr(default_factory=time.monotonic)

    def record(
        self, name: str, duration_ms: float, *, is_error: bool = False, size: int = 0
    ) -> None:
        self._metrics[name].record_call(duration_ms, is_error=is_error, size=size)

    def get_summary(self) -> dict[str, Any]:
        ops = self._metrics.values()
        return {
            "run_duration_seconds": round(time.monotonic() - self._run_start, 2),
            "total_calls": sum(m.call_count for m in ops),
            "total_errors": sum(m.error_count for m in ops),
            "total_bytes": sum(m.bytes_total for m in ops),
            "by_operation": {
                name: m.model_dump() for name, m in sorted(self._metrics.items())
            },
        }

    def log_summary(self, level: int = logging.INFO) -> None:
        summary = self.get_summary()
        logger.log(
            level,
            "Network: %d calls, %d errors, %.1f MB in %.1fs",
            summary["total_calls"],
            summary["total_errors"],
            summary["total_bytes"] / 1_000_000,
            summary["run_duration_seconds"],
        )
        for name, op in summary["by_operation"].items():
            logger.debug(
                "  %s: %d calls, avg %.0fms, max %.0fms",
                name,
                op["call_count"],
                op["avg_duration_ms"],
                op["max_duration_ms"],
            )

    def reset(self) -> None:
        self._metrics.clear()
        self._run_start = time.monotonic()


_collector = MetricsCollector()


def tracked(
    name: str | None = None,
    *,
    size: Callable[[Any], int] | None = None,
) -> Callable[
    [Callable[P, Coroutine[Any, Any, T]]],
    Callable[P, Coroutine[Any, Any, T]],
]:
    """Record timing of an async operation under ``name``.

    Exceptions count as errors and propagate unchanged.

    Args:
        name: Metrics key. Defaults to the function name.
        size: Bytes moved by a successful call, computed from its result.
    """

    def decorator(
        func: Callable[P, Coroutine[Any, Any, T]],
    ) -> Callable[P, Coroutine[Any, Any, T]]:
        op_name = name or func.__name__

        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception:
                _collector.record(
                    op_name, (time.perf_counter() - start) * 1000, is_error=True
                )
                raise
            _collector.record(
                op_name,
                (time.perf_counter() - start) * 1000,
                size=size(result) if size else 0,
            )
            return result

        return wrapper

    return decorator


def log_metrics_summary() -> None:
    _collector.log_summary()


def get_metrics_summary() -> dict[str, Any]:
    return _collector.get_summary()


def reset_metrics() -> None:
    _collector.reset()
