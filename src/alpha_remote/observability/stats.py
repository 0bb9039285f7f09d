"""Per-operation call statistics for camera transports.

Every transport round trip (an HTTP RPC call or a gphoto2 invocation) is
recorded against its operation name. Counters are cumulative; durations
are kept in a bounded rolling window so percentiles reflect recent
behaviour.

Example:
    stats = RpcStats()
    stats.record("getEvent", duration_ms=38.0, success=True)
    stats.record("actTakePicture", duration_ms=0, success=False,
                 error_type="connection_failed")

    summary = stats.get_summary("getEvent")
    print(f"{summary.success_rate:.0%} ok, p95 {summary.p95_duration_ms:.0f}ms")
"""

from __future__ import annotations

import math
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

#: Records kept per operation for duration statistics.
DEFAULT_STATS_WINDOW_SIZE: int = 500


@dataclass
class StatsSummary:
    """Summary for one operation.

    Attributes:
        operation: Wire-level operation name.
        total_calls: All recorded calls.
        successful_calls: Calls that returned a result.
        failed_calls: Calls that raised or returned an error payload.
        success_rate: successful / total, 0.0 when nothing recorded.
        min_duration_ms: Fastest successful call in the window.
        max_duration_ms: Slowest successful call in the window.
        avg_duration_ms: Mean of successful calls in the window.
        p95_duration_ms: 95th percentile of successful calls in the window.
        error_counts: Failures by category.
        last_call_time: UTC time of the most recent call.
    """

    operation: str
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    success_rate: float = 0.0
    min_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    avg_duration_ms: float = 0.0
    p95_duration_ms: float = 0.0
    error_counts: dict[str, int] = field(default_factory=dict)
    last_call_time: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable copy.

        Returns:
            Dict with the dataclass fields; ``last_call_time`` is rendered
            as an ISO-8601 string or None.
        """
        return {
            "operation": self.operation,
            "total_calls": self.total_calls,
            "successful_calls": self.successful_calls,
            "failed_calls": self.failed_calls,
            "success_rate": self.success_rate,
            "min_duration_ms": self.min_duration_ms,
            "max_duration_ms": self.max_duration_ms,
            "avg_duration_ms": self.avg_duration_ms,
            "p95_duration_ms": self.p95_duration_ms,
            "error_counts": dict(self.error_counts),
            "last_call_time": (
                self.last_call_time.isoformat() if self.last_call_time else None
            ),
        }


def _percentile(sorted_values: list[float], pct: float) -> float:
    """Nearest-rank percentile of an already sorted list."""
    if not sorted_values:
        return 0.0
    rank = max(1, math.ceil(pct / 100.0 * len(sorted_values)))
    return sorted_values[min(rank, len(sorted_values)) - 1]


class _OperationCollector:
    def __init__(self, operation: str, window_size: int) -> None:
        self.operation = operation
        self.durations: deque[float] = deque(maxlen=window_size)
        self.total = 0
        self.successful = 0
        self.errors: dict[str, int] = {}
        self.last_call_time: datetime | None = None

    def summary(self) -> StatsSummary:
        durations = sorted(self.durations)
        if durations:
            min_dur, max_dur = durations[0], durations[-1]
            avg_dur = sum(durations) / len(durations)
            p95_dur = _percentile(durations, 95)
        else:
            min_dur = max_dur = avg_dur = p95_dur = 0.0
        return StatsSummary(
            operation=self.operation,
            total_calls=self.total,
            successful_calls=self.successful,
            failed_calls=self.total - self.successful,
            success_rate=self.successful / self.total if self.total else 0.0,
            min_duration_ms=min_dur,
            max_duration_ms=max_dur,
            avg_duration_ms=avg_dur,
            p95_duration_ms=p95_dur,
            error_counts=dict(self.errors),
            last_call_time=self.last_call_time,
        )


class RpcStats:
    """Thread-safe statistics for all operations of one session.

    Collectors are created lazily on the first record for an operation.
    Transports call record() from whichever thread executes the call,
    including the background capture worker.
    """

    def __init__(self, window_size: int = DEFAULT_STATS_WINDOW_SIZE) -> None:
        self._window_size = window_size
        self._collectors: dict[str, _OperationCollector] = {}
        self._lock = threading.Lock()
        self._start_time = time.monotonic()

    def record(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error_type: str | None = None,
    ) -> None:
        """Record one call.

        Args:
            operation: Wire-level operation name, e.g. ``"getEvent"``.
            duration_ms: Round-trip time. Only successful calls feed the
                duration window.
            success: Whether a usable result came back.
            error_type: Failure category such as ``"connection_failed"``,
                ``"protocol"`` or ``"rpc_40403"``.
        """
        with self._lock:
            collector = self._collectors.get(operation)
            if collector is None:
                collector = _OperationCollector(operation, self._window_size)
                self._collectors[operation] = collector
            collector.total += 1
            collector.last_call_time = datetime.now(UTC)
            if success:
                collector.successful += 1
                collector.durations.append(duration_ms)
            elif error_type:
                collector.errors[error_type] = collector.errors.get(error_type, 0) + 1

    def get_summary(self, operation: str) -> StatsSummary:
        """Summary for ``operation``; an empty summary if never recorded."""
        with self._lock:
            collector = self._collectors.get(operation)
            if collector is None:
                return StatsSummary(operation=operation)
            return collector.summary()

    def get_all_summaries(self) -> dict[str, StatsSummary]:
        with self._lock:
            return {name: c.summary() for name, c in self._collectors.items()}

    def to_dict(self) -> dict[str, Any]:
        """Export every operation plus collector uptime."""
        summaries = self.get_all_summaries()
        return {
            "uptime_seconds": time.monotonic() - self._start_time,
            "operations": {name: s.to_dict() for name, s in summaries.items()},
        }

    def reset(self) -> None:
        with self._lock:
            self._collectors.clear()
            self._start_time = time.monotonic()
