"""Proof-of-Work Fetch Metrics and Structured Logging.

Provides:
- Structured JSON log line per logical fetch
- Thread-safe counters (sends, cache hits, challenges, retries)
- Solve timing statistics
- Prometheus text export

Usage:
    metrics = FetchMetrics()
    fetcher = AdaptiveFetcher(config, metrics=metrics)
    ...
    summary = metrics.get_summary()
"""

import json
import logging
from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from threading import Lock
from typing import Any
from urllib.parse import urlparse

logger = logging.getLogger("pow_fetch.metrics")

MAX_TIMING_SAMPLES = 5000


@dataclass
class FetchOperationLog:
    """Structured log entry for one logical fetch."""

    timestamp: str
    url: str
    domain: str
    status: str  # success, cached, blocked_cached, absent, or the error type
    sends: int
    execution_time_ms: float
    challenge_solved: bool = False
    last_status_code: int | None = None
    identity: str | None = None
    error_message: str | None = None

    @property
    def success(self) -> bool:
        return self.status in ("success", "cached", "absent")

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(asdict(self), default=str)


class FetchMetrics:
    """Thread-safe metrics collector for AdaptiveFetcher.

    Tracks:
    - Network sends and retries
    - Response / blocked cache hits
    - Challenges received and solved, solve times
    - Terminal status distribution
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self.reset()

    def reset(self) -> None:
        """Zero all counters."""
        with self._lock:
            self._start_time = datetime.now(UTC)
            self.sends_total = 0
            self.retries_total = 0
            self.cache_hits = 0
            self.blocked_hits = 0
            self.challenges_total = 0
            self.solves_total = 0
            self.outcomes_by_kind: dict[str, int] = defaultdict(int)
            self.operations_by_status: dict[str, int] = defaultdict(int)
            self.solve_times_ms: list[float] = []

    def record_send(self, outcome: str) -> None:
        with self._lock:
            self.sends_total += 1
            self.outcomes_by_kind[outcome] += 1

    def record_retry(self) -> None:
        with self._lock:
            self.retries_total += 1

    def record_cache_hit(self, blocked: bool = False) -> None:
        with self._lock:
            if blocked:
                self.blocked_hits += 1
            else:
                self.cache_hits += 1

    def record_challenge(self, solve_time_ms: float | None = None) -> None:
        """Record a received challenge; pass solve_time_ms once it is solved."""
        with self._lock:
            self.challenges_total += 1
            if solve_time_ms is not None:
                self.solves_total += 1
                self.solve_times_ms.append(solve_time_ms)
                if len(self.solve_times_ms) > MAX_TIMING_SAMPLES:
                    self.solve_times_ms = self.solve_times_ms[-MAX_TIMING_SAMPLES:]

    def record_operation(self, log: FetchOperationLog) -> None:
        with self._lock:
            self.operations_by_status[log.status] += 1

    def get_summary(self) -> dict[str, Any]:
        """Get metrics summary."""
        with self._lock:
            return {
                "uptime_seconds": (datetime.now(UTC) - self._start_time).total_seconds(),
                "sends": {
                    "total": self.sends_total,
                    "retries": self.retries_total,
                    "by_outcome": dict(self.outcomes_by_kind),
                },
                "cache": {
                    "response_hits": self.cache_hits,
                    "blocked_hits": self.blocked_hits,
                },
                "challenges": {
                    "received": self.challenges_total,
                    "solved": self.solves_total,
                    "timing": self._calculate_timing_stats(),
                },
                "operations": dict(self.operations_by_status),
            }

    def _calculate_timing_stats(self) -> dict[str, Any]:
        if not self.solve_times_ms:
            return {"samples": 0}

        sorted_times = sorted(self.solve_times_ms)
        count = len(sorted_times)

        return {
            "samples": count,
            "min_ms": round(sorted_times[0], 2),
            "max_ms": round(sorted_times[-1], 2),
            "mean_ms": round(sum(sorted_times) / count, 2),
            "p50_ms": round(sorted_times[count // 2], 2),
            "p90_ms": round(sorted_times[int(count * 0.9)], 2),
        }

    def to_prometheus(self) -> str:
        """Export metrics in Prometheus format."""
        with self._lock:
            lines = [
                f"pow_fetch_sends_total {self.sends_total}",
                f"pow_fetch_retries_total {self.retries_total}",
                f"pow_fetch_cache_hits_total {self.cache_hits}",
                f"pow_fetch_blocked_hits_total {self.blocked_hits}",
                f"pow_fetch_challenges_total {self.challenges_total}",
                f"pow_fetch_solves_total {self.solves_total}",
            ]
            for outcome, count in self.outcomes_by_kind.items():
                lines.append(f'pow_fetch_sends_by_outcome{{outcome="{outcome}"}} {count}')
            for status, count in self.operations_by_status.items():
                lines.append(f'pow_fetch_operations_by_status{{status="{status}"}} {count}')

        return "\n".join(lines)


def log_fetch_operation(
    metrics: FetchMetrics,
    url: str,
    status: str,
    sends: int,
    execution_time_ms: float,
    challenge_solved: bool = False,
    last_status_code: int | None = None,
    identity: str | None = None,
    error_message: str | None = None,
) -> FetchOperationLog:
    """Record a finished fetch and emit it as one JSON log line.

    Returns:
        The FetchOperationLog that was recorded
    """
    log = FetchOperationLog(
        timestamp=datetime.now(UTC).isoformat(),
        url=url,
        domain=urlparse(url).netloc or "",
        status=status,
        sends=sends,
        execution_time_ms=round(execution_time_ms, 2),
        challenge_solved=challenge_solved,
        last_status_code=last_status_code,
        identity=identity,
        error_message=error_message,
    )

    metrics.record_operation(log)

    if log.success:
        logger.info(log.to_json())
    else:
        logger.warning(log.to_json())

    return log
