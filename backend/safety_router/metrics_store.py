from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime
from threading import Lock

# Routes scoring below this are counted as unsafe in the scoring summary.
LOW_SAFETY_SCORE = 50.0


def _status_class(status_code: int) -> str:
    return f"{int(status_code) // 100}xx" if 100 <= int(status_code) < 600 else "other"


@dataclass
class _EndpointStats:
    requests: int = 0
    errors: int = 0
    duration_ms_sum: float = 0.0
    duration_ms_max: float = 0.0
    statuses: Counter[str] = field(default_factory=Counter)


@dataclass
class _ScoreStats:
    routes: int = 0
    low_safety: int = 0
    score_sum: float = 0.0
    score_min: float | None = None
    score_max: float | None = None


class MetricsStore:
    """Request and scoring counters for ``GET /metrics``.

    Endpoints are keyed by path without slashes (``/`` becomes ``root``);
    any response with status >= 400 counts as an error.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._started_at = datetime.now(UTC)
        self._endpoints: dict[str, _EndpointStats] = {}
        self._scores = _ScoreStats()

    def record(self, endpoint: str, *, duration_ms: float, status_code: int = 200) -> None:
        name = endpoint.strip().strip("/") or "root"
        duration_ms = max(float(duration_ms), 0.0)
        with self._lock:
            stats = self._endpoints.setdefault(name, _EndpointStats())
            stats.requests += 1
            stats.errors += int(status_code >= 400)
            stats.duration_ms_sum += duration_ms
            stats.duration_ms_max = max(stats.duration_ms_max, duration_ms)
            stats.statuses[_status_class(status_code)] += 1

    def record_scores(self, final_scores: list[float]) -> None:
        if not final_scores:
            return
        with self._lock:
            s = self._scores
            s.routes += len(final_scores)
            s.low_safety += sum(1 for score in final_scores if score < LOW_SAFETY_SCORE)
            s.score_sum += sum(final_scores)
            low, high = min(final_scores), max(final_scores)
            s.score_min = low if s.score_min is None else min(s.score_min, low)
            s.score_max = high if s.score_max is None else max(s.score_max, high)

    def snapshot(self) -> dict[str, object]:
        with self._lock:
            endpoints = {
                name: {
                    "request_count": st.requests,
                    "error_count": st.errors,
                    "status_classes": dict(sorted(st.statuses.items())),
                    "avg_duration_ms": round(st.duration_ms_sum / st.requests, 3) if st.requests else 0.0,
                    "max_duration_ms": round(st.duration_ms_max, 3),
                }
                for name, st in sorted(self._endpoints.items())
            }
            s = self._scores
            scoring = {
                "routes_scored": s.routes,
                "low_safety_routes": s.low_safety,
                "min_final_score": s.score_min,
                "avg_final_score": round(s.score_sum / s.routes, 1) if s.routes else None,
                "max_final_score": s.score_max,
            }
            return {
                "started_at": self._started_at.isoformat(),
                "uptime_s": round((datetime.now(UTC) - self._started_at).total_seconds(), 3),
                "total_requests": sum(st.requests for st in self._endpoints.values()),
                "total_errors": sum(st.errors for st in self._endpoints.values()),
                "endpoints": endpoints,
                "scoring": scoring,
            }

    def reset(self) -> None:
        with self._lock:
            self._started_at = datetime.now(UTC)
            self._endpoints.clear()
            self._scores = _ScoreStats()


METRICS = MetricsStore()


def record_request(endpoint: str, *, duration_ms: float, status_code: int = 200) -> None:
    METRICS.record(endpoint, duration_ms=duration_ms, status_code=status_code)


def record_scored_routes(final_scores: list[float]) -> None:
    METRICS.record_scores(final_scores)


def metrics_snapshot() -> dict[str, object]:
    return METRICS.snapshot()


def reset_metrics() -> None:
    METRICS.reset()
