"""In-process latency and outcome aggregates.

Each recorded sample belongs to an *operation* name such as
``engine.execute``, ``tool.create_card`` or ``mcp.run_instruction``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from dataclasses import field
from threading import Lock

logger = logging.getLogger(__name__)


@dataclass
class OperationStats:
    """Aggregated latency samples and outcome counts for one operation."""

    count: int = 0
    error_count: int = 0
    total_ms: float = 0.0
    min_ms: float = 0.0
    max_ms: float = 0.0
    last_ms: float = 0.0
    outcomes: dict[str, int] = field(default_factory=dict)

    def add(self, duration_ms: float, ok: bool, outcome: str) -> None:
        self.count += 1
        if not ok:
            self.error_count += 1
        self.total_ms += duration_ms
        self.last_ms = duration_ms
        if self.count == 1:
            self.min_ms = self.max_ms = duration_ms
        else:
            self.min_ms = min(self.min_ms, duration_ms)
            self.max_ms = max(self.max_ms, duration_ms)
        self.outcomes[outcome] = self.outcomes.get(outcome, 0) + 1

    def as_dict(self) -> dict[str, object]:
        avg = self.total_ms / self.count if self.count else 0.0
        return {
            "count": self.count,
            "error_count": self.error_count,
            "total_ms": round(self.total_ms, 3),
            "avg_ms": round(avg, 3),
            "min_ms": round(self.min_ms, 3),
            "max_ms": round(self.max_ms, 3),
            "last_ms": round(self.last_ms, 3),
            "outcomes": dict(sorted(self.outcomes.items())),
        }


_lock = Lock()
_stats: dict[str, OperationStats] = {}


def record_latency(
    *,
    operation: str,
    duration_ms: float,
    ok: bool = True,
    outcome: str | None = None,
) -> None:
    """Record one latency sample.

    *outcome* defaults to ``"ok"`` or ``"error"`` and can carry a finer
    label such as ``"cancelled"`` or ``"timed_out"``.
    """
    normalized = max(float(duration_ms), 0.0)
    label = outcome or ("ok" if ok else "error")
    with _lock:
        _stats.setdefault(operation, OperationStats()).add(normalized, ok, label)

    logger.info(
        "latency operation=%s duration_ms=%.3f ok=%s outcome=%s",
        operation,
        normalized,
        ok,
        label,
    )


def latency_metrics_snapshot() -> dict[str, dict[str, object]]:
    """Return current in-process aggregates keyed by operation."""
    with _lock:
        return {name: stats.as_dict() for name, stats in sorted(_stats.items())}


def reset_latency_metrics() -> None:
    """Clear all aggregates (test helper)."""
    with _lock:
        _stats.clear()
