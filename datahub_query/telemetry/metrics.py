from __future__ import annotations

import math
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Iterable, Tuple


def _percentile(sorted_values: List[float], p: float) -> float:
    if not sorted_values:
        return float("nan")
    k = (len(sorted_values) - 1) * (p / 100.0)
    f = math.floor(k)
    c = math.ceil(k)
    if f == c:
        return sorted_values[int(k)]
    d0 = sorted_values[f] * (c - k)
    d1 = sorted_values[c] * (k - f)
    return d0 + d1


def pct_summary(values: Iterable[float]) -> Dict[str, float]:
    vals = sorted(v for v in values if v is not None)
    if not vals:
        return {"count": 0, "min": float("nan"), "p50": float("nan"),
                "p95": float("nan"), "max": float("nan")}
    return {
        "count": len(vals),
        "min": vals[0],
        "p50": _percentile(vals, 50),
        "p95": _percentile(vals, 95),
        "max": vals[-1],
    }


@dataclass
class QueryMetrics:
    """Counters and timings for query runs.

    Everything runs on one event loop, so no locking is needed. Share an
    instance across runs only if aggregated numbers are wanted.
    """

    queries_total: int = 0
    queries_succeeded: int = 0
    queries_failed: int = 0

    polls: int = 0
    cancellations: int = 0
    rows_fetched: int = 0

    # stage -> list of durations
    stage_durations: Dict[str, List[float]] = field(
        default_factory=lambda: defaultdict(list))

    # error classification
    errors_by_type: Counter[str] = field(default_factory=Counter)

    # terminal lifecycle state -> runs
    outcomes: Counter[str] = field(default_factory=Counter)

    def inc(self, attr: str, value: int = 1) -> None:
        setattr(self, attr, getattr(self, attr) + value)

    def observe_stage(self, stage: str, duration: float) -> None:
        self.stage_durations[stage].append(duration)

    def record_error(self, exc: BaseException) -> None:
        self.errors_by_type[type(exc).__name__] += 1

    def record_outcome(self, state: str) -> None:
        self.outcomes[state] += 1

    def stage_percentile(self, stage: str, p: float) -> float:
        vals = self.stage_durations.get(stage, [])
        return _percentile(sorted(vals), p)

    def summary(self) -> Tuple[str, Dict]:
        stage_stats = {
            stage: pct_summary(durations)
            for stage, durations in self.stage_durations.items()
        }
        res = {
            "queries_total": self.queries_total,
            "queries_succeeded": self.queries_succeeded,
            "queries_failed": self.queries_failed,
            "polls": self.polls,
            "cancellations": self.cancellations,
            "rows_fetched": self.rows_fetched,
            "stage_stats": stage_stats,
            "errors_by_type": dict(self.errors_by_type),
            "outcomes": dict(self.outcomes),
        }

        lines = []
        lines.append("===== QUERY SUMMARY =====")
        lines.append(f"Queries    : total={res['queries_total']}  ok={res['queries_succeeded']}  "
                     f"fail={res['queries_failed']}")
        lines.append(f"Polls      : {res['polls']}  cancellations={res['cancellations']}")
        lines.append(f"Rows       : {res['rows_fetched']:,}")
        if res["outcomes"]:
            lines.append("Outcomes   : " + "  ".join(
                f"{k}={v}" for k, v in sorted(res["outcomes"].items())))
        lines.append("")
        lines.append("Per-stage timings (seconds):")
        for stage, stats in stage_stats.items():
            lines.append(
                f"  {stage:10s} "
                f"count={stats['count']:6d}  "
                f"min={stats['min']:.4f}  p50={stats['p50']:.4f}  "
                f"p95={stats['p95']:.4f}  max={stats['max']:.4f}"
            )
        if res["errors_by_type"]:
            lines.append("")
            lines.append("Errors by type:")
            for k, v in sorted(res["errors_by_type"].items(), key=lambda kv: kv[1], reverse=True):
                lines.append(f"  {k}: {v}")

        return "\n".join(lines), res
