"""Per-phase latency tracking for hybrid update cycles."""
from __future__ import annotations

import json
import statistics
from typing import Dict, Iterable, List, Optional


def _percentile(values: List[float], pct: float) -> Optional[float]:
    if not values:
        return None
    if pct <= 0:
        return values[0]
    if pct >= 100:
        return values[-1]
    rank = (pct / 100.0) * (len(values) - 1)
    lower = int(rank)
    upper = min(lower + 1, len(values) - 1)
    weight = rank - lower
    return values[lower] * (1 - weight) + values[upper] * weight


def _stats(values: Iterable[float]) -> Dict[str, Optional[float]]:
    vals = sorted(values)
    if not vals:
        return {"count": 0}
    out: Dict[str, Optional[float]] = {
        "count": len(vals),
        "min": vals[0],
        "max": vals[-1],
        "mean": statistics.mean(vals),
        "median": statistics.median(vals),
        "p90": _percentile(vals, 90.0),
        "p95": _percentile(vals, 95.0),
        "p99": _percentile(vals, 99.0),
    }
    if len(vals) > 1:
        out["stdev"] = statistics.pstdev(vals)
    return out


class LatencyTracker:
    """Record how long each phase (discrete solve, iSAM2 step, ...) takes per cycle."""

    def __init__(self):
        self._records: List[Dict] = []

    def record(self, cycle: int, phase: str, duration_s: float) -> None:
        self._records.append({"cycle": cycle, "phase": phase, "duration_s": float(duration_s)})

    def phases(self) -> List[str]:
        seen: List[str] = []
        for rec in self._records:
            if rec["phase"] not in seen:
                seen.append(rec["phase"])
        return seen

    def summary(self) -> Dict[str, Dict[str, Optional[float]]]:
        return {
            phase: _stats(r["duration_s"] for r in self._records if r["phase"] == phase)
            for phase in self.phases()
        }

    def export_json(self, path: str) -> None:
        with open(path, "w", encoding="utf-8") as f:
            json.dump({"records": self._records, "summary": self.summary()}, f, indent=2)

    def log_summary(self, logger) -> None:
        for phase, stats in self.summary().items():
            logger.info("Latency %-16s n=%d mean=%.4fs p95=%.4fs",
                        phase, stats["count"], stats.get("mean") or 0.0, stats.get("p95") or 0.0)

    @property
    def records(self) -> List[Dict]:
        return list(self._records)
