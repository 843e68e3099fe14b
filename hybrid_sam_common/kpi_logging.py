"""KPI logging for hybrid update cycles."""
from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, Optional

logger = logging.getLogger("hybrid_sam.kpi")


class KPILogger:
    """Emit structured KPI events for downstream analysis."""

    def __init__(
        self,
        enabled: bool = True,
        extra_fields: Optional[Dict[str, Any]] = None,
        log_path: Optional[str] = None,
        emit_to_logger: bool = True,
    ):
        self.enabled = enabled
        self._extra = extra_fields.copy() if extra_fields else {}
        self._emit_to_logger = emit_to_logger
        self._fh = None
        self.events_emitted = 0
        if log_path:
            self._fh = open(log_path, "w", encoding="utf-8")

    def _emit(self, event: str, **fields: Any) -> None:
        if not self.enabled:
            return
        payload = {"event": event, "ts": time.time()}
        payload.update(self._extra)
        payload.update({k: v for k, v in fields.items() if v is not None})
        self.events_emitted += 1
        if self._emit_to_logger:
            logger.info("KPI %s", json.dumps(payload, sort_keys=True))
        if self._fh:
            self._fh.write(json.dumps(payload, sort_keys=True) + "\n")
            self._fh.flush()

    def update_start(self, cycle: int, continuous_factors: int, discrete_factors: int,
                     hybrid_factors: int, **fields: Any) -> None:
        self._emit(
            "update_start",
            cycle=cycle,
            continuous_factors=continuous_factors,
            discrete_factors=discrete_factors,
            hybrid_factors=hybrid_factors,
            **fields,
        )

    def discrete_solve(self, cycle: int, duration_s: float, factor_count: int,
                       *, skipped: bool = False, assignment_size: Optional[int] = None) -> None:
        self._emit(
            "discrete_solve",
            cycle=cycle,
            duration_s=duration_s,
            factor_count=factor_count,
            skipped=skipped,
            assignment_size=assignment_size,
        )

    def continuous_solve(self, cycle: int, duration_s: float, new_factors: int,
                         *, affected_keys: Optional[int] = None, estimate_size: Optional[int] = None) -> None:
        self._emit(
            "continuous_solve",
            cycle=cycle,
            duration_s=duration_s,
            new_factors=new_factors,
            affected_keys=affected_keys,
            estimate_size=estimate_size,
        )

    def update_end(self, cycle: int, duration_s: float, **fields: Any) -> None:
        self._emit("update_end", cycle=cycle, duration_s=duration_s, **fields)

    def close(self) -> None:
        if self._fh:
            try:
                self._fh.close()
            finally:
                self._fh = None
