from typing import Iterable, List, Optional
import logging

try:
    import gtsam
except Exception:
    gtsam = None

from .config import SolverConfig

logger = logging.getLogger("hybrid_sam.isam")


class ISAM2Manager:
    """Thin manager around GTSAM's iSAM2 for the continuous subproblem."""

    def __init__(self, config: Optional[SolverConfig] = None):
        if gtsam is None:
            raise RuntimeError("GTSAM not available; cannot run iSAM2")
        self.config = config or SolverConfig()
        self.isam = gtsam.ISAM2(self.config.build_isam_params())
        self._estimate = gtsam.Values()

    def update(self,
               graph: Optional["gtsam.NonlinearFactorGraph"] = None,
               initial: Optional["gtsam.Values"] = None,
               affected_keys: Optional[Iterable[int]] = None,
               remove_indices: Optional[Iterable[int]] = None) -> List[int]:
        """Run one iSAM2 step; returns the slot indices of the new factors.

        `affected_keys` are re-eliminated (and, with linearization caching
        off, relinearized) even if no new factor touches them.
        """
        graph = graph if graph is not None else gtsam.NonlinearFactorGraph()
        initial = initial if initial is not None else gtsam.Values()
        affected = sorted({int(k) for k in affected_keys or ()})
        removals = [int(i) for i in remove_indices or ()]
        # New factors are appended after every existing slot, removed ones included.
        first = int(self.isam.getFactorsUnsafe().size())
        if affected or removals:
            params = gtsam.ISAM2UpdateParams()
            if removals:
                params.removeFactorIndices = gtsam.KeyVector(removals)
            if affected:
                extra = gtsam.KeyList()
                for k in affected:
                    extra.push_back(k)
                params.extraReelimKeys = extra
            self.isam.update(graph, initial, params)
        else:
            self.isam.update(graph, initial)
        self._estimate = self.isam.calculateEstimate()
        logger.debug("iSAM2 step: %d new factors, %d new keys, %d affected, %d removed",
                     graph.size(), initial.size(), len(affected), len(removals))
        return list(range(first, first + int(graph.size())))

    def calculate_estimate(self) -> "gtsam.Values":
        self._estimate = self.isam.calculateEstimate()
        return self._estimate

    def get_factors(self) -> "gtsam.NonlinearFactorGraph":
        return self.isam.getFactorsUnsafe()

    def exists(self, key: int) -> bool:
        return bool(self._estimate.exists(key))

    @property
    def estimate(self) -> "gtsam.Values":
        return self._estimate

    def error(self, graph: Optional["gtsam.NonlinearFactorGraph"] = None,
              estimate: Optional["gtsam.Values"] = None) -> float:
        est = estimate if estimate is not None else self._estimate
        graph = graph if graph is not None else self.get_factors()
        return graph.error(est)
