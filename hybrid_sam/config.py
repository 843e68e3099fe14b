from dataclasses import dataclass
from typing import Optional

try:
    import gtsam
except Exception:
    gtsam = None


@dataclass
class SolverConfig:
    relinearize_threshold: float = 0.01
    relinearize_skip: int = 1
    # Hybrid factors change with the discrete estimate. HybridSAM passes the
    # keys of switched adapters as extraReelimKeys, which re-eliminates them
    # but only relinearizes them when this cache is off. With it on, a mode
    # switch is picked up at the next relinearization past the threshold.
    cache_linearized: bool = False
    optimizer: str = "dogleg"  # dogleg | gauss_newton
    discrete_ordering: Optional[str] = None  # None | colamd | metis | natural
    skip_redundant_discrete_solves: bool = True

    def build_isam_params(self) -> "gtsam.ISAM2Params":
        if gtsam is None:
            raise RuntimeError("GTSAM not available; cannot build iSAM2 parameters")
        params = gtsam.ISAM2Params()

        # Compat helpers (some wheels use setters, others properties)
        def _set(obj, prop: str, value, setter: Optional[str] = None):
            if hasattr(obj, prop):
                try:
                    setattr(obj, prop, value); return
                except Exception:
                    pass
            if setter and hasattr(obj, setter):
                getattr(obj, setter)(value)

        _set(params, "relinearizeThreshold", self.relinearize_threshold, "setRelinearizeThreshold")
        _set(params, "relinearizeSkip",      self.relinearize_skip,      "setRelinearizeSkip")
        _set(params, "cacheLinearizedFactors", self.cache_linearized,    "setCacheLinearizedFactors")
        _set(params, "enableRelinearization", True,                      "setEnableRelinearization")

        optimizer = self.optimizer.lower()
        if optimizer == "dogleg":
            params.setOptimizationParams(gtsam.ISAM2DoglegParams())
        elif optimizer in ("gauss_newton", "gaussnewton"):
            params.setOptimizationParams(gtsam.ISAM2GaussNewtonParams())
        else:
            raise ValueError(f"Unsupported iSAM2 optimizer: {self.optimizer}")
        return params

    def ordering_type(self):
        """Map discrete_ordering to a gtsam.Ordering.OrderingType, or None."""
        if not self.discrete_ordering:
            return None
        name = self.discrete_ordering.upper()
        if gtsam is None or not hasattr(gtsam.Ordering.OrderingType, name):
            raise ValueError(f"Unsupported discrete ordering: {self.discrete_ordering}")
        return getattr(gtsam.Ordering.OrderingType, name)
