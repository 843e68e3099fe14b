"""Views of a HybridFactor for each of the two solvers.

DiscreteAdapter holds continuous values fixed and hands the discrete
solver a decision table. ContinuousAdapter holds the discrete assignment
fixed and hands ISAM2 a CustomFactor. Both wrap the same hybrid factor
object; neither copies it.
"""
import logging
import math
from typing import Dict, List, Optional, Sequence

import numpy as np

try:
    import gtsam
except Exception:
    gtsam = None

from .errors import NotInitializedError
from .hybrid_factor import HybridFactor
from .linear import LinearSystem
from .models import DiscreteAssignment, DiscreteKey, merge_values

logger = logging.getLogger("hybrid_sam.adapters")


class DiscreteAdapter:
    """A HybridFactor as a discrete factor, with continuous values frozen."""

    def __init__(self, factor: HybridFactor, discrete_keys: Optional[Sequence[DiscreteKey]] = None):
        if gtsam is None:
            raise RuntimeError("GTSAM not available; cannot build discrete adapters")
        self.factor = factor
        self._discrete_keys = [(int(k), int(c)) for k, c in (discrete_keys or factor.discrete_keys())]
        self._continuous = gtsam.Values()
        self._discrete: Dict[int, int] = {}

    def keys(self) -> List[int]:
        return [k for k, _ in self._discrete_keys]

    def discrete_keys(self) -> List[DiscreteKey]:
        return list(self._discrete_keys)

    @property
    def continuous_snapshot(self) -> "gtsam.Values":
        return gtsam.Values(self._continuous)

    @property
    def discrete_snapshot(self) -> DiscreteAssignment:
        return dict(self._discrete)

    def update_continuous(self, values: "gtsam.Values") -> None:
        merge_values(self._continuous, values, self.factor.keys())

    def update_discrete(self, assignment: DiscreteAssignment) -> None:
        for k, _ in self.factor.discrete_keys():
            if k in assignment:
                self._discrete[k] = int(assignment[k])

    def all_initialized(self) -> bool:
        return all(self._continuous.exists(k) for k in self.factor.keys())

    def _require_initialized(self) -> None:
        if not self.all_initialized():
            missing = [k for k in self.factor.keys() if not self._continuous.exists(k)]
            raise NotInitializedError(f"Discrete adapter has no continuous value for key(s) {missing}")

    def __call__(self, assignment: DiscreteAssignment) -> float:
        """Unnormalized likelihood exp(-error) of `assignment`."""
        self._require_initialized()
        merged = dict(self._discrete)
        merged.update(assignment)
        return math.exp(-self.factor.error(self._continuous, merged))

    def to_decision_tree_factor(self) -> "gtsam.DecisionTreeFactor":
        self._require_initialized()
        return self.factor.to_decision_tree_factor(self._continuous, self._discrete, self._discrete_keys)

    def __mul__(self, other: "gtsam.DecisionTreeFactor") -> "gtsam.DecisionTreeFactor":
        return self.to_decision_tree_factor() * other

    def equals(self, other, tol: float = 1e-9) -> bool:
        return (isinstance(other, DiscreteAdapter)
                and self._discrete_keys == other._discrete_keys
                and self.factor.equals(other.factor, tol))


class ContinuousAdapter:
    """A HybridFactor as a nonlinear factor, with the discrete assignment frozen."""

    def __init__(self, factor: HybridFactor):
        if gtsam is None:
            raise RuntimeError("GTSAM not available; cannot build continuous adapters")
        self.factor = factor
        self._discrete: Dict[int, int] = {}
        self._nonlinear = None

    def keys(self) -> List[int]:
        return self.factor.keys()

    def dim(self) -> int:
        return self.factor.dim()

    @property
    def discrete_snapshot(self) -> DiscreteAssignment:
        return dict(self._discrete)

    def update_discrete(self, assignment: DiscreteAssignment) -> bool:
        """Cache the factor's discrete values; returns True if any changed."""
        changed = False
        for k, _ in self.factor.discrete_keys():
            if k in assignment:
                v = int(assignment[k])
                if self._discrete.get(k) != v:
                    self._discrete[k] = v
                    changed = True
        return changed

    def all_initialized(self) -> bool:
        return all(k in self._discrete for k, _ in self.factor.discrete_keys())

    def _require_initialized(self) -> None:
        if not self.all_initialized():
            missing = [k for k, _ in self.factor.discrete_keys() if k not in self._discrete]
            raise NotInitializedError(f"Continuous adapter has no discrete value for key(s) {missing}")

    def error(self, values: "gtsam.Values") -> float:
        self._require_initialized()
        return self.factor.error(values, self._discrete)

    def linearize(self, values: "gtsam.Values") -> LinearSystem:
        self._require_initialized()
        return self.factor.linearize(values, self._discrete).padded(self.dim())

    def constant_shift(self, values: "gtsam.Values") -> float:
        """Constant C >= 0 added to the error iSAM2 sees for this factor."""
        self._require_initialized()
        return max(0.0, -self.factor.offset_floor(values, self._discrete))

    def _evaluate(self, this, values, jacobians):
        system = self.linearize(values)
        # Extra row with a zero Jacobian makes 0.5*||residual||^2 equal error() + C.
        offset = self.error(values) - system.error() + self.constant_shift(values)
        if not math.isfinite(offset):
            logger.warning("Non-finite error offset for %s on keys %s; constant row set to zero",
                           type(self.factor).__name__, self.keys())
            offset = 0.0
        residual = np.append(system.residual, math.sqrt(2.0 * max(offset, 0.0)))
        if jacobians is not None:
            dims = self.factor.key_dimensions(values)
            for i, k in enumerate(self.keys()):
                block = np.vstack([system.jacobian(k, dims[k]), np.zeros((1, dims[k]))])
                jacobians[i] = np.ascontiguousarray(block, dtype=np.float64)
        return np.ascontiguousarray(residual, dtype=np.float64)

    def to_nonlinear_factor(self) -> "gtsam.CustomFactor":
        """The CustomFactor ISAM2 sees; built once and reused.

        Its residual is already whitened, so the noise model is unit. It has
        dim() + 1 rows; the last one only carries the error offset.
        """
        if self._nonlinear is None:
            noise = gtsam.noiseModel.Unit.Create(self.dim() + 1)
            self._nonlinear = gtsam.CustomFactor(noise, gtsam.KeyVector(self.keys()), self._evaluate)
        return self._nonlinear

    def equals(self, other, tol: float = 1e-9) -> bool:
        return (isinstance(other, ContinuousAdapter)
                and self._discrete == other._discrete
                and self.factor.equals(other.factor, tol))
