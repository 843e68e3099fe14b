from typing import List, Set
import logging

try:
    import gtsam
except Exception:
    gtsam = None

from .hybrid_factor import HybridFactor

logger = logging.getLogger("hybrid_sam.graph")


class HybridFactorGraph:
    """One batch of continuous, discrete and hybrid factors for HybridSAM.update().

    Discrete factors are any objects the discrete solver accepts: gtsam
    decision tables or anything with to_decision_tree_factor().
    """

    def __init__(self):
        if gtsam is None:
            raise RuntimeError("GTSAM not available; cannot build graph")
        self._nonlinear = gtsam.NonlinearFactorGraph()
        self._discrete: List[object] = []
        self._hybrid: List[HybridFactor] = []
        self._continuous_keys: Set[int] = set()
        self._discrete_keys: Set[int] = set()

    def push_nonlinear(self, factor) -> None:
        self._nonlinear.push_back(factor)
        self._continuous_keys.update(int(k) for k in factor.keys())

    def push_discrete(self, factor) -> None:
        self._discrete.append(factor)
        if hasattr(factor, "discrete_keys") and callable(factor.discrete_keys):
            self._discrete_keys.update(int(k) for k, _ in factor.discrete_keys())
        else:
            self._discrete_keys.update(int(k) for k in factor.keys())

    def push_hybrid(self, factor: HybridFactor) -> None:
        if not isinstance(factor, HybridFactor):
            raise TypeError(f"Expected a HybridFactor, got {type(factor).__name__}")
        self._hybrid.append(factor)
        self._continuous_keys.update(factor.keys())
        self._discrete_keys.update(k for k, _ in factor.discrete_keys())

    def extend(self, other: "HybridFactorGraph") -> None:
        nonlinear = other.nonlinear_graph()
        for i in range(nonlinear.size()):
            self.push_nonlinear(nonlinear.at(i))
        for factor in other.discrete_factors():
            self.push_discrete(factor)
        for factor in other.hybrid_factors():
            self.push_hybrid(factor)

    def keys(self) -> Set[int]:
        """Every continuous key touched by the batch."""
        return set(self._continuous_keys)

    def discrete_keys(self) -> Set[int]:
        return set(self._discrete_keys)

    def nonlinear_graph(self) -> "gtsam.NonlinearFactorGraph":
        return self._nonlinear

    def discrete_factors(self) -> List[object]:
        return list(self._discrete)

    def hybrid_factors(self) -> List[HybridFactor]:
        return list(self._hybrid)

    def size_nonlinear(self) -> int:
        return int(self._nonlinear.size())

    def size_discrete(self) -> int:
        return len(self._discrete)

    def size_hybrid(self) -> int:
        return len(self._hybrid)

    def size(self) -> int:
        return self.size_nonlinear() + self.size_discrete() + self.size_hybrid()

    def empty(self) -> bool:
        return self.size() == 0

    def clear(self) -> None:
        self._nonlinear = gtsam.NonlinearFactorGraph()
        self._discrete = []
        self._hybrid = []
        self._continuous_keys = set()
        self._discrete_keys = set()

    def pop_batch(self) -> "HybridFactorGraph":
        """Return the accumulated factors as a new graph and reset this one."""
        batch = HybridFactorGraph()
        batch._nonlinear = self._nonlinear
        batch._discrete = self._discrete
        batch._hybrid = self._hybrid
        batch._continuous_keys = self._continuous_keys
        batch._discrete_keys = self._discrete_keys
        self.clear()
        logger.debug("Popped batch: %d nonlinear, %d discrete, %d hybrid factors",
                     batch.size_nonlinear(), batch.size_discrete(), batch.size_hybrid())
        return batch
