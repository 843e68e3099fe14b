"""Persistent discrete factor store solved by gtsam's discrete elimination."""
import logging
from typing import List, Optional

import numpy as np

try:
    import gtsam
except Exception:
    gtsam = None

from .models import DiscreteAssignment, DiscreteKey, from_discrete_values

logger = logging.getLogger("hybrid_sam.discrete_solver")


def as_decision_tree(factor):
    """Materialize a factor for gtsam; adapters and priors build their table now."""
    build = getattr(factor, "to_decision_tree_factor", None)
    if callable(build):
        return build()
    return factor


class DiscreteSolver:
    """Keeps discrete factors by slot index and re-solves from scratch.

    Factors are stored as Python objects rather than in a gtsam graph so
    that adapters and smart priors re-evaluate their tables on every
    solve. Removing a factor leaves an empty slot; indices never shift.
    """

    def __init__(self, ordering=None):
        if gtsam is None:
            raise RuntimeError("GTSAM not available; cannot solve discrete problems")
        self.ordering = ordering
        self._slots: List[Optional[object]] = []

    def push_factor(self, factor) -> int:
        self._slots.append(factor)
        return len(self._slots) - 1

    def remove(self, index: int):
        """Empty slot `index`; returns the removed factor (None if already empty)."""
        factor = self._slots[index]
        if factor is None:
            logger.warning("Discrete slot %d is already empty", index)
        else:
            logger.debug("Removed %s from discrete slot %d", type(factor).__name__, index)
        self._slots[index] = None
        return factor

    def factors(self) -> List[object]:
        return [f for f in self._slots if f is not None]

    def at(self, index: int):
        return self._slots[index]

    def size(self) -> int:
        return len(self._slots)

    def empty(self) -> bool:
        return not any(f is not None for f in self._slots)

    def build_graph(self) -> "gtsam.DiscreteFactorGraph":
        graph = gtsam.DiscreteFactorGraph()
        for factor in self.factors():
            graph.push_back(as_decision_tree(factor))
        return graph

    def optimize(self) -> DiscreteAssignment:
        """MAP assignment of every discrete variable in the store."""
        if self.empty():
            return {}
        graph = self.build_graph()
        if self.ordering is None:
            mpe = graph.optimize()
        else:
            mpe = graph.maxProduct(self.ordering).argmax()
        return from_discrete_values(mpe)

    def marginals(self) -> "gtsam.DiscreteMarginals":
        return gtsam.DiscreteMarginals(self.build_graph())

    def marginal_probabilities(self, discrete_key: DiscreteKey) -> np.ndarray:
        probs = self.marginals().marginalProbabilities((int(discrete_key[0]), int(discrete_key[1])))
        return np.asarray(probs, dtype=float)
