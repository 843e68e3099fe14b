"""Purely discrete factors accepted by the discrete solver."""
import logging
from typing import List, Sequence

import numpy as np

from .hybrid_factor import decision_tree_factor
from .models import DiscreteAssignment, DiscreteKey

logger = logging.getLogger("hybrid_sam.discrete")


class DiscretePriorFactor:
    """Unary prior over one discrete variable.

    `probs` need not be normalized; the discrete solver only uses ratios.
    """

    def __init__(self, discrete_key: DiscreteKey, probs: Sequence[float]):
        self.discrete_key = (int(discrete_key[0]), int(discrete_key[1]))
        probs = np.asarray(probs, dtype=float).reshape(-1)
        if probs.size != self.discrete_key[1]:
            raise ValueError(f"Prior has {probs.size} entries for cardinality {self.discrete_key[1]}")
        self._probs = probs

    @property
    def probs(self) -> np.ndarray:
        return self._probs.copy()

    def keys(self) -> List[int]:
        return [self.discrete_key[0]]

    def discrete_keys(self) -> List[DiscreteKey]:
        return [self.discrete_key]

    def __call__(self, assignment: DiscreteAssignment) -> float:
        return float(self._probs[assignment[self.discrete_key[0]]])

    def to_decision_tree_factor(self):
        return decision_tree_factor([self.discrete_key], self._probs)

    def equals(self, other, tol: float = 1e-9) -> bool:
        return (isinstance(other, DiscretePriorFactor)
                and self.discrete_key == other.discrete_key
                and np.allclose(self._probs, other._probs, atol=tol))


class SmartDiscretePriorFactor(DiscretePriorFactor):
    """Discrete prior whose probabilities can be replaced after registration.

    The discrete solver rebuilds its tables on every solve, so a successful
    update_weights() takes effect on the next update() or estimate.
    """

    def update_weights(self, probs: Sequence[float]) -> bool:
        probs = np.asarray(probs, dtype=float).reshape(-1)
        if probs.size != self.discrete_key[1]:
            logger.error("Ignoring prior update on key %d: got %d entries, cardinality is %d",
                         self.discrete_key[0], probs.size, self.discrete_key[1])
            return False
        self._probs = probs
        return True
