"""Base class for factors over continuous and discrete variables."""
import itertools
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

try:
    import gtsam
except Exception:
    gtsam = None

from .errors import InvalidAssignmentError, MissingKeyError
from .linear import LinearSystem
from .models import DiscreteAssignment, DiscreteKey
from .noise import log_normalizing_constant
from .numerics import exp_normalize

logger = logging.getLogger("hybrid_sam.hybrid_factor")


def assignments(discrete_keys: Sequence[DiscreteKey]) -> List[Dict[int, int]]:
    """Every joint assignment of `discrete_keys`, first key varying slowest."""
    keys = [k for k, _ in discrete_keys]
    ranges = [range(card) for _, card in discrete_keys]
    return [dict(zip(keys, combo)) for combo in itertools.product(*ranges)]


def decision_tree_factor(discrete_keys: Sequence[DiscreteKey],
                         table: Iterable[float]) -> "gtsam.DecisionTreeFactor":
    """Build a gtsam decision table; `table` follows assignments() order."""
    if gtsam is None:
        raise RuntimeError("GTSAM not available; cannot build decision tables")
    if not discrete_keys:
        raise ValueError("A decision table needs at least one discrete key")
    dkeys = gtsam.DiscreteKeys()
    for k, card in discrete_keys:
        dkeys.push_back((int(k), int(card)))
    table_str = " ".join("%.17g" % float(p) for p in table)
    return gtsam.DecisionTreeFactor(dkeys, table_str)


class HybridFactor:
    """A factor whose error depends on continuous and discrete variables.

    Subclasses implement error(), dim(), linearize() and
    log_normalizing_constant(). Discrete tables are derived from error()
    as exp(-error) over every assignment of the discrete keys.
    """

    def __init__(self, keys: Iterable[int], discrete_keys: Iterable[DiscreteKey]):
        self._keys = [int(k) for k in keys]
        self._discrete_keys = [(int(k), int(c)) for k, c in discrete_keys]
        self._key_dims: Dict[int, int] = {}

    def keys(self) -> List[int]:
        return list(self._keys)

    def discrete_keys(self) -> List[DiscreteKey]:
        return list(self._discrete_keys)

    def error(self, continuous_vals: "gtsam.Values", discrete_vals: DiscreteAssignment) -> float:
        raise NotImplementedError

    def dim(self) -> int:
        raise NotImplementedError

    def linearize(self, continuous_vals: "gtsam.Values", discrete_vals: DiscreteAssignment) -> LinearSystem:
        raise NotImplementedError

    def log_normalizing_constant(self, continuous_vals: "gtsam.Values",
                                 discrete_vals: DiscreteAssignment) -> float:
        raise NotImplementedError

    def offset_floor(self, continuous_vals: "gtsam.Values", discrete_vals: DiscreteAssignment) -> float:
        """Lower bound on error() minus 0.5*||linearize().residual||^2.

        Zero for a plain Gaussian factor; weights, class likelihoods and
        normalizers shift it.
        """
        return 0.0

    def equals(self, other, tol: float = 1e-9) -> bool:
        return (type(self) is type(other)
                and self._keys == other._keys
                and self._discrete_keys == other._discrete_keys)

    def check_keys(self, continuous_vals: "gtsam.Values", discrete_vals: DiscreteAssignment) -> None:
        """Raise if any touched key has no value or a value out of range."""
        missing = [k for k in self._keys if not continuous_vals.exists(k)]
        if missing:
            raise MissingKeyError("continuous", missing)
        missing = [k for k, _ in self._discrete_keys if k not in discrete_vals]
        if missing:
            raise MissingKeyError("discrete", missing)
        for k, card in self._discrete_keys:
            v = discrete_vals[k]
            if not 0 <= v < card:
                raise InvalidAssignmentError(f"Discrete key {k} has value {v}, cardinality is {card}")

    def key_dimensions(self, continuous_vals: "gtsam.Values") -> Dict[int, int]:
        """Tangent dimension of each continuous key, cached after first use."""
        if any(k not in self._key_dims for k in self._keys):
            zero = continuous_vals.localCoordinates(continuous_vals)
            for k in self._keys:
                self._key_dims[k] = int(np.asarray(zero.at(k)).shape[0])
        return self._key_dims

    def evaluate_probabilities(self, continuous_vals: "gtsam.Values", discrete_vals: DiscreteAssignment,
                               discrete_keys: Optional[Sequence[DiscreteKey]] = None
                               ) -> Tuple[List[Dict[int, int]], np.ndarray]:
        """Normalized exp(-error) over every assignment of `discrete_keys`.

        Keys not enumerated are read from `discrete_vals`.
        """
        dks = list(self._discrete_keys if discrete_keys is None else discrete_keys)
        combos = assignments(dks)
        log_values = []
        for combo in combos:
            merged = dict(discrete_vals)
            merged.update(combo)
            log_values.append(-self.error(continuous_vals, merged))
        return combos, exp_normalize(log_values)

    def to_decision_tree_factor(self, continuous_vals: "gtsam.Values", discrete_vals: DiscreteAssignment,
                                discrete_keys: Optional[Sequence[DiscreteKey]] = None
                                ) -> "gtsam.DecisionTreeFactor":
        dks = list(self._discrete_keys if discrete_keys is None else discrete_keys)
        _, probs = self.evaluate_probabilities(continuous_vals, discrete_vals, dks)
        return decision_tree_factor(dks, probs)

    def conditional_times(self, factor: "gtsam.DecisionTreeFactor", continuous_vals: "gtsam.Values",
                          discrete_vals: DiscreteAssignment) -> "gtsam.DecisionTreeFactor":
        return self.to_decision_tree_factor(continuous_vals, discrete_vals) * factor


class ContinuousComponent(HybridFactor):
    """A plain gtsam nonlinear factor seen as a hybrid factor with no discrete keys."""

    def __init__(self, factor):
        super().__init__(list(factor.keys()), [])
        self.factor = factor
        self._log_norm: Optional[float] = None

    def error(self, continuous_vals, discrete_vals=None) -> float:
        return float(self.factor.error(continuous_vals))

    def dim(self) -> int:
        return int(self.factor.dim())

    def linearize(self, continuous_vals, discrete_vals=None) -> LinearSystem:
        return LinearSystem.from_factor(self.factor, continuous_vals, self.key_dimensions(continuous_vals))

    def log_normalizing_constant(self, continuous_vals=None, discrete_vals=None) -> float:
        if self._log_norm is not None:
            return self._log_norm
        value = log_normalizing_constant(self.factor, continuous_vals)
        # Only noise-model constants are independent of the linearization point.
        if hasattr(self.factor, "noiseModel"):
            self._log_norm = value
        return value

    def equals(self, other, tol: float = 1e-9) -> bool:
        return isinstance(other, ContinuousComponent) and bool(self.factor.equals(other.factor, tol))


def as_hybrid(component) -> HybridFactor:
    if isinstance(component, HybridFactor):
        return component
    return ContinuousComponent(component)
