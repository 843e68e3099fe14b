"""Mixture factors: one hybrid factor choosing among several components.

Four variants share a component list, per-component weights and an
optional Gaussian-normalizer correction:

- HardSelectionMixture: a discrete selector picks exactly one component.
- MaxMixture: the lowest-cost component is used (max-mixture).
- SumMixture: all components contribute, weighted by responsibility.
- EMMixture: the same soft assignment read as an E-step.

Consumers branch on ``factor.kind`` (a MixtureKind), never on the class.
"""
import enum
import logging
import math
from typing import List, Optional, Sequence

import numpy as np

from .hybrid_factor import HybridFactor, as_hybrid
from .linear import LinearSystem
from .models import DiscreteAssignment, DiscreteKey
from .numerics import exp_normalize, log_sum_exp, safe_log, validate_weights

logger = logging.getLogger("hybrid_sam.mixtures")


class MixtureKind(enum.Enum):
    HARD_SELECTION = "hard_selection"
    MAX = "max"
    SUM = "sum"
    EM = "em"


class _Mixture(HybridFactor):
    kind: MixtureKind

    def __init__(self, keys: Sequence[int], discrete_keys: Sequence[DiscreteKey], components: Sequence,
                 weights: Optional[Sequence[float]] = None, normalized: bool = False):
        comps = [as_hybrid(c) for c in components]
        if not comps:
            raise ValueError("A mixture needs at least one component")
        dks = [(int(k), int(c)) for k, c in discrete_keys]
        seen = {k for k, _ in dks}
        for comp in comps:
            for dk in comp.discrete_keys():
                if dk[0] not in seen:
                    dks.append(dk)
                    seen.add(dk[0])
        super().__init__(keys, dks)
        key_set = set(self._keys)
        for i, comp in enumerate(comps):
            extra = set(comp.keys()) - key_set
            if extra:
                raise ValueError(f"Component {i} touches keys {sorted(extra)} outside the mixture's keys")
        self._components = comps
        self.normalized = bool(normalized)
        if weights is None:
            self._log_weights = np.zeros(len(comps))
        else:
            reason = validate_weights(weights, len(comps))
            if reason is not None:
                raise ValueError(f"Invalid mixture weights: {reason}")
            self._log_weights = self._log_of(weights)

    @property
    def components(self) -> List[HybridFactor]:
        return list(self._components)

    @property
    def log_weights(self) -> np.ndarray:
        return self._log_weights.copy()

    @property
    def weights(self) -> np.ndarray:
        return np.exp(self._log_weights)

    def update_weights(self, weights: Sequence[float]) -> bool:
        """Replace the component weights in place; returns False if rejected."""
        reason = validate_weights(weights, len(self._components))
        if reason is not None:
            logger.error("Ignoring weight update for %s mixture: %s", self.kind.value, reason)
            return False
        self._log_weights = self._log_of(weights)
        return True

    def _log_of(self, weights: Sequence[float]) -> np.ndarray:
        w = np.asarray(weights, dtype=float).reshape(-1)
        if not np.any(w > 0.0):
            logger.warning("All %s mixture weights are zero; using uniform weights", self.kind.value)
            w = np.ones(w.size)
        return safe_log(w)

    def _cost(self, i: int, continuous_vals, discrete_vals) -> float:
        comp = self._components[i]
        cost = comp.error(continuous_vals, discrete_vals) - self._log_weights[i]
        if not self.normalized:
            cost += comp.log_normalizing_constant(continuous_vals, discrete_vals)
        return float(cost)

    def component_costs(self, continuous_vals, discrete_vals: DiscreteAssignment) -> np.ndarray:
        """error_i - log w_i (+ normalizer_i unless normalized), per component."""
        self.check_keys(continuous_vals, discrete_vals)
        return np.array([self._cost(i, continuous_vals, discrete_vals) for i in range(len(self._components))])

    def active_index(self, continuous_vals, discrete_vals: DiscreteAssignment) -> int:
        costs = self.component_costs(continuous_vals, discrete_vals)
        best = 0
        for i in range(1, costs.size):
            if costs[i] < costs[best]:
                best = i
        return best

    def association_keys(self, continuous_vals, discrete_vals: DiscreteAssignment) -> List[int]:
        return self._components[self.active_index(continuous_vals, discrete_vals)].keys()

    def offset_floor(self, continuous_vals, discrete_vals: DiscreteAssignment) -> float:
        """Smallest -log w_i (+ normalizer_i) over components that can be active."""
        floors = []
        for comp, lw in zip(self._components, self._log_weights):
            if not np.isfinite(lw):
                continue
            floor = comp.offset_floor(continuous_vals, discrete_vals) - lw
            if not self.normalized:
                floor += comp.log_normalizing_constant(continuous_vals, discrete_vals)
            floors.append(floor)
        return float(min(floors)) if floors else 0.0

    def equals(self, other, tol: float = 1e-9) -> bool:
        if not super().equals(other, tol):
            return False
        if self.normalized != other.normalized or len(self._components) != len(other._components):
            return False
        if not np.allclose(self._log_weights, other._log_weights, atol=tol):
            return False
        return all(a.equals(b, tol) for a, b in zip(self._components, other._components))


class HardSelectionMixture(_Mixture):
    """Component ``i`` is active exactly when the selector key takes value ``i``."""

    kind = MixtureKind.HARD_SELECTION

    def __init__(self, keys: Sequence[int], discrete_key: DiscreteKey, components: Sequence,
                 weights: Optional[Sequence[float]] = None, normalized: bool = False):
        if len(components) != int(discrete_key[1]):
            raise ValueError(f"Selector cardinality {discrete_key[1]} does not match "
                             f"{len(components)} components")
        super().__init__(keys, [discrete_key], components, weights, normalized)
        self.selector = (int(discrete_key[0]), int(discrete_key[1]))
        self._dim = max(c.dim() for c in self._components)

    def selected(self, discrete_vals: DiscreteAssignment) -> int:
        return int(discrete_vals[self.selector[0]])

    def active_index(self, continuous_vals, discrete_vals: DiscreteAssignment) -> int:
        self.check_keys(continuous_vals, discrete_vals)
        return self.selected(discrete_vals)

    def error(self, continuous_vals, discrete_vals: DiscreteAssignment) -> float:
        self.check_keys(continuous_vals, discrete_vals)
        return self._cost(self.selected(discrete_vals), continuous_vals, discrete_vals)

    def dim(self) -> int:
        return self._dim

    def linearize(self, continuous_vals, discrete_vals: DiscreteAssignment) -> LinearSystem:
        self.check_keys(continuous_vals, discrete_vals)
        comp = self._components[self.selected(discrete_vals)]
        return comp.linearize(continuous_vals, discrete_vals).padded(self._dim)

    def log_normalizing_constant(self, continuous_vals, discrete_vals: DiscreteAssignment) -> float:
        comp = self._components[self.selected(discrete_vals)]
        return comp.log_normalizing_constant(continuous_vals, discrete_vals)


class MaxMixture(_Mixture):
    """Max-mixture: the error of the best-explaining component.

    The active component is the first minimizer of
    ``error_i - log w_i (+ normalizer_i)``.
    """

    kind = MixtureKind.MAX

    def __init__(self, keys: Sequence[int], discrete_keys: Sequence[DiscreteKey], components: Sequence,
                 weights: Optional[Sequence[float]] = None, normalized: bool = False):
        super().__init__(keys, discrete_keys, components, weights, normalized)
        self._dim = max(c.dim() for c in self._components)

    def error(self, continuous_vals, discrete_vals: DiscreteAssignment) -> float:
        costs = self.component_costs(continuous_vals, discrete_vals)
        return float(np.min(costs))

    def dim(self) -> int:
        return self._dim

    def linearize(self, continuous_vals, discrete_vals: DiscreteAssignment) -> LinearSystem:
        comp = self._components[self.active_index(continuous_vals, discrete_vals)]
        return comp.linearize(continuous_vals, discrete_vals).padded(self._dim)

    def log_normalizing_constant(self, continuous_vals, discrete_vals: DiscreteAssignment) -> float:
        comp = self._components[self.active_index(continuous_vals, discrete_vals)]
        return comp.log_normalizing_constant(continuous_vals, discrete_vals)


class _SoftMixture(_Mixture):
    """Shared responsibility-weighted machinery for SumMixture and EMMixture."""

    def __init__(self, keys: Sequence[int], discrete_keys: Sequence[DiscreteKey], components: Sequence,
                 weights: Optional[Sequence[float]] = None, normalized: bool = False):
        super().__init__(keys, discrete_keys, components, weights, normalized)
        self._dim = sum(c.dim() for c in self._components)

    def responsibilities(self, continuous_vals, discrete_vals: DiscreteAssignment) -> np.ndarray:
        return exp_normalize(-self.component_costs(continuous_vals, discrete_vals))

    def error(self, continuous_vals, discrete_vals: DiscreteAssignment) -> float:
        costs = self.component_costs(continuous_vals, discrete_vals)
        resp = exp_normalize(-costs)
        used = resp > 0.0
        return float(np.sum(resp[used] * costs[used]))

    def dim(self) -> int:
        return self._dim

    def linearize(self, continuous_vals, discrete_vals: DiscreteAssignment) -> LinearSystem:
        """Stack every component's whitened system scaled by sqrt(responsibility)."""
        resp = self.responsibilities(continuous_vals, discrete_vals)
        key_dims = self.key_dimensions(continuous_vals)
        systems = []
        for comp, r in zip(self._components, resp):
            system = comp.linearize(continuous_vals, discrete_vals).padded(comp.dim())
            systems.append(system.scaled(math.sqrt(r)))
        return LinearSystem.stack(systems, self._keys, key_dims)

    def log_beta(self, continuous_vals=None, discrete_vals: Optional[DiscreteAssignment] = None) -> float:
        """log of sum_i w_i * eta_i, an upper bound on the mixture likelihood."""
        terms = []
        for comp, lw in zip(self._components, self._log_weights):
            norm = 0.0 if self.normalized else comp.log_normalizing_constant(continuous_vals, discrete_vals)
            terms.append(lw - norm)
        return log_sum_exp(terms)

    def log_normalizing_constant(self, continuous_vals, discrete_vals: DiscreteAssignment) -> float:
        return -self.log_beta(continuous_vals, discrete_vals)


class SumMixture(_SoftMixture):
    """Sum-mixture evaluated through its responsibility-weighted cost.

    error is sum_i r_i * cost_i with r = exp_normalize(-cost). The exact
    negative log-likelihood and the non-negative residual
    sqrt(log_beta - log p) are also exposed.
    """

    kind = MixtureKind.SUM

    def negative_log_likelihood(self, continuous_vals, discrete_vals: DiscreteAssignment) -> float:
        return -log_sum_exp(-self.component_costs(continuous_vals, discrete_vals))

    def sqrt_residual(self, continuous_vals, discrete_vals: DiscreteAssignment) -> float:
        gap = self.log_beta(continuous_vals, discrete_vals) + self.negative_log_likelihood(
            continuous_vals, discrete_vals)
        return math.sqrt(max(gap, 0.0))


class EMMixture(_SoftMixture):
    """Expectation-maximization mixture.

    The responsibilities are the E-step soft assignment of the measurement
    to each component; error and linearize are the M-step objective with
    those responsibilities held as weights.
    """

    kind = MixtureKind.EM
