"""Measurements that carry both geometry and a class likelihood."""
import logging
import math
from typing import Sequence

import numpy as np

try:
    import gtsam
except Exception:
    gtsam = None

from .hybrid_factor import HybridFactor
from .linear import LinearSystem
from .models import DiscreteAssignment, DiscreteKey
from .noise import log_normalizing_constant

logger = logging.getLogger("hybrid_sam.semantic")


class SemanticMeasurementFactor(HybridFactor):
    """Geometric factor plus -log p(class) from a classifier.

    error(x, c) = factor.error(x) - log(probs[c])
    """

    def __init__(self, factor, discrete_key: DiscreteKey, probs: Sequence[float]):
        super().__init__(list(factor.keys()), [discrete_key])
        self.factor = factor
        self.class_key = (int(discrete_key[0]), int(discrete_key[1]))
        self._probs = self._check_probs(probs)
        self._log_norm = None

    def _check_probs(self, probs) -> np.ndarray:
        probs = np.asarray(probs, dtype=float).reshape(-1)
        if probs.size != self.class_key[1]:
            raise ValueError(f"Got {probs.size} class probabilities for cardinality {self.class_key[1]}")
        return probs

    @property
    def probs(self) -> np.ndarray:
        return self._probs.copy()

    def error(self, continuous_vals, discrete_vals: DiscreteAssignment) -> float:
        self.check_keys(continuous_vals, discrete_vals)
        p = self._probs[discrete_vals[self.class_key[0]]]
        log_p = math.log(p) if p > 0.0 else -math.inf
        return float(self.factor.error(continuous_vals)) - log_p

    def dim(self) -> int:
        return int(self.factor.dim())

    def linearize(self, continuous_vals, discrete_vals: DiscreteAssignment) -> LinearSystem:
        return LinearSystem.from_factor(self.factor, continuous_vals, self.key_dimensions(continuous_vals))

    def log_normalizing_constant(self, continuous_vals, discrete_vals=None) -> float:
        if self._log_norm is None:
            self._log_norm = log_normalizing_constant(self.factor, continuous_vals)
        return self._log_norm

    def offset_floor(self, continuous_vals, discrete_vals=None) -> float:
        top = float(np.max(self._probs))
        return -math.log(top) if top > 0.0 else 0.0

    def equals(self, other, tol: float = 1e-9) -> bool:
        return (super().equals(other, tol)
                and np.allclose(self._probs, other._probs, atol=tol)
                and bool(self.factor.equals(other.factor, tol)))


class SemanticBearingRangeFactor(SemanticMeasurementFactor):
    """Bearing-range landmark observation with a class likelihood.

    A Rot2 bearing builds a 2D factor (Pose2 to Point2); a Unit3 bearing
    builds a 3D one (Pose3 to Point3).
    """

    def __init__(self, pose_key: int, point_key: int, discrete_key: DiscreteKey,
                 probs: Sequence[float], bearing, range_: float, noise):
        if gtsam is None:
            raise RuntimeError("GTSAM not available; cannot build bearing-range factors")
        if isinstance(bearing, gtsam.Unit3):
            factor = gtsam.BearingRangeFactor3D(pose_key, point_key, bearing, range_, noise)
        else:
            factor = gtsam.BearingRangeFactor2D(pose_key, point_key, bearing, range_, noise)
        super().__init__(factor, discrete_key, probs)


class SmartSemanticBearingRangeFactor(SemanticBearingRangeFactor):
    """Semantic bearing-range factor whose class likelihood can be refreshed."""

    def update_weights(self, probs: Sequence[float]) -> bool:
        try:
            self._probs = self._check_probs(probs)
        except ValueError as exc:
            logger.error("Ignoring class likelihood update: %s", exc)
            return False
        return True
