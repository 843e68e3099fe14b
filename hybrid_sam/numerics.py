"""Log-domain helpers shared by the mixture factors."""
from typing import Iterable, Optional, Sequence

import numpy as np


def log_sum_exp(log_values: Iterable[float]) -> float:
    """Stable log(sum(exp(x))). Returns -inf when no entry is finite."""
    x = np.asarray(list(log_values), dtype=float)
    if x.size == 0:
        return -np.inf
    finite = x[np.isfinite(x)]
    if finite.size == 0:
        return np.inf if np.any(x == np.inf) else -np.inf
    m = float(np.max(finite))
    return m + float(np.log(np.sum(np.exp(finite - m))))


def exp_normalize(log_values: Iterable[float]) -> np.ndarray:
    """Turn unnormalized log-probabilities into probabilities summing to 1.

    The maximum is subtracted before exponentiating so that very large
    equal costs do not underflow to 0/0. With no finite entry at all the
    result is uniform, never NaN.
    """
    x = np.asarray(list(log_values), dtype=float)
    if x.size == 0:
        return x
    x = np.where(np.isnan(x), -np.inf, x)
    finite = np.isfinite(x)
    if not np.any(finite):
        return np.full(x.size, 1.0 / x.size)
    m = float(np.max(x[finite]))
    p = np.where(finite, np.exp(x - m), 0.0)
    return p / np.sum(p)


def validate_weights(weights: Sequence[float], expected: int) -> Optional[str]:
    """Return a reason string if `weights` cannot be used, else None."""
    w = np.asarray(weights, dtype=float).reshape(-1)
    if w.size != expected:
        return f"expected {expected} weights, got {w.size}"
    if not np.all(np.isfinite(w)):
        return "weights must be finite"
    if np.any(w < 0.0):
        return "weights must be non-negative"
    return None


def safe_log(weights: Sequence[float]) -> np.ndarray:
    w = np.asarray(weights, dtype=float).reshape(-1)
    with np.errstate(divide="ignore"):
        return np.log(w)
