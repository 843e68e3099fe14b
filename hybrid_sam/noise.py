from typing import Optional
import math

import numpy as np

try:
    import gtsam
except Exception:
    gtsam = None


def make_spd(cov: np.ndarray, eps: float = 1e-9) -> np.ndarray:
    """Jitter a covariance to be SPD if needed.

    Why: mixture components are often built from hand-tuned or learned
    covariances that can be nearly singular; the log-determinant below
    needs a Cholesky-able matrix.
    """
    cov = np.array(cov, dtype=float)
    cov = 0.5 * (cov + cov.T)
    eye = np.eye(cov.shape[0])
    jitter = eps
    for _ in range(8):
        try:
            np.linalg.cholesky(cov + eye * jitter)
            return cov + eye * jitter
        except np.linalg.LinAlgError:
            jitter *= 10.0
    return cov + eye * jitter


def gaussian_from_covariance(cov: np.ndarray):
    """Create a GTSAM Gaussian noise model from an n x n covariance."""
    if gtsam is None:
        raise RuntimeError("GTSAM not available; cannot build noise model")
    cov = make_spd(cov)
    cov = np.array(cov, dtype=np.float64, order="C")
    return gtsam.noiseModel.Gaussian.Covariance(cov)


def noise_information(model) -> np.ndarray:
    """Information matrix of a Gaussian (or robust-wrapped Gaussian) model."""
    if hasattr(model, "information"):
        return np.asarray(model.information(), dtype=float)
    inner = getattr(model, "noise", None)
    if callable(inner):
        return noise_information(inner())
    raise ValueError(f"Noise model {type(model).__name__} carries no information matrix")


def gaussian_log_normalizer(information: np.ndarray) -> float:
    """Negative log of the Gaussian normalizer for a given information matrix.

    0.5 * d * log(2*pi) - 0.5 * log det(information)
    """
    info = np.atleast_2d(np.asarray(information, dtype=float))
    sign, logdet = np.linalg.slogdet(info)
    if sign <= 0:
        _, logdet = np.linalg.slogdet(make_spd(info))
    d = info.shape[0]
    return 0.5 * d * math.log(2.0 * math.pi) - 0.5 * float(logdet)


def log_normalizing_constant(factor, values: Optional["gtsam.Values"] = None) -> float:
    """Gaussian log-normalizer of a plain gtsam factor.

    Uses the factor's noise model when it has one. Otherwise falls back to
    the information of its linearization at `values`.
    """
    model = None
    if hasattr(factor, "noiseModel"):
        try:
            model = factor.noiseModel()
        except Exception:
            model = None
    if model is not None:
        return gaussian_log_normalizer(noise_information(model))
    if values is None:
        raise ValueError("Factor has no noise model; values are needed to linearize it")
    return gaussian_log_normalizer(factor.linearize(values).information())
