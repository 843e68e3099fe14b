from __future__ import annotations

import gtsam
import pytest

from hybrid_sam.models import discrete_key


@pytest.fixture
def x1():
    return gtsam.symbol("x", 1)


@pytest.fixture
def d1():
    return discrete_key("d", 1, 2)


@pytest.fixture
def priors(x1):
    """Tight (sigma=1) and loose (sigma=8) priors on x1 at 0."""
    tight = gtsam.PriorFactorDouble(x1, 0.0, gtsam.noiseModel.Isotropic.Sigma(1, 1.0))
    loose = gtsam.PriorFactorDouble(x1, 0.0, gtsam.noiseModel.Isotropic.Sigma(1, 8.0))
    return tight, loose


@pytest.fixture
def at(x1):
    def _values(x: float) -> gtsam.Values:
        values = gtsam.Values()
        values.insert(x1, x)
        return values
    return _values
