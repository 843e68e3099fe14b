from __future__ import annotations

import logging
import math

import gtsam
import numpy as np
import pytest

from hybrid_sam.models import discrete_key
from hybrid_sam.sam import HybridSAM
from hybrid_sam.semantic import (SemanticBearingRangeFactor, SemanticMeasurementFactor,
                                 SmartSemanticBearingRangeFactor)


@pytest.fixture
def c0():
    return discrete_key("c", 0, 2)


def _planar_problem():
    x0, l0 = gtsam.symbol("x", 0), gtsam.symbol("l", 0)
    graph = gtsam.NonlinearFactorGraph()
    graph.push_back(gtsam.PriorFactorPose2(x0, gtsam.Pose2(0.0, 0.0, 0.0),
                                           gtsam.noiseModel.Isotropic.Sigma(3, 0.01)))
    graph.push_back(gtsam.PriorFactorPoint2(l0, gtsam.Point2(3.0, 0.0),
                                            gtsam.noiseModel.Isotropic.Sigma(2, 0.01)))
    initial = gtsam.Values()
    initial.insert(x0, gtsam.Pose2(0.02, -0.01, 0.005))
    initial.insert(l0, gtsam.Point2(3.05, 0.02))
    return x0, l0, graph, initial


def test_error_adds_negative_log_class_probability(c0):
    x0, l0, _, initial = _planar_problem()
    noise = gtsam.noiseModel.Diagonal.Sigmas(np.array([0.05, 0.1]))
    factor = SemanticBearingRangeFactor(x0, l0, c0, [0.3, 0.7], gtsam.Rot2(0.0), 3.0, noise)
    assert isinstance(factor.factor, gtsam.BearingRangeFactor2D)
    geometric = factor.factor.error(initial)
    assert factor.error(initial, {c0[0]: 0}) == pytest.approx(geometric - math.log(0.3))
    assert factor.error(initial, {c0[0]: 1}) == pytest.approx(geometric - math.log(0.7))
    assert factor.offset_floor(initial, {}) == pytest.approx(-math.log(0.7))
    with pytest.raises(ValueError):
        SemanticMeasurementFactor(factor.factor, c0, [1.0, 0.0, 0.0])


def test_unit3_bearing_builds_a_3d_factor(c0):
    x0, l0 = gtsam.symbol("x", 0), gtsam.symbol("l", 0)
    pose = gtsam.Pose3()
    point = gtsam.Point3(2.0, 1.0, 0.5)
    factor = SemanticBearingRangeFactor(x0, l0, c0, [0.3, 0.7], pose.bearing(point), pose.range(point),
                                        gtsam.noiseModel.Isotropic.Sigma(3, 0.1))
    assert isinstance(factor.factor, gtsam.BearingRangeFactor3D)
    assert factor.dim() == 3

    values = gtsam.Values()
    values.insert(x0, pose)
    values.insert(l0, gtsam.Point3(2.1, 0.9, 0.5))
    geometric = factor.factor.error(values)
    assert geometric > 0.0
    assert factor.error(values, {c0[0]: 0}) == pytest.approx(geometric - math.log(0.3))

    system = factor.linearize(values, {c0[0]: 0})
    assert system.blocks[x0].shape == (3, 6)
    assert system.blocks[l0].shape == (3, 3)
    assert system.error() == pytest.approx(geometric)


def test_reweighting_a_registered_semantic_factor_flips_the_class(c0, caplog):
    x0, l0, graph, initial = _planar_problem()
    noise = gtsam.noiseModel.Diagonal.Sigmas(np.array([0.05, 0.1]))
    smart = SmartSemanticBearingRangeFactor(x0, l0, c0, [0.3, 0.7], gtsam.Rot2(0.0), 3.0, noise)
    sam = HybridSAM()
    sam.update(graph, hybrid_graph=[smart], initial_continuous=initial)
    assert sam.calculate_estimate().discrete == {c0[0]: 1}

    assert smart.update_weights([0.9, 0.1])
    sam.update()
    assert sam.current_discrete == {c0[0]: 0}

    with caplog.at_level(logging.ERROR, logger="hybrid_sam.semantic"):
        assert not smart.update_weights([0.2, 0.3, 0.5])
    assert "Ignoring class likelihood update" in caplog.text
    assert np.allclose(smart.probs, [0.9, 0.1])
    sam.update()
    assert sam.calculate_estimate().discrete == {c0[0]: 0}
    assert np.allclose(sam.get_marginals().discrete_probabilities(c0), [0.9, 0.1], atol=1e-6)
