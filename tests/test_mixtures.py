from __future__ import annotations

import logging
import math

import gtsam
import numpy as np
import pytest

from hybrid_sam.discrete import DiscretePriorFactor
from hybrid_sam.errors import InvalidAssignmentError, MissingKeyError
from hybrid_sam.mixtures import EMMixture, HardSelectionMixture, MaxMixture, MixtureKind, SumMixture

LOG_2PI = 0.5 * math.log(2 * math.pi)


def test_hard_selection_error_adds_normalizer(x1, d1, priors, at):
    tight, loose = priors
    mix = HardSelectionMixture([x1], d1, [tight, loose])
    vals = at(-2.5)
    assert mix.error(vals, {d1[0]: 0}) == pytest.approx(tight.error(vals) + LOG_2PI)
    assert mix.error(vals, {d1[0]: 1}) == pytest.approx(loose.error(vals) + LOG_2PI + math.log(8.0))


def test_hard_selection_normalized_uses_raw_component_error(x1, d1, priors, at):
    tight, loose = priors
    mix = HardSelectionMixture([x1], d1, [tight, loose], normalized=True)
    vals = at(-2.5)
    assert mix.error(vals, {d1[0]: 1}) == pytest.approx(loose.error(vals))


def test_hard_selection_linearize_selected_component(x1, d1, priors, at):
    mix = HardSelectionMixture([x1], d1, list(priors))
    system = mix.linearize(at(-2.5), {d1[0]: 1})
    assert system.rows == mix.dim() == 1
    assert np.allclose(system.blocks[x1], [[1.0 / 8.0]])
    assert np.allclose(system.residual, [-2.5 / 8.0])


def test_hard_selection_discrete_table_prefers_loose_mode_far_from_zero(x1, d1, priors, at):
    mix = HardSelectionMixture([x1], d1, list(priors))
    combos, probs = mix.evaluate_probabilities(at(-2.5), {})
    assert [c[d1[0]] for c in combos] == [0, 1]
    assert probs.sum() == pytest.approx(1.0)
    assert probs[1] > probs[0]
    assert mix.to_decision_tree_factor(at(-2.5), {}) is not None


def test_hard_selection_rejects_wrong_component_count(x1, d1, priors):
    with pytest.raises(ValueError):
        HardSelectionMixture([x1], d1, [priors[0]])


def test_precondition_errors(x1, d1, priors, at):
    mix = HardSelectionMixture([x1], d1, list(priors))
    with pytest.raises(MissingKeyError):
        mix.error(gtsam.Values(), {d1[0]: 0})
    with pytest.raises(MissingKeyError):
        mix.error(at(0.0), {})
    with pytest.raises(InvalidAssignmentError):
        mix.error(at(0.0), {d1[0]: 2})


def test_component_outside_mixture_keys_is_rejected(x1, priors):
    other = gtsam.PriorFactorDouble(gtsam.symbol("y", 0), 0.0, gtsam.noiseModel.Isotropic.Sigma(1, 1.0))
    with pytest.raises(ValueError):
        MaxMixture([x1], [], [priors[0], other])


def test_max_mixture_active_component_switches_with_x(x1, priors, at):
    mix = MaxMixture([x1], [], list(priors))
    assert mix.active_index(at(-2.5), {}) == 1
    assert mix.active_index(at(-0.5), {}) == 0
    costs = mix.component_costs(at(-2.5), {})
    assert mix.error(at(-2.5), {}) == pytest.approx(costs.min())
    assert mix.association_keys(at(-2.5), {}) == [x1]


def test_max_mixture_ties_pick_first(x1, priors, at):
    tight = priors[0]
    mix = MaxMixture([x1], [], [tight, tight])
    assert mix.active_index(at(1.0), {}) == 0


def test_max_mixture_weights_shift_selection(x1, priors, at):
    mix = MaxMixture([x1], [], list(priors))
    assert mix.active_index(at(-0.5), {}) == 0
    assert mix.update_weights([1e-6, 1.0])
    assert mix.active_index(at(-0.5), {}) == 1


def test_update_weights_rejects_bad_input(x1, priors, caplog):
    mix = SumMixture([x1], [], list(priors), weights=[0.3, 0.7])
    before = mix.weights
    with caplog.at_level(logging.ERROR, logger="hybrid_sam.mixtures"):
        assert not mix.update_weights([0.2, 0.3, 0.5])
        assert not mix.update_weights([-0.5, 1.5])
    assert np.allclose(mix.weights, before)
    assert "Ignoring weight update" in caplog.text


def test_all_zero_weights_fall_back_to_uniform(x1, priors, at, caplog):
    with caplog.at_level(logging.WARNING, logger="hybrid_sam.mixtures"):
        mix = SumMixture([x1], [], list(priors), weights=[0.0, 0.0])
    assert np.allclose(mix.weights, [1.0, 1.0])
    assert "using uniform weights" in caplog.text
    vals = at(-1.0)
    assert np.allclose(mix.responsibilities(vals, {}), SumMixture([x1], [], list(priors)).responsibilities(vals, {}))

    other = MaxMixture([x1], [], list(priors), weights=[0.2, 0.8])
    assert other.update_weights([0.0, 0.0])
    assert np.allclose(other.weights, [1.0, 1.0])
    assert math.isfinite(other.error(vals, {}))


@pytest.mark.parametrize("cls", [SumMixture, EMMixture])
def test_soft_mixture_responsibilities_and_error(cls, x1, priors, at):
    mix = cls([x1], [], list(priors))
    vals = at(-1.0)
    costs = mix.component_costs(vals, {})
    resp = mix.responsibilities(vals, {})
    expected = np.exp(-costs) / np.exp(-costs).sum()
    assert resp.sum() == pytest.approx(1.0)
    assert np.allclose(resp, expected)
    assert mix.error(vals, {}) == pytest.approx(float(np.dot(resp, costs)))
    assert mix.dim() == 2


@pytest.mark.parametrize("cls", [SumMixture, EMMixture])
def test_soft_mixture_linearize_stacks_weighted_components(cls, x1, priors, at):
    mix = cls([x1], [], list(priors))
    vals = at(-2.0)
    r = mix.responsibilities(vals, {})
    system = mix.linearize(vals, {})
    assert system.rows == 2
    assert np.allclose(system.blocks[x1][:, 0], [math.sqrt(r[0]) * 1.0, math.sqrt(r[1]) / 8.0])
    assert np.allclose(system.residual, [math.sqrt(r[0]) * -2.0, math.sqrt(r[1]) * -2.0 / 8.0])


def test_soft_mixture_zero_weight_disables_component(x1, priors, at):
    mix = SumMixture([x1], [], list(priors), weights=[0.0, 1.0])
    vals = at(-1.0)
    assert np.allclose(mix.responsibilities(vals, {}), [0.0, 1.0])
    assert math.isfinite(mix.error(vals, {}))


def test_soft_mixture_huge_equal_costs_stay_finite(x1, at):
    tight = gtsam.PriorFactorDouble(x1, 0.0, gtsam.noiseModel.Isotropic.Sigma(1, 1.0))
    mix = SumMixture([x1], [], [tight, tight])
    vals = at(1e4)
    assert np.allclose(mix.responsibilities(vals, {}), [0.5, 0.5])
    assert math.isfinite(mix.error(vals, {}))


def test_sum_mixture_likelihood_bounds(x1, priors, at):
    mix = SumMixture([x1], [], list(priors), weights=[0.5, 0.5])
    vals = at(-1.5)
    nll = mix.negative_log_likelihood(vals, {})
    assert mix.error(vals, {}) >= nll - 1e-12
    assert mix.log_beta() + nll >= 0.0
    assert mix.sqrt_residual(vals, {}) == pytest.approx(math.sqrt(mix.log_beta() + nll))


def test_kinds_are_distinct(x1, d1, priors):
    assert HardSelectionMixture([x1], d1, list(priors)).kind is MixtureKind.HARD_SELECTION
    assert MaxMixture([x1], [], list(priors)).kind is MixtureKind.MAX
    assert SumMixture([x1], [], list(priors)).kind is MixtureKind.SUM
    assert EMMixture([x1], [], list(priors)).kind is MixtureKind.EM
    assert not isinstance(EMMixture([x1], [], list(priors)), SumMixture)


def test_nested_hybrid_component_lifts_discrete_keys(x1, d1, priors, at):
    inner = HardSelectionMixture([x1], d1, list(priors))
    outer = MaxMixture([x1], [], [inner, priors[0]])
    assert outer.discrete_keys() == [d1]
    costs = outer.component_costs(at(-2.5), {d1[0]: 1})
    assert outer.error(at(-2.5), {d1[0]: 1}) == pytest.approx(costs.min())
    assert outer.active_index(at(-2.5), {d1[0]: 1}) == 1


def test_equals(x1, d1, priors):
    a = HardSelectionMixture([x1], d1, list(priors))
    b = HardSelectionMixture([x1], d1, list(priors))
    c = HardSelectionMixture([x1], d1, list(priors), weights=[0.2, 0.8])
    assert a.equals(b)
    assert not a.equals(c)
    assert not a.equals(MaxMixture([x1], [d1], list(priors)))


def test_conditional_times_combines_with_a_prior(x1, d1, priors, at):
    mix = HardSelectionMixture([x1], d1, list(priors))
    prior = DiscretePriorFactor(d1, [0.99, 0.01]).to_decision_tree_factor()
    graph = gtsam.DiscreteFactorGraph()
    graph.push_back(mix.conditional_times(prior, at(-2.5), {}))
    assert graph.optimize()[d1[0]] == 0


def test_offset_floor_bounds_error_minus_residual(x1, priors, at):
    mix = MaxMixture([x1], [], list(priors), weights=[0.4, 0.6])
    floor = mix.offset_floor(at(0.0), {})
    assert floor == pytest.approx(LOG_2PI - math.log(0.4))
    for x in (-6.0, -2.5, -0.5, 0.0, 1.0):
        vals = at(x)
        assert mix.error(vals, {}) - mix.linearize(vals, {}).error() >= floor - 1e-12
    assert MaxMixture([x1], [], list(priors), normalized=True).offset_floor(at(0.0), {}) == 0.0
