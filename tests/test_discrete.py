from __future__ import annotations

import logging

import numpy as np
import pytest

from hybrid_sam.discrete import DiscretePriorFactor, SmartDiscretePriorFactor
from hybrid_sam.discrete_solver import DiscreteSolver
from hybrid_sam.hybrid_factor import decision_tree_factor
from hybrid_sam.models import discrete_key


def test_prior_marginals_and_map(d1):
    solver = DiscreteSolver()
    solver.push_factor(DiscretePriorFactor(d1, [0.1, 0.9]))
    assert np.allclose(solver.marginal_probabilities(d1), [0.1, 0.9], atol=1e-7)
    assert solver.optimize() == {d1[0]: 1}


def test_unnormalized_weights_balance_prior(d1):
    solver = DiscreteSolver()
    solver.push_factor(DiscretePriorFactor(d1, [0.1, 0.9]))
    solver.push_factor(DiscretePriorFactor(d1, [45.0, 5.0]))
    assert np.allclose(solver.marginal_probabilities(d1), [0.5, 0.5], atol=1e-7)


def test_smart_prior_update_is_seen_by_next_solve(d1, caplog):
    prior = SmartDiscretePriorFactor(d1, [0.1, 0.9])
    solver = DiscreteSolver()
    solver.push_factor(prior)
    assert solver.optimize()[d1[0]] == 1

    assert prior.update_weights([0.9, 0.1])
    assert solver.optimize()[d1[0]] == 0
    assert np.allclose(solver.marginal_probabilities(d1), [0.9, 0.1], atol=1e-7)

    with caplog.at_level(logging.ERROR, logger="hybrid_sam.discrete"):
        assert not prior.update_weights([0.5, 0.3, 0.2])
    assert np.allclose(prior.probs, [0.9, 0.1])
    assert "Ignoring prior update" in caplog.text


def test_removed_slot_no_longer_contributes(d1):
    solver = DiscreteSolver()
    solver.push_factor(DiscretePriorFactor(d1, [0.1, 0.9]))
    idx = solver.push_factor(DiscretePriorFactor(d1, [0.99, 0.01]))
    assert solver.optimize()[d1[0]] == 0
    removed = solver.remove(idx)
    assert isinstance(removed, DiscretePriorFactor)
    assert solver.at(idx) is None
    assert solver.size() == 2
    assert solver.optimize()[d1[0]] == 1


def test_empty_solver():
    solver = DiscreteSolver()
    assert solver.empty()
    assert solver.optimize() == {}


def test_multi_key_table_layout_first_key_slowest():
    a = discrete_key("a", 0, 2)
    b = discrete_key("b", 0, 3)
    table = [0.01] * 6
    table[1 * 3 + 2] = 1.0
    solver = DiscreteSolver()
    solver.push_factor(decision_tree_factor([a, b], table))
    assert solver.optimize() == {a[0]: 1, b[0]: 2}


def test_prior_factor_basics(d1):
    prior = DiscretePriorFactor(d1, [0.25, 0.75])
    assert prior({d1[0]: 1}) == pytest.approx(0.75)
    assert prior.keys() == [d1[0]]
    assert prior.discrete_keys() == [d1]
    assert prior.equals(DiscretePriorFactor(d1, [0.25, 0.75]))
    assert not prior.equals(DiscretePriorFactor(d1, [0.5, 0.5]))
    with pytest.raises(ValueError):
        DiscretePriorFactor(d1, [1.0, 0.0, 0.0])


def test_removing_an_empty_slot_warns(d1, caplog):
    solver = DiscreteSolver()
    idx = solver.push_factor(DiscretePriorFactor(d1, [0.1, 0.9]))
    assert solver.remove(idx) is not None
    with caplog.at_level(logging.WARNING, logger="hybrid_sam.discrete_solver"):
        assert solver.remove(idx) is None
    assert "already empty" in caplog.text
