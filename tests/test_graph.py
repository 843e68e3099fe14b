from __future__ import annotations

import logging

import gtsam
import pytest

from hybrid_sam.discrete import DiscretePriorFactor
from hybrid_sam.graph import HybridFactorGraph
from hybrid_sam.mixtures import HardSelectionMixture


def test_push_tracks_keys_and_sizes(x1, d1, priors):
    hfg = HybridFactorGraph()
    assert hfg.empty()
    hfg.push_nonlinear(priors[0])
    hfg.push_discrete(DiscretePriorFactor(d1, [0.5, 0.5]))
    hfg.push_hybrid(HardSelectionMixture([x1], d1, list(priors)))
    assert (hfg.size_nonlinear(), hfg.size_discrete(), hfg.size_hybrid()) == (1, 1, 1)
    assert hfg.size() == 3
    assert hfg.keys() == {x1}
    assert hfg.discrete_keys() == {d1[0]}


def test_push_hybrid_rejects_plain_factors(priors):
    with pytest.raises(TypeError):
        HybridFactorGraph().push_hybrid(priors[0])


def test_extend_and_pop_batch(x1, d1, priors):
    a = HybridFactorGraph()
    a.push_nonlinear(priors[0])
    b = HybridFactorGraph()
    b.push_hybrid(HardSelectionMixture([x1], d1, list(priors)))
    a.extend(b)
    assert a.size() == 2

    batch = a.pop_batch()
    assert a.empty()
    assert a.keys() == set()
    assert batch.size() == 2
    assert batch.discrete_keys() == {d1[0]}


def test_discrete_keys_from_gtsam_table(d1):
    keys = gtsam.DiscreteKeys()
    keys.push_back(d1)
    hfg = HybridFactorGraph()
    hfg.push_discrete(gtsam.DecisionTreeFactor(keys, "1 3"))
    assert hfg.discrete_keys() == {d1[0]}


def test_pop_batch_logs_its_contents(priors, caplog):
    hfg = HybridFactorGraph()
    hfg.push_nonlinear(priors[0])
    with caplog.at_level(logging.DEBUG, logger="hybrid_sam.graph"):
        hfg.pop_batch()
    assert "1 nonlinear, 0 discrete, 0 hybrid" in caplog.text
