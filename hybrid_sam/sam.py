"""Alternating discrete/continuous smoothing over a hybrid factor graph.

Each update() runs one round of alternating optimization:

1. apply factor removals,
2. merge initial guesses into the running estimates,
3. register new discrete factors and a DiscreteAdapter per hybrid factor,
4. refresh every DiscreteAdapter with the running estimates,
5. solve the discrete subproblem for its MAP assignment,
6. build a ContinuousAdapter per new hybrid factor, seeded with the MAP,
7. refresh existing ContinuousAdapters and collect keys whose mode changed,
8. step iSAM2 with the new factors, guesses and affected keys,
9. refresh every DiscreteAdapter with the new continuous estimate.

A failure part way through leaves the solvers in whatever state they
reached; there is no rollback.
"""
import logging
import time
from typing import Dict, Iterable, List, Optional, Sequence, TYPE_CHECKING

try:
    import gtsam
except Exception:
    gtsam = None

from .adapters import ContinuousAdapter, DiscreteAdapter
from .config import SolverConfig
from .discrete_solver import DiscreteSolver
from .graph import HybridFactorGraph
from .hybrid_factor import HybridFactor
from .isam import ISAM2Manager
from .models import (DiscreteAssignment, HybridMarginals, HybridValues, UpdateSummary,
                     merge_values, values_keys)

if TYPE_CHECKING:
    from hybrid_sam_common.kpi_logging import KPILogger
    from hybrid_sam_common.latency import LatencyTracker

logger = logging.getLogger("hybrid_sam.sam")


class HybridSAM:
    """Incremental smoother for graphs mixing continuous and discrete variables."""

    def __init__(self,
                 config: Optional[SolverConfig] = None,
                 kpi: Optional["KPILogger"] = None,
                 latency: Optional["LatencyTracker"] = None):
        if gtsam is None:
            raise RuntimeError("GTSAM not available; cannot run HybridSAM")
        self.config = config or SolverConfig()
        if self.config.cache_linearized:
            logger.warning("cache_linearized is on: hybrid factors are not relinearized on a mode "
                           "switch until their keys pass the relinearize threshold")
        self.isam = ISAM2Manager(self.config)
        self.discrete_solver = DiscreteSolver(self.config.ordering_type())
        self.kpi = kpi
        self.latency = latency
        self._continuous = gtsam.Values()
        self._discrete: Dict[int, int] = {}
        # Keyed by the slot index each adapter occupies in its solver.
        self._discrete_adapters: Dict[int, DiscreteAdapter] = {}
        self._continuous_adapters: Dict[int, ContinuousAdapter] = {}
        self._cycle = 0
        self.last_update: Optional[UpdateSummary] = None

    # ------------------------------------------------------------------ update

    def update(self,
               graph: Optional["gtsam.NonlinearFactorGraph"] = None,
               discrete_graph: Optional[Iterable] = None,
               hybrid_graph: Optional[Iterable[HybridFactor]] = None,
               initial_continuous: Optional["gtsam.Values"] = None,
               initial_discrete: Optional[DiscreteAssignment] = None,
               remove_continuous: Optional[Sequence[int]] = None,
               remove_discrete: Optional[Sequence[int]] = None) -> UpdateSummary:
        """Add a batch and run one alternating-optimization round.

        Called with no arguments it re-solves both subproblems with the
        factors already registered. Removal indices are the slot indices
        reported in earlier UpdateSummary objects.
        """
        self._cycle += 1
        cycle = self._cycle
        summary = UpdateSummary(cycle=cycle)
        start = time.perf_counter()

        discrete_factors = list(discrete_graph or [])
        hybrid_factors = list(hybrid_graph or [])
        for h in hybrid_factors:
            if not isinstance(h, HybridFactor):
                raise TypeError(f"Expected a HybridFactor, got {type(h).__name__}")
        n_continuous = int(graph.size()) if graph is not None else 0
        remove_continuous = [int(i) for i in remove_continuous or ()]
        remove_discrete = [int(i) for i in remove_discrete or ()]
        if self.kpi:
            self.kpi.update_start(cycle, n_continuous, len(discrete_factors), len(hybrid_factors),
                                  removed=len(remove_continuous) + len(remove_discrete) or None)

        # 1. Removals
        if remove_continuous:
            self.isam.update(remove_indices=remove_continuous)
            for idx in remove_continuous:
                self._continuous_adapters.pop(idx, None)
        for idx in remove_discrete:
            self.discrete_solver.remove(idx)
            self._discrete_adapters.pop(idx, None)

        # 2. Initial guesses
        merge_values(self._continuous, initial_continuous)
        if initial_discrete:
            self._discrete.update({int(k): int(v) for k, v in initial_discrete.items()})

        # 3. Discrete side registration
        for factor in discrete_factors:
            summary.discrete_indices.append(self.discrete_solver.push_factor(factor))
        for h in hybrid_factors:
            if not h.discrete_keys():
                continue
            adapter = DiscreteAdapter(h)
            idx = self.discrete_solver.push_factor(adapter)
            self._discrete_adapters[idx] = adapter
            summary.discrete_indices.append(idx)

        # 4. Discrete adapters see the latest continuous estimate
        self._refresh_discrete_adapters()

        # 5. Discrete solve
        has_continuous = (n_continuous > 0 or bool(remove_continuous)
                          or (initial_continuous is not None and initial_continuous.size() > 0))
        discrete_hybrids = any(h.discrete_keys() for h in hybrid_factors)
        continuous_only = not (discrete_factors or discrete_hybrids or initial_discrete or remove_discrete)
        skip = (self.config.skip_redundant_discrete_solves and continuous_only
                and has_continuous and not self._discrete_adapters)
        t = time.perf_counter()
        if skip:
            logger.debug("Cycle %d: continuous-only batch, discrete solve skipped", cycle)
        else:
            self._discrete.update(self.discrete_solver.optimize())
        summary.discrete_skipped = skip
        summary.durations["discrete"] = time.perf_counter() - t
        if self.kpi:
            self.kpi.discrete_solve(cycle, summary.durations["discrete"], len(self.discrete_solver.factors()),
                                    skipped=skip, assignment_size=len(self._discrete))

        # 6. Continuous adapters for the new hybrid factors
        new_factors = gtsam.NonlinearFactorGraph()
        if graph is not None:
            new_factors.push_back(graph)
        pending: List[ContinuousAdapter] = []
        for h in hybrid_factors:
            adapter = ContinuousAdapter(h)
            adapter.update_discrete(self._discrete)
            new_factors.push_back(adapter.to_nonlinear_factor())
            pending.append(adapter)

        # 7. Existing continuous adapters follow the discrete estimate
        affected = set()
        for adapter in self._continuous_adapters.values():
            if adapter.update_discrete(self._discrete):
                affected.update(adapter.keys())
        summary.affected_keys = sorted(affected)

        # 8. Continuous step
        t = time.perf_counter()
        indices = self.isam.update(new_factors, self._unseen(initial_continuous), affected)
        for idx, adapter in zip(indices[len(indices) - len(pending):], pending):
            self._continuous_adapters[idx] = adapter
        summary.continuous_indices = indices
        merge_values(self._continuous, self.isam.estimate)
        summary.durations["continuous"] = time.perf_counter() - t
        if self.kpi:
            self.kpi.continuous_solve(cycle, summary.durations["continuous"], len(indices),
                                      affected_keys=len(affected), estimate_size=int(self.isam.estimate.size()))

        # 9. Discrete adapters see the new continuous estimate
        self._refresh_discrete_adapters()

        summary.durations["total"] = time.perf_counter() - start
        if self.latency:
            for phase, duration in summary.durations.items():
                self.latency.record(cycle, phase, duration)
        if self.kpi:
            self.kpi.update_end(cycle, summary.durations["total"],
                                discrete_skipped=skip, affected_keys=len(affected))
        self.last_update = summary
        return summary

    def update_graph(self, hfg: HybridFactorGraph,
                     initial_continuous: Optional["gtsam.Values"] = None,
                     initial_discrete: Optional[DiscreteAssignment] = None,
                     remove_continuous: Optional[Sequence[int]] = None,
                     remove_discrete: Optional[Sequence[int]] = None) -> UpdateSummary:
        return self.update(hfg.nonlinear_graph(), hfg.discrete_factors(), hfg.hybrid_factors(),
                           initial_continuous, initial_discrete, remove_continuous, remove_discrete)

    def update_continuous(self) -> "gtsam.Values":
        """One more iSAM2 iteration with the discrete estimate held fixed."""
        self.isam.update()
        merge_values(self._continuous, self.isam.estimate)
        self._refresh_discrete_adapters()
        return self.isam.estimate

    def solve_discrete(self) -> DiscreteAssignment:
        """Re-solve the discrete subproblem and adopt its MAP assignment."""
        self._discrete.update(self.discrete_solver.optimize())
        return dict(self._discrete)

    def _refresh_discrete_adapters(self) -> None:
        for adapter in self._discrete_adapters.values():
            adapter.update_continuous(self._continuous)
            adapter.update_discrete(self._discrete)

    def _unseen(self, initial: Optional["gtsam.Values"]) -> "gtsam.Values":
        """Guesses for keys iSAM2 does not hold yet.

        Guesses for keys it already holds only update the running estimate;
        iSAM2 keeps its own linearization point for them.
        """
        if initial is None:
            return gtsam.Values()
        fresh = gtsam.Values(initial)
        held = [k for k in values_keys(initial) if self.isam.exists(k)]
        for k in held:
            fresh.erase(k)
        if held:
            logger.debug("Cycle %d: %d guessed key(s) already in iSAM2, kept its linearization point",
                         self._cycle, len(held))
        return fresh

    # ----------------------------------------------------------------- queries

    def calculate_estimate(self) -> HybridValues:
        """Current continuous estimate and a fresh discrete MAP; mutates nothing."""
        continuous = gtsam.Values(self.isam.calculate_estimate())
        discrete = dict(self._discrete)
        discrete.update(self.discrete_solver.optimize())
        return HybridValues(continuous, discrete)

    def get_marginals(self) -> HybridMarginals:
        estimate = self.isam.calculate_estimate()
        continuous = gtsam.Marginals(self.isam.get_factors(), estimate) if estimate.size() > 0 else None
        discrete = None if self.discrete_solver.empty() else self.discrete_solver.marginals()
        return HybridMarginals(continuous, discrete)

    def discrete_factor_graph(self) -> "gtsam.DiscreteFactorGraph":
        return self.discrete_solver.build_graph()

    def nonlinear_factor_graph(self) -> "gtsam.NonlinearFactorGraph":
        return self.isam.get_factors()

    @property
    def current_continuous(self) -> "gtsam.Values":
        return gtsam.Values(self._continuous)

    @property
    def current_discrete(self) -> DiscreteAssignment:
        return dict(self._discrete)

    @property
    def discrete_adapters(self) -> Dict[int, DiscreteAdapter]:
        return dict(self._discrete_adapters)

    @property
    def continuous_adapters(self) -> Dict[int, ContinuousAdapter]:
        return dict(self._continuous_adapters)
