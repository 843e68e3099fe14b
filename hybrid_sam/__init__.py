"""hybrid_sam: incremental smoothing over mixed discrete/continuous factor graphs.

This package provides:
- A HybridFactor base class for factors over both variable kinds
- Mixture factors (hard selection, max, sum, EM) over component factors
- Discrete priors and semantic (class-aware) measurement factors
- Adapters exposing a hybrid factor to the discrete or continuous solver
- Thin managers around gtsam's iSAM2 and discrete elimination
- HybridSAM, which alternates between the two solvers per update
- Built-in scenarios and a CLI entry point (see main.py)
"""
from .adapters import ContinuousAdapter, DiscreteAdapter
from .config import SolverConfig
from .discrete import DiscretePriorFactor, SmartDiscretePriorFactor
from .errors import InvalidAssignmentError, MissingKeyError, NotInitializedError, PreconditionError
from .graph import HybridFactorGraph
from .hybrid_factor import ContinuousComponent, HybridFactor
from .mixtures import EMMixture, HardSelectionMixture, MaxMixture, MixtureKind, SumMixture
from .models import HybridMarginals, HybridValues, UpdateSummary, discrete_key
from .sam import HybridSAM
from .semantic import SemanticBearingRangeFactor, SemanticMeasurementFactor, SmartSemanticBearingRangeFactor

__all__ = [
    "ContinuousAdapter", "DiscreteAdapter", "SolverConfig",
    "DiscretePriorFactor", "SmartDiscretePriorFactor",
    "InvalidAssignmentError", "MissingKeyError", "NotInitializedError", "PreconditionError",
    "HybridFactorGraph", "ContinuousComponent", "HybridFactor",
    "EMMixture", "HardSelectionMixture", "MaxMixture", "MixtureKind", "SumMixture",
    "HybridMarginals", "HybridValues", "UpdateSummary", "discrete_key",
    "HybridSAM",
    "SemanticBearingRangeFactor", "SemanticMeasurementFactor", "SmartSemanticBearingRangeFactor",
]
__version__ = "0.1.0"
