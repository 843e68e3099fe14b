from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

try:
    import gtsam
except Exception:
    gtsam = None

# (key, cardinality), the same shape gtsam uses for discrete keys.
DiscreteKey = Tuple[int, int]
DiscreteAssignment = Dict[int, int]


def discrete_key(char: str, index: int, cardinality: int) -> DiscreteKey:
    if gtsam is None:
        raise RuntimeError("GTSAM not available; cannot build symbols")
    if cardinality < 1:
        raise ValueError(f"Cardinality must be positive, got {cardinality}")
    return (gtsam.symbol(char, index), int(cardinality))


def values_keys(values: "gtsam.Values") -> List[int]:
    return [int(k) for k in values.keys()]


def merge_values(target: "gtsam.Values", source: Optional["gtsam.Values"],
                 keys: Optional[Iterable[int]] = None) -> int:
    """Insert or overwrite `source` entries into `target` in place.

    Only `keys` are copied when given; keys absent from `source` are skipped.
    Nothing is ever removed from `target`. Returns the number of keys copied.
    """
    if source is None:
        return 0
    wanted = set(values_keys(source) if keys is None else keys)
    fresh = gtsam.Values(source)
    existing = gtsam.Values(source)
    count = 0
    for k in values_keys(source):
        if k not in wanted:
            fresh.erase(k)
            existing.erase(k)
            continue
        count += 1
        if target.exists(k):
            fresh.erase(k)
        else:
            existing.erase(k)
    if fresh.size() > 0:
        target.insert(fresh)
    if existing.size() > 0:
        target.update(existing)
    return count


def from_discrete_values(dv) -> DiscreteAssignment:
    return {int(k): int(v) for k, v in dv.items()}


@dataclass
class HybridValues:
    """Joint estimate returned by HybridSAM.calculate_estimate()."""
    continuous: "gtsam.Values"
    discrete: DiscreteAssignment


@dataclass
class HybridMarginals:
    continuous: Optional["gtsam.Marginals"]
    discrete: Optional["gtsam.DiscreteMarginals"]

    def discrete_probabilities(self, dk: DiscreteKey):
        return self.discrete.marginalProbabilities(dk)


@dataclass
class UpdateSummary:
    """Bookkeeping for one HybridSAM.update() cycle."""
    cycle: int
    continuous_indices: List[int] = field(default_factory=list)
    discrete_indices: List[int] = field(default_factory=list)
    affected_keys: List[int] = field(default_factory=list)
    discrete_skipped: bool = False
    durations: Dict[str, float] = field(default_factory=dict)
