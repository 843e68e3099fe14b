"""Small built-in problems used by the CLI and the tests.

Each builder returns a list of Batch objects; run_batches() feeds them to a
HybridSAM either one per update() (incremental) or merged into a single
update() (batch).
"""
from dataclasses import dataclass, field
import logging
import math
from typing import Dict, List

import numpy as np

try:
    import gtsam
except Exception:
    gtsam = None

from .discrete import DiscretePriorFactor
from .graph import HybridFactorGraph
from .mixtures import HardSelectionMixture, MaxMixture
from .models import discrete_key, merge_values
from .noise import gaussian_from_covariance
from .sam import HybridSAM
from .semantic import SemanticBearingRangeFactor

logger = logging.getLogger("hybrid_sam.scenarios")


@dataclass
class Batch:
    graph: HybridFactorGraph
    initial_continuous: "gtsam.Values"
    initial_discrete: Dict[int, int] = field(default_factory=dict)


def mixture_batches() -> List[Batch]:
    """One scalar with a tight/loose mode selector.

    x1 is pulled toward 0 by either a sigma=1 or a sigma=8 prior. Seen from
    x1 = -2.5 the loose mode wins; once x1 moves toward 0 the tight one does.
    """
    x1 = gtsam.symbol("x", 1)
    d1 = discrete_key("d", 1, 2)
    tight = gtsam.PriorFactorDouble(x1, 0.0, gtsam.noiseModel.Isotropic.Sigma(1, 1.0))
    loose = gtsam.PriorFactorDouble(x1, 0.0, gtsam.noiseModel.Isotropic.Sigma(1, 8.0))
    hfg = HybridFactorGraph()
    hfg.push_hybrid(HardSelectionMixture([x1], d1, [tight, loose]))
    initial = gtsam.Values()
    initial.insert(x1, -2.5)
    return [Batch(hfg, initial)]


def _octagon_poses(radius: float = 2.0, count: int = 8) -> List["gtsam.Pose2"]:
    poses = []
    for i in range(count):
        theta = 2.0 * math.pi * i / count
        poses.append(gtsam.Pose2(radius * math.cos(theta), radius * math.sin(theta), theta + math.pi / 2.0))
    return poses


def octagon_batches(semantic: bool = True, class_probs=(0.3, 0.7),
                    perturbation: float = 0.05, seed: int = 7) -> List[Batch]:
    """A robot circling a landmark at the origin, one pose per batch.

    With `semantic`, every landmark observation also carries a class
    likelihood over a two-valued class variable c0.
    """
    rng = np.random.default_rng(seed)
    poses = _octagon_poses()
    landmark = gtsam.Point2(0.0, 0.0)
    l0 = gtsam.symbol("l", 0)
    c0 = discrete_key("c", 0, 2)
    prior_noise = gtsam.noiseModel.Diagonal.Sigmas(np.array([0.01, 0.01, 0.01]))
    odom_noise = gtsam.noiseModel.Diagonal.Sigmas(np.array([0.1, 0.1, 0.05]))
    meas_noise = gtsam.noiseModel.Diagonal.Sigmas(np.array([0.05, 0.1]))

    batches: List[Batch] = []
    for i, pose in enumerate(poses):
        xi = gtsam.symbol("x", i)
        hfg = HybridFactorGraph()
        initial = gtsam.Values()
        dx, dy, dt = perturbation * rng.standard_normal(3)
        initial.insert(xi, gtsam.Pose2(pose.x() + dx, pose.y() + dy, pose.theta() + dt))
        if i == 0:
            hfg.push_nonlinear(gtsam.PriorFactorPose2(xi, pose, prior_noise))
            initial.insert(l0, gtsam.Point2(0.1, -0.1))
        else:
            prev = poses[i - 1]
            hfg.push_nonlinear(gtsam.BetweenFactorPose2(gtsam.symbol("x", i - 1), xi, prev.between(pose), odom_noise))
        bearing = pose.bearing(landmark)
        rng_m = pose.range(landmark)
        if semantic:
            hfg.push_hybrid(SemanticBearingRangeFactor(xi, l0, c0, class_probs, bearing, rng_m, meas_noise))
        else:
            hfg.push_nonlinear(gtsam.BearingRangeFactor2D(xi, l0, bearing, rng_m, meas_noise))
        batches.append(Batch(hfg, initial))
    return batches


def association_batches() -> List[Batch]:
    """Ambiguous landmark observation resolved by a max-mixture.

    Two landmarks are known tightly; a robot at the origin sees something
    near l1. The max-mixture over "it was l1" / "it was l2" picks l1. A
    prior on an "is the sighting valid" variable is included as well.
    """
    x0 = gtsam.symbol("x", 0)
    l1 = gtsam.symbol("l", 1)
    l2 = gtsam.symbol("l", 2)
    v0 = discrete_key("v", 0, 2)
    pose_noise = gtsam.noiseModel.Diagonal.Sigmas(np.array([0.01, 0.01, 0.01]))
    point_noise = gtsam.noiseModel.Isotropic.Sigma(2, 0.01)
    meas_noise = gaussian_from_covariance(np.diag([0.05 ** 2, 0.1 ** 2]))

    hfg = HybridFactorGraph()
    hfg.push_nonlinear(gtsam.PriorFactorPose2(x0, gtsam.Pose2(0.0, 0.0, 0.0), pose_noise))
    hfg.push_nonlinear(gtsam.PriorFactorPoint2(l1, gtsam.Point2(5.0, 0.0), point_noise))
    hfg.push_nonlinear(gtsam.PriorFactorPoint2(l2, gtsam.Point2(0.0, 5.0), point_noise))
    bearing, range_ = gtsam.Rot2.fromDegrees(3.0), 5.1
    hfg.push_hybrid(MaxMixture(
        [x0, l1, l2], [],
        [gtsam.BearingRangeFactor2D(x0, l1, bearing, range_, meas_noise),
         gtsam.BearingRangeFactor2D(x0, l2, bearing, range_, meas_noise)],
        weights=[0.5, 0.5]))
    hfg.push_discrete(DiscretePriorFactor(v0, [0.2, 0.8]))

    initial = gtsam.Values()
    initial.insert(x0, gtsam.Pose2(0.05, -0.05, 0.01))
    initial.insert(l1, gtsam.Point2(5.05, 0.02))
    initial.insert(l2, gtsam.Point2(-0.03, 4.96))
    return [Batch(hfg, initial)]


SCENARIOS = {
    "mixture": mixture_batches,
    "semantic": lambda: octagon_batches(semantic=True),
    "slam": lambda: octagon_batches(semantic=False),
    "association": association_batches,
}


def merge_batches(batches: List[Batch]) -> Batch:
    hfg = HybridFactorGraph()
    initial = gtsam.Values()
    discrete: Dict[int, int] = {}
    for b in batches:
        hfg.extend(b.graph)
        merge_values(initial, b.initial_continuous)
        discrete.update(b.initial_discrete)
    return Batch(hfg, initial, discrete)


def run_batches(sam: HybridSAM, batches: List[Batch], mode: str = "incremental",
                iterations: int = 0) -> None:
    """Feed `batches` to `sam`, then run `iterations` extra empty updates."""
    if mode == "batch":
        batches = [merge_batches(batches)]
    elif mode != "incremental":
        raise ValueError(f"Unknown mode: {mode}")
    for i, b in enumerate(batches):
        summary = sam.update_graph(b.graph, b.initial_continuous, b.initial_discrete or None)
        logger.debug("Batch %d: %d continuous / %d discrete slots added",
                     i, len(summary.continuous_indices), len(summary.discrete_indices))
    for _ in range(iterations):
        sam.update()


def build_scenario(name: str, **kwargs) -> List[Batch]:
    try:
        builder = SCENARIOS[name]
    except KeyError:
        raise ValueError(f"Unknown scenario: {name}") from None
    return builder(**kwargs) if kwargs else builder()
