import argparse
import json
import logging

try:
    import gtsam
except Exception:  # pragma: no cover - CLI will fail later if bindings missing
    gtsam = None

from hybrid_sam.config import SolverConfig
from hybrid_sam.sam import HybridSAM
from hybrid_sam.scenarios import SCENARIOS, build_scenario, run_batches
from hybrid_sam_common.kpi_logging import KPILogger
from hybrid_sam_common.latency import LatencyTracker

logger = logging.getLogger("hybrid_sam.cli")


def parse_args(argv=None):
    ap = argparse.ArgumentParser(description="Run built-in discrete-continuous smoothing scenarios.")
    ap.add_argument("--scenario", choices=sorted(SCENARIOS), default="mixture", help="Problem to solve")
    ap.add_argument("--mode", choices=["incremental", "batch"], default="incremental",
                    help="Feed batches one update at a time, or all in one update")
    ap.add_argument("--iterations", type=int, default=1,
                    help="Extra empty update() rounds after the last batch")
    ap.add_argument("--relin-th", type=float, default=0.01, help="iSAM2 relinearize threshold")
    ap.add_argument("--relin-skip", type=int, default=1, help="iSAM2 relinearize skip")
    ap.add_argument("--optimizer", choices=["dogleg", "gauss_newton"], default="dogleg", help="iSAM2 step type")
    ap.add_argument("--discrete-ordering", choices=["colamd", "metis", "natural"], default=None,
                    help="Elimination ordering for the discrete solve (default: gtsam's)")
    ap.add_argument("--no-skip-discrete", action="store_true",
                    help="Always re-solve the discrete subproblem, even for continuous-only batches")
    ap.add_argument("--kpi-log", default=None, help="Write KPI events as JSON lines to this path")
    ap.add_argument("--latency-json", default=None, help="Write per-phase latency records to this path")
    ap.add_argument("--log", default="INFO", help="Logging level")
    return ap.parse_args(argv)


def _format_value(values, key) -> str:
    for getter in ("atPose2", "atPoint2", "atPose3", "atPoint3", "atDouble"):
        try:
            v = getattr(values, getter)(key)
        except Exception:
            continue
        if getter == "atPose2":
            return f"Pose2(x={v.x():.4f}, y={v.y():.4f}, theta={v.theta():.4f})"
        if getter == "atPose3":
            t = v.translation()
            return f"Pose3(t=[{t[0]:.4f}, {t[1]:.4f}, {t[2]:.4f}])"
        if getter == "atDouble":
            return f"{v:.6f}"
        return "[" + ", ".join(f"{c:.4f}" for c in v) + "]"
    return "<unknown type>"


def report(sam: HybridSAM) -> dict:
    estimate = sam.calculate_estimate()
    out = {"continuous": {}, "discrete": {}}
    for key in estimate.continuous.keys():
        out["continuous"][str(gtsam.Symbol(key).string())] = _format_value(estimate.continuous, key)
    for key, value in sorted(estimate.discrete.items()):
        out["discrete"][str(gtsam.Symbol(key).string())] = value
    return out


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=args.log.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    if gtsam is None:
        raise SystemExit("GTSAM Python bindings are required (pip install gtsam)")

    cfg = SolverConfig(
        relinearize_threshold=args.relin_th,
        relinearize_skip=args.relin_skip,
        optimizer=args.optimizer,
        discrete_ordering=args.discrete_ordering,
        skip_redundant_discrete_solves=not args.no_skip_discrete,
    )
    kpi = KPILogger(log_path=args.kpi_log, extra_fields={"scenario": args.scenario, "mode": args.mode},
                    emit_to_logger=args.kpi_log is None)
    latency = LatencyTracker()
    sam = HybridSAM(cfg, kpi=kpi, latency=latency)
    try:
        batches = build_scenario(args.scenario)
        logger.info("Scenario %s: %d batch(es), mode=%s", args.scenario, len(batches), args.mode)
        run_batches(sam, batches, mode=args.mode, iterations=args.iterations)
        result = report(sam)
    finally:
        kpi.close()
    print(json.dumps(result, indent=2, sort_keys=True))
    latency.log_summary(logger)
    if args.latency_json:
        latency.export_json(args.latency_json)
    return result


if __name__ == "__main__":
    main()
