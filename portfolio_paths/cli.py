"""Command-line interface for the portfolio path explorer.

Orchestrates session loading, one simulation fetch, an allocation per
strategy, and artifact generation.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import pandas as pd
import structlog

from portfolio_paths.client import ComputeService, ComputeServiceClient
from portfolio_paths.config import EngineSettings, settings
from portfolio_paths.engine import ParameterStore, PortfolioEngine, compute_trajectory_metrics
from portfolio_paths.logging_setup import configure_logging
from portfolio_paths.models import EngineSnapshot, Frequency, SimulationParameters
from portfolio_paths.session import SessionConfig, load_session

logger = structlog.get_logger()

PARAMETER_FLAGS = {
    "samples": "sample_count",
    "size": "horizon_length",
    "mu": "drift",
    "sigma": "volatility",
    "starting_value": "starting_value",
    "frequency": "frequency",
}


async def run_session(
    session: SessionConfig,
    service: ComputeService,
    engine_settings: Optional[EngineSettings] = None,
) -> Optional[EngineSnapshot]:
    """Fetch one simulation and allocate every session strategy against it.

    Args:
        session: Parameters and strategies to explore
        service: Simulation and allocation service
        engine_settings: Engine configuration

    Returns:
        Final engine snapshot, or None if no price matrix could be fetched
    """
    engine = PortfolioEngine(
        service,
        engine_settings=engine_settings,
        store=ParameterStore(session.parameters),
        mvo=session.mvo,
    )

    engine.refresh()
    await engine.wait_idle()
    if engine.store.prices is None:
        return None

    for strategy in session.strategies:
        await engine.allocate(strategy)

    return engine.snapshot()


def write_report(snapshot: EngineSnapshot, outdir: str | Path) -> dict[str, Path]:
    """Write trajectories and per-strategy summary to ``outdir``.

    Returns:
        Mapping of artifact name to written path
    """
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    frame = pd.DataFrame({path.label: list(path.trajectory) for path in snapshot.paths})
    frame.index.name = "step"
    trajectories_path = outdir / "trajectories.csv"
    frame.to_csv(trajectories_path)

    summary = {
        "parameters": snapshot.parameters.model_dump(mode="json"),
        "strategies": {
            path.label: {
                "color": path.color,
                "weights": list(path.weights),
                "weight_sum": path.weight_sum,
                "metrics": compute_trajectory_metrics(path.trajectory),
            }
            for path in snapshot.paths
        },
    }
    summary_path = outdir / "summary.json"
    summary_path.write_text(json.dumps(summary, indent=2), encoding="utf-8")

    return {"trajectories": trajectories_path, "summary": summary_path}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Compare allocation strategies on Monte Carlo simulated price paths",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument("--session", type=str, help="Path to a YAML session file")
    parser.add_argument("--samples", type=int, help="Number of simulated price paths")
    parser.add_argument("--size", type=int, help="Number of time steps per path")
    parser.add_argument("--mu", type=float, help="Drift of the simulated returns")
    parser.add_argument("--sigma", type=float, help="Volatility of the simulated returns")
    parser.add_argument("--starting-value", type=float, help="Starting price of every path")
    parser.add_argument(
        "--frequency",
        choices=[f.value for f in Frequency],
        help="Time step length",
    )
    parser.add_argument(
        "--strategy",
        action="append",
        help="Allocation strategy (repeatable; overrides the session list)",
    )
    parser.add_argument(
        "--service-url",
        type=str,
        help="Base URL of the compute service (overrides PORTFOLIO_SERVICE_URL)",
    )
    parser.add_argument("--outdir", type=str, default="out", help="Output directory for artifacts")
    parser.add_argument("--log-level", type=str, help="Log level (overrides LOG_LEVEL)")
    parser.add_argument("--json-logs", action="store_true", help="Render logs as JSON lines")

    return parser


def resolve_session(args: argparse.Namespace) -> SessionConfig:
    """Merge the optional session file with command-line overrides."""
    session = load_session(args.session) if args.session else SessionConfig()

    overrides = {
        field: getattr(args, flag)
        for flag, field in PARAMETER_FLAGS.items()
        if getattr(args, flag) is not None
    }
    parameters = SimulationParameters.model_validate(
        {**session.parameters.model_dump(), **overrides}
    )

    return SessionConfig(
        parameters=parameters,
        strategies=args.strategy or session.strategies,
        mvo=session.mvo,
    )


def main(argv: Optional[list[str]] = None) -> int:
    """Run the portfolio path explorer CLI."""
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, args.json_logs or None)

    session = resolve_session(args)
    service_settings = settings.service
    if args.service_url:
        service_settings = service_settings.model_copy(update={"base_url": args.service_url})

    logger.info(
        "session_starting",
        parameters=session.parameters.model_dump(mode="json"),
        strategies=[s.value for s in session.strategies],
    )

    async def runner() -> Optional[EngineSnapshot]:
        async with ComputeServiceClient(service_settings) as client:
            return await run_session(session, client)

    snapshot = asyncio.run(runner())
    if snapshot is None:
        logger.error("session_failed", reason="no price matrix")
        return 1

    artifacts = write_report(snapshot, args.outdir)
    for path in snapshot.paths:
        metrics = compute_trajectory_metrics(path.trajectory)
        if not metrics:
            continue
        logger.info(
            "strategy_summary",
            strategy=path.label,
            final=round(metrics["final"], 2),
            total_return=round(metrics["total_return"], 4),
            max_drawdown=round(metrics["max_drawdown"], 4),
        )

    missing = [s.label for s in session.strategies if s not in {p.strategy for p in snapshot.paths}]
    if missing:
        logger.warning("strategies_not_allocated", strategies=missing)

    logger.info("session_complete", **{name: str(p) for name, p in artifacts.items()})
    return 0


if __name__ == "__main__":
    sys.exit(main())
