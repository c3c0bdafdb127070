"""Command line interface: ``phantomfill run | strategies | import``."""

import argparse
import logging
import sys
from typing import List, Optional, Sequence

import pandas as pd

from phantomfill.collectors.capture import import_capture, load_capture_windows
from phantomfill.core.config import QuestDBConfig, Settings
from phantomfill.core.exceptions import PhantomFillError
from phantomfill.report import format_monte_carlo, format_report
from phantomfill.simulation.events import Window
from phantomfill.simulation.fill_model import FillModel
from phantomfill.simulation.results import export_csv, results_to_frame
from phantomfill.simulation.runner import BacktestRunner
from phantomfill.storage import QuestDBReader, QuestDBWindowSource, QuestDBWriter
from phantomfill.strategies import StrategyParams, list_strategies, strategy_factory

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="phantomfill",
        description="PhantomFill -- the honest prediction market backtester",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: PHANTOMFILL_LOG_LEVEL or INFO)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run a backtest simulation")
    run.add_argument(
        "-s",
        "--strategy",
        default="momentum",
        help="Built-in strategy name or path to a strategy script (default: momentum)",
    )
    source = run.add_mutually_exclusive_group(required=True)
    source.add_argument("--data", help="Capture file (CSV or Parquet) to replay")
    source.add_argument("--questdb", action="store_true", help="Replay windows stored in QuestDB")
    run.add_argument(
        "--category",
        default=None,
        help="Asset/category filter; with --data, %% wildcards match slugs",
    )
    run.add_argument("--runs", type=int, default=None, help="Monte Carlo runs")
    run.add_argument("--seed", type=int, default=None, help="Base seed (random if omitted)")
    run.add_argument("--workers", type=int, default=None, help="Replay threads")
    run.add_argument("--bid-price", type=float, default=None, help="Bid price")
    run.add_argument("--size", "--shares", dest="size", type=float, default=None,
                     help="Shares per order")
    run.add_argument("--min-bps", type=float, default=None,
                     help="Minimum momentum (bps) for signal-based strategies")
    run.add_argument("--csv", default=None, help="Export per-window results to CSV")

    subparsers.add_parser("strategies", help="List available strategies")

    imp = subparsers.add_parser("import", help="Import a capture file into QuestDB")
    imp.add_argument("--source", required=True, help="Capture file (CSV or Parquet)")
    imp.add_argument("--asset", default=None, help="Filter by asset (e.g. btc) or slug pattern")

    return parser


def _pick(value, default):
    return default if value is None else value


def _load_windows(args: argparse.Namespace) -> List[Window]:
    if args.data:
        return load_capture_windows(args.data, asset=args.category)
    reader = QuestDBReader(QuestDBConfig())
    with reader:
        return list(QuestDBWindowSource(reader, category=args.category))


def cmd_run(args: argparse.Namespace, settings: Settings) -> int:
    params = StrategyParams.build(
        bid_price=_pick(args.bid_price, settings.bid_price),
        size=_pick(args.size, settings.size),
        min_bps=_pick(args.min_bps, settings.min_bps),
        signal_offset_ms=settings.signal_offset_ms,
    )
    fill_model = FillModel(
        rf=settings.rf,
        adverse_fill_prob=settings.adverse_fill_prob,
        signal_offset_ms=settings.signal_offset_ms,
        post_signal_taker_mult=settings.post_signal_taker_mult,
        winner_queue_threshold=settings.winner_queue_threshold,
    )
    runs = _pick(args.runs, settings.runs)
    seed = _pick(args.seed, settings.seed)

    windows = _load_windows(args)
    factory = strategy_factory(args.strategy, params, windows=windows)
    runner = BacktestRunner(
        factory,
        fill_model=fill_model,
        max_workers=_pick(args.workers, settings.max_workers),
    )
    print(
        f"Loaded {len(windows)} windows. Running strategy '{runner.strategy_name}' "
        f"(bid={params.bid_price}, size={params.size}, min_bps={params.min_bps})..."
    )

    if runs == 1:
        report = runner.run(windows, seed=seed)
        print(format_report(report))
        if args.csv:
            export_csv(report, args.csv)
            print(f"Results exported to {args.csv}")
        return 0

    summary = runner.run_monte_carlo(windows, runs=runs, seed=seed)
    print(format_monte_carlo(summary))
    if args.csv:
        frames = [results_to_frame(r).assign(seed=r.seed) for r in summary.reports]
        pd.concat(frames, ignore_index=True).to_csv(args.csv, index=False)
        print(f"Results exported to {args.csv}")
    return 0


def cmd_strategies(args: argparse.Namespace, settings: Settings) -> int:
    print()
    print("Available strategies:")
    print()
    for name, description in list_strategies():
        print(f"  {name:<16} {description}")
    print()
    print("  Any other value is treated as a path to a strategy script.")
    print()
    return 0


def cmd_import(args: argparse.Namespace, settings: Settings) -> int:
    print(f"Importing from: {args.source}")
    with QuestDBWriter(QuestDBConfig()) as writer:
        stats = import_capture(args.source, writer, asset=args.asset)
    print(
        f"Imported {stats.markets_imported} markets, {stats.ticks_imported} ticks "
        f"({stats.markets_skipped} skipped)"
    )
    return 0


_COMMANDS = {
    "run": cmd_run,
    "strategies": cmd_strategies,
    "import": cmd_import,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()
    logging.basicConfig(
        level=getattr(logging, args.log_level or settings.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return _COMMANDS[args.command](args, settings)
    except PhantomFillError as e:
        logger.error(str(e))
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
