"""Replay simulation for prediction market strategies.

This package replays historical orderbook snapshots through a strategy and
decides, with a calibrated probabilistic fill model, which of its resting
bids would actually have filled.

Core Components:
    BookSnapshot / Window: Immutable book state and replay episodes
    PlaceBid / Cancel: The action vocabulary strategies speak
    FillModel: Queue position, adverse-tick and background-flow fill rules
    ReplayEngine: Drives one strategy through one window
    BacktestRunner: Replays many windows across one or many seeds
    BacktestReport / MonteCarloSummary: Aggregated results

Example:
    >>> from phantomfill.simulation import BacktestRunner, FillModel
    >>> from phantomfill.strategies import StrategyParams, strategy_factory
    >>>
    >>> runner = BacktestRunner(
    ...     strategy_factory("spread_arb", StrategyParams(bid_price=0.49)),
    ...     fill_model=FillModel(rf=0.02),
    ... )
    >>> summary = runner.run_monte_carlo(windows, runs=50, seed=7)
    >>> print(f"Phantom gap: {summary.phantom_gap:.2f}")
"""

from phantomfill.simulation.events import (
    Action,
    BookSnapshot,
    Cancel,
    Fill,
    FillTrigger,
    Order,
    PlaceBid,
    PriceLevel,
    SideBook,
    Window,
)
from phantomfill.simulation.fill_model import FillModel, FillModelConfig
from phantomfill.simulation.engine import ReplayEngine, validate_action
from phantomfill.simulation.results import (
    BacktestReport,
    MonteCarloSummary,
    ReplayResult,
    export_csv,
    results_to_frame,
)
from phantomfill.simulation.runner import BacktestRunner, derive_rng
from phantomfill.simulation.sources import (
    InMemoryWindowSource,
    WindowSource,
    build_window,
    require_windows,
    ticks_to_snapshots,
)

__all__ = [
    "Action",
    "BookSnapshot",
    "Cancel",
    "Fill",
    "FillTrigger",
    "Order",
    "PlaceBid",
    "PriceLevel",
    "SideBook",
    "Window",
    "FillModel",
    "FillModelConfig",
    "ReplayEngine",
    "validate_action",
    "BacktestReport",
    "MonteCarloSummary",
    "ReplayResult",
    "export_csv",
    "results_to_frame",
    "BacktestRunner",
    "derive_rng",
    "InMemoryWindowSource",
    "WindowSource",
    "build_window",
    "require_windows",
    "ticks_to_snapshots",
]
