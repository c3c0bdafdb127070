"""Backtest and Monte Carlo runner.

This module provides the BacktestRunner class that replays a strategy over
many windows and aggregates the results.

Key principle: every (window, seed) replay is isolated. It gets a fresh
strategy instance from the factory and its own random generator seeded from
``(run_seed, window_index)``. Windows are shared read-only. Results are
therefore identical whether replays run sequentially or on a thread pool,
and a Monte Carlo run with seeds ``seed, seed+1, ...`` is reproducible.

Example:
    >>> from phantomfill.simulation import BacktestRunner, FillModel
    >>> from phantomfill.strategies import StrategyParams, strategy_factory
    >>>
    >>> factory = strategy_factory("momentum", StrategyParams(min_bps=5.0))
    >>> runner = BacktestRunner(factory, fill_model=FillModel(), max_workers=4)
    >>> report = runner.run(windows, seed=42)
    >>> summary = runner.run_monte_carlo(windows, runs=100, seed=42)
    >>> print(f"p5={summary.realistic_pnl_p5:+.2f} p95={summary.realistic_pnl_p95:+.2f}")
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TYPE_CHECKING, Callable, Iterable, List, Optional, Sequence, Union

import numpy as np

from phantomfill.core.exceptions import ConfigurationError, DataExhausted, StrategyFault
from phantomfill.simulation.engine import ReplayEngine
from phantomfill.simulation.events import Window
from phantomfill.simulation.fill_model import FillModel
from phantomfill.simulation.metrics import DEFAULT_PERCENTILES
from phantomfill.simulation.results import BacktestReport, MonteCarloSummary, ReplayResult
from phantomfill.simulation.sources import WindowSource, require_windows

if TYPE_CHECKING:
    from phantomfill.strategies.base import Strategy

logger = logging.getLogger(__name__)

StrategyFactory = Callable[[], "Strategy"]

_PROGRESS_EVERY = 100


def derive_rng(run_seed: int, window_index: int) -> np.random.Generator:
    """Random generator for one (run, window) replay."""
    return np.random.default_rng([run_seed, window_index])


def resolve_seed(seed: Optional[int]) -> int:
    """Use ``seed`` if given, otherwise draw one from OS entropy."""
    if seed is not None:
        return int(seed)
    return int(np.random.SeedSequence().entropy % (2**32))


class BacktestRunner:
    """Replay one strategy over many windows, optionally across many seeds.

    Attributes:
        strategy_factory: Zero-argument callable returning a fresh strategy
        engine: Replay engine shared by all replays
        max_workers: Thread pool size (1 runs sequentially)
        percentiles: Percentiles reported by Monte Carlo summaries
    """

    def __init__(
        self,
        strategy_factory: StrategyFactory,
        fill_model: Optional[FillModel] = None,
        max_workers: int = 1,
        percentiles: Sequence[float] = DEFAULT_PERCENTILES,
    ):
        """Initialize the runner.

        Args:
            strategy_factory: Returns a new strategy instance per replay.
            fill_model: Fill model for all replays. If None, creates a default
                FillModel instance.
            max_workers: Number of replay threads.
            percentiles: Percentiles to compute in Monte Carlo summaries.

        Raises:
            ConfigurationError: If max_workers is below 1.
        """
        if max_workers < 1:
            raise ConfigurationError(f"max_workers must be >= 1, got {max_workers}")
        self.strategy_factory = strategy_factory
        self.engine = ReplayEngine(fill_model)
        self.max_workers = max_workers
        self.percentiles = tuple(percentiles)
        self.strategy_name = strategy_factory().name

    @property
    def fill_model(self) -> FillModel:
        return self.engine.fill_model

    def run(
        self,
        windows: Union[WindowSource, Iterable[Window]],
        seed: Optional[int] = None,
    ) -> BacktestReport:
        """Replay every window once with one seed.

        Returns:
            BacktestReport; flagged ``data_exhausted`` if there were no windows.
        """
        run_seed = resolve_seed(seed)
        try:
            window_list = require_windows(windows)
        except DataExhausted as e:
            logger.warning(f"No data to replay: {e}")
            return BacktestReport.exhausted(self.strategy_name, self.fill_model.name, run_seed)
        return self._run_seeded(window_list, run_seed)

    def run_monte_carlo(
        self,
        windows: Union[WindowSource, Iterable[Window]],
        runs: int,
        seed: Optional[int] = None,
    ) -> MonteCarloSummary:
        """Replay every window ``runs`` times with seeds ``seed, seed+1, ...``.

        Raises:
            ConfigurationError: If runs is below 1.
        """
        if runs < 1:
            raise ConfigurationError(f"runs must be >= 1, got {runs}")

        base_seed = resolve_seed(seed)
        try:
            window_list = require_windows(windows)
        except DataExhausted as e:
            logger.warning(f"No data to replay: {e}")
            report = BacktestReport.exhausted(self.strategy_name, self.fill_model.name, base_seed)
            return MonteCarloSummary.from_reports([report], base_seed, self.percentiles)

        reports = []
        for i in range(runs):
            report = self._run_seeded(window_list, base_seed + i)
            reports.append(report)
            logger.info(
                f"Run {i + 1}/{runs} (seed {base_seed + i}): "
                f"realistic={report.realistic_total_pnl:+.2f}"
            )
        return MonteCarloSummary.from_reports(reports, base_seed, self.percentiles)

    def _run_seeded(self, windows: List[Window], run_seed: int) -> BacktestReport:
        results = self._replay_all(windows, run_seed)
        return BacktestReport.from_results(
            results,
            strategy_name=self.strategy_name,
            fill_model_name=self.fill_model.name,
            seed=run_seed,
        )

    def _replay_one(self, window: Window, run_seed: int, index: int) -> ReplayResult:
        try:
            strategy = self.strategy_factory()
        except Exception as e:
            fault = StrategyFault(self.strategy_name, "construct", e)
            logger.warning(f"Window {window.market_id} aborted: {fault}")
            market = window.market
            return ReplayResult.failed(
                market.market_id, self.strategy_name, str(fault), market.category, window.outcome
            )
        return self.engine.run_window(window, strategy, derive_rng(run_seed, index))

    def _replay_all(self, windows: List[Window], run_seed: int) -> List[ReplayResult]:
        """Replay windows in order, on a thread pool when max_workers > 1."""
        total = len(windows)
        if self.max_workers == 1:
            results = []
            for i, window in enumerate(windows):
                results.append(self._replay_one(window, run_seed, i))
                if (i + 1) % _PROGRESS_EVERY == 0:
                    logger.debug(f"Replayed {i + 1}/{total} windows")
            return results

        executor = ThreadPoolExecutor(max_workers=self.max_workers)
        futures: List[Future] = []
        try:
            futures = [
                executor.submit(self._replay_one, window, run_seed, i)
                for i, window in enumerate(windows)
            ]
            results = [future.result() for future in futures]
        except KeyboardInterrupt:
            # Running replays finish their window; queued ones never start
            for future in futures:
                future.cancel()
            logger.warning("Interrupted; pending replays cancelled")
            raise
        finally:
            executor.shutdown(wait=True)
        return results
