"""Replay result containers and aggregation.

Provides:
- ReplayResult: outcome of replaying one strategy over one window
- BacktestReport: one seed's results folded into counts, rates and PnL
- MonteCarloSummary: distribution of many BacktestReports across seeds
- results_to_frame / export_csv: per-window rows as a DataFrame or CSV file

PnL convention for a binary contract bought at ``price``: a winning bid earns
``size * (1 - price)``, a losing bid loses ``size * price``.
"""

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, Iterable, Optional, Sequence, Union

import numpy as np
import pandas as pd

from phantomfill.core.models import Outcome, Side
from phantomfill.simulation.events import Action, Fill
from phantomfill.simulation.metrics import (
    DEFAULT_PERCENTILES,
    percentile,
    percentile_key,
    summarize_distribution,
)

logger = logging.getLogger(__name__)

COMPLETED = "completed"
FAILED = "failed"


def position_pnl(side: Side, price: float, size: float, outcome: Outcome) -> float:
    """Settlement PnL of ``size`` shares of ``side`` bought at ``price``."""
    if outcome.matches(side):
        return size * (1.0 - price)
    return -size * price


@dataclass(frozen=True)
class ReplayResult:
    """Result of replaying one strategy over one window.

    Attributes:
        market_id: Window identifier
        strategy_name: Strategy that was replayed
        status: ``completed`` or ``failed``
        category: Market category tag
        outcome: Resolved outcome (None for windows that failed before resolution)
        naive_pnl: PnL assuming every accepted, non-cancelled bid filled
        realistic_pnl: PnL of the fills that survived the adverse-selection filter
        fill_rate: Filled shares over requested shares of accepted bids
        naive_correct: A non-cancelled bid was on the winning side
        correct: A counted fill was on the winning side
        predicted_side: Side of the first non-cancelled bid
        actions: Accepted actions in the order they were applied
        fills: Fills in the order they occurred
        queue_ahead: Queue ahead at placement of the first filled order,
            else of the first non-cancelled order
        first_order_offset_ms: Offset at which the first bid was accepted
        first_fill_offset_ms: Offset of the first fill
        invalid_actions: Actions discarded by validation
        reference_open: First snapshot reference price
        reference_close: Last snapshot reference price
        error: Failure description for failed windows
    """

    market_id: str
    strategy_name: str
    status: str = COMPLETED
    category: str = ""
    outcome: Optional[Outcome] = None
    naive_pnl: float = 0.0
    realistic_pnl: float = 0.0
    fill_rate: float = 0.0
    naive_correct: bool = False
    correct: bool = False
    predicted_side: Optional[Side] = None
    actions: tuple[Action, ...] = ()
    fills: tuple[Fill, ...] = ()
    queue_ahead: float = 0.0
    first_order_offset_ms: Optional[int] = None
    first_fill_offset_ms: Optional[int] = None
    invalid_actions: int = 0
    reference_open: Optional[float] = None
    reference_close: Optional[float] = None
    error: Optional[str] = None

    @classmethod
    def failed(
        cls,
        market_id: str,
        strategy_name: str,
        error: str,
        category: str = "",
        outcome: Optional[Outcome] = None,
    ) -> "ReplayResult":
        """A failed window: no actions, no fills, zero PnL."""
        return cls(
            market_id=market_id,
            strategy_name=strategy_name,
            status=FAILED,
            category=category,
            outcome=outcome,
            error=error,
        )

    @property
    def is_failed(self) -> bool:
        return self.status == FAILED

    @property
    def traded(self) -> bool:
        """True if a bid was left standing or any fill occurred."""
        return self.predicted_side is not None or bool(self.fills)

    @property
    def filled(self) -> bool:
        return bool(self.fills)

    @property
    def filled_size(self) -> float:
        return sum(f.size for f in self.fills)

    def to_row(self) -> dict:
        """Flat dict for tabular export."""
        return {
            "market_id": self.market_id,
            "category": self.category,
            "strategy": self.strategy_name,
            "status": self.status,
            "outcome": self.outcome.label if self.outcome else None,
            "predicted": self.predicted_side.label if self.predicted_side else None,
            "traded": self.traded,
            "filled": self.filled,
            "filled_size": self.filled_size,
            "fill_rate": self.fill_rate,
            "naive_correct": self.naive_correct,
            "correct": self.correct,
            "naive_pnl": self.naive_pnl,
            "realistic_pnl": self.realistic_pnl,
            "queue_ahead": self.queue_ahead,
            "first_order_offset_ms": self.first_order_offset_ms,
            "first_fill_offset_ms": self.first_fill_offset_ms,
            "adverse_fills": sum(1 for f in self.fills if f.is_adverse),
            "invalid_actions": self.invalid_actions,
            "reference_open": self.reference_open,
            "reference_close": self.reference_close,
            "error": self.error,
        }


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator > 0 else 0.0


@dataclass(frozen=True)
class BacktestReport:
    """All windows of one run (one seed) folded into summary statistics.

    Rates are fractions in [0, 1]. PnL totals and queue stats are taken over
    traded windows only.

    Attributes:
        strategy_name: Strategy that was replayed
        fill_model_name: Fill model used
        seed: Run seed
        total_windows: Windows replayed (failed included)
        trades_taken: Windows where a bid stood or filled
        fills: Traded windows with at least one fill
        correct: Filled windows whose bid was on the winning side
        skipped: Completed windows with no trade
        failed: Windows whose replay failed
        fill_rate: fills / trades_taken
        naive_win_rate: naive-correct windows / trades_taken
        realistic_win_rate: correct / fills
        naive_total_pnl: Sum of naive PnL
        realistic_total_pnl: Sum of realistic PnL
        phantom_gap: naive_total_pnl - realistic_total_pnl
        avg_naive_pnl: naive_total_pnl / trades_taken
        avg_realistic_pnl: realistic_total_pnl / trades_taken
        avg_queue_ahead: Mean queue ahead at placement
        avg_fill_time_ms: Mean offset of first fills
        invalid_actions: Actions discarded across all windows
        data_exhausted: The data source yielded no windows at all
        results: Per-window results
    """

    strategy_name: str
    fill_model_name: str = ""
    seed: Optional[int] = None
    total_windows: int = 0
    trades_taken: int = 0
    fills: int = 0
    correct: int = 0
    skipped: int = 0
    failed: int = 0
    fill_rate: float = 0.0
    naive_win_rate: float = 0.0
    realistic_win_rate: float = 0.0
    naive_total_pnl: float = 0.0
    realistic_total_pnl: float = 0.0
    phantom_gap: float = 0.0
    avg_naive_pnl: float = 0.0
    avg_realistic_pnl: float = 0.0
    avg_queue_ahead: float = 0.0
    avg_fill_time_ms: float = 0.0
    invalid_actions: int = 0
    data_exhausted: bool = False
    results: tuple[ReplayResult, ...] = field(default=(), repr=False)

    @classmethod
    def from_results(
        cls,
        results: Sequence[ReplayResult],
        strategy_name: str,
        fill_model_name: str = "",
        seed: Optional[int] = None,
    ) -> "BacktestReport":
        """Fold per-window results into a report."""
        traded = [r for r in results if not r.is_failed and r.traded]
        filled = [r for r in traded if r.filled]
        failed = sum(1 for r in results if r.is_failed)

        trades_taken = len(traded)
        correct = sum(1 for r in filled if r.correct)
        naive_correct = sum(1 for r in traded if r.naive_correct)

        naive_total = float(sum(r.naive_pnl for r in traded))
        realistic_total = float(sum(r.realistic_pnl for r in traded))

        fill_times = [r.first_fill_offset_ms for r in traded if r.first_fill_offset_ms is not None]

        return cls(
            strategy_name=strategy_name,
            fill_model_name=fill_model_name,
            seed=seed,
            total_windows=len(results),
            trades_taken=trades_taken,
            fills=len(filled),
            correct=correct,
            skipped=len(results) - failed - trades_taken,
            failed=failed,
            fill_rate=_ratio(len(filled), trades_taken),
            naive_win_rate=_ratio(naive_correct, trades_taken),
            realistic_win_rate=_ratio(correct, len(filled)),
            naive_total_pnl=naive_total,
            realistic_total_pnl=realistic_total,
            phantom_gap=naive_total - realistic_total,
            avg_naive_pnl=_ratio(naive_total, trades_taken),
            avg_realistic_pnl=_ratio(realistic_total, trades_taken),
            avg_queue_ahead=_ratio(sum(r.queue_ahead for r in traded), trades_taken),
            avg_fill_time_ms=float(np.mean(fill_times)) if fill_times else 0.0,
            invalid_actions=sum(r.invalid_actions for r in results),
            results=tuple(results),
        )

    @classmethod
    def exhausted(
        cls,
        strategy_name: str,
        fill_model_name: str = "",
        seed: Optional[int] = None,
    ) -> "BacktestReport":
        """Report for a data source that produced no windows."""
        return cls(
            strategy_name=strategy_name,
            fill_model_name=fill_model_name,
            seed=seed,
            data_exhausted=True,
        )


@dataclass(frozen=True)
class MonteCarloSummary:
    """Distribution of realistic outcomes across seeded runs.

    Naive PnL comes from actions alone, so it is identical across runs;
    ``from_reports`` checks this. Realistic PnL varies with the seed.

    Attributes:
        runs: Number of runs
        seed: Base seed (run i used seed + i)
        naive_total_pnl: Deterministic naive PnL
        realistic_pnl_mean: Mean realistic PnL
        realistic_pnl_median: Median realistic PnL (nearest rank)
        realistic_pnl_std: Population standard deviation of realistic PnL
        realistic_pnl_percentiles: Requested percentiles, keyed ``p5`` etc.
        phantom_gap: Naive PnL minus the median run's realistic PnL
        fill_rate_mean: Mean fill rate across runs
        win_rate_mean: Mean realistic win rate across runs
        reports: Per-run reports
    """

    runs: int
    seed: Optional[int]
    naive_total_pnl: float
    realistic_pnl_mean: float
    realistic_pnl_median: float
    realistic_pnl_std: float
    realistic_pnl_percentiles: Dict[str, float]
    phantom_gap: float
    fill_rate_mean: float
    win_rate_mean: float
    reports: tuple[BacktestReport, ...] = field(default=(), repr=False)

    @classmethod
    def from_reports(
        cls,
        reports: Sequence[BacktestReport],
        seed: Optional[int] = None,
        percentiles: Iterable[float] = DEFAULT_PERCENTILES,
    ) -> "MonteCarloSummary":
        """Build a summary from one report per run.

        Raises:
            ValueError: If ``reports`` is empty or naive PnL differs between runs.
        """
        if not reports:
            raise ValueError("need at least one report")

        naive = np.array([r.naive_total_pnl for r in reports], dtype=float)
        if not np.array_equal(naive, np.full_like(naive, naive[0]), equal_nan=True):
            raise ValueError("naive PnL differs between runs; replays are not deterministic")

        pnls = [r.realistic_total_pnl for r in reports]
        dist = summarize_distribution(pnls, percentiles)
        pcts = {percentile_key(p): dist[percentile_key(p)] for p in percentiles}

        return cls(
            runs=len(reports),
            seed=seed,
            naive_total_pnl=float(naive[0]),
            realistic_pnl_mean=dist["mean"],
            realistic_pnl_median=dist["median"],
            realistic_pnl_std=dist["std"],
            realistic_pnl_percentiles=pcts,
            phantom_gap=float(naive[0]) - dist["median"],
            fill_rate_mean=float(np.mean([r.fill_rate for r in reports])),
            win_rate_mean=float(np.mean([r.realistic_win_rate for r in reports])),
            reports=tuple(reports),
        )

    @property
    def realistic_pnl_p5(self) -> float:
        return self.percentile(5.0)

    @property
    def realistic_pnl_p95(self) -> float:
        return self.percentile(95.0)

    def percentile(self, pct: float) -> float:
        """Realistic PnL percentile, computed on demand if not precomputed."""
        key = percentile_key(pct)
        if key in self.realistic_pnl_percentiles:
            return self.realistic_pnl_percentiles[key]
        return percentile([r.realistic_total_pnl for r in self.reports], pct)


def results_to_frame(
    results: Union[BacktestReport, Iterable[ReplayResult]],
) -> pd.DataFrame:
    """Per-window results as a DataFrame, one row per window."""
    if isinstance(results, BacktestReport):
        results = results.results
    rows = [r.to_row() for r in results]
    if not rows:
        columns = list(ReplayResult(market_id="", strategy_name="").to_row().keys())
        return pd.DataFrame(columns=columns)
    return pd.DataFrame(rows)


def export_csv(
    results: Union[BacktestReport, Iterable[ReplayResult]],
    path: Union[str, Path],
) -> Path:
    """Write per-window results to a CSV file and return its path."""
    path = Path(path)
    frame = results_to_frame(results)
    frame.to_csv(path, index=False)
    logger.info(f"Wrote {len(frame)} window results to {path}")
    return path


def report_to_dict(report: BacktestReport) -> dict:
    """Report fields without the per-window results."""
    return {f.name: getattr(report, f.name) for f in fields(report) if f.name != "results"}


def reports_to_frame(reports: Sequence[BacktestReport]) -> pd.DataFrame:
    """One row per run, for inspecting run-to-run variation."""
    return pd.DataFrame([report_to_dict(r) for r in reports])
