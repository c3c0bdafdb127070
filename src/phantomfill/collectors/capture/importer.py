"""Import captured book_ticks exports (CSV or Parquet).

A capture file holds one row per side per tick for many up/down windows,
identified by ``slug``. Each window becomes a Market plus its BookTicks.
Windows with fewer than ``MIN_TICKS_PER_MARKET`` rows, or without any oracle
price to resolve them from, are skipped.
"""

import fnmatch
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Tuple, Union

import pandas as pd

from phantomfill.collectors.capture.transformers import (
    determine_outcome,
    transform_market,
    transform_tick_row,
)
from phantomfill.core.exceptions import StorageError
from phantomfill.core.models import BookTick, Market
from phantomfill.simulation.events import Window
from phantomfill.simulation.sources import build_window
from phantomfill.storage.questdb import QuestDBWriter

logger = logging.getLogger(__name__)

MIN_TICKS_PER_MARKET = 10

REQUIRED_COLUMNS = (
    "slug",
    "asset",
    "timeframe",
    "window_ts",
    "tick_ms",
    "offset_ms",
    "side",
)


@dataclass
class ImportStats:
    """Counts from one capture import."""

    markets_imported: int = 0
    ticks_imported: int = 0
    markets_skipped: int = 0


def read_capture_file(path: Union[str, Path]) -> pd.DataFrame:
    """
    Read a capture export into a DataFrame.

    ``.parquet`` files are read with pandas' parquet engine (pyarrow);
    anything else is read as CSV.

    Raises:
        StorageError: If the file cannot be read or lacks required columns.
    """
    path = Path(path)
    try:
        if path.suffix.lower() in (".parquet", ".pq"):
            df = pd.read_parquet(path)
        else:
            df = pd.read_csv(path)
    except (OSError, ValueError, ImportError) as e:
        raise StorageError(f"Failed to read capture file {path}: {e}") from e

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise StorageError(f"Capture file {path} is missing columns: {', '.join(missing)}")
    logger.info(f"Read {len(df)} capture rows from {path}")
    return df


def _filter_frame(df: pd.DataFrame, asset: Optional[str]) -> pd.DataFrame:
    """Filter by asset, or by slug when the filter contains a ``%`` wildcard."""
    if asset is None:
        return df
    if "%" in asset:
        pattern = asset.replace("%", "*")
        mask = df["slug"].astype(str).map(lambda s: fnmatch.fnmatchcase(s, pattern))
        return df[mask]
    return df[df["asset"].astype(str) == asset]


def iter_capture_markets(
    df: pd.DataFrame,
    asset: Optional[str] = None,
    stats: Optional[ImportStats] = None,
) -> Iterator[Tuple[Market, List[BookTick]]]:
    """
    Yield (market, ticks) per usable window, oldest window first.

    Args:
        df: Capture rows
        asset: Asset filter, or slug pattern with ``%`` wildcards
        stats: Updated with skipped-market counts as windows are read
    """
    df = _filter_frame(df, asset)
    if df.empty:
        return

    df = df.sort_values(["window_ts", "slug", "offset_ms", "side"], kind="stable")
    for (window_ts, slug), group in df.groupby(["window_ts", "slug"], sort=False):
        if len(group) < MIN_TICKS_PER_MARKET:
            logger.debug(f"Skipping {slug}: only {len(group)} ticks")
            if stats is not None:
                stats.markets_skipped += 1
            continue

        rows = group.to_dict("records")
        ticks = [transform_tick_row(row, str(slug)) for row in rows]

        outcome = determine_outcome(t.oracle_price for t in ticks)
        if outcome is None:
            logger.debug(f"Skipping {slug}: no oracle price")
            if stats is not None:
                stats.markets_skipped += 1
            continue

        first = rows[0]
        market = transform_market(
            slug=str(slug),
            asset=first["asset"],
            timeframe=first["timeframe"],
            window_ts=int(window_ts),
            outcome=outcome,
        )
        yield market, ticks


def load_capture_windows(
    path: Union[str, Path],
    asset: Optional[str] = None,
) -> List[Window]:
    """Load a capture file straight into replayable windows."""
    stats = ImportStats()
    windows = [
        build_window(market, ticks)
        for market, ticks in iter_capture_markets(read_capture_file(path), asset, stats)
    ]
    logger.info(f"Loaded {len(windows)} windows ({stats.markets_skipped} skipped)")
    return windows


def import_capture(
    path: Union[str, Path],
    writer: QuestDBWriter,
    asset: Optional[str] = None,
) -> ImportStats:
    """
    Materialize a capture file into QuestDB.

    Args:
        path: Capture CSV or Parquet file
        writer: Connected QuestDBWriter
        asset: Asset filter, or slug pattern with ``%`` wildcards

    Returns:
        ImportStats with imported and skipped counts
    """
    stats = ImportStats()
    for market, ticks in iter_capture_markets(read_capture_file(path), asset, stats):
        writer.write_market(market)
        stats.ticks_imported += writer.write_ticks(ticks)
        stats.markets_imported += 1

    writer.flush()
    logger.info(
        f"Imported {stats.markets_imported} markets, {stats.ticks_imported} ticks "
        f"({stats.markets_skipped} skipped)"
    )
    return stats
