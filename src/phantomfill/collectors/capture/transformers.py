"""Transform captured book_ticks rows to internal models."""

import math
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from phantomfill.core.models import BookTick, Market, Outcome, Platform, Side

# Capture files record cumulative bid depth at these fixed prices
DEPTH_COLUMNS: Tuple[Tuple[str, float], ...] = (
    ("depth_at_049", 0.49),
    ("depth_at_050", 0.50),
    ("depth_at_051", 0.51),
)

_DEFAULT_TIMEFRAME_SECS = 900


def _optional_float(value: Any) -> Optional[float]:
    """None for missing/NaN values, float otherwise."""
    if value is None:
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(result) else result


def map_side(value: Any) -> Side:
    """Capture side label to Side. UP is YES; anything else is NO."""
    return Side.YES if str(value).strip().upper() in ("UP", "YES") else Side.NO


def timeframe_to_secs(timeframe: str) -> int:
    """
    Window length for a capture timeframe label.

    Handles ``5m``, ``15m``, ``1h`` and generic ``<N>m`` / ``<N>h`` labels.
    Unparseable labels fall back to 15 minutes.
    """
    tf = str(timeframe).strip().lower()
    try:
        if tf.endswith("m"):
            return int(tf[:-1]) * 60
        if tf.endswith("h"):
            return int(tf[:-1]) * 3600
    except ValueError:
        pass
    return _DEFAULT_TIMEFRAME_SECS


def build_depth_levels(row: Dict[str, Any]) -> List[Tuple[float, float]]:
    """(price, cumulative size) levels from the fixed depth columns, positive only."""
    levels = []
    for column, price in DEPTH_COLUMNS:
        size = _optional_float(row.get(column))
        if size is not None and size > 0:
            levels.append((price, size))
    return levels


def transform_tick_row(row: Dict[str, Any], market_id: str) -> BookTick:
    """Transform one book_ticks row to a BookTick."""
    tick_ms = int(row["tick_ms"])
    return BookTick(
        market_id=market_id,
        side=map_side(row["side"]),
        timestamp=datetime.fromtimestamp(tick_ms / 1000, tz=timezone.utc),
        offset_ms=int(row["offset_ms"]),
        best_bid=_optional_float(row.get("best_bid")),
        best_bid_size=_optional_float(row.get("best_bid_size")),
        best_ask=_optional_float(row.get("best_ask")),
        best_ask_size=_optional_float(row.get("best_ask_size")),
        depth=build_depth_levels(row),
        total_bid_depth=_optional_float(row.get("total_bid_depth")),
        total_ask_depth=_optional_float(row.get("total_ask_depth")) or 0.0,
        reference_price=_optional_float(row.get("btc_price")),
        oracle_price=_optional_float(row.get("chainlink_price")),
    )


def determine_outcome(oracle_prices: Iterable[Optional[float]]) -> Optional[Outcome]:
    """
    Resolve a window from its oracle prices in time order.

    YES if the last oracle price is above the first, NO otherwise
    (including unchanged). None if there is no oracle price at all.
    """
    observed = [p for p in oracle_prices if p is not None]
    if not observed:
        return None
    return Outcome.YES if observed[-1] > observed[0] else Outcome.NO


def transform_market(
    slug: str,
    asset: str,
    timeframe: str,
    window_ts: int,
    outcome: Optional[Outcome],
) -> Market:
    """Build a Market for a captured window (``window_ts`` in epoch seconds)."""
    open_time = datetime.fromtimestamp(int(window_ts), tz=timezone.utc)
    duration = timeframe_to_secs(timeframe)
    return Market(
        market_id=slug,
        platform=Platform.POLYMARKET,
        description=f"{str(asset).upper()} {timeframe} {slug}",
        category=str(asset),
        open_time=open_time,
        close_time=open_time + timedelta(seconds=duration),
        outcome=outcome,
    )
