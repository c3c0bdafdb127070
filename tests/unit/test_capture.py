"""Tests for capture file import.

Tests verify:
- Row and market transforms (sides, depth levels, timeframes, outcome)
- Skipping of short and unresolvable windows
- Asset and slug-pattern filtering
- Loading windows and writing through a QuestDBWriter
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pandas as pd
import pytest

from phantomfill.collectors.capture import (
    ImportStats,
    import_capture,
    load_capture_windows,
    read_capture_file,
)
from phantomfill.collectors.capture.transformers import (
    build_depth_levels,
    determine_outcome,
    map_side,
    timeframe_to_secs,
    transform_market,
    transform_tick_row,
)
from phantomfill.core.exceptions import StorageError
from phantomfill.core.models import Outcome, Side

WINDOW_TS = 1_704_110_400  # 2024-01-01 12:00:00 UTC


def make_rows(
    slug: str = "btc-updown-15m-1704110400",
    asset: str = "btc",
    ticks: int = 6,
    chainlink_start: float = 64_000.0,
    chainlink_step: float = 5.0,
    window_ts: int = WINDOW_TS,
) -> list:
    """Capture rows for one window: one UP and one DOWN row per tick."""
    rows = []
    for i in range(ticks):
        for side in ("UP", "DOWN"):
            rows.append(
                {
                    "slug": slug,
                    "asset": asset,
                    "timeframe": "15m",
                    "window_ts": window_ts,
                    "tick_ms": window_ts * 1000 + i * 1000,
                    "offset_ms": i * 1000,
                    "side": side,
                    "best_bid": 0.49,
                    "best_bid_size": 100.0,
                    "best_ask": 0.51,
                    "best_ask_size": 80.0,
                    "depth_at_049": 100.0,
                    "depth_at_050": 0.0,
                    "depth_at_051": 250.0,
                    "total_bid_depth": 400.0,
                    "total_ask_depth": 350.0,
                    "btc_price": 64_100.0,
                    "chainlink_price": (
                        chainlink_start + i * chainlink_step if chainlink_start else None
                    ),
                }
            )
    return rows


def write_capture(tmp_path, rows, name: str = "capture.csv"):
    path = tmp_path / name
    pd.DataFrame(rows).to_csv(path, index=False)
    return path


class TestTransformers:
    def test_map_side(self):
        assert map_side("UP") is Side.YES
        assert map_side("down") is Side.NO

    @pytest.mark.parametrize(
        "timeframe,expected",
        [("5m", 300), ("15m", 900), ("1h", 3600), ("4h", 14_400), ("weekly", 900)],
    )
    def test_timeframe_to_secs(self, timeframe, expected):
        assert timeframe_to_secs(timeframe) == expected

    def test_build_depth_levels_positive_only(self):
        row = {"depth_at_049": 100.0, "depth_at_050": 0.0, "depth_at_051": float("nan")}
        assert build_depth_levels(row) == [(0.49, 100.0)]

    def test_transform_tick_row(self):
        row = make_rows(ticks=1)[0]
        row["btc_price"] = float("nan")

        tick = transform_tick_row(row, "btc-1")

        assert tick.market_id == "btc-1"
        assert tick.side is Side.YES
        assert tick.timestamp == datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        assert tick.depth == [(0.49, 100.0), (0.51, 250.0)]
        assert tick.reference_price is None
        assert tick.oracle_price == 64_000.0

    def test_blank_total_bid_depth_is_unreported(self):
        row = make_rows(ticks=1)[0]
        row["total_bid_depth"] = float("nan")

        tick = transform_tick_row(row, "btc-1")

        assert tick.total_bid_depth is None
        assert tick.total_ask_depth == 350.0

    def test_determine_outcome(self):
        assert determine_outcome([None, 100.0, 101.0]) is Outcome.YES
        assert determine_outcome([100.0, 99.0]) is Outcome.NO
        assert determine_outcome([100.0, 100.0]) is Outcome.NO
        assert determine_outcome([None, None]) is None

    def test_transform_market(self):
        market = transform_market("btc-updown-5m-1", "btc", "5m", WINDOW_TS, Outcome.YES)

        assert market.market_id == "btc-updown-5m-1"
        assert market.category == "btc"
        assert market.duration_secs == 300
        assert market.description == "BTC 5m btc-updown-5m-1"
        assert market.open_time == datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestReadCaptureFile:
    def test_reads_csv(self, tmp_path):
        path = write_capture(tmp_path, make_rows())
        assert len(read_capture_file(path)) == 12

    def test_missing_columns(self, tmp_path):
        path = tmp_path / "bad.csv"
        pd.DataFrame({"slug": ["x"]}).to_csv(path, index=False)
        with pytest.raises(StorageError, match="missing columns"):
            read_capture_file(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(StorageError):
            read_capture_file(tmp_path / "nope.csv")


class TestLoadCaptureWindows:
    def test_loads_window(self, tmp_path):
        path = write_capture(tmp_path, make_rows())

        (window,) = load_capture_windows(path)

        assert window.market_id == "btc-updown-15m-1704110400"
        assert window.outcome is Outcome.YES
        assert len(window) == 6
        assert window.snapshots[0].yes.bid_depth_at(0.50) == 250.0
        assert window.snapshots[0].reference_price == 64_100.0

    def test_falling_oracle_resolves_no(self, tmp_path):
        path = write_capture(tmp_path, make_rows(chainlink_step=-5.0))
        (window,) = load_capture_windows(path)
        assert window.outcome is Outcome.NO

    def test_skips_short_and_unresolved(self, tmp_path):
        rows = (
            make_rows(slug="ok", window_ts=WINDOW_TS)
            + make_rows(slug="short", ticks=4, window_ts=WINDOW_TS + 900)
            + make_rows(slug="no-oracle", chainlink_start=0.0, window_ts=WINDOW_TS + 1800)
        )
        path = write_capture(tmp_path, rows)

        windows = load_capture_windows(path)

        assert [w.market_id for w in windows] == ["ok"]

    def test_asset_filter(self, tmp_path):
        rows = make_rows(slug="btc-a", asset="btc") + make_rows(
            slug="eth-a", asset="eth", window_ts=WINDOW_TS + 900
        )
        path = write_capture(tmp_path, rows)

        assert [w.market_id for w in load_capture_windows(path, asset="eth")] == ["eth-a"]

    def test_slug_pattern_filter(self, tmp_path):
        rows = make_rows(slug="btc-updown-5m-1") + make_rows(
            slug="btc-updown-15m-1", window_ts=WINDOW_TS + 900
        )
        path = write_capture(tmp_path, rows)

        windows = load_capture_windows(path, asset="btc-updown-15m-%")

        assert [w.market_id for w in windows] == ["btc-updown-15m-1"]

    def test_windows_ordered_by_open_time(self, tmp_path):
        rows = make_rows(slug="later", window_ts=WINDOW_TS + 900) + make_rows(slug="earlier")
        path = write_capture(tmp_path, rows)

        assert [w.market_id for w in load_capture_windows(path)] == ["earlier", "later"]


class TestImportCapture:
    def test_writes_markets_and_ticks(self, tmp_path):
        rows = make_rows(slug="ok") + make_rows(slug="short", ticks=3, window_ts=WINDOW_TS + 900)
        path = write_capture(tmp_path, rows)
        writer = MagicMock()
        writer.write_ticks.side_effect = lambda ticks: len(list(ticks))

        stats = import_capture(path, writer)

        assert stats == ImportStats(markets_imported=1, ticks_imported=12, markets_skipped=1)
        market = writer.write_market.call_args[0][0]
        assert market.market_id == "ok"
        assert market.outcome is Outcome.YES
        writer.flush.assert_called_once()
