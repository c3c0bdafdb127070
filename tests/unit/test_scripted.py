"""Tests for sandboxed scripted strategies.

Tests verify:
- Scripts load and run through the Strategy interface
- Constants are bound and cannot be rebound
- Disallowed constructs are rejected at load time
- Action dicts are converted; malformed ones pass through for validation
- Script errors surface as StrategyFault
"""

from datetime import datetime, timezone

import numpy as np
import pytest

from phantomfill.core.exceptions import StrategyFault
from phantomfill.core.models import Market, Outcome, Side
from phantomfill.simulation import (
    BookSnapshot,
    Cancel,
    FillModel,
    PlaceBid,
    PriceLevel,
    ReplayEngine,
    SideBook,
    Window,
)
from phantomfill.strategies import ScriptedStrategy, StrategyParams
from phantomfill.strategies.scripted import check_script, snapshot_to_mapping, to_action

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
PARAMS = StrategyParams(bid_price=0.48, size=7.0)

ALWAYS_YES = """
placed = False

def on_tick(snap):
    global placed
    if placed:
        return []
    placed = True
    return [bid("yes", BID_PRICE, SIZE)]

def on_reset():
    global placed
    placed = False
"""


def make_snapshot(offset_ms: int = 0) -> BookSnapshot:
    book = SideBook(
        best_bid=0.49,
        best_bid_size=100.0,
        best_ask=0.51,
        best_ask_size=80.0,
        depth=(PriceLevel(0.49, 100.0), PriceLevel(0.50, 180.0)),
        total_bid_depth=300.0,
        total_ask_depth=250.0,
    )
    return BookSnapshot(
        market_id="btc-1",
        offset_ms=offset_ms,
        timestamp=BASE_TIME,
        yes=book,
        no=SideBook(best_bid=None, total_bid_depth=10.0),
        oracle_price=100_000.0,
    )


def make_script(body: str) -> ScriptedStrategy:
    return ScriptedStrategy("test_script", body, PARAMS)


class TestLoading:
    def test_runs_callbacks(self):
        strategy = make_script(ALWAYS_YES)

        assert strategy.on_tick(make_snapshot()) == [PlaceBid(Side.YES, 0.48, 7.0)]
        assert strategy.on_tick(make_snapshot(1000)) == []
        strategy.on_reset()
        assert len(strategy.on_tick(make_snapshot())) == 1

    def test_name_and_description(self):
        strategy = make_script(ALWAYS_YES)
        assert strategy.name == "test_script"
        assert "test_script" in strategy.description

    def test_missing_callback(self):
        with pytest.raises(StrategyFault, match="on_reset"):
            make_script("def on_tick(snap):\n    return []\n")

    def test_syntax_error(self):
        with pytest.raises(StrategyFault, match="load"):
            make_script("def on_tick(snap)\n    return []\n")

    def test_top_level_error(self):
        with pytest.raises(StrategyFault):
            make_script("x = 1 / 0\n" + ALWAYS_YES)

    def test_from_file(self, tmp_path):
        path = tmp_path / "yes_bot.py"
        path.write_text(ALWAYS_YES)

        strategy = ScriptedStrategy.from_file(path, PARAMS)

        assert strategy.name == "yes_bot"
        assert strategy.on_tick(make_snapshot()) == [PlaceBid(Side.YES, 0.48, 7.0)]

    def test_from_missing_file(self, tmp_path):
        with pytest.raises(StrategyFault):
            ScriptedStrategy.from_file(tmp_path / "nope.py")


class TestSandbox:
    @pytest.mark.parametrize(
        "source",
        [
            "import os",
            "from os import path",
            "x = __import__('os')",
            "x = (1).__class__",
            "x = math._private",
            "SIZE = 100",
            "BID_PRICE += 0.1",
            "def f():\n    global SHARES\n    SHARES = 1",
            "def f(SIZE):\n    return SIZE",
            "for SIZE in range(3):\n    pass",
            "g = (x for x in [1])\nb = g.gi_frame.f_back.f_builtins",
            "def f():\n    yield 1\nc = f().gi_code.co_consts",
            "x = str.mro()",
            "x = '{0.gi_frame}'.format(1)",
        ],
    )
    def test_rejected(self, source):
        with pytest.raises(ValueError):
            check_script(source)

    def test_frame_walk_rejected_at_load(self):
        source = (
            "holder = []\n"
            "def gen():\n"
            "    yield 1\n"
            "def on_tick(snap):\n"
            "    holder.append(gen())\n"
            "    builtins = holder[0].gi_frame.f_back.f_back.f_builtins\n"
            "    os = builtins['__import__']('os')\n"
            "    return [bid('yes', 0.5, len(os.listdir('/')))]\n"
            "def on_reset():\n"
            "    pass\n"
        )
        with pytest.raises(StrategyFault, match="gi_frame"):
            make_script(source)

    def test_reading_constants_allowed(self):
        check_script("x = SIZE * BID_PRICE + SHARES")

    def test_open_not_available(self):
        strategy = make_script(
            "def on_tick(snap):\n    open('/etc/passwd')\n    return []\n"
            "def on_reset():\n    pass\n"
        )
        with pytest.raises(StrategyFault, match="on_tick"):
            strategy.on_tick(make_snapshot())

    def test_math_available(self):
        strategy = make_script(
            "def on_tick(snap):\n"
            "    return [bid('no', math.sqrt(0.25), SIZE)]\n"
            "def on_reset():\n    pass\n"
        )
        assert strategy.on_tick(make_snapshot()) == [PlaceBid(Side.NO, 0.5, 7.0)]

    def test_snapshot_is_read_only(self):
        strategy = make_script(
            "def on_tick(snap):\n    snap['yes_bid'] = 1.0\n    return []\n"
            "def on_reset():\n    pass\n"
        )
        with pytest.raises(StrategyFault):
            strategy.on_tick(make_snapshot())


class TestMarshalling:
    def test_snapshot_mapping(self):
        snap = snapshot_to_mapping(make_snapshot(2500))

        assert snap["market_id"] == "btc-1"
        assert snap["offset_ms"] == 2500
        assert snap["yes_bid"] == 0.49
        assert snap["no_bid"] == 0.0
        assert snap["yes_total_bid_depth"] == 300.0
        assert snap["oracle_price"] == 100_000.0
        assert snap["timestamp_ms"] == int(BASE_TIME.timestamp() * 1000)
        assert snap["yes_depth"][1]["size"] == 180.0

    def test_depth_helpers(self):
        strategy = make_script(
            "def on_tick(snap):\n"
            "    if yes_depth_at(snap, 0.50) > no_depth_at(snap, 0.50):\n"
            "        return [bid('up', 0.50, SIZE)]\n"
            "    return []\n"
            "def on_reset():\n    pass\n"
        )
        assert strategy.on_tick(make_snapshot()) == [PlaceBid(Side.YES, 0.50, 7.0)]

    def test_to_action(self):
        assert to_action({"type": "bid", "side": "no", "price": 0.4, "size": 3}) == PlaceBid(
            Side.NO, 0.4, 3
        )
        assert to_action({"type": "bid", "side": "yes", "price": 0.4, "shares": 2}) == PlaceBid(
            Side.YES, 0.4, 2
        )
        assert to_action({"type": "cancel", "side": "YES"}) == Cancel(Side.YES)

    @pytest.mark.parametrize(
        "item",
        [
            {"type": "bid", "side": "maybe", "price": 0.4, "size": 3},
            {"type": "sell", "side": "yes"},
            {"type": "bid", "side": "yes"},
            "bid yes",
        ],
    )
    def test_unconvertible_passes_through(self, item):
        assert to_action(item) is item


class TestReplay:
    def test_invalid_script_actions_counted(self):
        """Bad items from a script are discarded by the engine, good ones kept."""
        strategy = make_script(
            "done = False\n"
            "def on_tick(snap):\n"
            "    global done\n"
            "    if done:\n"
            "        return []\n"
            "    done = True\n"
            "    return [bid('yes', 2.0, SIZE), bid('no', BID_PRICE, SIZE), 'junk']\n"
            "def on_reset():\n"
            "    global done\n"
            "    done = False\n"
        )
        market = Market(
            market_id="btc-1",
            open_time=BASE_TIME,
            close_time=BASE_TIME,
            outcome=Outcome.NO,
        )
        window = Window(market=market, snapshots=(make_snapshot(0), make_snapshot(1000)))

        result = ReplayEngine(FillModel(rf=0.0)).run_window(
            window, strategy, np.random.default_rng(0)
        )

        assert result.invalid_actions == 2
        assert result.actions == (PlaceBid(Side.NO, 0.48, 7.0),)
        assert result.naive_correct
