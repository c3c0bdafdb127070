"""Tests for FillModel.

Tests verify:
- Configuration bounds raise ConfigurationError
- Background fill probability and post-signal boost
- Queue advance from taker volume; queue never increases
- Adverse tick handling (queue sweep, zero depth, no fall-through)
- Fills are full remaining size at the limit price
- Adverse-selection filter for post-signal winning fills
"""

from datetime import datetime, timezone

import numpy as np
import pytest

from phantomfill.core.exceptions import ConfigurationError
from phantomfill.core.models import Side
from phantomfill.simulation import (
    BookSnapshot,
    Fill,
    FillModel,
    FillModelConfig,
    FillTrigger,
    Order,
    PlaceBid,
    PriceLevel,
    SideBook,
)
from phantomfill.simulation.fill_model import (
    background_fill_probability,
    estimate_taker_volume,
    is_adverse_tick,
)

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_book(
    depth_049: float = 100.0,
    best_ask: float = 0.52,
    best_ask_size: float = 50.0,
    total_bid_depth: float = 500.0,
) -> SideBook:
    """Create a side book with depth tracked at 0.49 and 0.50."""
    return SideBook(
        best_bid=0.49,
        best_bid_size=depth_049,
        best_ask=best_ask,
        best_ask_size=best_ask_size,
        depth=(PriceLevel(0.49, depth_049), PriceLevel(0.50, depth_049 + 100.0)),
        total_bid_depth=total_bid_depth,
        total_ask_depth=300.0,
    )


def make_snapshot(offset_ms: int = 0, yes: SideBook = None, no: SideBook = None) -> BookSnapshot:
    return BookSnapshot(
        market_id="test-market",
        offset_ms=offset_ms,
        timestamp=BASE_TIME,
        yes=yes or make_book(),
        no=no or make_book(),
    )


class FixedRng:
    """Generator stand-in returning a fixed draw."""

    def __init__(self, value: float):
        self.value = value
        self.calls = 0

    def random(self) -> float:
        self.calls += 1
        return self.value


class TestFillModelConfig:
    """Tests for configuration validation."""

    def test_defaults(self):
        model = FillModel()
        assert model.config == FillModelConfig()
        assert model.config.rf == 0.02
        assert model.config.adverse_fill_prob == 0.99
        assert model.config.signal_offset_ms == 90_000
        assert model.config.post_signal_taker_mult == 1.8
        assert model.config.winner_queue_threshold == 50.0
        assert model.name == "delise-3rule"

    def test_overrides(self):
        model = FillModel(FillModelConfig(rf=0.1), adverse_fill_prob=0.5)
        assert model.config.rf == 0.1
        assert model.config.adverse_fill_prob == 0.5

    @pytest.mark.parametrize(
        "field,value",
        [
            ("rf", -0.1),
            ("rf", 1.5),
            ("adverse_fill_prob", 2.0),
            ("signal_offset_ms", -1),
            ("post_signal_taker_mult", -0.5),
            ("winner_queue_threshold", -1.0),
        ],
    )
    def test_out_of_bounds_raises(self, field, value):
        with pytest.raises(ConfigurationError):
            FillModel(**{field: value})


class TestHelpers:
    """Tests for module-level helpers."""

    def test_background_probability_formula(self):
        assert background_fill_probability(0.1, 2.0) == pytest.approx(1 - 0.9**2)

    def test_background_probability_zero_elapsed(self):
        assert background_fill_probability(0.5, 0.0) == 0.0

    def test_background_probability_certain(self):
        assert background_fill_probability(1.0, 0.5) == 1.0

    def test_taker_volume_is_depth_decrease(self):
        prev = make_book(depth_049=100.0)
        curr = make_book(depth_049=60.0)
        assert estimate_taker_volume(prev, curr, 0.49) == 40.0

    def test_taker_volume_ignores_depth_increase(self):
        prev = make_book(depth_049=60.0)
        curr = make_book(depth_049=100.0)
        assert estimate_taker_volume(prev, curr, 0.49) == 0.0

    def test_adverse_when_ask_reaches_bid(self):
        assert is_adverse_tick(make_book(best_ask=0.49), 0.49)
        assert is_adverse_tick(make_book(best_ask=0.48), 0.49)
        assert not is_adverse_tick(make_book(best_ask=0.50), 0.49)

    def test_adverse_when_bids_vanish(self):
        assert is_adverse_tick(make_book(total_bid_depth=0.0), 0.49)

    def test_unreported_bid_depth_is_not_adverse(self):
        book = SideBook(best_bid=0.49, best_ask=0.52, depth=(PriceLevel(0.49, 100.0),))
        assert book.total_bid_depth is None
        assert not is_adverse_tick(book, 0.49)


class TestEffectiveRate:
    def test_rate_boosted_after_signal(self):
        model = FillModel(rf=0.1, signal_offset_ms=1000, post_signal_taker_mult=2.0)
        assert model.effective_rf(999) == 0.1
        assert model.effective_rf(1000) == pytest.approx(0.2)

    def test_boosted_rate_capped_at_one(self):
        model = FillModel(rf=0.6, signal_offset_ms=0, post_signal_taker_mult=3.0)
        assert model.effective_rf(0) == 1.0


class TestCreateOrder:
    def test_queue_from_own_side_depth(self):
        model = FillModel()
        snap = make_snapshot(yes=make_book(depth_049=120.0), no=make_book(depth_049=30.0))

        yes_order = model.create_order(1, PlaceBid(Side.YES, 0.49, 10.0), snap, tick=0)
        no_order = model.create_order(2, PlaceBid(Side.NO, 0.49, 10.0), snap, tick=0)

        assert yes_order.queue_ahead == 120.0
        assert no_order.queue_ahead == 30.0
        assert yes_order.placed_tick == 0


class TestResolveTick:
    """Tests for the three fill rules."""

    def test_queue_advances_by_taker_volume(self):
        model = FillModel(rf=0.0)
        order = model.create_order(1, PlaceBid(Side.YES, 0.49, 10.0), make_snapshot(), tick=0)
        prev = make_snapshot(0, yes=make_book(depth_049=100.0))
        curr = make_snapshot(1000, yes=make_book(depth_049=70.0))

        fill = model.resolve_tick(order, prev, curr, 1.0, np.random.default_rng(0), tick=1)

        assert fill is None
        assert order.queue_position == 70.0

    def test_adverse_tick_sweeps_queue_and_fills(self):
        model = FillModel(rf=0.0, adverse_fill_prob=1.0)
        order = model.create_order(1, PlaceBid(Side.YES, 0.49, 10.0), make_snapshot(), tick=0)
        curr = make_snapshot(1000, yes=make_book(best_ask=0.49, best_ask_size=150.0))

        fill = model.resolve_tick(order, make_snapshot(), curr, 1.0, FixedRng(0.5), tick=4)

        assert fill is not None
        assert fill.trigger is FillTrigger.ADVERSE_TICK
        assert fill.size == 10.0
        assert fill.price == 0.49
        assert fill.tick == 4
        assert order.is_filled

    def test_adverse_tick_with_queue_left_does_not_fill(self):
        """An adverse tick that leaves shares ahead never falls through to background flow."""
        model = FillModel(rf=1.0, adverse_fill_prob=1.0)
        order = model.create_order(1, PlaceBid(Side.YES, 0.49, 10.0), make_snapshot(), tick=0)
        curr = make_snapshot(1000, yes=make_book(best_ask=0.49, best_ask_size=30.0))
        rng = FixedRng(0.0)

        fill = model.resolve_tick(order, make_snapshot(), curr, 1.0, rng, tick=1)

        assert fill is None
        assert order.queue_position == 70.0
        assert rng.calls == 0

    def test_zero_bid_depth_clears_queue(self):
        model = FillModel(rf=0.0, adverse_fill_prob=1.0)
        order = model.create_order(1, PlaceBid(Side.YES, 0.49, 10.0), make_snapshot(), tick=0)
        curr = make_snapshot(1000, yes=make_book(total_bid_depth=0.0))

        fill = model.resolve_tick(order, make_snapshot(), curr, 1.0, FixedRng(0.5), tick=1)

        assert order.queue_position == 0.0
        assert fill is not None and fill.is_adverse

    def test_adverse_fill_probability_can_miss(self):
        model = FillModel(rf=1.0, adverse_fill_prob=0.5)
        order = model.create_order(1, PlaceBid(Side.YES, 0.49, 10.0), make_snapshot(), tick=0)
        curr = make_snapshot(1000, yes=make_book(best_ask=0.49, best_ask_size=500.0))

        fill = model.resolve_tick(order, make_snapshot(), curr, 1.0, FixedRng(0.9), tick=1)

        assert fill is None
        assert order.is_open

    def test_background_flow_fill(self):
        model = FillModel(rf=0.5, signal_offset_ms=10**9)
        order = model.create_order(1, PlaceBid(Side.YES, 0.49, 10.0), make_snapshot(), tick=0)

        fill = model.resolve_tick(
            order, make_snapshot(0), make_snapshot(1000), 1.0, FixedRng(0.4), tick=1
        )

        assert fill is not None
        assert fill.trigger is FillTrigger.BACKGROUND_FLOW
        assert fill.size == 10.0
        assert fill.price == 0.49
        assert fill.offset_ms == 1000

    def test_background_flow_miss(self):
        model = FillModel(rf=0.5, signal_offset_ms=10**9)
        order = model.create_order(1, PlaceBid(Side.YES, 0.49, 10.0), make_snapshot(), tick=0)

        fill = model.resolve_tick(
            order, make_snapshot(0), make_snapshot(1000), 1.0, FixedRng(0.6), tick=1
        )

        assert fill is None

    def test_zero_elapsed_never_background_fills(self):
        model = FillModel(rf=1.0)
        order = model.create_order(1, PlaceBid(Side.YES, 0.49, 10.0), make_snapshot(), tick=0)
        snap = make_snapshot(0)

        assert model.resolve_tick(order, snap, snap, 0.0, FixedRng(0.0), tick=0) is None

    def test_closed_order_is_ignored(self):
        model = FillModel(rf=1.0)
        order = model.create_order(1, PlaceBid(Side.YES, 0.49, 10.0), make_snapshot(), tick=0)
        order.cancel()

        fill = model.resolve_tick(
            order, make_snapshot(0), make_snapshot(1000), 1.0, FixedRng(0.0), tick=1
        )

        assert fill is None

    def test_queue_monotone_over_random_books(self):
        """Queue position never increases across arbitrary depth changes."""
        model = FillModel(rf=0.0, adverse_fill_prob=0.0)
        rng = np.random.default_rng(11)
        order = model.create_order(
            1, PlaceBid(Side.YES, 0.49, 10.0), make_snapshot(yes=make_book(500.0)), tick=0
        )
        prev = make_snapshot(0, yes=make_book(500.0))
        last = order.queue_position
        for i in range(1, 200):
            curr = make_snapshot(
                i * 1000,
                yes=make_book(
                    depth_049=float(rng.uniform(0, 600)),
                    best_ask=float(rng.choice([0.49, 0.52])),
                    best_ask_size=float(rng.uniform(0, 20)),
                ),
            )
            model.resolve_tick(order, prev, curr, 1.0, rng, tick=i)
            assert 0.0 <= order.queue_position <= last
            last = order.queue_position
            prev = curr


class TestAdverseSelectionFilter:
    """Post-signal fills on the winner only count near the front of the queue."""

    def make_fill(self, queue_position: float, offset_ms: int):
        order = Order(
            order_id=1,
            side=Side.YES,
            price=0.49,
            size=10.0,
            placed_tick=0,
            placed_offset_ms=5000,
            queue_ahead=200.0,
            queue_position=queue_position,
        )
        fill = Fill(
            order_id=1,
            side=Side.YES,
            tick=10,
            offset_ms=offset_ms,
            price=0.49,
            size=10.0,
            trigger=FillTrigger.BACKGROUND_FLOW,
        )
        return order, fill

    def test_pre_signal_winner_counts(self):
        order, fill = self.make_fill(queue_position=200.0, offset_ms=80_000)
        assert FillModel().adverse_selection_filter(order, fill, is_winner=True)

    def test_pre_signal_loser_counts(self):
        order, fill = self.make_fill(queue_position=200.0, offset_ms=80_000)
        assert FillModel().adverse_selection_filter(order, fill, is_winner=False)

    def test_post_signal_winner_front_of_queue_counts(self):
        order, fill = self.make_fill(queue_position=30.0, offset_ms=100_000)
        assert FillModel().adverse_selection_filter(order, fill, is_winner=True)

    def test_post_signal_winner_deep_in_queue_dropped(self):
        order, fill = self.make_fill(queue_position=200.0, offset_ms=100_000)
        assert not FillModel().adverse_selection_filter(order, fill, is_winner=True)

    def test_post_signal_loser_always_counts(self):
        order, fill = self.make_fill(queue_position=500.0, offset_ms=100_000)
        assert FillModel().adverse_selection_filter(order, fill, is_winner=False)

    def test_threshold_is_configurable(self):
        order, fill = self.make_fill(queue_position=200.0, offset_ms=100_000)
        model = FillModel(winner_queue_threshold=250.0)
        assert model.adverse_selection_filter(order, fill, is_winner=True)
