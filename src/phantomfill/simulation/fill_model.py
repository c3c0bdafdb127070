"""Probabilistic fill model for resting limit bids.

Decides, tick by tick, whether a resting bid in a prediction market would
realistically have been executed. The model follows three rules, evaluated in
priority order after the order's queue position has been advanced by observed
taker volume:

1. Adverse tick: the same outcome's best ask crossed down to (or through) the
   bid, or the side's bids vanished entirely. The sweep volume is removed from
   the queue and, once nothing is left ahead, the order fills with probability
   ``adverse_fill_prob``. An adverse tick never falls through to rule 2.
2. Background flow: Poisson-style taker arrival with per-second rate ``rf``,
   giving ``1 - (1 - rf) ** elapsed_seconds`` for the tick.
3. Post-signal boost: once the snapshot offset reaches ``signal_offset_ms``,
   informed takers arrive and ``rf`` is multiplied by
   ``post_signal_taker_mult`` (capped at 1).

Queue position is estimated once at placement as the cumulative bid depth at
the order's price on its own side of the book.

After the window resolves, the adverse-selection filter decides which fills
count toward realistic PnL. Informed takers only sell the winning side to
bids near the front of the queue, so a post-signal fill on the winner counts
only when fewer than ``winner_queue_threshold`` shares were still ahead of it.
Pre-signal fills and losing fills always count.

Example:
    >>> import numpy as np
    >>> from phantomfill.simulation import FillModel, PlaceBid
    >>> from phantomfill.core.models import Side
    >>>
    >>> model = FillModel(rf=0.05)
    >>> order = model.create_order(1, PlaceBid(Side.YES, 0.49, 10.0), snapshot, tick=0)
    >>> fill = model.resolve_tick(order, prev, curr, 1.0, np.random.default_rng(7), tick=1)
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from phantomfill.core.exceptions import ConfigurationError
from phantomfill.core.models import Side
from phantomfill.simulation.events import (
    BookSnapshot,
    Fill,
    FillTrigger,
    Order,
    PlaceBid,
    SideBook,
)

logger = logging.getLogger(__name__)

_PRICE_EPSILON = 1e-9


class FillModelConfig(BaseModel):
    """Calibrated fill model constants.

    Attributes:
        rf: Background taker arrival rate per second (0-1)
        adverse_fill_prob: Fill probability once an adverse tick clears the queue
        signal_offset_ms: Offset at which informed flow starts
        post_signal_taker_mult: Multiplier applied to ``rf`` after the signal
        winner_queue_threshold: Queue ahead below which a post-signal winning
            fill is believed
    """

    model_config = ConfigDict(frozen=True)

    rf: float = Field(default=0.02, ge=0.0, le=1.0)
    adverse_fill_prob: float = Field(default=0.99, ge=0.0, le=1.0)
    signal_offset_ms: int = Field(default=90_000, ge=0)
    post_signal_taker_mult: float = Field(default=1.8, ge=0.0)
    winner_queue_threshold: float = Field(default=50.0, ge=0.0)


def build_fill_config(**values) -> FillModelConfig:
    """Build a FillModelConfig, reporting bad values as ConfigurationError."""
    try:
        return FillModelConfig(**values)
    except ValidationError as e:
        raise ConfigurationError(f"invalid fill model parameters: {e}") from e


def background_fill_probability(rf: float, elapsed_seconds: float) -> float:
    """Probability that at least one taker reaches the order during the tick.

    Returns 0.0 for non-positive elapsed time.
    """
    if elapsed_seconds <= 0 or rf <= 0:
        return 0.0
    if rf >= 1.0:
        return 1.0
    return float(1.0 - (1.0 - rf) ** elapsed_seconds)


def estimate_taker_volume(prev_book: SideBook, curr_book: SideBook, price: float) -> float:
    """Shares removed at ``price`` between two snapshots.

    Depth increases are new bids joining behind us and count as zero.
    """
    decrease = prev_book.bid_depth_at(price) - curr_book.bid_depth_at(price)
    return max(0.0, decrease)


def bids_emptied(book: SideBook) -> bool:
    """True if the book reports no resting bids at all.

    An unreported total (None) is unknown, not empty.
    """
    return book.total_bid_depth is not None and book.total_bid_depth <= 0


def is_adverse_tick(book: SideBook, price: float) -> bool:
    """True if the ask crossed down to the bid or the bid side emptied."""
    if bids_emptied(book):
        return True
    return book.best_ask is not None and book.best_ask <= price + _PRICE_EPSILON


class FillModel:
    """DeLise three-rule fill model.

    The model itself is stateless between calls; all per-order state lives on
    the Order, and randomness comes from the generator passed to
    ``resolve_tick``. One instance can therefore be shared by every replay.

    Attributes:
        config: Calibrated constants
    """

    name = "delise-3rule"

    def __init__(self, config: Optional[FillModelConfig] = None, **overrides):
        """Initialize the fill model.

        Args:
            config: Complete configuration. If None, defaults are used.
            **overrides: Individual fields overriding ``config``
                (``rf``, ``adverse_fill_prob``, ``signal_offset_ms``,
                ``post_signal_taker_mult``, ``winner_queue_threshold``).

        Raises:
            ConfigurationError: If any value is out of bounds.
        """
        base = config.model_dump() if config is not None else {}
        base.update(overrides)
        self.config = build_fill_config(**base)

    def effective_rf(self, offset_ms: int) -> float:
        """Taker arrival rate in force at the given snapshot offset."""
        cfg = self.config
        if offset_ms >= cfg.signal_offset_ms:
            return min(1.0, cfg.rf * cfg.post_signal_taker_mult)
        return cfg.rf

    def queue_position(self, snapshot: BookSnapshot, side: Side, price: float) -> float:
        """Shares resting ahead of a new bid at ``price``."""
        return snapshot.side(side).bid_depth_at(price)

    def create_order(
        self,
        order_id: int,
        action: PlaceBid,
        snapshot: BookSnapshot,
        tick: int,
    ) -> Order:
        """Create an Order for an accepted bid with its initial queue estimate."""
        queue_ahead = self.queue_position(snapshot, action.side, action.price)
        return Order(
            order_id=order_id,
            side=action.side,
            price=action.price,
            size=action.size,
            placed_tick=tick,
            placed_offset_ms=snapshot.offset_ms,
            queue_ahead=queue_ahead,
        )

    def resolve_tick(
        self,
        order: Order,
        prev_snapshot: BookSnapshot,
        curr_snapshot: BookSnapshot,
        elapsed_seconds: float,
        rng: np.random.Generator,
        tick: int = 0,
    ) -> Optional[Fill]:
        """Resolve one tick for a resting order.

        Advances the order's queue position and, if one of the rules fires,
        records a fill of the full remaining size at the limit price.

        Args:
            order: Open order (mutated in place)
            prev_snapshot: Snapshot at the previous tick
            curr_snapshot: Snapshot at this tick
            elapsed_seconds: Time between the two snapshots
            rng: Random generator owned by the current replay
            tick: Index of ``curr_snapshot`` within the window

        Returns:
            Fill if the order executed this tick, None otherwise.
        """
        if not order.is_open:
            return None

        prev_book = prev_snapshot.side(order.side)
        curr_book = curr_snapshot.side(order.side)

        order.advance_queue(estimate_taker_volume(prev_book, curr_book, order.price))

        # Rule 1: adverse tick
        if is_adverse_tick(curr_book, order.price):
            if bids_emptied(curr_book):
                order.advance_queue(order.queue_position)
            else:
                order.advance_queue(curr_book.best_ask_size or 0.0)

            if order.queue_position > 0:
                return None
            if rng.random() < self.config.adverse_fill_prob:
                return self._fill(order, curr_snapshot, tick, FillTrigger.ADVERSE_TICK)
            return None

        # Rules 2 and 3: background flow, boosted after the signal
        rf = self.effective_rf(curr_snapshot.offset_ms)
        probability = background_fill_probability(rf, elapsed_seconds)
        if probability > 0 and rng.random() < probability:
            return self._fill(order, curr_snapshot, tick, FillTrigger.BACKGROUND_FLOW)
        return None

    def adverse_selection_filter(self, order: Order, fill: Fill, is_winner: bool) -> bool:
        """Whether a fill counts toward realistic PnL.

        ``order.queue_position`` is read as the queue still ahead when the
        fill happened; orders fill in full, so it is frozen from then on.

        Args:
            order: Order the fill belongs to
            fill: The fill to judge
            is_winner: True if the order's side won the window

        Returns:
            False only for a post-signal winning fill that was too deep in
            the queue.
        """
        if fill.offset_ms < self.config.signal_offset_ms or not is_winner:
            return True
        return order.queue_position < self.config.winner_queue_threshold

    def _fill(
        self,
        order: Order,
        snapshot: BookSnapshot,
        tick: int,
        trigger: FillTrigger,
    ) -> Fill:
        size = order.record_fill(order.remaining)
        logger.debug(
            f"Order {order.order_id} ({order.side.value} @ {order.price}) filled "
            f"{size} at tick {tick} via {trigger.value}"
        )
        return Fill(
            order_id=order.order_id,
            side=order.side,
            tick=tick,
            offset_ms=snapshot.offset_ms,
            price=order.price,
            size=size,
            trigger=trigger,
        )
