"""Event and state types for window replay.

Snapshots, windows, actions and fills are immutable (frozen dataclasses) so
they can be shared across concurrent replays. ``Order`` is the one mutable
type: it is owned by a single replay and only changed by the fill model
(queue advance, fills) and by cancellation.

Example:
    >>> from datetime import datetime, timezone
    >>> book = SideBook(
    ...     best_bid=0.49, best_bid_size=200.0,
    ...     best_ask=0.51, best_ask_size=100.0,
    ...     depth=(PriceLevel(0.49, 200.0),),
    ...     total_bid_depth=200.0, total_ask_depth=100.0,
    ... )
    >>> snap = BookSnapshot(
    ...     market_id="btc-updown-15m-1700000000",
    ...     offset_ms=0,
    ...     timestamp=datetime.now(timezone.utc),
    ...     yes=book,
    ...     no=book,
    ... )
    >>> snap.side(Side.YES).bid_depth_at(0.49)
    200.0
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from phantomfill.core.models import Market, Outcome, Side

_PRICE_EPSILON = 1e-9


@dataclass(frozen=True)
class PriceLevel:
    """Cumulative bid depth at a price level."""

    price: float
    cumulative_size: float


@dataclass(frozen=True)
class SideBook:
    """Book state for one outcome at a point in time.

    Attributes:
        best_bid: Best bid price, None if the bid side is empty
        best_bid_size: Size at the best bid
        best_ask: Best ask price, None if the ask side is empty
        best_ask_size: Size at the best ask
        depth: Cumulative bid depth at tracked price levels
        total_bid_depth: Total resting bid shares, None when not reported
        total_ask_depth: Total resting ask shares
    """

    best_bid: Optional[float] = None
    best_bid_size: Optional[float] = None
    best_ask: Optional[float] = None
    best_ask_size: Optional[float] = None
    depth: tuple[PriceLevel, ...] = ()
    total_bid_depth: Optional[float] = None
    total_ask_depth: float = 0.0

    def bid_depth_at(self, price: float) -> float:
        """Cumulative bid depth at ``price``.

        Uses the exact level when present, otherwise the nearest tracked level
        above the price. Returns 0.0 when no level qualifies.
        """
        for level in self.depth:
            if abs(level.price - price) < _PRICE_EPSILON:
                return level.cumulative_size

        above = [level for level in self.depth if level.price >= price]
        if not above:
            return 0.0
        return min(above, key=lambda level: level.price).cumulative_size


@dataclass(frozen=True)
class BookSnapshot:
    """Combined two-outcome orderbook state at one point in time.

    Attributes:
        market_id: Window the snapshot belongs to
        offset_ms: Milliseconds since window open
        timestamp: Absolute snapshot time
        yes: Book for the YES outcome
        no: Book for the NO outcome
        oracle_price: External reference signal (0.0 when absent)
        reference_price: Secondary reference price (0.0 when absent)
    """

    market_id: str
    offset_ms: int
    timestamp: datetime
    yes: SideBook
    no: SideBook
    oracle_price: float = 0.0
    reference_price: float = 0.0

    def side(self, side: Side) -> SideBook:
        """Book for the given outcome side."""
        return self.yes if side is Side.YES else self.no


@dataclass(frozen=True)
class Window:
    """One independent simulation episode: a market and its snapshots.

    The market's outcome is ground truth and is only read after replay
    finishes; strategies never see it.
    """

    market: Market
    snapshots: tuple[BookSnapshot, ...]

    @property
    def market_id(self) -> str:
        return self.market.market_id

    @property
    def outcome(self) -> Optional[Outcome]:
        return self.market.outcome

    def __len__(self) -> int:
        return len(self.snapshots)


@dataclass(frozen=True)
class PlaceBid:
    """Request a resting limit bid on ``side``."""

    side: Side
    price: float
    size: float


@dataclass(frozen=True)
class Cancel:
    """Cancel the resting order on ``side``."""

    side: Side


Action = Union[PlaceBid, Cancel]


class FillTrigger(str, Enum):
    """Which fill model rule produced a fill."""

    ADVERSE_TICK = "adverse_tick"
    BACKGROUND_FLOW = "background_flow"


@dataclass(frozen=True)
class Fill:
    """Execution of all or part of an order.

    Attributes:
        order_id: Order that was filled
        side: Outcome side of the order
        tick: Snapshot index within the window
        offset_ms: Snapshot offset from window open
        price: Execution price (always the order's limit)
        size: Shares filled
        trigger: Rule that produced the fill
    """

    order_id: int
    side: Side
    tick: int
    offset_ms: int
    price: float
    size: float
    trigger: FillTrigger

    @property
    def is_adverse(self) -> bool:
        return self.trigger is FillTrigger.ADVERSE_TICK


@dataclass
class Order:
    """A resting limit bid tracked through its lifecycle.

    Attributes:
        order_id: Sequential id within the window
        side: Outcome side
        price: Limit price
        size: Requested shares
        placed_tick: Snapshot index at placement
        placed_offset_ms: Offset at placement
        queue_ahead: Shares ahead of the order at placement
        queue_position: Shares still ahead; never increases
        filled_size: Shares filled so far
        cancelled: Set when the strategy cancels the order
    """

    order_id: int
    side: Side
    price: float
    size: float
    placed_tick: int
    placed_offset_ms: int
    queue_ahead: float
    queue_position: float = field(default=-1.0)
    filled_size: float = 0.0
    cancelled: bool = False

    def __post_init__(self) -> None:
        self.queue_ahead = max(0.0, self.queue_ahead)
        if self.queue_position < 0:
            self.queue_position = self.queue_ahead

    @property
    def remaining(self) -> float:
        return max(0.0, self.size - self.filled_size)

    @property
    def is_filled(self) -> bool:
        return self.remaining <= 0.0

    @property
    def is_open(self) -> bool:
        return not self.cancelled and not self.is_filled

    def advance_queue(self, consumed: float) -> None:
        """Reduce the queue ahead by ``consumed`` shares, clamped at zero."""
        if consumed <= 0:
            return
        self.queue_position = max(0.0, self.queue_position - consumed)

    def record_fill(self, size: float) -> float:
        """Apply a fill and return the size actually applied.

        The applied size never exceeds the remaining size.

        Raises:
            ValueError: If the order is already filled or cancelled.
        """
        if not self.is_open:
            raise ValueError(f"order {self.order_id} is not open")
        applied = min(size, self.remaining)
        self.filled_size += applied
        return applied

    def cancel(self) -> None:
        self.cancelled = True
