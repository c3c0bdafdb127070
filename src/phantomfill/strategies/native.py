"""Built-in strategies for up/down prediction market windows.

Signal-driven strategies read momentum from the oracle price: the move from
the window's opening oracle price to the current one, in basis points. A move
smaller than ``min_bps`` (or a missing oracle price) is no signal.

spread_arb: Bid both sides at the first tick and hold.
momentum: At signal time, bid the side the oracle is moving toward.
post_cancel: Bid both sides at once, cancel the predicted loser at signal time.
depth: Momentum, confirmed by heavier bid depth on the predicted side.
last_15s: In the closing seconds, buy whichever side is bid at 98c or better.
gabagool: Buy both sides at separate moments while their bids sum below $1.
"""

from typing import List, Optional

from phantomfill.core.models import Side
from phantomfill.simulation.events import Action, BookSnapshot, Cancel, PlaceBid
from phantomfill.strategies.base import Strategy, StrategyParams


def momentum_bps(open_price: float, current_price: float) -> Optional[float]:
    """Oracle move since open in basis points, None if either price is absent."""
    if not open_price or not current_price:
        return None
    return (current_price - open_price) / open_price * 10_000.0


def signal_side(open_price: float, current_price: float, min_bps: float) -> Optional[Side]:
    """Side the oracle is moving toward, None for a weak or missing signal."""
    move = momentum_bps(open_price, current_price)
    if move is None or abs(move) < min_bps:
        return None
    return Side.YES if move > 0 else Side.NO


class SpreadArb(Strategy):
    name = "spread_arb"
    description = "Naive spread arb: bid both sides at T+0, never cancel"

    def __init__(self, params: Optional[StrategyParams] = None):
        super().__init__(params)
        self._placed = False

    def on_tick(self, snapshot: BookSnapshot) -> List[Action]:
        if self._placed:
            return []
        self._placed = True
        p = self.params
        return [
            PlaceBid(Side.YES, p.bid_price, p.size),
            PlaceBid(Side.NO, p.bid_price, p.size),
        ]

    def on_reset(self) -> None:
        self._placed = False


class _SignalStrategy(Strategy):
    """Shared state for strategies that act on the oracle signal."""

    def __init__(self, params: Optional[StrategyParams] = None):
        super().__init__(params)
        self._open_oracle = 0.0
        self._acted = False

    def on_market_open(self, snapshot: BookSnapshot) -> None:
        self._open_oracle = snapshot.oracle_price

    def at_signal_time(self, snapshot: BookSnapshot) -> bool:
        """True exactly once: the first tick at or after the signal offset."""
        if self._acted or snapshot.offset_ms < self.params.signal_offset_ms:
            return False
        self._acted = True
        return True

    def on_reset(self) -> None:
        self._open_oracle = 0.0
        self._acted = False


class Momentum(_SignalStrategy):
    name = "momentum"
    description = "Momentum signal: wait for oracle price movement, bet on predicted winner"

    def on_tick(self, snapshot: BookSnapshot) -> List[Action]:
        if not self.at_signal_time(snapshot):
            return []
        side = signal_side(self._open_oracle, snapshot.oracle_price, self.params.min_bps)
        if side is None:
            return []
        return [PlaceBid(side, self.params.bid_price, self.params.size)]


class PostCancel(_SignalStrategy):
    name = "post_cancel"
    description = (
        "Post both + cancel loser: bid both at T+0, cancel predicted loser at signal time"
    )

    def __init__(self, params: Optional[StrategyParams] = None):
        super().__init__(params)
        self._placed = False

    def on_tick(self, snapshot: BookSnapshot) -> List[Action]:
        p = self.params
        if not self._placed:
            self._placed = True
            return [
                PlaceBid(Side.YES, p.bid_price, p.size),
                PlaceBid(Side.NO, p.bid_price, p.size),
            ]

        if not self.at_signal_time(snapshot):
            return []

        side = signal_side(self._open_oracle, snapshot.oracle_price, p.min_bps)
        if side is None:
            # No conviction: pull both
            return [Cancel(Side.YES), Cancel(Side.NO)]
        return [Cancel(side.opposite)]

    def on_reset(self) -> None:
        super().on_reset()
        self._placed = False


class DepthMomentum(_SignalStrategy):
    name = "depth"
    description = "Depth + momentum: like momentum but also requires orderbook depth agreement"

    def on_tick(self, snapshot: BookSnapshot) -> List[Action]:
        if not self.at_signal_time(snapshot):
            return []

        p = self.params
        side = signal_side(self._open_oracle, snapshot.oracle_price, p.min_bps)
        if side is None:
            return []

        yes_depth = snapshot.yes.bid_depth_at(p.bid_price)
        no_depth = snapshot.no.bid_depth_at(p.bid_price)
        if yes_depth == no_depth:
            return []
        depth_side = Side.YES if yes_depth > no_depth else Side.NO
        if depth_side is not side:
            return []
        return [PlaceBid(side, p.bid_price, p.size)]


class Last15Seconds(Strategy):
    """Buy near-certain outcomes in the closing seconds.

    In the final ``trigger_before_close_ms`` of the window, bids at the
    observed best bid of whichever side is bid at ``min_bid`` or better
    (YES wins ties). Acts at most once per window.
    """

    name = "last_15s"
    description = "Last 15 Seconds: buy the side bid at 98c+ in the final 15 seconds"

    def __init__(
        self,
        params: Optional[StrategyParams] = None,
        min_bid: float = 0.98,
        window_duration_ms: int = 900_000,
        trigger_before_close_ms: int = 15_000,
    ):
        super().__init__(params)
        self.min_bid = min_bid
        self.window_duration_ms = window_duration_ms
        self.trigger_before_close_ms = trigger_before_close_ms
        self._acted = False

    def on_tick(self, snapshot: BookSnapshot) -> List[Action]:
        if self._acted:
            return []
        if snapshot.offset_ms < self.window_duration_ms - self.trigger_before_close_ms:
            return []

        yes_bid = snapshot.yes.best_bid or 0.0
        no_bid = snapshot.no.best_bid or 0.0
        if yes_bid >= self.min_bid and yes_bid >= no_bid:
            side, price = Side.YES, yes_bid
        elif no_bid >= self.min_bid:
            side, price = Side.NO, no_bid
        else:
            return []

        self._acted = True
        return [PlaceBid(side, price, self.params.size)]

    def on_reset(self) -> None:
        self._acted = False


class Gabagool(Strategy):
    """Combined-price arbitrage across the two sides.

    Whenever the two best bids sum below ``max_combined``, buys the cheaper
    side first (at its bid) and the other side as soon as it is bid, possibly
    on the same tick. Holding both legs pays out $1 at resolution.
    """

    name = "gabagool"
    description = (
        "Gabagool combined-price arb: buy YES+NO at different times when combined bid < $1.00"
    )

    def __init__(self, params: Optional[StrategyParams] = None, max_combined: float = 0.99):
        super().__init__(params)
        self.max_combined = max_combined
        self._placed: set[Side] = set()

    def on_tick(self, snapshot: BookSnapshot) -> List[Action]:
        if len(self._placed) == 2:
            return []

        yes_bid = snapshot.yes.best_bid or 0.0
        no_bid = snapshot.no.best_bid or 0.0
        if yes_bid + no_bid >= self.max_combined:
            return []

        bids = {Side.YES: yes_bid, Side.NO: no_bid}
        actions: List[Action] = []
        if not self._placed:
            first = Side.YES if 0 < yes_bid <= no_bid else Side.NO
            if bids[first] > 0:
                self._placed.add(first)
                actions.append(PlaceBid(first, bids[first], self.params.size))

        if len(self._placed) == 1:
            (held,) = self._placed
            other = held.opposite
            if bids[other] > 0:
                self._placed.add(other)
                actions.append(PlaceBid(other, bids[other], self.params.size))
        return actions

    def on_reset(self) -> None:
        self._placed = set()
