"""Tick-driven replay of one strategy over one market window.

The engine walks a window's snapshots in order. At every tick it asks the
strategy for actions, validates and applies them, then lets the fill model
resolve every open order. Strategies only ever see the current snapshot, and
the window's outcome is read after the last tick, so there is no lookahead.

Per tick:
    1. ``on_tick(snapshot)`` returns actions
    2. Each action is validated; invalid ones are discarded and counted
    3. ``PlaceBid`` opens an order unless the side already had one this window;
       ``Cancel`` cancels the side's open order; a filled order is kept
    4. Open orders are resolved: orders placed this tick against
       ``(curr, curr, 0s)``, older ones against ``(prev, curr, dt)``

Strategy exceptions abort the window and produce a failed ReplayResult; the
caller moves on to the next window.

Example:
    >>> import numpy as np
    >>> from phantomfill.simulation import FillModel, ReplayEngine
    >>>
    >>> engine = ReplayEngine(fill_model=FillModel())
    >>> result = engine.run_window(window, strategy, np.random.default_rng(42))
    >>> print(f"naive={result.naive_pnl:+.2f} realistic={result.realistic_pnl:+.2f}")
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from numbers import Real
from typing import TYPE_CHECKING, Any, Optional

import numpy as np

from phantomfill.core.exceptions import InvalidAction, StrategyFault
from phantomfill.core.models import Side
from phantomfill.simulation.events import (
    Action,
    BookSnapshot,
    Cancel,
    Fill,
    Order,
    PlaceBid,
    Window,
)
from phantomfill.simulation.fill_model import FillModel
from phantomfill.simulation.results import ReplayResult, position_pnl

if TYPE_CHECKING:
    from phantomfill.strategies.base import Strategy

logger = logging.getLogger(__name__)


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def validate_action(action: Any) -> Action:
    """Check that ``action`` belongs to the action vocabulary.

    Raises:
        InvalidAction: Wrong type, unknown side, non-finite or non-positive
            price/size, or a price above 1.0.
    """
    if not isinstance(action, (PlaceBid, Cancel)):
        raise InvalidAction(action, "not a PlaceBid or Cancel")
    if not isinstance(action.side, Side):
        raise InvalidAction(action, f"unknown side {action.side!r}")
    if isinstance(action, Cancel):
        return action

    for name in ("price", "size"):
        value = getattr(action, name)
        if not _is_number(value) or not math.isfinite(value):
            raise InvalidAction(action, f"{name} must be a finite number")
        if value <= 0:
            raise InvalidAction(action, f"{name} must be positive")
    if action.price > 1.0:
        raise InvalidAction(action, "price above 1.0")
    return action


@dataclass
class _WindowState:
    """Mutable bookkeeping for one replay."""

    orders: list[Order] = field(default_factory=list)
    by_side: dict[Side, Order] = field(default_factory=dict)
    accepted: list[Action] = field(default_factory=list)
    fills: list[Fill] = field(default_factory=list)
    invalid: int = 0


class ReplayEngine:
    """Replay strategies against historical windows with probabilistic fills.

    The engine holds no per-window state, so one instance can serve many
    concurrent replays as long as each gets its own strategy and generator.

    Attributes:
        fill_model: Model deciding whether resting orders fill
    """

    def __init__(self, fill_model: Optional[FillModel] = None):
        """Initialize the replay engine.

        Args:
            fill_model: FillModel for fill decisions. If None, creates a
                default FillModel instance.
        """
        self.fill_model = fill_model or FillModel()

    def run_window(
        self,
        window: Window,
        strategy: Strategy,
        rng: np.random.Generator,
    ) -> ReplayResult:
        """Replay one window.

        ``on_reset`` is called exactly once, whether the replay completes or
        fails.

        Args:
            window: Market and snapshots to replay
            strategy: Strategy instance owned by this replay
            rng: Random generator owned by this replay

        Returns:
            ReplayResult with status ``completed`` or ``failed``.
        """
        name = strategy.name
        market = window.market
        error = None
        if not window.snapshots:
            error = "window has no snapshots"
        elif window.outcome is None:
            error = "window has no resolved outcome"

        state = None
        fault = None
        try:
            if error is None:
                state = self._drive(window, strategy, rng)
        except StrategyFault as e:
            fault = e
        finally:
            reset_fault = self._reset(strategy)

        fault = fault or reset_fault
        if fault is not None:
            logger.warning(f"Window {market.market_id} aborted: {fault}")
            return ReplayResult.failed(
                market.market_id, name, str(fault), market.category, window.outcome
            )
        if error is not None:
            logger.warning(f"Window {market.market_id} skipped: {error}")
            return ReplayResult.failed(
                market.market_id, name, error, market.category, window.outcome
            )
        return self._settle(window, name, state)

    def _drive(
        self,
        window: Window,
        strategy: Strategy,
        rng: np.random.Generator,
    ) -> _WindowState:
        state = _WindowState()
        snapshots = window.snapshots

        _invoke(strategy, "on_market_open", snapshots[0])

        prev = snapshots[0]
        for tick, snap in enumerate(snapshots):
            elapsed = (snap.offset_ms - prev.offset_ms) / 1000.0
            actions = _invoke(strategy, "on_tick", snap)
            if actions is None:
                actions = ()
            elif not isinstance(actions, (list, tuple)):
                raise StrategyFault(
                    strategy.name,
                    "on_tick",
                    TypeError(f"expected a list of actions, got {type(actions).__name__}"),
                )

            placed_now = set()
            for raw in actions:
                try:
                    action = validate_action(raw)
                except InvalidAction as e:
                    logger.warning(f"{window.market_id} tick {tick}: {e}")
                    state.invalid += 1
                    continue
                order = self._apply(action, state, snap, tick)
                if order is not None:
                    placed_now.add(order.order_id)

            for order in state.orders:
                if not order.is_open:
                    continue
                if order.order_id in placed_now:
                    fill = self.fill_model.resolve_tick(order, snap, snap, 0.0, rng, tick)
                else:
                    fill = self.fill_model.resolve_tick(order, prev, snap, elapsed, rng, tick)
                if fill is not None:
                    state.fills.append(fill)

            prev = snap

        return state

    def _apply(
        self,
        action: Action,
        state: _WindowState,
        snapshot: BookSnapshot,
        tick: int,
    ) -> Optional[Order]:
        """Apply a validated action; return the order it created, if any."""
        if isinstance(action, PlaceBid):
            # One order per side per window
            if action.side in state.by_side:
                return None
            order = self.fill_model.create_order(len(state.orders) + 1, action, snapshot, tick)
            state.orders.append(order)
            state.by_side[action.side] = order
            state.accepted.append(action)
            return order

        order = state.by_side.get(action.side)
        if order is None or not order.is_open:
            return None
        order.cancel()
        state.accepted.append(action)
        return None

    def _reset(self, strategy: Strategy) -> Optional[StrategyFault]:
        try:
            _invoke(strategy, "on_reset")
        except StrategyFault as e:
            return e
        return None

    def _settle(self, window: Window, strategy_name: str, state: _WindowState) -> ReplayResult:
        """Value the replay against the window's outcome."""
        outcome = window.outcome
        standing = [o for o in state.orders if not o.cancelled]

        orders = {o.order_id: o for o in state.orders}
        counted = []
        for f in state.fills:
            if self.fill_model.adverse_selection_filter(
                orders[f.order_id], f, outcome.matches(f.side)
            ):
                counted.append(f)
            else:
                logger.debug(
                    f"{window.market_id}: {f.side.label} fill at {f.offset_ms} ms "
                    f"dropped by adverse selection"
                )

        naive_pnl = sum(position_pnl(o.side, o.price, o.size, outcome) for o in standing)
        realistic_pnl = sum(position_pnl(f.side, f.price, f.size, outcome) for f in counted)

        requested = sum(o.size for o in state.orders)
        filled = sum(f.size for f in state.fills)
        fill_rate = filled / requested if requested > 0 else 0.0

        naive_correct = any(outcome.matches(o.side) for o in standing)

        if state.fills:
            queue_ahead = orders[state.fills[0].order_id].queue_ahead
        elif standing:
            queue_ahead = standing[0].queue_ahead
        else:
            queue_ahead = 0.0

        snapshots = window.snapshots
        result = ReplayResult(
            market_id=window.market_id,
            strategy_name=strategy_name,
            category=window.market.category,
            outcome=outcome,
            naive_pnl=float(naive_pnl),
            realistic_pnl=float(realistic_pnl),
            fill_rate=fill_rate,
            naive_correct=naive_correct,
            correct=any(outcome.matches(f.side) for f in counted),
            predicted_side=standing[0].side if standing else None,
            actions=tuple(state.accepted),
            fills=tuple(state.fills),
            queue_ahead=queue_ahead,
            first_order_offset_ms=state.orders[0].placed_offset_ms if state.orders else None,
            first_fill_offset_ms=state.fills[0].offset_ms if state.fills else None,
            invalid_actions=state.invalid,
            reference_open=snapshots[0].reference_price or None,
            reference_close=snapshots[-1].reference_price or None,
        )

        logger.debug(
            f"Window {window.market_id} ({outcome.label}): "
            f"naive={result.naive_pnl:+.2f} realistic={result.realistic_pnl:+.2f} "
            f"fills={len(result.fills)}"
        )
        return result


def _invoke(strategy: Strategy, callback: str, *args: Any) -> Any:
    """Call a strategy callback, wrapping any exception as StrategyFault."""
    try:
        return getattr(strategy, callback)(*args)
    except StrategyFault:
        raise
    except Exception as e:
        raise StrategyFault(strategy.name, callback, e) from e
