"""Fade momentum: bet against streaks of same-direction outcomes.

Markets are grouped by (category, duration) and walked in open-time order.
When the last ``min_streak`` to ``max_streak`` resolved windows all went the
same way, the next window in the group gets a signal for the opposite side.
Consecutive windows further apart than ``duration + 60`` seconds break a
streak. Signals depend only on windows that resolved before the one they
apply to.
"""

from collections import defaultdict, deque
from typing import Dict, Iterable, List, Mapping, Optional

from phantomfill.core.models import Market, Outcome, Side
from phantomfill.simulation.events import Action, BookSnapshot, PlaceBid
from phantomfill.strategies.base import Strategy, StrategyParams

_GAP_TOLERANCE_SECS = 60


def compute_fade_signals(
    markets: Iterable[Market],
    min_streak: int = 3,
    max_streak: int = 6,
) -> Dict[str, Side]:
    """
    Map market ids to the side a fade strategy should bid.

    Args:
        markets: Markets with resolved outcomes (unresolved ones are ignored)
        min_streak: Shortest streak that triggers a fade
        max_streak: Longest streak that still triggers a fade

    Returns:
        Dict of market_id -> side to bid in that window
    """
    groups: Dict[tuple, List[Market]] = defaultdict(list)
    for market in markets:
        if market.outcome is not None:
            groups[(market.category, market.duration_secs)].append(market)

    signals: Dict[str, Side] = {}
    for (_, duration), group in groups.items():
        group.sort(key=lambda m: m.open_time)
        history: deque = deque(maxlen=max_streak + 5)

        for i, market in enumerate(group):
            direction = market.outcome
            history.append((market.open_time, direction))

            streak = 0
            later_open = None
            for open_time, past in reversed(history):
                if past is not direction:
                    break
                if later_open is not None:
                    gap = (later_open - open_time).total_seconds()
                    if gap > duration + _GAP_TOLERANCE_SECS:
                        break
                later_open = open_time
                streak += 1

            if min_streak <= streak <= max_streak and i + 1 < len(group):
                # Streak up -> bet down, and vice versa
                fade = Side.NO if direction is Outcome.YES else Side.YES
                signals[group[i + 1].market_id] = fade

    return signals


class FadeMomentum(Strategy):
    name = "fade"
    description = "Fade momentum: bet against streaks of consecutive same-direction candles"

    def __init__(
        self,
        params: Optional[StrategyParams] = None,
        signals: Optional[Mapping[str, Side]] = None,
    ):
        super().__init__(params)
        self.signals: Mapping[str, Side] = signals or {}
        self._signal: Optional[Side] = None
        self._acted = False

    def on_market_open(self, snapshot: BookSnapshot) -> None:
        self._signal = self.signals.get(snapshot.market_id)

    def on_tick(self, snapshot: BookSnapshot) -> List[Action]:
        if self._acted:
            return []
        self._acted = True
        if self._signal is None:
            return []
        return [PlaceBid(self._signal, self.params.bid_price, self.params.size)]

    def on_reset(self) -> None:
        self._signal = None
        self._acted = False
