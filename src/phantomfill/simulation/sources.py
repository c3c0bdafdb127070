"""Window sources feeding the replay runner.

A source hands out windows one at a time through ``next_window()`` and
returns None once it is exhausted. Sources are also iterable.

Raw capture data arrives as one tick per side per moment; ``build_window``
merges those into the two-sided snapshots the replay engine consumes.
"""

import logging
from itertools import groupby
from typing import Iterable, Iterator, List, Optional, Protocol, Sequence, runtime_checkable

from phantomfill.core.exceptions import DataExhausted
from phantomfill.core.models import BookTick, Market, Side
from phantomfill.simulation.events import BookSnapshot, PriceLevel, SideBook, Window

logger = logging.getLogger(__name__)


@runtime_checkable
class WindowSource(Protocol):
    """Anything that yields replayable windows."""

    def next_window(self) -> Optional[Window]:
        """Return the next window, or None when the source is exhausted."""
        ...

    def __iter__(self) -> Iterator[Window]:
        ...


class InMemoryWindowSource:
    """Window source over an in-memory sequence."""

    def __init__(self, windows: Iterable[Window]):
        self._windows: List[Window] = list(windows)
        self._position = 0

    def next_window(self) -> Optional[Window]:
        if self._position >= len(self._windows):
            return None
        window = self._windows[self._position]
        self._position += 1
        return window

    def __iter__(self) -> Iterator[Window]:
        while True:
            window = self.next_window()
            if window is None:
                return
            yield window

    def __len__(self) -> int:
        return len(self._windows)


def require_windows(source: "WindowSource | Iterable[Window]") -> List[Window]:
    """Drain a source into a list.

    Raises:
        DataExhausted: If the source yields no windows at all.
    """
    if isinstance(source, WindowSource):
        windows = []
        while True:
            window = source.next_window()
            if window is None:
                break
            windows.append(window)
    else:
        windows = list(source)

    if not windows:
        raise DataExhausted("data source yielded no windows")
    logger.info(f"Loaded {len(windows)} windows")
    return windows


def tick_to_side_book(tick: BookTick) -> SideBook:
    return SideBook(
        best_bid=tick.best_bid,
        best_bid_size=tick.best_bid_size,
        best_ask=tick.best_ask,
        best_ask_size=tick.best_ask_size,
        depth=tuple(PriceLevel(price, size) for price, size in tick.depth),
        total_bid_depth=tick.total_bid_depth,
        total_ask_depth=tick.total_ask_depth,
    )


def ticks_to_snapshots(market_id: str, ticks: Sequence[BookTick]) -> List[BookSnapshot]:
    """Merge per-side ticks into combined two-sided snapshots.

    Ticks sharing an ``offset_ms`` become one snapshot. A side with no tick
    at an offset keeps its previous state (before its first tick it is empty,
    with an unreported total depth).
    Reference and oracle prices come from the first tick at the offset that
    carries one.

    Args:
        market_id: Window the ticks belong to
        ticks: Ticks for both sides, in any order

    Returns:
        Snapshots in ascending offset order.
    """
    ordered = sorted(ticks, key=lambda t: (t.offset_ms, t.side is not Side.YES))

    snapshots: List[BookSnapshot] = []
    books = {Side.YES: SideBook(), Side.NO: SideBook()}
    for offset, group in groupby(ordered, key=lambda t: t.offset_ms):
        group = list(group)
        reference = None
        oracle = None
        for tick in group:
            books[tick.side] = tick_to_side_book(tick)
            if reference is None:
                reference = tick.reference_price
            if oracle is None:
                oracle = tick.oracle_price

        snapshots.append(
            BookSnapshot(
                market_id=market_id,
                offset_ms=offset,
                timestamp=group[0].timestamp,
                yes=books[Side.YES],
                no=books[Side.NO],
                oracle_price=oracle or 0.0,
                reference_price=reference or 0.0,
            )
        )
    return snapshots


def build_window(market: Market, ticks: Sequence[BookTick]) -> Window:
    """Window for a market from its raw ticks."""
    return Window(market=market, snapshots=tuple(ticks_to_snapshots(market.market_id, ticks)))
