"""Core data models for market windows and raw book ticks."""

from datetime import datetime
from enum import Enum
from typing import Optional, List, Tuple

from pydantic import BaseModel, Field, computed_field


class Platform(str, Enum):
    """Supported prediction market platforms."""

    POLYMARKET = "polymarket"
    KALSHI = "kalshi"


class Side(str, Enum):
    """Binary outcome side an order can bid on."""

    YES = "yes"
    NO = "no"

    @property
    def opposite(self) -> "Side":
        return Side.NO if self is Side.YES else Side.YES

    @property
    def label(self) -> str:
        return self.value.upper()

    @classmethod
    def parse(cls, value: object) -> "Side":
        """Parse a side from an enum, or a case-insensitive yes/no/up/down string.

        Raises:
            ValueError: If the value does not name one of the two sides.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            if key in ("yes", "up"):
                return cls.YES
            if key in ("no", "down"):
                return cls.NO
        raise ValueError(f"unrecognized side: {value!r}")


class Outcome(str, Enum):
    """Resolved outcome of a market window."""

    YES = "yes"
    NO = "no"

    def matches(self, side: Side) -> bool:
        """True if a bid on ``side`` pays out under this outcome."""
        return self.value == side.value

    @property
    def label(self) -> str:
        return self.value.upper()


class Market(BaseModel):
    """One tradeable market window (open to resolution)."""

    market_id: str
    platform: Platform = Platform.POLYMARKET
    description: str = ""
    category: str = ""  # Asset/category tag (e.g. "btc")
    open_time: datetime
    close_time: datetime
    outcome: Optional[Outcome] = None

    @computed_field
    @property
    def duration_secs(self) -> int:
        """Window length in whole seconds."""
        return int((self.close_time - self.open_time).total_seconds())

    @computed_field
    @property
    def is_resolved(self) -> bool:
        return self.outcome is not None


class BookTick(BaseModel):
    """Orderbook state for one side of a market at one point in time.

    Ticks for the two sides arrive separately in capture data and are merged
    into a combined snapshot before replay.
    """

    market_id: str
    side: Side
    timestamp: datetime
    offset_ms: int  # Milliseconds since market open

    best_bid: Optional[float] = None
    best_bid_size: Optional[float] = None
    best_ask: Optional[float] = None
    best_ask_size: Optional[float] = None

    # (price, cumulative shares at or better than price)
    depth: List[Tuple[float, float]] = Field(default_factory=list)
    total_bid_depth: Optional[float] = None  # None when not reported
    total_ask_depth: float = 0.0

    reference_price: Optional[float] = None  # e.g. exchange spot price
    oracle_price: Optional[float] = None  # e.g. Chainlink resolution feed
