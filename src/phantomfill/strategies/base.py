"""Strategy callback contract shared by native and scripted strategies."""

from abc import ABC, abstractmethod
from typing import Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from phantomfill.core.exceptions import ConfigurationError
from phantomfill.simulation.events import Action, BookSnapshot


class StrategyParams(BaseModel):
    """Constants a strategy is constructed with.

    Attributes:
        bid_price: Reference limit price for bids
        size: Shares per order
        min_bps: Minimum oracle move (basis points) treated as a signal
        signal_offset_ms: Offset at which signal-driven strategies act
    """

    model_config = ConfigDict(frozen=True)

    bid_price: float = Field(default=0.49, gt=0.0, le=1.0)
    size: float = Field(default=10.0, gt=0.0)
    min_bps: float = Field(default=5.0, ge=0.0)
    signal_offset_ms: int = Field(default=90_000, ge=0)

    @classmethod
    def build(cls, **values) -> "StrategyParams":
        """Validate values, reporting bad ones as ConfigurationError."""
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(f"invalid strategy parameters: {e}") from e


class Strategy(ABC):
    """A per-window decision policy driven by the replay engine.

    The engine calls ``on_market_open`` with the first snapshot, ``on_tick``
    for every snapshot (the first included), and ``on_reset`` exactly once
    when the window ends. Strategies see book state only; the window's
    outcome is never passed in.

    Each replay gets its own instance, so per-window state can live on
    ``self`` as long as ``on_reset`` clears it.
    """

    name: str = "strategy"
    description: str = ""

    def __init__(self, params: StrategyParams | None = None):
        self.params = params or StrategyParams()

    def on_market_open(self, snapshot: BookSnapshot) -> None:
        """Called once with the first snapshot of a window."""

    @abstractmethod
    def on_tick(self, snapshot: BookSnapshot) -> Sequence[Action]:
        """Return the actions to take at this snapshot."""

    @abstractmethod
    def on_reset(self) -> None:
        """Clear per-window state."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
