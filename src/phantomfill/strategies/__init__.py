"""Strategy contract, built-in strategies and the strategy registry.

Strategies are selected by name (built-ins) or by script path. The runner
needs a fresh instance per replay, so the registry hands out zero-argument
factories:

    >>> from phantomfill.strategies import StrategyParams, strategy_factory
    >>> factory = strategy_factory("momentum", StrategyParams(min_bps=3.0))
    >>> strategy = factory()
"""

from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Type

from phantomfill.core.exceptions import ConfigurationError
from phantomfill.simulation.events import Window
from phantomfill.strategies.base import Strategy, StrategyParams
from phantomfill.strategies.fade import FadeMomentum, compute_fade_signals
from phantomfill.strategies.native import (
    DepthMomentum,
    Gabagool,
    Last15Seconds,
    Momentum,
    PostCancel,
    SpreadArb,
)
from phantomfill.strategies.scripted import ScriptedStrategy

_NATIVE: Dict[str, Type[Strategy]] = {
    cls.name: cls
    for cls in (
        SpreadArb,
        Momentum,
        PostCancel,
        DepthMomentum,
        FadeMomentum,
        Last15Seconds,
        Gabagool,
    )
}


def list_strategies() -> List[Tuple[str, str]]:
    """(name, description) of every built-in strategy."""
    return [(name, cls.description) for name, cls in _NATIVE.items()]


def is_known_strategy(name: str) -> bool:
    return name in _NATIVE


def create_strategy(
    name: str,
    params: Optional[StrategyParams] = None,
    windows: Optional[Sequence[Window]] = None,
) -> Strategy:
    """Instantiate a built-in strategy by name.

    Args:
        name: Registered strategy name
        params: Strategy constants (defaults if None)
        windows: Windows to precompute signals from (``fade`` only)

    Raises:
        ConfigurationError: If the name is unknown.
    """
    if name not in _NATIVE:
        known = ", ".join(_NATIVE)
        raise ConfigurationError(f"unknown strategy '{name}' (known: {known})")
    if name == FadeMomentum.name:
        markets = [w.market for w in windows or ()]
        return FadeMomentum(params, signals=compute_fade_signals(markets))
    return _NATIVE[name](params)


def strategy_factory(
    name_or_path: str,
    params: Optional[StrategyParams] = None,
    windows: Optional[Sequence[Window]] = None,
) -> Callable[[], Strategy]:
    """Zero-argument factory for a built-in strategy or a script file.

    Names that are not registered are treated as script paths.

    Raises:
        ConfigurationError: If the name is neither registered nor an existing file.
    """
    params = params or StrategyParams()

    if is_known_strategy(name_or_path):
        if name_or_path == FadeMomentum.name:
            # Signals depend only on the window set; compute them once
            signals = compute_fade_signals([w.market for w in windows or ()])
            return lambda: FadeMomentum(params, signals=signals)
        cls = _NATIVE[name_or_path]
        return lambda: cls(params)

    path = Path(name_or_path)
    if not path.is_file():
        known = ", ".join(_NATIVE)
        raise ConfigurationError(
            f"'{name_or_path}' is neither a built-in strategy ({known}) nor a script file"
        )
    source = path.read_text()
    return lambda: ScriptedStrategy(path.stem, source, params, description=str(path))


__all__ = [
    "Strategy",
    "StrategyParams",
    "ScriptedStrategy",
    "SpreadArb",
    "Momentum",
    "PostCancel",
    "DepthMomentum",
    "FadeMomentum",
    "Last15Seconds",
    "Gabagool",
    "compute_fade_signals",
    "list_strategies",
    "is_known_strategy",
    "create_strategy",
    "strategy_factory",
]
