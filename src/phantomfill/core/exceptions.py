"""Exception hierarchy for PhantomFill."""


class PhantomFillError(Exception):
    """Base class for all PhantomFill errors."""


class ConfigurationError(PhantomFillError):
    """Invalid model or strategy parameters, raised before any replay starts."""


class DataExhausted(PhantomFillError):
    """The data source yielded no windows at all."""


class StrategyFault(PhantomFillError):
    """A strategy callback failed to execute.

    Aborts the current window only; the replay engine records a failed
    result and moves on to the next window.
    """

    def __init__(self, strategy_name: str, callback: str, cause: BaseException | None = None):
        self.strategy_name = strategy_name
        self.callback = callback
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"strategy '{strategy_name}' failed in {callback}{detail}")


class InvalidAction(PhantomFillError):
    """A strategy emitted an action outside the action vocabulary."""

    def __init__(self, action: object, reason: str):
        self.action = action
        self.reason = reason
        super().__init__(f"invalid action {action!r}: {reason}")


class StorageError(PhantomFillError):
    """QuestDB read or write failure."""
