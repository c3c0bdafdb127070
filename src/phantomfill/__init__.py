"""PhantomFill: realistic fill simulation for prediction market backtests."""

__version__ = "0.1.0"
