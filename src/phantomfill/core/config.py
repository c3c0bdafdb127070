"""Environment-driven configuration.

Settings are read from ``PHANTOMFILL_*`` environment variables (and an optional
``.env`` file), falling back to the documented defaults.
"""

from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class QuestDBConfig(BaseSettings):
    """Connection details for the QuestDB tick store."""

    model_config = SettingsConfigDict(
        env_prefix="PHANTOMFILL_QUESTDB_",
        env_file=".env",
        extra="ignore",
    )

    host: str = "localhost"
    http_port: int = 9000  # ILP over HTTP (writes)
    pg_port: int = 8812  # PostgreSQL wire protocol (reads)
    pg_user: str = "admin"
    pg_password: str = "quest"


class Settings(BaseSettings):
    """Defaults for backtest runs; CLI flags override these."""

    model_config = SettingsConfigDict(
        env_prefix="PHANTOMFILL_",
        env_file=".env",
        extra="ignore",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Strategy constants
    bid_price: float = 0.49
    size: float = 10.0
    min_bps: float = 5.0

    # Monte Carlo
    runs: int = Field(default=1, ge=1)
    seed: Optional[int] = None
    max_workers: int = Field(default=1, ge=1)

    # Fill model calibration
    rf: float = 0.02
    adverse_fill_prob: float = 0.99
    signal_offset_ms: int = 90_000
    post_signal_taker_mult: float = 1.8
    winner_queue_threshold: float = 50.0
