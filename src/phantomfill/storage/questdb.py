"""QuestDB writer using ILP protocol."""

import json
import logging
from typing import Iterable, Optional

from questdb.ingress import IngressError, Sender, TimestampNanos

from phantomfill.core.config import QuestDBConfig
from phantomfill.core.exceptions import StorageError
from phantomfill.core.models import BookTick, Market

logger = logging.getLogger(__name__)

MARKETS_TABLE = "pf_markets"
TICKS_TABLE = "pf_ticks"


class QuestDBWriter:
    """
    QuestDB writer for market windows and book ticks.

    Uses one long-lived questdb.ingress.Sender over HTTP, with auto-flush
    batching rows. Tables are created by QuestDB on first write:

    - pf_markets: one row per window, timestamped at its open time
    - pf_ticks: one row per side per tick; depth levels are stored as a
      JSON array of [price, cumulative_size] pairs

    Example:
        with QuestDBWriter(QuestDBConfig()) as writer:
            writer.write_market(market)
            writer.write_ticks(ticks)
    """

    def __init__(self, config: QuestDBConfig, auto_flush_rows: int = 1000):
        """
        Initialize the QuestDB writer.

        Args:
            config: QuestDB configuration
            auto_flush_rows: Flush after this many rows (default 1000)
        """
        self.config = config
        self.auto_flush_rows = auto_flush_rows
        self._sender: Optional[Sender] = None

    def _build_conf_string(self) -> str:
        return (
            f"http::addr={self.config.host}:{self.config.http_port};"
            f"auto_flush_rows={self.auto_flush_rows};"
            f"auto_flush_interval=1000;"
        )

    def connect(self) -> None:
        """Establish a long-lived connection to QuestDB."""
        conf = self._build_conf_string()
        logger.info(f"QuestDB ILP configuration: {conf}")

        try:
            self._sender = Sender.from_conf(conf)
            self._sender.establish()
            logger.info(f"Connected to QuestDB at {self.config.host}:{self.config.http_port}")
        except IngressError as e:
            logger.error(f"Failed to connect to QuestDB: {e}")
            self._sender = None
            raise StorageError(f"Failed to connect to QuestDB: {e}") from e

    @property
    def is_connected(self) -> bool:
        return self._sender is not None

    def close(self) -> None:
        """Flush outstanding rows and close the sender."""
        if self._sender:
            try:
                self._sender.close()
                logger.info("QuestDB writer closed")
            except IngressError as e:
                logger.warning(f"Error closing QuestDB sender: {e}")
            finally:
                self._sender = None

    def flush(self) -> None:
        """Explicitly flush pending rows to QuestDB."""
        if self._sender:
            try:
                self._sender.flush()
            except IngressError as e:
                logger.error(f"Failed to flush to QuestDB: {e}")
                raise StorageError(f"Failed to flush: {e}") from e

    def __enter__(self) -> "QuestDBWriter":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def write_market(self, market: Market) -> None:
        """
        Write window metadata.

        Args:
            market: Market to write

        Raises:
            StorageError: If not connected or the row is rejected.
        """
        if not self.is_connected:
            raise StorageError("Writer not connected")

        columns = {
            "description": market.description,
            "close_time": TimestampNanos.from_datetime(market.close_time),
            "duration_secs": market.duration_secs,
        }
        symbols = {
            "market_id": market.market_id,
            "platform": market.platform.value,
            "category": market.category,
        }
        # ILP has no nulls: unresolved markets omit the column
        if market.outcome is not None:
            symbols["outcome"] = market.outcome.label

        try:
            self._sender.row(
                MARKETS_TABLE,
                symbols=symbols,
                columns=columns,
                at=TimestampNanos.from_datetime(market.open_time),
            )
        except IngressError as e:
            raise StorageError(f"Failed to write market {market.market_id}: {e}") from e

    def write_ticks(self, ticks: Iterable[BookTick]) -> int:
        """
        Write book ticks.

        Args:
            ticks: Ticks to write

        Returns:
            Number of ticks written

        Raises:
            StorageError: If not connected.
        """
        if not self.is_connected:
            raise StorageError("Writer not connected")

        count = 0
        for tick in ticks:
            columns = {
                "offset_ms": tick.offset_ms,
                "depth": json.dumps([[price, size] for price, size in tick.depth]),
                "total_ask_depth": tick.total_ask_depth,
            }
            for name in (
                "best_bid",
                "best_bid_size",
                "best_ask",
                "best_ask_size",
                "total_bid_depth",
                "reference_price",
                "oracle_price",
            ):
                value = getattr(tick, name)
                if value is not None:
                    columns[name] = value

            try:
                self._sender.row(
                    TICKS_TABLE,
                    symbols={"market_id": tick.market_id, "side": tick.side.label},
                    columns=columns,
                    at=TimestampNanos.from_datetime(tick.timestamp),
                )
                count += 1
            except IngressError as e:
                logger.error(f"Failed to write tick for {tick.market_id} @ {tick.offset_ms}: {e}")

        return count
