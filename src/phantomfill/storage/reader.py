"""QuestDB reader for stored windows and ticks."""

import json
import logging
from datetime import datetime
from typing import Any, Iterator, List, Optional

import pandas as pd
import psycopg2

from phantomfill.core.config import QuestDBConfig
from phantomfill.core.exceptions import StorageError
from phantomfill.core.models import BookTick, Market, Outcome, Platform, Side
from phantomfill.simulation.events import Window
from phantomfill.simulation.sources import build_window
from phantomfill.storage.questdb import MARKETS_TABLE, TICKS_TABLE

logger = logging.getLogger(__name__)


class QuestDBReader:
    """
    QuestDB reader for stored market windows.

    Uses psycopg2 for PostgreSQL wire protocol access to QuestDB.
    Mirrors QuestDBWriter's connection pattern for consistency.

    Example:
        reader = QuestDBReader(config)
        reader.connect()
        markets = reader.list_markets(category="btc")
        ticks = reader.load_ticks(markets[0].market_id)
        reader.close()
    """

    def __init__(self, config: QuestDBConfig):
        """
        Initialize the QuestDB reader.

        Args:
            config: QuestDB configuration with connection details
        """
        self.config = config
        self._conn: Optional[psycopg2.extensions.connection] = None

    def connect(self) -> None:
        """
        Establish connection to QuestDB.

        Uses the PostgreSQL wire protocol on pg_port (default 8812).
        Sets autocommit=True as required by QuestDB (no transaction support).

        Raises:
            StorageError: If the connection fails.
        """
        try:
            self._conn = psycopg2.connect(
                host=self.config.host,
                port=self.config.pg_port,
                user=self.config.pg_user,
                password=self.config.pg_password,
                database="qdb",
            )
            self._conn.autocommit = True
            logger.info(f"Connected to QuestDB at {self.config.host}:{self.config.pg_port}")
        except psycopg2.Error as e:
            logger.error(f"Failed to connect to QuestDB: {e}")
            self._conn = None
            raise StorageError(f"Failed to connect to QuestDB: {e}") from e

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            try:
                self._conn.close()
                logger.info("QuestDB reader connection closed")
            except psycopg2.Error as e:
                logger.warning(f"Error closing connection: {e}")
            finally:
                self._conn = None

    @property
    def is_connected(self) -> bool:
        return self._conn is not None and not self._conn.closed

    def __enter__(self) -> "QuestDBReader":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def execute_query(self, query: str, params: Optional[tuple] = None) -> pd.DataFrame:
        """
        Execute a query and return results as a DataFrame.

        Args:
            query: SQL query string with %s placeholders for parameters
            params: Optional tuple of parameter values

        Returns:
            DataFrame with query results

        Raises:
            StorageError: If not connected or the query fails
        """
        if not self.is_connected:
            raise StorageError("Reader not connected. Call connect() first.")

        try:
            with self._conn.cursor() as cur:
                cur.execute(query, params)

                if cur.description is None:
                    return pd.DataFrame()

                rows = cur.fetchall()
                columns = [desc[0] for desc in cur.description]
        except psycopg2.Error as e:
            raise StorageError(f"Query failed: {e}") from e

        return pd.DataFrame(rows, columns=columns)

    def query_markets(
        self,
        category: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> pd.DataFrame:
        """
        Query stored windows, oldest first.

        Args:
            category: Only windows with this category tag
            start_time: Only windows opening at or after this time
            end_time: Only windows closing at or before this time

        Returns:
            DataFrame with columns: open_time, market_id, platform, category,
            outcome, description, close_time, duration_secs
        """
        query = f"""
            SELECT
                timestamp AS open_time,
                market_id,
                platform,
                category,
                outcome,
                description,
                close_time,
                duration_secs
            FROM {MARKETS_TABLE}
            WHERE 1 = 1
        """
        params: List[Any] = []
        if category is not None:
            query += " AND category = %s"
            params.append(category)
        if start_time is not None:
            query += " AND timestamp >= %s"
            params.append(start_time)
        if end_time is not None:
            query += " AND close_time <= %s"
            params.append(end_time)
        query += " ORDER BY timestamp ASC"

        df = self.execute_query(query, tuple(params))
        if df.empty:
            return df
        # Re-imports append rows; keep the latest per window
        return df.drop_duplicates(subset="market_id", keep="last").reset_index(drop=True)

    def list_markets(self, category: Optional[str] = None) -> List[Market]:
        """Stored windows as Market models, oldest first."""
        return markets_from_frame(self.query_markets(category=category))

    def query_ticks(self, market_id: str) -> pd.DataFrame:
        """
        Query all ticks of one window in offset order.

        Returns:
            DataFrame with columns: timestamp, market_id, side, offset_ms,
            best_bid, best_bid_size, best_ask, best_ask_size, depth,
            total_bid_depth, total_ask_depth, reference_price, oracle_price
        """
        query = f"""
            SELECT
                timestamp,
                market_id,
                side,
                offset_ms,
                best_bid,
                best_bid_size,
                best_ask,
                best_ask_size,
                depth,
                total_bid_depth,
                total_ask_depth,
                reference_price,
                oracle_price
            FROM {TICKS_TABLE}
            WHERE market_id = %s
            ORDER BY offset_ms ASC, side ASC
        """
        return self.execute_query(query, (market_id,))

    def load_ticks(self, market_id: str) -> List[BookTick]:
        return ticks_from_frame(self.query_ticks(market_id))


def _optional_float(value: Any) -> Optional[float]:
    if value is None or pd.isna(value):
        return None
    return float(value)


def _parse_depth(value: Any) -> List[tuple]:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return []
    levels = json.loads(value) if isinstance(value, str) else value
    return [(float(price), float(size)) for price, size in levels]


def markets_from_frame(df: pd.DataFrame) -> List[Market]:
    """Convert a query_markets DataFrame to Market models."""
    markets = []
    for row in df.to_dict("records"):
        outcome = row.get("outcome")
        markets.append(
            Market(
                market_id=row["market_id"],
                platform=Platform(row.get("platform") or Platform.POLYMARKET.value),
                description=row.get("description") or "",
                category=row.get("category") or "",
                open_time=pd.Timestamp(row["open_time"]).to_pydatetime(),
                close_time=pd.Timestamp(row["close_time"]).to_pydatetime(),
                outcome=Outcome(outcome.lower()) if isinstance(outcome, str) and outcome else None,
            )
        )
    return markets


def ticks_from_frame(df: pd.DataFrame) -> List[BookTick]:
    """Convert a query_ticks DataFrame to BookTick models."""
    ticks = []
    for row in df.to_dict("records"):
        ticks.append(
            BookTick(
                market_id=row["market_id"],
                side=Side.parse(row["side"]),
                timestamp=pd.Timestamp(row["timestamp"]).to_pydatetime(),
                offset_ms=int(row["offset_ms"]),
                best_bid=_optional_float(row.get("best_bid")),
                best_bid_size=_optional_float(row.get("best_bid_size")),
                best_ask=_optional_float(row.get("best_ask")),
                best_ask_size=_optional_float(row.get("best_ask_size")),
                depth=_parse_depth(row.get("depth")),
                total_bid_depth=_optional_float(row.get("total_bid_depth")),
                total_ask_depth=_optional_float(row.get("total_ask_depth")) or 0.0,
                reference_price=_optional_float(row.get("reference_price")),
                oracle_price=_optional_float(row.get("oracle_price")),
            )
        )
    return ticks


class QuestDBWindowSource:
    """Window source reading stored windows lazily, one market at a time.

    Markets are listed on first use; ticks are loaded per window as it is
    requested. Windows without ticks are skipped.
    """

    def __init__(self, reader: QuestDBReader, category: Optional[str] = None):
        self.reader = reader
        self.category = category
        self._markets: Optional[List[Market]] = None
        self._position = 0

    @property
    def markets(self) -> List[Market]:
        if self._markets is None:
            self._markets = self.reader.list_markets(category=self.category)
            logger.info(f"Found {len(self._markets)} stored windows")
        return self._markets

    def next_window(self) -> Optional[Window]:
        markets = self.markets
        while self._position < len(markets):
            market = markets[self._position]
            self._position += 1
            ticks = self.reader.load_ticks(market.market_id)
            if not ticks:
                logger.debug(f"Skipping {market.market_id}: no ticks")
                continue
            return build_window(market, ticks)
        return None

    def __iter__(self) -> Iterator[Window]:
        while True:
            window = self.next_window()
            if window is None:
                return
            yield window
