"""SQLite-backed store of historical ticker prices."""

from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import datetime, timedelta, timezone

from pricefeed.models import CurrencyPair, TickerPrice

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_CREATE = """
    CREATE TABLE IF NOT EXISTS crypto_ticker_prices(
        symbol TEXT NOT NULL,
        provider TEXT NOT NULL,
        time INT NOT NULL,
        price TEXT NOT NULL,
        volume TEXT NOT NULL,
        CONSTRAINT id PRIMARY KEY (symbol, provider, time)
    )
"""

_INSERT = """
    INSERT INTO crypto_ticker_prices(symbol, provider, time, price, volume)
    SELECT ?, ?, ?, ?, ?
    WHERE NOT EXISTS (
        SELECT 1 FROM crypto_ticker_prices
        WHERE symbol = ? AND provider = ? AND time = ?
    )
"""

_QUERY = """
    SELECT provider, time, price, volume FROM crypto_ticker_prices
    WHERE symbol = ? AND time BETWEEN ? AND ?
    ORDER BY time ASC
"""

_CLEANUP = """
    DELETE FROM crypto_ticker_prices
    WHERE symbol = ? AND time < ?
"""


def _unix(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (moment - _EPOCH) // timedelta(seconds=1)


class PriceHistory:
    """Stores ticker prices per symbol and provider, keyed by whole seconds."""

    def __init__(self, path: str) -> None:
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(
            path, isolation_level=None, check_same_thread=False
        )
        try:
            self._conn.execute(_CREATE)
            self._conn.execute("VACUUM")
        except sqlite3.Error:
            logger.exception("failed to initialise price history at %s", path)
            self._conn.close()
            raise

    def __enter__(self) -> PriceHistory:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying database connection."""
        with self._lock:
            self._conn.close()

    def add_ticker_price(
        self, pair: CurrencyPair, provider: str, ticker: TickerPrice
    ) -> None:
        """Store a ticker unless one already exists for the same second."""
        if ticker.time is None:
            raise ValueError("ticker has no time")
        symbol = str(pair)
        epoch = _unix(ticker.time)
        try:
            with self._lock:
                self._conn.execute(
                    _INSERT,
                    (
                        symbol,
                        provider,
                        epoch,
                        str(ticker.price),
                        str(ticker.volume),
                        symbol,
                        provider,
                        epoch,
                    ),
                )
        except sqlite3.Error:
            logger.error("failed to store ticker for %s from %s", symbol, provider)
            raise

    def get_ticker_prices(
        self, symbol: str, start: datetime, end: datetime
    ) -> dict[str, list[TickerPrice]]:
        """Return tickers between start and end, oldest first, per provider.

        Entries older than ``start`` are removed from the store.
        """
        start_epoch = _unix(start)
        end_epoch = _unix(end)
        with self._lock:
            try:
                self._conn.execute(_CLEANUP, (symbol, start_epoch))
            except sqlite3.Error:
                logger.exception("failed to remove old ticker prices for %s", symbol)
            try:
                rows = self._conn.execute(
                    _QUERY, (symbol, start_epoch, end_epoch)
                ).fetchall()
            except sqlite3.Error:
                logger.error("failed to query stored ticker prices for %s", symbol)
                raise

        tickers: dict[str, list[TickerPrice]] = {}
        for provider, epoch, price, volume in rows:
            try:
                ticker = TickerPrice(
                    price, volume, datetime.fromtimestamp(epoch, timezone.utc)
                )
            except ValueError:
                logger.error("failed to create ticker for %s from %s", symbol, provider)
                continue
            tickers.setdefault(provider, []).append(ticker)
        return tickers