"""
Market Data - Tick Cache Writer.

============================================================
PURPOSE
============================================================
Persists batches of ticks into market_data_cache. The call
is blocking; the feed runs it in the default executor.

============================================================
"""

import logging
from typing import Optional, Sequence

from core.clock import ClockProtocol, SystemClock
from storage.database import Database
from storage.models.trading import MarketTickRecord
from storage.repositories import MarketTickRepository

from .types import MarketTick


logger = logging.getLogger(__name__)


class TickCacheWriter:
    """Batch writer used as the feed's cache sink."""

    def __init__(self, database: Database, clock: Optional[ClockProtocol] = None):
        self._database = database
        self._clock = clock or SystemClock()

    def write(self, ticks: Sequence[MarketTick]) -> int:
        """
        Insert ticks in one transaction.

        Raises:
            RepositoryException: the batch was not stored
        """
        if not ticks:
            return 0

        created_at = self._clock.now()
        records = [
            MarketTickRecord(
                symbol=tick.symbol,
                bid=tick.bid,
                ask=tick.ask,
                volume=tick.volume,
                timestamp=tick.timestamp,
                created_at=created_at,
            )
            for tick in ticks
        ]

        with self._database.transaction_scope() as session:
            return MarketTickRepository(session).add_ticks(records)
