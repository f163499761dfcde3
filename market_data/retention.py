"""
Market Data - Tick Cache Retention.

============================================================
PURPOSE
============================================================
The tick cache is short-lived: rows whose created_at is
older than the retention window (3 days) are deleted.

============================================================
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from core.clock import ClockProtocol, SystemClock
from storage.database import Database
from storage.repositories import MarketTickRepository, RepositoryException


logger = logging.getLogger(__name__)


DEFAULT_RETENTION = timedelta(days=3)


def prune_tick_cache(session: Session, now: datetime, retention: timedelta = DEFAULT_RETENTION) -> int:
    """Delete cached ticks created before now - retention. Does not commit."""
    cutoff = now - retention
    deleted = MarketTickRepository(session).delete_created_before(cutoff)
    logger.info(f"Pruned {deleted} cached ticks created before {cutoff.isoformat()}")
    return deleted


class TickRetentionJob:
    """Runs prune_tick_cache on a schedule."""

    def __init__(
        self,
        database: Database,
        clock: Optional[ClockProtocol] = None,
        retention_days: int = 3,
    ):
        self._database = database
        self._clock = clock or SystemClock()
        self._retention = timedelta(days=retention_days)

    def run_once(self) -> int:
        with self._database.transaction_scope() as session:
            return prune_tick_cache(session, self._clock.now(), self._retention)

    async def run_forever(self, interval_seconds: float = 3600.0) -> None:
        """Prune every interval until cancelled. Failed passes are logged and retried."""
        while True:
            try:
                await asyncio.get_running_loop().run_in_executor(None, self.run_once)
            except RepositoryException as e:
                logger.error(f"Tick cache retention pass failed: {e}")
            await asyncio.sleep(interval_seconds)
