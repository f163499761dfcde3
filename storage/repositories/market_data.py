"""
Market Data Repositories.

============================================================
PURPOSE
============================================================
- MarketTickRepository: append-only tick cache with age-based
  pruning; source of price history
- SymbolStatsRepository: per (symbol, date) correlation
  matrices, replaced as a whole on recompute

============================================================
"""

from collections import defaultdict
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from storage.models.trading import MarketTickRecord, SymbolStats
from storage.repositories.base import BaseRepository


class MarketTickRepository(BaseRepository[MarketTickRecord]):
    """Tick cache."""

    def __init__(self, session: Session):
        super().__init__(session, MarketTickRecord, "MarketTickRepository")

    def add_ticks(self, records: Iterable[MarketTickRecord]) -> int:
        count = self._add_all(records)
        self._logger.debug(f"Cached {count} ticks")
        return count

    def mid_prices_since(self, symbols: List[str], since: datetime) -> Dict[str, List[float]]:
        """Chronological (bid + ask) / 2 series per symbol."""
        stmt = (
            select(MarketTickRecord.symbol, MarketTickRecord.bid, MarketTickRecord.ask)
            .where(
                MarketTickRecord.symbol.in_(symbols),
                MarketTickRecord.timestamp >= since,
            )
            .order_by(MarketTickRecord.timestamp, MarketTickRecord.id)
        )
        series: Dict[str, List[float]] = defaultdict(list)
        for symbol, bid, ask in self._execute_rows(stmt):
            series[symbol].append((float(bid) + float(ask)) / 2)
        return dict(series)

    def latest(self, symbol: str) -> Optional[MarketTickRecord]:
        stmt = (
            select(MarketTickRecord)
            .where(MarketTickRecord.symbol == symbol)
            .order_by(MarketTickRecord.timestamp.desc(), MarketTickRecord.id.desc())
            .limit(1)
        )
        return self._execute_scalar(stmt)

    def delete_created_before(self, cutoff: datetime) -> int:
        stmt = delete(MarketTickRecord).where(MarketTickRecord.created_at < cutoff)
        return self._execute_write(stmt, "delete_created_before")


class SymbolStatsRepository(BaseRepository[SymbolStats]):
    """Per-day correlation matrices."""

    def __init__(self, session: Session):
        super().__init__(session, SymbolStats, "SymbolStatsRepository")

    def replace_matrix(self, symbol: str, day: date, matrix: Dict[str, float]) -> SymbolStats:
        """Store the matrix for (symbol, day), superseding any previous one."""
        stmt = select(SymbolStats).where(SymbolStats.symbol == symbol, SymbolStats.date == day)
        record = self._execute_scalar(stmt)
        if record is None:
            return self._add(SymbolStats(symbol=symbol, date=day, correlation_matrix=dict(matrix)))
        record.correlation_matrix = dict(matrix)
        self._session.flush()
        return record

    def matrices_for(self, symbols: Iterable[str], day: date) -> Dict[str, Dict[str, float]]:
        stmt = select(SymbolStats).where(
            SymbolStats.symbol.in_(list(symbols)),
            SymbolStats.date == day,
        )
        return {
            record.symbol: dict(record.correlation_matrix or {})
            for record in self._execute_query(stmt)
        }
