"""
Repository Layer Package.

============================================================
PURPOSE
============================================================
The Repository Layer is the ONLY gateway to persistent storage.
All database access goes through repository classes.

============================================================
ARCHITECTURE PRINCIPLES
============================================================
1. Session Injection: sessions are injected, never created here
2. Explicit Methods: clear method names, no generic execute
3. Append-Only: risk metrics and ticks are never updated
4. Exception Handling: all DB errors wrapped in repository exceptions

============================================================
"""

from storage.repositories.exceptions import (
    DuplicateRecordError,
    QueryError,
    RecordNotFoundError,
    RepositoryException,
    StorageConnectionError,
    TransactionError,
)
from storage.repositories.base import BaseRepository
from storage.repositories.trading import PositionRepository, TradingSessionRepository
from storage.repositories.risk import (
    ConfigSettingsRepository,
    DailyReportRepository,
    RiskMetricsRepository,
    SymbolPerformanceRepository,
)
from storage.repositories.market_data import MarketTickRepository, SymbolStatsRepository

__all__ = [
    "RepositoryException",
    "RecordNotFoundError",
    "DuplicateRecordError",
    "StorageConnectionError",
    "QueryError",
    "TransactionError",
    "BaseRepository",
    "TradingSessionRepository",
    "PositionRepository",
    "RiskMetricsRepository",
    "SymbolPerformanceRepository",
    "ConfigSettingsRepository",
    "DailyReportRepository",
    "MarketTickRepository",
    "SymbolStatsRepository",
]
