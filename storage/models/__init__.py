"""
Storage Models Package.

ORM models of the risk core.

============================================================
MODEL ORGANIZATION
============================================================
base.py
- Base, TimestampMixin, UTCDateTime

trading.py
- TradingSession, Position
- RiskMetricsRecord
- MarketTickRecord, SymbolStats
- SymbolPerformance, ConfigSetting, DailyReport

============================================================
"""

from storage.models.base import Base, TimestampMixin, UTCDateTime
from storage.models.trading import (
    ConfigSetting,
    DailyReport,
    MarketTickRecord,
    Position,
    RiskMetricsRecord,
    SymbolPerformance,
    SymbolStats,
    TradingSession,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "UTCDateTime",
    "TradingSession",
    "Position",
    "RiskMetricsRecord",
    "MarketTickRecord",
    "SymbolStats",
    "SymbolPerformance",
    "ConfigSetting",
    "DailyReport",
]
