"""
Risk Data Repositories.

============================================================
PURPOSE
============================================================
- RiskMetricsRepository: append-only validation audit trail
- SymbolPerformanceRepository: historical outcomes for Kelly
- ConfigSettingsRepository: tunable risk limits (key/value)
- DailyReportRepository: end-of-day totals

============================================================
"""

from datetime import date
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from storage.models.trading import (
    ConfigSetting,
    DailyReport,
    RiskMetricsRecord,
    SymbolPerformance,
)
from storage.repositories.base import BaseRepository


class RiskMetricsRepository(BaseRepository[RiskMetricsRecord]):
    """Append-only risk metrics audit trail."""

    def __init__(self, session: Session):
        super().__init__(session, RiskMetricsRecord, "RiskMetricsRepository")

    def append(self, record: RiskMetricsRecord) -> RiskMetricsRecord:
        return self._add(record)

    def list_for_session(self, session_id: UUID) -> List[RiskMetricsRecord]:
        stmt = (
            select(RiskMetricsRecord)
            .where(RiskMetricsRecord.session_id == session_id)
            .order_by(RiskMetricsRecord.timestamp)
        )
        return self._execute_query(stmt)


class SymbolPerformanceRepository(BaseRepository[SymbolPerformance]):
    """Historical trade statistics per symbol."""

    def __init__(self, session: Session):
        super().__init__(session, SymbolPerformance, "SymbolPerformanceRepository")

    def get(self, symbol: str) -> Optional[SymbolPerformance]:
        stmt = select(SymbolPerformance).where(SymbolPerformance.symbol == symbol)
        return self._execute_scalar(stmt)

    def upsert(
        self,
        symbol: str,
        win_rate: float,
        avg_win: float,
        avg_loss: float,
        total_trades: int,
    ) -> SymbolPerformance:
        record = self.get(symbol)
        if record is None:
            record = SymbolPerformance(symbol=symbol)
            self._session.add(record)
        record.win_rate = win_rate
        record.avg_win = avg_win
        record.avg_loss = avg_loss
        record.total_trades = total_trades
        self._session.flush()
        return record


class ConfigSettingsRepository(BaseRepository[ConfigSetting]):
    """Key/value configuration store."""

    def __init__(self, session: Session):
        super().__init__(session, ConfigSetting, "ConfigSettingsRepository")

    def as_mapping(self) -> Dict[str, str]:
        return {row.key: row.value for row in self._execute_query(select(ConfigSetting))}

    def set(self, key: str, value: str) -> ConfigSetting:
        record = self._get_by_id(key)
        if record is None:
            return self._add(ConfigSetting(key=key, value=str(value)))
        record.value = str(value)
        self._session.flush()
        return record


class DailyReportRepository(BaseRepository[DailyReport]):
    """End-of-day totals."""

    def __init__(self, session: Session):
        super().__init__(session, DailyReport, "DailyReportRepository")

    def total_profit_on(self, day: date) -> float:
        """Total daily profit recorded for a date (0 when no report exists)."""
        stmt = select(func.coalesce(func.sum(DailyReport.total_daily_profit), 0.0)).where(
            DailyReport.date == day
        )
        return float(self._execute_scalar(stmt) or 0.0)

    def get(self, session_id: Optional[UUID], day: date) -> Optional[DailyReport]:
        stmt = select(DailyReport).where(
            DailyReport.session_id == session_id,
            DailyReport.date == day,
        )
        return self._execute_scalar(stmt)

    def upsert(self, report: DailyReport) -> DailyReport:
        existing = self.get(report.session_id, report.date)
        if existing is None:
            return self._add(report)
        for field in (
            "total_trades",
            "winning_trades",
            "losing_trades",
            "total_daily_profit",
            "total_daily_loss",
            "win_rate",
        ):
            setattr(existing, field, getattr(report, field))
        self._session.flush()
        return existing
