"""
Trading Domain ORM Models.

============================================================
PURPOSE
============================================================
Persistent state of the risk core: trading sessions, their
positions, the risk-metrics audit trail, the tick cache,
per-day correlation matrices and the tunable configuration.

============================================================
DATA LIFECYCLE ROLE
============================================================
- TradingSession: created at engine start, closed at stop
- Position: created on trade acceptance, mutated by price
  updates, IMMUTABLE once closed
- RiskMetricsRecord: APPEND-ONLY, one row per validation
- MarketTickRecord: APPEND-ONLY, pruned after 3 days
- SymbolStats: one row per (symbol, date), superseded on
  recompute
- SymbolPerformance / ConfigSetting / DailyReport: inputs
  maintained by upstream collaborators

============================================================
"""

import uuid
from datetime import date as date_type, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storage.models.base import Base, TimestampMixin


# ============================================================
# SESSION & POSITIONS
# ============================================================

class TradingSession(Base, TimestampMixin):
    """
    One trading run.

    All P&L and drawdown figures are computed against a session:
    current_balance = initial_balance + sum(pnl of all positions).

    state_version is the optimistic-concurrency token. It is bumped
    whenever a position is opened or closed so a risk decision taken
    against an older version can be detected at open time.
    """

    __tablename__ = "trading_sessions"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    mode: Mapped[str] = mapped_column(String(10), nullable=False, default="paper")

    status: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default="active",
        comment="active, stopped, paused, error"
    )

    initial_balance: Mapped[float] = mapped_column(nullable=False)
    final_balance: Mapped[Optional[float]] = mapped_column(nullable=True)

    started_at: Mapped[datetime] = mapped_column(nullable=False)
    ended_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    total_trades: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    winning_trades: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    losing_trades: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_drawdown: Mapped[float] = mapped_column(nullable=False, default=0.0)

    stop_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    state_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    positions: Mapped[List["Position"]] = relationship(
        back_populates="session",
        order_by="Position.opened_at",
    )

    __table_args__ = (
        Index("ix_trading_sessions_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<TradingSession {self.id} status={self.status} v{self.state_version}>"


class Position(Base, TimestampMixin):
    """
    A position owned by a trading session.

    pnl covers the whole trade: realized_pnl booked by partial
    closes plus the remaining size marked to market. It is final
    once status is "closed".
    """

    __tablename__ = "positions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    deal_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("trading_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )

    symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    direction: Mapped[str] = mapped_column(String(4), nullable=False, comment="BUY or SELL")
    size: Mapped[float] = mapped_column(nullable=False)

    entry_price: Mapped[float] = mapped_column(nullable=False)
    current_price: Mapped[Optional[float]] = mapped_column(nullable=True)
    stop_loss: Mapped[Optional[float]] = mapped_column(nullable=True)
    take_profit: Mapped[Optional[float]] = mapped_column(nullable=True)
    pnl: Mapped[float] = mapped_column(nullable=False, default=0.0)
    realized_pnl: Mapped[float] = mapped_column(
        nullable=False,
        default=0.0,
        comment="pnl already booked by partial closes"
    )

    status: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default="open",
        comment="open, closed, partial"
    )
    close_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    model_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    confidence: Mapped[Optional[float]] = mapped_column(nullable=True)

    opened_at: Mapped[datetime] = mapped_column(nullable=False)
    closed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    session: Mapped[TradingSession] = relationship(back_populates="positions")

    __table_args__ = (
        Index("ix_positions_session_status", "session_id", "status"),
        Index("ix_positions_session_symbol_opened", "session_id", "symbol", "opened_at"),
        Index("ix_positions_closed_at", "closed_at"),
    )

    @property
    def is_open(self) -> bool:
        return self.status != "closed"

    def __repr__(self) -> str:
        return f"<Position {self.deal_id} {self.direction} {self.size} {self.symbol} {self.status}>"


# ============================================================
# AUDIT TRAIL
# ============================================================

class RiskMetricsRecord(Base):
    """Append-only risk metrics, one row per trade validation."""

    __tablename__ = "risk_metrics"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    session_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("trading_sessions.id", ondelete="SET NULL"),
        nullable=True,
    )
    timestamp: Mapped[datetime] = mapped_column(nullable=False)

    symbol: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    account_balance: Mapped[float] = mapped_column(nullable=False)
    daily_pnl: Mapped[float] = mapped_column(nullable=False)
    current_drawdown: Mapped[float] = mapped_column(nullable=False)
    risk_utilization: Mapped[float] = mapped_column(nullable=False, default=0.0)
    correlation_risk: Mapped[float] = mapped_column(nullable=False, default=0.0)
    open_positions: Mapped[int] = mapped_column(Integer, nullable=False)
    daily_trades_count: Mapped[int] = mapped_column(Integer, nullable=False)

    decision_allowed: Mapped[bool] = mapped_column(Boolean, nullable=False)
    decision_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_risk_metrics_session_ts", "session_id", "timestamp"),
    )


# ============================================================
# MARKET DATA
# ============================================================

class MarketTickRecord(Base):
    """Cached quote/trade tick; source of price history."""

    __tablename__ = "market_data_cache"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    bid: Mapped[float] = mapped_column(nullable=False)
    ask: Mapped[float] = mapped_column(nullable=False)
    volume: Mapped[float] = mapped_column(nullable=False, default=0.0)
    timestamp: Mapped[datetime] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    __table_args__ = (
        Index("ix_market_data_cache_symbol_ts", "symbol", "timestamp"),
        Index("ix_market_data_cache_created_at", "created_at"),
    )


class SymbolStats(Base, TimestampMixin):
    """Per-day correlation matrix of a symbol."""

    __tablename__ = "symbol_stats"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    date: Mapped[date_type] = mapped_column(Date, nullable=False)
    correlation_matrix: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint("symbol", "date", name="uq_symbol_stats_symbol_date"),
    )


class SymbolPerformance(Base, TimestampMixin):
    """Historical trade outcome statistics used for Kelly sizing."""

    __tablename__ = "model_symbol_performance"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    symbol: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    win_rate: Mapped[float] = mapped_column(nullable=False, default=0.0)
    avg_win: Mapped[float] = mapped_column(nullable=False, default=0.0)
    avg_loss: Mapped[float] = mapped_column(nullable=False, default=0.0)
    total_trades: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


# ============================================================
# CONFIGURATION & REPORTS
# ============================================================

class ConfigSetting(Base, TimestampMixin):
    """Key/value risk configuration row."""

    __tablename__ = "config_settings"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)


class DailyReport(Base, TimestampMixin):
    """End-of-day totals of a session."""

    __tablename__ = "daily_reports"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    session_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("trading_sessions.id", ondelete="SET NULL"),
        nullable=True,
    )
    date: Mapped[date_type] = mapped_column(Date, nullable=False)

    total_trades: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    winning_trades: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    losing_trades: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_daily_profit: Mapped[float] = mapped_column(nullable=False, default=0.0)
    total_daily_loss: Mapped[float] = mapped_column(nullable=False, default=0.0)
    win_rate: Mapped[float] = mapped_column(nullable=False, default=0.0)

    __table_args__ = (
        UniqueConstraint("session_id", "date", name="uq_daily_reports_session_date"),
    )
