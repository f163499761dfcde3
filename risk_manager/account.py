"""
Risk Manager - Account State Reader.

============================================================
PURPOSE
============================================================
Reads everything the gates need from the persistence layer
in ONE database session and returns an immutable
AccountState. The gates themselves never touch the database.

============================================================
FIGURES
============================================================
- balance       = initial_balance + sum(pnl of all positions)
- daily_pnl     = sum(pnl of positions opened today, UTC)
- daily trades  = positions opened today
- loss streak   = leading losses among the last 10 closed
- previous day  = total_daily_profit of yesterday's report

Correlation matrices and symbol performance are optional:
read failures fall back to "no data".

============================================================
"""

import logging
from datetime import timedelta
from typing import Dict, Optional

from sqlalchemy.orm import Session

from core.clock import ClockProtocol
from storage.models.trading import Position, TradingSession
from storage.repositories import (
    DailyReportRepository,
    PositionRepository,
    RepositoryException,
    SymbolPerformanceRepository,
    SymbolStatsRepository,
)

from .kill_switch import count_consecutive_losses
from .types import AccountState, Direction, OpenPositionView, SymbolPerformance


logger = logging.getLogger(__name__)


def position_view(position: Position) -> OpenPositionView:
    current = position.current_price if position.current_price is not None else position.entry_price
    return OpenPositionView(
        deal_id=position.deal_id,
        symbol=position.symbol,
        direction=Direction(position.direction),
        size=float(position.size),
        entry_price=float(position.entry_price),
        current_price=float(current),
        pnl=float(position.pnl or 0.0) - float(position.realized_pnl or 0.0),
        opened_at=position.opened_at,
        stop_loss=float(position.stop_loss) if position.stop_loss is not None else None,
    )


class AccountStateReader:
    """Builds AccountState snapshots for a trading session."""

    def __init__(
        self,
        clock: ClockProtocol,
        loss_streak_lookback: int = 10,
        hourly_window_minutes: int = 60,
    ):
        self._clock = clock
        self._loss_streak_lookback = loss_streak_lookback
        self._hourly_window = timedelta(minutes=hourly_window_minutes)

    def read(
        self,
        db: Session,
        trading_session: TradingSession,
        symbol: Optional[str] = None,
    ) -> AccountState:
        session_id = trading_session.id
        positions = PositionRepository(db)

        today = self._clock.today()
        day_start = self._clock.start_of_day(today)
        day_end = day_start + timedelta(days=1)

        balance = float(trading_session.initial_balance) + positions.total_pnl(session_id)
        open_views = tuple(position_view(p) for p in positions.list_open(session_id))

        symbol_trades_last_hour = 0
        matrix: Dict[str, float] = {}
        performance = None
        if symbol is not None:
            symbol_trades_last_hour = positions.count_opened_since(
                session_id, self._clock.now() - self._hourly_window, symbol=symbol
            )
            matrix = self._correlation_matrix(db, symbol, open_views, today)
            performance = self._performance(db, symbol)

        return AccountState(
            session_id=session_id,
            state_version=trading_session.state_version,
            initial_balance=float(trading_session.initial_balance),
            balance=balance,
            daily_pnl=positions.pnl_opened_between(session_id, day_start, day_end),
            previous_day_profit=DailyReportRepository(db).total_profit_on(today - timedelta(days=1)),
            open_positions=open_views,
            daily_trades_count=positions.count_opened_since(session_id, day_start),
            consecutive_losses=count_consecutive_losses(
                positions.recent_closed_pnls(session_id, self._loss_streak_lookback)
            ),
            symbol_trades_last_hour=symbol_trades_last_hour,
            correlation_matrix=matrix,
            performance=performance,
        )

    # --------------------------------------------------------
    # OPTIONAL DATA
    # --------------------------------------------------------

    def _correlation_matrix(self, db, symbol, open_views, today) -> Dict[str, float]:
        symbols = {symbol} | {p.symbol for p in open_views}
        try:
            stored = SymbolStatsRepository(db).matrices_for(symbols, today)
        except RepositoryException as e:
            logger.warning(f"Correlation matrix unavailable, using static table: {e}")
            return {}

        merged: Dict[str, float] = {}
        for matrix in stored.values():
            for key, value in matrix.items():
                if value is not None:
                    merged.setdefault(key, float(value))
        return merged

    def _performance(self, db, symbol) -> Optional[SymbolPerformance]:
        try:
            record = SymbolPerformanceRepository(db).get(symbol)
        except RepositoryException as e:
            logger.warning(f"Performance history unavailable for {symbol}: {e}")
            return None
        if record is None:
            return None
        return SymbolPerformance(
            symbol=record.symbol,
            win_rate=float(record.win_rate),
            avg_win=float(record.avg_win),
            avg_loss=float(record.avg_loss),
            total_trades=int(record.total_trades),
        )
