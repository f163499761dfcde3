"""
Trading Session - Session Manager.

============================================================
RESPONSIBILITY
============================================================
Owns the bookkeeping the risk gates read:

- Session lifecycle (one active session at a time)
- Opening positions from accepted risk decisions
- Marking open positions to market
- Closing, partially closing and trailing positions
- Daily report rows (feed the next day's profit cap)

============================================================
CONCURRENCY
============================================================
A position is opened only if the session's state_version
still equals the version the risk decision was taken on.
Opening and closing bump the version; price marks do not.

============================================================
P&L
============================================================
pnl = realized_pnl + (price - entry_price) x size     for BUY
pnl = realized_pnl + (entry_price - price) x size     for SELL

realized_pnl holds what partial closes already booked; size
is the remaining size. One trade is one row. Closed positions
keep their final pnl and are never modified again.

============================================================
"""

import logging
import uuid
from datetime import date, timedelta
from typing import List, Optional
from uuid import UUID

from core.clock import ClockProtocol, SystemClock
from core.exceptions import PositionClosedError, RiskError, StaleRiskStateError
from risk_manager.types import Direction, RiskDecision, TradeSignal
from storage.database import Database
from storage.models.trading import DailyReport, Position, TradingSession
from storage.repositories import (
    DailyReportRepository,
    PositionRepository,
    RecordNotFoundError,
    TradingSessionRepository,
)


logger = logging.getLogger(__name__)


def position_pnl(direction: str, entry_price: float, price: float, size: float) -> float:
    return (price - entry_price) * size * Direction(direction).sign


class TradingSessionManager:
    """Session and position bookkeeping."""

    def __init__(
        self,
        database: Database,
        clock: Optional[ClockProtocol] = None,
        partial_close_fraction: float = 0.5,
    ):
        self._database = database
        self._clock = clock or SystemClock()
        self._partial_close_fraction = partial_close_fraction

    # --------------------------------------------------------
    # SESSION LIFECYCLE
    # --------------------------------------------------------

    def start(self, initial_balance: float, mode: str = "paper") -> TradingSession:
        """Start a new session; any active session is stopped first."""
        if initial_balance <= 0:
            raise ValueError(f"initial_balance must be positive: {initial_balance}")

        with self._database.transaction_scope() as session:
            sessions = TradingSessionRepository(session)
            for active in sessions.list_active():
                self._finish(session, active, "superseded by new session")

            record = sessions.create(
                initial_balance=initial_balance,
                started_at=self._clock.now(),
                mode=mode,
            )

        logger.info(f"Trading session {record.id} started ({mode}, balance {initial_balance:.2f})")
        return record

    def stop(self, reason: str = "manual stop", session_id: Optional[UUID] = None) -> Optional[TradingSession]:
        """Stop the given (or active) session. Returns None when nothing was active."""
        with self._database.transaction_scope() as session:
            record = self._resolve(session, session_id)
            if record is None or record.status != "active":
                logger.info("No active trading session to stop")
                return None
            self._finish(session, record, reason)

        logger.info(f"Trading session {record.id} stopped: {reason}")
        return record

    def active_session(self) -> Optional[TradingSession]:
        with self._database.session_scope() as session:
            return TradingSessionRepository(session).get_active()

    def current_balance(self, session_id: Optional[UUID] = None) -> float:
        """initial_balance + sum(pnl of all positions of the session)."""
        with self._database.session_scope() as session:
            record = self._resolve(session, session_id)
            if record is None:
                raise RiskError("No trading session to compute a balance for")
            return float(record.initial_balance) + PositionRepository(session).total_pnl(record.id)

    def _finish(self, session, record: TradingSession, reason: str) -> None:
        positions = PositionRepository(session)
        closed = [
            p for p in positions.list_for_session(record.id)
            if p.status == "closed" and p.closed_at is not None
        ]

        record.status = "stopped"
        record.ended_at = self._clock.now()
        record.stop_reason = reason
        record.final_balance = float(record.initial_balance) + positions.total_pnl(record.id)
        record.total_trades = len(closed)
        record.winning_trades = sum(1 for p in closed if p.pnl > 0)
        record.losing_trades = sum(1 for p in closed if p.pnl < 0)
        session.flush()

    def _resolve(self, session, session_id: Optional[UUID]) -> Optional[TradingSession]:
        sessions = TradingSessionRepository(session)
        if session_id is not None:
            return sessions.get(session_id)
        return sessions.get_active()

    # --------------------------------------------------------
    # POSITIONS
    # --------------------------------------------------------

    def open_position(
        self,
        signal: TradeSignal,
        decision: RiskDecision,
        deal_id: Optional[str] = None,
    ) -> Position:
        """
        Open a position from an accepted decision.

        Raises:
            RiskError: the decision was a rejection or has no session
            StaleRiskStateError: session state changed since validation
        """
        if not decision.allowed or decision.adjusted_size <= 0:
            raise RiskError(
                f"Cannot open position from rejected decision: {decision.reason}",
                context={"symbol": signal.symbol},
            )
        if decision.session_id is None or decision.state_version is None:
            raise RiskError("Decision is not bound to a session state", context={"symbol": signal.symbol})

        levels = decision.levels
        now = self._clock.now()

        with self._database.transaction_scope() as session:
            sessions = TradingSessionRepository(session)
            record = sessions.get(decision.session_id)
            if record is None or record.status != "active":
                raise RiskError(f"Trading session {decision.session_id} is not active")

            if not sessions.claim_version(decision.session_id, decision.state_version):
                raise StaleRiskStateError(decision.session_id, decision.state_version)

            position = PositionRepository(session).add(Position(
                deal_id=deal_id or uuid.uuid4().hex,
                session_id=decision.session_id,
                symbol=signal.symbol,
                direction=signal.direction.value,
                size=decision.adjusted_size,
                entry_price=signal.price,
                current_price=signal.price,
                stop_loss=levels.stop_loss if levels else signal.stop_loss,
                take_profit=levels.take_profit if levels else signal.take_profit,
                pnl=0.0,
                realized_pnl=0.0,
                status="open",
                model_id=signal.model_id or None,
                confidence=signal.confidence,
                opened_at=now,
            ))

        logger.info(
            f"Opened {position.direction} {position.symbol} size={position.size:.4f} "
            f"@ {position.entry_price} (deal {position.deal_id})"
        )
        return position

    def mark_price(self, symbol: str, bid: float, ask: float, session_id: Optional[UUID] = None) -> int:
        """Mark open positions of symbol at the mid price. Returns positions updated."""
        mid = (bid + ask) / 2

        with self._database.transaction_scope() as session:
            record = self._resolve(session, session_id)
            if record is None:
                return 0
            open_positions = PositionRepository(session).list_open(record.id, symbol=symbol)
            for position in open_positions:
                position.current_price = mid
                position.pnl = (position.realized_pnl or 0.0) + position_pnl(
                    position.direction, position.entry_price, mid, position.size
                )
            session.flush()

        return len(open_positions)

    def close_position(self, deal_id: str, exit_price: float, reason: str = "manual") -> Position:
        """
        Close a position at exit_price, realizing its pnl.

        Raises:
            RecordNotFoundError: unknown deal_id
            PositionClosedError: already closed
        """
        with self._database.transaction_scope() as session:
            position = self._get_open(session, deal_id)

            position.current_price = exit_price
            position.pnl = (position.realized_pnl or 0.0) + position_pnl(
                position.direction, position.entry_price, exit_price, position.size
            )
            position.status = "closed"
            position.close_reason = reason
            position.closed_at = self._clock.now()

            TradingSessionRepository(session).bump_version(position.session_id)
            session.flush()

        logger.info(f"Closed {position.symbol} deal {deal_id} @ {exit_price}: pnl={position.pnl:.2f} ({reason})")
        return position

    def partial_close(
        self,
        deal_id: str,
        exit_price: float,
        fraction: Optional[float] = None,
        reason: str = "partial close",
    ) -> Position:
        """
        Close a fraction of a position.

        The pnl of the closed part is booked into realized_pnl and
        the remainder stays open with status "partial". The trade
        keeps a single row.

        Returns:
            The position with its reduced size
        """
        fraction = self._partial_close_fraction if fraction is None else fraction
        if not 0 < fraction < 1:
            raise ValueError(f"fraction must be in (0, 1): {fraction}")

        with self._database.transaction_scope() as session:
            position = self._get_open(session, deal_id)

            closed_size = position.size * fraction
            booked = position_pnl(position.direction, position.entry_price, exit_price, closed_size)

            position.realized_pnl = (position.realized_pnl or 0.0) + booked
            position.size -= closed_size
            position.current_price = exit_price
            position.pnl = position.realized_pnl + position_pnl(
                position.direction, position.entry_price, exit_price, position.size
            )
            position.status = "partial"

            TradingSessionRepository(session).bump_version(position.session_id)
            session.flush()

        logger.info(
            f"Partially closed deal {deal_id}: {closed_size:.4f} @ {exit_price}, "
            f"booked {booked:.2f} ({reason})"
        )
        return position

    def apply_trailing_stop(self, deal_id: str, new_stop: float) -> bool:
        """
        Move the stop loss, only ever in the protective direction.

        Returns:
            True if the stop was moved
        """
        with self._database.transaction_scope() as session:
            position = self._get_open(session, deal_id)
            current = position.stop_loss
            is_buy = Direction(position.direction) is Direction.BUY

            if current is not None and (new_stop <= current if is_buy else new_stop >= current):
                logger.debug(f"Trailing stop {new_stop} does not tighten {current} for deal {deal_id}")
                return False

            position.stop_loss = new_stop
            session.flush()

        logger.info(f"Trailing stop for deal {deal_id} moved {current} -> {new_stop}")
        return True

    def open_positions(self, session_id: Optional[UUID] = None) -> List[Position]:
        with self._database.session_scope() as session:
            record = self._resolve(session, session_id)
            if record is None:
                return []
            return PositionRepository(session).list_open(record.id)

    def _get_open(self, session, deal_id: str) -> Position:
        position = PositionRepository(session).get_by_deal_id(deal_id)
        if position is None:
            raise RecordNotFoundError("PositionRepository", deal_id, id_field="deal_id")
        if position.status == "closed":
            raise PositionClosedError(deal_id)
        return position

    # --------------------------------------------------------
    # DAILY REPORT
    # --------------------------------------------------------

    def record_daily_report(self, day: Optional[date] = None, session_id: Optional[UUID] = None) -> DailyReport:
        """
        Write (or refresh) the daily_reports row of a session for day.

        total_daily_profit is the net pnl of positions closed that
        day; it feeds the next day's profit cap.
        """
        day = day or self._clock.today()
        start = self._clock.start_of_day(day)
        end = start + timedelta(days=1)

        with self._database.transaction_scope() as session:
            record = self._resolve(session, session_id)
            if record is None:
                raise RiskError("No trading session to report on")

            closed = PositionRepository(session).list_closed_between(record.id, start, end)
            wins = [p.pnl for p in closed if p.pnl > 0]
            losses = [p.pnl for p in closed if p.pnl < 0]

            report = DailyReportRepository(session).upsert(DailyReport(
                session_id=record.id,
                date=day,
                total_trades=len(closed),
                winning_trades=len(wins),
                losing_trades=len(losses),
                total_daily_profit=sum(p.pnl for p in closed),
                total_daily_loss=abs(sum(losses)),
                win_rate=len(wins) / len(closed) if closed else 0.0,
            ))

        logger.info(
            f"Daily report {day.isoformat()}: {report.total_trades} trades, "
            f"profit {report.total_daily_profit:.2f}"
        )
        return report
