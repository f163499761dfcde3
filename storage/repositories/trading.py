"""
Trading Session & Position Repositories.

============================================================
PURPOSE
============================================================
Data access for trading sessions and their positions.

============================================================
CONCURRENCY
============================================================
TradingSession.state_version is the optimistic-concurrency
token of a session. claim_version() is a conditional UPDATE
("... WHERE state_version = :expected") so only one writer
can move a session forward from a given version.

============================================================
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from storage.models.trading import Position, TradingSession
from storage.repositories.base import BaseRepository
from storage.repositories.exceptions import RecordNotFoundError


class TradingSessionRepository(BaseRepository[TradingSession]):
    """Repository for trading sessions."""

    def __init__(self, session: Session):
        super().__init__(session, TradingSession, "TradingSessionRepository")

    def create(
        self,
        initial_balance: float,
        started_at: datetime,
        mode: str = "paper",
    ) -> TradingSession:
        record = TradingSession(
            initial_balance=initial_balance,
            started_at=started_at,
            mode=mode,
            status="active",
            state_version=0,
        )
        return self._add(record)

    def get(self, session_id: UUID) -> Optional[TradingSession]:
        return self._get_by_id(session_id)

    def get_or_raise(self, session_id: UUID) -> TradingSession:
        record = self._get_by_id(session_id)
        if record is None:
            raise RecordNotFoundError(self._repository_name, session_id)
        return record

    def get_active(self) -> Optional[TradingSession]:
        """Most recently started active session, if any."""
        stmt = (
            select(TradingSession)
            .where(TradingSession.status == "active")
            .order_by(TradingSession.started_at.desc())
            .limit(1)
        )
        return self._execute_scalar(stmt)

    def list_active(self) -> List[TradingSession]:
        stmt = select(TradingSession).where(TradingSession.status == "active")
        return self._execute_query(stmt)

    def claim_version(self, session_id: UUID, expected_version: int) -> bool:
        """
        Advance state_version only if it still equals expected_version.

        Returns:
            True if this caller won the update
        """
        stmt = (
            update(TradingSession)
            .where(
                TradingSession.id == session_id,
                TradingSession.state_version == expected_version,
            )
            .values(state_version=TradingSession.state_version + 1)
            .execution_options(synchronize_session=False)
        )
        claimed = self._execute_write(stmt, "claim_version") == 1
        if claimed:
            record = self._session.get(TradingSession, session_id)
            if record is not None:
                self._session.refresh(record, ["state_version"])
        return claimed

    def bump_version(self, session_id: UUID) -> None:
        stmt = (
            update(TradingSession)
            .where(TradingSession.id == session_id)
            .values(state_version=TradingSession.state_version + 1)
            .execution_options(synchronize_session=False)
        )
        self._execute_write(stmt, "bump_version")


class PositionRepository(BaseRepository[Position]):
    """Repository for positions of a trading session."""

    def __init__(self, session: Session):
        super().__init__(session, Position, "PositionRepository")

    def add(self, position: Position) -> Position:
        return self._add(position)

    def get_by_deal_id(self, deal_id: str) -> Optional[Position]:
        stmt = select(Position).where(Position.deal_id == deal_id)
        return self._execute_scalar(stmt)

    def list_for_session(self, session_id: UUID) -> List[Position]:
        stmt = (
            select(Position)
            .where(Position.session_id == session_id)
            .order_by(Position.opened_at)
        )
        return self._execute_query(stmt)

    def list_open(self, session_id: UUID, symbol: Optional[str] = None) -> List[Position]:
        stmt = select(Position).where(
            Position.session_id == session_id,
            Position.status != "closed",
        )
        if symbol is not None:
            stmt = stmt.where(Position.symbol == symbol)
        return self._execute_query(stmt.order_by(Position.opened_at))

    def total_pnl(self, session_id: UUID) -> float:
        """Sum of pnl over all positions, open and closed."""
        stmt = select(func.coalesce(func.sum(Position.pnl), 0.0)).where(
            Position.session_id == session_id
        )
        return float(self._execute_scalar(stmt) or 0.0)

    def pnl_opened_between(self, session_id: UUID, start: datetime, end: datetime) -> float:
        """Sum of pnl of positions opened in [start, end)."""
        stmt = select(func.coalesce(func.sum(Position.pnl), 0.0)).where(
            Position.session_id == session_id,
            Position.opened_at >= start,
            Position.opened_at < end,
        )
        return float(self._execute_scalar(stmt) or 0.0)

    def count_opened_since(
        self,
        session_id: UUID,
        since: datetime,
        symbol: Optional[str] = None,
    ) -> int:
        stmt = select(func.count(Position.id)).where(
            Position.session_id == session_id,
            Position.opened_at >= since,
        )
        if symbol is not None:
            stmt = stmt.where(Position.symbol == symbol)
        return int(self._execute_scalar(stmt) or 0)

    def recent_closed_pnls(self, session_id: UUID, limit: int = 10) -> List[float]:
        """pnl of the most recently closed positions, newest first."""
        stmt = (
            select(Position.pnl)
            .where(
                Position.session_id == session_id,
                Position.status == "closed",
                Position.closed_at.is_not(None),
            )
            .order_by(Position.closed_at.desc())
            .limit(limit)
        )
        return [float(value) for value in self._execute_query(stmt)]

    def list_closed_between(self, session_id: UUID, start: datetime, end: datetime) -> List[Position]:
        stmt = (
            select(Position)
            .where(
                Position.session_id == session_id,
                Position.status == "closed",
                Position.closed_at >= start,
                Position.closed_at < end,
            )
            .order_by(Position.closed_at)
        )
        return self._execute_query(stmt)
