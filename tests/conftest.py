"""
Shared test fixtures.

============================================================
PURPOSE
============================================================
- In-memory SQLite database with the full schema
- Deterministic MockClock
- Helpers to seed sessions and positions

============================================================
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from core.clock import MockClock
from storage.database import Database
from storage.models.trading import Position, TradingSession


NOW = datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def clock():
    return MockClock(NOW)


@pytest.fixture
def database():
    db = Database("sqlite://")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def trading_session(database, clock):
    """Active paper session with a 10,000 balance."""
    with database.transaction_scope() as session:
        record = TradingSession(
            initial_balance=10000.0,
            started_at=clock.now() - timedelta(days=2),
            mode="paper",
            status="active",
            state_version=0,
        )
        session.add(record)
    return record


@pytest.fixture
def add_position(database, trading_session, clock):
    """Factory inserting a position into the active session."""
    counter = {"n": 0}

    def _add(
        symbol: str = "EURUSD",
        direction: str = "BUY",
        size: float = 1.0,
        entry_price: float = 1.1,
        pnl: float = 0.0,
        status: str = "open",
        opened_at: Optional[datetime] = None,
        closed_at: Optional[datetime] = None,
        current_price: Optional[float] = None,
        stop_loss: Optional[float] = None,
    ) -> Position:
        counter["n"] += 1
        with database.transaction_scope() as session:
            position = Position(
                deal_id=f"deal-{counter['n']}",
                session_id=trading_session.id,
                symbol=symbol,
                direction=direction,
                size=size,
                entry_price=entry_price,
                current_price=current_price if current_price is not None else entry_price,
                stop_loss=stop_loss,
                pnl=pnl,
                status=status,
                opened_at=opened_at or clock.now(),
                closed_at=closed_at,
            )
            session.add(position)
        return position

    return _add
