"""
Tests for tick persistence and retention.
"""

from datetime import timedelta

import pytest

from market_data.cache import TickCacheWriter
from market_data.retention import TickRetentionJob, prune_tick_cache
from market_data.types import MarketTick
from storage.repositories import MarketTickRepository


# ============================================================
# FIXTURES
# ============================================================

def make_tick(clock, symbol="AAPL", bid=100.0, ask=100.2, minutes_ago=0):
    return MarketTick(
        symbol=symbol,
        bid=bid,
        ask=ask,
        volume=1.0,
        timestamp=clock.now() - timedelta(minutes=minutes_ago),
    )


# ============================================================
# WRITER
# ============================================================

class TestTickCacheWriter:

    def test_write_batch(self, database, clock):
        writer = TickCacheWriter(database, clock)

        assert writer.write([make_tick(clock), make_tick(clock, symbol="NVDA")]) == 2

        with database.session_scope() as session:
            latest = MarketTickRepository(session).latest("AAPL")
        assert latest.bid == pytest.approx(100.0)
        assert latest.created_at == clock.now()

    def test_empty_batch(self, database, clock):
        assert TickCacheWriter(database, clock).write([]) == 0


# ============================================================
# RETENTION
# ============================================================

class TestRetention:

    def test_prunes_ticks_older_than_three_days(self, database, clock):
        writer = TickCacheWriter(database, clock)
        writer.write([make_tick(clock)])
        clock.advance(days=2)
        writer.write([make_tick(clock)])
        clock.advance(days=1, minutes=1)

        with database.transaction_scope() as session:
            assert prune_tick_cache(session, clock.now()) == 1

        with database.session_scope() as session:
            remaining = MarketTickRepository(session).mid_prices_since(["AAPL"], clock.now() - timedelta(days=10))
        assert remaining == {"AAPL": [pytest.approx(100.1)]}

    def test_job_run_once(self, database, clock):
        TickCacheWriter(database, clock).write([make_tick(clock)])
        clock.advance(days=4)

        assert TickRetentionJob(database, clock).run_once() == 1
        assert TickRetentionJob(database, clock).run_once() == 0
