"""
Tests for the Correlation Engine.
"""

from datetime import timedelta

import pytest

from correlation_engine import CorrelationEngine, compute_correlation_matrix, pearson
from market_data.cache import TickCacheWriter
from market_data.types import MarketTick
from risk_manager import Direction, RejectReason, RiskManager, TradeSignal
from storage.repositories import SymbolStatsRepository


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def seed_prices(database, clock):
    """Write one tick per price, one minute apart, oldest first."""

    def _seed(symbol, prices, start_minutes_ago=None):
        start = start_minutes_ago if start_minutes_ago is not None else len(prices)
        ticks = [
            MarketTick(
                symbol=symbol,
                bid=price,
                ask=price,
                volume=1.0,
                timestamp=clock.now() - timedelta(minutes=start - i),
            )
            for i, price in enumerate(prices)
        ]
        TickCacheWriter(database, clock).write(ticks)

    return _seed


# ============================================================
# MATH
# ============================================================

class TestPearson:

    def test_perfect_positive(self):
        assert pearson([1, 2, 3, 4], [2, 4, 6, 8]) == pytest.approx(1.0)

    def test_perfect_negative(self):
        assert pearson([1, 2, 3, 4], [8, 6, 4, 2]) == pytest.approx(-1.0)

    def test_constant_series_is_zero(self):
        assert pearson([1, 1, 1], [1, 2, 3]) == 0.0

    def test_known_value(self):
        assert pearson([1, 2, 3, 4, 5], [2, 1, 4, 3, 5]) == pytest.approx(0.8)


class TestCorrelationMatrix:

    def test_pairs_in_input_order(self):
        series = {
            "A": list(range(12)),
            "B": list(range(12)),
            "C": list(range(12, 0, -1)),
        }
        matrix = compute_correlation_matrix(series)

        assert set(matrix) == {"A_B", "A_C", "B_C"}
        assert matrix["A_C"] == pytest.approx(-1.0)

    def test_short_pairs_skipped(self):
        matrix = compute_correlation_matrix({"A": list(range(12)), "B": list(range(9))})
        assert matrix == {}

    def test_aligned_to_most_recent_points(self):
        # Only the last 10 points of A overlap B; they rise with B.
        a = [100, 0] + list(range(10))
        b = list(range(10))
        assert compute_correlation_matrix({"A": a, "B": b})["A_B"] == pytest.approx(1.0)


# ============================================================
# ENGINE
# ============================================================

class TestCorrelationEngine:

    def test_recompute_stores_matrix_per_symbol(self, database, clock, seed_prices):
        seed_prices("EURUSD", [1.0 + i * 0.01 for i in range(15)])
        seed_prices("GBPUSD", [1.3 + i * 0.02 for i in range(15)])
        seed_prices("USDJPY", [150.0 - i for i in range(15)])

        matrix = CorrelationEngine(database, clock).recompute(["EURUSD", "GBPUSD", "USDJPY"])

        assert matrix["EURUSD_GBPUSD"] == pytest.approx(1.0)
        assert matrix["EURUSD_USDJPY"] == pytest.approx(-1.0)

        with database.session_scope() as session:
            stored = SymbolStatsRepository(session).matrices_for(["EURUSD", "USDJPY"], clock.today())
        assert set(stored["EURUSD"]) == {"EURUSD_GBPUSD", "EURUSD_USDJPY"}
        assert set(stored["USDJPY"]) == {"EURUSD_USDJPY", "GBPUSD_USDJPY"}

    def test_symbols_with_underscores(self, database, clock, seed_prices):
        seed_prices("BTC_USD", [100.0 + i for i in range(15)])
        seed_prices("ETH", [50.0 + i for i in range(15)])
        seed_prices("BTC", [200.0 - i for i in range(15)])

        CorrelationEngine(database, clock).recompute(["BTC_USD", "ETH", "BTC"])

        with database.session_scope() as session:
            stored = SymbolStatsRepository(session).matrices_for(["BTC", "BTC_USD"], clock.today())
        assert set(stored["BTC"]) == {"BTC_USD_BTC", "ETH_BTC"}
        assert set(stored["BTC_USD"]) == {"BTC_USD_ETH", "BTC_USD_BTC"}

    def test_recompute_replaces_previous_matrix(self, database, clock, seed_prices):
        seed_prices("EURUSD", [1.0 + i * 0.01 for i in range(15)])
        seed_prices("GBPUSD", [1.3 + i * 0.02 for i in range(15)])
        engine = CorrelationEngine(database, clock)
        engine.recompute(["EURUSD", "GBPUSD"])

        engine.recompute(["EURUSD", "GBPUSD"], days=0)

        with database.session_scope() as session:
            stored = SymbolStatsRepository(session).matrices_for(["EURUSD"], clock.today())
        assert stored == {"EURUSD": {}}

    def test_lookback_window(self, database, clock, seed_prices):
        seed_prices("EURUSD", [1.0 + i * 0.01 for i in range(15)], start_minutes_ago=60 * 24 * 40)
        seed_prices("GBPUSD", [1.3 + i * 0.02 for i in range(15)], start_minutes_ago=60 * 24 * 40)

        assert CorrelationEngine(database, clock).recompute(["EURUSD", "GBPUSD"]) == {}

    def test_feeds_correlation_gate(self, database, clock, seed_prices, trading_session, add_position):
        seed_prices("EURUSD", [1.0 + i * 0.01 for i in range(15)])
        seed_prices("NVDA", [500.0 + i for i in range(15)])
        CorrelationEngine(database, clock).recompute(["EURUSD", "NVDA"])
        add_position(symbol="NVDA", entry_price=500.0)

        decision = RiskManager(database, clock=clock).validate_trade(TradeSignal(
            symbol="EURUSD",
            direction=Direction.BUY,
            price=1.1,
            confidence=0.8,
            stop_loss=1.089,
            take_profit=1.122,
        ))

        assert decision.reason_code == RejectReason.CORRELATION_RISK
        assert decision.reason == "High correlation risk: 100.0%"
