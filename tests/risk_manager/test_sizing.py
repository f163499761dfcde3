"""
Tests for position sizing.

============================================================
PURPOSE
============================================================
1. Kelly fraction from history and from the signal
2. Volatility adjustment bands
3. Risk-based size, max-risk cap and size ceiling

============================================================
"""

import pytest

from risk_manager.config import RiskLimits
from risk_manager.sizing import (
    PositionSizer,
    full_kelly,
    kelly_fraction_from_history,
    kelly_fraction_from_signal,
    volatility_adjustment,
)
from risk_manager.types import Direction, SymbolPerformance, TradeSignal


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def signal():
    """EURUSD buy: 1% stop, 2% target."""
    return TradeSignal(
        symbol="EURUSD",
        direction=Direction.BUY,
        price=1.1,
        confidence=0.8,
        stop_loss=1.089,
        take_profit=1.122,
    )


@pytest.fixture
def performance():
    return SymbolPerformance(
        symbol="EURUSD",
        win_rate=0.6,
        avg_win=150.0,
        avg_loss=100.0,
        total_trades=40,
    )


# ============================================================
# KELLY
# ============================================================

class TestKelly:

    def test_full_kelly(self):
        assert full_kelly(0.6, 1.5) == pytest.approx(0.5 / 1.5)

    def test_full_kelly_floors_negative_edge(self):
        assert full_kelly(0.2, 1.0) == 0.0

    def test_full_kelly_zero_payoff(self):
        assert full_kelly(0.9, 0.0) == 0.0

    def test_history_kelly_is_quarter_strength(self, performance):
        assert kelly_fraction_from_history(performance) == pytest.approx(0.0833, abs=1e-4)

    def test_history_kelly_uses_loss_magnitude(self, performance):
        negative = SymbolPerformance("EURUSD", 0.6, 150.0, -100.0, 40)
        assert kelly_fraction_from_history(negative) == pytest.approx(
            kelly_fraction_from_history(performance)
        )

    def test_history_without_losses_uses_default_payoff(self):
        perf = SymbolPerformance("EURUSD", 0.6, 150.0, 0.0, 40)
        # b = 2: (2 * 0.6 - 0.4) / 2 * 0.25
        assert kelly_fraction_from_history(perf) == pytest.approx(0.1)

    def test_signal_kelly(self, signal):
        # p = 0.64, b = 2
        expected = (2 * 0.64 - 0.36) / 2 * 0.25
        assert kelly_fraction_from_signal(signal) == pytest.approx(expected)

    def test_sizer_prefers_history(self, signal, performance):
        fraction, source = PositionSizer().kelly_fraction(signal, performance)
        assert source == "history"
        assert fraction == pytest.approx(0.0833, abs=1e-4)

    def test_sizer_ignores_short_history(self, signal):
        short = SymbolPerformance("EURUSD", 0.9, 500.0, 10.0, 5)
        _, source = PositionSizer().kelly_fraction(signal, short)
        assert source == "signal"


# ============================================================
# VOLATILITY
# ============================================================

class TestVolatilityAdjustment:

    @pytest.mark.parametrize("volatility,expected", [
        (0.015, 1.0),
        (0.02, 1.0),
        (0.025, 0.7),
        (0.03, 0.7),
        (0.045, 0.5),
    ])
    def test_bands(self, volatility, expected):
        assert volatility_adjustment(volatility) == expected


# ============================================================
# SIZE
# ============================================================

class TestPositionSizer:

    def test_risk_based_size_wins_when_smaller(self, signal):
        result = PositionSizer().calculate(signal, balance=10000.0, volatility=0.015)

        # risk size = 0.07 * 10000 / (0.01 * 1.1 * 100000)
        assert result.risk_size == pytest.approx(700 / 1100)
        assert result.kelly_size > result.risk_size
        assert result.size == pytest.approx(700 / 1100 * 0.8 ** 2)
        assert not result.capped_by_max_risk

    def test_high_volatility_halves_size(self, signal):
        calm = PositionSizer().calculate(signal, 10000.0, 0.015)
        wild = PositionSizer().calculate(signal, 10000.0, 0.05)
        assert wild.size == pytest.approx(calm.size * 0.5)

    def test_max_risk_cap(self, signal):
        limits = RiskLimits(max_risk_per_trade_pct=1e-7)
        result = PositionSizer(limits).calculate(signal, 10000.0, 0.015)

        assert result.capped_by_max_risk
        assert result.size * signal.price * signal.stop_distance_pct == pytest.approx(0.001)

    def test_size_ceiling(self, signal):
        limits = RiskLimits(risk_per_trade_pct=50.0)
        result = PositionSizer(limits).calculate(signal, 10000.0, 0.015)
        assert result.size == limits.max_position_size

    def test_zero_balance(self, signal):
        assert PositionSizer().calculate(signal, 0.0, 0.015).size == 0.0
