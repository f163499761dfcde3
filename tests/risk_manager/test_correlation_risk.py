"""
Tests for the correlation risk assessor.
"""

from datetime import datetime, timezone

import pytest

from risk_manager.correlation import CorrelationRiskAssessor, pair_key
from risk_manager.types import Direction, OpenPositionView


# ============================================================
# FIXTURES
# ============================================================

def view(symbol, size=1.0):
    return OpenPositionView(
        deal_id=f"{symbol}-1",
        symbol=symbol,
        direction=Direction.BUY,
        size=size,
        entry_price=1.0,
        current_price=1.0,
        pnl=0.0,
        opened_at=datetime(2026, 3, 10, tzinfo=timezone.utc),
    )


@pytest.fixture
def assessor():
    return CorrelationRiskAssessor()


# ============================================================
# TESTS
# ============================================================

class TestCorrelationLookup:

    def test_pair_key(self):
        assert pair_key("EURUSD", "GBPUSD") == "EURUSD_GBPUSD"

    def test_stored_value_either_order(self, assessor):
        matrix = {"GBPUSD_EURUSD": -0.9}
        assert assessor.correlation("EURUSD", "GBPUSD", matrix) == -0.9

    def test_stored_zero_is_kept(self, assessor):
        assert assessor.correlation("EURUSD", "GBPUSD", {"EURUSD_GBPUSD": 0.0}) == 0.0

    def test_static_fallback(self, assessor):
        assert assessor.correlation("GBPUSD", "EURUSD", {}) == 0.8

    def test_default_fallback(self, assessor):
        assert assessor.correlation("EURUSD", "NVDA", {}) == 0.1


class TestCorrelationRisk:

    def test_no_positions(self, assessor):
        assert assessor.assess("EURUSD", []) == 0.0

    def test_same_symbol_ignored(self, assessor):
        assert assessor.assess("EURUSD", [view("EURUSD")]) == 0.0

    def test_size_weighted_absolute_average(self, assessor):
        positions = [view("GBPUSD", size=3.0), view("NVDA", size=1.0)]
        matrix = {"EURUSD_GBPUSD": -0.9}
        # (0.9 * 3 + 0.1 * 1) / 4
        assert assessor.assess("EURUSD", positions, matrix) == pytest.approx(0.7)

    def test_zero_size_weighs_one(self, assessor):
        positions = [view("GBPUSD", size=0.0), view("NVDA", size=0.0)]
        assert assessor.assess("EURUSD", positions) == pytest.approx(0.45)
