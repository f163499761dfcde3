"""
Tests for the kill switch.

============================================================
PURPOSE
============================================================
1. Level selection (highest triggered level wins)
2. Loss streak counting
3. Reason text and size multipliers

============================================================
"""

import pytest

from risk_manager.kill_switch import KillSwitchEvaluator, count_consecutive_losses
from risk_manager.types import KillSwitchLevel


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def evaluator():
    return KillSwitchEvaluator()


# ============================================================
# LOSS STREAK
# ============================================================

class TestConsecutiveLosses:

    def test_counts_leading_losses(self):
        assert count_consecutive_losses([-1, -2, -3, 5, -1]) == 3

    def test_win_first_breaks_streak(self):
        assert count_consecutive_losses([4, -1, -1]) == 0

    def test_break_even_is_not_a_loss(self):
        assert count_consecutive_losses([-1, 0, -1]) == 1

    def test_empty(self):
        assert count_consecutive_losses([]) == 0


# ============================================================
# LEVELS
# ============================================================

class TestKillSwitchLevels:

    def test_inactive(self, evaluator):
        status = evaluator.evaluate(0.01, 0.0, 0)
        assert status.level == KillSwitchLevel.INACTIVE
        assert status.reason == "Kill switch inactive"
        assert status.size_multiplier == 1.0
        assert status.allows_new_trades

    def test_drawdown_eleven_percent_is_warning(self, evaluator):
        status = evaluator.evaluate(0.11, 0.0, 0)
        assert status.level == KillSwitchLevel.WARNING
        assert status.size_multiplier == 0.5
        assert status.allows_new_trades
        assert not status.requires_liquidation

    def test_caution_blocks_new_trades(self, evaluator):
        status = evaluator.evaluate(0.0, 0.046, 0)
        assert status.level == KillSwitchLevel.CAUTION
        assert not status.allows_new_trades
        assert status.size_multiplier == 0.0

    def test_five_losses_is_emergency_regardless_of_drawdown(self, evaluator):
        status = evaluator.evaluate(0.0, 0.0, 5)
        assert status.level == KillSwitchLevel.EMERGENCY
        assert status.requires_liquidation

    def test_thresholds_are_strict_for_percentages(self, evaluator):
        assert evaluator.evaluate(0.14, 0.0, 0).level == KillSwitchLevel.CAUTION
        assert evaluator.evaluate(0.1401, 0.0, 0).level == KillSwitchLevel.EMERGENCY

    def test_streak_thresholds_are_inclusive(self, evaluator):
        assert evaluator.evaluate(0.0, 0.0, 2).level == KillSwitchLevel.WARNING
        assert evaluator.evaluate(0.0, 0.0, 3).level == KillSwitchLevel.CAUTION

    def test_reason_text(self, evaluator):
        status = evaluator.evaluate(0.15, 0.02, 1)
        assert status.reason == (
            "Level 3 EMERGENCY: Drawdown 15.00%, Daily Loss 2.00%, Consecutive Losses: 1"
        )
