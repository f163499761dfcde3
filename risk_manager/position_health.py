"""
Risk Manager - Position Health.

============================================================
PURPOSE
============================================================
Recommends an action for every open position. Rules are
evaluated in priority order and the FIRST match wins:

1. Position lost > 5% of entry value  -> CLOSE
2. Unrealized profit > 2% of balance  -> ADJUST_SL (trailing)
3. Held longer than 24 hours          -> PARTIAL_CLOSE
4. Market condition score < 0.3       -> CLOSE
5. Otherwise                          -> HOLD

Assessment is a pure read; applying the action is up to the
caller (see trading_session.supervisor).

============================================================
"""

from datetime import datetime, timedelta
from typing import Optional

from .config import PositionHealthConfig
from .types import Direction, OpenPositionView, PositionAction, PositionAssessment


def position_drawdown(position: OpenPositionView) -> float:
    """Adverse price move relative to entry, 0 when in profit."""
    if position.entry_price <= 0:
        return 0.0
    move = (position.current_price - position.entry_price) / position.entry_price
    return max(0.0, -move * position.direction.sign)


class PositionHealthAssessor:
    """First-match position health rules."""

    def __init__(self, config: Optional[PositionHealthConfig] = None):
        self.config = config or PositionHealthConfig()

    def trailing_stop(self, position: OpenPositionView) -> Optional[float]:
        """Stop one offset away from current price, only if tighter than the existing one."""
        offset = self.config.trailing_offset_pct
        if position.direction is Direction.BUY:
            candidate = position.current_price * (1 - offset)
            if position.stop_loss is None or candidate > position.stop_loss:
                return candidate
        else:
            candidate = position.current_price * (1 + offset)
            if position.stop_loss is None or candidate < position.stop_loss:
                return candidate
        return None

    def assess(
        self,
        position: OpenPositionView,
        balance: float,
        market_condition: float,
        now: datetime,
    ) -> PositionAssessment:
        cfg = self.config
        drawdown = position_drawdown(position)

        def result(action: PositionAction, reason: str, stop: Optional[float] = None) -> PositionAssessment:
            return PositionAssessment(
                deal_id=position.deal_id,
                symbol=position.symbol,
                action=action,
                reason=reason,
                position_drawdown=drawdown,
                suggested_stop_loss=stop,
            )

        if drawdown > cfg.emergency_drawdown_pct:
            return result(PositionAction.CLOSE, f"Emergency stop: {drawdown * 100:.2f}% loss")

        if position.pnl > cfg.trailing_profit_pct_of_balance * balance:
            return result(
                PositionAction.ADJUST_SL,
                "Trailing stop activation",
                self.trailing_stop(position),
            )

        if now - position.opened_at > timedelta(hours=cfg.max_hold_hours):
            return result(PositionAction.PARTIAL_CLOSE, "Time-based partial exit")

        if market_condition < cfg.poor_market_condition:
            return result(PositionAction.CLOSE, "Poor market conditions")

        return result(PositionAction.HOLD, "Position within acceptable risk parameters")
