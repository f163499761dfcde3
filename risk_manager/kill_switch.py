"""
Risk Manager - Kill Switch.

============================================================
PURPOSE
============================================================
Account-wide escalating circuit breaker.

============================================================
LEVELS (any trigger of a level activates it)
============================================================
| Level         | Drawdown | Daily loss | Loss streak |
|---------------|----------|------------|-------------|
| 3 EMERGENCY   | > 14%    | > 5%       | >= 5        |
| 2 CAUTION     | > 12%    | > 4.5%     | >= 3        |
| 1 WARNING     | > 8%     | > 3%       | >= 2        |
| 0 INACTIVE    |          |            |             |

The level is recomputed from current conditions on every
evaluation and is NOT latched.

Expected response by callers:
- Level 1: halve new position sizes
- Level 2: stop submitting new trades
- Level 3: close every position and stop the session

============================================================
"""

from typing import Iterable, Optional

from .config import KillSwitchConfig, KillSwitchLevelThresholds
from .types import KillSwitchLevel, KillSwitchStatus


_LEVEL_LABELS = {
    KillSwitchLevel.WARNING: "WARNING",
    KillSwitchLevel.CAUTION: "CAUTION",
    KillSwitchLevel.EMERGENCY: "EMERGENCY",
}


def count_consecutive_losses(recent_pnls: Iterable[float]) -> int:
    """
    Length of the losing streak.

    Args:
        recent_pnls: pnl of closed trades, most recent first

    A trade with pnl >= 0 ends the streak.
    """
    streak = 0
    for pnl in recent_pnls:
        if pnl < 0:
            streak += 1
        else:
            break
    return streak


class KillSwitchEvaluator:
    """Maps drawdown, daily loss and loss streak to a kill-switch level."""

    def __init__(self, config: Optional[KillSwitchConfig] = None):
        self.config = config or KillSwitchConfig()

    @staticmethod
    def _triggered(
        thresholds: KillSwitchLevelThresholds,
        drawdown: float,
        daily_loss_pct: float,
        consecutive_losses: int,
    ) -> bool:
        return (
            drawdown > thresholds.drawdown_pct
            or daily_loss_pct > thresholds.daily_loss_pct
            or consecutive_losses >= thresholds.consecutive_losses
        )

    def evaluate(
        self,
        drawdown: float,
        daily_loss_pct: float,
        consecutive_losses: int,
    ) -> KillSwitchStatus:
        cfg = self.config
        level = KillSwitchLevel.INACTIVE

        for candidate, thresholds in (
            (KillSwitchLevel.EMERGENCY, cfg.level_3),
            (KillSwitchLevel.CAUTION, cfg.level_2),
            (KillSwitchLevel.WARNING, cfg.level_1),
        ):
            if self._triggered(thresholds, drawdown, daily_loss_pct, consecutive_losses):
                level = candidate
                break

        if level is KillSwitchLevel.INACTIVE:
            reason = "Kill switch inactive"
        else:
            reason = (
                f"Level {int(level)} {_LEVEL_LABELS[level]}: "
                f"Drawdown {drawdown * 100:.2f}%, "
                f"Daily Loss {daily_loss_pct * 100:.2f}%, "
                f"Consecutive Losses: {consecutive_losses}"
            )

        return KillSwitchStatus(
            level=level,
            reason=reason,
            drawdown=drawdown,
            daily_loss_pct=daily_loss_pct,
            consecutive_losses=consecutive_losses,
            size_multiplier=self._size_multiplier(level),
        )

    def _size_multiplier(self, level: KillSwitchLevel) -> float:
        if level is KillSwitchLevel.INACTIVE:
            return 1.0
        if level is KillSwitchLevel.WARNING:
            return self.config.level_1_size_multiplier
        return 0.0
