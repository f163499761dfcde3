"""
Risk Manager - Position Sizing.

============================================================
PURPOSE
============================================================
Computes the size of an accepted trade.

============================================================
ALGORITHM
============================================================
1. Kelly fraction (quarter-Kelly)
   - >= 10 historical trades: b = avg_win / avg_loss
     (2.0 when avg_loss is 0), p = historical win rate
   - otherwise: b = signal reward/risk, p = confidence x 0.8
   kelly = max(0, (b*p - q) / b) x 0.25
2. kelly_size = kelly x balance / price
3. risk_size  = risk_pct x balance / (stop_dist x price x 100000)
4. size = min(kelly_size, risk_size)
          x volatility dampener (0.5 > 3%, 0.7 > 2%, else 1.0)
          x confidence^2
5. Hard cap: risk at stop <= 2% of balance
6. Clamp to 2.0 lots

Order matters: rounding and clamp order change real exposure.

============================================================
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from .config import RiskLimits
from .types import SymbolPerformance, TradeSignal


# Units per standard lot in the risk-based size formula
LOT_UNITS = 100000

# Win probability haircut applied to model confidence
CONFIDENCE_WIN_FACTOR = 0.8

# Payoff ratio assumed when the history has no recorded losses
DEFAULT_PAYOFF_RATIO = 2.0


@dataclass(frozen=True)
class SizingResult:
    """Breakdown of a sizing calculation."""

    size: float
    kelly_fraction: float
    kelly_size: float
    risk_size: float
    volatility_adjustment: float
    capped_by_max_risk: bool
    kelly_source: str
    """'history' or 'signal'."""


def full_kelly(win_probability: float, payoff_ratio: float) -> float:
    """Unscaled Kelly fraction (b*p - q) / b, floored at 0."""
    if payoff_ratio <= 0:
        return 0.0
    q = 1.0 - win_probability
    return max(0.0, (payoff_ratio * win_probability - q) / payoff_ratio)


def kelly_fraction_from_history(performance: SymbolPerformance, scale: float = 0.25) -> float:
    avg_loss = abs(performance.avg_loss)
    payoff = performance.avg_win / avg_loss if avg_loss else DEFAULT_PAYOFF_RATIO
    return full_kelly(performance.win_rate, payoff) * scale


def kelly_fraction_from_signal(signal: TradeSignal, scale: float = 0.25) -> float:
    win_probability = signal.confidence * CONFIDENCE_WIN_FACTOR
    return full_kelly(win_probability, signal.reward_risk_ratio) * scale


def volatility_adjustment(volatility: float) -> float:
    if volatility > 0.03:
        return 0.5
    if volatility > 0.02:
        return 0.7
    return 1.0


class PositionSizer:
    """Kelly and risk-based position sizing."""

    def __init__(self, limits: Optional[RiskLimits] = None):
        self._limits = limits or RiskLimits()

    def kelly_fraction(
        self,
        signal: TradeSignal,
        performance: Optional[SymbolPerformance] = None,
    ) -> Tuple[float, str]:
        limits = self._limits
        if performance is not None and performance.total_trades >= limits.min_history_trades:
            return kelly_fraction_from_history(performance, limits.kelly_scale), "history"
        return kelly_fraction_from_signal(signal, limits.kelly_scale), "signal"

    def calculate(
        self,
        signal: TradeSignal,
        balance: float,
        volatility: float,
        performance: Optional[SymbolPerformance] = None,
    ) -> SizingResult:
        limits = self._limits
        price = signal.price
        stop_distance = signal.stop_distance_pct

        kelly, source = self.kelly_fraction(signal, performance)

        if balance <= 0 or stop_distance <= 0:
            return SizingResult(0.0, kelly, 0.0, 0.0, 1.0, False, source)

        kelly_size = kelly * balance / price
        risk_size = (limits.risk_per_trade_pct * balance) / (stop_distance * price * LOT_UNITS)

        vol_adj = volatility_adjustment(volatility)
        size = min(kelly_size, risk_size) * vol_adj * (signal.confidence ** 2)

        capped = False
        max_risk = limits.max_risk_per_trade_pct * balance
        if size * price * stop_distance > max_risk:
            size = max_risk / (price * stop_distance)
            capped = True

        size = min(size, limits.max_position_size)

        return SizingResult(
            size=size,
            kelly_fraction=kelly,
            kelly_size=kelly_size,
            risk_size=risk_size,
            volatility_adjustment=vol_adj,
            capped_by_max_risk=capped,
            kelly_source=source,
        )
