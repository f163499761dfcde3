"""
Risk Manager - Dynamic Protective Levels.

============================================================
PURPOSE
============================================================
Stop-loss and take-profit for an accepted trade.

============================================================
STOP-LOSS
============================================================
Three candidates:
- ATR:        price -/+ ATR x 2.5 x (2 - confidence)
- Percentage: price x (1 -/+ (0.01 + volatility))
- Technical:  support (BUY) / resistance (SELL)

The most conservative candidate wins: the highest for a BUY,
the lowest for a SELL.

Support/resistance comes from a pluggable strategy. The
default PercentBandStrategy (+/-0.5% of price) is a stand-in,
not technical analysis; real strategies can be injected.

============================================================
TAKE-PROFIT
============================================================
rr = 1.5 + confidence x 2
     x 1.2 if volatility > 2%
     x model multiplier
     x 0.8 if market condition < 0.5
take_profit = price +/- |price - stop_loss| x rr

============================================================
"""

from typing import Optional, Protocol, Tuple

from .config import MarketReference
from .types import Direction, ProtectiveLevels, TradeSignal


# ============================================================
# PLUGGABLE INPUTS
# ============================================================

class SupportResistanceStrategy(Protocol):
    """Returns (support, resistance) for a symbol at a price."""

    def levels(self, symbol: str, price: float) -> Tuple[float, float]:
        ...


class PercentBandStrategy:
    """Support and resistance as a fixed band around price."""

    def __init__(self, band: float = 0.005):
        self.band = band

    def levels(self, symbol: str, price: float) -> Tuple[float, float]:
        return price * (1 - self.band), price * (1 + self.band)


class MarketConditionProvider(Protocol):
    """Aggregate market condition score in [0, 1]; higher is calmer."""

    def score(self, symbol: Optional[str] = None) -> float:
        ...


class StaticMarketCondition:
    """
    Constant market condition score.

    Validation must be deterministic, so the default provider
    never samples randomly.
    """

    def __init__(self, value: float = 0.85):
        self.value = value

    def score(self, symbol: Optional[str] = None) -> float:
        return self.value


# ============================================================
# CALCULATOR
# ============================================================

ATR_STOP_MULTIPLIER = 2.5
BASE_PERCENT_STOP = 0.01


class ProtectiveLevelCalculator:
    """Computes dynamic stop-loss and take-profit levels."""

    def __init__(
        self,
        reference: Optional[MarketReference] = None,
        support_resistance: Optional[SupportResistanceStrategy] = None,
        market_condition: Optional[MarketConditionProvider] = None,
    ):
        self.reference = reference or MarketReference()
        self.support_resistance = support_resistance or PercentBandStrategy()
        self.market_condition = market_condition or StaticMarketCondition()

    def stop_loss(self, signal: TradeSignal, atr: float, volatility: float) -> float:
        price = signal.price
        atr_distance = atr * ATR_STOP_MULTIPLIER * (2 - signal.confidence)
        pct_distance = BASE_PERCENT_STOP + volatility
        support, resistance = self.support_resistance.levels(signal.symbol, price)

        if signal.direction is Direction.BUY:
            return max(price - atr_distance, price * (1 - pct_distance), support)
        return min(price + atr_distance, price * (1 + pct_distance), resistance)

    def risk_reward_ratio(self, signal: TradeSignal, volatility: float) -> float:
        rr = 1.5 + signal.confidence * 2
        if volatility > 0.02:
            rr *= 1.2
        rr *= self.reference.model_multiplier(signal.model_id)
        if self.market_condition.score(signal.symbol) < 0.5:
            rr *= 0.8
        return rr

    def take_profit(self, signal: TradeSignal, stop_loss: float, volatility: float) -> Tuple[float, float]:
        """Returns (take_profit, risk_reward_ratio)."""
        rr = self.risk_reward_ratio(signal, volatility)
        distance = abs(signal.price - stop_loss)
        return signal.price + signal.direction.sign * distance * rr, rr

    def calculate(self, signal: TradeSignal) -> ProtectiveLevels:
        atr = self.reference.atr_for(signal.symbol)
        volatility = self.reference.volatility_for(signal.symbol)

        stop = self.stop_loss(signal, atr, volatility)
        target, rr = self.take_profit(signal, stop, volatility)

        return ProtectiveLevels(
            stop_loss=stop,
            take_profit=target,
            risk_reward_ratio=rr,
            atr=atr,
            volatility=volatility,
        )
