"""
Risk Manager - Type Definitions.

============================================================
PURPOSE
============================================================
Value types exchanged with the risk manager:

- TradeSignal: the ONLY accepted input shape, validated at
  the boundary before any gate runs
- RiskDecision: accept/reject, adjusted size, protective
  levels and the state version the decision was taken on
- AccountState: one consistent read of the session state
- KillSwitchStatus / PositionAssessment: monitoring outputs

============================================================
DESIGN PRINCIPLES
============================================================
1. Rejections are values, never exceptions
2. All types are immutable
3. Deterministic: identical inputs give identical decisions

============================================================
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Dict, List, Mapping, Optional, Tuple
from uuid import UUID

from core.exceptions import SignalValidationError


# ============================================================
# ENUMS
# ============================================================

class Direction(str, Enum):
    """Trade direction."""

    BUY = "BUY"
    SELL = "SELL"

    @property
    def sign(self) -> int:
        """+1 for longs, -1 for shorts."""
        return 1 if self is Direction.BUY else -1


class RejectReason(str, Enum):
    """Gate that rejected a trade, in evaluation order."""

    INVALID_SIGNAL = "INVALID_SIGNAL"
    NO_ACTIVE_SESSION = "NO_ACTIVE_SESSION"
    MAX_DRAWDOWN = "MAX_DRAWDOWN"
    DAILY_PROFIT_CAP = "DAILY_PROFIT_CAP"
    DAILY_LOSS_LIMIT = "DAILY_LOSS_LIMIT"
    MAX_POSITIONS = "MAX_POSITIONS"
    MAX_SYMBOL_POSITIONS = "MAX_SYMBOL_POSITIONS"
    HOURLY_TRADE_LIMIT = "HOURLY_TRADE_LIMIT"
    CORRELATION_RISK = "CORRELATION_RISK"
    KILL_SWITCH = "KILL_SWITCH"
    POSITION_TOO_SMALL = "POSITION_TOO_SMALL"
    VALIDATION_ERROR = "VALIDATION_ERROR"


class KillSwitchLevel(IntEnum):
    """Escalating kill-switch levels. Ordered: higher is worse."""

    INACTIVE = 0
    WARNING = 1
    CAUTION = 2
    EMERGENCY = 3


class PositionAction(str, Enum):
    """Recommended action for an open position."""

    HOLD = "HOLD"
    CLOSE = "CLOSE"
    ADJUST_SL = "ADJUST_SL"
    PARTIAL_CLOSE = "PARTIAL_CLOSE"


class AlertSeverity(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


# ============================================================
# TRADE SIGNAL
# ============================================================

_SIGNAL_FIELDS = ("symbol", "direction", "price", "confidence", "stop_loss", "take_profit", "model_id")


@dataclass(frozen=True)
class TradeSignal:
    """
    Candidate trade produced upstream by a model.

    Read-only to the risk core and never persisted verbatim.
    """

    symbol: str
    direction: Direction
    price: float
    confidence: float
    stop_loss: float
    take_profit: float
    model_id: str = ""

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "TradeSignal":
        """
        Build a signal from an inbound record.

        Raises:
            SignalValidationError: unknown/missing fields or wrong types
        """
        if not isinstance(payload, Mapping):
            raise SignalValidationError("Trade signal must be a mapping")

        errors: List[str] = []
        unknown = sorted(set(payload) - set(_SIGNAL_FIELDS))
        if unknown:
            errors.append(f"unknown fields: {', '.join(unknown)}")

        missing = [name for name in _SIGNAL_FIELDS[:-1] if payload.get(name) is None]
        if missing:
            errors.append(f"missing fields: {', '.join(missing)}")

        if errors:
            raise SignalValidationError("Malformed trade signal", errors=errors)

        try:
            direction = Direction(str(payload["direction"]).upper())
        except ValueError:
            raise SignalValidationError(
                "Malformed trade signal",
                errors=[f"direction must be BUY or SELL, got {payload['direction']!r}"],
            ) from None

        numbers: Dict[str, float] = {}
        for name in ("price", "confidence", "stop_loss", "take_profit"):
            value = payload[name]
            if isinstance(value, bool):
                errors.append(f"{name} must be a number")
                continue
            try:
                numbers[name] = float(value)
            except (TypeError, ValueError):
                errors.append(f"{name} must be a number")
        if errors:
            raise SignalValidationError("Malformed trade signal", errors=errors)

        signal = cls(
            symbol=str(payload["symbol"]).strip().upper(),
            direction=direction,
            model_id=str(payload.get("model_id") or ""),
            **numbers,
        )
        problems = signal.validate()
        if problems:
            raise SignalValidationError("Invalid trade signal", errors=problems)
        return signal

    def validate(self) -> List[str]:
        """Semantic checks; an empty list means the signal is usable."""
        errors: List[str] = []

        if not self.symbol:
            errors.append("symbol is empty")

        values = (self.price, self.confidence, self.stop_loss, self.take_profit)
        if not all(math.isfinite(v) for v in values):
            return errors + ["numeric fields must be finite"]

        if self.price <= 0:
            errors.append("price must be positive")
        if not 0.0 <= self.confidence <= 1.0:
            errors.append("confidence must be within [0, 1]")

        if self.direction is Direction.BUY:
            if self.stop_loss >= self.price:
                errors.append("stop_loss must be below price for BUY")
            if self.take_profit <= self.price:
                errors.append("take_profit must be above price for BUY")
        else:
            if self.stop_loss <= self.price:
                errors.append("stop_loss must be above price for SELL")
            if self.take_profit >= self.price:
                errors.append("take_profit must be below price for SELL")

        return errors

    @property
    def stop_distance_pct(self) -> float:
        return abs(self.price - self.stop_loss) / self.price

    @property
    def reward_risk_ratio(self) -> float:
        return abs(self.take_profit - self.price) / abs(self.price - self.stop_loss)


# ============================================================
# ACCOUNT STATE
# ============================================================

@dataclass(frozen=True)
class OpenPositionView:
    """What the gates need to know about an open position."""

    deal_id: str
    symbol: str
    direction: Direction
    size: float
    entry_price: float
    current_price: float
    pnl: float
    """Unrealized pnl of the remaining size."""
    opened_at: datetime
    stop_loss: Optional[float] = None


@dataclass(frozen=True)
class SymbolPerformance:
    """Historical outcome statistics of a symbol."""

    symbol: str
    win_rate: float
    avg_win: float
    avg_loss: float
    total_trades: int


@dataclass(frozen=True)
class AccountState:
    """
    Snapshot of a session, read once per validation.

    balance = initial_balance + sum(pnl of all positions)
    """

    session_id: UUID
    state_version: int
    initial_balance: float
    balance: float
    daily_pnl: float
    previous_day_profit: float
    open_positions: Tuple[OpenPositionView, ...]
    daily_trades_count: int
    consecutive_losses: int
    symbol_trades_last_hour: int = 0
    correlation_matrix: Mapping[str, float] = field(default_factory=dict)
    performance: Optional[SymbolPerformance] = None

    @property
    def peak_balance(self) -> float:
        return max(self.initial_balance, self.balance)

    @property
    def current_drawdown(self) -> float:
        return compute_drawdown(self.balance, self.peak_balance)

    @property
    def daily_loss_pct(self) -> float:
        """Today's loss as a fraction of balance (0 on a winning day)."""
        if self.daily_pnl >= 0:
            return 0.0
        if self.balance <= 0:
            return 1.0
        return -self.daily_pnl / self.balance

    def open_positions_for(self, symbol: str) -> int:
        return sum(1 for p in self.open_positions if p.symbol == symbol)


def compute_drawdown(balance: float, peak_balance: float) -> float:
    """Peak-to-current decline as a fraction of peak, within [0, 1]."""
    if peak_balance <= 0:
        return 0.0
    return min(1.0, max(0.0, (peak_balance - balance) / peak_balance))


# ============================================================
# DECISION
# ============================================================

@dataclass(frozen=True)
class ProtectiveLevels:
    """Dynamic stop-loss and take-profit for an accepted trade."""

    stop_loss: float
    take_profit: float
    risk_reward_ratio: float
    atr: float
    volatility: float


@dataclass(frozen=True)
class RiskMetricsSnapshot:
    """One row of the risk-metrics audit trail."""

    session_id: Optional[UUID]
    timestamp: datetime
    symbol: str
    account_balance: float
    daily_pnl: float
    current_drawdown: float
    risk_utilization: float
    correlation_risk: float
    open_positions: int
    daily_trades_count: int


@dataclass(frozen=True)
class RiskDecision:
    """
    Output of validate_trade.

    state_version is the session version the decision was taken
    on. Opening a position with a stale version fails, so two
    concurrent decisions cannot both pass the count gates.
    """

    allowed: bool
    adjusted_size: float = 0.0
    reason: Optional[str] = None
    reason_code: Optional[RejectReason] = None
    levels: Optional[ProtectiveLevels] = None
    session_id: Optional[UUID] = None
    state_version: Optional[int] = None
    correlation_risk: float = 0.0
    kelly_fraction: float = 0.0

    @classmethod
    def reject(
        cls,
        reason: str,
        reason_code: RejectReason,
        session_id: Optional[UUID] = None,
        state_version: Optional[int] = None,
        correlation_risk: float = 0.0,
    ) -> "RiskDecision":
        return cls(
            allowed=False,
            reason=reason,
            reason_code=reason_code,
            session_id=session_id,
            state_version=state_version,
            correlation_risk=correlation_risk,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "adjusted_size": self.adjusted_size,
            "reason": self.reason,
            "reason_code": self.reason_code.value if self.reason_code else None,
            "stop_loss": self.levels.stop_loss if self.levels else None,
            "take_profit": self.levels.take_profit if self.levels else None,
            "state_version": self.state_version,
        }


# ============================================================
# MONITORING OUTPUTS
# ============================================================

@dataclass(frozen=True)
class KillSwitchStatus:
    """Current kill-switch level and the response callers must apply."""

    level: KillSwitchLevel
    reason: str
    drawdown: float
    daily_loss_pct: float
    consecutive_losses: int
    size_multiplier: float = 1.0

    @property
    def active(self) -> bool:
        return self.level > KillSwitchLevel.INACTIVE

    @property
    def allows_new_trades(self) -> bool:
        return self.level < KillSwitchLevel.CAUTION

    @property
    def requires_liquidation(self) -> bool:
        return self.level >= KillSwitchLevel.EMERGENCY


@dataclass(frozen=True)
class PositionAssessment:
    """Recommended action for one open position."""

    deal_id: str
    symbol: str
    action: PositionAction
    reason: str
    position_drawdown: float = 0.0
    suggested_stop_loss: Optional[float] = None
