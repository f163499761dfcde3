"""
Risk Manager Package.

============================================================
PURPOSE
============================================================
Decides, for every candidate trade, whether it may proceed,
at what size and with which protective levels. Also provides
the kill-switch evaluator and the position health assessor.

============================================================
USAGE
============================================================
```python
from risk_manager import RiskManager, TradeSignal, Direction

manager = RiskManager(database)
decision = manager.validate_trade(TradeSignal(
    symbol="EURUSD",
    direction=Direction.BUY,
    price=1.1000,
    confidence=0.8,
    stop_loss=1.0890,
    take_profit=1.1220,
    model_id="LSTM-Attention",
))
if decision.allowed:
    session_manager.open_position(signal, decision, deal_id)
```

============================================================
"""

from .config import (
    KillSwitchConfig,
    KillSwitchLevelThresholds,
    MarketReference,
    PositionHealthConfig,
    RiskLimits,
    RiskManagerConfig,
    get_default_config,
    load_config_from_dict,
)
from .correlation import CorrelationRiskAssessor
from .engine import AlertCallback, RiskManager
from .kill_switch import KillSwitchEvaluator, count_consecutive_losses
from .levels import (
    MarketConditionProvider,
    PercentBandStrategy,
    ProtectiveLevelCalculator,
    StaticMarketCondition,
    SupportResistanceStrategy,
)
from .position_health import PositionHealthAssessor, position_drawdown
from .sizing import (
    PositionSizer,
    SizingResult,
    full_kelly,
    kelly_fraction_from_history,
    kelly_fraction_from_signal,
    volatility_adjustment,
)
from .types import (
    AccountState,
    AlertSeverity,
    Direction,
    KillSwitchLevel,
    KillSwitchStatus,
    OpenPositionView,
    PositionAction,
    PositionAssessment,
    ProtectiveLevels,
    RejectReason,
    RiskDecision,
    RiskMetricsSnapshot,
    SymbolPerformance,
    TradeSignal,
    compute_drawdown,
)


__all__ = [
    # Engine
    "RiskManager",
    "AlertCallback",
    # Config
    "RiskLimits",
    "RiskManagerConfig",
    "KillSwitchConfig",
    "KillSwitchLevelThresholds",
    "PositionHealthConfig",
    "MarketReference",
    "get_default_config",
    "load_config_from_dict",
    # Components
    "PositionSizer",
    "SizingResult",
    "full_kelly",
    "kelly_fraction_from_history",
    "kelly_fraction_from_signal",
    "volatility_adjustment",
    "ProtectiveLevelCalculator",
    "SupportResistanceStrategy",
    "PercentBandStrategy",
    "MarketConditionProvider",
    "StaticMarketCondition",
    "CorrelationRiskAssessor",
    "KillSwitchEvaluator",
    "count_consecutive_losses",
    "PositionHealthAssessor",
    "position_drawdown",
    # Types
    "Direction",
    "TradeSignal",
    "RiskDecision",
    "RejectReason",
    "ProtectiveLevels",
    "AccountState",
    "OpenPositionView",
    "SymbolPerformance",
    "RiskMetricsSnapshot",
    "KillSwitchLevel",
    "KillSwitchStatus",
    "PositionAction",
    "PositionAssessment",
    "AlertSeverity",
    "compute_drawdown",
]

__version__ = "1.0.0"
