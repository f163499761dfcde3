"""
Risk Manager - Configuration.

============================================================
PURPOSE
============================================================
Configuration of the risk gate, kill switch, position health
assessor and the static market reference data.

============================================================
TWO KINDS OF CONFIGURATION
============================================================
- RiskLimits: the tunable limits operators change at runtime.
  Loaded from the config_settings table at the start of EVERY
  validation and passed explicitly; there is no process-wide
  cached copy.
- Everything else (kill-switch thresholds, reference tables):
  code defaults, overridable with load_config_from_dict().

============================================================
DEFAULT LIMITS
============================================================
- Max drawdown: 14% of peak balance
- Risk per trade: 7% of balance (risk-based size formula)
- Daily loss limit: 5% of balance
- Max open positions: 10 (3 per symbol)
- Max trades per symbol per hour: 5

============================================================
"""

from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Mapping, Optional, Tuple

from core.exceptions import InvalidConfigError


# ============================================================
# TUNABLE LIMITS
# ============================================================

@dataclass(frozen=True)
class RiskLimits:
    """
    Per-validation risk limits.

    Only the first five fields are read from the configuration
    store; the rest are fixed gate constants.
    """

    max_drawdown_pct: float = 0.14
    risk_per_trade_pct: float = 0.07
    daily_loss_limit_pct: float = 0.05
    max_positions: int = 10
    max_trades_per_symbol_hour: int = 5

    max_positions_per_symbol: int = 3
    max_correlation_risk: float = 0.7
    daily_profit_cap_pct: float = 0.40
    """Daily profit cap = this x balance + previous day's total profit."""

    min_position_size: float = 0.01
    """Anything smaller is dust and rejected."""

    max_position_size: float = 2.0
    max_risk_per_trade_pct: float = 0.02
    """Hard cap: never risk more than 2% of balance on one trade."""

    kelly_scale: float = 0.25
    """Quarter-Kelly."""

    min_history_trades: int = 10
    """Historical Kelly needs at least this many recorded trades."""

    # Store keys -> (field name, parser)
    STORE_KEYS = {
        "MAX_DRAWDOWN_PCT": ("max_drawdown_pct", float),
        "RISK_PER_TRADE_PCT": ("risk_per_trade_pct", float),
        "DAILY_LOSS_LIMIT": ("daily_loss_limit_pct", float),
        "DAILY_LOSS_LIMIT_PCT": ("daily_loss_limit_pct", float),
        "MAX_POSITIONS": ("max_positions", int),
        "MAX_TRADES_PER_SYMBOL_HOUR": ("max_trades_per_symbol_hour", int),
    }

    @classmethod
    def from_mapping(
        cls,
        mapping: Mapping[str, Any],
        defaults: Optional["RiskLimits"] = None,
    ) -> "RiskLimits":
        """
        Build limits from config_settings key/value rows.

        Missing keys keep the value from defaults, unknown keys are ignored.

        Raises:
            InvalidConfigError: value present but not a usable number
        """
        overrides: Dict[str, Any] = {}
        for key, (attr, parser) in cls.STORE_KEYS.items():
            if key not in mapping or mapping[key] is None:
                continue
            raw = mapping[key]
            try:
                value = parser(float(raw)) if parser is int else parser(raw)
            except (TypeError, ValueError) as e:
                raise InvalidConfigError(key, raw, f"not a number ({e})") from e
            if value < 0:
                raise InvalidConfigError(key, raw, "must not be negative")
            overrides[attr] = value
        return replace(defaults or cls(), **overrides)


# ============================================================
# KILL SWITCH
# ============================================================

@dataclass(frozen=True)
class KillSwitchLevelThresholds:
    """A level triggers when ANY of its thresholds is crossed."""

    drawdown_pct: float
    daily_loss_pct: float
    consecutive_losses: int


@dataclass
class KillSwitchConfig:
    """Escalating kill-switch thresholds."""

    level_3: KillSwitchLevelThresholds = field(
        default_factory=lambda: KillSwitchLevelThresholds(0.14, 0.05, 5)
    )
    level_2: KillSwitchLevelThresholds = field(
        default_factory=lambda: KillSwitchLevelThresholds(0.12, 0.045, 3)
    )
    level_1: KillSwitchLevelThresholds = field(
        default_factory=lambda: KillSwitchLevelThresholds(0.08, 0.03, 2)
    )

    loss_streak_lookback: int = 10
    """Number of most recent closed trades scanned for the loss streak."""

    level_1_size_multiplier: float = 0.5
    """Position size multiplier applied by callers at Level 1."""


# ============================================================
# POSITION HEALTH
# ============================================================

@dataclass
class PositionHealthConfig:
    """Thresholds of the position health assessor."""

    emergency_drawdown_pct: float = 0.05
    """Close a position once it has lost 5% of its entry value."""

    trailing_profit_pct_of_balance: float = 0.02
    """Tighten the stop once unrealized profit exceeds 2% of balance."""

    trailing_offset_pct: float = 0.01
    """Suggested trailing stop distance from the current price."""

    max_hold_hours: float = 24.0
    poor_market_condition: float = 0.3


# ============================================================
# MARKET REFERENCE DATA
# ============================================================

def _default_atr() -> Dict[str, float]:
    return {
        "EURUSD": 0.0012,
        "GBPUSD": 0.0015,
        "USDJPY": 0.8,
        "XAUUSD": 12.5,
        "NVDA": 8.5,
        "BTCUSD": 1200.0,
    }


def _default_volatility() -> Dict[str, float]:
    return {
        "EURUSD": 0.015,
        "GBPUSD": 0.018,
        "BTCUSD": 0.045,
        "NVDA": 0.035,
        "XAUUSD": 0.022,
    }


def _default_model_multipliers() -> Dict[str, float]:
    return {
        "LSTM-Attention": 1.1,
        "Transformer-MultiHead": 1.2,
        "XGBoost-Ensemble": 1.0,
        "Deep-Q-Network": 1.15,
        "Advanced-Ensemble": 1.25,
    }


def _default_static_correlations() -> Dict[Tuple[str, str], float]:
    return {
        ("EURUSD", "GBPUSD"): 0.8,
        ("EURUSD", "AUDUSD"): 0.7,
        ("EURUSD", "NZDUSD"): 0.6,
        ("GBPUSD", "AUDUSD"): 0.6,
        ("GBPUSD", "NZDUSD"): 0.5,
        ("XAUUSD", "XAGUSD"): 0.7,
        ("XAUUSD", "USOIL"): 0.4,
        ("NVDA", "AAPL"): 0.6,
        ("NVDA", "MSFT"): 0.7,
        ("NVDA", "GOOGL"): 0.8,
    }


@dataclass
class MarketReference:
    """
    Static reference data used when no live estimate exists.

    Correlation pairs are symmetric; either ordering is found.
    """

    atr: Dict[str, float] = field(default_factory=_default_atr)
    default_atr: float = 0.001

    volatility: Dict[str, float] = field(default_factory=_default_volatility)
    default_volatility: float = 0.02

    model_multipliers: Dict[str, float] = field(default_factory=_default_model_multipliers)
    default_model_multiplier: float = 1.0

    static_correlations: Dict[Tuple[str, str], float] = field(
        default_factory=_default_static_correlations
    )
    default_correlation: float = 0.1

    def atr_for(self, symbol: str) -> float:
        return self.atr.get(symbol, self.default_atr)

    def volatility_for(self, symbol: str) -> float:
        return self.volatility.get(symbol, self.default_volatility)

    def model_multiplier(self, model_id: Optional[str]) -> float:
        if not model_id:
            return self.default_model_multiplier
        return self.model_multipliers.get(model_id, self.default_model_multiplier)

    def static_correlation(self, a: str, b: str) -> Optional[float]:
        value = self.static_correlations.get((a, b))
        if value is None:
            value = self.static_correlations.get((b, a))
        return value


# ============================================================
# MASTER CONFIGURATION
# ============================================================

@dataclass
class RiskManagerConfig:
    """Complete risk manager configuration."""

    default_limits: RiskLimits = field(default_factory=RiskLimits)
    """Used only to fill keys missing from the configuration store."""

    kill_switch: KillSwitchConfig = field(default_factory=KillSwitchConfig)
    position_health: PositionHealthConfig = field(default_factory=PositionHealthConfig)
    reference: MarketReference = field(default_factory=MarketReference)

    hourly_window_minutes: int = 60
    """Trailing window of the per-symbol rate gate."""


def get_default_config() -> RiskManagerConfig:
    return RiskManagerConfig()


def _override(instance: Any, data: Mapping[str, Any]) -> Any:
    known = {f.name for f in fields(instance)}
    return replace(instance, **{k: v for k, v in data.items() if k in known})


def load_config_from_dict(data: Dict[str, Any]) -> RiskManagerConfig:
    """
    Load configuration from a dictionary (JSON/YAML/env).

    Example:
        load_config_from_dict({
            "kill_switch": {"level_3": {"drawdown_pct": 0.10}},
            "reference": {"atr": {"EURUSD": 0.0011}},
        })
    """
    config = get_default_config()

    if "default_limits" in data:
        config.default_limits = _override(config.default_limits, data["default_limits"])

    if "kill_switch" in data:
        ks = dict(data["kill_switch"])
        for level in ("level_1", "level_2", "level_3"):
            if level in ks:
                ks[level] = _override(getattr(config.kill_switch, level), ks[level])
        config.kill_switch = _override(config.kill_switch, ks)

    if "position_health" in data:
        config.position_health = _override(config.position_health, data["position_health"])

    if "reference" in data:
        ref = dict(data["reference"])
        for table in ("atr", "volatility", "model_multipliers"):
            if table in ref:
                ref[table] = {**getattr(config.reference, table), **ref[table]}
        if "static_correlations" in ref:
            merged = dict(config.reference.static_correlations)
            for key, value in ref["static_correlations"].items():
                a, b = key.split("_", 1) if isinstance(key, str) else key
                merged[(a, b)] = float(value)
            ref["static_correlations"] = merged
        config.reference = _override(config.reference, ref)

    if "hourly_window_minutes" in data:
        config.hourly_window_minutes = int(data["hourly_window_minutes"])

    return config
