"""
Risk Manager - Decision Engine.

============================================================
PURPOSE
============================================================
The RiskManager is the MANDATORY GATE in front of order
placement. Every candidate trade passes validate_trade()
before an order may be sent. The gate is read-only: it never
mutates positions or sessions.

============================================================
DECISION LOGIC (PSEUDOCODE)
============================================================

def validate_trade(signal):
    # STEP 0: Boundary validation
    if signal is malformed:
        return REJECT (INVALID_SIGNAL)

    limits = load_limits()          # once per call
    state = read_account_state()    # one consistent read

    # STEP 1: drawdown > MAX_DRAWDOWN_PCT           -> REJECT
    # STEP 2: daily_pnl > daily profit cap          -> REJECT
    # STEP 3: daily_pnl < -DAILY_LOSS_LIMIT x bal   -> REJECT
    # STEP 4: open positions >= MAX_POSITIONS       -> REJECT
    # STEP 5: open positions in symbol >= 3         -> REJECT
    # STEP 6: symbol trades last hour >= limit      -> REJECT
    # STEP 7: correlation risk > 0.7                -> REJECT
    # kill switch Level 2+                          -> REJECT
    # kill switch Level 1                           -> size x 0.5
    # STEP 8: size < 0.01 lots                      -> REJECT

    levels = stop_loss_and_take_profit(signal)
    return ACCEPT (size, levels, state_version)

Every call that reaches the state read appends one row to the
risk metrics audit trail, accepted or not. A failing audit
write is logged and never changes the decision.

============================================================
FAILURE HANDLING
============================================================
Rejections are returned, never raised. Any unexpected error
while evaluating becomes a rejection ("Risk validation
failed: ...") and a CRITICAL alert.

============================================================
"""

import logging
from typing import Any, Callable, List, Mapping, Optional, Union
from uuid import UUID

from sqlalchemy.orm import Session

from core.clock import ClockProtocol, SystemClock
from core.exceptions import SignalValidationError, TradingException, classify_exception
from storage.database import Database
from storage.models.trading import RiskMetricsRecord, TradingSession
from storage.repositories import (
    ConfigSettingsRepository,
    RiskMetricsRepository,
    TradingSessionRepository,
)

from .account import AccountStateReader
from .config import RiskLimits, RiskManagerConfig
from .correlation import CorrelationRiskAssessor
from .kill_switch import KillSwitchEvaluator
from .levels import (
    MarketConditionProvider,
    ProtectiveLevelCalculator,
    StaticMarketCondition,
    SupportResistanceStrategy,
)
from .position_health import PositionHealthAssessor
from .sizing import PositionSizer
from .types import (
    AccountState,
    AlertSeverity,
    KillSwitchLevel,
    KillSwitchStatus,
    PositionAssessment,
    ProtectiveLevels,
    RejectReason,
    RiskDecision,
    RiskMetricsSnapshot,
    TradeSignal,
)


logger = logging.getLogger(__name__)


AlertCallback = Callable[[AlertSeverity, str, str], None]


class RiskManager:
    """
    Risk Manager - Mandatory Trade Gate.

    ============================================================
    INTERFACE
    ============================================================
    validate_trade(signal) -> RiskDecision
        Accept/reject, size and protective levels. Pass the
        decision to TradingSessionManager.open_position(); a
        decision whose state_version is stale is refused there.

    kill_switch_status() -> KillSwitchStatus
        Current kill-switch level. Callers poll it and stop new
        trades at Level 2+, liquidate at Level 3.

    assess_open_positions() -> List[PositionAssessment]
        First-match health rules for every open position.

    ============================================================
    """

    def __init__(
        self,
        database: Database,
        config: Optional[RiskManagerConfig] = None,
        clock: Optional[ClockProtocol] = None,
        session_id: Optional[UUID] = None,
        support_resistance: Optional[SupportResistanceStrategy] = None,
        market_condition: Optional[MarketConditionProvider] = None,
        alert_callback: Optional[AlertCallback] = None,
    ):
        """
        Args:
            database: Persistence collaborator
            config: Static configuration (limits come from the store)
            clock: Time source
            session_id: Trading session to evaluate (default: active one)
            support_resistance: Technical stop-loss candidate strategy
            market_condition: Market condition score provider
            alert_callback: Called as (severity, title, message)
        """
        self._db = database
        self._config = config or RiskManagerConfig()
        self._clock = clock or SystemClock()
        self._session_id = session_id
        self._alert_callback = alert_callback

        self._market_condition = market_condition or StaticMarketCondition()
        self._reader = AccountStateReader(
            self._clock,
            loss_streak_lookback=self._config.kill_switch.loss_streak_lookback,
            hourly_window_minutes=self._config.hourly_window_minutes,
        )
        self._correlation = CorrelationRiskAssessor(self._config.reference)
        self._levels = ProtectiveLevelCalculator(
            self._config.reference,
            support_resistance=support_resistance,
            market_condition=self._market_condition,
        )
        self._kill_switch = KillSwitchEvaluator(self._config.kill_switch)
        self._health = PositionHealthAssessor(self._config.position_health)

        logger.info("RiskManager initialized")

    @property
    def config(self) -> RiskManagerConfig:
        return self._config

    def bind_session(self, session_id: Optional[UUID]) -> None:
        """Evaluate against a specific session (None: the active one)."""
        self._session_id = session_id

    # --------------------------------------------------------
    # TRADE VALIDATION
    # --------------------------------------------------------

    def validate_trade(self, signal: Union[TradeSignal, Mapping[str, Any]]) -> RiskDecision:
        """
        Validate a candidate trade.

        Returns:
            RiskDecision; never raises
        """
        try:
            if not isinstance(signal, TradeSignal):
                signal = TradeSignal.from_dict(signal)
            problems = signal.validate()
            if problems:
                raise SignalValidationError("Invalid trade signal", errors=problems)
        except SignalValidationError as e:
            reason = f"Invalid trade signal: {'; '.join(e.errors) or e.message}"
            logger.warning(f"Trade rejected: {reason}")
            return RiskDecision.reject(reason, RejectReason.INVALID_SIGNAL)

        try:
            with self._db.session_scope() as db:
                trading_session = self._resolve_session(db)
                if trading_session is None:
                    logger.warning(f"Trade rejected for {signal.symbol}: no active trading session")
                    return RiskDecision.reject("No active trading session", RejectReason.NO_ACTIVE_SESSION)

                limits = self.load_limits(db)
                state = self._reader.read(db, trading_session, signal.symbol)

            decision = self._evaluate(signal, state, limits)

        except Exception as e:
            return self._handle_evaluation_error(signal, e)

        self._record_metrics(self._snapshot(signal, state, decision), decision)
        self._log_decision(signal, decision)
        return decision

    def _evaluate(self, signal: TradeSignal, state: AccountState, limits: RiskLimits) -> RiskDecision:
        """Run the gates in order; the first failing gate rejects."""
        symbol = signal.symbol
        balance = state.balance

        def reject(reason: str, code: RejectReason, correlation_risk: float = 0.0) -> RiskDecision:
            return RiskDecision.reject(
                reason,
                code,
                session_id=state.session_id,
                state_version=state.state_version,
                correlation_risk=correlation_risk,
            )

        # =================================================
        # STEP 1: Drawdown
        # =================================================
        drawdown = state.current_drawdown
        if drawdown > limits.max_drawdown_pct:
            return reject(f"Maximum drawdown exceeded: {drawdown * 100:.2f}%", RejectReason.MAX_DRAWDOWN)

        # =================================================
        # STEP 2: Daily profit cap
        # =================================================
        profit_cap = limits.daily_profit_cap_pct * balance + state.previous_day_profit
        if state.daily_pnl > profit_cap:
            return reject(f"Daily profit cap reached: ${state.daily_pnl:.2f}", RejectReason.DAILY_PROFIT_CAP)

        # =================================================
        # STEP 3: Daily loss limit
        # =================================================
        if state.daily_pnl < -(limits.daily_loss_limit_pct * balance):
            return reject(
                f"Daily loss limit reached: ${abs(state.daily_pnl):.2f}",
                RejectReason.DAILY_LOSS_LIMIT,
            )

        # =================================================
        # STEP 4: Position count
        # =================================================
        open_count = len(state.open_positions)
        if open_count >= limits.max_positions:
            return reject(f"Maximum positions limit reached: {open_count}", RejectReason.MAX_POSITIONS)

        # =================================================
        # STEP 5: Positions in symbol
        # =================================================
        symbol_count = state.open_positions_for(symbol)
        if symbol_count >= limits.max_positions_per_symbol:
            return reject(f"Too many positions in {symbol}: {symbol_count}", RejectReason.MAX_SYMBOL_POSITIONS)

        # =================================================
        # STEP 6: Hourly trade rate for symbol
        # =================================================
        hourly = state.symbol_trades_last_hour
        if hourly >= limits.max_trades_per_symbol_hour:
            return reject(f"Hourly trade limit exceeded for {symbol}: {hourly}", RejectReason.HOURLY_TRADE_LIMIT)

        # =================================================
        # STEP 7: Correlation risk
        # =================================================
        correlation_risk = self._correlation.assess(symbol, state.open_positions, state.correlation_matrix)
        if correlation_risk > limits.max_correlation_risk:
            return reject(
                f"High correlation risk: {correlation_risk * 100:.1f}%",
                RejectReason.CORRELATION_RISK,
                correlation_risk,
            )

        # =================================================
        # KILL SWITCH: Level 2+ blocks, Level 1 shrinks
        # =================================================
        kill_switch = self._kill_switch.evaluate(drawdown, state.daily_loss_pct, state.consecutive_losses)
        if not kill_switch.allows_new_trades:
            return reject(
                f"Kill switch active: {kill_switch.reason}",
                RejectReason.KILL_SWITCH,
                correlation_risk,
            )

        # =================================================
        # STEP 8: Position sizing
        # =================================================
        volatility = self._config.reference.volatility_for(symbol)
        sizing = PositionSizer(limits).calculate(signal, balance, volatility, state.performance)
        size = sizing.size * kill_switch.size_multiplier
        if size < limits.min_position_size:
            return reject(
                "Position size too small after risk adjustments",
                RejectReason.POSITION_TOO_SMALL,
                correlation_risk,
            )

        levels = self._levels.calculate(signal)

        return RiskDecision(
            allowed=True,
            adjusted_size=size,
            levels=levels,
            session_id=state.session_id,
            state_version=state.state_version,
            correlation_risk=correlation_risk,
            kelly_fraction=sizing.kelly_fraction,
        )

    def _handle_evaluation_error(self, signal: TradeSignal, error: Exception) -> RiskDecision:
        """Unexpected errors reject the trade."""
        classification = classify_exception(error)
        logger.error(
            f"Risk validation failed for {signal.symbol} ({classification.value}): {error}",
            exc_info=True,
        )
        if isinstance(error, TradingException):
            logger.error(f"Risk validation error details: {error.to_dict()}")
        self._emit_alert(
            AlertSeverity.CRITICAL,
            "Risk validation failure",
            f"Trade for {signal.symbol} rejected: {error}",
        )
        return RiskDecision.reject(f"Risk validation failed: {error}", RejectReason.VALIDATION_ERROR)

    # --------------------------------------------------------
    # PROTECTIVE LEVELS
    # --------------------------------------------------------

    def calculate_protective_levels(self, signal: TradeSignal) -> ProtectiveLevels:
        return self._levels.calculate(signal)

    # --------------------------------------------------------
    # KILL SWITCH
    # --------------------------------------------------------

    def kill_switch_status(self) -> KillSwitchStatus:
        """
        Evaluate the kill switch for the current session.

        Level 2+ emits an alert. Without a session the switch is inactive.
        """
        with self._db.session_scope() as db:
            trading_session = self._resolve_session(db)
            if trading_session is None:
                return self._kill_switch.evaluate(0.0, 0.0, 0)
            state = self._reader.read(db, trading_session)

        status = self._kill_switch.evaluate(
            state.current_drawdown,
            state.daily_loss_pct,
            state.consecutive_losses,
        )

        if status.level >= KillSwitchLevel.EMERGENCY:
            logger.critical(status.reason)
            self._emit_alert(AlertSeverity.CRITICAL, "Kill switch EMERGENCY", status.reason)
        elif status.level >= KillSwitchLevel.CAUTION:
            logger.warning(status.reason)
            self._emit_alert(AlertSeverity.WARNING, "Kill switch CAUTION", status.reason)
        elif status.active:
            logger.info(status.reason)

        return status

    # --------------------------------------------------------
    # POSITION HEALTH
    # --------------------------------------------------------

    def assess_open_positions(self) -> List[PositionAssessment]:
        with self._db.session_scope() as db:
            trading_session = self._resolve_session(db)
            if trading_session is None:
                return []
            state = self._reader.read(db, trading_session)

        now = self._clock.now()
        assessments = []
        for position in state.open_positions:
            assessment = self._health.assess(
                position,
                state.balance,
                self._market_condition.score(position.symbol),
                now,
            )
            logger.debug(f"{assessment.deal_id}: {assessment.action.value} ({assessment.reason})")
            assessments.append(assessment)
        return assessments

    # --------------------------------------------------------
    # HELPERS
    # --------------------------------------------------------

    def load_limits(self, db: Session) -> RiskLimits:
        """Risk limits from the configuration store, defaults for missing keys."""
        mapping = ConfigSettingsRepository(db).as_mapping()
        return RiskLimits.from_mapping(mapping, defaults=self._config.default_limits)

    def _resolve_session(self, db: Session) -> Optional[TradingSession]:
        sessions = TradingSessionRepository(db)
        if self._session_id is not None:
            record = sessions.get(self._session_id)
            return record if record is not None and record.status == "active" else None
        return sessions.get_active()

    def _snapshot(self, signal: TradeSignal, state: AccountState, decision: RiskDecision) -> RiskMetricsSnapshot:
        utilization = 0.0
        if decision.allowed and state.balance > 0:
            utilization = decision.adjusted_size * signal.price * signal.stop_distance_pct / state.balance

        return RiskMetricsSnapshot(
            session_id=state.session_id,
            timestamp=self._clock.now(),
            symbol=signal.symbol,
            account_balance=state.balance,
            daily_pnl=state.daily_pnl,
            current_drawdown=state.current_drawdown,
            risk_utilization=utilization,
            correlation_risk=decision.correlation_risk,
            open_positions=len(state.open_positions),
            daily_trades_count=state.daily_trades_count,
        )

    def _record_metrics(self, snapshot: RiskMetricsSnapshot, decision: RiskDecision) -> None:
        """Append to the audit trail; failures are logged and swallowed."""
        try:
            with self._db.transaction_scope() as db:
                RiskMetricsRepository(db).append(
                    RiskMetricsRecord(
                        session_id=snapshot.session_id,
                        timestamp=snapshot.timestamp,
                        symbol=snapshot.symbol,
                        account_balance=snapshot.account_balance,
                        daily_pnl=snapshot.daily_pnl,
                        current_drawdown=snapshot.current_drawdown,
                        risk_utilization=snapshot.risk_utilization,
                        correlation_risk=snapshot.correlation_risk,
                        open_positions=snapshot.open_positions,
                        daily_trades_count=snapshot.daily_trades_count,
                        decision_allowed=decision.allowed,
                        decision_reason=decision.reason,
                    )
                )
        except Exception as e:
            logger.error(f"Failed to record risk metrics for {snapshot.symbol}: {e}")

    def _log_decision(self, signal: TradeSignal, decision: RiskDecision) -> None:
        if decision.allowed:
            logger.info(
                f"Trade accepted: {signal.direction.value} {signal.symbol} "
                f"size={decision.adjusted_size:.4f} "
                f"sl={decision.levels.stop_loss:.5f} tp={decision.levels.take_profit:.5f}"
            )
        else:
            logger.info(f"Trade rejected: {signal.symbol} - {decision.reason}")

    def _emit_alert(self, severity: AlertSeverity, title: str, message: str) -> None:
        if self._alert_callback is None:
            return
        try:
            self._alert_callback(severity, title, message)
        except Exception as e:
            logger.error(f"Alert callback failed: {e}")
