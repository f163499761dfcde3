"""
Tests for Trading Session bookkeeping and the Risk Supervisor.

============================================================
PURPOSE
============================================================
1. Session lifecycle
2. Opening positions with the session version check
3. Marking, closing, partial closes and trailing stops
4. Daily reports
5. Supervisor: Level 3 shutdown and health actions

============================================================
"""

import asyncio
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from core.exceptions import PositionClosedError, RiskError, StaleRiskStateError
from risk_manager import (
    Direction,
    KillSwitchEvaluator,
    KillSwitchLevel,
    PositionAction,
    PositionAssessment,
    RejectReason,
    RiskManager,
    TradeSignal,
)
from storage.models.trading import Position
from storage.repositories import DailyReportRepository, PositionRepository, RecordNotFoundError
from trading_session import RiskSupervisor, TradingSessionManager, position_pnl


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def sessions(database, clock):
    return TradingSessionManager(database, clock)


@pytest.fixture
def risk_manager(database, clock):
    return RiskManager(database, clock=clock)


@pytest.fixture
def signal():
    return TradeSignal(
        symbol="EURUSD",
        direction=Direction.BUY,
        price=1.1,
        confidence=0.8,
        stop_loss=1.089,
        take_profit=1.122,
    )


@pytest.fixture
def opened(sessions, risk_manager, signal):
    """An active session with one accepted EURUSD position."""
    sessions.start(10000.0)
    decision = risk_manager.validate_trade(signal)
    return sessions.open_position(signal, decision, deal_id="D1")


def add_closed_losses(database, session_id, clock, count):
    with database.transaction_scope() as db:
        for i in range(count):
            closed_at = clock.now() - timedelta(minutes=10 - i)
            db.add(Position(
                deal_id=f"L{i}",
                session_id=session_id,
                symbol="NVDA",
                direction="BUY",
                size=1.0,
                entry_price=500.0,
                current_price=499.0,
                pnl=-1.0,
                status="closed",
                opened_at=closed_at,
                closed_at=closed_at,
            ))


# ============================================================
# LIFECYCLE
# ============================================================

class TestSessionLifecycle:

    def test_start(self, sessions):
        record = sessions.start(10000.0)

        assert record.status == "active"
        assert record.state_version == 0
        assert sessions.current_balance() == pytest.approx(10000.0)

    def test_start_stops_previous_session(self, sessions):
        first = sessions.start(10000.0)
        second = sessions.start(5000.0)

        assert sessions.active_session().id == second.id
        assert sessions.current_balance(first.id) == pytest.approx(10000.0)

    def test_stop_records_totals(self, sessions, opened, clock):
        sessions.close_position("D1", 1.11)
        record = sessions.stop("done")

        assert record.status == "stopped"
        assert record.stop_reason == "done"
        assert record.ended_at == clock.now()
        assert record.total_trades == 1
        assert record.winning_trades == 1
        assert record.final_balance == pytest.approx(10000.0 + 0.01 * opened.size)
        assert sessions.active_session() is None

    def test_stop_without_session(self, sessions):
        assert sessions.stop() is None

    def test_invalid_balance(self, sessions):
        with pytest.raises(ValueError):
            sessions.start(0.0)


# ============================================================
# OPENING
# ============================================================

class TestOpenPosition:

    def test_open_from_decision(self, opened, signal):
        assert opened.status == "open"
        assert opened.symbol == "EURUSD"
        assert opened.size > 0
        assert opened.stop_loss < signal.price < opened.take_profit

    def test_open_bumps_version(self, sessions, opened):
        assert sessions.active_session().state_version == 1

    def test_stale_decision_refused(self, sessions, risk_manager, signal):
        sessions.start(10000.0)
        first = risk_manager.validate_trade(signal)
        second = risk_manager.validate_trade(signal)

        sessions.open_position(signal, first, deal_id="D1")
        with pytest.raises(StaleRiskStateError):
            sessions.open_position(signal, second, deal_id="D2")

        assert len(sessions.open_positions()) == 1

    def test_rejected_decision_refused(self, sessions, risk_manager, signal):
        decision = risk_manager.validate_trade(signal)
        assert not decision.allowed

        with pytest.raises(RiskError):
            sessions.open_position(signal, decision)

    def test_level_two_kill_switch_blocks_open(self, sessions, risk_manager, signal, database, clock):
        session = sessions.start(10000.0)
        add_closed_losses(database, session.id, clock, 3)

        decision = risk_manager.validate_trade(signal)

        assert decision.reason_code == RejectReason.KILL_SWITCH
        with pytest.raises(RiskError):
            sessions.open_position(signal, decision)
        assert sessions.open_positions() == []

    def test_stopped_session_refused(self, sessions, risk_manager, signal):
        sessions.start(10000.0)
        decision = risk_manager.validate_trade(signal)
        sessions.stop()

        with pytest.raises(RiskError):
            sessions.open_position(signal, decision)


# ============================================================
# MARKING & CLOSING
# ============================================================

class TestPositionUpdates:

    def test_pnl_formula(self):
        assert position_pnl("BUY", 100.0, 110.0, 2.0) == pytest.approx(20.0)
        assert position_pnl("SELL", 100.0, 110.0, 2.0) == pytest.approx(-20.0)

    def test_mark_price_uses_mid(self, sessions, opened):
        assert sessions.mark_price("EURUSD", 1.119, 1.121) == 1
        assert sessions.mark_price("GBPUSD", 1.3, 1.3) == 0

        position = sessions.open_positions()[0]
        assert position.current_price == pytest.approx(1.12)
        assert position.pnl == pytest.approx(0.02 * opened.size)
        assert sessions.active_session().state_version == 1

    def test_close(self, sessions, opened, clock):
        closed = sessions.close_position("D1", 1.09, reason="stop hit")

        assert closed.status == "closed"
        assert closed.close_reason == "stop hit"
        assert closed.closed_at == clock.now()
        assert closed.pnl == pytest.approx(-0.01 * opened.size)
        assert sessions.current_balance() == pytest.approx(10000.0 - 0.01 * opened.size)
        assert sessions.active_session().state_version == 2

    def test_closed_position_is_immutable(self, sessions, opened):
        sessions.close_position("D1", 1.1)

        with pytest.raises(PositionClosedError):
            sessions.close_position("D1", 1.2)
        with pytest.raises(PositionClosedError):
            sessions.apply_trailing_stop("D1", 1.15)

    def test_unknown_deal(self, sessions, opened):
        with pytest.raises(RecordNotFoundError):
            sessions.close_position("nope", 1.1)

    def test_partial_close(self, sessions, opened):
        position = sessions.partial_close("D1", 1.12)

        assert position.deal_id == "D1"
        assert position.status == "partial"
        assert position.size == pytest.approx(opened.size / 2)
        assert position.realized_pnl == pytest.approx(0.02 * opened.size / 2)
        assert position.pnl == pytest.approx(0.02 * opened.size)

        remaining = sessions.open_positions()
        assert [p.deal_id for p in remaining] == ["D1"]
        assert sessions.current_balance() == pytest.approx(10000.0 + 0.02 * opened.size)
        assert sessions.active_session().state_version == 2

    def test_partial_then_full_close_is_one_trade(self, sessions, opened, risk_manager, signal, database):
        sessions.partial_close("D1", 1.095)
        closed = sessions.close_position("D1", 1.094)

        half = opened.size / 2
        assert closed.pnl == pytest.approx(-0.005 * half - 0.006 * half)
        assert sessions.current_balance() == pytest.approx(10000.0 + closed.pnl)

        status = risk_manager.kill_switch_status()
        assert status.consecutive_losses == 1
        assert status.level == KillSwitchLevel.INACTIVE

        session = sessions.active_session()
        with database.session_scope() as db:
            positions = PositionRepository(db)
            assert len(positions.list_for_session(session.id)) == 1
            assert positions.count_opened_since(session.id, opened.opened_at, symbol="EURUSD") == 1

        record = sessions.stop()
        assert record.total_trades == 1
        assert record.losing_trades == 1

    def test_mark_after_partial_keeps_booked_pnl(self, sessions, opened):
        sessions.partial_close("D1", 1.12)
        sessions.mark_price("EURUSD", 1.1, 1.1)

        position = sessions.open_positions()[0]
        assert position.pnl == pytest.approx(0.02 * opened.size / 2)

    def test_trailing_stop_only_tightens(self, sessions, opened):
        original = opened.stop_loss

        assert sessions.apply_trailing_stop("D1", original + 0.001)
        assert not sessions.apply_trailing_stop("D1", original)
        assert sessions.open_positions()[0].stop_loss == pytest.approx(original + 0.001)


# ============================================================
# DAILY REPORT
# ============================================================

class TestDailyReport:

    def test_record_daily_report(self, sessions, database, risk_manager, signal, clock):
        session = sessions.start(10000.0)
        for deal_id, exit_price in (("W", 1.12), ("L", 1.095)):
            decision = risk_manager.validate_trade(signal)
            sessions.open_position(signal, decision, deal_id=deal_id)
            sessions.close_position(deal_id, exit_price)

        report = sessions.record_daily_report()

        assert report.session_id == session.id
        assert report.total_trades == 2
        assert report.winning_trades == 1
        assert report.losing_trades == 1
        assert report.win_rate == pytest.approx(0.5)

        with database.session_scope() as db:
            assert DailyReportRepository(db).total_profit_on(clock.today()) == pytest.approx(
                report.total_daily_profit
            )

    def test_report_is_refreshed(self, sessions, opened, database, clock):
        sessions.record_daily_report()
        sessions.close_position("D1", 1.12)
        report = sessions.record_daily_report()

        assert report.total_trades == 1
        with database.session_scope() as db:
            assert DailyReportRepository(db).get(report.session_id, clock.today()).total_trades == 1


# ============================================================
# SUPERVISOR
# ============================================================

class TestRiskSupervisor:

    def test_level_three_closes_everything(self, sessions, risk_manager, opened, database, clock):
        session = sessions.active_session()
        add_closed_losses(database, session.id, clock, 5)

        supervisor = RiskSupervisor(risk_manager, sessions)
        status = supervisor.check_kill_switch()

        assert status.level == KillSwitchLevel.EMERGENCY
        assert sessions.open_positions(session.id) == []
        assert sessions.active_session() is None

    def test_no_action_below_level_three(self, sessions, risk_manager, opened):
        status = RiskSupervisor(risk_manager, sessions).check_kill_switch()

        assert status.level == KillSwitchLevel.INACTIVE
        assert len(sessions.open_positions()) == 1

    def test_health_actions_applied(self, sessions, opened):
        risk_manager = MagicMock()
        risk_manager.assess_open_positions.return_value = [
            PositionAssessment("D1", "EURUSD", PositionAction.ADJUST_SL, "Trailing stop activation",
                               suggested_stop_loss=opened.stop_loss + 0.002),
        ]
        supervisor = RiskSupervisor(risk_manager, sessions)

        supervisor.review_positions()
        assert sessions.open_positions()[0].stop_loss == pytest.approx(opened.stop_loss + 0.002)

        risk_manager.assess_open_positions.return_value = [
            PositionAssessment("D1", "EURUSD", PositionAction.PARTIAL_CLOSE, "Time-based partial exit"),
        ]
        supervisor.review_positions()
        assert sessions.open_positions()[0].status == "partial"

        risk_manager.assess_open_positions.return_value = [
            PositionAssessment("D1", "EURUSD", PositionAction.CLOSE, "Poor market conditions"),
        ]
        supervisor.review_positions()
        assert sessions.open_positions() == []

    @pytest.mark.asyncio
    async def test_loops_run_until_stopped(self, sessions):
        risk_manager = MagicMock()
        risk_manager.kill_switch_status.return_value = KillSwitchEvaluator().evaluate(0.0, 0.0, 0)
        risk_manager.assess_open_positions.return_value = []
        supervisor = RiskSupervisor(risk_manager, sessions, 0.01, 0.01)

        await supervisor.start()
        for _ in range(200):
            if supervisor.last_status is not None and risk_manager.assess_open_positions.called:
                break
            await asyncio.sleep(0.01)
        await supervisor.stop()

        assert supervisor.last_status.level == KillSwitchLevel.INACTIVE
        assert risk_manager.assess_open_positions.called
