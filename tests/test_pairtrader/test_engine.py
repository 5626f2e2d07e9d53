"""
Tests for pairtrader/strategy/engine.py

Indicator output is scripted per bar with make_indicators() so each test
controls the z-score directly; detectors, sizing, funding controls,
execution and the state machine are the real ones.
"""

import json
from datetime import timedelta
from unittest.mock import Mock

import pytest

from pairtrader.alerters.base import AlertLevel
from pairtrader.config import CapitalMode, FundingMode, LogFormat
from pairtrader.execution.orders import OrderSide, RejectedOrderError, ResidualExposureError
from pairtrader.models import ExitReason, Symbol, TradeDirection
from pairtrader.state.machine import StrategyState, StrategyStatus
from pairtrader.state.store import PersistenceError
from pairtrader.strategy.engine import (
    StrategyBar,
    StrategyEngine,
    StrategyError,
    leg_pnl,
    pair_pnl,
)
from pairtrader.strategy.logs import BarLogWriter, LogEvent, TradeEvent, TradeLogWriter
from pairtrader.trading.sizing import PositionError
from tests.mocks import bar_time, make_indicators, make_position


def script(engine, *zscores):
    """Make the next bars see exactly these z-scores."""
    engine.pipeline.update_indicators = Mock(side_effect=[make_indicators(z) for z in zscores])


def bar(i, eth=3000.0, btc=60000.0, **kwargs):
    return StrategyBar(bar_time(i), eth, btc, **kwargs)


def enter_short_eth(engine, *later_zscores):
    """Drive the engine into SHORT_ETH_LONG_BTC on bar 1."""
    script(engine, 1.2, 1.6, *later_zscores)
    engine.process_bar(bar(0))
    outcome = engine.process_bar(bar(1))
    assert outcome.action == LogEvent.ENTRY
    return outcome


# =============================================================================
# Entry
# =============================================================================


class TestEntry:
    """Tests for signal-driven entries."""

    def test_first_bar_never_enters(self, engine):
        script(engine, 1.6)
        outcome = engine.process_bar(bar(0))

        assert outcome.action is None
        assert outcome.state == StrategyStatus.FLAT

    def test_crossing_opens_both_legs(self, engine, executor, store):
        outcome = enter_short_eth(engine)

        assert outcome.state == StrategyStatus.IN_POSITION
        position = engine.state.position
        assert position.direction == TradeDirection.SHORT_ETH_LONG_BTC
        assert position.eth.qty == pytest.approx(-8.333)
        assert position.btc.qty == pytest.approx(0.41666)

        eth_call, btc_call = executor.calls
        assert eth_call.order.side == OrderSide.SELL
        assert btc_call.order.side == OrderSide.BUY
        assert eth_call.order.limit_price == pytest.approx(2998.5)
        assert store.load() == engine.state

    def test_entry_trade_log(self, engine):
        outcome = enter_short_eth(engine)

        trade = outcome.trade_logs[0]
        assert trade.event == TradeEvent.ENTRY
        assert trade.entry_eth_price == 3000.0
        assert trade.realized_pnl == 0.0

    def test_negative_z_longs_eth(self, engine, executor):
        script(engine, -1.2, -1.6)
        engine.process_bar(bar(0))
        engine.process_bar(bar(1))

        assert engine.state.position.direction == TradeDirection.LONG_ETH_SHORT_BTC
        assert executor.calls[0].order.side == OrderSide.BUY

    def test_risk_parity_sizing(self, engine):
        """The calmer leg gets the larger notional."""
        engine.pipeline.update_indicators = Mock(side_effect=[
            make_indicators(1.2, vol_eth=0.02, vol_btc=0.01),
            make_indicators(1.6, vol_eth=0.02, vol_btc=0.01),
        ])
        engine.process_bar(bar(0))
        outcome = engine.process_bar(bar(1))

        assert outcome.bar_log.w_eth == pytest.approx(1 / 3)
        assert outcome.bar_log.notional_btc == pytest.approx(50000.0 * 2 / 3)

    def test_below_minimum_skips(self, engine, config, executor):
        config.position.c_value = 10.0
        script(engine, 1.2, 1.6)
        engine.process_bar(bar(0))
        outcome = engine.process_bar(bar(1))

        assert LogEvent.BELOW_MINIMUM in outcome.events
        assert outcome.state == StrategyStatus.FLAT
        assert executor.calls == []

    def test_capital_above_max_notional(self, engine, config, executor):
        config.position.max_notional = 1000.0
        script(engine, 1.2, 1.6)
        engine.process_bar(bar(0))

        with pytest.raises(PositionError):
            engine.process_bar(bar(1))
        assert executor.calls == []

    def test_failed_sizing_still_consumes_crossing(self, engine, config, executor):
        """Equity missing on the crossing bar; the next bar is not a fresh crossing."""
        config.position.c_mode = CapitalMode.EQUITY_RATIO
        config.position.equity_ratio_k = 0.5
        script(engine, 1.2, 1.6, 1.7)
        engine.process_bar(bar(0))

        with pytest.raises(PositionError):
            engine.process_bar(bar(1))

        outcome = engine.process_bar(bar(2, equity=100000.0))
        assert outcome.action is None
        assert outcome.state == StrategyStatus.FLAT
        assert executor.calls == []

    def test_failed_sizing_bar_is_logged(self, config, coordinator, store, alerter, tmp_path):
        engine = StrategyEngine(
            config,
            coordinator,
            state_store=store,
            alerter=alerter,
            bar_log_writer=BarLogWriter(tmp_path / "bars.jsonl"),
        )
        config.position.max_notional = 1000.0
        script(engine, 1.2, 1.6)
        engine.process_bar(bar(0))

        with pytest.raises(PositionError):
            engine.process_bar(bar(1))

        bars = [json.loads(line) for line in (tmp_path / "bars.jsonl").read_text().splitlines()]
        assert len(bars) == 2
        assert bars[1]["events"] == ["entry_failed"]
        assert bars[1]["zscore"] == 1.6


# =============================================================================
# Funding controls
# =============================================================================


class TestFundingControls:
    """Tests for funding-aware entries."""

    def test_funding_filter_skips_costly_entry(self, engine, executor):
        """Long BTC pays 0.0001 per 8h on 25k for 48h: cost 15 > 0.001."""
        script(engine, 1.2, 1.6)
        engine.process_bar(bar(0))
        outcome = engine.process_bar(bar(1, funding_eth=0.0, funding_btc=0.0001))

        assert outcome.events == [LogEvent.FUNDING_SKIP]
        assert outcome.bar_log.funding_cost_est == pytest.approx(15.0)
        assert outcome.bar_log.funding_skip is True
        assert executor.calls == []

    def test_receiving_funding_is_not_filtered(self, engine):
        script(engine, 1.2, 1.6)
        engine.process_bar(bar(0))
        outcome = engine.process_bar(bar(1, funding_eth=0.0001, funding_btc=0.0))

        assert outcome.action == LogEvent.ENTRY

    def test_threshold_mode_raises_entry(self, engine, config):
        config.funding.modes = [FundingMode.THRESHOLD]
        config.funding.threshold_k = 1000.0
        script(engine, 1.2, 1.6)
        engine.process_bar(bar(0))
        outcome = engine.process_bar(bar(1, funding_eth=0.0, funding_btc=0.0001))

        assert outcome.action is None
        assert outcome.state == StrategyStatus.FLAT

    def test_size_mode_shrinks_position(self, engine, config):
        config.funding.modes = [FundingMode.SIZE]
        config.funding.size_alpha = 1000.0
        script(engine, 1.2, 1.6)
        engine.process_bar(bar(0))
        engine.process_bar(bar(1, funding_eth=0.0, funding_btc=0.0001))

        # ratio 1 - 1000 * 15 / 50000 = 0.7
        assert engine.state.position.eth.qty == pytest.approx(-5.833)

    def test_invalid_funding_rate_skips_entry(self, engine, executor, alerter):
        script(engine, 1.2, 1.6, 1.7)
        engine.process_bar(bar(0))

        outcome = engine.process_bar(bar(1, funding_eth=float("inf"), funding_btc=0.0))

        assert outcome.events == [LogEvent.FUNDING_SKIP]
        assert alerter.alerts[-1].level == AlertLevel.WARNING
        assert executor.calls == []
        # The crossing was consumed on the skipped bar
        assert engine.process_bar(bar(2)).action is None


# =============================================================================
# Exit
# =============================================================================


class TestExit:
    """Tests for exits and cooldown."""

    def test_take_profit(self, engine, executor):
        enter_short_eth(engine, 0.45)
        outcome = engine.process_bar(bar(2, eth=2970.0))

        assert outcome.exit_signal.reason == ExitReason.TAKE_PROFIT
        assert outcome.events == [LogEvent.EXIT]
        assert outcome.state == StrategyStatus.FLAT

        closes = [c for c in executor.calls if c.action == "close"]
        assert [c.order.symbol for c in closes] == [Symbol.ETH_PERP, Symbol.BTC_PERP]
        assert all(c.order.reduce_only for c in closes)

    def test_realized_pnl(self, engine):
        enter_short_eth(engine, 0.45)
        outcome = engine.process_bar(bar(2, eth=2970.0))

        expected = 0.01 * 8.333 * 3000.0
        assert outcome.trade_logs[0].realized_pnl == pytest.approx(expected)
        assert engine.cumulative_realized_pnl == pytest.approx(expected)

    def test_unrealized_pnl_while_holding(self, engine):
        enter_short_eth(engine, 1.0)
        outcome = engine.process_bar(bar(2, eth=3030.0))

        assert outcome.bar_log.unrealized_pnl == pytest.approx(-8.333 * 30.0)

    def test_stop_loss_then_cooldown(self, engine, executor):
        enter_short_eth(engine, 3.6, 1.2, 1.7, 0.0)
        outcome = engine.process_bar(bar(2))

        assert outcome.events == [LogEvent.EXIT, LogEvent.COOLDOWN_START]
        assert outcome.state == StrategyStatus.COOLDOWN
        until = engine.state.cooldown_until
        assert until == bar_time(2) + timedelta(hours=24)

        # Crossing during cooldown does not enter
        engine.process_bar(bar(3))
        assert engine.process_bar(bar(4)).action is None

        outcome = engine.process_bar(StrategyBar(until, 3000.0, 60000.0))
        assert outcome.events == [LogEvent.COOLDOWN_END]
        assert outcome.state == StrategyStatus.FLAT

    def test_time_stop(self, engine):
        script(engine, 1.2, 1.6, 1.0)
        engine.process_bar(bar(0))
        engine.process_bar(bar(1))

        outcome = engine.process_bar(StrategyBar(bar_time(1) + timedelta(hours=48), 3000.0, 60000.0))

        assert outcome.exit_signal.reason == ExitReason.TIME_STOP
        assert outcome.state == StrategyStatus.FLAT

    def test_failed_exit_stays_in_position(self, engine, executor, alerter):
        enter_short_eth(engine, 0.2)
        executor.queue(Symbol.ETH_PERP, RejectedOrderError("venue down"))

        outcome = engine.process_bar(bar(2))

        assert outcome.action == LogEvent.EXIT_FAILED
        assert outcome.state == StrategyStatus.IN_POSITION
        assert alerter.alerts[-1].level == AlertLevel.WARNING


# =============================================================================
# Hedge integrity
# =============================================================================


class TestHedgeIntegrity:
    """Tests for partial fills, rollback and residual repair."""

    def test_partial_fill_rolled_back(self, engine, executor, alerter):
        executor.queue(Symbol.BTC_PERP, RejectedOrderError("insufficient margin"))
        script(engine, 1.2, 1.6)
        engine.process_bar(bar(0))

        outcome = engine.process_bar(bar(1))

        assert outcome.action == LogEvent.ENTRY_FAILED
        assert outcome.state == StrategyStatus.FLAT
        assert engine.state.position is None
        assert [c.action for c in executor.calls_for(Symbol.ETH_PERP)] == ["submit", "close"]
        assert alerter.alerts[-1].level == AlertLevel.WARNING

    def test_failed_rollback_recorded_then_repaired(self, engine, executor, alerter, store):
        executor.queue(Symbol.ETH_PERP, 8.333, RejectedOrderError("halted"))
        executor.queue(Symbol.BTC_PERP, RejectedOrderError("insufficient margin"))
        script(engine, 1.2, 1.6, 1.0)
        engine.process_bar(bar(0))

        outcome = engine.process_bar(bar(1))

        assert outcome.action == LogEvent.ENTRY_FAILED
        assert alerter.alerts[-1].level == AlertLevel.CRITICAL
        assert store.load().position.eth.qty == pytest.approx(-8.333)
        assert store.load().position.btc.qty == 0.0

        outcome = engine.process_bar(bar(2))

        assert outcome.events == [LogEvent.RESIDUAL_REPAIR]
        assert engine.state.position is None
        repair = executor.calls_for(Symbol.ETH_PERP, "close")[-1]
        assert repair.order.side == OrderSide.BUY
        assert repair.order.qty == pytest.approx(8.333)

    def test_exit_residual_repaired_same_bar(self, engine, executor, alerter):
        enter_short_eth(engine, 0.2)
        executor.queue(Symbol.BTC_PERP, RejectedOrderError("rejected"))

        outcome = engine.process_bar(bar(2))

        assert outcome.events == [LogEvent.EXIT, LogEvent.RESIDUAL_REPAIR]
        assert outcome.state == StrategyStatus.FLAT
        assert engine.state.position is None
        assert any(a.level == AlertLevel.CRITICAL for a in alerter.alerts)
        assert len(executor.calls_for(Symbol.BTC_PERP, "close")) == 2

    def test_unrepairable_residual_propagates(self, engine, executor, store):
        enter_short_eth(engine, 0.2)
        executor.queue(Symbol.BTC_PERP, *[RejectedOrderError("rejected")] * 2)

        with pytest.raises(ResidualExposureError):
            engine.process_bar(bar(2))

        persisted = store.load()
        assert persisted.status == StrategyStatus.FLAT
        assert persisted.position.btc.qty == pytest.approx(0.41666)
        assert persisted.position.eth.qty == 0.0

    def test_short_exit_fill_remainder_repaired(self, engine, executor, alerter):
        enter_short_eth(engine, 0.2)
        executor.queue(Symbol.ETH_PERP, 2.0)

        outcome = engine.process_bar(bar(2))

        assert outcome.events == [LogEvent.EXIT, LogEvent.RESIDUAL_REPAIR]
        assert engine.state.position is None
        assert any(a.level == AlertLevel.CRITICAL for a in alerter.alerts)
        repair = executor.calls_for(Symbol.ETH_PERP, "close")[-1]
        assert repair.order.side == OrderSide.BUY
        assert repair.order.qty == pytest.approx(6.333)

    def test_short_exit_fill_remainder_persisted(self, engine, executor, store):
        enter_short_eth(engine, 0.2)
        executor.queue(Symbol.ETH_PERP, 2.0, RejectedOrderError("halted"))

        with pytest.raises(ResidualExposureError):
            engine.process_bar(bar(2))

        persisted = store.load()
        assert persisted.status == StrategyStatus.FLAT
        assert persisted.position.eth.qty == pytest.approx(-6.333)
        assert persisted.position.btc.qty == 0.0

    def test_remainder_on_both_legs_stays_in_position(self, engine, executor, store):
        enter_short_eth(engine, 0.2)
        executor.queue(Symbol.ETH_PERP, 8.0, RejectedOrderError("halted"))
        executor.queue(Symbol.BTC_PERP, RejectedOrderError("rejected"))

        with pytest.raises(ResidualExposureError):
            engine.process_bar(bar(2))

        persisted = store.load()
        assert persisted.status == StrategyStatus.IN_POSITION
        assert persisted.position.eth.qty == pytest.approx(-0.333)
        assert persisted.position.btc.qty == pytest.approx(0.41666)


# =============================================================================
# Persistence
# =============================================================================


class TestPersistence:
    """Tests for transition persistence."""

    def test_save_failure_rolls_back_transition(self, engine, store, alerter):
        script(engine, 1.2, 1.6)
        engine.process_bar(bar(0))
        store.fail_next_save = True

        with pytest.raises(PersistenceError):
            engine.process_bar(bar(1))

        assert engine.state.status == StrategyStatus.FLAT
        assert alerter.alerts[-1].level == AlertLevel.CRITICAL

    def test_each_transition_saved(self, engine, store):
        enter_short_eth(engine, 0.2)
        engine.process_bar(bar(2))
        assert store.save_count == 2


# =============================================================================
# Startup
# =============================================================================


class TestStartup:
    """Tests for warm-up and startup recovery."""

    def test_warm_up_does_not_trade(self, engine, executor):
        records = [bar(i, eth=3000.0 + (i % 2) * 3) for i in range(12)]

        assert engine.warm_up(reversed(records)) == 12
        assert len(engine.pipeline.zscore) == 10
        assert executor.calls == []
        assert engine.state.status == StrategyStatus.FLAT

    def test_warm_up_invalid_price(self, engine):
        with pytest.raises(StrategyError):
            engine.warm_up([bar(0, eth=-1.0)])

    def test_invalid_price_on_bar(self, engine):
        with pytest.raises(StrategyError):
            engine.process_bar(bar(0, eth=0.0))

    def test_recovery_repairs_single_leg(self, engine, executor, store, alerter):
        store.save(StrategyState(status=StrategyStatus.IN_POSITION, position=make_position(btc_qty=0.0)))

        report = engine.startup_recovery(bar_time(0), {Symbol.ETH_PERP: 3000.0, Symbol.BTC_PERP: 60000.0})

        assert report.anomalies
        assert engine.state == StrategyState()
        assert store.load() == StrategyState()
        close = executor.calls_for(Symbol.ETH_PERP, "close")[0]
        assert close.order.side == OrderSide.BUY
        assert close.order.limit_price == pytest.approx(3001.5)
        assert alerter.alerts[0].level == AlertLevel.CRITICAL

    def test_recovery_adopts_hedged_position(self, engine, executor, store):
        store.save(StrategyState(status=StrategyStatus.IN_POSITION, position=make_position()))

        report = engine.startup_recovery(bar_time(0))

        assert report.is_clean
        assert engine.state.status == StrategyStatus.IN_POSITION
        assert executor.calls == []


# =============================================================================
# Logs
# =============================================================================


class TestBarAndTradeLogs:
    """Tests for per-bar and per-trade log output."""

    def test_bar_log_fields(self, engine):
        script(engine, None)
        outcome = engine.process_bar(bar(0))

        assert outcome.bar_log.zscore is None
        assert outcome.bar_log.state == StrategyStatus.FLAT
        assert outcome.bar_log.eth_price == 3000.0

    def test_writers_append_lines(self, config, coordinator, store, alerter, tmp_path):
        engine = StrategyEngine(
            config,
            coordinator,
            state_store=store,
            alerter=alerter,
            bar_log_writer=BarLogWriter(tmp_path / "bars.jsonl"),
            trade_log_writer=TradeLogWriter(tmp_path / "trades.log", LogFormat.TEXT),
        )
        enter_short_eth(engine, 0.3)
        engine.process_bar(bar(2))

        bars = [json.loads(line) for line in (tmp_path / "bars.jsonl").read_text().splitlines()]
        assert [b["state"] for b in bars] == ["flat", "in_position", "flat"]
        assert bars[1]["events"] == ["entry"]

        trades = (tmp_path / "trades.log").read_text().splitlines()
        assert len(trades) == 2
        assert "EVENT=EXIT(TAKE_PROFIT)" in trades[1]


class TestPnlHelpers:
    def test_leg_pnl_long_and_short(self):
        position = make_position()
        assert leg_pnl(position.btc, 61200.0) == pytest.approx(0.02 * 0.41666 * 60000.0)
        assert leg_pnl(position.eth, 3060.0) == pytest.approx(-0.02 * 8.333 * 3000.0)

    def test_pair_pnl(self):
        position = make_position()
        assert pair_pnl(position, 3000.0, 60000.0) == 0.0
