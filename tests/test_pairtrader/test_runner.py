"""
Tests for the live runtime: LiveRunner bar cycles and error routing, and
PairTradingDaemon lifecycle (recovery, warm-up, loop, shutdown).
"""

import json
import sys
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock, patch

import pytest

from pairtrader.alerters.base import AlertLevel, InMemoryAlerter
from pairtrader.config import CapitalMode
from pairtrader.data.errors import MissingDataError
from pairtrader.data.funding import FundingFetcher, ZeroFundingSource
from pairtrader.data.prices import MockPriceSource, PriceFetcher
from pairtrader.execution.hyperliquid import HyperliquidOrderExecutor
from pairtrader.execution.orders import ResidualExposureError
from pairtrader.models import Symbol
from pairtrader.runtime.runner import BAR_CLOSE_GRACE_SECONDS, LiveRunner, PairTradingDaemon
from pairtrader.state.machine import StrategyStatus
from pairtrader.state.store import PersistenceError
from pairtrader.strategy.engine import StrategyError
from pairtrader.trading.sizing import PositionError
from tests.mocks import bar_time, price_source


class Clock:
    """Settable clock."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def running_event(iterations):
    """Shutdown event double that stays clear for the given number of checks."""
    event = Mock()
    event.is_set.side_effect = [False] * iterations + [True]
    return event


@pytest.fixture
def clock():
    return Clock(bar_time(12) + timedelta(seconds=30))


@pytest.fixture
def runner(engine, clock):
    fetcher = PriceFetcher(price_source([bar_time(i) for i in range(20)]))
    return LiveRunner(engine, fetcher, clock=clock)


# =============================================================================
# LiveRunner
# =============================================================================


class TestRunOnce:
    """Tests for a single bar cycle."""

    def test_processes_latest_closed_bar(self, runner):
        outcome = runner.run_once()

        assert outcome is not None
        assert outcome.bar_log.timestamp == bar_time(12)
        assert runner.last_processed == bar_time(12)
        assert runner.cycles == 1

    def test_skips_bar_already_processed(self, runner):
        runner.run_once()

        assert runner.run_once() is None
        assert runner.cycles == 1

    def test_next_bar_is_processed(self, runner, clock):
        runner.run_once()
        clock.now += timedelta(minutes=15)

        assert runner.run_once() is not None
        assert runner.last_processed == bar_time(13)

    def test_passes_funding(self, runner, engine):
        runner.funding_fetcher = FundingFetcher(ZeroFundingSource())
        engine.process_bar = Mock(wraps=engine.process_bar)

        runner.run_once()

        bar = engine.process_bar.call_args.args[0]
        assert bar.funding_eth == 0.0
        assert bar.funding_interval_hours == 8

    def test_funding_failure_continues_without(self, runner, engine):
        runner.funding_fetcher = Mock()
        runner.funding_fetcher.fetch_pair_rates.side_effect = MissingDataError("no funding")
        engine.process_bar = Mock(wraps=engine.process_bar)

        assert runner.run_once() is not None
        assert engine.process_bar.call_args.args[0].funding_eth is None

    def test_equity_not_fetched_in_fixed_mode(self, runner):
        runner.equity_source = Mock()

        runner.run_once()

        runner.equity_source.fetch_equity.assert_not_called()

    def test_equity_fetched_in_ratio_mode(self, runner, engine):
        engine.config.position.c_mode = CapitalMode.EQUITY_RATIO
        runner.equity_source = Mock()
        runner.equity_source.fetch_equity.return_value = 40000.0
        engine.process_bar = Mock(wraps=engine.process_bar)

        runner.run_once()

        assert engine.process_bar.call_args.args[0].equity == 40000.0


class TestRunLoop:
    """Tests for loop scheduling and error routing."""

    def test_waits_for_next_bar_boundary(self, runner, clock):
        clock.now = bar_time(1) + timedelta(seconds=60)
        assert runner.seconds_until_next_bar() == 900 - 60 + BAR_CLOSE_GRACE_SECONDS

    def test_stops_when_shutdown_set(self, runner):
        runner.run_once = Mock()

        assert runner.run_loop(running_event(0)) == 0
        runner.run_once.assert_not_called()

    def test_waits_between_cycles(self, runner):
        event = running_event(2)

        assert runner.run_loop(event) == 2
        assert event.wait.call_count == 2

    def test_max_cycles(self, runner):
        event = running_event(5)

        assert runner.run_loop(event, max_cycles=1) == 1
        event.wait.assert_not_called()

    def test_data_error_skips_bar(self, engine, clock, alerter):
        runner = LiveRunner(engine, PriceFetcher(MockPriceSource()), clock=clock)

        assert runner.run_loop(running_event(2)) == 2
        assert runner.errors == 2
        assert alerter.alerts == []

    @pytest.mark.parametrize("error", [StrategyError("bad funding"), PositionError("too big")])
    def test_strategy_error_alerts_and_continues(self, runner, alerter, error):
        runner.run_once = Mock(side_effect=error)

        assert runner.run_loop(running_event(2)) == 2
        assert runner.errors == 2
        assert alerter.alerts[0].level == AlertLevel.WARNING

    @pytest.mark.parametrize("error", [
        PersistenceError("disk full"),
        ResidualExposureError("ETH leg open", residual={Symbol.ETH_PERP: -1.0}),
    ])
    def test_fatal_error_alerts_and_raises(self, runner, alerter, error):
        runner.run_once = Mock(side_effect=error)

        with pytest.raises(type(error)):
            runner.run_loop(running_event(3))
        assert runner.errors == 1
        assert alerter.alerts[-1].level == AlertLevel.CRITICAL


# =============================================================================
# Daemon
# =============================================================================


@pytest.fixture
def daemon(config, clock, tmp_path):
    config.runtime.state_path = str(tmp_path / "state.json")
    daemon = PairTradingDaemon(config, alerter=InMemoryAlerter(), info_client=Mock(), clock=clock)

    fetcher = PriceFetcher(price_source([bar_time(i) for i in range(20)]))
    daemon.price_fetcher = fetcher
    daemon.runner.price_fetcher = fetcher
    daemon.runner.funding_fetcher = FundingFetcher(ZeroFundingSource())
    return daemon


class TestDaemonLifecycle:
    """Tests for start/stop and status."""

    def test_paper_mode_without_signer(self, daemon):
        assert daemon.paper_mode
        assert not daemon.is_running

    def test_signer_selects_hyperliquid_executor(self, config, tmp_path):
        config.runtime.state_path = str(tmp_path / "state.json")
        daemon = PairTradingDaemon(config, signer=Mock(), alerter=InMemoryAlerter(), info_client=Mock())

        assert isinstance(daemon.executor, HyperliquidOrderExecutor)
        assert not daemon.paper_mode

    @patch("pairtrader.runtime.runner.os_signal.signal")
    def test_start_recovers_warms_up_and_stops(self, mock_signal, daemon, tmp_path):
        daemon.start(max_cycles=1)

        assert not daemon.is_running
        assert mock_signal.call_count == 2

        state_file = tmp_path / "state.json"
        assert state_file.exists()
        assert json.loads(state_file.read_text())["state"]["status"] == StrategyStatus.FLAT.value

        # Warm-up covers the latest closed bar, so the first live cycle has nothing new
        assert daemon.runner.last_processed == bar_time(12)
        assert daemon.runner.cycles == 0

    @patch("pairtrader.runtime.runner.os_signal.signal")
    def test_warm_up_replays_configured_bars(self, mock_signal, daemon):
        assert daemon.warm_up() == daemon.config.warmup_bars

    @patch("pairtrader.runtime.runner.os_signal.signal")
    def test_fatal_error_stops_daemon(self, mock_signal, daemon):
        daemon.runner.run_once = Mock(side_effect=PersistenceError("disk full"))

        with pytest.raises(PersistenceError):
            daemon.start(max_cycles=3)

        assert not daemon.is_running
        assert daemon.alerter.alerts[-1].level == AlertLevel.CRITICAL

    @patch("pairtrader.runtime.runner.os_signal.signal")
    def test_signal_handler_requests_shutdown(self, mock_signal, daemon):
        daemon._setup_signal_handlers()
        handler = mock_signal.call_args.args[1]

        handler(15, None)

        assert daemon._shutdown_event.is_set()

    def test_status(self, daemon):
        status = daemon.get_status()

        assert status['status'] == 'FLAT'
        assert status['paper_mode'] is True
        assert status['cycles'] == 0


# =============================================================================
# Command line
# =============================================================================


class TestCommandLine:
    """Tests for scripts/run_pairtrader.py subcommands."""

    @pytest.fixture
    def cli(self, config, monkeypatch):
        from scripts import run_pairtrader

        monkeypatch.setattr(run_pairtrader, "load_config", lambda: config)
        monkeypatch.setattr(run_pairtrader, "setup_logging", Mock())
        return run_pairtrader

    @patch("pairtrader.runtime.PairTradingDaemon")
    def test_live_once_without_funding(self, mock_daemon, cli, monkeypatch):
        monkeypatch.setattr(sys, "argv", ["run_pairtrader.py", "live", "--once", "--disable-funding"])

        assert cli.main() == 0

        daemon = mock_daemon.return_value
        daemon.start.assert_called_once_with(block=True, max_cycles=1)
        assert daemon.runner.funding_fetcher is None

    @patch("pairtrader.runtime.PairTradingDaemon")
    def test_live_defaults_run_until_stopped(self, mock_daemon, cli, monkeypatch):
        monkeypatch.setattr(sys, "argv", ["run_pairtrader.py", "live"])

        assert cli.main() == 0

        daemon = mock_daemon.return_value
        daemon.start.assert_called_once_with(block=True, max_cycles=None)
        assert daemon.runner.funding_fetcher is not None

    @patch("pairtrader.backtest.write_backtest_bars")
    @patch("pairtrader.backtest.download_backtest_bars")
    def test_download_writes_csv(self, mock_download, mock_write, cli, monkeypatch, tmp_path):
        out = str(tmp_path / "bars.csv")
        monkeypatch.setattr(sys, "argv", [
            "run_pairtrader.py", "download", "--start", "2024-01-01", "--end", "2024-01-02", "--out", out,
        ])
        mock_download.return_value = []

        assert cli.main() == 0

        _, start, end = mock_download.call_args.args
        assert start == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert end == datetime(2024, 1, 2, tzinfo=timezone.utc)
        assert mock_download.call_args.kwargs == {"include_funding": True}
        mock_write.assert_called_once_with(out, [])

    @patch("pairtrader.backtest.download_backtest_bars")
    def test_download_coverage_failure(self, mock_download, cli, monkeypatch, tmp_path):
        from pairtrader.backtest import CoverageError

        monkeypatch.setattr(sys, "argv", [
            "run_pairtrader.py", "download", "--start", "2024-01-01", "--end", "2024-01-02",
            "--out", str(tmp_path / "bars.csv"), "--no-funding",
        ])
        mock_download.side_effect = CoverageError("gap")

        assert cli.main() == 1
        assert mock_download.call_args.kwargs == {"include_funding": False}
