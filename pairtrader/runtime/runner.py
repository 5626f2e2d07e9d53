"""
Live runtime for the ETH/BTC pair strategy.

Features:
- LiveRunner: one cycle per closed 15-minute bar (prices, funding, equity
  -> StrategyEngine.process_bar)
- PairTradingDaemon: wires config to the Hyperliquid collaborators, runs
  startup recovery and warm-up, then loops until SIGINT/SIGTERM
- Graceful shutdown: the shutdown event is only checked between cycles,
  so an in-flight bar always completes and persists

Usage:
    from pairtrader.config import load_config
    from pairtrader.runtime import PairTradingDaemon

    daemon = PairTradingDaemon(load_config())
    daemon.start()  # blocks until SIGINT/SIGTERM
"""

import logging
import signal as os_signal
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from pairtrader.alerters.base import Alert, AlertDispatcher, AlertLevel, AlertSink, LoggingAlerter
from pairtrader.alerters.discord_alerter import DiscordAlerter
from pairtrader.config import CapitalMode, Config
from pairtrader.data.errors import DataError
from pairtrader.data.funding import FundingFetcher, HyperliquidFundingSource
from pairtrader.data.hyperliquid import EquitySource, HyperliquidAccountSource, HyperliquidInfoClient
from pairtrader.data.prices import HyperliquidPriceSource, PriceFetcher, align_to_bar_close
from pairtrader.execution.coordinator import ExecutionCoordinator
from pairtrader.execution.executors import OrderExecutor, PaperOrderExecutor
from pairtrader.execution.hyperliquid import HyperliquidOrderExecutor, Signer
from pairtrader.execution.orders import ResidualExposureError, RetryPolicy
from pairtrader.execution.rate_limiter import FixedRateLimiter
from pairtrader.models import Symbol
from pairtrader.state.store import JsonStateStore, PersistenceError
from pairtrader.strategy.engine import StrategyBar, StrategyEngine, StrategyError, StrategyOutcome
from pairtrader.strategy.logs import BarLogWriter, TradeLogWriter
from pairtrader.trading.funding import FundingError
from pairtrader.trading.sizing import PositionError

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

LOG_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'

# Seconds after the bar boundary before polling, so the venue has closed the candle
BAR_CLOSE_GRACE_SECONDS = 5


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def setup_logging(level: str = 'INFO', log_file: Optional[str] = None) -> None:
    """Configure root logging for the runtime and scripts."""
    handlers = [logging.StreamHandler()]

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
        handlers=handlers,
    )


# =============================================================================
# LIVE RUNNER
# =============================================================================


class LiveRunner:
    """
    Drives a StrategyEngine from live data sources.

    Errors are split in two groups. Data, indicator and sizing failures
    skip the bar and the loop carries on. PersistenceError and
    ResidualExposureError leave the process in a state a human must look
    at: they are alerted and re-raised, which ends the loop.
    """

    def __init__(
        self,
        engine: StrategyEngine,
        price_fetcher: PriceFetcher,
        funding_fetcher: Optional[FundingFetcher] = None,
        equity_source: Optional[EquitySource] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.engine = engine
        self.price_fetcher = price_fetcher
        self.funding_fetcher = funding_fetcher
        self.equity_source = equity_source
        self.clock = clock or _utc_now
        self.interval_secs = engine.config.runtime.interval_secs

        self.last_processed: Optional[datetime] = None
        self.cycles = 0
        self.errors = 0

    def _funding(self, timestamp: datetime) -> Dict[str, Any]:
        if self.funding_fetcher is None:
            return {}
        try:
            snapshot = self.funding_fetcher.fetch_pair_rates(timestamp)
        except (DataError, FundingError) as e:
            logger.warning(f"Funding unavailable at {timestamp.isoformat()}, continuing without: {e}")
            return {}
        return {
            "funding_eth": snapshot.eth.rate,
            "funding_btc": snapshot.btc.rate,
            "funding_interval_hours": snapshot.interval_hours,
        }

    def _equity(self) -> Optional[float]:
        if self.engine.config.position.c_mode != CapitalMode.EQUITY_RATIO or self.equity_source is None:
            return None
        try:
            return self.equity_source.fetch_equity()
        except DataError as e:
            logger.warning(f"Equity unavailable, falling back to configured equity_value: {e}")
            return None

    def run_once(self) -> Optional[StrategyOutcome]:
        """
        Process the most recently closed bar.

        Returns:
            The StrategyOutcome, or None if that bar was already processed

        Raises:
            DataError: Prices unavailable or inconsistent
            StrategyError, PositionError, PersistenceError, ResidualExposureError:
                Propagated from StrategyEngine.process_bar
        """
        snapshot = self.price_fetcher.fetch_pair_prices(self.clock())
        if self.last_processed is not None and snapshot.timestamp <= self.last_processed:
            logger.debug(f"Bar {snapshot.timestamp.isoformat()} already processed")
            return None

        bar = StrategyBar(
            timestamp=snapshot.timestamp,
            eth_price=snapshot.eth_price,
            btc_price=snapshot.btc_price,
            equity=self._equity(),
            **self._funding(snapshot.timestamp),
        )
        outcome = self.engine.process_bar(bar)
        self.last_processed = snapshot.timestamp
        self.cycles += 1

        z = outcome.bar_log.zscore
        logger.info(
            f"Processed bar {snapshot.timestamp.isoformat()}: "
            f"state={outcome.state.name} z={'NA' if z is None else f'{z:.3f}'}"
            + (f" action={outcome.action.value}" if outcome.action else "")
        )
        return outcome

    def seconds_until_next_bar(self) -> float:
        now = self.clock()
        elapsed = now.timestamp() % self.interval_secs
        return self.interval_secs - elapsed + BAR_CLOSE_GRACE_SECONDS

    def run_loop(self, shutdown_event: threading.Event, max_cycles: Optional[int] = None) -> int:
        """
        Run cycles until the shutdown event is set.

        Args:
            shutdown_event: Checked between cycles only
            max_cycles: Stop after this many loop iterations (None = forever)

        Returns:
            Number of loop iterations run
        """
        iterations = 0
        while not shutdown_event.is_set():
            try:
                self.run_once()
            except (PersistenceError, ResidualExposureError) as e:
                self.errors += 1
                logger.critical(f"Fatal error, stopping loop: {e}")
                self.engine.alerter.send(Alert(AlertLevel.CRITICAL, f"Pair trader halted: {e}"))
                raise
            except DataError as e:
                self.errors += 1
                logger.warning(f"Skipping bar, market data unavailable: {e}")
            except (StrategyError, PositionError) as e:
                self.errors += 1
                logger.error(f"Skipping bar: {e}")
                self.engine.alerter.send(Alert(AlertLevel.WARNING, f"Bar skipped: {e}"))

            iterations += 1
            if max_cycles is not None and iterations >= max_cycles:
                break
            shutdown_event.wait(timeout=self.seconds_until_next_bar())
        return iterations


# =============================================================================
# DAEMON
# =============================================================================


class PairTradingDaemon:
    """
    Long-running live process for the pair strategy.

    Without a signer orders go to PaperOrderExecutor, so the daemon trades
    on paper against live Hyperliquid prices.
    """

    def __init__(
        self,
        config: Config,
        signer: Optional[Signer] = None,
        executor: Optional[OrderExecutor] = None,
        alerter: Optional[AlertSink] = None,
        info_client: Optional[HyperliquidInfoClient] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        config.validate()
        self.config = config
        self.clock = clock or _utc_now

        runtime = config.runtime
        self.rate_limiter = FixedRateLimiter(runtime.rate_limit_ms)
        self.info = info_client or HyperliquidInfoClient(runtime.base_url, self.rate_limiter)

        self.discord: Optional[DiscordAlerter] = None

        self.alerter = alerter or self._create_alerter()
        self.executor = executor or self._create_executor(signer)
        self.paper_mode = isinstance(self.executor, PaperOrderExecutor)

        coordinator = ExecutionCoordinator(
            self.executor,
            RetryPolicy(
                max_attempts=config.execution.max_attempts,
                base_delay_ms=config.execution.base_delay_ms,
            ),
        )
        fmt = config.logging.format
        self.engine = StrategyEngine(
            config,
            coordinator,
            state_store=JsonStateStore(Path(runtime.state_path)),
            alerter=self.alerter,
            bar_log_writer=BarLogWriter(runtime.bar_log_path, fmt) if runtime.bar_log_path else None,
            trade_log_writer=TradeLogWriter(runtime.trade_log_path, fmt) if runtime.trade_log_path else None,
        )

        equity_source = None
        if config.position.c_mode == CapitalMode.EQUITY_RATIO and runtime.hyperliquid_user:
            equity_source = HyperliquidAccountSource(self.info, runtime.hyperliquid_user)

        self.price_fetcher = PriceFetcher(HyperliquidPriceSource(self.info), config.data.price_field)
        self.runner = LiveRunner(
            self.engine,
            self.price_fetcher,
            funding_fetcher=FundingFetcher(HyperliquidFundingSource(self.info)),
            equity_source=equity_source,
            clock=self.clock,
        )

        self._shutdown_event = threading.Event()
        self._running = False
        self._start_time: Optional[datetime] = None
        self._loop_thread: Optional[threading.Thread] = None

    def _create_alerter(self) -> AlertDispatcher:
        dispatcher = AlertDispatcher([LoggingAlerter()])
        if self.config.alerts.webhook_url:
            self.discord = DiscordAlerter(self.config.alerts.webhook_url)
            dispatcher.add_sink(self.discord)
            logger.info("Discord alerts enabled")
        return dispatcher

    def _create_executor(self, signer: Optional[Signer]) -> OrderExecutor:
        if signer is None:
            logger.warning("No signer configured, orders are paper-filled")
            return PaperOrderExecutor()
        return HyperliquidOrderExecutor(self.config.runtime.base_url, signer, self.rate_limiter)

    def _setup_signal_handlers(self) -> None:
        """Setup OS signal handlers for graceful shutdown."""

        def handle_shutdown(signum, frame):
            logger.info(f"Received signal {signum}, finishing current cycle then shutting down...")
            self._shutdown_event.set()

        os_signal.signal(os_signal.SIGINT, handle_shutdown)
        os_signal.signal(os_signal.SIGTERM, handle_shutdown)

    def _send_status(self, status: str, details: str = '') -> None:
        if self.discord is not None:
            self.discord.send_daemon_status(status, details)

    def _current_prices(self) -> Optional[Dict[Symbol, float]]:
        try:
            snapshot = self.price_fetcher.fetch_pair_prices(self.clock())
        except DataError as e:
            logger.warning(f"No current prices for startup repair orders: {e}")
            return None
        return {Symbol.ETH_PERP: snapshot.eth_price, Symbol.BTC_PERP: snapshot.btc_price}

    def warm_up(self) -> int:
        """Replay closed bars so indicators are ready on the first live bar."""
        end = align_to_bar_close(self.clock())
        start = end - timedelta(seconds=self.config.runtime.interval_secs * (self.config.warmup_bars - 1))
        history = self.price_fetcher.fetch_pair_history(start, end)
        count = self.engine.warm_up(history)
        if history:
            self.runner.last_processed = history[-1].timestamp
        if count < self.config.warmup_bars:
            logger.warning(f"Warm-up short: {count}/{self.config.warmup_bars} bars available")
        return count

    def start(self, block: bool = True, max_cycles: Optional[int] = None) -> None:
        """
        Recover state, warm up, then run the bar loop.

        Args:
            block: Run the loop in this thread (default: True)
            max_cycles: Passed through to LiveRunner.run_loop
        """
        if self._running:
            logger.warning("Daemon already running")
            return

        logger.info(f"Starting pair trader ({'paper' if self.paper_mode else 'live'} mode)...")
        self._start_time = self.clock()
        self._running = True
        self._shutdown_event.clear()
        self._setup_signal_handlers()

        report = self.engine.startup_recovery(self.clock(), self._current_prices())
        logger.info(
            f"Recovered state {report.state.status.name} "
            f"({len(report.anomalies)} anomalies, {len(report.actions)} actions)"
        )
        self.warm_up()
        self._send_status('Started', f"State: {self.engine.state.status.name}")

        if not block:
            self._loop_thread = threading.Thread(
                target=self._run_loop, args=(max_cycles,), daemon=True, name="PairTraderLoop"
            )
            self._loop_thread.start()
            return
        try:
            self._run_loop(max_cycles)
        finally:
            self.stop()

    def _run_loop(self, max_cycles: Optional[int]) -> None:
        try:
            self.runner.run_loop(self._shutdown_event, max_cycles=max_cycles)
        except (PersistenceError, ResidualExposureError) as e:
            self._send_status('Error', str(e))
            raise

    def stop(self) -> None:
        """Request shutdown; the current cycle completes first."""
        if not self._running:
            return

        logger.info("Stopping pair trader...")
        self._shutdown_event.set()
        if self._loop_thread is not None and self._loop_thread.is_alive():
            self._loop_thread.join(timeout=30)

        logger.info(f"Final stats: {self.get_status()}")
        self._send_status('Stopped', f"Cycles: {self.runner.cycles}, errors: {self.runner.errors}")
        self._running = False
        logger.info("Pair trader stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    def get_status(self) -> Dict[str, Any]:
        state = self.engine.state
        uptime = (self.clock() - self._start_time).total_seconds() if self._start_time else 0.0
        return {
            'running': self._running,
            'paper_mode': self.paper_mode,
            'status': state.status.name,
            'cooldown_until': state.cooldown_until.isoformat() if state.cooldown_until else None,
            'last_processed': self.runner.last_processed.isoformat() if self.runner.last_processed else None,
            'cycles': self.runner.cycles,
            'errors': self.runner.errors,
            'cumulative_realized_pnl': self.engine.cumulative_realized_pnl,
            'uptime_seconds': uptime,
        }
