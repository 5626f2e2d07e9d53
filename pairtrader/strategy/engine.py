"""
Strategy orchestrator: one process_bar() call per 15-minute bar.

Per bar:
1. Advance COOLDOWN (update(now)) and repair any recorded residual leg
2. Update indicators with the paired prices
3. Derive the funding-adjusted entry threshold (falling back to the base
   entry_z when funding inputs are unusable) and run the detectors on
   every bar; on an entry signal, size and open both legs atomically
4. While IN_POSITION, run the exit detector; on a signal, close both legs
5. Persist every transition and emit one BarLog (plus TradeLogs)

The same engine runs live and in backtests; only the OrderExecutor
behind the ExecutionCoordinator differs.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from pairtrader.alerters.base import Alert, AlertLevel, AlertSink, LoggingAlerter
from pairtrader.config import Config
from pairtrader.execution.coordinator import ExecutionCoordinator
from pairtrader.execution.orders import (
    ExecutionError,
    OrderRequest,
    OrderSide,
    PartialFillError,
    ResidualExposureError,
    RollbackFailedError,
    limit_price,
)
from pairtrader.indicators.rolling import IndicatorError
from pairtrader.models import Symbol, TradeDirection
from pairtrader.signals.detectors import EntrySignal, ExitSignal
from pairtrader.signals.pipeline import IndicatorOutput, SignalPipeline
from pairtrader.state.machine import (
    PositionLeg,
    PositionSnapshot,
    StateMachine,
    StrategyState,
    StrategyStatus,
)
from pairtrader.state.recovery import RecoveryAction, RecoveryReport, recover_state
from pairtrader.state.store import PersistenceError, StateStore
from pairtrader.strategy.logs import (
    BarLog,
    BarLogWriter,
    LogEvent,
    TradeEvent,
    TradeLog,
    TradeLogWriter,
)
from pairtrader.trading.funding import (
    FundingCostEstimate,
    FundingDecision,
    FundingError,
    FundingRate,
    apply_funding_controls,
    estimate_funding_cost,
    funding_rates_for_bar,
)
from pairtrader.trading.sizing import (
    BelowMinimumError,
    PositionError,
    RiskParityWeights,
    SizeConverter,
    compute_capital,
    risk_parity_weights,
)

logger = logging.getLogger(__name__)


class StrategyError(Exception):
    """An indicator or funding collaborator failed while processing a bar."""


@dataclass
class StrategyBar:
    """Paired inputs for one bar."""

    timestamp: datetime
    eth_price: float
    btc_price: float
    equity: Optional[float] = None
    funding_eth: Optional[float] = None
    funding_btc: Optional[float] = None
    funding_interval_hours: Optional[int] = None


@dataclass
class StrategyOutcome:
    """Result of one processed bar."""

    state: StrategyStatus
    bar_log: BarLog
    events: List[LogEvent] = field(default_factory=list)
    trade_logs: List[TradeLog] = field(default_factory=list)
    entry_signal: Optional[EntrySignal] = None
    exit_signal: Optional[ExitSignal] = None

    @property
    def action(self) -> Optional[LogEvent]:
        """The trading action taken this bar, if any."""
        for event in (LogEvent.ENTRY, LogEvent.EXIT, LogEvent.ENTRY_FAILED, LogEvent.EXIT_FAILED):
            if event in self.events:
                return event
        return None


@dataclass
class _EntryPlan:
    direction: TradeDirection
    weights: RiskParityWeights
    entry_z: Optional[float] = None        # Funding-adjusted threshold for the detector
    funding_error: Optional[str] = None    # Funding inputs present but unusable
    capital: Optional[float] = None        # Filled in once a signal fires
    notional_eth: Optional[float] = None
    notional_btc: Optional[float] = None
    estimate: Optional[FundingCostEstimate] = None
    decision: Optional[FundingDecision] = None


def leg_pnl(leg: PositionLeg, exit_price: float) -> float:
    """Long: (exit - entry) / entry x notional. Short: the negation."""
    if not leg.is_open or leg.avg_price <= 0:
        return 0.0
    move = (exit_price - leg.avg_price) / leg.avg_price * abs(leg.notional)
    return move if leg.qty > 0 else -move


def pair_pnl(position: PositionSnapshot, eth_price: float, btc_price: float) -> float:
    """Gross realized PnL of closing both legs at the given prices."""
    return leg_pnl(position.eth, eth_price) + leg_pnl(position.btc, btc_price)


class StrategyEngine:
    """
    Composes the signal pipeline, sizing, funding controls, execution
    coordinator and state machine.

    Usage:
        engine = StrategyEngine(config, ExecutionCoordinator(executor))
        engine.startup_recovery(now)
        engine.warm_up(history)
        outcome = engine.process_bar(StrategyBar(ts, eth_price, btc_price))
    """

    def __init__(
        self,
        config: Config,
        coordinator: ExecutionCoordinator,
        state_store: Optional[StateStore] = None,
        alerter: Optional[AlertSink] = None,
        bar_log_writer: Optional[BarLogWriter] = None,
        trade_log_writer: Optional[TradeLogWriter] = None,
    ) -> None:
        config.validate()
        self.config = config
        self.coordinator = coordinator
        self.state_store = state_store
        self.alerter = alerter or LoggingAlerter()
        self.bar_log_writer = bar_log_writer
        self.trade_log_writer = trade_log_writer

        self.pipeline = SignalPipeline(config)
        self.machine = StateMachine(config.risk)
        self.cumulative_realized_pnl = 0.0

        self._eth_converter = SizeConverter(
            config.constraints_for(Symbol.ETH_PERP), config.position.min_size_policy
        )
        self._btc_converter = SizeConverter(
            config.constraints_for(Symbol.BTC_PERP), config.position.min_size_policy
        )

    @property
    def state(self) -> StrategyState:
        return self.machine.state

    # =========================================================================
    # STARTUP
    # =========================================================================

    def apply_state(self, state: StrategyState) -> None:
        self.machine.hydrate(state)

    def warm_up(self, records: Iterable) -> int:
        """
        Replay history through indicators and detectors without trading.

        Args:
            records: Objects with timestamp, eth_price and btc_price

        Returns:
            Number of records replayed
        """
        count = 0
        for record in sorted(records, key=lambda r: r.timestamp):
            try:
                self.pipeline.update(
                    record.timestamp,
                    record.eth_price,
                    record.btc_price,
                    self.machine.status,
                    self.machine.position,
                )
            except IndicatorError as e:
                raise StrategyError(
                    f"warm-up failed at {record.timestamp.isoformat()}: {e}"
                ) from e
            count += 1
        logger.info(f"Warm-up replayed {count} bars")
        return count

    def startup_recovery(
        self,
        now: datetime,
        prices: Optional[Dict[Symbol, float]] = None,
    ) -> RecoveryReport:
        """
        Reconcile the persisted state, repair residual legs and persist.

        Args:
            now: Current time
            prices: Current prices, used for limit prices on repair orders

        Raises:
            ResidualExposureError: A recommended repair failed
            PersistenceError: The reconciled state could not be saved
        """
        persisted = self.state_store.load() if self.state_store else self.machine.state
        report = recover_state(persisted, now)
        self.machine.hydrate(report.state)

        for alert in report.alerts:
            self.alerter.send(alert)

        if RecoveryAction.REPAIR_RESIDUAL in report.actions and report.repair_position:
            previous = self.machine.state
            self._repair(report.repair_position, now, prices)
            self._commit(previous)
        elif self.state_store is not None:
            self._commit(self.machine.state)

        if report.is_clean:
            logger.info(f"Startup recovery clean: {self.machine.status.value}")
        return report

    # =========================================================================
    # PER-BAR LOOP
    # =========================================================================

    def process_bar(self, bar: StrategyBar) -> StrategyOutcome:
        """
        Process one bar end to end.

        Raises:
            StrategyError: Invalid prices or funding inputs
            PositionError: Capital exceeds max_notional or sizing inputs are unusable
            ResidualExposureError: A residual leg could not be repaired
            PersistenceError: A transition could not be saved (rolled back in memory)
        """
        now = bar.timestamp
        events: List[LogEvent] = []
        trade_logs: List[TradeLog] = []
        prices = self._bar_prices(bar)

        previous = self.machine.state
        if self.machine.update(now):
            self._commit(previous)
            events.append(LogEvent.COOLDOWN_END)

        residual = self.machine.position
        if residual is not None and residual.has_residual:
            logger.warning(
                f"Residual leg detected (eth={residual.eth.qty}, btc={residual.btc.qty}); repairing"
            )
            previous = self.machine.state
            self._repair(residual, now, prices)
            self._commit(previous)
            events.append(LogEvent.RESIDUAL_REPAIR)

        try:
            indicators = self.pipeline.update_indicators(bar.eth_price, bar.btc_price)
        except IndicatorError as e:
            raise StrategyError(f"indicator update failed at {now.isoformat()}: {e}") from e

        plan = self._entry_candidate(bar, indicators)
        entry_z = plan.entry_z if plan else None

        # Detectors advance on every bar, whatever the entry outcome
        signals = self.pipeline.evaluate(
            indicators, self.machine.status, self.machine.position, now, entry_z=entry_z
        )

        try:
            if signals.entry is not None and plan is not None:
                trade_logs.extend(self._handle_entry(signals.entry, plan, bar, events))
            elif signals.exit is not None:
                trade_logs.extend(self._handle_exit(signals.exit, bar, events))
        except (PositionError, StrategyError):
            events.append(LogEvent.ENTRY_FAILED)
            self._write_logs(self._build_bar_log(bar, indicators, plan, events), trade_logs)
            raise

        bar_log = self._build_bar_log(bar, indicators, plan, events)
        self._write_logs(bar_log, trade_logs)

        return StrategyOutcome(
            state=self.machine.status,
            bar_log=bar_log,
            events=events,
            trade_logs=trade_logs,
            entry_signal=signals.entry,
            exit_signal=signals.exit,
        )

    # =========================================================================
    # ENTRY
    # =========================================================================

    def _entry_candidate(self, bar: StrategyBar, indicators: IndicatorOutput) -> Optional[_EntryPlan]:
        """
        Direction, weights and the funding-adjusted entry threshold for a
        possible entry. Never raises: unusable funding inputs are recorded
        on the plan and the detector keeps the base entry_z.

        Only built while FLAT with |Z| inside [entry_z, sl_z): funding can only
        raise the threshold, so below the base entry_z no entry can fire.
        """
        zscore = indicators.z.zscore
        s = self.config.strategy
        if self.machine.status != StrategyStatus.FLAT or zscore is None:
            return None
        if not s.entry_z <= abs(zscore) < s.sl_z:
            return None

        direction = (
            TradeDirection.SHORT_ETH_LONG_BTC if zscore > 0
            else TradeDirection.LONG_ETH_SHORT_BTC
        )
        weights = risk_parity_weights(indicators.vol.vol_eth, indicators.vol.vol_btc)
        plan = _EntryPlan(direction=direction, weights=weights)

        rates = self._funding_rates(bar)
        if rates is None:
            return plan

        # The normalized cost does not depend on capital, so unit notionals
        # give the threshold before any sizing input is read
        try:
            unit = estimate_funding_cost(
                direction,
                weights.w_eth,
                weights.w_btc,
                rates[0],
                rates[1],
                self.config.risk.max_hold_hours,
            )
            plan.entry_z = apply_funding_controls(
                self.config.funding, s.entry_z, 1.0, unit
            ).entry_z
        except FundingError as e:
            plan.funding_error = str(e)
            logger.warning(
                f"Funding inputs unusable at {bar.timestamp.isoformat()}, "
                f"detectors keep base entry_z: {e}"
            )
        return plan

    def _size_entry(self, plan: _EntryPlan, bar: StrategyBar) -> None:
        """
        Fill in capital, notionals and the funding decision once a signal fired.

        Raises:
            PositionError: Sizing inputs are unusable
            StrategyError: Funding controls failed
        """
        capital = compute_capital(self.config.position, bar.equity)
        plan.capital = capital
        plan.notional_eth = capital * plan.weights.w_eth
        plan.notional_btc = capital * plan.weights.w_btc

        rates = self._funding_rates(bar)
        if rates is None:
            return
        try:
            plan.estimate = estimate_funding_cost(
                plan.direction,
                plan.notional_eth,
                plan.notional_btc,
                rates[0],
                rates[1],
                self.config.risk.max_hold_hours,
            )
            plan.decision = apply_funding_controls(
                self.config.funding, self.config.strategy.entry_z, capital, plan.estimate
            )
        except FundingError as e:
            raise StrategyError(f"funding controls failed at {bar.timestamp.isoformat()}: {e}") from e

    def _funding_rates(self, bar: StrategyBar) -> Optional[Tuple[FundingRate, FundingRate]]:
        return funding_rates_for_bar(
            bar.funding_eth,
            bar.funding_btc,
            bar.timestamp,
            bar.funding_interval_hours or self.config.funding.default_interval_hours,
        )

    def _handle_entry(
        self,
        signal: EntrySignal,
        plan: _EntryPlan,
        bar: StrategyBar,
        events: List[LogEvent],
    ) -> List[TradeLog]:
        now = bar.timestamp
        if plan.funding_error is not None:
            events.append(LogEvent.FUNDING_SKIP)
            self._alert(
                AlertLevel.WARNING,
                f"Entry {signal.direction.value} skipped, funding inputs unusable: {plan.funding_error}",
                now,
            )
            return []

        self._size_entry(plan, bar)
        if plan.decision is not None and plan.decision.should_skip:
            events.append(LogEvent.FUNDING_SKIP)
            logger.info(f"Entry {signal.direction.value} skipped by funding filter")
            return []

        capital = plan.decision.capital if plan.decision else plan.capital
        max_notional = self.config.position.max_notional
        if max_notional is not None and capital > max_notional:
            raise PositionError(f"capital {capital:.2f} exceeds max_notional {max_notional:.2f}")

        try:
            eth_size = self._eth_converter.convert_notional(capital * plan.weights.w_eth, bar.eth_price)
            btc_size = self._btc_converter.convert_notional(capital * plan.weights.w_btc, bar.btc_price)
        except BelowMinimumError as e:
            events.append(LogEvent.BELOW_MINIMUM)
            logger.info(f"Entry {signal.direction.value} skipped: {e}")
            return []

        eth_side = OrderSide.BUY if signal.direction.is_eth_long else OrderSide.SELL
        btc_side = eth_side.opposite()
        eth_order = self._order(Symbol.ETH_PERP, eth_side, eth_size.qty, bar.eth_price)
        btc_order = self._order(Symbol.BTC_PERP, btc_side, btc_size.qty, bar.btc_price)

        try:
            fill = self.coordinator.open_pair(eth_order, btc_order)
        except RollbackFailedError as e:
            events.append(LogEvent.ENTRY_FAILED)
            self._alert(AlertLevel.CRITICAL, f"Entry rollback failed, residual {self._fmt_residual(e)}", now)
            previous = self.machine.state
            self.machine.record_residual(
                self._residual_snapshot(e, signal.direction, now, self._bar_prices(bar))
            )
            self._commit(previous)
            return []
        except PartialFillError as e:
            events.append(LogEvent.ENTRY_FAILED)
            self._alert(AlertLevel.WARNING, f"Entry partial fill rolled back: {e}", now)
            return []
        except ExecutionError as e:
            events.append(LogEvent.ENTRY_FAILED)
            logger.warning(f"Entry {signal.direction.value} failed, staying FLAT: {e}")
            return []

        eth_qty = fill.eth_qty * eth_side.sign
        btc_qty = fill.btc_qty * btc_side.sign
        position = PositionSnapshot(
            direction=signal.direction,
            entry_time=now,
            eth=PositionLeg(qty=eth_qty, avg_price=bar.eth_price, notional=fill.eth_qty * bar.eth_price),
            btc=PositionLeg(qty=btc_qty, avg_price=bar.btc_price, notional=fill.btc_qty * bar.btc_price),
        )

        previous = self.machine.state
        self.machine.enter(position, now)
        self._commit(previous)
        events.append(LogEvent.ENTRY)

        return [
            TradeLog(
                timestamp=now,
                event=TradeEvent.ENTRY,
                direction=signal.direction,
                eth_qty=eth_qty,
                btc_qty=btc_qty,
                eth_price=bar.eth_price,
                btc_price=bar.btc_price,
                entry_time=now,
                entry_eth_price=bar.eth_price,
                entry_btc_price=bar.btc_price,
                cumulative_realized_pnl=self.cumulative_realized_pnl,
            )
        ]

    # =========================================================================
    # EXIT
    # =========================================================================

    def _handle_exit(
        self,
        signal: ExitSignal,
        bar: StrategyBar,
        events: List[LogEvent],
    ) -> List[TradeLog]:
        now = bar.timestamp
        position = self.machine.position
        if position is None:
            return []

        eth_side = OrderSide.close_for_qty(position.eth.qty)
        btc_side = OrderSide.close_for_qty(position.btc.qty)
        eth_order = self._order(Symbol.ETH_PERP, eth_side, abs(position.eth.qty), bar.eth_price, reduce_only=True)
        btc_order = self._order(Symbol.BTC_PERP, btc_side, abs(position.btc.qty), bar.btc_price, reduce_only=True)

        residual_error: Optional[ResidualExposureError] = None
        try:
            self.coordinator.close_pair(eth_order, btc_order)
        except ResidualExposureError as e:
            residual_error = e
        except ExecutionError as e:
            events.append(LogEvent.EXIT_FAILED)
            self._alert(AlertLevel.WARNING, f"Exit {signal.reason.value} failed, still in position: {e}", now)
            return []

        prices = self._bar_prices(bar)
        realized = pair_pnl(position, bar.eth_price, bar.btc_price)
        previous = self.machine.state
        status = self.machine.exit(signal.reason, now)
        remaining: Optional[PositionSnapshot] = None
        if residual_error is not None:
            self._alert(
                AlertLevel.CRITICAL,
                f"Exit left residual {self._fmt_residual(residual_error)}; repairing",
                now,
            )
            remaining = self._residual_snapshot(
                residual_error, position.direction, position.entry_time, prices, position
            )
            # A remainder on both legs is repaired below before it is recorded
            if remaining.has_residual:
                self.machine.record_residual(remaining)
        self._commit(previous)

        self.cumulative_realized_pnl += realized
        events.append(LogEvent.EXIT)
        if status == StrategyStatus.COOLDOWN:
            events.append(LogEvent.COOLDOWN_START)
        logger.info(
            f"Exit {signal.reason.value}: realized {realized:.2f} "
            f"(cumulative {self.cumulative_realized_pnl:.2f})"
        )

        trade_log = TradeLog(
            timestamp=now,
            event=TradeEvent.EXIT,
            exit_reason=signal.reason,
            direction=position.direction,
            eth_qty=position.eth.qty,
            btc_qty=position.btc.qty,
            eth_price=bar.eth_price,
            btc_price=bar.btc_price,
            entry_time=position.entry_time,
            entry_eth_price=position.eth.avg_price,
            entry_btc_price=position.btc.avg_price,
            realized_pnl=realized,
            cumulative_realized_pnl=self.cumulative_realized_pnl,
        )

        if remaining is not None:
            previous = self.machine.state
            try:
                self._repair(remaining, now, prices)
            except ResidualExposureError:
                self._write_logs(None, [trade_log])
                raise
            self._commit(previous)
            events.append(LogEvent.RESIDUAL_REPAIR)

        return [trade_log]

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _order(
        self,
        symbol: Symbol,
        side: OrderSide,
        qty: float,
        price: float,
        reduce_only: bool = False,
    ) -> OrderRequest:
        precision = self.config.constraints_for(symbol).price_precision
        return OrderRequest(
            symbol=symbol,
            side=side,
            qty=qty,
            order_type=self.config.execution.order_type,
            limit_price=limit_price(side, price, self.config.execution.slippage_bps, precision),
            reduce_only=reduce_only,
        )

    def _repair(
        self,
        position: PositionSnapshot,
        now: datetime,
        prices: Optional[Dict[Symbol, float]],
    ) -> None:
        """
        Flatten residual legs and clear them from state.

        On failure the legs still open are recorded, persisted and alerted,
        then the error propagates.
        """
        limit_prices = None
        if prices:
            limit_prices = {
                symbol: limit_price(
                    OrderSide.close_for_qty(qty),
                    prices[symbol],
                    self.config.execution.slippage_bps,
                    self.config.constraints_for(symbol).price_precision,
                )
                for symbol, qty in ((Symbol.ETH_PERP, position.eth.qty), (Symbol.BTC_PERP, position.btc.qty))
                if qty != 0 and symbol in prices
            }
        try:
            self.coordinator.repair_residual(position, limit_prices)
        except ResidualExposureError as e:
            self._alert(AlertLevel.CRITICAL, f"Residual repair failed, open {self._fmt_residual(e)}", now)
            previous = self.machine.state
            remaining = self._residual_snapshot(
                e, position.direction, position.entry_time, prices or {}, position
            )
            if remaining.has_residual:
                self.machine.record_residual(remaining)
                self._commit(previous)
            elif remaining.is_hedged:
                # Both legs still partly open: track them as the position again
                self.machine.hydrate(
                    StrategyState(status=StrategyStatus.IN_POSITION, position=remaining)
                )
                self._commit(previous)
            raise

        self.machine.record_residual(None)
        logger.info("Residual legs repaired")

    @staticmethod
    def _bar_prices(bar: StrategyBar) -> Dict[Symbol, float]:
        return {Symbol.ETH_PERP: bar.eth_price, Symbol.BTC_PERP: bar.btc_price}

    @staticmethod
    def _residual_snapshot(
        error: ResidualExposureError,
        direction: TradeDirection,
        entry_time: datetime,
        prices: Dict[Symbol, float],
        position: Optional[PositionSnapshot] = None,
    ) -> PositionSnapshot:
        """Snapshot of only the signed quantities the error reports as still open."""
        def leg(symbol: Symbol, existing: Optional[PositionLeg]) -> PositionLeg:
            qty = error.residual.get(symbol, 0.0)
            if qty == 0:
                return PositionLeg()
            avg = existing.avg_price if existing is not None and existing.is_open else prices.get(symbol, 0.0)
            return PositionLeg(qty=qty, avg_price=avg, notional=abs(qty) * avg)

        return PositionSnapshot(
            direction=direction,
            entry_time=entry_time,
            eth=leg(Symbol.ETH_PERP, position.eth if position else None),
            btc=leg(Symbol.BTC_PERP, position.btc if position else None),
        )

    @staticmethod
    def _fmt_residual(error: ResidualExposureError) -> str:
        return ", ".join(f"{s.value}={q}" for s, q in error.residual.items())

    def _commit(self, previous: StrategyState) -> None:
        """Persist the current state; roll back the in-memory transition if that fails."""
        if self.state_store is None:
            return
        try:
            self.state_store.save(self.machine.state)
        except PersistenceError as e:
            logger.critical(f"State persistence failed, rolling back transition: {e}")
            self.machine.hydrate(previous)
            self._alert(AlertLevel.CRITICAL, f"State persistence failed: {e}")
            raise

    def _alert(self, level: AlertLevel, message: str, now: Optional[datetime] = None) -> None:
        self.alerter.send(Alert(level, message, now) if now is not None else Alert(level, message))

    def _build_bar_log(
        self,
        bar: StrategyBar,
        indicators: IndicatorOutput,
        plan: Optional[_EntryPlan],
        events: List[LogEvent],
    ) -> BarLog:
        z = indicators.z
        position = self.machine.position
        weights = plan.weights if plan else None
        if weights is None and indicators.vol.is_ready:
            weights = risk_parity_weights(indicators.vol.vol_eth, indicators.vol.vol_btc)

        unrealized = 0.0
        if position is not None and self.machine.status == StrategyStatus.IN_POSITION:
            unrealized = position.unrealized_pnl(bar.eth_price, bar.btc_price)

        return BarLog(
            timestamp=bar.timestamp,
            state=self.machine.status,
            eth_price=bar.eth_price,
            btc_price=bar.btc_price,
            r=z.r,
            mu=z.mean,
            sigma=z.sigma,
            sigma_eff=z.sigma_eff,
            zscore=z.zscore,
            vol_eth=indicators.vol.vol_eth,
            vol_btc=indicators.vol.vol_btc,
            w_eth=weights.w_eth if weights else None,
            w_btc=weights.w_btc if weights else None,
            notional_eth=plan.notional_eth if plan else None,
            notional_btc=plan.notional_btc if plan else None,
            funding_eth=bar.funding_eth,
            funding_btc=bar.funding_btc,
            funding_cost_est=plan.estimate.cost_est if plan and plan.estimate else None,
            funding_skip=plan.decision.should_skip if plan and plan.decision else None,
            unrealized_pnl=unrealized,
            position=position,
            events=list(events),
        )

    def _write_logs(self, bar_log: Optional[BarLog], trade_logs: List[TradeLog]) -> None:
        try:
            if self.bar_log_writer is not None and bar_log is not None:
                self.bar_log_writer.write(bar_log)
            if self.trade_log_writer is not None:
                for trade_log in trade_logs:
                    self.trade_log_writer.write(trade_log)
        except OSError as e:
            logger.error(f"Failed to write bar/trade log: {e}")

