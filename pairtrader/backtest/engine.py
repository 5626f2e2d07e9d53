"""
Backtest: replay historical bars through the live StrategyEngine.

Only the order transport differs from live trading: BacktestFillExecutor
fills every order in full, immediately, and never rejects. Costs (fees,
slippage, realized funding) are applied per closed trade.

Usage:
    from pairtrader.backtest import BacktestEngine, load_backtest_bars

    bars = load_backtest_bars("data/eth_btc_15m.csv")
    result = BacktestEngine(config).run(bars)
    print(result.summary())
"""

import copy
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional, Union

import pandas as pd

from pairtrader.backtest.metrics import EquityPoint, Metrics, Trade, compute_metrics
from pairtrader.config import (
    DEFAULT_BACKTEST_EQUITY,
    FUNDING_INTERVAL_HOURS,
    CapitalMode,
    Config,
)
from pairtrader.execution.coordinator import ExecutionCoordinator
from pairtrader.execution.executors import ExecutorCall
from pairtrader.execution.orders import OrderRequest, RetryPolicy
from pairtrader.state.store import InMemoryStateStore
from pairtrader.strategy.engine import StrategyBar, StrategyEngine
from pairtrader.strategy.logs import BarLog, TradeEvent, TradeLog
from pairtrader.trading.funding import estimate_funding_cost, funding_rates_for_bar

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("timestamp", "eth_price", "btc_price")


class BacktestError(Exception):
    """Invalid backtest input or a non-reproducible run."""


@dataclass
class BacktestBar:
    timestamp: datetime
    eth_price: float
    btc_price: float
    funding_eth: Optional[float] = None
    funding_btc: Optional[float] = None


@dataclass
class BacktestResult:
    trades: List[Trade] = field(default_factory=list)
    equity_curve: List[EquityPoint] = field(default_factory=list)
    bar_logs: List[BarLog] = field(default_factory=list)
    metrics: Metrics = field(default_factory=Metrics)

    def summary(self) -> str:
        m = self.metrics
        lines = [
            "=" * 60,
            "ETH/BTC PAIR BACKTEST",
            "=" * 60,
            f"Bars: {len(self.equity_curve)}",
            f"Final Equity: ${self.equity_curve[-1].equity:,.2f}" if self.equity_curve else "Final Equity: N/A",
            "",
            "PERFORMANCE:",
            f"  Annualized Return: {m.annualized_return * 100:.2f}%",
            f"  Sharpe Ratio: {m.sharpe_ratio:.2f}",
            f"  Max Drawdown: {m.max_drawdown * 100:.2f}%",
            "",
            "TRADES:",
            f"  Total Trades: {m.trade_count}",
            f"  Win Rate: {m.win_rate * 100:.1f}%",
            f"  Profit Factor: {m.profit_factor:.2f}",
            f"  Stop Loss Rate: {m.stop_loss_rate * 100:.1f}%",
            "=" * 60,
        ]
        return "\n".join(lines)


class BacktestFillExecutor:
    """Fills the full requested quantity at once and records every fill."""

    def __init__(self) -> None:
        self.fills: List[ExecutorCall] = []

    def submit(self, order: OrderRequest) -> float:
        self.fills.append(ExecutorCall(action="submit", order=order))
        return order.qty

    def close(self, order: OrderRequest) -> float:
        self.fills.append(ExecutorCall(action="close", order=order))
        return order.qty


# =============================================================================
# BAR LOADING
# =============================================================================


def _optional_float(value: Any) -> Optional[float]:
    if value is None or pd.isna(value):
        return None
    return float(value)


def load_backtest_bars(path: Union[str, Path]) -> List[BacktestBar]:
    """
    Read bars from CSV: timestamp, eth_price, btc_price[, funding_eth, funding_btc].

    Timestamps are parsed as UTC. Rows are returned sorted by timestamp.

    Raises:
        BacktestError: Missing file, missing columns or unparseable values
    """
    path = Path(path)
    if not path.exists():
        raise BacktestError(f"bars file not found: {path}")

    try:
        df = pd.read_csv(path)
    except (OSError, ValueError) as e:
        raise BacktestError(f"failed to read {path}: {e}") from e

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise BacktestError(f"{path} missing columns: {', '.join(missing)}")

    try:
        df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
    except (ValueError, TypeError) as e:
        raise BacktestError(f"unparseable timestamps in {path}: {e}") from e
    df = df.sort_values("timestamp").reset_index(drop=True)

    bars = []
    for row in df.itertuples(index=False):
        bars.append(
            BacktestBar(
                timestamp=row.timestamp.to_pydatetime().astimezone(timezone.utc),
                eth_price=float(row.eth_price),
                btc_price=float(row.btc_price),
                funding_eth=_optional_float(getattr(row, "funding_eth", None)),
                funding_btc=_optional_float(getattr(row, "funding_btc", None)),
            )
        )
    logger.info(f"Loaded {len(bars)} bars from {path}")
    return bars


# =============================================================================
# TRADE COSTS
# =============================================================================


def compute_trade_pnl(trade_log: TradeLog, exit_bar: BacktestBar, config: Config) -> float:
    """
    Net PnL of a closed pair.

    Gross per-leg PnL on entry notional, minus fees and slippage on total
    notional, minus funding over the whole hours actually held (8h
    interval, exit bar rates).
    """
    notional_eth = abs(trade_log.eth_qty) * trade_log.entry_eth_price
    notional_btc = abs(trade_log.btc_qty) * trade_log.entry_btc_price

    pnl_eth = (trade_log.eth_price - trade_log.entry_eth_price) / trade_log.entry_eth_price * notional_eth
    pnl_btc = (trade_log.btc_price - trade_log.entry_btc_price) / trade_log.entry_btc_price * notional_btc
    if trade_log.direction.is_eth_long:
        pnl = pnl_eth - pnl_btc
    else:
        pnl = pnl_btc - pnl_eth

    bt = config.backtest
    total_notional = notional_eth + notional_btc
    if bt.include_fees:
        pnl -= total_notional * bt.fee_bps / 10000.0
    if bt.include_slippage:
        pnl -= total_notional * bt.slippage_bps / 10000.0

    if bt.include_funding:
        rates = funding_rates_for_bar(
            exit_bar.funding_eth, exit_bar.funding_btc, exit_bar.timestamp, FUNDING_INTERVAL_HOURS
        )
        if rates is not None:
            holding_hours = max(
                math.floor((trade_log.timestamp - trade_log.entry_time).total_seconds() / 3600), 0
            )
            estimate = estimate_funding_cost(
                trade_log.direction, notional_eth, notional_btc, rates[0], rates[1], holding_hours
            )
            pnl -= estimate.cost_est
    return pnl


def initial_equity(config: Config) -> float:
    """
    Starting equity: backtest.initial_equity, else c_value (fixed notional)
    or equity_value (equity ratio).

    Raises:
        BacktestError: Equity ratio mode without equity_value
    """
    if config.backtest.initial_equity is not None:
        return float(config.backtest.initial_equity)
    position = config.position
    if position.c_mode == CapitalMode.FIXED_NOTIONAL:
        return float(position.c_value) if position.c_value is not None else DEFAULT_BACKTEST_EQUITY
    if position.equity_value is None:
        raise BacktestError("equity_value required for equity ratio mode")
    return float(position.equity_value)


# =============================================================================
# ENGINE
# =============================================================================


class BacktestEngine:
    """Runs a fresh StrategyEngine over a bar sequence."""

    def __init__(self, config: Config) -> None:
        config.validate()
        self.config = config

    def run(self, bars: List[BacktestBar]) -> BacktestResult:
        config = copy.deepcopy(self.config)
        executor = BacktestFillExecutor()
        coordinator = ExecutionCoordinator(
            executor,
            RetryPolicy(max_attempts=max(config.execution.max_attempts, 1), base_delay_ms=0),
            sleep=lambda _: None,
        )
        engine = StrategyEngine(config, coordinator, state_store=InMemoryStateStore())

        equity = initial_equity(config)
        result = BacktestResult()

        for bar in sorted(bars, key=lambda b: b.timestamp):
            outcome = engine.process_bar(
                StrategyBar(
                    timestamp=bar.timestamp,
                    eth_price=bar.eth_price,
                    btc_price=bar.btc_price,
                    equity=equity,
                    funding_eth=bar.funding_eth,
                    funding_btc=bar.funding_btc,
                    funding_interval_hours=FUNDING_INTERVAL_HOURS,
                )
            )

            for trade_log in outcome.trade_logs:
                if trade_log.event != TradeEvent.EXIT:
                    continue
                pnl = compute_trade_pnl(trade_log, bar, config)
                equity += pnl
                result.trades.append(
                    Trade(
                        entry_time=trade_log.entry_time,
                        exit_time=trade_log.timestamp,
                        pnl=pnl,
                        exit_reason=trade_log.exit_reason,
                    )
                )

            result.equity_curve.append(EquityPoint(timestamp=bar.timestamp, equity=equity))
            result.bar_logs.append(outcome.bar_log)

        result.metrics = compute_metrics(result.trades, result.equity_curve)
        logger.info(
            f"Backtest complete: {len(result.trades)} trades over {len(result.equity_curve)} bars, "
            f"final equity {equity:,.2f}"
        )
        return result


def run_sensitivity(configs: List[Config], bars: List[BacktestBar]) -> List[Metrics]:
    """Metrics for each configuration over the same bars."""
    return [BacktestEngine(config).run(bars).metrics for config in configs]


def verify_reproducibility(config: Config, bars: List[BacktestBar]) -> None:
    """
    Run twice and compare.

    Raises:
        BacktestError: Trades or equity curves differ between runs
    """
    first = BacktestEngine(config).run(bars)
    second = BacktestEngine(config).run(bars)
    if first.trades != second.trades:
        raise BacktestError("trade sequences differ between identical runs")
    if first.equity_curve != second.equity_curve:
        raise BacktestError("equity curves differ between identical runs")

