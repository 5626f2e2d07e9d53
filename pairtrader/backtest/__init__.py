"""
Backtesting: replay bars through the strategy engine with simulated fills.
"""

from pairtrader.backtest.engine import (
    BacktestBar,
    BacktestEngine,
    BacktestError,
    BacktestFillExecutor,
    BacktestResult,
    compute_trade_pnl,
    initial_equity,
    load_backtest_bars,
    run_sensitivity,
    verify_reproducibility,
)
from pairtrader.backtest.download import CoverageError, download_backtest_bars, write_backtest_bars
from pairtrader.backtest.export import (
    BreakdownRow,
    breakdown_monthly,
    export_equity_csv,
    export_metrics_json,
    export_trades_csv,
)
from pairtrader.backtest.metrics import EquityPoint, Metrics, Trade, compute_metrics

__all__ = [
    "BacktestBar",
    "BacktestEngine",
    "BacktestError",
    "BacktestFillExecutor",
    "BacktestResult",
    "compute_trade_pnl",
    "initial_equity",
    "load_backtest_bars",
    "run_sensitivity",
    "verify_reproducibility",
    "CoverageError",
    "download_backtest_bars",
    "write_backtest_bars",
    "BreakdownRow",
    "breakdown_monthly",
    "export_equity_csv",
    "export_metrics_json",
    "export_trades_csv",
    "EquityPoint",
    "Metrics",
    "Trade",
    "compute_metrics",
]
