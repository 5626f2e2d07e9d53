"""
Backtest performance metrics.

All metrics are zero when there are no trades or fewer than two equity
points. Sharpe is annualized from per-point equity returns using the
average spacing of the curve, with a zero risk-free rate.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import numpy as np

from pairtrader.models import ExitReason

logger = logging.getLogger(__name__)

SECONDS_PER_YEAR = 365 * 24 * 3600


@dataclass
class Trade:
    entry_time: datetime
    exit_time: datetime
    pnl: float
    exit_reason: Optional[ExitReason]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entry_time": self.entry_time.isoformat(),
            "exit_time": self.exit_time.isoformat(),
            "pnl": self.pnl,
            "exit_reason": self.exit_reason.value if self.exit_reason else None,
        }


@dataclass
class EquityPoint:
    timestamp: datetime
    equity: float


@dataclass
class Metrics:
    annualized_return: float = 0.0
    sharpe_ratio: float = 0.0
    max_drawdown: float = 0.0
    win_rate: float = 0.0
    profit_factor: float = 0.0
    stop_loss_rate: float = 0.0
    trade_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _max_drawdown(equity: np.ndarray) -> float:
    peaks = np.maximum.accumulate(equity)
    with np.errstate(divide="ignore", invalid="ignore"):
        drawdowns = np.where(peaks > 0, (peaks - equity) / peaks, 0.0)
    return float(drawdowns.max()) if len(drawdowns) else 0.0


def _sharpe(equity: np.ndarray, timestamps: List[datetime]) -> float:
    prev = equity[:-1]
    if np.any(prev <= 0):
        return 0.0
    returns = np.diff(equity) / prev
    if len(returns) < 2:
        return 0.0
    std = float(np.std(returns, ddof=1))
    if std == 0:
        return 0.0
    span = (timestamps[-1] - timestamps[0]).total_seconds()
    avg_delta = span / (len(timestamps) - 1)
    if avg_delta <= 0:
        return 0.0
    periods_per_year = SECONDS_PER_YEAR / avg_delta
    return float(np.mean(returns) / std * np.sqrt(periods_per_year))


def _annualized_return(start: float, end: float, seconds: float) -> float:
    if start <= 0 or end <= 0 or seconds <= 0:
        return 0.0
    years = seconds / SECONDS_PER_YEAR
    return float((end / start) ** (1.0 / years) - 1.0)


def compute_metrics(trades: List[Trade], equity_curve: List[EquityPoint]) -> Metrics:
    """
    Summarize a backtest.

    Args:
        trades: Closed trades in order
        equity_curve: One point per bar

    Returns:
        Metrics (all zero without trades or with fewer than 2 equity points)
    """
    if not trades or len(equity_curve) < 2:
        return Metrics()

    pnls = np.array([t.pnl for t in trades], dtype=float)
    wins = pnls[pnls > 0]
    losses = pnls[pnls < 0]
    gross_profit = float(wins.sum())
    gross_loss = float(-losses.sum())

    stop_losses = sum(1 for t in trades if t.exit_reason == ExitReason.STOP_LOSS)

    equity = np.array([p.equity for p in equity_curve], dtype=float)
    timestamps = [p.timestamp for p in equity_curve]
    span = (timestamps[-1] - timestamps[0]).total_seconds()

    metrics = Metrics(
        annualized_return=_annualized_return(equity[0], equity[-1], span),
        sharpe_ratio=_sharpe(equity, timestamps),
        max_drawdown=_max_drawdown(equity),
        win_rate=len(wins) / len(trades),
        profit_factor=gross_profit / gross_loss if gross_loss > 0 else 0.0,
        stop_loss_rate=stop_losses / len(trades),
        trade_count=len(trades),
    )
    logger.debug(f"Metrics: {metrics}")
    return metrics
