"""CSV/JSON exports and monthly breakdown of backtest results."""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Union

import pandas as pd

from pairtrader.backtest.metrics import EquityPoint, Metrics, Trade

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass
class BreakdownRow:
    year: int
    month: int
    pnl: float


def export_trades_csv(path: PathLike, trades: List[Trade]) -> None:
    df = pd.DataFrame(
        [t.to_dict() for t in trades],
        columns=["entry_time", "exit_time", "pnl", "exit_reason"],
    )
    df.to_csv(path, index=False)
    logger.info(f"Exported {len(trades)} trades to {path}")


def export_equity_csv(path: PathLike, equity_curve: List[EquityPoint]) -> None:
    df = pd.DataFrame(
        [{"timestamp": p.timestamp.isoformat(), "equity": p.equity} for p in equity_curve],
        columns=["timestamp", "equity"],
    )
    df.to_csv(path, index=False)
    logger.info(f"Exported {len(equity_curve)} equity points to {path}")


def export_metrics_json(path: PathLike, metrics: Metrics) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(metrics.to_dict(), f, indent=2)
    logger.info(f"Exported metrics to {path}")


def breakdown_monthly(trades: List[Trade]) -> List[BreakdownRow]:
    """PnL summed by (year, month) of exit time, in calendar order."""
    if not trades:
        return []
    df = pd.DataFrame(
        {
            "year": [t.exit_time.year for t in trades],
            "month": [t.exit_time.month for t in trades],
            "pnl": [t.pnl for t in trades],
        }
    )
    grouped = df.groupby(["year", "month"], sort=True)["pnl"].sum()
    return [
        BreakdownRow(year=int(year), month=int(month), pnl=float(pnl))
        for (year, month), pnl in grouped.items()
    ]
