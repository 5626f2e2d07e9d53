"""
Strategy orchestration and per-bar/per-trade records.
"""

from pairtrader.strategy.engine import (
    StrategyBar,
    StrategyEngine,
    StrategyError,
    StrategyOutcome,
    leg_pnl,
    pair_pnl,
)
from pairtrader.strategy.logs import (
    BarLog,
    BarLogWriter,
    LogEvent,
    TradeEvent,
    TradeLog,
    TradeLogWriter,
)

__all__ = [
    "StrategyBar",
    "StrategyEngine",
    "StrategyError",
    "StrategyOutcome",
    "leg_pnl",
    "pair_pnl",
    "BarLog",
    "BarLogWriter",
    "LogEvent",
    "TradeEvent",
    "TradeLog",
    "TradeLogWriter",
]
