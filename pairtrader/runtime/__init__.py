"""
Live runtime: bar loop, daemon wiring and logging setup.
"""

from pairtrader.runtime.runner import (
    LiveRunner,
    PairTradingDaemon,
    setup_logging,
)

__all__ = [
    "LiveRunner",
    "PairTradingDaemon",
    "setup_logging",
]
