"""
ETH/BTC Pair Trader

Mean-reversion statistical arbitrage on the ETH/BTC relative price using
Hyperliquid perpetuals. 15-minute bars, rolling z-score entries, risk
parity sizing, funding-aware entry controls and a persisted state machine.

Modules:
- config: Thresholds, sizing, funding, risk and runtime settings
- indicators: Relative price, rolling z-score, sigma floor, realized volatility
- signals: Entry/exit detection
- trading: Risk parity sizing and funding cost controls
- execution: Order transport, retries and paired open/close with rollback
- state: FLAT / IN_POSITION / COOLDOWN machine, persistence, recovery
- strategy: Per-bar orchestration and bar/trade logs
- data: Hyperliquid prices, funding and account equity
- backtest: Replay with simulated fills and performance metrics
- runtime: Live loop and daemon
"""

from pairtrader.config import Config, ConfigError, load_config
from pairtrader.models import ExitReason, Symbol, TradeDirection
from pairtrader.strategy import StrategyBar, StrategyEngine, StrategyOutcome

__version__ = "0.1.0"

__all__ = [
    "Config",
    "ConfigError",
    "load_config",
    "ExitReason",
    "Symbol",
    "TradeDirection",
    "StrategyBar",
    "StrategyEngine",
    "StrategyOutcome",
]
