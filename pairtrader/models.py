"""
Shared domain enums for the ETH/BTC pair strategy.

ETH is the numerator instrument and BTC the denominator of the
relative price r = ln(ETH) - ln(BTC).
"""

from enum import Enum


class Symbol(Enum):
    """Perpetual instruments traded by the strategy."""

    ETH_PERP = "ETH"
    BTC_PERP = "BTC"


class TradeDirection(Enum):
    """Direction of the paired position."""

    LONG_ETH_SHORT_BTC = "long_eth_short_btc"   # r too low, expect it to rise
    SHORT_ETH_LONG_BTC = "short_eth_long_btc"   # r too high, expect it to fall

    @property
    def is_eth_long(self) -> bool:
        return self is TradeDirection.LONG_ETH_SHORT_BTC

    @property
    def is_btc_long(self) -> bool:
        return self is TradeDirection.SHORT_ETH_LONG_BTC


class ExitReason(Enum):
    """Reason a position was closed."""

    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    TIME_STOP = "time_stop"
