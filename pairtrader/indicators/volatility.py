"""Per-instrument realized volatility from 15-minute log returns."""

from dataclasses import dataclass
from typing import Optional

from pairtrader.indicators.rolling import (
    InvalidIndicatorConfigError,
    RollingWindow,
    log_return,
)


@dataclass
class VolatilitySnapshot:
    vol_eth: Optional[float] = None
    vol_btc: Optional[float] = None

    @property
    def is_ready(self) -> bool:
        return self.vol_eth is not None and self.vol_btc is not None


class VolatilityCalculator:
    """Tracks ETH and BTC log returns over independent n_vol windows."""

    def __init__(self, n_vol: int) -> None:
        if n_vol <= 0:
            raise InvalidIndicatorConfigError("n_vol must be > 0")
        self.n_vol = n_vol
        self._eth_returns = RollingWindow(n_vol)
        self._btc_returns = RollingWindow(n_vol)
        self._last_eth: Optional[float] = None
        self._last_btc: Optional[float] = None

    def update(self, eth_price: float, btc_price: float) -> VolatilitySnapshot:
        # Validate both before mutating either window
        eth_ret = log_return(eth_price, self._last_eth) if self._last_eth is not None else None
        btc_ret = log_return(btc_price, self._last_btc) if self._last_btc is not None else None

        if eth_ret is not None:
            self._eth_returns.push(eth_ret)
        if btc_ret is not None:
            self._btc_returns.push(btc_ret)
        self._last_eth = eth_price
        self._last_btc = btc_price

        return VolatilitySnapshot(
            vol_eth=self._eth_returns.std() if self._eth_returns.is_full() else None,
            vol_btc=self._btc_returns.std() if self._btc_returns.is_full() else None,
        )
