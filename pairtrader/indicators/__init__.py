"""
Indicator engine: rolling statistics, relative price, z-score and volatility.
"""

from pairtrader.indicators.rolling import (
    IndicatorError,
    InvalidIndicatorConfigError,
    InvalidPriceError,
    RollingWindow,
    ewma_std,
    log_return,
    relative_price,
)
from pairtrader.indicators.volatility import VolatilityCalculator, VolatilitySnapshot
from pairtrader.indicators.zscore import (
    SIGMA_EPSILON,
    SigmaFloorCalculator,
    ZScoreCalculator,
    ZScoreSnapshot,
)

__all__ = [
    "IndicatorError",
    "InvalidIndicatorConfigError",
    "InvalidPriceError",
    "RollingWindow",
    "ewma_std",
    "log_return",
    "relative_price",
    "VolatilityCalculator",
    "VolatilitySnapshot",
    "SIGMA_EPSILON",
    "SigmaFloorCalculator",
    "ZScoreCalculator",
    "ZScoreSnapshot",
]
