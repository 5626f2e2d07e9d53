"""
Market data: price bars, funding rates and the Hyperliquid info client.
"""

from pairtrader.data.errors import (
    DataError,
    DataTimeoutError,
    HttpError,
    InconsistentDataError,
    InvalidBarError,
    MissingDataError,
    RateLimitedError,
)
from pairtrader.data.funding import (
    FundingFetcher,
    FundingHistory,
    FundingSnapshot,
    FundingSource,
    HyperliquidFundingSource,
    ZeroFundingSource,
)
from pairtrader.data.hyperliquid import (
    EquitySource,
    HyperliquidAccountSource,
    HyperliquidInfoClient,
)
from pairtrader.data.prices import (
    HyperliquidPriceSource,
    MockPriceSource,
    PriceBar,
    PriceFetcher,
    PriceSnapshot,
    PriceSource,
    align_to_bar_close,
    pair_snapshot,
)

__all__ = [
    "DataError",
    "DataTimeoutError",
    "HttpError",
    "InconsistentDataError",
    "InvalidBarError",
    "MissingDataError",
    "RateLimitedError",
    "FundingFetcher",
    "FundingHistory",
    "FundingSnapshot",
    "FundingSource",
    "HyperliquidFundingSource",
    "ZeroFundingSource",
    "EquitySource",
    "HyperliquidAccountSource",
    "HyperliquidInfoClient",
    "HyperliquidPriceSource",
    "MockPriceSource",
    "PriceBar",
    "PriceFetcher",
    "PriceSnapshot",
    "PriceSource",
    "align_to_bar_close",
    "pair_snapshot",
]
