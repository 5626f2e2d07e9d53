"""
Funding rate sources.

- ZeroFundingSource: constant zero rate on the default 8h interval
- HyperliquidFundingSource: current rate from metaAndAssetCtxs and history
  from fundingHistory (Hyperliquid settles hourly)
- FundingFetcher: pairs ETH/BTC observations and keeps a bounded history
"""

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Deque, Dict, List, Optional, Protocol

from pairtrader.config import FUNDING_INTERVAL_HOURS
from pairtrader.data.errors import MissingDataError
from pairtrader.data.hyperliquid import HyperliquidInfoClient
from pairtrader.models import Symbol
from pairtrader.trading.funding import FundingIntervalMismatchError, FundingRate

logger = logging.getLogger(__name__)

HYPERLIQUID_FUNDING_INTERVAL_HOURS: int = 1
DEFAULT_HISTORY_CAPACITY: int = 1000


class FundingSource(Protocol):
    """Protocol for funding rate retrieval."""
    def fetch_rate(self, symbol: Symbol, timestamp: datetime) -> FundingRate: ...
    def fetch_history(
        self, symbol: Symbol, start: datetime, end: datetime
    ) -> List[FundingRate]: ...


class ZeroFundingSource:
    """Reports zero funding. Useful for paper runs and funding-agnostic backtests."""

    def __init__(self, interval_hours: int = FUNDING_INTERVAL_HOURS) -> None:
        self.interval_hours = interval_hours

    def fetch_rate(self, symbol: Symbol, timestamp: datetime) -> FundingRate:
        return FundingRate(symbol, 0.0, timestamp, self.interval_hours)

    def fetch_history(self, symbol: Symbol, start: datetime, end: datetime) -> List[FundingRate]:
        return []


class HyperliquidFundingSource:
    """Funding rates from the Hyperliquid info endpoint."""

    def __init__(self, info: HyperliquidInfoClient) -> None:
        self.info = info

    def fetch_rate(self, symbol: Symbol, timestamp: datetime) -> FundingRate:
        meta, contexts = self.info.post({"type": "metaAndAssetCtxs"})
        for asset, ctx in zip(meta.get("universe", []), contexts):
            if asset.get("name") != symbol.value:
                continue
            try:
                rate = float(ctx["funding"])
            except (KeyError, TypeError, ValueError) as e:
                raise MissingDataError(f"{symbol.value} funding missing from asset context") from e
            return FundingRate(symbol, rate, timestamp, HYPERLIQUID_FUNDING_INTERVAL_HOURS)
        raise MissingDataError(f"{symbol.value} not listed in metaAndAssetCtxs")

    def fetch_history(self, symbol: Symbol, start: datetime, end: datetime) -> List[FundingRate]:
        payload = self.info.post({
            "type": "fundingHistory",
            "coin": symbol.value,
            "startTime": int(start.timestamp() * 1000),
            "endTime": int(end.timestamp() * 1000),
        })
        rates = []
        for item in payload or []:
            try:
                ts = datetime.fromtimestamp(int(item["time"]) / 1000, tz=timezone.utc)
                rate = float(item["fundingRate"])
            except (KeyError, TypeError, ValueError) as e:
                raise MissingDataError(f"malformed {symbol.value} funding history item") from e
            rates.append(FundingRate(symbol, rate, ts, HYPERLIQUID_FUNDING_INTERVAL_HOURS))
        return sorted(rates, key=lambda r: r.timestamp)


@dataclass
class FundingSnapshot:
    timestamp: datetime
    eth: FundingRate
    btc: FundingRate

    @property
    def interval_hours(self) -> int:
        return self.eth.interval_hours


class FundingHistory:
    """Bounded per-symbol record of observed funding rates."""

    def __init__(self, capacity: int = DEFAULT_HISTORY_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self.capacity = capacity
        self._rates: Dict[Symbol, Deque[FundingRate]] = {}

    def add(self, rate: FundingRate) -> None:
        self._rates.setdefault(rate.symbol, deque(maxlen=self.capacity)).append(rate)

    def latest(self, symbol: Symbol) -> Optional[FundingRate]:
        rates = self._rates.get(symbol)
        return rates[-1] if rates else None

    def rates(self, symbol: Symbol) -> List[FundingRate]:
        return list(self._rates.get(symbol, ()))


class FundingFetcher:
    """
    Fetches paired funding rates and records them.

    Raises FundingIntervalMismatchError when ETH and BTC disagree on the
    settlement interval, since the pair cost cannot be netted.
    """

    def __init__(self, source: FundingSource, history: Optional[FundingHistory] = None) -> None:
        self.source = source
        self.history = history or FundingHistory()

    def fetch_pair_rates(self, timestamp: datetime) -> FundingSnapshot:
        eth = self.source.fetch_rate(Symbol.ETH_PERP, timestamp)
        btc = self.source.fetch_rate(Symbol.BTC_PERP, timestamp)
        eth.validate()
        btc.validate()
        if eth.interval_hours != btc.interval_hours:
            raise FundingIntervalMismatchError(
                f"eth interval {eth.interval_hours}h != btc interval {btc.interval_hours}h"
            )
        self.history.add(eth)
        self.history.add(btc)
        return FundingSnapshot(timestamp=timestamp, eth=eth, btc=btc)
