"""
Price bars, paired snapshots and price sources.

Bars are stamped with their 15-minute close time (UTC). A PriceSnapshot
pairs an ETH and a BTC bar with the same timestamp.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Protocol, Tuple, Union

from pairtrader.config import BAR_INTERVAL_SECONDS, PriceField
from pairtrader.data.errors import (
    InconsistentDataError,
    InvalidBarError,
    MissingDataError,
)
from pairtrader.data.hyperliquid import HyperliquidInfoClient
from pairtrader.models import Symbol

logger = logging.getLogger(__name__)

BAR_INTERVAL = timedelta(seconds=BAR_INTERVAL_SECONDS)


def align_to_bar_close(timestamp: datetime) -> datetime:
    """Round a timestamp down to the most recent 15-minute boundary (UTC)."""
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    seconds = int(timestamp.timestamp())
    aligned = seconds - seconds % BAR_INTERVAL_SECONDS
    return datetime.fromtimestamp(aligned, tz=timezone.utc)


@dataclass
class PriceBar:
    """One instrument's observation at a bar close."""

    symbol: Symbol
    timestamp: datetime
    mid: Optional[float] = None
    mark: Optional[float] = None
    close: Optional[float] = None

    def validate(self) -> None:
        for label, value in (("mid", self.mid), ("mark", self.mark), ("close", self.close)):
            if value is not None and not value > 0:
                raise InvalidBarError(
                    f"{self.symbol.value} {label} price must be > 0, got {value}"
                )

    def effective_price(self, preferred: PriceField) -> Optional[float]:
        """Preferred field first, then the fallback order for that preference."""
        if preferred == PriceField.MID:
            order = (self.mid, self.mark, self.close)
        elif preferred == PriceField.MARK:
            order = (self.mark, self.mid, self.close)
        else:
            order = (self.close, self.mid, self.mark)
        for value in order:
            if value is not None:
                return value
        return None


@dataclass
class PriceSnapshot:
    """Paired ETH/BTC bars at one timestamp with their effective prices."""

    timestamp: datetime
    eth: PriceBar
    btc: PriceBar
    eth_price: float
    btc_price: float


class PriceSource(Protocol):
    """Protocol for bar retrieval."""
    def fetch_bar(self, symbol: Symbol, timestamp: datetime) -> PriceBar: ...
    def fetch_history(
        self, symbol: Symbol, start: datetime, end: datetime
    ) -> List[PriceBar]: ...


def pair_snapshot(eth: PriceBar, btc: PriceBar, price_field: PriceField) -> PriceSnapshot:
    """
    Validate and pair two bars.

    Raises:
        InvalidBarError: A present price is not positive
        InconsistentDataError: Timestamps differ
        MissingDataError: No usable price on a bar
    """
    eth.validate()
    btc.validate()
    if eth.timestamp != btc.timestamp:
        raise InconsistentDataError(
            f"bar timestamps differ: eth={eth.timestamp.isoformat()} btc={btc.timestamp.isoformat()}"
        )
    eth_price = eth.effective_price(price_field)
    btc_price = btc.effective_price(price_field)
    if eth_price is None or btc_price is None:
        raise MissingDataError(f"no usable price at {eth.timestamp.isoformat()}")
    return PriceSnapshot(
        timestamp=eth.timestamp,
        eth=eth,
        btc=btc,
        eth_price=eth_price,
        btc_price=btc_price,
    )


class PriceFetcher:
    """Fetches paired snapshots from a PriceSource."""

    def __init__(self, source: PriceSource, price_field: PriceField = PriceField.MID) -> None:
        self.source = source
        self.price_field = price_field

    def fetch_pair_prices(self, timestamp: datetime) -> PriceSnapshot:
        aligned = align_to_bar_close(timestamp)
        eth = self.source.fetch_bar(Symbol.ETH_PERP, aligned)
        btc = self.source.fetch_bar(Symbol.BTC_PERP, aligned)
        return pair_snapshot(eth, btc, self.price_field)

    def fetch_pair_history(self, start: datetime, end: datetime) -> List[PriceSnapshot]:
        """
        Paired history over [start, end], inner-joined on timestamp.

        Timestamps present for only one symbol are skipped with a warning.
        """
        start = align_to_bar_close(start)
        end = align_to_bar_close(end)
        if end < start:
            raise InconsistentDataError("history end must be >= start")

        eth_bars = {b.timestamp: b for b in self.source.fetch_history(Symbol.ETH_PERP, start, end)}
        btc_bars = {b.timestamp: b for b in self.source.fetch_history(Symbol.BTC_PERP, start, end)}
        common = sorted(set(eth_bars) & set(btc_bars))
        dropped = len(set(eth_bars) ^ set(btc_bars))
        if dropped:
            logger.warning(f"History join dropped {dropped} unpaired bars")
        return [pair_snapshot(eth_bars[ts], btc_bars[ts], self.price_field) for ts in common]


# =============================================================================
# SOURCES
# =============================================================================


class MockPriceSource:
    """In-memory source for tests; errors can be scripted per bar."""

    def __init__(self) -> None:
        self._bars: Dict[Tuple[Symbol, datetime], Union[PriceBar, Exception]] = {}
        self._history_errors: Dict[Symbol, Exception] = {}

    def insert_bar(self, bar: PriceBar) -> None:
        self._bars[(bar.symbol, bar.timestamp)] = bar

    def insert_error(self, symbol: Symbol, timestamp: datetime, error: Exception) -> None:
        self._bars[(symbol, timestamp)] = error

    def insert_history_error(self, symbol: Symbol, error: Exception) -> None:
        self._history_errors[symbol] = error

    def fetch_bar(self, symbol: Symbol, timestamp: datetime) -> PriceBar:
        entry = self._bars.get((symbol, timestamp))
        if entry is None:
            raise MissingDataError(f"no {symbol.value} bar at {timestamp.isoformat()}")
        if isinstance(entry, Exception):
            raise entry
        return entry

    def fetch_history(self, symbol: Symbol, start: datetime, end: datetime) -> List[PriceBar]:
        if symbol in self._history_errors:
            raise self._history_errors[symbol]
        bars = [
            b for (s, ts), b in self._bars.items()
            if s == symbol and start <= ts <= end and isinstance(b, PriceBar)
        ]
        return sorted(bars, key=lambda b: b.timestamp)


class HyperliquidPriceSource:
    """
    15-minute candles from the Hyperliquid info endpoint.

    History uses candle closes. The current bar also carries the live mid
    (allMids) and mark (metaAndAssetCtxs) so PriceField MID/MARK resolve.
    """

    INTERVAL = "15m"

    def __init__(self, info: HyperliquidInfoClient) -> None:
        self.info = info

    @staticmethod
    def _ms(ts: datetime) -> int:
        return int(ts.timestamp() * 1000)

    def _candles(self, symbol: Symbol, start: datetime, end: datetime) -> List[PriceBar]:
        payload = self.info.post({
            "type": "candleSnapshot",
            "req": {
                "coin": symbol.value,
                "interval": self.INTERVAL,
                "startTime": self._ms(start - BAR_INTERVAL),
                "endTime": self._ms(end),
            },
        })
        bars = []
        for candle in payload or []:
            try:
                open_time = datetime.fromtimestamp(int(candle["t"]) / 1000, tz=timezone.utc)
                close = float(candle["c"])
            except (KeyError, TypeError, ValueError) as e:
                raise InvalidBarError(f"malformed {symbol.value} candle: {candle}") from e
            close_time = align_to_bar_close(open_time + BAR_INTERVAL)
            if start <= close_time <= end:
                bars.append(PriceBar(symbol=symbol, timestamp=close_time, close=close))
        return bars

    def _live_prices(self, symbol: Symbol) -> Tuple[Optional[float], Optional[float]]:
        mids = self.info.post({"type": "allMids"}) or {}
        mid = float(mids[symbol.value]) if symbol.value in mids else None

        mark = None
        meta, contexts = self.info.post({"type": "metaAndAssetCtxs"})
        for asset, ctx in zip(meta.get("universe", []), contexts):
            if asset.get("name") == symbol.value and ctx.get("markPx") is not None:
                mark = float(ctx["markPx"])
                break
        return mid, mark

    def fetch_history(self, symbol: Symbol, start: datetime, end: datetime) -> List[PriceBar]:
        return self._candles(symbol, align_to_bar_close(start), align_to_bar_close(end))

    def fetch_bar(self, symbol: Symbol, timestamp: datetime) -> PriceBar:
        aligned = align_to_bar_close(timestamp)
        candles = [b for b in self._candles(symbol, aligned, aligned) if b.timestamp == aligned]
        if not candles:
            raise MissingDataError(f"no {symbol.value} candle closing at {aligned.isoformat()}")
        bar = candles[-1]
        bar.mid, bar.mark = self._live_prices(symbol)
        return bar

