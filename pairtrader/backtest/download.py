"""
Historical bar download for backtests.

Fetches ETH and BTC 15-minute candles (plus funding history) from the
Hyperliquid info endpoint, joins them on bar close time and writes the
CSV layout load_backtest_bars() reads.

Usage:
    info = HyperliquidInfoClient("https://api.hyperliquid.xyz", FixedRateLimiter(200))
    bars = download_backtest_bars(info, start, end)
    write_backtest_bars("data/eth_btc_15m.csv", bars)
"""

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional, Union

import pandas as pd

from pairtrader.backtest.engine import BacktestBar, BacktestError
from pairtrader.config import FUNDING_INTERVAL_HOURS, PriceField
from pairtrader.data.funding import HYPERLIQUID_FUNDING_INTERVAL_HOURS, HyperliquidFundingSource
from pairtrader.data.hyperliquid import HyperliquidInfoClient
from pairtrader.data.prices import BAR_INTERVAL, HyperliquidPriceSource, PriceBar, align_to_bar_close
from pairtrader.models import Symbol
from pairtrader.trading.funding import FundingRate

logger = logging.getLogger(__name__)

BAR_COLUMNS = ["timestamp", "eth_price", "btc_price", "funding_eth", "funding_btc"]


class CoverageError(BacktestError):
    """Downloaded history does not cover every bar of the requested range."""


# =============================================================================
# FRAMES
# =============================================================================


def _price_frame(bars: List[PriceBar], column: str) -> pd.DataFrame:
    rows = []
    for bar in bars:
        price = bar.effective_price(PriceField.CLOSE)
        if price is None:
            raise BacktestError(f"missing {bar.symbol.value} price at {bar.timestamp.isoformat()}")
        rows.append({"timestamp": bar.timestamp, column: price})
    df = pd.DataFrame(rows, columns=["timestamp", column])
    df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
    return df.drop_duplicates("timestamp", keep="last")


def _funding_frame(rates: List[FundingRate], column: str) -> pd.DataFrame:
    """Rates rescaled to the FUNDING_INTERVAL_HOURS basis the backtest charges on."""
    df = pd.DataFrame(
        [
            {"timestamp": r.timestamp, column: r.rate * FUNDING_INTERVAL_HOURS / r.interval_hours}
            for r in rates
        ],
        columns=["timestamp", column],
    )
    df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
    return df.sort_values("timestamp")


def _check_coverage(df: pd.DataFrame, start: datetime, end: datetime) -> None:
    expected = int((end - start) / BAR_INTERVAL) + 1
    first = df["timestamp"].iloc[0] if len(df) else None
    last = df["timestamp"].iloc[-1] if len(df) else None
    if (
        first is None
        or first > pd.Timestamp(start)
        or last < pd.Timestamp(end)
        or len(df) < expected
    ):
        raise CoverageError(
            f"history coverage incomplete for {start.isoformat()} -> {end.isoformat()}: "
            f"{len(df)}/{expected} paired bars, first {first}, last {last}"
        )


# =============================================================================
# DOWNLOAD
# =============================================================================


def download_backtest_bars(
    info: HyperliquidInfoClient,
    start: datetime,
    end: datetime,
    include_funding: bool = True,
) -> List[BacktestBar]:
    """
    Download paired bars over [start, end], both aligned down to bar closes.

    Each bar carries the latest funding rate published at or before its
    close, rescaled from the hourly venue rate to the backtest interval.

    Args:
        info: Hyperliquid info client
        start: First bar close
        end: Last bar close
        include_funding: Also fetch fundingHistory for both symbols

    Returns:
        Bars sorted by timestamp

    Raises:
        BacktestError: Inverted range or a bar without any price
        CoverageError: A bar in the range is missing for either symbol
        DataError: The info endpoint failed
    """
    start = align_to_bar_close(start)
    end = align_to_bar_close(end)
    if end < start:
        raise BacktestError("download end must be >= start")

    prices = HyperliquidPriceSource(info)
    eth = _price_frame(prices.fetch_history(Symbol.ETH_PERP, start, end), "eth_price")
    btc = _price_frame(prices.fetch_history(Symbol.BTC_PERP, start, end), "btc_price")

    df = eth.merge(btc, on="timestamp", how="inner").sort_values("timestamp").reset_index(drop=True)
    _check_coverage(df, start, end)

    if include_funding:
        funding = HyperliquidFundingSource(info)
        funding_start = start - timedelta(hours=HYPERLIQUID_FUNDING_INTERVAL_HOURS)
        for symbol, column in ((Symbol.ETH_PERP, "funding_eth"), (Symbol.BTC_PERP, "funding_btc")):
            rates = funding.fetch_history(symbol, funding_start, end)
            if not rates:
                logger.warning(f"No {symbol.value} funding history for {start.isoformat()} -> {end.isoformat()}")
                df[column] = float("nan")
                continue
            df = pd.merge_asof(df, _funding_frame(rates, column), on="timestamp", direction="backward")

    bars = [
        BacktestBar(
            timestamp=row["timestamp"].to_pydatetime(),
            eth_price=float(row["eth_price"]),
            btc_price=float(row["btc_price"]),
            funding_eth=_optional(row.get("funding_eth")),
            funding_btc=_optional(row.get("funding_btc")),
        )
        for row in df.to_dict("records")
    ]
    logger.info(f"Downloaded {len(bars)} bars ({start.isoformat()} -> {end.isoformat()})")
    return bars


def _optional(value) -> Optional[float]:
    if value is None or pd.isna(value):
        return None
    return float(value)


def write_backtest_bars(path: Union[str, Path], bars: List[BacktestBar]) -> None:
    """Write bars in the CSV layout load_backtest_bars() reads."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df = pd.DataFrame(
        [
            {
                "timestamp": b.timestamp.isoformat(),
                "eth_price": b.eth_price,
                "btc_price": b.btc_price,
                "funding_eth": b.funding_eth,
                "funding_btc": b.funding_btc,
            }
            for b in bars
        ],
        columns=BAR_COLUMNS,
    )
    df.to_csv(path, index=False)
    logger.info(f"Wrote {len(bars)} bars to {path}")
