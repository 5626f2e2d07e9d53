"""
Tests for pairtrader/data: bar alignment, paired price fetching, funding
fetching and the Hyperliquid info-backed sources.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from pairtrader.config import PriceField
from pairtrader.data.errors import (
    DataError,
    InconsistentDataError,
    InvalidBarError,
    MissingDataError,
)
from pairtrader.data.funding import (
    FundingFetcher,
    FundingHistory,
    HyperliquidFundingSource,
    ZeroFundingSource,
)
from pairtrader.data.hyperliquid import HyperliquidAccountSource
from pairtrader.data.prices import (
    HyperliquidPriceSource,
    MockPriceSource,
    PriceBar,
    PriceFetcher,
    align_to_bar_close,
    pair_snapshot,
)
from pairtrader.models import Symbol
from pairtrader.trading.funding import FundingIntervalMismatchError, FundingRate
from tests.mocks import T0, bar_time, price_source


def ms(ts):
    return int(ts.timestamp() * 1000)


def info_double(routes):
    """Mock HyperliquidInfoClient answering by request type."""
    info = Mock()
    info.post.side_effect = lambda body: routes[body["type"]]
    return info


META = [{"universe": [{"name": "BTC"}, {"name": "ETH"}]}, [
    {"markPx": "60010.0", "funding": "0.0000125"},
    {"markPx": "3001.5", "funding": "-0.00002"},
]]


# =============================================================================
# Alignment and pairing
# =============================================================================


class TestAlignment:
    """Tests for 15-minute bar close alignment."""

    def test_rounds_down(self):
        ts = datetime(2024, 1, 1, 10, 29, 59, tzinfo=timezone.utc)
        assert align_to_bar_close(ts) == datetime(2024, 1, 1, 10, 15, tzinfo=timezone.utc)

    def test_boundary_unchanged(self):
        assert align_to_bar_close(bar_time(3)) == bar_time(3)

    def test_naive_treated_as_utc(self):
        naive = datetime(2024, 1, 1, 0, 7)
        assert align_to_bar_close(naive) == T0


class TestPriceBar:
    """Tests for bar validation and price field fallback."""

    def test_rejects_non_positive(self):
        with pytest.raises(InvalidBarError):
            PriceBar(Symbol.ETH_PERP, T0, mid=0.0).validate()

    @pytest.mark.parametrize("field,expected", [
        (PriceField.MID, 3000.0),
        (PriceField.MARK, 3001.0),
        (PriceField.CLOSE, 2999.0),
    ])
    def test_preferred_field(self, field, expected):
        bar = PriceBar(Symbol.ETH_PERP, T0, mid=3000.0, mark=3001.0, close=2999.0)
        assert bar.effective_price(field) == expected

    def test_fallback(self):
        bar = PriceBar(Symbol.ETH_PERP, T0, close=2999.0)
        assert bar.effective_price(PriceField.MID) == 2999.0

    def test_pair_requires_same_timestamp(self):
        eth = PriceBar(Symbol.ETH_PERP, T0, mid=3000.0)
        btc = PriceBar(Symbol.BTC_PERP, bar_time(1), mid=60000.0)
        with pytest.raises(InconsistentDataError):
            pair_snapshot(eth, btc, PriceField.MID)

    def test_pair_requires_a_price(self):
        eth = PriceBar(Symbol.ETH_PERP, T0)
        btc = PriceBar(Symbol.BTC_PERP, T0, mid=60000.0)
        with pytest.raises(MissingDataError):
            pair_snapshot(eth, btc, PriceField.MID)


class TestPriceFetcher:
    """Tests for paired fetching over a PriceSource."""

    def test_fetch_aligns_and_pairs(self):
        fetcher = PriceFetcher(price_source([bar_time(2)]))

        snapshot = fetcher.fetch_pair_prices(bar_time(2) + timedelta(minutes=4))

        assert snapshot.timestamp == bar_time(2)
        assert (snapshot.eth_price, snapshot.btc_price) == (3000.0, 60000.0)

    def test_missing_bar(self):
        with pytest.raises(MissingDataError):
            PriceFetcher(MockPriceSource()).fetch_pair_prices(T0)

    def test_scripted_error(self):
        source = price_source([T0])
        source.insert_error(Symbol.BTC_PERP, T0, InvalidBarError("bad"))

        with pytest.raises(DataError):
            PriceFetcher(source).fetch_pair_prices(T0)

    def test_history_inner_join(self):
        source = price_source([bar_time(i) for i in range(4)])
        source.insert_bar(PriceBar(Symbol.ETH_PERP, bar_time(4), mid=3000.0))

        history = PriceFetcher(source).fetch_pair_history(bar_time(0), bar_time(4))

        assert [s.timestamp for s in history] == [bar_time(i) for i in range(4)]

    def test_history_rejects_inverted_range(self):
        with pytest.raises(InconsistentDataError):
            PriceFetcher(MockPriceSource()).fetch_pair_history(bar_time(3), bar_time(1))


# =============================================================================
# Funding
# =============================================================================


class TestFundingFetcher:
    """Tests for paired funding retrieval."""

    def test_zero_source(self):
        snapshot = FundingFetcher(ZeroFundingSource()).fetch_pair_rates(T0)

        assert snapshot.eth.rate == 0.0
        assert snapshot.interval_hours == 8

    def test_records_history(self):
        history = FundingHistory(capacity=2)
        fetcher = FundingFetcher(ZeroFundingSource(), history)
        for i in range(3):
            fetcher.fetch_pair_rates(bar_time(i))

        assert len(history.rates(Symbol.ETH_PERP)) == 2
        assert history.latest(Symbol.BTC_PERP).timestamp == bar_time(2)

    def test_interval_mismatch(self):
        source = Mock()
        source.fetch_rate.side_effect = [
            FundingRate(Symbol.ETH_PERP, 0.0, T0, 8),
            FundingRate(Symbol.BTC_PERP, 0.0, T0, 1),
        ]
        with pytest.raises(FundingIntervalMismatchError):
            FundingFetcher(source).fetch_pair_rates(T0)

    def test_history_capacity_positive(self):
        with pytest.raises(ValueError):
            FundingHistory(capacity=0)


class TestHyperliquidFundingSource:
    """Tests for funding parsing from the info endpoint."""

    def test_current_rate(self):
        source = HyperliquidFundingSource(info_double({"metaAndAssetCtxs": META}))

        rate = source.fetch_rate(Symbol.ETH_PERP, T0)

        assert rate.rate == pytest.approx(-0.00002)
        assert rate.interval_hours == 1

    def test_unlisted_symbol(self):
        meta = [{"universe": [{"name": "SOL"}]}, [{"funding": "0.0"}]]
        source = HyperliquidFundingSource(info_double({"metaAndAssetCtxs": meta}))

        with pytest.raises(MissingDataError):
            source.fetch_rate(Symbol.BTC_PERP, T0)

    def test_history(self):
        payload = [
            {"time": ms(bar_time(4)), "fundingRate": "0.00002"},
            {"time": ms(T0), "fundingRate": "0.00001"},
        ]
        source = HyperliquidFundingSource(info_double({"fundingHistory": payload}))

        rates = source.fetch_history(Symbol.BTC_PERP, T0, bar_time(4))

        assert [r.timestamp for r in rates] == [T0, bar_time(4)]


# =============================================================================
# Hyperliquid prices and equity
# =============================================================================


class TestHyperliquidPriceSource:
    """Tests for candle and live price parsing."""

    def candles(self, *closes_at):
        return [{"t": ms(ts - timedelta(minutes=15)), "c": str(close)} for ts, close in closes_at]

    def test_fetch_bar_includes_live_prices(self):
        info = info_double({
            "candleSnapshot": self.candles((bar_time(2), 3000.0)),
            "allMids": {"ETH": "3000.5", "BTC": "60005"},
            "metaAndAssetCtxs": META,
        })
        bar = HyperliquidPriceSource(info).fetch_bar(Symbol.ETH_PERP, bar_time(2) + timedelta(seconds=5))

        assert bar.timestamp == bar_time(2)
        assert bar.close == 3000.0
        assert bar.mid == 3000.5
        assert bar.mark == 3001.5

    def test_fetch_bar_missing_candle(self):
        info = info_double({"candleSnapshot": []})
        with pytest.raises(MissingDataError):
            HyperliquidPriceSource(info).fetch_bar(Symbol.BTC_PERP, T0)

    def test_history_keeps_requested_range(self):
        info = info_double({
            "candleSnapshot": self.candles(
                (T0, 2990.0), (bar_time(1), 3000.0), (bar_time(2), 3010.0)
            ),
        })
        bars = HyperliquidPriceSource(info).fetch_history(Symbol.ETH_PERP, bar_time(1), bar_time(2))

        assert [b.close for b in bars] == [3000.0, 3010.0]

    def test_malformed_candle(self):
        info = info_double({"candleSnapshot": [{"t": "x"}]})
        with pytest.raises(InvalidBarError):
            HyperliquidPriceSource(info).fetch_history(Symbol.ETH_PERP, T0, T0)


class TestHyperliquidAccountSource:
    def test_fetch_equity(self):
        info = info_double({"clearinghouseState": {"marginSummary": {"accountValue": "12345.6"}}})
        assert HyperliquidAccountSource(info, "0xabc").fetch_equity() == pytest.approx(12345.6)

    def test_missing_account_value(self):
        info = info_double({"clearinghouseState": {}})
        with pytest.raises(MissingDataError):
            HyperliquidAccountSource(info, "0xabc").fetch_equity()

    def test_requires_user(self):
        with pytest.raises(ValueError):
            HyperliquidAccountSource(Mock(), "")
