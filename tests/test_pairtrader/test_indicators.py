"""
Tests for pairtrader/indicators: rolling window, relative price, sigma
floor, z-score and per-leg volatility.
"""

import math

import numpy as np
import pytest

from pairtrader.config import SigmaFloorConfig, SigmaFloorMode
from pairtrader.indicators import (
    InvalidIndicatorConfigError,
    InvalidPriceError,
    RollingWindow,
    SigmaFloorCalculator,
    VolatilityCalculator,
    ZScoreCalculator,
    ewma_std,
    log_return,
    relative_price,
)


# =============================================================================
# RollingWindow
# =============================================================================


class TestRollingWindow:
    """Tests for the fixed-capacity FIFO window."""

    def test_holds_only_most_recent_values(self):
        """Pushing past capacity keeps exactly the C most recent values."""
        window = RollingWindow(3)
        for value in [1.0, 2.0, 3.0, 4.0, 5.0]:
            window.push(value)

        assert len(window) == 3
        assert window.values() == [3.0, 4.0, 5.0]
        assert window.is_full()

    def test_statistics_reflect_held_values(self):
        """Mean and std ignore evicted values."""
        window = RollingWindow(3)
        for value in [100.0, 1.0, 2.0, 3.0]:
            window.push(value)

        assert window.mean() == pytest.approx(2.0)
        assert window.std() == pytest.approx(1.0)

    def test_std_is_sample_std(self):
        """std uses N-1."""
        window = RollingWindow(5)
        values = [1.0, 4.0, 2.0, 8.0]
        for value in values:
            window.push(value)

        assert window.std() == pytest.approx(float(np.std(values, ddof=1)))

    def test_empty_statistics_are_none(self):
        """Nothing to compute on an empty window."""
        window = RollingWindow(4)
        assert window.mean() is None
        assert window.std() is None
        assert window.quantile(0.5) is None

    def test_std_needs_two_values(self):
        """A single value has no sample std."""
        window = RollingWindow(4)
        window.push(1.0)
        assert window.std() is None

    def test_lower_quantile(self):
        """Quantile picks sorted[floor((n - 1) * p)]."""
        window = RollingWindow(10)
        for value in [5.0, 1.0, 4.0, 2.0, 3.0]:
            window.push(value)

        assert window.quantile(0.0) == 1.0
        assert window.quantile(0.5) == 3.0
        assert window.quantile(0.9) == 4.0
        assert window.quantile(1.0) == 5.0

    def test_quantile_rejects_out_of_range(self):
        """p must be within [0, 1]."""
        window = RollingWindow(3)
        window.push(1.0)
        with pytest.raises(InvalidIndicatorConfigError):
            window.quantile(1.5)

    def test_zero_capacity_rejected(self):
        """Capacity must be positive."""
        with pytest.raises(InvalidIndicatorConfigError):
            RollingWindow(0)


# =============================================================================
# Price transforms
# =============================================================================


class TestPriceTransforms:
    """Tests for relative_price, log_return and ewma_std."""

    def test_relative_price(self):
        """r = ln(ETH) - ln(BTC)."""
        assert relative_price(3000.0, 60000.0) == pytest.approx(math.log(0.05))

    @pytest.mark.parametrize("eth,btc", [(0.0, 60000.0), (3000.0, -1.0), (float("nan"), 1.0)])
    def test_relative_price_rejects_invalid(self, eth, btc):
        """Non-positive or non-finite prices are rejected."""
        with pytest.raises(InvalidPriceError):
            relative_price(eth, btc)

    def test_log_return(self):
        assert log_return(110.0, 100.0) == pytest.approx(math.log(1.1))

    def test_ewma_std_needs_two_values(self):
        assert ewma_std([1.0], half_life=10) is None

    def test_ewma_std_of_constant_series_is_zero(self):
        assert ewma_std([2.0, 2.0, 2.0, 2.0], half_life=5) == pytest.approx(0.0)

    def test_ewma_std_positive_for_varying_series(self):
        assert ewma_std([0.0, 1.0, 0.0, 1.0], half_life=2) > 0


# =============================================================================
# Sigma floor
# =============================================================================


class TestSigmaFloorCalculator:
    """Tests for CONST, QUANTILE and EWMA_MIX floors."""

    def test_const_floor(self):
        """CONST returns the configured value immediately."""
        calc = SigmaFloorCalculator(SigmaFloorConfig(mode=SigmaFloorMode.CONST, const_value=0.002))
        assert calc.update(0.0001, [0.0, 0.1]) == 0.002

    def test_quantile_floor_waits_for_full_history(self):
        """QUANTILE is unavailable until the sigma history is full."""
        cfg = SigmaFloorConfig(mode=SigmaFloorMode.QUANTILE, quantile_window_days=1, quantile_p=0.1)
        calc = SigmaFloorCalculator(cfg, bars_per_day=4)

        results = [calc.update(sigma, []) for sigma in [0.4, 0.1, 0.3, 0.2]]

        assert results[:3] == [None, None, None]
        assert results[3] == pytest.approx(0.1)

    def test_ewma_mix_takes_max(self):
        """EWMA_MIX is max(quantile floor, EWMA std of r)."""
        cfg = SigmaFloorConfig(
            mode=SigmaFloorMode.EWMA_MIX, quantile_window_days=1, quantile_p=0.5, ewma_half_life=2
        )
        calc = SigmaFloorCalculator(cfg, bars_per_day=2)
        r_values = [0.0, 1.0, 0.0, 1.0]

        calc.update(0.001, r_values)
        floor = calc.update(0.001, r_values)

        assert floor == pytest.approx(max(0.001, ewma_std(r_values, 2)))

    def test_invalid_const_rejected(self):
        with pytest.raises(InvalidIndicatorConfigError):
            SigmaFloorCalculator(SigmaFloorConfig(mode=SigmaFloorMode.CONST, const_value=0.0))


# =============================================================================
# Z-score
# =============================================================================


class TestZScoreCalculator:
    """Tests for the rolling z-score."""

    def test_warming_up_until_min_samples(self):
        """No z-score until min_samples values are held."""
        calc = ZScoreCalculator(n_z=5, sigma_floor_config=SigmaFloorConfig(), min_samples=3)

        first = calc.update(0.0)
        second = calc.update(0.01)
        third = calc.update(0.02)

        assert first.is_warming_up
        assert second.is_warming_up
        assert not third.is_warming_up

    def test_min_samples_defaults_to_window(self):
        calc = ZScoreCalculator(n_z=4, sigma_floor_config=SigmaFloorConfig())
        assert calc.min_samples == 4

    def test_zscore_value(self):
        """z = (r - mean) / max(sigma, floor)."""
        calc = ZScoreCalculator(n_z=3, sigma_floor_config=SigmaFloorConfig(const_value=0.0001))
        values = [0.0, 0.01, 0.05]
        for value in values:
            snapshot = calc.update(value)

        mean = float(np.mean(values))
        sigma = float(np.std(values, ddof=1))
        assert snapshot.mean == pytest.approx(mean)
        assert snapshot.sigma == pytest.approx(sigma)
        assert snapshot.zscore == pytest.approx((0.05 - mean) / sigma)

    def test_floor_caps_quiet_regime(self):
        """A collapsed sigma is replaced by the floor."""
        calc = ZScoreCalculator(n_z=3, sigma_floor_config=SigmaFloorConfig(const_value=0.01))
        for value in [0.0, 0.0001, 0.0002]:
            snapshot = calc.update(value)

        assert snapshot.sigma < 0.01
        assert snapshot.sigma_eff == 0.01
        assert snapshot.zscore == pytest.approx((0.0002 - 0.0001) / 0.01)

    def test_invalid_min_samples(self):
        with pytest.raises(InvalidIndicatorConfigError):
            ZScoreCalculator(n_z=5, sigma_floor_config=SigmaFloorConfig(), min_samples=6)


# =============================================================================
# Volatility
# =============================================================================


class TestVolatilityCalculator:
    """Tests for per-leg realized volatility."""

    def test_not_ready_until_window_full(self):
        """n_vol returns need n_vol + 1 prices."""
        calc = VolatilityCalculator(n_vol=2)

        assert not calc.update(100.0, 1000.0).is_ready
        assert not calc.update(101.0, 1001.0).is_ready
        assert calc.update(100.0, 1003.0).is_ready

    def test_volatility_values(self):
        """Each leg is the sample std of its own log returns."""
        calc = VolatilityCalculator(n_vol=2)
        calc.update(100.0, 1000.0)
        calc.update(110.0, 1000.0)
        snapshot = calc.update(99.0, 1000.0)

        expected = float(np.std([math.log(1.1), math.log(99.0 / 110.0)], ddof=1))
        assert snapshot.vol_eth == pytest.approx(expected)
        assert snapshot.vol_btc == pytest.approx(0.0)

    def test_invalid_price_leaves_state_unchanged(self):
        """A rejected price does not advance either window."""
        calc = VolatilityCalculator(n_vol=2)
        calc.update(100.0, 1000.0)

        with pytest.raises(InvalidPriceError):
            calc.update(-1.0, 1000.0)

        calc.update(101.0, 1001.0)
        assert calc.update(102.0, 1002.0).is_ready
