"""
Z-score of the ETH/BTC relative price with a floored sigma.

The floor keeps the z-score from exploding when the rolling sigma
collapses in quiet regimes:
- CONST: static floor
- QUANTILE: rolling low quantile of past sigma values
- EWMA_MIX: max(quantile floor, EWMA std of the r window)
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from pairtrader.config import SigmaFloorConfig, SigmaFloorMode, BARS_PER_DAY
from pairtrader.indicators.rolling import (
    InvalidIndicatorConfigError,
    RollingWindow,
    ewma_std,
)

logger = logging.getLogger(__name__)

# Last-resort lower bound for sigma_eff
SIGMA_EPSILON: float = 1e-12


@dataclass
class ZScoreSnapshot:
    """Indicator output for one bar. Fields are None while warming up."""

    r: float
    mean: Optional[float] = None
    sigma: Optional[float] = None
    sigma_floor: Optional[float] = None
    sigma_eff: Optional[float] = None
    zscore: Optional[float] = None

    @property
    def is_warming_up(self) -> bool:
        return self.zscore is None


class SigmaFloorCalculator:
    """Computes the sigma floor under the configured mode."""

    def __init__(self, config: SigmaFloorConfig, bars_per_day: int = BARS_PER_DAY) -> None:
        if config.mode == SigmaFloorMode.CONST:
            if config.const_value is None or config.const_value <= 0:
                raise InvalidIndicatorConfigError("sigma floor const must be > 0")
        else:
            if not 0 < config.quantile_p <= 1:
                raise InvalidIndicatorConfigError("sigma floor quantile p must be in (0, 1]")
            if config.quantile_window_days <= 0:
                raise InvalidIndicatorConfigError("sigma floor quantile window must be > 0")
            if config.mode == SigmaFloorMode.EWMA_MIX and config.ewma_half_life <= 0:
                raise InvalidIndicatorConfigError("ewma half life must be > 0")

        self.config = config
        self.quantile_window = max(config.quantile_window_days * bars_per_day, 1)
        self._sigma_history = RollingWindow(self.quantile_window)

    def update(self, sigma: float, r_values: Sequence[float]) -> Optional[float]:
        """
        Record the latest sigma and return the floor for this bar.

        Returns:
            Floor value, or None while the sigma history is still filling
        """
        self._sigma_history.push(sigma)
        mode = self.config.mode

        if mode == SigmaFloorMode.CONST:
            return self.config.const_value

        if len(self._sigma_history) < self.quantile_window:
            return None
        quantile = self._sigma_history.quantile(self.config.quantile_p)

        if mode == SigmaFloorMode.QUANTILE:
            return quantile

        ewma = ewma_std(r_values, self.config.ewma_half_life)
        if quantile is None or ewma is None:
            return None
        return max(quantile, ewma)


class ZScoreCalculator:
    """
    Rolling z-score over an n_z window of relative prices.

    Usage:
        calc = ZScoreCalculator(n_z=384, sigma_floor_config=SigmaFloorConfig())
        snapshot = calc.update(r)
        if not snapshot.is_warming_up:
            use(snapshot.zscore)
    """

    def __init__(
        self,
        n_z: int,
        sigma_floor_config: SigmaFloorConfig,
        bars_per_day: int = BARS_PER_DAY,
        min_samples: Optional[int] = None,
    ) -> None:
        if n_z <= 0:
            raise InvalidIndicatorConfigError("n_z must be > 0")
        if min_samples is None:
            min_samples = n_z
        if not 2 <= min_samples <= n_z:
            raise InvalidIndicatorConfigError("min_samples must be within [2, n_z]")

        self.n_z = n_z
        self.min_samples = min_samples
        self._window = RollingWindow(n_z)
        self._sigma_floor = SigmaFloorCalculator(sigma_floor_config, bars_per_day)

    def __len__(self) -> int:
        return len(self._window)

    def update(self, r: float) -> ZScoreSnapshot:
        self._window.push(r)
        if len(self._window) < self.min_samples:
            return ZScoreSnapshot(r=r)

        mean = self._window.mean()
        sigma = self._window.std()
        floor = self._sigma_floor.update(sigma, self._window.values())
        if floor is None:
            return ZScoreSnapshot(r=r, mean=mean, sigma=sigma)

        sigma_eff = max(sigma, floor, SIGMA_EPSILON)
        zscore = (r - mean) / sigma_eff
        return ZScoreSnapshot(
            r=r,
            mean=mean,
            sigma=sigma,
            sigma_floor=floor,
            sigma_eff=sigma_eff,
            zscore=zscore,
        )
