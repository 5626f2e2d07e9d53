"""
Per-bar signal pipeline: indicators first, then detectors.

Indicators and detectors are split into two calls so the caller can
derive a funding-adjusted entry threshold from the fresh z-score before
the entry detector runs.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pairtrader.config import Config
from pairtrader.indicators import (
    VolatilityCalculator,
    VolatilitySnapshot,
    ZScoreCalculator,
    ZScoreSnapshot,
    relative_price,
)
from pairtrader.signals.detectors import (
    EntrySignal,
    EntrySignalDetector,
    ExitSignal,
    ExitSignalDetector,
)
from pairtrader.state.machine import PositionSnapshot, StrategyStatus

logger = logging.getLogger(__name__)


@dataclass
class IndicatorOutput:
    z: ZScoreSnapshot
    vol: VolatilitySnapshot

    @property
    def r(self) -> float:
        return self.z.r


@dataclass
class SignalOutput:
    entry: Optional[EntrySignal] = None
    exit: Optional[ExitSignal] = None


class SignalPipeline:
    """Owns the indicator calculators and signal detectors for one strategy instance."""

    def __init__(self, config: Config) -> None:
        s = config.strategy
        self.zscore = ZScoreCalculator(
            n_z=s.n_z,
            sigma_floor_config=config.sigma_floor,
            bars_per_day=s.bars_per_day,
            min_samples=s.min_samples,
        )
        self.volatility = VolatilityCalculator(config.position.n_vol)
        self.entry_detector = EntrySignalDetector(entry_z=s.entry_z, sl_z=s.sl_z)
        self.exit_detector = ExitSignalDetector(
            tp_z=s.tp_z,
            sl_z=s.sl_z,
            max_hold_hours=config.risk.max_hold_hours,
            confirm_bars=config.risk.confirm_bars,
        )

    def update_indicators(self, eth_price: float, btc_price: float) -> IndicatorOutput:
        """
        Push one paired observation into the indicators.

        Raises:
            InvalidPriceError: If either price is not positive (indicators unchanged)
        """
        r = relative_price(eth_price, btc_price)
        z = self.zscore.update(r)
        vol = self.volatility.update(eth_price, btc_price)
        if z.zscore is not None:
            logger.debug(
                f"r={r:.6f} mean={z.mean:.6f} sigma_eff={z.sigma_eff:.6f} z={z.zscore:.3f}"
            )
        return IndicatorOutput(z=z, vol=vol)

    def evaluate(
        self,
        indicators: IndicatorOutput,
        status: StrategyStatus,
        position: Optional[PositionSnapshot],
        now: datetime,
        entry_z: Optional[float] = None,
    ) -> SignalOutput:
        """Run both detectors; at most one can fire since they gate on status."""
        zscore = indicators.z.zscore
        return SignalOutput(
            entry=self.entry_detector.update(zscore, status, entry_z=entry_z),
            exit=self.exit_detector.update(zscore, status, position, now),
        )

    def update(
        self,
        now: datetime,
        eth_price: float,
        btc_price: float,
        status: StrategyStatus,
        position: Optional[PositionSnapshot],
    ) -> SignalOutput:
        """Indicators and detectors in one step, with the configured entry_z."""
        indicators = self.update_indicators(eth_price, btc_price)
        return self.evaluate(indicators, status, position, now)
