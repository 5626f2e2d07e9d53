"""
Funding cost estimation and entry controls.

Perpetual funding is paid by longs to shorts when the rate is positive.
For the pair, the net cost per interval of a candidate direction is:
- LONG_ETH_SHORT_BTC:  eth_rate * notional_eth - btc_rate * notional_btc
- SHORT_ETH_LONG_BTC: -eth_rate * notional_eth + btc_rate * notional_btc

Controls always compose in the order FILTER -> THRESHOLD -> SIZE:
- FILTER: veto the entry when the estimated cost exceeds a threshold
- THRESHOLD: raise the effective entry z by k * normalized cost
- SIZE: shrink capital by (1 - alpha * normalized cost), floored at c_min_ratio
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

from pairtrader.config import FundingConfig, FundingMode
from pairtrader.models import Symbol, TradeDirection

logger = logging.getLogger(__name__)

_MODE_ORDER = (FundingMode.FILTER, FundingMode.THRESHOLD, FundingMode.SIZE)


class FundingError(Exception):
    """Base class for funding failures."""


class InvalidFundingRateError(FundingError):
    """A funding observation is malformed."""


class InvalidFundingConfigError(FundingError):
    """An enabled funding mode is missing a parameter."""


class FundingIntervalMismatchError(FundingError):
    """ETH and BTC report different funding intervals."""


@dataclass
class FundingRate:
    """One periodic funding observation."""

    symbol: Symbol
    rate: float
    timestamp: datetime
    interval_hours: int

    def validate(self) -> None:
        if self.interval_hours is None or self.interval_hours <= 0:
            raise InvalidFundingRateError(
                f"{self.symbol.value} funding interval_hours must be > 0"
            )
        if self.rate is None or not math.isfinite(self.rate):
            raise InvalidFundingRateError(f"{self.symbol.value} funding rate must be finite")


@dataclass
class FundingCostEstimate:
    cost_est: float      # Worst-case cost over the horizon, never negative
    normalized: float    # cost_est / total notional
    interval_hours: int
    intervals: int


@dataclass
class FundingDecision:
    should_skip: bool
    entry_z: float       # Effective entry threshold
    capital: float       # Effective capital
    size_ratio: float = 1.0


def estimate_funding_cost(
    direction: TradeDirection,
    notional_eth: float,
    notional_btc: float,
    eth_rate: FundingRate,
    btc_rate: FundingRate,
    hold_hours: float,
) -> FundingCostEstimate:
    """
    Estimate the funding paid over hold_hours for a candidate position.

    The number of intervals is ceil(hold_hours / interval_hours). A net
    funding receipt is reported as zero cost.

    Raises:
        InvalidFundingRateError: If either rate is malformed
        FundingIntervalMismatchError: If the two intervals differ
    """
    eth_rate.validate()
    btc_rate.validate()
    if eth_rate.interval_hours != btc_rate.interval_hours:
        raise FundingIntervalMismatchError(
            f"eth interval {eth_rate.interval_hours}h != btc interval {btc_rate.interval_hours}h"
        )

    interval_hours = eth_rate.interval_hours
    intervals = int(math.ceil(max(hold_hours, 0) / interval_hours))

    if direction == TradeDirection.LONG_ETH_SHORT_BTC:
        per_interval = eth_rate.rate * notional_eth - btc_rate.rate * notional_btc
    else:
        per_interval = -eth_rate.rate * notional_eth + btc_rate.rate * notional_btc

    cost_est = max(per_interval * intervals, 0.0)
    total_notional = notional_eth + notional_btc
    normalized = cost_est / total_notional if total_notional > 0 else 0.0

    return FundingCostEstimate(
        cost_est=cost_est,
        normalized=normalized,
        interval_hours=interval_hours,
        intervals=intervals,
    )


def apply_funding_controls(
    config: FundingConfig,
    entry_z: float,
    capital: float,
    estimate: FundingCostEstimate,
) -> FundingDecision:
    """
    Apply the enabled funding modes in fixed order.

    Args:
        config: Funding configuration (modes and parameters)
        entry_z: Base entry threshold
        capital: Base capital
        estimate: Funding estimate for the candidate direction

    Returns:
        FundingDecision with skip flag, effective entry_z and capital

    Raises:
        InvalidFundingConfigError: If an enabled mode lacks its parameter
    """
    enabled = set(config.modes)
    decision = FundingDecision(should_skip=False, entry_z=entry_z, capital=capital)

    for mode in _MODE_ORDER:
        if mode not in enabled:
            continue

        if mode == FundingMode.FILTER:
            if config.funding_cost_threshold is None:
                raise InvalidFundingConfigError("funding_cost_threshold missing")
            if estimate.cost_est > config.funding_cost_threshold:
                decision.should_skip = True

        elif mode == FundingMode.THRESHOLD:
            if config.threshold_k is None:
                raise InvalidFundingConfigError("threshold_k missing")
            decision.entry_z = entry_z + config.threshold_k * estimate.normalized

        elif mode == FundingMode.SIZE:
            if config.size_alpha is None:
                raise InvalidFundingConfigError("size_alpha missing")
            if config.c_min_ratio is None:
                raise InvalidFundingConfigError("c_min_ratio missing")
            ratio = 1.0 - config.size_alpha * estimate.normalized
            ratio = min(max(ratio, config.c_min_ratio), 1.0)
            decision.size_ratio = ratio
            decision.capital = capital * ratio

    if decision.should_skip:
        logger.info(
            f"Funding filter veto: cost_est={estimate.cost_est:.4f} > "
            f"{config.funding_cost_threshold}"
        )
    return decision


def funding_rates_for_bar(
    funding_eth: Optional[float],
    funding_btc: Optional[float],
    timestamp: datetime,
    interval_hours: int,
) -> Optional[Tuple[FundingRate, FundingRate]]:
    """Build the (eth, btc) FundingRate pair for a bar, or None if either rate is missing."""
    if funding_eth is None or funding_btc is None:
        return None
    return (
        FundingRate(Symbol.ETH_PERP, funding_eth, timestamp, interval_hours),
        FundingRate(Symbol.BTC_PERP, funding_btc, timestamp, interval_hours),
    )
