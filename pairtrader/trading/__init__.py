"""
Position sizing and funding cost controls.
"""

from pairtrader.trading.funding import (
    FundingCostEstimate,
    FundingDecision,
    FundingError,
    FundingIntervalMismatchError,
    FundingRate,
    InvalidFundingConfigError,
    InvalidFundingRateError,
    apply_funding_controls,
    estimate_funding_cost,
    funding_rates_for_bar,
)
from pairtrader.trading.sizing import (
    BelowMinimumError,
    InvalidConstraintsError,
    InvalidSizingInputError,
    OrderSize,
    PositionError,
    RiskParityWeights,
    SizeConverter,
    compute_capital,
    risk_parity_weights,
)

__all__ = [
    "FundingCostEstimate",
    "FundingDecision",
    "FundingError",
    "FundingIntervalMismatchError",
    "FundingRate",
    "InvalidFundingConfigError",
    "InvalidFundingRateError",
    "apply_funding_controls",
    "estimate_funding_cost",
    "funding_rates_for_bar",
    "BelowMinimumError",
    "InvalidConstraintsError",
    "InvalidSizingInputError",
    "OrderSize",
    "PositionError",
    "RiskParityWeights",
    "SizeConverter",
    "compute_capital",
    "risk_parity_weights",
]
