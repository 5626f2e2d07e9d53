"""
Position sizing for the ETH/BTC pair.

Implements inverse-volatility (risk parity) leg weights, capital
computation and conversion of notional into exchange-valid quantities.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

from pairtrader.config import (
    CapitalMode,
    InstrumentConstraints,
    MinSizePolicy,
    PositionConfig,
    RoundingMode,
)

logger = logging.getLogger(__name__)

# Float tolerance when snapping a quantity to a step multiple
_STEP_TOLERANCE = 1e-9


class PositionError(Exception):
    """Base class for sizing failures."""


class BelowMinimumError(PositionError):
    """Order quantity or notional is below the instrument minimum."""


class InvalidConstraintsError(PositionError):
    """Instrument constraints cannot be applied."""


class InvalidSizingInputError(PositionError):
    """A price, equity or capital input is unusable."""


@dataclass
class RiskParityWeights:
    w_eth: float
    w_btc: float


@dataclass
class OrderSize:
    qty: float
    notional: float
    price: float


def risk_parity_weights(
    vol_eth: Optional[float],
    vol_btc: Optional[float],
) -> RiskParityWeights:
    """
    Inverse-volatility weights normalized to sum to 1.

    Args:
        vol_eth: ETH realized volatility
        vol_btc: BTC realized volatility

    Returns:
        RiskParityWeights; 0.5/0.5 when either vol is missing or not positive

    Example:
        >>> risk_parity_weights(0.02, 0.01)
        RiskParityWeights(w_eth=0.333..., w_btc=0.666...)
    """
    if vol_eth is None or vol_btc is None or vol_eth <= 0 or vol_btc <= 0:
        return RiskParityWeights(w_eth=0.5, w_btc=0.5)

    inv_eth = 1.0 / vol_eth
    inv_btc = 1.0 / vol_btc
    total = inv_eth + inv_btc
    return RiskParityWeights(w_eth=inv_eth / total, w_btc=inv_btc / total)


def compute_capital(config: PositionConfig, equity: Optional[float]) -> float:
    """
    Capital allocated to one pair entry.

    FIXED_NOTIONAL uses c_value. EQUITY_RATIO uses equity x equity_ratio_k,
    where equity is supplied by the caller (account balance).

    Raises:
        InvalidSizingInputError: If a required value is missing or not positive
    """
    if config.c_mode == CapitalMode.FIXED_NOTIONAL:
        if config.c_value is None or config.c_value <= 0:
            raise InvalidSizingInputError("c_value must be > 0 for fixed notional mode")
        return float(config.c_value)

    if config.equity_ratio_k is None or config.equity_ratio_k <= 0:
        raise InvalidSizingInputError("equity_ratio_k must be > 0 for equity ratio mode")
    if equity is None:
        equity = config.equity_value
    if equity is None or equity <= 0:
        raise InvalidSizingInputError("equity unavailable for equity ratio mode")
    return float(equity) * config.equity_ratio_k


class SizeConverter:
    """
    Converts a notional into an order quantity for one instrument.

    Usage:
        converter = SizeConverter(InstrumentConstraints(), MinSizePolicy.SKIP)
        order = converter.convert_notional(25000.0, price=3000.0)
    """

    def __init__(
        self,
        constraints: InstrumentConstraints,
        policy: MinSizePolicy = MinSizePolicy.SKIP,
    ) -> None:
        self.constraints = constraints
        self.policy = policy

    def round_qty(self, qty: float, mode: Optional[RoundingMode] = None) -> float:
        """Snap qty to a multiple of step_size, then to qty_precision decimals."""
        step = self.constraints.step_size
        if step <= 0:
            raise InvalidConstraintsError("step_size must be > 0")
        mode = mode or self.constraints.rounding

        steps = qty / step
        if mode == RoundingMode.FLOOR:
            rounded_steps = math.floor(steps + _STEP_TOLERANCE)
        elif mode == RoundingMode.CEIL:
            rounded_steps = math.ceil(steps - _STEP_TOLERANCE)
        else:
            rounded_steps = round(steps)
        return round(rounded_steps * step, self.constraints.qty_precision)

    def round_price(self, price: float) -> float:
        return round(price, self.constraints.price_precision)

    def convert_notional(self, notional: float, price: float) -> OrderSize:
        """
        Quantity for a target notional at price.

        Raises:
            InvalidSizingInputError: If price is not positive
            BelowMinimumError: Under SKIP policy when below min_qty/min_notional
        """
        if price is None or price <= 0:
            raise InvalidSizingInputError(f"price must be > 0, got {price}")

        qty = self.round_qty(notional / price)
        order_notional = qty * price
        c = self.constraints

        if qty >= c.min_qty and order_notional >= c.min_notional:
            return OrderSize(qty=qty, notional=order_notional, price=price)

        if self.policy == MinSizePolicy.SKIP:
            raise BelowMinimumError(
                f"qty {qty} (notional {order_notional:.2f}) below minimum "
                f"(min_qty={c.min_qty}, min_notional={c.min_notional})"
            )

        target = max(c.min_notional / price, c.min_qty)
        adjusted = self.round_qty(target, RoundingMode.CEIL)
        logger.info(f"Order qty {qty} bumped to instrument minimum {adjusted}")
        return OrderSize(qty=adjusted, notional=adjusted * price, price=price)
