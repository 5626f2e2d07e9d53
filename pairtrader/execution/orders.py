"""
Order types, retry policy and the execution error taxonomy.

Error families:
- TransientOrderError: retryable (timeouts, rate limits, 5xx)
- RejectedOrderError: terminal, never retried
- NoAttemptError: the retry policy allows zero attempts
- RetryExhaustedError: every attempt failed transiently
- PartialFillError: one leg filled, the other failed, rollback succeeded
- ResidualExposureError: exactly one leg is left open and needs repair
  (RollbackFailedError when the rollback of a partial open failed)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from pairtrader.config import OrderType
from pairtrader.models import Symbol


class OrderSide(Enum):
    BUY = "buy"
    SELL = "sell"

    @classmethod
    def close_for_qty(cls, qty: float) -> "OrderSide":
        """Side that flattens a signed position quantity."""
        return cls.SELL if qty > 0 else cls.BUY

    @property
    def sign(self) -> int:
        return 1 if self is OrderSide.BUY else -1

    def opposite(self) -> "OrderSide":
        return OrderSide.SELL if self is OrderSide.BUY else OrderSide.BUY


@dataclass
class OrderRequest:
    """One leg's instruction."""

    symbol: Symbol
    side: OrderSide
    qty: float
    order_type: OrderType = OrderType.MARKET
    limit_price: Optional[float] = None
    reduce_only: bool = False

    def __post_init__(self) -> None:
        if self.qty <= 0:
            raise ValueError(f"order qty must be > 0, got {self.qty}")

    def describe(self) -> str:
        return f"{self.side.value.upper()} {self.qty} {self.symbol.value}"


@dataclass
class RetryPolicy:
    """Bounded exponential backoff: delay doubles after each failed attempt."""

    max_attempts: int = 3
    base_delay_ms: int = 200

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        if self.base_delay_ms < 0:
            raise ValueError("base_delay_ms must be >= 0")

    def delay_seconds(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        return self.base_delay_ms * (2 ** (attempt - 1)) / 1000.0


@dataclass
class PairFill:
    """Filled quantities for both legs (unsigned)."""

    eth_qty: float
    btc_qty: float


def limit_price(side: OrderSide, price: float, slippage_bps: float, precision: int) -> float:
    """Marketable limit: price x (1 + bps) to buy, price x (1 - bps) to sell."""
    adj = slippage_bps / 10000.0
    raw = price * (1 + adj) if side is OrderSide.BUY else price * (1 - adj)
    return round(raw, precision)


# =============================================================================
# ERRORS
# =============================================================================


class ExecutionError(Exception):
    """Base class for execution failures."""


class TransientOrderError(ExecutionError):
    """Retryable transport or venue failure."""


class RejectedOrderError(ExecutionError):
    """Terminal rejection; no further attempts."""


class NoAttemptError(ExecutionError):
    """The retry policy allows zero attempts, so nothing was submitted."""


class RetryExhaustedError(ExecutionError):
    """All attempts failed with transient errors."""

    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class HedgeIntegrityError(ExecutionError):
    """Base for failures that touch the hedge invariant. Always alerted."""


class PartialFillError(HedgeIntegrityError):
    """First leg filled, second failed; the first leg was rolled back."""

    def __init__(self, message: str, filled: OrderRequest, failed: OrderRequest) -> None:
        super().__init__(message)
        self.filled = filled
        self.failed = failed


class ResidualExposureError(HedgeIntegrityError):
    """
    Exactly one leg (or an unrepaired leg) remains open.

    Attributes:
        residual: Signed open quantity per symbol still to be flattened
    """

    def __init__(self, message: str, residual: Dict[Symbol, float]) -> None:
        super().__init__(message)
        self.residual = dict(residual)


class RollbackFailedError(ResidualExposureError):
    """Rollback of a partially opened pair failed."""
