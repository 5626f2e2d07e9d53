"""
Rolling-window statistics and price transforms.

All statistics are computed only over the values currently held by the
window. Sample statistics that need at least two values return None
("not yet available") rather than a default.
"""

import math
from collections import deque
from typing import Deque, List, Optional, Sequence

import numpy as np


class IndicatorError(Exception):
    """Base class for indicator failures."""


class InvalidPriceError(IndicatorError):
    """A price input was non-positive or not finite."""


class InvalidIndicatorConfigError(IndicatorError):
    """Indicator parameters are out of range."""


class RollingWindow:
    """
    Fixed-capacity FIFO window of floats.

    Pushing onto a full window evicts the oldest value.
    """

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise InvalidIndicatorConfigError("window capacity must be > 0")
        self.capacity = capacity
        self._values: Deque[float] = deque(maxlen=capacity)

    def push(self, value: float) -> None:
        self._values.append(float(value))

    def __len__(self) -> int:
        return len(self._values)

    def is_full(self) -> bool:
        return len(self._values) == self.capacity

    def values(self) -> List[float]:
        return list(self._values)

    def mean(self) -> Optional[float]:
        if not self._values:
            return None
        return float(np.mean(self._values))

    def std(self) -> Optional[float]:
        """Sample standard deviation (N-1). None below two values."""
        if len(self._values) < 2:
            return None
        return float(np.std(self._values, ddof=1))

    def quantile(self, p: float) -> Optional[float]:
        """
        Lower empirical quantile: sorted[floor((n - 1) * p)].

        Args:
            p: Percentile in [0, 1]
        """
        if not 0.0 <= p <= 1.0:
            raise InvalidIndicatorConfigError("quantile p must be within [0, 1]")
        if not self._values:
            return None
        ordered = np.sort(np.fromiter(self._values, dtype=float))
        index = int(math.floor((len(ordered) - 1) * p))
        return float(ordered[index])


def _check_price(label: str, price: float) -> None:
    if price is None or not math.isfinite(price) or price <= 0:
        raise InvalidPriceError(f"{label} price must be > 0, got {price}")


def relative_price(eth_price: float, btc_price: float) -> float:
    """r = ln(ETH) - ln(BTC)."""
    _check_price("eth", eth_price)
    _check_price("btc", btc_price)
    return math.log(eth_price) - math.log(btc_price)


def log_return(current: float, previous: float) -> float:
    """ln(current / previous)."""
    _check_price("current", current)
    _check_price("previous", previous)
    return math.log(current / previous)


def ewma_std(values: Sequence[float], half_life: float) -> Optional[float]:
    """
    Exponentially weighted standard deviation.

    decay = 0.5 ** (1 / half_life); the mean is seeded with the first
    value, then each value updates the mean and the variance is updated
    from the deviation against the new mean.

    Returns:
        EWMA std, or None with fewer than two values or a non-positive half life
    """
    if len(values) < 2 or half_life <= 0:
        return None
    decay = 0.5 ** (1.0 / half_life)
    alpha = 1.0 - decay
    mean = float(values[0])
    variance = 0.0
    for value in values[1:]:
        mean += alpha * (float(value) - mean)
        diff = float(value) - mean
        variance = alpha * diff * diff + (1.0 - alpha) * variance
    return math.sqrt(variance)
