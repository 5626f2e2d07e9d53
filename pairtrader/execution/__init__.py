"""
Execution: order types, transports, rate limiting and the two-leg coordinator.
"""

from pairtrader.execution.coordinator import ExecutionCoordinator
from pairtrader.execution.executors import (
    ExecutorCall,
    MockOrderExecutor,
    OrderExecutor,
    PaperOrderExecutor,
)
from pairtrader.execution.hyperliquid import HyperliquidOrderExecutor
from pairtrader.execution.orders import (
    ExecutionError,
    HedgeIntegrityError,
    NoAttemptError,
    OrderRequest,
    OrderSide,
    PairFill,
    PartialFillError,
    RejectedOrderError,
    ResidualExposureError,
    RetryExhaustedError,
    RetryPolicy,
    RollbackFailedError,
    TransientOrderError,
    limit_price,
)
from pairtrader.execution.rate_limiter import FixedRateLimiter, NoopRateLimiter, RateLimiter

__all__ = [
    "ExecutionCoordinator",
    "ExecutorCall",
    "MockOrderExecutor",
    "OrderExecutor",
    "PaperOrderExecutor",
    "HyperliquidOrderExecutor",
    "ExecutionError",
    "HedgeIntegrityError",
    "NoAttemptError",
    "OrderRequest",
    "OrderSide",
    "PairFill",
    "PartialFillError",
    "RejectedOrderError",
    "ResidualExposureError",
    "RetryExhaustedError",
    "RetryPolicy",
    "RollbackFailedError",
    "TransientOrderError",
    "limit_price",
    "FixedRateLimiter",
    "NoopRateLimiter",
    "RateLimiter",
]
