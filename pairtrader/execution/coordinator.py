"""
Atomic two-leg execution: open, close, rollback and residual repair.

Guarantees:
- open_pair: if the first leg fails, the second is never submitted.
  If the second fails, exactly one rollback close of the first leg is
  attempted (under the retry policy) before PartialFillError. A failed
  rollback raises RollbackFailedError.
- close_pair: closes the first leg, then the second. If the second close
  fails, or either close fills short, the unfilled remainder is flagged as
  residual exposure; a closed leg is never reopened.
- repair_residual: closes every open leg of a snapshot; a flat snapshot
  submits nothing. Short fills stay in the reported residual.
"""

import logging
import time
from typing import Callable, Dict, List, Optional

from pairtrader.config import OrderType
from pairtrader.execution.executors import OrderExecutor
from pairtrader.execution.orders import (
    ExecutionError,
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
)
from pairtrader.models import Symbol
from pairtrader.state.machine import PositionSnapshot

logger = logging.getLogger(__name__)

# Fill shortfalls at or below this are rounding, not exposure
FILL_TOLERANCE = 1e-9


def unfilled_qty(order: OrderRequest, filled: float) -> float:
    """Quantity of an order left unfilled, or 0.0 within FILL_TOLERANCE."""
    shortfall = order.qty - filled
    return shortfall if shortfall > FILL_TOLERANCE else 0.0


def open_qty(closing: OrderRequest, qty: float) -> float:
    """Signed position quantity still open after a closing order missed qty."""
    return -closing.side.sign * qty


class ExecutionCoordinator:
    """
    Executes paired orders through an OrderExecutor.

    Usage:
        coordinator = ExecutionCoordinator(executor, RetryPolicy(max_attempts=3))
        fill = coordinator.open_pair(eth_order, btc_order)
    """

    def __init__(
        self,
        executor: OrderExecutor,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.executor = executor
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    # =========================================================================
    # RETRY
    # =========================================================================

    def _with_retry(
        self,
        call: Callable[[OrderRequest], float],
        order: OrderRequest,
        action: str,
    ) -> float:
        """
        Run one leg under the retry policy.

        Only TransientOrderError is retried. Any other ExecutionError
        aborts at once without consuming the remaining attempts.

        Returns:
            Filled quantity (> 0)

        Raises:
            NoAttemptError: Policy allows zero attempts
            RejectedOrderError: Terminal rejection or empty fill
            RetryExhaustedError: Every attempt failed transiently
        """
        max_attempts = self.retry_policy.max_attempts
        if max_attempts == 0:
            raise NoAttemptError(f"{action} {order.describe()}: retry policy allows no attempts")

        last_error: Optional[TransientOrderError] = None
        for attempt in range(1, max_attempts + 1):
            try:
                filled = call(order)
            except TransientOrderError as e:
                last_error = e
                if attempt == max_attempts:
                    break
                delay = self.retry_policy.delay_seconds(attempt)
                logger.warning(
                    f"{action} {order.describe()} failed (attempt {attempt}/{max_attempts}), "
                    f"retrying in {delay:.3f}s: {e}"
                )
                if delay > 0:
                    self._sleep(delay)
                continue
            except ExecutionError as e:
                logger.error(f"{action} {order.describe()} rejected: {e}")
                raise

            if filled <= 0:
                raise RejectedOrderError(f"{action} {order.describe()} returned no fill")
            return filled

        logger.error(
            f"{action} {order.describe()} failed after {max_attempts} attempts: {last_error}"
        )
        raise RetryExhaustedError(
            f"{action} {order.describe()} failed after {max_attempts} attempts: {last_error}",
            attempts=max_attempts,
        ) from last_error

    def submit_with_retry(self, order: OrderRequest) -> float:
        return self._with_retry(self.executor.submit, order, "submit")

    def close_with_retry(self, order: OrderRequest) -> float:
        return self._with_retry(self.executor.close, order, "close")

    # =========================================================================
    # PAIR OPERATIONS
    # =========================================================================

    def open_pair(self, first: OrderRequest, second: OrderRequest) -> PairFill:
        """
        Open both legs, rolling back the first if the second fails.

        Raises:
            ExecutionError: First leg failed (nothing open)
            PartialFillError: Second leg failed, first leg rolled back (net flat)
            RollbackFailedError: Second leg failed and so did the rollback
        """
        first_qty = self.submit_with_retry(first)
        logger.info(f"Opened first leg: {first.describe()} filled {first_qty}")

        try:
            second_qty = self.submit_with_retry(second)
        except ExecutionError as second_error:
            logger.error(
                f"Second leg {second.describe()} failed: {second_error}; rolling back first leg"
            )
            rollback = OrderRequest(
                symbol=first.symbol,
                side=first.side.opposite(),
                qty=first_qty,
                order_type=OrderType.MARKET,
                reduce_only=True,
            )
            try:
                self.close_with_retry(rollback)
            except ExecutionError as rollback_error:
                logger.critical(
                    f"ROLLBACK FAILED for {first.describe()}: {rollback_error}; "
                    f"residual {first.symbol.value} exposure remains"
                )
                raise RollbackFailedError(
                    f"rollback of {first.describe()} failed after second leg failure: "
                    f"{rollback_error}",
                    residual={first.symbol: first.side.sign * first_qty},
                ) from rollback_error

            raise PartialFillError(
                f"second leg {second.describe()} failed ({second_error}); first leg rolled back",
                filled=first,
                failed=second,
            ) from second_error

        logger.info(f"Opened second leg: {second.describe()} filled {second_qty}")
        return self._pair_fill(first, first_qty, second, second_qty)

    def close_pair(self, first: OrderRequest, second: OrderRequest) -> PairFill:
        """
        Close the first leg, then the second.

        A short fill on the first close does not stop the second close;
        every unfilled remainder is reported together.

        Raises:
            ExecutionError: First close failed (both legs still open)
            ResidualExposureError: Second close failed, or a close filled
                short; residual holds the signed quantity still open per leg
        """
        residual: Dict[Symbol, float] = {}

        first_qty = self.close_with_retry(first)
        first_left = unfilled_qty(first, first_qty)
        if first_left:
            logger.critical(
                f"Close of first leg {first.describe()} filled {first_qty}; {first_left} still open"
            )
            residual[first.symbol] = open_qty(first, first_left)
        else:
            logger.info(f"Closed first leg: {first.describe()} filled {first_qty}")

        try:
            second_qty = self.close_with_retry(second)
        except ExecutionError as e:
            # A closed leg is never reopened; the open leg is flagged for repair
            logger.critical(
                f"Close of second leg {second.describe()} failed: {e}; residual exposure"
            )
            residual[second.symbol] = open_qty(second, second.qty)
            raise ResidualExposureError(
                f"close of {second.describe()} failed after first leg closed: {e}",
                residual=residual,
            ) from e

        second_left = unfilled_qty(second, second_qty)
        if second_left:
            logger.critical(
                f"Close of second leg {second.describe()} filled {second_qty}; {second_left} still open"
            )
            residual[second.symbol] = open_qty(second, second_left)
        else:
            logger.info(f"Closed second leg: {second.describe()} filled {second_qty}")

        if residual:
            raise ResidualExposureError(
                "close_pair filled short, still open: "
                + ", ".join(f"{s.value}={q}" for s, q in residual.items()),
                residual=residual,
            )
        return self._pair_fill(first, first_qty, second, second_qty)

    def repair_residual(
        self,
        position: PositionSnapshot,
        limit_prices: Optional[Dict[Symbol, float]] = None,
    ) -> List[OrderRequest]:
        """
        Flatten every open leg of a snapshot.

        Idempotent: a flat snapshot submits nothing. A leg that fills short
        keeps its remainder in the residual and the other leg is still tried.

        Returns:
            The closing orders that filled in full

        Raises:
            ResidualExposureError: A leg could not be fully closed; residual lists what is still open
        """
        legs = [(Symbol.ETH_PERP, position.eth.qty), (Symbol.BTC_PERP, position.btc.qty)]
        remaining = {symbol: qty for symbol, qty in legs if qty != 0}
        if not remaining:
            logger.debug("repair_residual: snapshot already flat")
            return []

        closed: List[OrderRequest] = []
        for symbol, qty in legs:
            if qty == 0:
                continue
            order = OrderRequest(
                symbol=symbol,
                side=OrderSide.close_for_qty(qty),
                qty=abs(qty),
                order_type=OrderType.MARKET,
                limit_price=(limit_prices or {}).get(symbol),
                reduce_only=True,
            )
            try:
                filled = self.close_with_retry(order)
            except ExecutionError as e:
                logger.critical(f"Residual repair of {order.describe()} failed: {e}")
                raise ResidualExposureError(
                    f"residual repair of {order.describe()} failed: {e}",
                    residual=remaining,
                ) from e

            left = unfilled_qty(order, filled)
            if left:
                remaining[symbol] = open_qty(order, left)
                logger.critical(
                    f"Residual repair of {order.describe()} filled {filled}; {left} still open"
                )
                continue
            remaining.pop(symbol)
            closed.append(order)
            logger.warning(f"Residual repaired: {order.describe()}")

        if remaining:
            raise ResidualExposureError(
                "residual repair filled short, still open: "
                + ", ".join(f"{s.value}={q}" for s, q in remaining.items()),
                residual=remaining,
            )
        return closed

    @staticmethod
    def _pair_fill(
        first: OrderRequest,
        first_qty: float,
        second: OrderRequest,
        second_qty: float,
    ) -> PairFill:
        fills = {first.symbol: first_qty, second.symbol: second_qty}
        return PairFill(
            eth_qty=fills.get(Symbol.ETH_PERP, 0.0),
            btc_qty=fills.get(Symbol.BTC_PERP, 0.0),
        )
