"""
Order transports.

An OrderExecutor submits one leg and returns the filled quantity. The
coordinator owns retries and hedge integrity; transports only classify
failures as TransientOrderError or RejectedOrderError.
"""

import logging
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional, Protocol, Union

from pairtrader.execution.orders import OrderRequest
from pairtrader.models import Symbol

logger = logging.getLogger(__name__)


class OrderExecutor(Protocol):
    """Protocol for order transports."""
    def submit(self, order: OrderRequest) -> float: ...
    def close(self, order: OrderRequest) -> float: ...


@dataclass
class ExecutorCall:
    action: str  # "submit" or "close"
    order: OrderRequest


MockResponse = Union[float, Exception]


class MockOrderExecutor:
    """
    Scripted executor for tests.

    Responses are queued per symbol and consumed in order by submit() and
    close(). A float is the filled quantity; an exception instance is
    raised. With an empty queue the full requested quantity fills.

    Usage:
        executor = MockOrderExecutor()
        executor.queue(Symbol.BTC_PERP, RejectedOrderError("no margin"))
        coordinator = ExecutionCoordinator(executor, RetryPolicy(3, 0))
    """

    def __init__(self) -> None:
        self._responses: Dict[Symbol, Deque[MockResponse]] = defaultdict(deque)
        self.calls: List[ExecutorCall] = []

    def queue(self, symbol: Symbol, *responses: MockResponse) -> None:
        self._responses[symbol].extend(responses)

    def calls_for(self, symbol: Symbol, action: Optional[str] = None) -> List[ExecutorCall]:
        return [
            c for c in self.calls
            if c.order.symbol == symbol and (action is None or c.action == action)
        ]

    def _respond(self, action: str, order: OrderRequest) -> float:
        self.calls.append(ExecutorCall(action=action, order=order))
        queue = self._responses[order.symbol]
        if not queue:
            return order.qty
        response = queue.popleft()
        if isinstance(response, Exception):
            raise response
        return float(response)

    def submit(self, order: OrderRequest) -> float:
        return self._respond("submit", order)

    def close(self, order: OrderRequest) -> float:
        return self._respond("close", order)


class PaperOrderExecutor:
    """
    Fills every order in full and tracks the resulting net position.

    Used for paper trading when no venue connection is wanted.
    """

    def __init__(self) -> None:
        self.positions: Dict[Symbol, float] = {Symbol.ETH_PERP: 0.0, Symbol.BTC_PERP: 0.0}
        self.fills: List[ExecutorCall] = []

    def _fill(self, action: str, order: OrderRequest) -> float:
        self.positions[order.symbol] = round(
            self.positions.get(order.symbol, 0.0) + order.side.sign * order.qty, 12
        )
        self.fills.append(ExecutorCall(action=action, order=order))
        logger.info(
            f"PAPER {action.upper()}: {order.describe()} "
            f"(net {order.symbol.value}={self.positions[order.symbol]})"
        )
        return order.qty

    def submit(self, order: OrderRequest) -> float:
        return self._fill("submit", order)

    def close(self, order: OrderRequest) -> float:
        return self._fill("close", order)
