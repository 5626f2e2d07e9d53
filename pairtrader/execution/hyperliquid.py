"""
Hyperliquid order transport.

Orders are posted to {base_url}/exchange as IOC limit orders (a market
order on Hyperliquid is an aggressive IOC limit). Request signing is
delegated to an injected signer so no key material lives in this module.

Failure classification:
- timeouts, connection errors, HTTP 429 and 5xx -> TransientOrderError
- other HTTP errors, venue "err" status, per-order errors -> RejectedOrderError
"""

import logging
import time
from typing import Any, Callable, Dict, Optional

import requests

from pairtrader.config import OrderType
from pairtrader.execution.orders import (
    OrderRequest,
    RejectedOrderError,
    TransientOrderError,
)
from pairtrader.execution.rate_limiter import NoopRateLimiter, RateLimiter
from pairtrader.models import Symbol

logger = logging.getLogger(__name__)

# Perp asset indices on Hyperliquid mainnet
DEFAULT_ASSET_IDS: Dict[Symbol, int] = {
    Symbol.BTC_PERP: 0,
    Symbol.ETH_PERP: 1,
}

# signer(action, nonce) -> full signed request body
Signer = Callable[[Dict[str, Any], int], Dict[str, Any]]


def _fmt(value: float) -> str:
    """Hyperliquid wire format: decimal string without trailing zeros."""
    text = f"{value:.8f}".rstrip("0").rstrip(".")
    return text or "0"


class HyperliquidOrderExecutor:
    """
    Submits single-leg orders to the Hyperliquid exchange endpoint.

    Usage:
        executor = HyperliquidOrderExecutor(
            base_url="https://api.hyperliquid.xyz",
            signer=my_signer,
            rate_limiter=FixedRateLimiter(200),
        )
        filled = executor.submit(order)
    """

    def __init__(
        self,
        base_url: str,
        signer: Signer,
        rate_limiter: Optional[RateLimiter] = None,
        session: Optional[requests.Session] = None,
        asset_ids: Optional[Dict[Symbol, int]] = None,
        timeout: float = 10.0,
    ) -> None:
        self.url = f"{base_url.rstrip('/')}/exchange"
        self.signer = signer
        self.rate_limiter = rate_limiter or NoopRateLimiter()
        self.session = session or requests.Session()
        self.asset_ids = asset_ids or dict(DEFAULT_ASSET_IDS)
        self.timeout = timeout

    def _build_action(self, order: OrderRequest, reduce_only: bool) -> Dict[str, Any]:
        if order.limit_price is None:
            raise RejectedOrderError(f"{order.describe()}: a limit price is required")
        tif = "Ioc" if order.order_type == OrderType.MARKET else "Gtc"
        return {
            "type": "order",
            "orders": [
                {
                    "a": self.asset_ids[order.symbol],
                    "b": order.side.value == "buy",
                    "p": _fmt(order.limit_price),
                    "s": _fmt(order.qty),
                    "r": reduce_only,
                    "t": {"limit": {"tif": tif}},
                }
            ],
            "grouping": "na",
        }

    def _post(self, body: Dict[str, Any]) -> Dict[str, Any]:
        self.rate_limiter.wait()
        try:
            response = self.session.post(self.url, json=body, timeout=self.timeout)
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
            raise TransientOrderError(f"exchange request failed: {e}") from e
        except requests.exceptions.RequestException as e:
            raise RejectedOrderError(f"exchange request error: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientOrderError(
                f"exchange HTTP {response.status_code}: {response.text[:200]}"
            )
        if response.status_code >= 400:
            raise RejectedOrderError(
                f"exchange HTTP {response.status_code}: {response.text[:200]}"
            )
        try:
            return response.json()
        except ValueError as e:
            raise TransientOrderError(f"unparseable exchange response: {e}") from e

    @staticmethod
    def _filled_qty(payload: Dict[str, Any]) -> float:
        if payload.get("status") != "ok":
            raise RejectedOrderError(f"exchange error: {payload.get('response')}")
        statuses = (
            payload.get("response", {}).get("data", {}).get("statuses", [])
        )
        if not statuses:
            raise RejectedOrderError("exchange returned no order status")
        status = statuses[0]
        if "error" in status:
            raise RejectedOrderError(f"order rejected: {status['error']}")
        if "filled" in status:
            return float(status["filled"]["totalSz"])
        # Resting (unfilled) order
        return 0.0

    def _execute(self, order: OrderRequest, reduce_only: bool) -> float:
        action = self._build_action(order, reduce_only)
        nonce = int(time.time() * 1000)
        body = self.signer(action, nonce)
        logger.info(f"Submitting {order.describe()} @ {order.limit_price} (reduce_only={reduce_only})")
        filled = self._filled_qty(self._post(body))
        logger.info(f"Filled {filled} of {order.describe()}")
        return filled

    def submit(self, order: OrderRequest) -> float:
        return self._execute(order, reduce_only=order.reduce_only)

    def close(self, order: OrderRequest) -> float:
        return self._execute(order, reduce_only=True)
