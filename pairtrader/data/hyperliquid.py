"""
Hyperliquid info endpoint client and account equity source.

All read-only market and account queries go through POST {base_url}/info.
"""

import logging
from typing import Any, Optional, Protocol

import requests

from pairtrader.data.errors import (
    DataTimeoutError,
    HttpError,
    MissingDataError,
    RateLimitedError,
)
from pairtrader.execution.rate_limiter import NoopRateLimiter, RateLimiter

logger = logging.getLogger(__name__)


class HyperliquidInfoClient:
    """
    Thin wrapper around the /info endpoint.

    Usage:
        info = HyperliquidInfoClient("https://api.hyperliquid.xyz", FixedRateLimiter(200))
        mids = info.post({"type": "allMids"})
    """

    def __init__(
        self,
        base_url: str,
        rate_limiter: Optional[RateLimiter] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
    ) -> None:
        self.url = f"{base_url.rstrip('/')}/info"
        self.rate_limiter = rate_limiter or NoopRateLimiter()
        self.session = session or requests.Session()
        self.timeout = timeout

    def post(self, body: dict) -> Any:
        """
        POST a query and return the decoded JSON.

        Raises:
            DataTimeoutError: Request timed out
            RateLimitedError: HTTP 429
            HttpError: Any other transport failure, HTTP error or bad JSON
        """
        self.rate_limiter.wait()
        try:
            response = self.session.post(self.url, json=body, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise DataTimeoutError(f"info request {body.get('type')} timed out") from e
        except requests.exceptions.RequestException as e:
            raise HttpError(f"info request {body.get('type')} failed: {e}") from e

        if response.status_code == 429:
            raise RateLimitedError(f"info request {body.get('type')} rate limited")
        if response.status_code >= 400:
            raise HttpError(
                f"info request {body.get('type')} HTTP {response.status_code}: "
                f"{response.text[:200]}"
            )
        try:
            return response.json()
        except ValueError as e:
            raise HttpError(f"info request {body.get('type')} returned invalid JSON") from e


class EquitySource(Protocol):
    """Protocol for account equity (EQUITY_RATIO capital mode)."""
    def fetch_equity(self) -> float: ...


class HyperliquidAccountSource:
    """Reads account value from clearinghouseState.marginSummary."""

    def __init__(self, info: HyperliquidInfoClient, user: str) -> None:
        if not user:
            raise ValueError("Hyperliquid user address is required")
        self.info = info
        self.user = user

    def fetch_equity(self) -> float:
        payload = self.info.post({"type": "clearinghouseState", "user": self.user})
        try:
            value = float(payload["marginSummary"]["accountValue"])
        except (KeyError, TypeError, ValueError) as e:
            raise MissingDataError(f"account value missing from clearinghouseState: {e}") from e
        logger.debug(f"Account equity: ${value:,.2f}")
        return value
