"""
Discord webhook alerter for pair trading operations.

Features:
- Rich embeds color-coded by alert level
- Retry with exponential backoff on timeouts, transport errors and 5xx
- Rate limit handling (Discord 30 req/min, honours 429 retry_after)
- Per-message throttle so a repeating alert does not flood the channel
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import requests

from pairtrader.alerters.base import Alert

logger = logging.getLogger(__name__)


# Discord embed color codes
COLORS = {
    'CRITICAL': 0xFF0000,  # Red
    'WARNING': 0xFFAA00,   # Orange
    'INFO': 0x0099FF,      # Blue
}

WEBHOOK_PREFIX = 'https://discord.com/api/webhooks/'


class DiscordAlerter:
    """
    AlertSink that posts to a Discord webhook.

    Usage:
        alerter = DiscordAlerter(webhook_url)
        if alerter.test_connection():
            alerter.send(Alert(AlertLevel.CRITICAL, "residual exposure"))
    """

    # Discord rate limit: 30 requests per 60 seconds
    RATE_LIMIT_WINDOW = 60
    RATE_LIMIT_MAX = 25  # Stay under limit

    def __init__(
        self,
        webhook_url: str,
        username: str = 'Pair Trader',
        avatar_url: Optional[str] = None,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
        throttle_seconds: int = 300,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize Discord alerter.

        Args:
            webhook_url: Discord webhook URL
            username: Bot username to display
            avatar_url: Optional avatar URL for bot
            retry_attempts: Number of attempts per message
            retry_delay: Base delay between retries (exponential backoff)
            throttle_seconds: Suppress identical messages within this window
            session: Optional requests session (defaults to module-level requests)
            sleep: Sleep function (tests pass a no-op)
        """
        if not webhook_url:
            raise ValueError("Discord webhook URL is required")

        if not webhook_url.startswith(WEBHOOK_PREFIX):
            raise ValueError("Invalid Discord webhook URL format")

        self.webhook_url = webhook_url
        self.username = username
        self.avatar_url = avatar_url
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self._http = session or requests
        self._sleep = sleep

        # Rate limiting
        self._request_times: List[float] = []

        # Alert tracking for throttling
        self._sent_alerts: Dict[str, float] = {}
        self._throttle_seconds = throttle_seconds

    def _check_rate_limit(self) -> bool:
        """Check if we're within rate limits."""
        now = time.time()
        self._request_times = [
            t for t in self._request_times
            if now - t < self.RATE_LIMIT_WINDOW
        ]
        return len(self._request_times) < self.RATE_LIMIT_MAX

    def _record_request(self) -> None:
        self._request_times.append(time.time())

    def _is_throttled(self, key: str) -> bool:
        if key in self._sent_alerts:
            elapsed = time.time() - self._sent_alerts[key]
            return elapsed < self._throttle_seconds
        return False

    def _record_alert(self, key: str) -> None:
        self._sent_alerts[key] = time.time()

    def _send_webhook(self, payload: Dict[str, Any]) -> bool:
        """Send payload to Discord webhook with retry logic."""
        if not self._check_rate_limit():
            wait_time = self.RATE_LIMIT_WINDOW - (
                time.time() - min(self._request_times)
            )
            logger.info(f"Rate limited, waiting {wait_time:.1f}s")
            self._sleep(wait_time)

        for attempt in range(self.retry_attempts):
            try:
                response = self._http.post(
                    self.webhook_url,
                    json=payload,
                    timeout=10
                )

                self._record_request()

                if response.status_code == 204:
                    return True

                if response.status_code == 429:
                    try:
                        retry_after = float(response.json().get('retry_after', 5))
                    except ValueError:
                        retry_after = 5.0
                    logger.warning(f"Discord rate limited, retry after {retry_after}s")
                    self._sleep(retry_after)
                    continue

                if response.status_code >= 500:
                    logger.warning(
                        f"Discord server error {response.status_code} (attempt {attempt + 1})"
                    )
                    self._sleep(self.retry_delay * (2 ** attempt))
                    continue

                if response.status_code >= 400:
                    logger.error(
                        f"Discord webhook error: {response.status_code} - "
                        f"{response.text[:200]}"
                    )
                    return False

                return True

            except requests.exceptions.Timeout:
                logger.warning(f"Discord webhook timeout (attempt {attempt + 1})")
                self._sleep(self.retry_delay * (2 ** attempt))

            except requests.exceptions.RequestException as e:
                logger.error(f"Discord webhook request error: {e}")
                self._sleep(self.retry_delay * (2 ** attempt))

        logger.error(f"Discord webhook failed after {self.retry_attempts} attempts")
        return False

    def _create_alert_embed(self, alert: Alert) -> Dict[str, Any]:
        level = alert.level.value.upper()
        return {
            'title': f'[{level}] Pair Trader',
            'description': alert.message,
            'color': COLORS.get(level, COLORS['INFO']),
            'footer': {
                'text': f"Raised: {alert.timestamp.strftime('%Y-%m-%d %H:%M UTC')}"
            },
            'timestamp': datetime.now(timezone.utc).isoformat(),
        }

    def _payload(self, **body: Any) -> Dict[str, Any]:
        payload = {'username': self.username, **body}
        if self.avatar_url:
            payload['avatar_url'] = self.avatar_url
        return payload

    def send(self, alert: Alert) -> bool:
        """
        Send an alert embed.

        Args:
            alert: Alert to deliver

        Returns:
            True if sent (or throttled as a duplicate)
        """
        key = f"{alert.level.value}:{alert.message}"

        if self._is_throttled(key):
            logger.debug(f"Discord alert throttled: {key}")
            return True

        success = self._send_webhook(self._payload(embeds=[self._create_alert_embed(alert)]))

        if success:
            self._record_alert(key)
            logger.info(f"Discord alert sent: [{alert.level.value}] {alert.message[:80]}")

        return success

    def send_daemon_status(self, status: str, details: str = '') -> bool:
        """
        Send daemon status update.

        Args:
            status: Status message (e.g., 'Started', 'Stopped', 'Error')
            details: Additional details
        """
        if 'error' in status.lower():
            color = COLORS['CRITICAL']
        elif 'stopped' in status.lower():
            color = COLORS['WARNING']
        else:
            color = COLORS['INFO']

        embed = {
            'title': f'Pair Trader: {status}',
            'description': details or 'No additional details',
            'color': color,
            'timestamp': datetime.now(timezone.utc).isoformat()
        }
        return self._send_webhook(self._payload(embeds=[embed]))

    def test_connection(self) -> bool:
        success = self._send_webhook(self._payload(content='Pair Trader connected successfully!'))

        if success:
            logger.info("Discord connection test passed")
        else:
            logger.error("Discord connection test failed")

        return success

