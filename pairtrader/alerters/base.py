"""
Alert types and sinks.

Alert delivery is best-effort: a sink returns False (and logs) when it
cannot deliver, and never raises into trading code.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)


class AlertLevel(Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


@dataclass
class Alert:
    level: AlertLevel
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }


class AlertSink(Protocol):
    """Protocol for alert delivery."""
    def send(self, alert: Alert) -> bool: ...


class InMemoryAlerter:
    """Collects alerts in a list."""

    def __init__(self) -> None:
        self.alerts: List[Alert] = []

    def send(self, alert: Alert) -> bool:
        self.alerts.append(alert)
        return True


class LoggingAlerter:
    """Writes alerts to the log at a matching level."""

    _LEVELS = {
        AlertLevel.CRITICAL: logging.CRITICAL,
        AlertLevel.WARNING: logging.WARNING,
        AlertLevel.INFO: logging.INFO,
    }

    def send(self, alert: Alert) -> bool:
        logger.log(self._LEVELS[alert.level], f"ALERT [{alert.level.value}] {alert.message}")
        return True


class AlertDispatcher:
    """Fans an alert out to every configured sink."""

    def __init__(self, sinks: Optional[List[AlertSink]] = None) -> None:
        self.sinks: List[AlertSink] = list(sinks or [])

    def add_sink(self, sink: AlertSink) -> None:
        self.sinks.append(sink)

    def send(self, alert: Alert) -> bool:
        """
        Deliver to all sinks.

        Returns:
            True only if every sink accepted the alert
        """
        delivered = True
        for sink in self.sinks:
            if not sink.send(alert):
                logger.warning(f"Alert sink {type(sink).__name__} failed: {alert.message}")
                delivered = False
        return delivered
