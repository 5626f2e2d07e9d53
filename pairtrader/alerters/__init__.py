"""
Alerting: alert types, sinks and the Discord webhook alerter.
"""

from pairtrader.alerters.base import (
    Alert,
    AlertDispatcher,
    AlertLevel,
    AlertSink,
    InMemoryAlerter,
    LoggingAlerter,
)
from pairtrader.alerters.discord_alerter import COLORS, DiscordAlerter

__all__ = [
    "Alert",
    "AlertDispatcher",
    "AlertLevel",
    "AlertSink",
    "InMemoryAlerter",
    "LoggingAlerter",
    "COLORS",
    "DiscordAlerter",
]
