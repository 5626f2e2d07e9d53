"""
Signal detection for the ETH/BTC pair.
"""

from pairtrader.signals.detectors import (
    EntrySignal,
    EntrySignalDetector,
    ExitSignal,
    ExitSignalDetector,
)
from pairtrader.signals.pipeline import IndicatorOutput, SignalOutput, SignalPipeline

__all__ = [
    "EntrySignal",
    "EntrySignalDetector",
    "ExitSignal",
    "ExitSignalDetector",
    "IndicatorOutput",
    "SignalOutput",
    "SignalPipeline",
]
