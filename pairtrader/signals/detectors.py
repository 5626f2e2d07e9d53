"""
Crossing-based entry detection and priority-ordered exit detection.

Entry fires only when |Z| crosses into [entry_z, sl_z) from below while
FLAT. Occupancy of the zone is not enough, so a detector never fires on
the first bar it sees.

Exit priority (first match wins): STOP_LOSS, TAKE_PROFIT, TIME_STOP.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pairtrader.models import ExitReason, TradeDirection
from pairtrader.state.machine import PositionSnapshot, StrategyStatus

logger = logging.getLogger(__name__)


@dataclass
class EntrySignal:
    direction: TradeDirection
    zscore: float


@dataclass
class ExitSignal:
    reason: ExitReason
    zscore: Optional[float]


class EntrySignalDetector:
    """
    Detects upward crossings of |Z| through entry_z.

    Usage:
        detector = EntrySignalDetector(entry_z=1.5, sl_z=3.5)
        signal = detector.update(zscore, StrategyStatus.FLAT)
    """

    def __init__(self, entry_z: float, sl_z: float) -> None:
        self.entry_z = entry_z
        self.sl_z = sl_z
        self._prev_abs_z: Optional[float] = None

    @property
    def prev_abs_z(self) -> Optional[float]:
        return self._prev_abs_z

    def reset(self) -> None:
        self._prev_abs_z = None

    def update(
        self,
        zscore: Optional[float],
        status: StrategyStatus,
        entry_z: Optional[float] = None,
    ) -> Optional[EntrySignal]:
        """
        Evaluate one bar.

        The previous |Z| is always advanced, whatever the status, so the
        crossing is measured against the last bar actually observed.

        Args:
            zscore: Current z-score, None while warming up
            status: Current strategy status
            entry_z: Effective entry threshold for this bar (funding adjusted)

        Returns:
            EntrySignal on a crossing while FLAT, else None
        """
        if zscore is None:
            self._prev_abs_z = None
            return None

        threshold = self.entry_z if entry_z is None else entry_z
        prev = self._prev_abs_z
        abs_z = abs(zscore)
        self._prev_abs_z = abs_z

        if status != StrategyStatus.FLAT or prev is None:
            return None
        if not (prev < threshold <= abs_z < self.sl_z):
            return None

        direction = (
            TradeDirection.SHORT_ETH_LONG_BTC if zscore > 0
            else TradeDirection.LONG_ETH_SHORT_BTC
        )
        logger.info(f"Entry crossing: |Z| {prev:.3f} -> {abs_z:.3f} ({direction.value})")
        return EntrySignal(direction=direction, zscore=zscore)


class ExitSignalDetector:
    """Evaluates stop-loss, take-profit and time-stop exits while IN_POSITION."""

    def __init__(
        self,
        tp_z: float,
        sl_z: float,
        max_hold_hours: float,
        confirm_bars: int = 0,
    ) -> None:
        self.tp_z = tp_z
        self.sl_z = sl_z
        self.max_hold_hours = max_hold_hours
        self.confirm_bars = confirm_bars
        self._tp_count = 0

    def reset(self) -> None:
        self._tp_count = 0

    def update(
        self,
        zscore: Optional[float],
        status: StrategyStatus,
        position: Optional[PositionSnapshot],
        now: datetime,
    ) -> Optional[ExitSignal]:
        if status != StrategyStatus.IN_POSITION or position is None:
            self._tp_count = 0
            return None

        if zscore is not None:
            abs_z = abs(zscore)
            if abs_z >= self.sl_z:
                self._tp_count = 0
                return ExitSignal(reason=ExitReason.STOP_LOSS, zscore=zscore)

            if abs_z <= self.tp_z:
                self._tp_count += 1
                if self.confirm_bars == 0 or self._tp_count >= self.confirm_bars:
                    self._tp_count = 0
                    return ExitSignal(reason=ExitReason.TAKE_PROFIT, zscore=zscore)
            else:
                self._tp_count = 0

        if position.holding_hours(now) >= self.max_hold_hours:
            self._tp_count = 0
            return ExitSignal(reason=ExitReason.TIME_STOP, zscore=zscore)

        return None
