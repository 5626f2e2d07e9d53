"""
Startup reconciliation of a persisted StrategyState.

recover_state() only diagnoses. It never trades: the orchestrator reads
the RecoveryReport and decides what to execute.
"""

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pairtrader.alerters.base import Alert, AlertLevel
from pairtrader.state.machine import PositionSnapshot, StrategyState, StrategyStatus

logger = logging.getLogger(__name__)


class RecoveryAction(Enum):
    REPAIR_RESIDUAL = "repair_residual"


@dataclass
class RecoveryReport:
    """Result of reconciling a persisted state at startup."""

    state: StrategyState
    anomalies: List[str] = field(default_factory=list)
    actions: List[RecoveryAction] = field(default_factory=list)
    alerts: List[Alert] = field(default_factory=list)
    repair_position: Optional[PositionSnapshot] = None
    cooldown_expired: bool = False

    @property
    def is_clean(self) -> bool:
        return not self.anomalies


def recover_state(state: Optional[StrategyState], now: datetime) -> RecoveryReport:
    """
    Diagnose a persisted state before the live loop starts.

    - Expired COOLDOWN moves to FLAT.
    - IN_POSITION without a hedged position is an anomaly: empty legs reset
      to FLAT, a single open leg is a residual.
    - FLAT/COOLDOWN holding open legs is an anomaly needing repair.

    Args:
        state: Persisted state, or None when nothing was stored
        now: Current time

    Returns:
        RecoveryReport whose state always passes StrategyState.validate()
    """
    if state is None:
        return RecoveryReport(state=StrategyState())

    state = copy.deepcopy(state)
    report = RecoveryReport(state=state)

    if (
        state.status == StrategyStatus.COOLDOWN
        and state.cooldown_until is not None
        and now >= state.cooldown_until
    ):
        state.status = StrategyStatus.FLAT
        state.cooldown_until = None
        report.cooldown_expired = True
        logger.info("Recovery: cooldown already expired, state set to FLAT")

    if state.status == StrategyStatus.COOLDOWN and state.cooldown_until is None:
        report.anomalies.append("COOLDOWN without cooldown_until")
        state.status = StrategyStatus.FLAT
        report.alerts.append(
            Alert(AlertLevel.WARNING, "Recovery: COOLDOWN had no end time, reset to FLAT", now)
        )

    position = state.position

    if state.status == StrategyStatus.IN_POSITION:
        if position is None or position.is_flat:
            report.anomalies.append("IN_POSITION with no open legs")
            report.alerts.append(
                Alert(
                    AlertLevel.CRITICAL,
                    "Recovery: state was IN_POSITION but no legs are open; reset to FLAT",
                    now,
                )
            )
            state.status = StrategyStatus.FLAT
            state.position = None
        elif position.has_residual:
            report.anomalies.append("IN_POSITION with a single open leg")
            _flag_repair(report, position, now)
            state.status = StrategyStatus.FLAT
    elif position is not None and not position.is_flat:
        report.anomalies.append(
            f"{state.status.value.upper()} with open legs "
            f"(eth={position.eth.qty}, btc={position.btc.qty})"
        )
        _flag_repair(report, position, now)
        if position.is_hedged:
            # Both legs open contradicts a flat status; close them, do not adopt them
            state.position = None
    elif position is not None:
        state.position = None

    for anomaly in report.anomalies:
        logger.warning(f"Recovery anomaly: {anomaly}")

    state.validate()
    return report


def _flag_repair(report: RecoveryReport, position: PositionSnapshot, now: datetime) -> None:
    report.actions.append(RecoveryAction.REPAIR_RESIDUAL)
    report.repair_position = copy.deepcopy(position)
    report.alerts.append(
        Alert(
            AlertLevel.CRITICAL,
            f"Recovery: residual exposure eth={position.eth.qty} btc={position.btc.qty}; "
            f"repair required",
            now,
        )
    )
