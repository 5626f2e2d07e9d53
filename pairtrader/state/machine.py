"""
Strategy state machine: FLAT -> IN_POSITION -> FLAT | COOLDOWN -> FLAT.

The StateMachine owns the current StrategyState and is the only component
that changes it. Every change goes through enter(), exit(), update() or
hydrate(); hydrate() re-validates anything restored from storage.

A position leg quantity is signed: positive = long, negative = short.
A snapshot with exactly one nonzero leg is a residual and is never a
valid IN_POSITION state. A residual may be recorded against FLAT or
COOLDOWN so it survives a restart and gets repaired.
"""

import copy
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional

from pairtrader.config import RiskConfig
from pairtrader.models import ExitReason, TradeDirection

logger = logging.getLogger(__name__)


class StateError(Exception):
    """Base class for state machine and persistence failures."""


class InvalidTransitionError(StateError):
    """A transition was requested from a state that does not allow it."""


class InvalidStateError(StateError):
    """A state or position violates the hedge invariants."""


class StrategyStatus(Enum):
    FLAT = "flat"
    IN_POSITION = "in_position"
    COOLDOWN = "cooldown"


# =============================================================================
# POSITION
# =============================================================================


@dataclass
class PositionLeg:
    """One side of the pair."""

    qty: float = 0.0          # Signed quantity
    avg_price: float = 0.0
    notional: float = 0.0

    @property
    def is_open(self) -> bool:
        return self.qty != 0

    def to_dict(self) -> Dict[str, Any]:
        return {"qty": self.qty, "avg_price": self.avg_price, "notional": self.notional}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PositionLeg":
        return cls(
            qty=float(data.get("qty", 0.0)),
            avg_price=float(data.get("avg_price", 0.0)),
            notional=float(data.get("notional", 0.0)),
        )


@dataclass
class PositionSnapshot:
    """An open (or partially open) hedge."""

    direction: TradeDirection
    entry_time: datetime
    eth: PositionLeg = field(default_factory=PositionLeg)
    btc: PositionLeg = field(default_factory=PositionLeg)

    @property
    def is_flat(self) -> bool:
        return not self.eth.is_open and not self.btc.is_open

    @property
    def is_hedged(self) -> bool:
        return self.eth.is_open and self.btc.is_open

    @property
    def has_residual(self) -> bool:
        return self.eth.is_open != self.btc.is_open

    def holding_hours(self, now: datetime) -> float:
        return max((now - self.entry_time).total_seconds() / 3600.0, 0.0)

    def unrealized_pnl(self, eth_price: float, btc_price: float) -> float:
        """Mark-to-market PnL of the open legs at the given prices."""
        pnl = 0.0
        if self.eth.is_open:
            pnl += self.eth.qty * (eth_price - self.eth.avg_price)
        if self.btc.is_open:
            pnl += self.btc.qty * (btc_price - self.btc.avg_price)
        return pnl

    def to_dict(self) -> Dict[str, Any]:
        return {
            "direction": self.direction.value,
            "entry_time": self.entry_time.isoformat(),
            "eth": self.eth.to_dict(),
            "btc": self.btc.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PositionSnapshot":
        return cls(
            direction=TradeDirection(data["direction"]),
            entry_time=datetime.fromisoformat(data["entry_time"]),
            eth=PositionLeg.from_dict(data.get("eth", {})),
            btc=PositionLeg.from_dict(data.get("btc", {})),
        )


# =============================================================================
# STATE
# =============================================================================


@dataclass
class StrategyState:
    """Persisted strategy status."""

    status: StrategyStatus = StrategyStatus.FLAT
    position: Optional[PositionSnapshot] = None
    cooldown_until: Optional[datetime] = None

    @property
    def has_residual(self) -> bool:
        return self.position is not None and self.position.has_residual

    def validate(self) -> None:
        """
        Check the hedge invariants.

        Raises:
            InvalidStateError: If the state is inconsistent
        """
        if self.status == StrategyStatus.IN_POSITION:
            if self.position is None:
                raise InvalidStateError("IN_POSITION requires a position")
            if not self.position.is_hedged:
                raise InvalidStateError("IN_POSITION requires both legs open")
        elif self.position is not None and self.position.is_hedged:
            raise InvalidStateError(f"{self.status.value} must not hold a hedged position")

        if self.status == StrategyStatus.COOLDOWN and self.cooldown_until is None:
            raise InvalidStateError("COOLDOWN requires cooldown_until")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "position": self.position.to_dict() if self.position else None,
            "cooldown_until": self.cooldown_until.isoformat() if self.cooldown_until else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StrategyState":
        position = data.get("position")
        cooldown_until = data.get("cooldown_until")
        return cls(
            status=StrategyStatus(data["status"]),
            position=PositionSnapshot.from_dict(position) if position else None,
            cooldown_until=datetime.fromisoformat(cooldown_until) if cooldown_until else None,
        )


# =============================================================================
# STATE MACHINE
# =============================================================================


class StateMachine:
    """
    Owns and transitions the StrategyState.

    Usage:
        machine = StateMachine(RiskConfig())
        machine.enter(position, now)
        machine.exit(ExitReason.STOP_LOSS, now)   # -> COOLDOWN for 24h
        machine.update(now + timedelta(hours=24))  # -> FLAT
    """

    def __init__(self, risk: Optional[RiskConfig] = None) -> None:
        self.risk = risk or RiskConfig()
        self._state = StrategyState()

    @property
    def state(self) -> StrategyState:
        """A copy of the current state."""
        return copy.deepcopy(self._state)

    @property
    def status(self) -> StrategyStatus:
        return self._state.status

    @property
    def position(self) -> Optional[PositionSnapshot]:
        return copy.deepcopy(self._state.position)

    def enter(self, position: PositionSnapshot, now: datetime) -> None:
        """
        FLAT -> IN_POSITION.

        Raises:
            InvalidTransitionError: If not FLAT or an unrepaired residual is held
            InvalidStateError: If the position is not hedged
        """
        if self._state.status != StrategyStatus.FLAT:
            raise InvalidTransitionError(
                f"cannot enter from {self._state.status.value}"
            )
        if self._state.has_residual:
            raise InvalidTransitionError("cannot enter while a residual leg is unrepaired")
        if not position.is_hedged:
            raise InvalidStateError("entry position must have both legs open")

        self._state = StrategyState(
            status=StrategyStatus.IN_POSITION,
            position=copy.deepcopy(position),
        )
        logger.info(f"State FLAT -> IN_POSITION ({position.direction.value}) at {now.isoformat()}")

    def exit(self, reason: ExitReason, now: datetime) -> StrategyStatus:
        """
        IN_POSITION -> COOLDOWN (stop loss) or FLAT.

        Returns:
            The resulting status

        Raises:
            InvalidTransitionError: If not IN_POSITION
        """
        if self._state.status != StrategyStatus.IN_POSITION:
            raise InvalidTransitionError(
                f"cannot exit from {self._state.status.value}"
            )

        if reason == ExitReason.STOP_LOSS and self.risk.cooldown_hours > 0:
            until = now + timedelta(hours=self.risk.cooldown_hours)
            self._state = StrategyState(status=StrategyStatus.COOLDOWN, cooldown_until=until)
            logger.info(
                f"State IN_POSITION -> COOLDOWN ({reason.value}) until {until.isoformat()}"
            )
        else:
            self._state = StrategyState(status=StrategyStatus.FLAT)
            logger.info(f"State IN_POSITION -> FLAT ({reason.value})")
        return self._state.status

    def update(self, now: datetime) -> bool:
        """
        COOLDOWN -> FLAT once now >= cooldown_until.

        Returns:
            True if the cooldown ended on this call
        """
        state = self._state
        if state.status != StrategyStatus.COOLDOWN or state.cooldown_until is None:
            return False
        if now < state.cooldown_until:
            return False

        self._state = StrategyState(status=StrategyStatus.FLAT, position=state.position)
        logger.info(f"State COOLDOWN -> FLAT at {now.isoformat()}")
        return True

    def hydrate(self, state: StrategyState) -> None:
        """
        Restore a persisted state after re-validating it.

        Raises:
            InvalidStateError: If the state violates an invariant (current state kept)
        """
        state.validate()
        self._state = copy.deepcopy(state)

    def record_residual(self, residual: Optional[PositionSnapshot]) -> None:
        """Attach (or clear, with None) residual legs to the current non-position state."""
        self.hydrate(replace(self._state, position=copy.deepcopy(residual)))
