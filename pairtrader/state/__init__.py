"""
Strategy state: state machine, durable store and startup recovery.
"""

from pairtrader.state.machine import (
    InvalidStateError,
    InvalidTransitionError,
    PositionLeg,
    PositionSnapshot,
    StateError,
    StateMachine,
    StrategyState,
    StrategyStatus,
)
from pairtrader.state.recovery import RecoveryAction, RecoveryReport, recover_state
from pairtrader.state.store import (
    InMemoryStateStore,
    JsonStateStore,
    PersistenceError,
    StateStore,
)

__all__ = [
    "InvalidStateError",
    "InvalidTransitionError",
    "PositionLeg",
    "PositionSnapshot",
    "StateError",
    "StateMachine",
    "StrategyState",
    "StrategyStatus",
    "RecoveryAction",
    "RecoveryReport",
    "recover_state",
    "InMemoryStateStore",
    "JsonStateStore",
    "PersistenceError",
    "StateStore",
]
