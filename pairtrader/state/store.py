"""
Durable storage for StrategyState.

One logical writer per store. JsonStateStore writes a temp file and
replaces the target so a crash mid-write never leaves a torn file.
"""

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

from pairtrader.state.machine import StateError, StrategyState

logger = logging.getLogger(__name__)

STATE_FILE_VERSION = 1


class PersistenceError(StateError):
    """The durable store could not be read or written."""


class StateStore(Protocol):
    """Protocol for state persistence."""
    def save(self, state: StrategyState) -> None: ...
    def load(self) -> Optional[StrategyState]: ...


class JsonStateStore:
    """
    StrategyState persisted as a JSON document on disk.

    Usage:
        store = JsonStateStore(Path("data/pairtrader_state.json"))
        store.save(machine.state)
        state = store.load()  # None if never saved
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def save(self, state: StrategyState) -> None:
        payload = {
            "version": STATE_FILE_VERSION,
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "state": state.to_dict(),
        }
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", dir=str(self.path.parent)
            )
            with os.fdopen(fd, "w") as f:
                json.dump(payload, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as e:
            raise PersistenceError(f"failed to save state to {self.path}: {e}") from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)

        logger.debug(f"Saved state {state.status.value} to {self.path}")

    def load(self) -> Optional[StrategyState]:
        if not self.path.exists():
            return None
        try:
            with open(self.path) as f:
                payload = json.load(f)
            state = StrategyState.from_dict(payload["state"])
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise PersistenceError(f"failed to load state from {self.path}: {e}") from e

        logger.info(f"Loaded state {state.status.value} from {self.path}")
        return state


class InMemoryStateStore:
    """Store kept in memory; used by backtests and tests."""

    def __init__(self, state: Optional[StrategyState] = None) -> None:
        self._state = state
        self.save_count = 0
        self.fail_next_save = False

    def save(self, state: StrategyState) -> None:
        if self.fail_next_save:
            self.fail_next_save = False
            raise PersistenceError("simulated save failure")
        self._state = StrategyState.from_dict(state.to_dict())
        self.save_count += 1

    def load(self) -> Optional[StrategyState]:
        if self._state is None:
            return None
        return StrategyState.from_dict(self._state.to_dict())
