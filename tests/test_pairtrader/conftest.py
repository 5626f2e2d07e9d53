"""
Shared fixtures for pair trader tests.

Provides a small-window Config, a scripted executor behind a zero-delay
coordinator, and in-memory store and alerter doubles.
"""

import pytest

from pairtrader.alerters.base import InMemoryAlerter
from pairtrader.config import Config
from pairtrader.execution.coordinator import ExecutionCoordinator
from pairtrader.execution.executors import MockOrderExecutor
from pairtrader.execution.orders import RetryPolicy
from pairtrader.state.store import InMemoryStateStore
from pairtrader.strategy.engine import StrategyEngine


@pytest.fixture
def config():
    """Default thresholds with short indicator windows."""
    cfg = Config()
    cfg.strategy.n_z = 10
    cfg.position.n_vol = 3
    return cfg


@pytest.fixture
def executor():
    return MockOrderExecutor()


@pytest.fixture
def coordinator(executor):
    """Coordinator with 3 attempts and no backoff sleep."""
    return ExecutionCoordinator(executor, RetryPolicy(max_attempts=3, base_delay_ms=0))


@pytest.fixture
def store():
    return InMemoryStateStore()


@pytest.fixture
def alerter():
    return InMemoryAlerter()


@pytest.fixture
def engine(config, coordinator, store, alerter):
    return StrategyEngine(config, coordinator, state_store=store, alerter=alerter)
