"""Pytest fixtures for Life Ledger tests."""

from datetime import datetime, timedelta, timezone

import pytest

from lifeledger.config import LedgerConfig
from lifeledger.ledger import Ledger
from lifeledger.notifications import NotificationBus
from lifeledger.paths import StatePaths

ADMIN = "admin-alice"


class FakeClock:
    """Deterministic clock: every call advances one second."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 15, 9, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        current = self.now
        self.now = current + timedelta(seconds=1)
        return current


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger(clock):
    """In-memory ledger administered by ADMIN."""
    return Ledger(ADMIN, clock=clock)


@pytest.fixture
def bus():
    """Notification bus, closed after the test."""
    bus = NotificationBus()
    yield bus
    bus.close()


@pytest.fixture
def received(bus):
    """List that collects every notification delivered on bus."""
    items = []
    bus.subscribe(items.append)
    return items


@pytest.fixture
def temp_state(tmp_path):
    """Create a temporary state directory for testing.

    Args:
        tmp_path: pytest's built-in temporary directory fixture

    Returns:
        Path to temporary state root
    """
    state_root = tmp_path / "test_state"
    state_root.mkdir()
    return state_root


@pytest.fixture
def state_config(temp_state):
    return LedgerConfig(state_path=temp_state)


@pytest.fixture
def state_paths(state_config):
    return StatePaths.from_config(state_config)
