"""
Pytest configuration and shared fixtures for context engine tests.
"""
import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest


# Wednesday; day_of_week == 3 with 0 = Sunday
FROZEN_NOW = datetime(2026, 3, 4, 10, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


@pytest.fixture
def temp_db():
    """Create a temporary database file for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    yield db_path

    # Cleanup
    if os.path.exists(db_path):
        os.unlink(db_path)


@pytest.fixture
def clock():
    """A clock frozen at FROZEN_NOW."""
    return FrozenClock(FROZEN_NOW)
