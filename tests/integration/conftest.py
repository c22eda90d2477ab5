"""
Live fake-target fixtures for integration tests.

Each test gets its own server and in-memory state, so created products
and accounts never leak between tests.
"""

import pytest

from tests.fake_target import LiveTarget, TargetState, issue_token

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin123"


@pytest.fixture
def target_state() -> TargetState:
    """Fake target state with the default admin account already registered."""
    return TargetState(users={ADMIN_EMAIL: ADMIN_PASSWORD})


@pytest.fixture
def live_target(target_state):
    """
    Start the fake target in a background thread.

    Yields:
        The running ``LiveTarget``; ``live_target.url`` is its base URL.
    """
    server = LiveTarget(target_state).start()
    yield server
    server.stop()


@pytest.fixture
def admin_token() -> str:
    return issue_token(ADMIN_EMAIL)
