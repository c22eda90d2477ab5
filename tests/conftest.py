"""
Shared pytest fixtures for the surge test suite.

Fixtures follow the Arrange-Act-Assert (AAA) pattern and hand every
test a fresh aggregator, registry and scripted HTTP session, so tests
never share state or touch the network.

Key Concepts Demonstrated:
- Hand-written fakes instead of mocks for the HTTP session
- Factory fixtures for run configurations
- Faker-generated credentials so tests never depend on fixed accounts
"""

import os
from typing import Any

import pytest
from faker import Faker

# Select the testing configuration before surge reads the environment
os.environ["SURGE_ENV"] = "testing"

from surge.config import CleanupSettings, Credentials, RunConfig
from surge.http import TargetClient
from surge.metrics import MetricsAggregator
from surge.models import AcquisitionMethod, ExecutionContext, Pacing, Stage
from surge.registry import ResourceRegistry
from tests.fakes import FakeSession

# Initialize Faker for generating test data
fake = Faker()

BASE_URL = "http://target.test"


# -----------------------------------------------------------------------------
# HTTP Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def target_client(fake_session) -> TargetClient:
    """A ``TargetClient`` whose every request is answered by ``fake_session``."""
    return TargetClient(BASE_URL, timeout=2.0, session=fake_session)


# -----------------------------------------------------------------------------
# Run Configuration Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def credentials() -> Credentials:
    return Credentials(email=fake.email(), password=fake.password(length=12))


@pytest.fixture
def make_run_config(credentials):
    """
    Factory fixture for ``RunConfig`` values with fast test defaults.

    Returns:
        Function that builds a ``RunConfig``; keyword arguments replace
        individual fields.

    Example:
        def test_something(make_run_config):
            config = make_run_config(scenario="auth")
    """

    def _make(**overrides: Any) -> RunConfig:
        values: dict[str, Any] = {
            "name": "test_run",
            "base_url": BASE_URL,
            "scenario": "products",
            "stages": (Stage(0.2, 1),),
            "thresholds": (),
            "pacing": Pacing(0.0, 0.0),
            "credentials": credentials,
            "cleanup": CleanupSettings(batch_pause=0.0),
            "request_timeout": 2.0,
            "probe_timeout": 1.0,
            "graceful_stop": 5.0,
        }
        values.update(overrides)
        return RunConfig(**values)

    return _make


# -----------------------------------------------------------------------------
# Shared State Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def aggregator() -> MetricsAggregator:
    return MetricsAggregator()


@pytest.fixture
def registry() -> ResourceRegistry:
    return ResourceRegistry()


@pytest.fixture
def context(aggregator, registry) -> ExecutionContext:
    """An authenticated context with a fresh aggregator and registry."""
    return ExecutionContext(
        token="test-token",
        method=AcquisitionMethod.PROVIDED,
        aggregator=aggregator,
        registry=registry,
    )
