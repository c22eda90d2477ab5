"""
Unit tests for the credential bootstrap fallback chain.
"""

import logging
from datetime import datetime, timedelta, timezone

import jwt
import pytest
import requests

from surge.bootstrap import CredentialBootstrapper, acquire, token_expiry
from surge.config import Credentials
from surge.exceptions import BootstrapFailure
from surge.models import AcquisitionMethod
from tests.fakes import json_response, text_response


pytestmark = pytest.mark.unit

SECRET = "unit-test-secret-that-is-long-enough-for-hs256"


def _jwt(lifetime: timedelta) -> str:
    exp = datetime.now(timezone.utc) + lifetime
    return jwt.encode({"sub": "admin", "exp": exp}, SECRET, algorithm="HS256")


def test_valid_provided_token_is_used_without_login(make_run_config, target_client, fake_session):
    # Arrange
    config = make_run_config(credentials=Credentials("a@example.com", "pw", token="good"))
    fake_session.add("GET", "/auth/me", json_response(200, {"id": 1, "email": "a@example.com"}))

    # Act
    context = CredentialBootstrapper(config, target_client).acquire()

    # Assert
    assert context.method is AcquisitionMethod.PROVIDED
    assert context.token == "good"
    assert fake_session.paths() == ["/auth/me"]
    assert fake_session.calls[0]["timeout"] == config.probe_timeout


def test_invalid_provided_token_falls_back_to_auto_login(make_run_config, target_client, fake_session):
    # Arrange
    config = make_run_config(credentials=Credentials("a@example.com", "pw", token="stale"))
    fake_session.add("GET", "/auth/me", json_response(401, {"error": "invalid token"}))
    fake_session.add("POST", "/login", json_response(200, {"token": "fresh"}))

    # Act
    context = CredentialBootstrapper(config, target_client).acquire()

    # Assert
    assert context.method is AcquisitionMethod.AUTO_LOGIN
    assert context.token == "fresh"
    assert fake_session.paths() == ["/auth/me", "/login"]
    assert fake_session.calls[1]["json"] == {"email": "a@example.com", "password": "pw"}


def test_register_conflict_then_login_succeeds(make_run_config, target_client, fake_session):
    # Arrange
    config = make_run_config()
    fake_session.add(
        "POST",
        "/login",
        json_response(401, {"error": "invalid credentials"}),
        json_response(200, {"token": "after-register"}),
    )
    fake_session.add("POST", "/register", json_response(400, {"error": "User already exists"}))

    # Act
    context = CredentialBootstrapper(config, target_client).acquire()

    # Assert
    assert context.method is AcquisitionMethod.REGISTER_THEN_LOGIN
    assert context.token == "after-register"
    assert fake_session.paths() == ["/login", "/register", "/login"]


def test_register_created_then_login_succeeds(make_run_config, target_client, fake_session):
    fake_session.add(
        "POST",
        "/login",
        json_response(401, {}),
        json_response(200, {"token": "new-user"}),
    )
    fake_session.add("POST", "/register", json_response(201, {"id": 1}))

    context = acquire(make_run_config(), target_client)

    assert context.method is AcquisitionMethod.REGISTER_THEN_LOGIN


def test_everything_failing_raises_with_attempts(make_run_config, target_client, fake_session):
    # Arrange
    config = make_run_config(credentials=Credentials("a@example.com", "pw", token="bad"))
    fake_session.add("GET", "/auth/me", json_response(401, {}))
    fake_session.add("POST", "/login", json_response(401, {}))
    fake_session.add("POST", "/register", json_response(500, {}))

    # Act
    with pytest.raises(BootstrapFailure) as excinfo:
        CredentialBootstrapper(config, target_client).acquire()

    # Assert
    assert excinfo.value.attempts == [
        "identity probe: HTTP 401",
        "login: HTTP 401",
        "register: HTTP 500",
    ]
    assert "register: HTTP 500" in str(excinfo.value)
    # only one login: a failed register is not followed by a retry
    assert fake_session.paths() == ["/auth/me", "/login", "/register"]


def test_failed_retry_after_register_raises(make_run_config, target_client, fake_session):
    fake_session.add("POST", "/login", json_response(401, {}))
    fake_session.add("POST", "/register", json_response(400, {}))

    with pytest.raises(BootstrapFailure):
        acquire(make_run_config(), target_client)

    assert fake_session.paths() == ["/login", "/register", "/login"]


def test_login_200_without_token_is_a_failure(make_run_config, target_client, fake_session):
    # Arrange
    fake_session.add(
        "POST",
        "/login",
        text_response(200, "<html>maintenance</html>"),
        json_response(200, {"token": ""}),
    )
    fake_session.add("POST", "/register", json_response(500, {}))

    # Act / Assert
    with pytest.raises(BootstrapFailure) as excinfo:
        acquire(make_run_config(), target_client)
    assert any("invalid JSON" in attempt for attempt in excinfo.value.attempts)


def test_transport_errors_are_step_failures(make_run_config, target_client, fake_session):
    # Arrange
    fake_session.add(
        "POST",
        "/login",
        requests.ConnectionError("refused"),
        json_response(200, {"token": "recovered"}),
    )
    fake_session.add("POST", "/register", requests.Timeout("slow"), json_response(201, {}))

    # Act
    with pytest.raises(BootstrapFailure) as excinfo:
        acquire(make_run_config(), target_client)

    # Assert
    assert excinfo.value.attempts[0].startswith("login: connection error")
    assert excinfo.value.attempts[1].startswith("register: timeout")


def test_context_carries_shared_state(make_run_config, target_client, fake_session, aggregator, registry):
    fake_session.add("POST", "/login", json_response(200, {"token": "t"}))

    context = CredentialBootstrapper(make_run_config(), target_client).acquire(aggregator, registry)

    assert context.aggregator is aggregator
    assert context.registry is registry
    assert context.authenticated


def test_token_is_never_logged(make_run_config, target_client, fake_session, caplog):
    # Arrange
    secret_token = "super-secret-token-value"
    config = make_run_config(credentials=Credentials("a@example.com", "pw", token=secret_token))
    fake_session.add("GET", "/auth/me", json_response(200, {}))

    # Act
    with caplog.at_level(logging.DEBUG):
        CredentialBootstrapper(config, target_client).acquire()

    # Assert
    assert secret_token not in caplog.text
    assert str(len(secret_token)) in caplog.text


# -----------------------------------------------------------------------------
# Token expiry
# -----------------------------------------------------------------------------

def test_token_expiry_reads_exp_claim():
    token = _jwt(timedelta(hours=2))

    expires_at = token_expiry(token)

    assert expires_at is not None
    assert timedelta(hours=1, minutes=59) < expires_at - datetime.now(timezone.utc) <= timedelta(hours=2)


@pytest.mark.parametrize("token", ["not-a-jwt", jwt.encode({"sub": "x"}, SECRET, algorithm="HS256")])
def test_token_expiry_without_exp(token):
    assert token_expiry(token) is None


def test_expired_token_is_still_decoded():
    assert token_expiry(_jwt(timedelta(minutes=-5))) < datetime.now(timezone.utc)


def test_warns_when_token_expires_before_run_end(make_run_config, target_client, fake_session, caplog):
    # Arrange
    config = make_run_config()
    fake_session.add("POST", "/login", json_response(200, {"token": _jwt(timedelta(seconds=-1))}))

    # Act
    with caplog.at_level(logging.WARNING, logger="surge.bootstrap"):
        context = CredentialBootstrapper(config, target_client).acquire()

    # Assert
    assert context.token_expires_at is not None
    assert "expires at" in caplog.text


@pytest.mark.parametrize("exp", [10**20, -(10**20), 1e300])
def test_token_expiry_out_of_range_is_ignored(exp):
    token = jwt.encode({"sub": "admin", "exp": exp}, SECRET, algorithm="HS256")

    assert token_expiry(token) is None


def test_far_future_expiry_does_not_break_bootstrap(make_run_config, target_client, fake_session):
    # Arrange
    config = make_run_config()
    token = jwt.encode({"sub": "admin", "exp": 10**20}, SECRET, algorithm="HS256")
    fake_session.add("POST", "/login", json_response(200, {"token": token}))

    # Act
    context = CredentialBootstrapper(config, target_client).acquire()

    # Assert
    assert context.method is AcquisitionMethod.AUTO_LOGIN
    assert context.token == token
    assert context.token_expires_at is None
