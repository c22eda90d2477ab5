"""
Unit tests for the timed HTTP client and JSON parsing.
"""

import pytest
import requests

from surge.http import TargetClient, parse_json
from tests.fakes import json_response, locust_failure, text_response


pytestmark = pytest.mark.unit


def test_successful_request_is_timed_and_parsed(target_client, fake_session):
    # Arrange
    fake_session.add("GET", "/api/products", json_response(200, {"products": []}))

    # Act
    result = target_client.request("GET", "/api/products", tag="list", params={"limit": 20})

    # Assert
    assert result.status_code == 200
    assert result.is_success
    assert not result.transport_failed
    assert result.latency_ms >= 0
    assert result.json().value == {"products": []}
    assert fake_session.calls[0]["params"] == {"limit": 20}
    assert fake_session.calls[0]["url"] == "http://target.test/api/products"


def test_bearer_token_and_timeout_are_sent(target_client, fake_session):
    # Arrange
    fake_session.add("GET", "/auth/me", json_response(200, {}))

    # Act
    target_client.request("GET", "/auth/me", tag="probe", token="abc123", timeout=0.5)

    # Assert
    call = fake_session.calls[0]
    assert call["headers"]["Authorization"] == "Bearer abc123"
    assert call["headers"]["Content-Type"] == "application/json"
    assert call["timeout"] == 0.5


def test_default_timeout_is_always_applied(target_client, fake_session):
    fake_session.add("GET", "/health/live", text_response(200, "ok"))

    target_client.request("GET", "/health/live", tag="baseline")

    assert fake_session.calls[0]["timeout"] == 2.0
    assert "Authorization" not in fake_session.calls[0]["headers"]


def test_timeout_becomes_transport_failure(target_client, fake_session):
    # Arrange
    fake_session.add("POST", "/api/products", requests.Timeout("read timed out"))

    # Act
    result = target_client.request("POST", "/api/products", tag="create", json_body={})

    # Assert
    assert result.transport_failed
    assert result.status_code is None
    assert result.error.startswith("timeout")
    assert not result.json().ok


def test_connection_error_becomes_transport_failure(target_client, fake_session):
    fake_session.add("GET", "/api/products", requests.ConnectionError("refused"))

    result = target_client.request("GET", "/api/products", tag="list")

    assert result.transport_failed
    assert result.error.startswith("connection error")


def test_locust_status_zero_is_a_transport_failure(target_client, fake_session):
    fake_session.add("GET", "/api/products", locust_failure("ConnectionRefusedError"))

    result = target_client.request("GET", "/api/products", tag="list")

    assert result.transport_failed
    assert result.error == "ConnectionRefusedError"


def test_http_error_status_is_not_a_transport_failure(target_client, fake_session):
    fake_session.add("PUT", "/api/products/1", json_response(500, {"error": "boom"}))

    result = target_client.request("PUT", "/api/products/1", tag="update")

    assert not result.transport_failed
    assert not result.is_success
    assert result.status_code == 500


def test_send_hook_receives_tag():
    # Arrange
    seen = {}

    class NamingClient(TargetClient):
        def _send(self, method, url, *, tag, **kwargs):
            seen["tag"] = tag
            return text_response(204)

    client = NamingClient("http://target.test/")

    # Act
    result = client.request("DELETE", "/api/products/9", tag="cleanup")

    # Assert
    assert seen["tag"] == "cleanup"
    assert result.status_code == 204


def test_url_for_joins_paths():
    client = TargetClient("http://target.test/base")

    assert client.url_for("/login") == "http://target.test/base/login"
    assert client.url_for("api/products") == "http://target.test/base/api/products"


@pytest.mark.parametrize(
    "text, ok, value",
    [
        ('{"id": 42}', True, {"id": 42}),
        ("[1, 2]", True, [1, 2]),
        ("", False, None),
        (None, False, None),
        ("<html>oops</html>", False, None),
    ],
)
def test_parse_json(text, ok, value):
    body = parse_json(text)

    assert body.ok is ok
    assert body.value == value
    if not ok:
        assert body.error


def test_as_dict_only_returns_objects():
    assert parse_json("[1]").as_dict() == {}
    assert parse_json('{"a": 1}').as_dict() == {"a": 1}
    assert parse_json("nope").as_dict() == {}
