"""
HTTP collaborator for the load-test core.

Wraps a ``requests.Session`` so that every call is timed, carries a
bounded timeout, and never raises: transport errors (timeouts, refused
connections, DNS failures) come back as an ``HttpResult`` with no
status code instead of an exception.  Response bodies are parsed with
an explicit, fallible :func:`parse_json` rather than a try/except that
silently turns a bad body into ``False``.

Key Concepts Demonstrated:
- Bounded timeouts on every outbound request
- Transport failures as values rather than exceptions
- Compatibility with Locust's ``HttpSession`` (a ``requests.Session``
  subclass that reports failures as status ``0``)
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any
from urllib.parse import urljoin

import requests

logger = logging.getLogger(__name__)

JSON_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json",
}


@dataclass(frozen=True)
class JsonBody:
    """
    Result of parsing a response body as JSON.

    Exactly one of ``value`` (on success) or ``error`` (on failure) is
    meaningful; check :attr:`ok` first.
    """

    value: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def as_dict(self) -> dict[str, Any]:
        """Return the parsed value if it is a JSON object, else ``{}``."""
        if self.ok and isinstance(self.value, dict):
            return self.value
        return {}


def parse_json(text: str | None) -> JsonBody:
    """Parse *text* as JSON, returning a ``JsonBody`` instead of raising."""
    if text is None or not text.strip():
        return JsonBody(error="empty body")
    try:
        return JsonBody(value=json.loads(text))
    except ValueError as exc:
        return JsonBody(error=f"invalid JSON: {exc}")


@dataclass(frozen=True)
class HttpResult:
    """
    One completed (or failed) HTTP exchange.

    Attributes:
        method: HTTP verb used.
        url: Absolute URL requested.
        status_code: Response status, or ``None`` on transport failure.
        text: Response body text (empty on transport failure).
        latency_ms: Elapsed wall time of the call in milliseconds.
        error: Transport error description, ``None`` if a response
            arrived.
        timestamp: Wall-clock time at which the call completed.
    """

    method: str
    url: str
    status_code: int | None
    text: str
    latency_ms: float
    error: str | None
    timestamp: float

    @property
    def transport_failed(self) -> bool:
        return self.status_code is None

    @property
    def is_success(self) -> bool:
        """True for any 2xx status."""
        return self.status_code is not None and 200 <= self.status_code < 300

    def json(self) -> JsonBody:
        if self.transport_failed:
            return JsonBody(error=self.error or "no response")
        return parse_json(self.text)


class TargetClient:
    """
    Timed HTTP client bound to one target base URL.

    Each lane owns its own ``TargetClient`` (and therefore its own
    connection pool); sessions are not shared between threads.

    Args:
        base_url: Root URL of the service under test.
        timeout: Default per-request timeout in seconds.
        session: Optional pre-built session (e.g. a Locust
            ``HttpSession``).  A fresh ``requests.Session`` is created
            when omitted.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/") + "/"
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()

    def url_for(self, path: str) -> str:
        return urljoin(self.base_url, path.lstrip("/"))

    def request(
        self,
        method: str,
        path: str,
        *,
        tag: str,
        token: str | None = None,
        json_body: Any = None,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> HttpResult:
        """
        Send one request and time it.

        Args:
            method: HTTP verb.
            path: Path relative to the base URL.
            tag: Logical endpoint tag; used for logging and passed to
                :meth:`_send` so subclasses can label the request.
            token: Bearer token to send, if any.
            json_body: JSON-serialisable request body.
            params: Query-string parameters.
            timeout: Override of the default timeout in seconds.

        Returns:
            An ``HttpResult``.  Never raises for transport problems.
        """
        url = self.url_for(path)
        headers = dict(JSON_HEADERS)
        if token:
            headers["Authorization"] = f"Bearer {token}"

        started = time.perf_counter()
        try:
            response = self._send(
                method,
                url,
                tag=tag,
                headers=headers,
                json=json_body,
                params=params,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except requests.Timeout as exc:
            return self._transport_failure(method, url, started, f"timeout: {exc}")
        except requests.RequestException as exc:
            return self._transport_failure(method, url, started, f"connection error: {exc}")

        latency_ms = (time.perf_counter() - started) * 1000.0

        # Locust's HttpSession swallows RequestException and hands back a
        # response with status 0 and the exception stored on ``error``.
        if not response.status_code:
            error = getattr(response, "error", None) or "no response"
            return HttpResult(method, url, None, "", latency_ms, str(error), time.time())

        logger.debug("%s %s [%s] -> %s in %.1fms", method, url, tag, response.status_code, latency_ms)
        return HttpResult(
            method=method,
            url=url,
            status_code=response.status_code,
            text=response.text or "",
            latency_ms=latency_ms,
            error=None,
            timestamp=time.time(),
        )

    def _send(self, method: str, url: str, *, tag: str, **kwargs: Any) -> requests.Response:
        """Issue the request on the underlying session."""
        return self.session.request(method, url, **kwargs)

    def _transport_failure(self, method: str, url: str, started: float, error: str) -> HttpResult:
        latency_ms = (time.perf_counter() - started) * 1000.0
        logger.debug("%s %s failed after %.1fms: %s", method, url, latency_ms, error)
        return HttpResult(method, url, None, "", latency_ms, error, time.time())

    def close(self) -> None:
        self.session.close()
