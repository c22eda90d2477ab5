"""
Credential bootstrap.

Runs once, before any load is generated, and resolves the bearer token
every lane will share.  The fallback chain is strict and
short-circuits on the first success:

1. **provided** -- a pre-supplied token that passes the ``/auth/me``
   identity probe.
2. **auto-login** -- ``POST /login`` with the configured admin
   credentials.
3. **register-then-login** -- ``POST /register`` (201 *created* and 400
   *already exists* are both fine), then exactly one more login.

If every step fails a :class:`~surge.exceptions.BootstrapFailure` is
raised and the run must not start.

Key Concepts Demonstrated:
- Ordered fallback chain with a single bounded retry
- Tokens treated as secrets: only their length is ever logged
- Unverified JWT inspection to warn about tokens expiring mid-run
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import jwt

from surge.config import RunConfig
from surge.exceptions import BootstrapFailure
from surge.http import HttpResult, TargetClient
from surge.metrics import MetricsAggregator
from surge.models import AcquisitionMethod, ExecutionContext
from surge.registry import ResourceRegistry

logger = logging.getLogger(__name__)

IDENTITY_PATH = "/auth/me"
LOGIN_PATH = "/login"
REGISTER_PATH = "/register"

# 400 means the account already exists, which is as good as created.
REGISTER_OK_STATUSES = {201, 400}


def token_expiry(token: str) -> datetime | None:
    """
    Read the ``exp`` claim of a JWT without verifying its signature.

    The core never validates tokens itself (the target service does);
    this is only used to warn when a token will expire during the run.

    Returns:
        The expiry as an aware UTC datetime, or ``None`` if the token is
        not a JWT, carries no numeric ``exp`` claim, or the claim lies
        outside the representable date range.
    """
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError:
        return None

    exp = claims.get("exp")
    if not isinstance(exp, (int, float)) or isinstance(exp, bool):
        return None
    try:
        return datetime.fromtimestamp(exp, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        # Outside the range datetime can represent.
        return None


class CredentialBootstrapper:
    """
    Resolve a usable bearer token through the fallback chain.

    Args:
        config: The run configuration (credentials and timeouts).
        client: HTTP client to use; one is built from ``config`` when
            omitted.
    """

    def __init__(self, config: RunConfig, client: TargetClient | None = None):
        self.config = config
        self.client = client or TargetClient(config.base_url, timeout=config.request_timeout)
        self.attempts: list[str] = []

    def acquire(
        self,
        aggregator: MetricsAggregator | None = None,
        registry: ResourceRegistry | None = None,
    ) -> ExecutionContext:
        """
        Run the fallback chain and build the shared execution context.

        Args:
            aggregator: Metrics sink to attach to the context.
            registry: Resource registry to attach to the context.

        Returns:
            An ``ExecutionContext`` carrying the token and the method
            that produced it.

        Raises:
            BootstrapFailure: If no step of the chain yielded a token.
        """
        aggregator = aggregator if aggregator is not None else MetricsAggregator()
        registry = registry if registry is not None else ResourceRegistry()
        self.attempts = []

        token, method = self._resolve()
        if token is None:
            logger.error("Unable to obtain a valid token; run will not start")
            raise BootstrapFailure("No credential could be acquired", self.attempts)

        logger.info("Bootstrap succeeded via %s (token length %d)", method.value, len(token))
        expires_at = token_expiry(token)
        self._warn_if_expiring(expires_at)

        return ExecutionContext(
            token=token,
            method=method,
            aggregator=aggregator,
            registry=registry,
            token_expires_at=expires_at,
        )

    def _resolve(self) -> tuple[str | None, AcquisitionMethod]:
        provided = self.config.credentials.token
        if provided:
            logger.info("Token provided (%d characters), probing %s", len(provided), IDENTITY_PATH)
            if self._probe(provided):
                return provided, AcquisitionMethod.PROVIDED
            logger.warning("Provided token rejected, falling back to auto-login")

        logger.info("Attempting auto-login as %s", self.config.credentials.email)
        token = self._login()
        if token is not None:
            return token, AcquisitionMethod.AUTO_LOGIN

        logger.info("Login failed, attempting registration")
        if self._register():
            token = self._login()
            if token is not None:
                return token, AcquisitionMethod.REGISTER_THEN_LOGIN

        return None, AcquisitionMethod.FAILED

    def _probe(self, token: str) -> bool:
        result = self.client.request(
            "GET",
            IDENTITY_PATH,
            tag="bootstrap-probe",
            token=token,
            timeout=self.config.probe_timeout,
        )
        self._note("identity probe", result)
        return result.status_code == 200

    def _login(self) -> str | None:
        result = self.client.request(
            "POST",
            LOGIN_PATH,
            tag="bootstrap-login",
            json_body=self._credentials_payload(),
        )
        self._note("login", result)
        if result.status_code != 200:
            return None

        body = result.json()
        token = body.as_dict().get("token")
        if not isinstance(token, str) or not token:
            reason = body.error or "response missing token"
            logger.warning("Login returned 200 but no usable token: %s", reason)
            self.attempts.append(f"login: {reason}")
            return None
        return token

    def _register(self) -> bool:
        result = self.client.request(
            "POST",
            REGISTER_PATH,
            tag="bootstrap-register",
            json_body=self._credentials_payload(),
        )
        self._note("register", result)
        if result.status_code in REGISTER_OK_STATUSES:
            logger.info("User created or already exists (HTTP %s)", result.status_code)
            return True
        return False

    def _credentials_payload(self) -> dict[str, str]:
        return {
            "email": self.config.credentials.email,
            "password": self.config.credentials.password,
        }

    def _note(self, step: str, result: HttpResult) -> None:
        if result.transport_failed:
            self.attempts.append(f"{step}: {result.error}")
        else:
            self.attempts.append(f"{step}: HTTP {result.status_code}")

    def _warn_if_expiring(self, expires_at: datetime | None) -> None:
        if expires_at is None:
            return
        run_end = datetime.now(timezone.utc) + timedelta(seconds=self.config.total_duration)
        if expires_at <= run_end:
            logger.warning(
                "Token expires at %s, before the scheduled end of the run (%s)",
                expires_at.isoformat(),
                run_end.isoformat(),
            )


def acquire(config: RunConfig, client: TargetClient | None = None) -> ExecutionContext:
    """Convenience wrapper: bootstrap with fresh aggregator and registry."""
    return CredentialBootstrapper(config, client).acquire()
