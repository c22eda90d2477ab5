"""
Authentication-flow scenario.

Defines :class:`AuthFlowScenario`, which exercises the account
lifecycle end to end on every iteration:

1. ``register`` -- a brand-new account (unique per lane and iteration)
2. ``login``    -- the same credentials, expecting a token back
3. ``auth-me``  -- the identity endpoint with that token (only when a
   token was obtained)

Useful for stress-testing password hashing and token issuance in
isolation from the product endpoints.  It brings its own credentials,
so no bootstrap token is needed.
"""

from __future__ import annotations

from surge.http import TargetClient
from surge.models import ExecutionContext
from surge.scenarios.base import ScenarioExecutor
from surge.scenarios.helpers import DEFAULT_PASSWORD, unique_email


def _has_token(body) -> bool:
    token = body.as_dict().get("token")
    return isinstance(token, str) and bool(token)


def _has_identity(body) -> bool:
    data = body.as_dict()
    return bool(data.get("id")) and bool(data.get("email"))


class AuthFlowScenario(ScenarioExecutor):
    """Register, log in and fetch the profile of a fresh account."""

    name = "auth"
    requires_auth = False

    def run_steps(
        self,
        context: ExecutionContext,
        client: TargetClient,
        lane_id: int,
        iteration: int,
    ) -> None:
        credentials = {
            "email": unique_email("loadtest", lane_id, iteration),
            "password": DEFAULT_PASSWORD,
        }

        result = client.request("POST", "/register", tag="register", json_body=credentials)
        self.check_step(
            context,
            "register",
            result,
            expected=(201,),
            status_check="register status is 201",
        )
        self.pause()

        result = client.request("POST", "/login", tag="login", json_body=credentials)
        self.check_step(
            context,
            "login",
            result,
            expected=(200,),
            status_check="login status is 200",
            body_checks=[("login returns token", _has_token)],
        )
        if result.status_code != 200:
            return

        token = result.json().as_dict().get("token")
        if not isinstance(token, str) or not token:
            return

        self.pause()
        result = client.request("GET", "/auth/me", tag="auth-me", token=token)
        self.check_step(
            context,
            "auth-me",
            result,
            expected=(200,),
            status_check="profile status is 200",
            body_checks=[("profile returns valid data", _has_identity)],
        )
