"""
Mixed stress scenario.

Defines :class:`StressMixScenario`: every iteration performs exactly
one randomly chosen action.  The weight distribution (total 10) is:

- **20 % register** -- unique accounts, expecting 201
- **30 % login** -- accounts from a fixed pool that mostly does not
  exist, so both 200 and 401 count as a correct answer
- **30 % health** -- the cheap liveness endpoint
- **20 % help** -- a static public endpoint

Paired with a short pacing window this pushes far more requests per
lane than the CRUD scenario and is meant for finding the breaking
point rather than for gating.
"""

from __future__ import annotations

import random
from typing import Any

from surge.http import TargetClient
from surge.models import ExecutionContext
from surge.scenarios.base import ScenarioExecutor
from surge.scenarios.helpers import DEFAULT_PASSWORD, unique_email

ACTION_WEIGHTS = (
    ("register", 2),
    ("login", 3),
    ("health", 3),
    ("help", 2),
)

LOGIN_POOL_SIZE = 100


class StressMixScenario(ScenarioExecutor):
    """
    One weighted random action per iteration.

    Args:
        base_url: Root URL of the target service.
        rng: Random source; injectable so tests can pin the action.
        **kwargs: Forwarded to :class:`ScenarioExecutor`.
    """

    name = "stress"
    requires_auth = False

    def __init__(self, base_url: str, *, rng: random.Random | None = None, **kwargs: Any):
        super().__init__(base_url, **kwargs)
        self.rng = rng or random.Random()

    def choose_action(self) -> str:
        actions = [action for action, _ in ACTION_WEIGHTS]
        weights = [weight for _, weight in ACTION_WEIGHTS]
        return self.rng.choices(actions, weights=weights, k=1)[0]

    def run_steps(
        self,
        context: ExecutionContext,
        client: TargetClient,
        lane_id: int,
        iteration: int,
    ) -> None:
        action = self.choose_action()

        if action == "register":
            payload = {
                "email": unique_email("stresstest", lane_id, iteration),
                "password": DEFAULT_PASSWORD,
            }
            result = client.request("POST", "/register", tag="register", json_body=payload)
            self.check_step(
                context, "register", result, expected=(201,), status_check="register succeeds"
            )

        elif action == "login":
            user_index = self.rng.randrange(LOGIN_POOL_SIZE)
            payload = {
                "email": f"loadtest_user_{user_index}@example.com",
                "password": DEFAULT_PASSWORD,
            }
            result = client.request("POST", "/login", tag="login", json_body=payload)
            self.check_step(
                context, "login", result, expected=(200, 401), status_check="login attempt"
            )

        elif action == "health":
            result = client.request("GET", "/health/live", tag="health")
            self.check_step(
                context, "health", result, expected=(200,), status_check="health is live"
            )

        else:
            result = client.request("GET", "/help", tag="help")
            self.check_step(context, "help", result, expected=(200,), status_check="help works")
