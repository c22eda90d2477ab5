"""
Scenario executors.

Each module in this package defines one executor that models a
specific traffic pattern:

- :mod:`.product_crud` -- list / create / read / update plus a liveness
  baseline (the reference scenario, needs a bootstrap token)
- :mod:`.auth_flow` -- register -> login -> identity per iteration
- :mod:`.stress_mix` -- one weighted random action per iteration

All concrete scenarios inherit from :class:`.base.ScenarioExecutor`.
"""

from __future__ import annotations

from typing import Any

from surge.config import RunConfig
from surge.exceptions import ConfigError
from surge.scenarios.auth_flow import AuthFlowScenario
from surge.scenarios.base import ScenarioExecutor
from surge.scenarios.product_crud import ProductCrudScenario
from surge.scenarios.stress_mix import StressMixScenario

__all__ = [
    "AuthFlowScenario",
    "ProductCrudScenario",
    "ScenarioExecutor",
    "StressMixScenario",
    "SCENARIOS",
    "build_scenario",
]

# Maps profile ``scenario`` values to executor classes.
SCENARIOS: dict[str, type[ScenarioExecutor]] = {
    ProductCrudScenario.name: ProductCrudScenario,
    AuthFlowScenario.name: AuthFlowScenario,
    StressMixScenario.name: StressMixScenario,
}


def build_scenario(config: RunConfig, **kwargs: Any) -> ScenarioExecutor:
    """
    Instantiate the scenario named by *config*.

    Raises:
        ConfigError: If the scenario name is unknown or its options are
            rejected by the executor.
    """
    scenario_class = SCENARIOS.get(config.scenario)
    if scenario_class is None:
        known = ", ".join(sorted(SCENARIOS))
        raise ConfigError(f"Unknown scenario {config.scenario!r} (known: {known})")
    try:
        return scenario_class.from_config(config, **kwargs)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid options for scenario {config.scenario!r}: {exc}") from exc
