"""
Locust entrypoint for surge profiles.

Runs the same scenario executors, schedule and thresholds as the
``surge`` CLI, but lets Locust own the lanes (greenlets), the web UI
and its CSV/HTML output.  The profile comes from ``SURGE_PROFILE``
(a shipped profile name or a YAML path) and the target from ``--host``
or ``BASE_URL``.

Usage examples::

    # Headless products load test, exit code follows the thresholds:
    SURGE_PROFILE=products_load locust -f tests/performance/locustfile.py \\
        --headless --host http://localhost:8080

    # Smoke profile with the web UI:
    SURGE_PROFILE=products_smoke locust -f tests/performance/locustfile.py

Lifecycle:

1. ``test_start`` -- credential bootstrap.  On failure the run is
   stopped, every scheduled iteration becomes a recorded no-op and the
   process exits with code 2.
2. :class:`ProfileShape` -- follows the profile's stages through
   :func:`surge.scheduler.target_at`.
3. :class:`ScenarioUser` -- one lane per Locust user; each task is one
   scenario iteration, each wait is one pacing delay.
4. ``test_stop`` -- threshold evaluation, then cleanup; the verdict is
   mapped onto Locust's process exit code.
"""

from __future__ import annotations

import itertools
import logging
import os
from typing import Any

from locust import HttpUser, LoadTestShape, events, task

from surge.bootstrap import CredentialBootstrapper
from surge.cleanup import CleanupCoordinator
from surge.config import build_run_config, get_config, load_profile
from surge.exceptions import BootstrapFailure
from surge.http import TargetClient
from surge.metrics import MetricsAggregator
from surge.models import AcquisitionMethod, ExecutionContext
from surge.registry import ResourceRegistry
from surge.runner import EXIT_NOT_STARTED, EXIT_PASSED, EXIT_THRESHOLDS_FAILED
from surge.scenarios import build_scenario
from surge.scheduler import desired_lanes, target_at
from surge.thresholds import evaluate

logger = logging.getLogger(__name__)

PROFILE = load_profile(os.environ.get("SURGE_PROFILE", "products_load"))

# Users started or stopped per second; high enough that Locust follows
# the interpolated target on every shape tick.
SPAWN_RATE = 100

_run: dict[str, Any] = {}
_lane_ids = itertools.count(1)


class LocustTargetClient(TargetClient):
    """``TargetClient`` on top of Locust's ``HttpSession``; tags become request names."""

    def _send(self, method, url, *, tag, **kwargs):
        return self.session.request(method, url, name=tag, **kwargs)

    def close(self) -> None:
        """Leave the session open; it belongs to the Locust user."""


@events.test_start.add_listener
def _bootstrap(environment, **_kwargs):
    """Resolve the shared credential before the first user spawns."""
    config = build_run_config(PROFILE, get_config(), base_url=environment.host or None)
    aggregator = MetricsAggregator()
    registry = ResourceRegistry()
    scenario = build_scenario(config)

    _run.update(config=config, scenario=scenario, exit_code=None)

    if not scenario.requires_auth:
        _run["context"] = ExecutionContext(
            token=None,
            method=AcquisitionMethod.NONE,
            aggregator=aggregator,
            registry=registry,
        )
        return

    client = TargetClient(config.base_url, timeout=config.request_timeout)
    try:
        _run["context"] = CredentialBootstrapper(config, client).acquire(aggregator, registry)
    except BootstrapFailure as exc:
        logger.error("Bootstrap failed, stopping the test: %s", exc)
        _run["context"] = ExecutionContext.skipped(aggregator, registry)
        _run["exit_code"] = EXIT_NOT_STARTED
        if environment.runner is not None:
            environment.runner.quit()
    finally:
        client.close()


@events.test_stop.add_listener
def _evaluate_and_clean_up(environment, **_kwargs):
    """Gate on thresholds, then drain the resource registry."""
    context: ExecutionContext | None = _run.get("context")
    if context is None:
        return

    config = _run["config"]
    if _run.get("exit_code") == EXIT_NOT_STARTED:
        environment.process_exit_code = EXIT_NOT_STARTED
        return

    verdict = evaluate(context.aggregator.snapshot(), config.thresholds)
    for result in verdict.results:
        observed = "no data" if result.observed is None else f"{result.observed:.4g}"
        logger.info(
            "Threshold %s: %s (%s)",
            result.threshold.name,
            "PASS" if result.passed else "FAIL",
            observed,
        )
    environment.process_exit_code = EXIT_PASSED if verdict.passed else EXIT_THRESHOLDS_FAILED

    client = TargetClient(config.base_url, timeout=config.request_timeout)
    try:
        CleanupCoordinator.from_settings(client, config.cleanup).teardown(
            context, enabled=config.cleanup.enabled
        )
    finally:
        client.close()
        _run["scenario"].close()


class ScenarioUser(HttpUser):
    """
    One lane of the configured scenario.

    Locust's own wait between tasks is the profile's pacing delay, so a
    task is exactly one iteration followed by one pacing wait.
    """

    host = get_config().BASE_URL

    def wait_time(self) -> float:
        return PROFILE.pacing.next_delay()

    def on_start(self) -> None:
        self.lane_id = next(_lane_ids)
        self.iteration = 0
        _run["scenario"].bind_client(
            self.lane_id,
            LocustTargetClient(self.host, session=self.client),
        )

    def on_stop(self) -> None:
        _run["scenario"].release_lane(self.lane_id)

    @task
    def iteration_task(self) -> None:
        _run["scenario"].iterate(_run["context"], self.lane_id, self.iteration)
        self.iteration += 1


class ProfileShape(LoadTestShape):
    """Drive the user count along the profile's stages."""

    def tick(self):
        target = target_at(PROFILE.stages, self.get_run_time())
        if target is None:
            return None
        return desired_lanes(target), SPAWN_RATE
