"""
Shared base class for scenario executors.

A scenario executor is the per-iteration unit of work: given the shared
:class:`~surge.models.ExecutionContext`, a lane id and an iteration
index, it performs a sequence of HTTP steps and records one
:class:`~surge.models.Outcome` per step.  It never raises past
:meth:`ScenarioExecutor.iterate`; every failure becomes an outcome.

Concrete scenarios only implement :meth:`ScenarioExecutor.run_steps`
and declare their steps through :meth:`ScenarioExecutor.check_step`.

Key Concepts Demonstrated:
- One HTTP session per lane (sessions are never shared across threads)
- Separate accounting of HTTP failures and body-validation failures
- Checks evaluated on an explicitly parsed body, never on exceptions
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from surge.config import RunConfig
from surge.http import HttpResult, JsonBody, TargetClient
from surge.models import CheckResult, ExecutionContext, Outcome, OutcomeKind

logger = logging.getLogger(__name__)

BodyCheck = tuple[str, Callable[[JsonBody], bool]]


class ScenarioExecutor:
    """
    Base scenario: per-lane clients plus step/check bookkeeping.

    Attributes:
        name: Scenario name used in profiles.
        requires_auth: When true, iterations without a token are
            recorded as ``skipped`` and make no request.

    Args:
        base_url: Root URL of the target service.
        timeout: Per-request timeout in seconds.
        think_time: Pause between consecutive steps of an iteration.
        client_factory: Builds the client for a new lane; defaults to a
            fresh ``TargetClient`` per lane.
    """

    name = "base"
    requires_auth = False

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        think_time: float = 0.0,
        client_factory: Callable[[], TargetClient] | None = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self.think_time = think_time
        self._client_factory = client_factory or (
            lambda: TargetClient(self.base_url, timeout=self.timeout)
        )
        self._clients: dict[int, TargetClient] = {}
        self._clients_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: RunConfig, **kwargs: Any) -> ScenarioExecutor:
        """Build the scenario from a run configuration's options."""
        options = dict(config.options)
        options.update(kwargs)
        return cls(config.base_url, timeout=config.request_timeout, **options)

    # ---- lane clients ---------------------------------------------------

    def client_for(self, lane_id: int) -> TargetClient:
        with self._clients_lock:
            client = self._clients.get(lane_id)
            if client is None:
                client = self._client_factory()
                self._clients[lane_id] = client
            return client

    def bind_client(self, lane_id: int, client: TargetClient) -> None:
        """Attach an externally managed client (e.g. a Locust session)."""
        with self._clients_lock:
            self._clients[lane_id] = client

    def release_lane(self, lane_id: int) -> None:
        """Close and forget the client of a lane that has retired."""
        with self._clients_lock:
            client = self._clients.pop(lane_id, None)
        if client is not None:
            client.close()

    def close(self) -> None:
        with self._clients_lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            client.close()

    # ---- iteration ------------------------------------------------------

    def iterate(self, context: ExecutionContext, lane_id: int, iteration: int) -> None:
        """Run one iteration; failures are recorded, never raised."""
        if self.requires_auth and not context.authenticated:
            context.aggregator.record(Outcome.skipped("iteration", "no credential available"))
            return

        try:
            self.run_steps(context, self.client_for(lane_id), lane_id, iteration)
        except Exception as exc:
            logger.exception("Scenario %s crashed in lane %d iteration %d", self.name, lane_id, iteration)
            context.aggregator.record(
                Outcome(
                    tag="iteration",
                    status_code=None,
                    latency_ms=0.0,
                    kind=OutcomeKind.VALIDATION_FAILURE,
                    checks=(CheckResult("iteration completed", False),),
                    detail=f"{type(exc).__name__}: {exc}",
                )
            )

    def run_steps(
        self,
        context: ExecutionContext,
        client: TargetClient,
        lane_id: int,
        iteration: int,
    ) -> None:
        raise NotImplementedError

    def pause(self) -> None:
        """Think time between two steps of the same iteration."""
        if self.think_time > 0:
            time.sleep(self.think_time)

    # ---- checks ---------------------------------------------------------

    def check_step(
        self,
        context: ExecutionContext,
        tag: str,
        result: HttpResult,
        *,
        expected: Sequence[int],
        status_check: str,
        body_checks: Iterable[BodyCheck] = (),
        detail: str | None = None,
    ) -> Outcome:
        """
        Evaluate the checks for one step and record its outcome.

        The status check decides between ``ok`` and ``http_failure``;
        body checks only matter when the status was right, in which case
        a failing body check makes the outcome a ``validation_failure``.
        A transport failure fails every check.

        Returns:
            The recorded ``Outcome``.
        """
        body_checks = list(body_checks)

        if result.transport_failed:
            checks = [CheckResult(status_check, False)]
            checks.extend(CheckResult(name, False) for name, _ in body_checks)
            kind = OutcomeKind.TRANSPORT_FAILURE
            detail = detail or result.error
        else:
            status_ok = result.status_code in expected
            body = result.json()
            checks = [CheckResult(status_check, status_ok)]
            checks.extend(CheckResult(name, bool(predicate(body))) for name, predicate in body_checks)

            if not status_ok:
                kind = OutcomeKind.HTTP_FAILURE
                detail = detail or f"expected {'/'.join(map(str, expected))}, got {result.status_code}"
            elif all(check.passed for check in checks):
                kind = OutcomeKind.OK
            else:
                kind = OutcomeKind.VALIDATION_FAILURE
                failed = [check.name for check in checks if not check.passed]
                detail = detail or f"failed checks: {', '.join(failed)}"

        outcome = Outcome(
            tag=tag,
            status_code=result.status_code,
            latency_ms=result.latency_ms,
            kind=kind,
            checks=tuple(checks),
            timestamp=result.timestamp,
            detail=detail,
        )
        context.aggregator.record(outcome)
        if kind is not OutcomeKind.OK:
            logger.debug("%s %s: %s", tag, kind.value, detail)
        return outcome
