"""
Run orchestration.

:class:`LoadRun` wires every component together for one run::

    bootstrap -> schedule -> snapshot -> evaluate -> cleanup -> RunResult

A failed bootstrap ends the run before a single lane is started.
Cleanup always runs once the schedule has, even if evaluation blows
up, and the per-lane HTTP clients are closed on the way out.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from surge.bootstrap import CredentialBootstrapper
from surge.cleanup import CleanupCoordinator, CleanupReport
from surge.config import RunConfig
from surge.exceptions import BootstrapFailure
from surge.http import TargetClient
from surge.metrics import AggregateStats, MetricsAggregator
from surge.models import AcquisitionMethod, ExecutionContext
from surge.registry import ResourceRegistry
from surge.scenarios import ScenarioExecutor, build_scenario
from surge.scheduler import VirtualUserScheduler
from surge.thresholds import Verdict, evaluate

logger = logging.getLogger(__name__)

EXIT_PASSED = 0
EXIT_THRESHOLDS_FAILED = 1
EXIT_NOT_STARTED = 2
EXIT_USAGE_ERROR = 3


class RunStatus(str, Enum):
    NOT_STARTED = "not-started"
    FAILED = "failed"
    PASSED = "passed"


@dataclass(frozen=True)
class RunResult:
    """
    Everything known about a finished (or aborted) run.

    Attributes:
        name: Profile name.
        status: Overall status of the run.
        method: How the credential was obtained; ``failed`` when the
            run could not start.
        reason: Bootstrap failure text for a run that never started.
        stats: Final aggregate statistics.
        verdict: Threshold results.
        cleanup: Cleanup report, ``None`` if cleanup never ran.
        peak_concurrency: Highest live lane count observed.
        started_at: Wall-clock start of the run (UTC).
        finished_at: Wall-clock end of the run (UTC).
    """

    name: str
    status: RunStatus
    method: AcquisitionMethod
    reason: str | None = None
    stats: AggregateStats = field(default_factory=AggregateStats)
    verdict: Verdict = field(default_factory=Verdict)
    cleanup: CleanupReport | None = None
    peak_concurrency: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None

    @property
    def exit_code(self) -> int:
        if self.status is RunStatus.NOT_STARTED:
            return EXIT_NOT_STARTED
        if self.status is RunStatus.FAILED:
            return EXIT_THRESHOLDS_FAILED
        return EXIT_PASSED

    def to_dict(self) -> dict[str, Any]:
        stats = self.stats.total()
        return {
            "name": self.name,
            "status": self.status.value,
            "exit_code": self.exit_code,
            "bootstrap": {"method": self.method.value, "reason": self.reason},
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "peak_concurrency": self.peak_concurrency,
            "totals": _endpoint_dict(stats),
            "endpoints": {tag: _endpoint_dict(value) for tag, value in self.stats.endpoints.items()},
            "verdict": self.verdict.to_dict(),
            "cleanup": self.cleanup.to_dict() if self.cleanup else None,
        }


def _endpoint_dict(stats) -> dict[str, Any]:
    latency = stats.latency
    return {
        "requests": stats.requests,
        "failures": stats.failures,
        "validation_failures": stats.validation_failures,
        "skipped": stats.skipped,
        "error_rate": stats.error_rate,
        "check_rate": stats.check_rate,
        "latency_ms": {
            "min": latency.min_ms,
            "avg": latency.avg_ms,
            "med": latency.percentile(50),
            "p95": latency.percentile(95),
            "p99": latency.percentile(99),
            "max": latency.max_ms,
        },
    }


class LoadRun:
    """
    One load-test run, from bootstrap to cleanup.

    Args:
        config: The immutable run configuration.
        scenario: Pre-built scenario executor; built from ``config``
            when omitted.
        client_factory: Builds the client used for bootstrap and
            cleanup; defaults to a ``TargetClient`` for the base URL.
        tick_interval: Scheduler control-loop period in seconds.
    """

    def __init__(
        self,
        config: RunConfig,
        scenario: ScenarioExecutor | None = None,
        client_factory: Callable[[], TargetClient] | None = None,
        tick_interval: float = 0.05,
    ):
        self.config = config
        self.scenario = scenario or build_scenario(config)
        self._client_factory = client_factory or (
            lambda: TargetClient(config.base_url, timeout=config.request_timeout)
        )
        self.tick_interval = tick_interval
        self.aggregator = MetricsAggregator()
        self.registry = ResourceRegistry()

    def bootstrap(self, client: TargetClient) -> ExecutionContext:
        """Resolve the shared context; raises ``BootstrapFailure``."""
        if not self.scenario.requires_auth:
            logger.info("Scenario %s needs no credential", self.scenario.name)
            return ExecutionContext(
                token=None,
                method=AcquisitionMethod.NONE,
                aggregator=self.aggregator,
                registry=self.registry,
            )
        bootstrapper = CredentialBootstrapper(self.config, client)
        return bootstrapper.acquire(self.aggregator, self.registry)

    def execute(self) -> RunResult:
        started_at = datetime.now(timezone.utc)
        client = self._client_factory()
        coordinator = CleanupCoordinator.from_settings(client, self.config.cleanup)
        logger.info(
            "Run %s: scenario %s against %s",
            self.config.name,
            self.scenario.name,
            self.config.base_url,
        )

        try:
            try:
                context = self.bootstrap(client)
            except BootstrapFailure as exc:
                logger.error("Run %s not started: %s", self.config.name, exc)
                return RunResult(
                    name=self.config.name,
                    status=RunStatus.NOT_STARTED,
                    method=AcquisitionMethod.FAILED,
                    reason=str(exc),
                    started_at=started_at,
                    finished_at=datetime.now(timezone.utc),
                )

            scheduler = VirtualUserScheduler(
                self.config.stages,
                pacing=self.config.pacing,
                tick_interval=self.tick_interval,
                graceful_stop=self.config.graceful_stop,
            )
            stats = scheduler.run(self.scenario, context)

            try:
                verdict = evaluate(stats, self.config.thresholds)
            finally:
                cleanup = coordinator.teardown(context, enabled=self.config.cleanup.enabled)
        finally:
            self.scenario.close()
            client.close()

        status = RunStatus.PASSED if verdict.passed else RunStatus.FAILED
        for failure in verdict.failures:
            logger.warning("Threshold failed: %s (observed %s)", failure.threshold.name, failure.observed)
        logger.info("Run %s finished: %s", self.config.name, status.value)

        return RunResult(
            name=self.config.name,
            status=status,
            method=context.method,
            stats=stats,
            verdict=verdict,
            cleanup=cleanup,
            peak_concurrency=scheduler.peak_concurrency,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
        )
