"""
Post-run cleanup of created resources.

After the schedule has ramped down and the verdict is in, the
:class:`CleanupCoordinator` drains the run's
:class:`~surge.registry.ResourceRegistry` by deleting each recorded
product, oldest first.  Cleanup is best effort:

- it is **bounded** -- at most ``max_deletions`` requests per run; the
  rest stay ``pending`` and are reported as not attempted
- it is **paced** -- a short pause after every ``batch_size`` deletions
  keeps the target from being hammered right after a load test
- it **never fails the run** -- delete errors end up in the report
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from surge.config import CleanupSettings
from surge.http import TargetClient
from surge.models import ExecutionContext
from surge.registry import EntryState

logger = logging.getLogger(__name__)

DELETE_PATH_TEMPLATE = "/api/products/{id}"


@dataclass(frozen=True)
class DeleteFailure:
    resource_id: Any
    status_code: int | None
    error: str | None = None


@dataclass(frozen=True)
class CleanupReport:
    """
    Summary of one cleanup pass.

    Attributes:
        enabled: Whether cleanup was switched on for the run.
        registered: Resources recorded in the registry.
        attempted: DELETE requests issued.
        deleted: Requests answered with a 2xx status.
        failures: Every failed delete with its status or error.
        not_attempted: Pending entries left over because of the bound.
        skip_reason: Why nothing was attempted, if nothing was.
    """

    enabled: bool
    registered: int = 0
    attempted: int = 0
    deleted: int = 0
    failures: tuple[DeleteFailure, ...] = ()
    not_attempted: int = 0
    skip_reason: str | None = None

    @property
    def truncated(self) -> bool:
        return self.not_attempted > 0

    @property
    def skipped(self) -> bool:
        return self.skip_reason is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "registered": self.registered,
            "attempted": self.attempted,
            "deleted": self.deleted,
            "failed": len(self.failures),
            "failures": [
                {
                    "id": failure.resource_id,
                    "status": failure.status_code,
                    "error": failure.error,
                }
                for failure in self.failures
            ],
            "not_attempted": self.not_attempted,
            "truncated": self.truncated,
            "skip_reason": self.skip_reason,
        }


@dataclass
class _Tally:
    attempted: int = 0
    deleted: int = 0
    failures: list[DeleteFailure] = field(default_factory=list)


class CleanupCoordinator:
    """
    Delete registered resources with a bound and batch pauses.

    Args:
        client: HTTP client used for the DELETE requests.
        max_deletions: Upper bound on DELETE requests for the run.
        batch_size: Deletions between two pauses.
        batch_pause: Pause length in seconds.
        path_template: Resource path; ``{id}`` is replaced by the ID.
        sleep: Sleep function, replaceable in tests.
    """

    def __init__(
        self,
        client: TargetClient,
        *,
        max_deletions: int = 100,
        batch_size: int = 10,
        batch_pause: float = 0.1,
        path_template: str = DELETE_PATH_TEMPLATE,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_deletions < 0:
            raise ValueError("max_deletions must be >= 0")
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.client = client
        self.max_deletions = max_deletions
        self.batch_size = batch_size
        self.batch_pause = batch_pause
        self.path_template = path_template
        self._sleep = sleep

    @classmethod
    def from_settings(cls, client: TargetClient, settings: CleanupSettings, **kwargs: Any):
        return cls(
            client,
            max_deletions=settings.max_deletions,
            batch_size=settings.batch_size,
            batch_pause=settings.batch_pause,
            **kwargs,
        )

    def teardown(self, context: ExecutionContext, enabled: bool = True) -> CleanupReport:
        """
        Delete pending registry entries, oldest first.

        Returns:
            A ``CleanupReport``.  Nothing here raises for HTTP failures.
        """
        registry = context.registry
        registered = len(registry)

        skip_reason = None
        if not enabled:
            skip_reason = "cleanup disabled"
        elif not context.authenticated:
            skip_reason = "no credential available"
        elif registered == 0:
            skip_reason = "nothing to clean up"

        if skip_reason is not None:
            logger.info("Skipping cleanup: %s (%d registered)", skip_reason, registered)
            return CleanupReport(
                enabled=enabled,
                registered=registered,
                not_attempted=len(registry.pending()),
                skip_reason=skip_reason,
            )

        pending = registry.pending()
        batch = pending[: self.max_deletions]
        logger.info("Cleaning up %d of %d created resource(s)", len(batch), len(pending))

        tally = _Tally()
        for entry in batch:
            self._delete(context, entry.index, entry.resource_id, tally)
            if tally.attempted % self.batch_size == 0 and tally.attempted < len(batch):
                self._sleep(self.batch_pause)

        not_attempted = len(registry.pending())
        if not_attempted:
            logger.warning(
                "Cleanup bound of %d reached; %d resource(s) left in place",
                self.max_deletions,
                not_attempted,
            )
        logger.info(
            "Cleanup complete: %d deleted, %d failed", tally.deleted, len(tally.failures)
        )

        return CleanupReport(
            enabled=True,
            registered=registered,
            attempted=tally.attempted,
            deleted=tally.deleted,
            failures=tuple(tally.failures),
            not_attempted=not_attempted,
        )

    def _delete(self, context: ExecutionContext, index: int, resource_id: Any, tally: _Tally) -> None:
        result = self.client.request(
            "DELETE",
            self.path_template.format(id=resource_id),
            tag="cleanup",
            token=context.token,
        )
        tally.attempted += 1

        if result.is_success:
            context.registry.mark(index, EntryState.DELETED)
            tally.deleted += 1
            return

        context.registry.mark(index, EntryState.DELETE_FAILED)
        tally.failures.append(DeleteFailure(resource_id, result.status_code, result.error))
        logger.warning(
            "Failed to delete %s: %s",
            resource_id,
            result.error or f"HTTP {result.status_code}",
        )
