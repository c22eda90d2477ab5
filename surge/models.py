"""
Core data model shared by every component of a run.

Values here are immutable once created: a ``Stage`` describes one ramp
or hold segment, an ``Outcome`` is a single recorded request result,
and the ``ExecutionContext`` is the read-only bundle handed to every
lane after the credential bootstrap.
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from surge.metrics import MetricsAggregator
    from surge.registry import ResourceRegistry


class OutcomeKind(str, Enum):
    """Classification of a single recorded request step."""

    OK = "ok"
    HTTP_FAILURE = "http_failure"
    TRANSPORT_FAILURE = "transport_failure"
    VALIDATION_FAILURE = "validation_failure"
    SKIPPED = "skipped"


class AcquisitionMethod(str, Enum):
    """How the run's bearer token was obtained."""

    PROVIDED = "provided"
    AUTO_LOGIN = "auto-login"
    REGISTER_THEN_LOGIN = "register-then-login"
    NONE = "none"
    FAILED = "failed"


class SchedulePhase(str, Enum):
    """Controller state for the stage currently being executed."""

    RAMPING = "ramping"
    HOLDING = "holding"
    DRAINING = "draining"


@dataclass(frozen=True)
class Stage:
    """
    One segment of the concurrency schedule.

    Attributes:
        duration: Length of the segment in seconds.
        target: Concurrency reached at the end of the segment.
    """

    duration: float
    target: int

    def __post_init__(self) -> None:
        if self.duration < 0:
            raise ValueError("Stage duration must be >= 0")
        if self.target < 0:
            raise ValueError("Stage target must be >= 0")


@dataclass(frozen=True)
class Pacing:
    """Uniform pacing delay between iterations, like Locust's ``between``."""

    minimum: float = 1.0
    maximum: float = 3.0

    def __post_init__(self) -> None:
        if self.minimum < 0 or self.maximum < self.minimum:
            raise ValueError("Pacing requires 0 <= minimum <= maximum")

    def next_delay(self) -> float:
        """Draw the next delay in seconds."""
        if self.minimum == self.maximum:
            return self.minimum
        return random.uniform(self.minimum, self.maximum)


@dataclass(frozen=True)
class CheckResult:
    """Result of one named assertion made against a response."""

    name: str
    passed: bool


@dataclass(frozen=True)
class Outcome:
    """
    One recorded result of a single HTTP-level step.

    Attributes:
        tag: Logical endpoint tag (``list``, ``create``, ...).
        status_code: HTTP status, or ``None`` when the request never got
            a response (timeout, connection error) or was skipped.
        latency_ms: Round-trip time in milliseconds.
        kind: Classification of the result.
        checks: Named check results evaluated against the response.
        timestamp: Wall-clock time the request completed.
        detail: Optional short diagnostic (error text, mismatch reason).
    """

    tag: str
    status_code: int | None
    latency_ms: float
    kind: OutcomeKind
    checks: tuple[CheckResult, ...] = ()
    timestamp: float = field(default_factory=time.time)
    detail: str | None = None

    @property
    def failed(self) -> bool:
        """True for HTTP-status and transport failures (``http_req_failed``)."""
        return self.kind in (OutcomeKind.HTTP_FAILURE, OutcomeKind.TRANSPORT_FAILURE)

    @classmethod
    def skipped(cls, tag: str, detail: str) -> Outcome:
        """Build the synthetic outcome recorded when an iteration cannot run."""
        return cls(
            tag=tag,
            status_code=None,
            latency_ms=0.0,
            kind=OutcomeKind.SKIPPED,
            detail=detail,
        )


@dataclass(frozen=True)
class ExecutionContext:
    """
    Read-only state shared by every lane of a run.

    Attributes:
        token: Bearer token, or ``None`` for unauthenticated scenarios
            and for the skip context.
        method: How ``token`` was acquired.
        aggregator: Shared metrics sink.
        registry: Shared created-resource registry.
        token_expires_at: Expiry read from the token's ``exp`` claim,
            when the token is a JWT that carries one.
    """

    token: str | None
    method: AcquisitionMethod
    aggregator: MetricsAggregator
    registry: ResourceRegistry
    token_expires_at: datetime | None = None

    @property
    def authenticated(self) -> bool:
        return bool(self.token)

    def auth_headers(self) -> dict[str, str]:
        """Bearer headers for authenticated JSON requests."""
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    @classmethod
    def skipped(
        cls,
        aggregator: MetricsAggregator,
        registry: ResourceRegistry,
    ) -> ExecutionContext:
        """Context used after a failed bootstrap; every iteration is a no-op."""
        return cls(
            token=None,
            method=AcquisitionMethod.FAILED,
            aggregator=aggregator,
            registry=registry,
        )
