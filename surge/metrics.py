"""
Thread-safe metrics aggregation.

Every lane records its ``Outcome`` values into one shared
:class:`MetricsAggregator`.  Latencies are kept in a bucketed histogram
instead of a raw sample list so memory stays bounded on long runs; the
bucket rounding follows Locust's own response-time table (exact below
100 ms, then two significant digits), which keeps p95/p99 within a few
percent of the exact value.

Locking is deliberately narrow: one lock guards creation of per-tag
accumulators, and each accumulator has its own lock held only for the
duration of a single update.
"""

from __future__ import annotations

import math
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from surge.models import Outcome, OutcomeKind


def round_latency(latency_ms: float) -> int:
    """Round a latency to its histogram bucket (Locust's rounding rules)."""
    if latency_ms < 100:
        return int(round(latency_ms))
    if latency_ms < 1000:
        return int(round(latency_ms, -1))
    if latency_ms < 10000:
        return int(round(latency_ms, -2))
    return int(round(latency_ms, -3))


@dataclass(frozen=True)
class LatencySummary:
    """Immutable latency histogram with percentile queries."""

    count: int = 0
    total_ms: float = 0.0
    min_ms: float | None = None
    max_ms: float | None = None
    buckets: Mapping[int, int] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def avg_ms(self) -> float | None:
        if not self.count:
            return None
        return self.total_ms / self.count

    def percentile(self, percent: float) -> float | None:
        """
        Return the latency at *percent* (0-100), or ``None`` without data.

        Walks the sorted buckets until the cumulative count reaches
        ``ceil(count * percent / 100)``.  Results are clamped to the
        exact observed min/max so rounding never reports a value outside
        the real range.
        """
        if not self.count:
            return None
        if not 0 <= percent <= 100:
            raise ValueError("percent must be within [0, 100]")

        rank = max(1, math.ceil(self.count * percent / 100.0))
        seen = 0
        value = 0.0
        for bucket in sorted(self.buckets):
            seen += self.buckets[bucket]
            if seen >= rank:
                value = float(bucket)
                break

        return min(max(value, self.min_ms), self.max_ms)

    def merge(self, other: LatencySummary) -> LatencySummary:
        if not other.count:
            return self
        if not self.count:
            return other
        buckets = dict(self.buckets)
        for bucket, hits in other.buckets.items():
            buckets[bucket] = buckets.get(bucket, 0) + hits
        return LatencySummary(
            count=self.count + other.count,
            total_ms=self.total_ms + other.total_ms,
            min_ms=min(self.min_ms, other.min_ms),
            max_ms=max(self.max_ms, other.max_ms),
            buckets=MappingProxyType(buckets),
        )


@dataclass(frozen=True)
class EndpointStats:
    """
    Snapshot of everything recorded for one endpoint tag.

    Attributes:
        requests: Outcomes that made (or tried to make) a request.
        failures: HTTP-status and transport failures.
        validation_failures: Requests with the right status but a body
            that failed validation.
        skipped: Synthetic outcomes for iterations that never ran.
        checks_passed: Number of individual checks that passed.
        checks_total: Number of individual checks evaluated.
        latency: Latency histogram for ``requests``.
    """

    requests: int = 0
    failures: int = 0
    validation_failures: int = 0
    skipped: int = 0
    checks_passed: int = 0
    checks_total: int = 0
    latency: LatencySummary = field(default_factory=LatencySummary)

    @property
    def error_rate(self) -> float | None:
        if not self.requests:
            return None
        return self.failures / self.requests

    @property
    def check_rate(self) -> float | None:
        if not self.checks_total:
            return None
        return self.checks_passed / self.checks_total

    def merge(self, other: EndpointStats) -> EndpointStats:
        return EndpointStats(
            requests=self.requests + other.requests,
            failures=self.failures + other.failures,
            validation_failures=self.validation_failures + other.validation_failures,
            skipped=self.skipped + other.skipped,
            checks_passed=self.checks_passed + other.checks_passed,
            checks_total=self.checks_total + other.checks_total,
            latency=self.latency.merge(other.latency),
        )


@dataclass(frozen=True)
class AggregateStats:
    """
    Immutable view of the aggregator at one point in time.

    Attributes:
        endpoints: Per-tag statistics, keyed by tag in sorted order.
        first_timestamp: Completion time of the earliest outcome.
        last_timestamp: Completion time of the latest outcome.
    """

    endpoints: Mapping[str, EndpointStats] = field(
        default_factory=lambda: MappingProxyType({})
    )
    first_timestamp: float | None = None
    last_timestamp: float | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.first_timestamp is None or self.last_timestamp is None:
            return None
        return self.last_timestamp - self.first_timestamp

    def total(self, tags: Iterable[str] | None = None) -> EndpointStats:
        """Merge statistics across *tags* (all tags when ``None``)."""
        selected = self.endpoints.keys() if tags is None else tags
        merged = EndpointStats()
        for tag in selected:
            stats = self.endpoints.get(tag)
            if stats is not None:
                merged = merged.merge(stats)
        return merged

    def for_tag(self, tag: str) -> EndpointStats:
        return self.endpoints.get(tag, EndpointStats())


class _EndpointAccumulator:
    """Mutable per-tag counters guarded by their own lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.requests = 0
        self.failures = 0
        self.validation_failures = 0
        self.skipped = 0
        self.checks_passed = 0
        self.checks_total = 0
        self.latency_count = 0
        self.latency_total = 0.0
        self.latency_min: float | None = None
        self.latency_max: float | None = None
        self.buckets: dict[int, int] = {}

    def add(self, outcome: Outcome) -> None:
        passed = sum(1 for check in outcome.checks if check.passed)

        with self._lock:
            self.checks_passed += passed
            self.checks_total += len(outcome.checks)

            if outcome.kind is OutcomeKind.SKIPPED:
                self.skipped += 1
                return

            self.requests += 1
            if outcome.failed:
                self.failures += 1
            elif outcome.kind is OutcomeKind.VALIDATION_FAILURE:
                self.validation_failures += 1

            latency = outcome.latency_ms
            bucket = round_latency(latency)
            self.buckets[bucket] = self.buckets.get(bucket, 0) + 1
            self.latency_count += 1
            self.latency_total += latency
            if self.latency_min is None or latency < self.latency_min:
                self.latency_min = latency
            if self.latency_max is None or latency > self.latency_max:
                self.latency_max = latency

    def freeze(self) -> EndpointStats:
        with self._lock:
            return EndpointStats(
                requests=self.requests,
                failures=self.failures,
                validation_failures=self.validation_failures,
                skipped=self.skipped,
                checks_passed=self.checks_passed,
                checks_total=self.checks_total,
                latency=LatencySummary(
                    count=self.latency_count,
                    total_ms=self.latency_total,
                    min_ms=self.latency_min,
                    max_ms=self.latency_max,
                    buckets=MappingProxyType(dict(self.buckets)),
                ),
            )


class MetricsAggregator:
    """
    Shared, thread-safe sink for ``Outcome`` records.

    Example:
        aggregator = MetricsAggregator()
        aggregator.record(outcome)
        stats = aggregator.snapshot()
        stats.total().latency.percentile(95)
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._endpoints: dict[str, _EndpointAccumulator] = {}
        self._first: float | None = None
        self._last: float | None = None

    def _accumulator(self, tag: str) -> _EndpointAccumulator:
        accumulator = self._endpoints.get(tag)
        if accumulator is not None:
            return accumulator
        with self._lock:
            return self._endpoints.setdefault(tag, _EndpointAccumulator())

    def record(self, outcome: Outcome) -> None:
        """Accumulate one outcome; safe to call from any lane."""
        self._accumulator(outcome.tag).add(outcome)
        if outcome.kind is OutcomeKind.SKIPPED:
            return
        with self._lock:
            if self._first is None or outcome.timestamp < self._first:
                self._first = outcome.timestamp
            if self._last is None or outcome.timestamp > self._last:
                self._last = outcome.timestamp

    def snapshot(self) -> AggregateStats:
        """Return an immutable copy of everything recorded so far."""
        with self._lock:
            accumulators = dict(self._endpoints)
            first, last = self._first, self._last

        endpoints = {tag: accumulators[tag].freeze() for tag in sorted(accumulators)}
        return AggregateStats(
            endpoints=MappingProxyType(endpoints),
            first_timestamp=first,
            last_timestamp=last,
        )
