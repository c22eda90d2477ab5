"""
Report sink.

Two renderings of a :class:`~surge.runner.RunResult`:

- :func:`format_summary` -- a fixed-width text table for CI logs
- :func:`write_json` -- a machine-readable artifact under a results
  directory, named ``<profile>_<timestamp>.json``

The summary always states which of the three outcomes happened: the
run could not start, the run completed but thresholds failed, or the
run passed.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from surge.runner import RunResult, RunStatus

logger = logging.getLogger(__name__)

_WIDTH = 72

_HEADLINES = {
    RunStatus.NOT_STARTED: "RUN NOT STARTED (bootstrap failed)",
    RunStatus.FAILED: "FAIL (thresholds breached)",
    RunStatus.PASSED: "PASS",
}


def _fmt(value: float | None, spec: str = ".2f") -> str:
    return "-" if value is None else format(value, spec)


def format_summary(result: RunResult) -> str:
    """Render *result* as a human-readable table."""
    lines = [f"Load Test Summary: {result.name}", "-" * _WIDTH]

    if result.status is RunStatus.NOT_STARTED:
        lines.append(f"Bootstrap failed: {result.reason}")
        lines.append("-" * _WIDTH)
        lines.append(f"Overall: {_HEADLINES[result.status]}")
        return "\n".join(lines)

    lines.append(f"Credential: {result.method.value}    Peak concurrency: {result.peak_concurrency}")
    lines.append("-" * _WIDTH)
    lines.append(f"{'Endpoint':<14}{'Reqs':>8}{'Fail':>8}{'Invalid':>9}{'Avg ms':>11}{'P95 ms':>11}{'Max ms':>11}")
    lines.append("-" * _WIDTH)

    rows = list(result.stats.endpoints.items()) + [("TOTAL", result.stats.total())]
    for tag, stats in rows:
        latency = stats.latency
        lines.append(
            f"{tag:<14}{stats.requests:>8}{stats.failures:>8}{stats.validation_failures:>9}"
            f"{_fmt(latency.avg_ms):>11}{_fmt(latency.percentile(95), '.0f'):>11}"
            f"{_fmt(latency.max_ms):>11}"
        )

    if result.verdict.results:
        lines.append("-" * _WIDTH)
        lines.append(f"{'Threshold':<40}{'Actual':>12}{'Status':>12}")
        lines.append("-" * _WIDTH)
        for item in result.verdict.results:
            status = "PASS" if item.passed else "FAIL"
            observed = "no data" if item.observed is None else f"{item.observed:.4g}"
            lines.append(f"{item.threshold.name:<40}{observed:>12}{status:>12}")

    cleanup = result.cleanup
    if cleanup is not None:
        lines.append("-" * _WIDTH)
        if cleanup.skipped:
            lines.append(f"Cleanup: skipped ({cleanup.skip_reason})")
        else:
            lines.append(
                f"Cleanup: {cleanup.deleted} deleted, {len(cleanup.failures)} failed, "
                f"{cleanup.not_attempted} not attempted"
            )

    lines.append("-" * _WIDTH)
    lines.append(f"Overall: {_HEADLINES[result.status]}")
    return "\n".join(lines)


def artifact_path(result: RunResult, results_dir: Path) -> Path:
    stamp = result.started_at.strftime("%Y%m%dT%H%M%SZ")
    return Path(results_dir) / f"{result.name}_{stamp}.json"


def write_json(result: RunResult, path: Path) -> Path:
    """
    Write *result* as JSON.

    Args:
        result: The run result.
        path: Target file, or a directory in which an artifact named
            after the profile and start time is created.

    Returns:
        The path actually written.
    """
    path = Path(path)
    if path.is_dir() or not path.suffix:
        path = artifact_path(result, path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with path.open("w", encoding="utf-8") as handle:
        json.dump(result.to_dict(), handle, indent=2, sort_keys=True)
        handle.write("\n")

    logger.info("Results written to %s", path)
    return path
