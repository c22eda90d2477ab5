"""
Unit tests for run results, the text summary and the JSON artifact.
"""

import json
from datetime import datetime, timezone

import pytest

from surge.cleanup import CleanupReport
from surge.metrics import MetricsAggregator
from surge.models import AcquisitionMethod, CheckResult, Outcome, OutcomeKind
from surge.report import artifact_path, format_summary, write_json
from surge.runner import RunResult, RunStatus
from surge.thresholds import evaluate, parse_thresholds


pytestmark = pytest.mark.unit

STARTED = datetime(2026, 3, 1, 12, 30, 0, tzinfo=timezone.utc)


def _completed(status=RunStatus.PASSED):
    aggregator = MetricsAggregator()
    for latency in (12.0, 18.0, 25.0):
        aggregator.record(Outcome("list", 200, latency, OutcomeKind.OK, (CheckResult("status", True),)))
    aggregator.record(Outcome("create", 500, 40.0, OutcomeKind.HTTP_FAILURE, (CheckResult("status", False),)))
    stats = aggregator.snapshot()
    verdict = evaluate(stats, parse_thresholds({"http_req_failed": ["rate < 0.5"], "checks": ["rate > 0.99"]}))
    return RunResult(
        name="products_smoke",
        status=status,
        method=AcquisitionMethod.AUTO_LOGIN,
        stats=stats,
        verdict=verdict,
        cleanup=CleanupReport(enabled=True, registered=2, attempted=2, deleted=2),
        peak_concurrency=5,
        started_at=STARTED,
        finished_at=STARTED,
    )


@pytest.mark.parametrize(
    "status, code",
    [(RunStatus.PASSED, 0), (RunStatus.FAILED, 1), (RunStatus.NOT_STARTED, 2)],
)
def test_exit_code_per_status(status, code):
    result = RunResult(name="x", status=status, method=AcquisitionMethod.NONE)

    assert result.exit_code == code


def test_summary_of_completed_run():
    # Arrange
    result = _completed(RunStatus.FAILED)

    # Act
    summary = format_summary(result)

    # Assert
    assert "products_smoke" in summary
    assert "auto-login" in summary
    assert "TOTAL" in summary
    assert "http_req_failed rate < 0.5" in summary
    assert "Cleanup: 2 deleted, 0 failed, 0 not attempted" in summary
    assert summary.rstrip().endswith("Overall: FAIL (thresholds breached)")


def test_summary_of_run_that_never_started():
    result = RunResult(
        name="products_load",
        status=RunStatus.NOT_STARTED,
        method=AcquisitionMethod.FAILED,
        reason="No credential could be acquired (login: HTTP 401)",
    )

    summary = format_summary(result)

    assert "Bootstrap failed: No credential could be acquired" in summary
    assert "RUN NOT STARTED" in summary
    assert "TOTAL" not in summary


def test_summary_shows_no_data_and_skipped_cleanup():
    result = RunResult(
        name="empty",
        status=RunStatus.FAILED,
        method=AcquisitionMethod.NONE,
        verdict=evaluate(MetricsAggregator().snapshot(), parse_thresholds(["errorRate < 0.5"])),
        cleanup=CleanupReport(enabled=False, skip_reason="cleanup disabled"),
    )

    summary = format_summary(result)

    assert "no data" in summary
    assert "Cleanup: skipped (cleanup disabled)" in summary


def test_to_dict_is_json_serialisable():
    data = json.loads(json.dumps(_completed().to_dict()))

    assert data["status"] == "passed"
    assert data["exit_code"] == 0
    assert data["bootstrap"]["method"] == "auto-login"
    assert data["totals"]["requests"] == 4
    assert data["endpoints"]["create"]["failures"] == 1
    assert data["verdict"]["thresholds"][0]["name"] == "http_req_failed rate < 0.5"
    assert data["cleanup"]["deleted"] == 2


def test_write_json_into_results_directory(tmp_path):
    # Arrange
    result = _completed()
    results_dir = tmp_path / "results"

    # Act
    path = write_json(result, results_dir)

    # Assert
    assert path == results_dir / "products_smoke_20260301T123000Z.json"
    assert path == artifact_path(result, results_dir)
    assert json.loads(path.read_text(encoding="utf-8"))["name"] == "products_smoke"


def test_write_json_to_explicit_file(tmp_path):
    target = tmp_path / "out" / "run.json"

    path = write_json(_completed(), target)

    assert path == target
    assert target.exists()
