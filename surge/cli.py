"""
Command-line entry point.

Usage::

    surge --profile products_load
    surge --profile ./my_profile.yml --base-url http://staging:8080 --no-cleanup

Exit codes let CI tell the outcomes apart:

- ``0`` -- the run passed every threshold
- ``1`` -- the run completed but at least one threshold failed
- ``2`` -- the run could not start (no credential could be acquired)
- ``3`` -- configuration or usage error (bad profile, bad flags)
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from surge.config import build_run_config, get_config, load_profile
from surge.exceptions import ConfigError
from surge.report import format_summary, write_json
from surge.runner import EXIT_USAGE_ERROR, LoadRun

logger = logging.getLogger(__name__)


class _ArgumentParser(argparse.ArgumentParser):
    """``argparse`` exits with 2 on bad flags; 2 is taken by "not started"."""

    def error(self, message: str):
        self.print_usage(sys.stderr)
        self.exit(EXIT_USAGE_ERROR, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="surge",
        description="Run a staged load test against an HTTP product API.",
    )
    parser.add_argument(
        "--profile",
        required=True,
        help="Profile name (e.g. products_load) or path to a YAML profile",
    )
    parser.add_argument("--base-url", help="Target service URL (overrides BASE_URL)")
    parser.add_argument("--token", help="Pre-issued bearer token (overrides ADMIN_TOKEN)")
    parser.add_argument(
        "--no-cleanup",
        action="store_true",
        help="Leave created resources in place after the run",
    )
    parser.add_argument(
        "--results-dir",
        type=Path,
        default=None,
        help="Directory for the JSON results artifact",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the result as JSON instead of the text summary",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (overrides LOG_LEVEL)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """
    Parse flags, execute the run and report it.

    Returns:
        The process exit code.
    """
    args = build_parser().parse_args(argv)
    settings = get_config()
    try:
        logging.getLogger().setLevel(args.log_level or settings.LOG_LEVEL.upper())
    except ValueError:
        print(f"Configuration error: unknown LOG_LEVEL {settings.LOG_LEVEL!r}", file=sys.stderr)
        return EXIT_USAGE_ERROR

    try:
        profile = load_profile(args.profile)
        run_config = build_run_config(
            profile,
            settings,
            base_url=args.base_url,
            token=args.token,
            cleanup_enabled=False if args.no_cleanup else None,
        )
        run = LoadRun(run_config)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_USAGE_ERROR

    result = run.execute()

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, sort_keys=True))
    else:
        print(format_summary(result))

    if args.results_dir is not None:
        write_json(result, args.results_dir)

    return result.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
