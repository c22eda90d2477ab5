"""Exception hierarchy for load-test runs."""

from __future__ import annotations


class SurgeError(Exception):
    """Base class for all errors raised by the orchestration core."""


class ConfigError(SurgeError, ValueError):
    """A run profile or configuration value is missing or malformed."""


class ThresholdSyntaxError(ConfigError):
    """A threshold expression could not be parsed."""


class BootstrapFailure(SurgeError):
    """
    No usable credential could be obtained before the run.

    Raised by the credential bootstrapper once every step of the
    fallback chain has failed.  The run must not start.

    Attributes:
        attempts: Human-readable description of each step that was
            tried, in order (e.g. ``"login: HTTP 401"``).
    """

    def __init__(self, message: str, attempts: list[str] | None = None):
        super().__init__(message)
        self.attempts = list(attempts or [])

    def __str__(self) -> str:
        base = super().__str__()
        if not self.attempts:
            return base
        return f"{base} ({'; '.join(self.attempts)})"
