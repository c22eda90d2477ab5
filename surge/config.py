"""
Run configuration.

Two layers of configuration feed a run:

1. **Environment** -- class-based settings (target URL, credentials,
   cleanup bounds, timeouts) read from environment variables with
   documented defaults.  ``get_config`` picks the class for the current
   ``SURGE_ENV``.
2. **Profiles** -- YAML files describing *what* to run: the scenario,
   the stage schedule, the thresholds and the pacing.  Profiles mirror
   k6's ``options`` block so existing schedules port over unchanged.

``build_run_config`` merges both into an immutable :class:`RunConfig`.

Key Concepts Demonstrated:
- Class-based configuration with inheritance for DRY defaults
- Environment-variable overrides for 12-factor deployability
- Strict profile validation that fails before any traffic is sent
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from surge.exceptions import ConfigError
from surge.models import Pacing, Stage
from surge.thresholds import Threshold, parse_thresholds

# Profiles shipped inside the package.
PROFILES_DIR = Path(__file__).resolve().parent / "profiles"


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() not in {"false", "0", "no", "off"}


class Config:
    """
    Base (shared) configuration.

    Every value can be overridden by the environment variable of the
    same name.  ``CLEAN_UP`` follows the original suite's convention:
    cleanup is on unless the variable is literally ``"false"``.
    """

    BASE_URL: str = os.environ.get("BASE_URL", "http://localhost:8080")

    # Optional pre-issued token; validated against /auth/me before use.
    ADMIN_TOKEN: str | None = os.environ.get("ADMIN_TOKEN") or None
    ADMIN_EMAIL: str = os.environ.get("ADMIN_EMAIL", "admin@example.com")
    ADMIN_PASSWORD: str = os.environ.get("ADMIN_PASSWORD", "admin123")

    CLEAN_UP: bool = _env_flag("CLEAN_UP", True)

    # Numeric values are kept as raw strings; build_run_config converts
    # and validates them, raising ConfigError for bad input.
    CLEANUP_MAX: str = os.environ.get("CLEANUP_MAX", "100")
    CLEANUP_BATCH_SIZE: str = os.environ.get("CLEANUP_BATCH_SIZE", "10")
    CLEANUP_BATCH_PAUSE: str = os.environ.get("CLEANUP_BATCH_PAUSE", "0.1")

    # Seconds. The identity probe gets a shorter budget than regular calls.
    REQUEST_TIMEOUT: str = os.environ.get("REQUEST_TIMEOUT", "30")
    PROBE_TIMEOUT: str = os.environ.get("PROBE_TIMEOUT", "10")
    GRACEFUL_STOP: str = os.environ.get("GRACEFUL_STOP", "30")

    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")


class DevelopmentConfig(Config):
    """Local runs against a developer stack."""

    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "DEBUG")


class TestingConfig(Config):
    """
    Test-suite overrides.

    Short timeouts and pauses keep the suite fast; the base URL points at
    a non-routable host so nothing leaks to a real service by accident.
    """

    BASE_URL: str = os.environ.get("TEST_BASE_URL", "http://target.test")
    ADMIN_TOKEN: str | None = None
    CLEANUP_BATCH_PAUSE: str = "0"
    REQUEST_TIMEOUT: str = "2"
    PROBE_TIMEOUT: str = "1"
    GRACEFUL_STOP: str = "5"


class ProductionConfig(Config):
    """Shared environments; everything comes from the environment."""


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": Config,
}


def get_config(env: str | None = None) -> type[Config]:
    """
    Return the configuration class for the given environment.

    Args:
        env: One of ``"development"``, ``"testing"`` or
            ``"production"``.  When *None*, ``SURGE_ENV`` is consulted.

    Returns:
        The matching ``Config`` subclass, or ``Config`` itself for an
        unknown or unset environment.
    """
    if env is None:
        env = os.environ.get("SURGE_ENV", "default")
    return config.get(env, config["default"])


# =====================================================================
# Profiles
# =====================================================================

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: Any) -> float:
    """
    Convert a k6-style duration to seconds.

    Accepts plain numbers (seconds) and strings such as ``"30s"``,
    ``"1m"``, ``"1m30s"`` or ``"250ms"``.

    Raises:
        ConfigError: If the value cannot be interpreted.
    """
    if isinstance(value, bool):
        raise ConfigError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ConfigError(f"Duration must be >= 0: {value!r}")
        return float(value)
    if not isinstance(value, str):
        raise ConfigError(f"Invalid duration: {value!r}")

    text = value.strip().lower()
    position = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        position = match.end()

    if position == 0 or position != len(text):
        raise ConfigError(f"Invalid duration: {value!r}")
    return total


def parse_stages(raw: Any) -> tuple[Stage, ...]:
    """Build ``Stage`` values from a profile's ``stages`` list."""
    if not isinstance(raw, list) or not raw:
        raise ConfigError("Profile must define a non-empty 'stages' list")

    stages = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict) or "duration" not in item or "target" not in item:
            raise ConfigError(f"Stage {index} must define 'duration' and 'target'")
        target = item["target"]
        if isinstance(target, bool) or not isinstance(target, int) or target < 0:
            raise ConfigError(f"Stage {index} target must be a non-negative integer")
        stages.append(Stage(duration=parse_duration(item["duration"]), target=target))
    return tuple(stages)


def parse_pacing(raw: Any) -> Pacing:
    """Build ``Pacing`` from ``{min, max}`` or a single number of seconds."""
    if raw is None:
        return Pacing()
    try:
        if isinstance(raw, dict):
            return Pacing(
                minimum=parse_duration(raw.get("min", 0)),
                maximum=parse_duration(raw.get("max", raw.get("min", 0))),
            )
        delay = parse_duration(raw)
        return Pacing(minimum=delay, maximum=delay)
    except ValueError as exc:
        raise ConfigError(f"Invalid pacing: {exc}") from exc


@dataclass(frozen=True)
class Profile:
    """A parsed YAML run profile."""

    name: str
    scenario: str
    stages: tuple[Stage, ...]
    thresholds: tuple[Threshold, ...] = ()
    pacing: Pacing = field(default_factory=Pacing)
    options: dict[str, Any] = field(default_factory=dict)


def resolve_profile_path(name_or_path: str | Path) -> Path:
    """Resolve a profile name (``products_load``) or a file path."""
    candidate = Path(name_or_path)
    if candidate.suffix in {".yml", ".yaml"} or candidate.exists():
        return candidate
    return PROFILES_DIR / f"{name_or_path}.yml"


def load_profile(name_or_path: str | Path) -> Profile:
    """
    Read and validate a YAML run profile.

    Raises:
        ConfigError: If the file is missing or any section is invalid.
    """
    path = resolve_profile_path(name_or_path)
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except OSError as exc:
        raise ConfigError(f"Cannot read profile {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Profile {path} is not valid YAML: {exc}") from exc

    return profile_from_dict(data, default_name=path.stem)


def profile_from_dict(data: Any, default_name: str = "profile") -> Profile:
    """Validate an already-loaded profile mapping."""
    if not isinstance(data, dict):
        raise ConfigError("Profile must be a mapping")

    scenario = data.get("scenario")
    if not isinstance(scenario, str) or not scenario:
        raise ConfigError("Profile must name a 'scenario'")

    options = data.get("options") or {}
    if not isinstance(options, dict):
        raise ConfigError("Profile 'options' must be a mapping")

    return Profile(
        name=str(data.get("name", default_name)),
        scenario=scenario,
        stages=parse_stages(data.get("stages")),
        thresholds=parse_thresholds(data.get("thresholds") or {}),
        pacing=parse_pacing(data.get("pacing")),
        options=dict(options),
    )


@dataclass(frozen=True)
class Credentials:
    email: str
    password: str
    token: str | None = None


@dataclass(frozen=True)
class CleanupSettings:
    enabled: bool = True
    max_deletions: int = 100
    batch_size: int = 10
    batch_pause: float = 0.1

    def __post_init__(self) -> None:
        if self.max_deletions < 0:
            raise ConfigError(f"Cleanup max_deletions must be >= 0, got {self.max_deletions}")
        if self.batch_size < 1:
            raise ConfigError(f"Cleanup batch_size must be >= 1, got {self.batch_size}")
        if not self.batch_pause >= 0:
            raise ConfigError(f"Cleanup batch_pause must be >= 0, got {self.batch_pause}")


@dataclass(frozen=True)
class RunConfig:
    """
    Everything a run needs, fixed before the first request.

    Attributes:
        name: Profile name, used for report file names.
        base_url: Root URL of the target service.
        scenario: Name of the scenario executor to run.
        stages: Concurrency schedule.
        thresholds: Pass/fail criteria.
        pacing: Delay distribution between iterations of one lane.
        credentials: Pre-supplied token and admin credentials.
        cleanup: Bounds for post-run cleanup.
        request_timeout: Per-request timeout in seconds.
        probe_timeout: Timeout for the token validation probe.
        graceful_stop: Seconds to wait for in-flight iterations at the
            end of the run.
        options: Scenario-specific parameters (page size, think time).
    """

    name: str
    base_url: str
    scenario: str
    stages: tuple[Stage, ...]
    thresholds: tuple[Threshold, ...]
    pacing: Pacing
    credentials: Credentials
    cleanup: CleanupSettings
    request_timeout: float = 30.0
    probe_timeout: float = 10.0
    graceful_stop: float = 30.0
    options: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.stages:
            raise ConfigError("A run needs at least one stage")
        if not self.request_timeout > 0 or not self.probe_timeout > 0:
            raise ConfigError("Request and probe timeouts must be > 0")
        if not self.graceful_stop >= 0:
            raise ConfigError(f"graceful_stop must be >= 0, got {self.graceful_stop}")

    @property
    def total_duration(self) -> float:
        return sum(stage.duration for stage in self.stages)

    def with_overrides(self, **changes: Any) -> RunConfig:
        """Return a copy with selected fields replaced."""
        return replace(self, **changes)


def _number(settings: type[Config], name: str, cast: type, minimum: float, *, strict: bool = False):
    """Convert a raw numeric setting, raising ``ConfigError`` when it is unusable."""
    raw = getattr(settings, name)
    try:
        value = cast(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None

    in_range = value > minimum if strict else value >= minimum
    if not in_range:
        bound = ">" if strict else ">="
        raise ConfigError(f"{name} must be {bound} {minimum:g}, got {raw!r}")
    return value


def build_run_config(
    profile: Profile,
    settings: type[Config] | None = None,
    *,
    base_url: str | None = None,
    token: str | None = None,
    cleanup_enabled: bool | None = None,
) -> RunConfig:
    """
    Merge a profile with environment settings into a ``RunConfig``.

    Explicit keyword arguments (typically CLI flags) win over the
    environment, which wins over class defaults.

    Raises:
        ConfigError: If a numeric setting is malformed or out of range.
    """
    settings = settings or get_config()

    return RunConfig(
        name=profile.name,
        base_url=base_url or settings.BASE_URL,
        scenario=profile.scenario,
        stages=profile.stages,
        thresholds=profile.thresholds,
        pacing=profile.pacing,
        credentials=Credentials(
            email=settings.ADMIN_EMAIL,
            password=settings.ADMIN_PASSWORD,
            token=token or settings.ADMIN_TOKEN,
        ),
        cleanup=CleanupSettings(
            enabled=settings.CLEAN_UP if cleanup_enabled is None else cleanup_enabled,
            max_deletions=_number(settings, "CLEANUP_MAX", int, 0),
            batch_size=_number(settings, "CLEANUP_BATCH_SIZE", int, 1),
            batch_pause=_number(settings, "CLEANUP_BATCH_PAUSE", float, 0),
        ),
        request_timeout=_number(settings, "REQUEST_TIMEOUT", float, 0, strict=True),
        probe_timeout=_number(settings, "PROBE_TIMEOUT", float, 0, strict=True),
        graceful_stop=_number(settings, "GRACEFUL_STOP", float, 0),
        options=dict(profile.options),
    )
