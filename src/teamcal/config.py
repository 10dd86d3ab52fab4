"""teamcal configuration loading and validation.

Reads ``teamcal.toml``, resolves ``${VAR}`` references against the
environment, and returns a validated ``TeamcalConfig`` dataclass.  Every
section is optional; a missing file yields the defaults below.

Example::

    [teamcal.database]
    url = "${DATABASE_URL}"

    [teamcal.logging]
    level = "INFO"
    format = "json"

    [teamcal.feeds]
    member_failure_policy = "best_effort"
    max_window_days = 90

    [teamcal.availability]
    workday_hours = 8
    cron = "0 2 * * *"
    batch_concurrency = 8
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from croniter import croniter

from teamcal.db import ConnectionParams, Database
from teamcal.engine.models import MemberFailurePolicy

CONFIG_FILENAME = "teamcal.toml"
CONFIG_ENV_VAR = "TEAMCAL_CONFIG"

# Pattern matching ${VAR_NAME}
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    """Raised when teamcal configuration is malformed or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from [teamcal.logging]."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class DatabaseConfig:
    """Connection settings from [teamcal.database].

    Unset fields fall back to ``DATABASE_URL`` / ``POSTGRES_*``.
    """

    host: str = "localhost"
    port: int = 5432
    user: str = "teamcal"
    password: str = "teamcal"
    name: str = "teamcal"
    ssl: str | None = None
    min_pool_size: int = 2
    max_pool_size: int = 10

    def build(self) -> Database:
        params = ConnectionParams(
            host=self.host,
            port=self.port,
            user=self.user,
            password=self.password,
            database=self.name,
            ssl=self.ssl,
        )
        return Database(
            params, min_pool_size=self.min_pool_size, max_pool_size=self.max_pool_size
        )


@dataclass
class FeedsConfig:
    """Feed composition settings from [teamcal.feeds]."""

    member_failure_policy: MemberFailurePolicy = MemberFailurePolicy.BEST_EFFORT
    max_window_days: int = 90


@dataclass
class AvailabilityConfig:
    """Availability computation settings from [teamcal.availability]."""

    workday_hours: float = 8.0
    cron: str = "0 2 * * *"
    batch_concurrency: int = 8


@dataclass
class ApiConfig:
    """HTTP API settings from [teamcal.api]."""

    host: str = "127.0.0.1"
    port: int = 8040
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:5173"])


@dataclass
class TeamcalConfig:
    """Parsed configuration for one teamcal process."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    feeds: FeedsConfig = field(default_factory=FeedsConfig)
    availability: AvailabilityConfig = field(default_factory=AvailabilityConfig)
    api: ApiConfig = field(default_factory=ApiConfig)


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def _positive_int(section: dict, key: str, default: int, path: str) -> int:
    raw = section.get(key, default)
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid {path}.{key}: {raw!r}. Expected an integer.") from exc
    if value <= 0:
        raise ConfigError(f"Invalid {path}.{key}: {value!r}. Must be a positive integer.")
    return value


def _parse_database(section: dict) -> DatabaseConfig:
    url = section.get("url")
    params = ConnectionParams.from_url(str(url)) if url else ConnectionParams.from_env()
    ssl = section.get("ssl", params.ssl)
    return DatabaseConfig(
        host=str(section.get("host", params.host)),
        port=_positive_int(section, "port", params.port, "teamcal.database"),
        user=str(section.get("user", params.user)),
        password=str(section.get("password", params.password)),
        name=str(section.get("name", params.database)),
        ssl=str(ssl) if ssl is not None else None,
        min_pool_size=_positive_int(section, "min_pool_size", 2, "teamcal.database"),
        max_pool_size=_positive_int(section, "max_pool_size", 10, "teamcal.database"),
    )


def _parse_logging(section: dict) -> LoggingConfig:
    log_level = str(section.get("level", "INFO")).upper()
    log_format = str(section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(
            f"Invalid teamcal.logging.format: {log_format!r}. Expected 'text' or 'json'."
        )
    return LoggingConfig(level=log_level, format=log_format, log_root=section.get("log_root"))


def _parse_feeds(section: dict) -> FeedsConfig:
    raw_policy = str(section.get("member_failure_policy", MemberFailurePolicy.BEST_EFFORT))
    try:
        policy = MemberFailurePolicy(raw_policy)
    except ValueError as exc:
        allowed = ", ".join(repr(p.value) for p in MemberFailurePolicy)
        raise ConfigError(
            f"Invalid teamcal.feeds.member_failure_policy: {raw_policy!r}. "
            f"Expected one of {allowed}."
        ) from exc
    return FeedsConfig(
        member_failure_policy=policy,
        max_window_days=_positive_int(section, "max_window_days", 90, "teamcal.feeds"),
    )


def _parse_availability(section: dict) -> AvailabilityConfig:
    raw_hours = section.get("workday_hours", 8)
    try:
        workday_hours = float(raw_hours)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid teamcal.availability.workday_hours: {raw_hours!r}") from exc
    if not 0 < workday_hours <= 24:
        raise ConfigError(
            f"Invalid teamcal.availability.workday_hours: {workday_hours!r}. "
            "Must be within (0, 24]."
        )
    cron = str(section.get("cron", "0 2 * * *"))
    if not croniter.is_valid(cron):
        raise ConfigError(f"Invalid teamcal.availability.cron expression: {cron!r}")
    return AvailabilityConfig(
        workday_hours=workday_hours,
        cron=cron,
        batch_concurrency=_positive_int(
            section, "batch_concurrency", 8, "teamcal.availability"
        ),
    )


def _parse_api(section: dict) -> ApiConfig:
    raw_origins = section.get("cors_origins", ["http://localhost:5173"])
    if not isinstance(raw_origins, list):
        raise ConfigError("teamcal.api.cors_origins must be a list of strings")
    return ApiConfig(
        host=str(section.get("host", "127.0.0.1")),
        port=_positive_int(section, "port", 8040, "teamcal.api"),
        cors_origins=[str(o).strip() for o in raw_origins if str(o).strip()],
    )


def parse_config(data: dict[str, Any]) -> TeamcalConfig:
    """Validate an already-decoded TOML document."""
    data = resolve_env_vars(data)
    root = data.get("teamcal", {})
    if not isinstance(root, dict):
        raise ConfigError("[teamcal] must be a table")

    def _section(name: str) -> dict:
        section = root.get(name, {})
        if not isinstance(section, dict):
            raise ConfigError(f"[teamcal.{name}] must be a table")
        return section

    return TeamcalConfig(
        database=_parse_database(_section("database")),
        logging=_parse_logging(_section("logging")),
        feeds=_parse_feeds(_section("feeds")),
        availability=_parse_availability(_section("availability")),
        api=_parse_api(_section("api")),
    )


def load_config(path: Path | None = None) -> TeamcalConfig:
    """Load ``teamcal.toml`` from *path*, ``$TEAMCAL_CONFIG`` or the working directory.

    A missing file is not an error: defaults (plus database env vars) apply.

    Raises
    ------
    ConfigError
        If the file contains invalid TOML or invalid values.
    """
    if path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        path = Path(env_path) if env_path else Path(CONFIG_FILENAME)
    if path.is_dir():
        path = path / CONFIG_FILENAME

    if not path.exists():
        return parse_config({})

    try:
        data = tomllib.loads(path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc
    return parse_config(data)
