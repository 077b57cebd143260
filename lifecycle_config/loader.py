"""
Configuration Loader (``lifecycle_config.loader``).

Responsibility
--------------
Loads a YAML settings file and parses it into the frozen
``lifecycle_config.schema`` types.  The single public entry point for
runtime config is ``lifecycle_config.get_active_config()``.

Invariants enforced
-------------------
* Unknown top-level sections are rejected; a typo never silently falls
  back to a default.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``validate_settings`` runs on every parse.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Out-of-range or mistyped values  -> ``ConfigurationError``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping

import yaml

from lifecycle_config.schema import (
    DatabaseSettings,
    LifecycleSettings,
    LoggingSettings,
    OutboundSettings,
    SchedulerSettings,
    SLASettings,
)
from lifecycle_kernel.exceptions import ConfigurationError

DATABASE_URL_ENV = "LIFECYCLE_DATABASE_URL"

_SECTIONS = ("database", "sla", "scheduler", "outbound", "logging")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _section(data: Mapping[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"section {name!r} must be a mapping")
    return value


def _number(section: dict[str, Any], key: str, default: float, cast=float):
    raw = section.get(key, default)
    if isinstance(raw, bool):
        raise ConfigurationError(f"{key} must be a number, got {raw!r}")
    try:
        return cast(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}") from exc


def _flag(section: dict[str, Any], key: str, default: bool) -> bool:
    raw = section.get(key, default)
    if not isinstance(raw, bool):
        raise ConfigurationError(f"{key} must be true or false, got {raw!r}")
    return raw


def parse_settings(
    data: Mapping[str, Any],
    env: Mapping[str, str] | None = None,
    source: str | None = None,
) -> LifecycleSettings:
    """
    Build ``LifecycleSettings`` from a parsed YAML mapping.

    ``env`` supplies overrides; ``LIFECYCLE_DATABASE_URL`` replaces
    ``database.url`` when set and non-empty.
    """
    unknown = sorted(set(data) - set(_SECTIONS))
    if unknown:
        raise ConfigurationError(f"unknown configuration sections: {', '.join(unknown)}")

    db = _section(data, "database")
    sla = _section(data, "sla")
    scheduler = _section(data, "scheduler")
    outbound = _section(data, "outbound")
    log = _section(data, "logging")

    url = str(db.get("url", DatabaseSettings.url))
    if env and env.get(DATABASE_URL_ENV):
        url = env[DATABASE_URL_ENV]

    settings = LifecycleSettings(
        database=DatabaseSettings(url=url, echo=_flag(db, "echo", False)),
        sla=SLASettings(
            at_risk_window_hours=_number(sla, "at_risk_window_hours", 2.0),
        ),
        scheduler=SchedulerSettings(
            tick_interval_seconds=_number(scheduler, "tick_interval_seconds", 300.0),
        ),
        outbound=OutboundSettings(
            max_attempts=_number(outbound, "max_attempts", 5, int),
            workers=_number(outbound, "workers", 4, int),
            synchronous=_flag(outbound, "synchronous", False),
        ),
        logging=LoggingSettings(level=str(log.get("level", "INFO")).upper()),
        source=source,
    )
    validate_settings(settings)
    return settings


def validate_settings(settings: LifecycleSettings) -> None:
    """Raise ``ConfigurationError`` on the first out-of-range value."""
    if not settings.database.url:
        raise ConfigurationError("database.url must not be empty")
    if settings.sla.at_risk_window_hours < 0:
        raise ConfigurationError("sla.at_risk_window_hours must not be negative")
    if settings.scheduler.tick_interval_seconds <= 0:
        raise ConfigurationError("scheduler.tick_interval_seconds must be positive")
    if settings.outbound.max_attempts <= 0:
        raise ConfigurationError("outbound.max_attempts must be positive")
    if settings.outbound.workers <= 0:
        raise ConfigurationError("outbound.workers must be positive")
    if settings.logging.level not in _LOG_LEVELS:
        raise ConfigurationError(
            f"logging.level must be one of {', '.join(_LOG_LEVELS)}, "
            f"got {settings.logging.level!r}"
        )


def log_level(settings: LifecycleSettings) -> int:
    return getattr(logging, settings.logging.level)
