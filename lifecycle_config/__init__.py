"""
lifecycle_config -- single public entrypoint for runtime settings.

Responsibility:
    Provides the ONLY way to obtain settings at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.

Architecture position:
    Configuration -- sits above ``lifecycle_kernel`` and below
    ``lifecycle_services`` / ``lifecycle_batch``.  The kernel MUST NEVER
    import from ``lifecycle_config``; callers pass the relevant values
    (at-risk window, database URL) into kernel constructors.

Failure modes:
    - ``FileNotFoundError`` -- the requested settings file does not exist.
    - ``ConfigurationError`` -- validation failed.

Audit relevance:
    Every successful call emits a ``LIFECYCLE_CONFIG_TRACE`` log entry with
    the source file and the effective values (database URL excluded).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from lifecycle_config.loader import load_yaml_file, log_level, parse_settings
from lifecycle_config.schema import LifecycleSettings

_logger = logging.getLogger("lifecycle_kernel.config")

_DEFAULT_CONFIG_FILE = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | str | None = None) -> LifecycleSettings:
    """The ONLY public configuration entrypoint.

    Args:
        path: Settings file.  Defaults to lifecycle_config/sets/default.yaml.

    Returns:
        Frozen, validated ``LifecycleSettings``.

    Raises:
        FileNotFoundError: If the settings file does not exist.
        ConfigurationError: If validation fails.
    """
    config_path = Path(path) if path is not None else _DEFAULT_CONFIG_FILE
    settings = parse_settings(
        load_yaml_file(config_path),
        env=os.environ,
        source=str(config_path),
    )

    _logger.info(
        "LIFECYCLE_CONFIG_TRACE",
        extra={
            "trace_type": "LIFECYCLE_CONFIG_TRACE",
            "source": settings.source,
            "at_risk_window_hours": settings.sla.at_risk_window_hours,
            "tick_interval_seconds": settings.scheduler.tick_interval_seconds,
            "outbound_max_attempts": settings.outbound.max_attempts,
            "outbound_workers": settings.outbound.workers,
            "outbound_synchronous": settings.outbound.synchronous,
        },
    )
    return settings


__all__ = [
    "LifecycleSettings",
    "get_active_config",
    "log_level",
]
