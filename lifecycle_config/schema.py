"""
LifecycleSettings schema.

Runtime settings for the lifecycle engine.  YAML fragments are parsed into
these frozen types by the loader.  SLA hours and transition tables are NOT
settings: they live in ``lifecycle_kernel.domain.definitions`` and change
only with a deploy.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite:///lifecycle.db"
    echo: bool = False


@dataclass(frozen=True)
class SLASettings:
    at_risk_window_hours: float = 2.0

    @property
    def at_risk_window(self) -> timedelta:
        return timedelta(hours=self.at_risk_window_hours)


@dataclass(frozen=True)
class SchedulerSettings:
    tick_interval_seconds: float = 300.0


@dataclass(frozen=True)
class OutboundSettings:
    max_attempts: int = 5
    workers: int = 4
    synchronous: bool = False


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"


@dataclass(frozen=True)
class LifecycleSettings:
    """Root settings object returned by ``get_active_config()``."""

    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    sla: SLASettings = field(default_factory=SLASettings)
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    outbound: OutboundSettings = field(default_factory=OutboundSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    source: str | None = None
