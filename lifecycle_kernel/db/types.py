"""
Custom column types shared by lifecycle models.

UUIDString stores UUIDs as text so the same schema runs on PostgreSQL and
SQLite.  UTCDateTime keeps every persisted timestamp in UTC and always hands back
timezone-aware values, including on SQLite which stores naive strings.
"""

from datetime import timezone
from uuid import UUID

from sqlalchemy import DateTime, String
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC timestamp.

    Contract:
        Accepts aware datetimes (any zone) or naive datetimes assumed to be
        UTC.  Returns aware UTC datetimes.

    Guarantees:
        - process_bind_param: normalizes to UTC before storing.
        - process_result_value: attaches UTC when the backend drops tzinfo.
        - Comparisons against bound parameters use the same normalization,
          so ``deadline < :now`` behaves identically on PostgreSQL and SQLite.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class UUIDString(TypeDecorator):
    """UUID bound as ``str(uuid)`` and loaded back as ``uuid.UUID``."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)
