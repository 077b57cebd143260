"""Persistence plumbing: engine and sessions, column types, integrity listeners."""

from lifecycle_kernel.db.base import Base
from lifecycle_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    session_scope,
)
from lifecycle_kernel.db.types import UTCDateTime, UUIDString

__all__ = [
    "Base",
    "UTCDateTime",
    "UUIDString",
    "create_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
]
