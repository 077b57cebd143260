"""
Declarative base for every lifecycle table.

All models get a uuid4 primary key stored as ``String(36)``, and the
annotation map routes ``datetime`` through UTCDateTime so timestamps come
back aware on every backend.  Nothing here may import from models/,
services/, selectors/ or domain/.
"""

from datetime import datetime
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from lifecycle_kernel.db.types import UTCDateTime, UUIDString


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        datetime: UTCDateTime(),
        UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)
