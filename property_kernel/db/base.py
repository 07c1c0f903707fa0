"""
Declarative base and column types shared by every kernel table.

Primary keys are uuid4 values stored as 36-character strings, so the same
schema runs on PostgreSQL and SQLite.  Datetime columns always load as aware
UTC datetimes.  Mutable reference rows (properties, governed transactions,
workflow templates, roles) carry who created and last touched them through
TrackedBase; the approval decision trail itself is kept in
approval_responses and audit_events, not in these columns.

Nothing under models/, services/ or selectors/ may be imported from here.
"""

from datetime import UTC, datetime
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID <-> String(36)."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(value)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware DateTime that always loads as UTC.

    SQLite stores naive text; every value the kernel writes is UTC, so a
    naive value read back gets UTC attached.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            return value.astimezone(UTC)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Adds created/updated stamps and actors.

    ``created_by_id`` is required; services set ``updated_by_id`` themselves
    whenever they change a tracked row.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), onupdate=func.now(), nullable=False
    )
    created_by_id: Mapped[PyUUID] = mapped_column(UUIDString(), nullable=False)
    updated_by_id: Mapped[PyUUID | None] = mapped_column(UUIDString(), nullable=True)
