"""
Module: adr_kernel.db.base
Responsibility: Declarative base and shared column conventions for every
    ORM model of the orchestration engine.
Architecture position: Kernel > DB.  Imported by every model module; must
    not import from adr_orchestration.

Conventions:
    - Primary keys are uuid4 values stored as 36-character strings, so the
      same schema runs on PostgreSQL and SQLite.
    - ``datetime`` columns are timezone-aware; plain ``int`` is BIGINT.
    - Constraint and index names follow ``NAMING_CONVENTION`` so migrations
      can address them by name.
    - Tracked rows record who created and last changed them; soft-deletable
      rows are never physically removed by the engine.
"""

from datetime import datetime
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, Boolean, DateTime, MetaData, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class UUIDString(TypeDecorator):
    """``uuid.UUID`` in Python, ``VARCHAR(36)`` in the database."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)

    type_annotation_map: ClassVar[dict] = {
        datetime: DateTime(timezone=True),
        UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """Rows stamped with creation and update times and actors.

    ``created_by_id`` is mandatory: the engine writes ``SYSTEM_ACTOR_ID``
    for rows it creates on its own and the operator's id otherwise.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False,
    )
    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    updated_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)


class SoftDeleteMixin:
    """``is_deleted`` flag; deleted rows stay for audit and are filtered on read."""

    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
