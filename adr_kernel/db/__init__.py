"""Database layer: engine lifecycle, declarative base and column types."""

from adr_kernel.db.base import Base, SoftDeleteMixin, TrackedBase, UUIDString
from adr_kernel.db.engine import (
    create_tables,
    drop_tables,
    enable_sqlite_savepoints,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)

__all__ = [
    "Base",
    "SoftDeleteMixin",
    "TrackedBase",
    "UUIDString",
    "create_tables",
    "drop_tables",
    "enable_sqlite_savepoints",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "reset_engine",
    "session_scope",
]
