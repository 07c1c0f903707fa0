"""Database layer - engine, base classes, and immutability listeners."""

from property_kernel.db.base import Base, TrackedBase, UTCDateTime, UUIDString
from property_kernel.db.engine import (
    create_tables,
    dispose_engine,
    get_engine,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)

__all__ = [
    "Base",
    "TrackedBase",
    "UTCDateTime",
    "UUIDString",
    "create_tables",
    "dispose_engine",
    "get_engine",
    "get_session_factory",
    "init_engine_from_url",
    "session_scope",
]
