"""Database layer - engine, base classes, numeric conventions, immutability."""

from ownership_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from ownership_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from ownership_kernel.db.types import (
    BASIS_POINTS_PER_WHOLE,
    format_minor_units,
    validate_currency,
)

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "BASIS_POINTS_PER_WHOLE",
    "format_minor_units",
    "validate_currency",
]
