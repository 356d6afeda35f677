"""Database layer: declarative base, engines, tenant registry, immutability."""

from inventory_kernel.db.base import Base, UUIDString
from inventory_kernel.db.engine import (
    create_session_factory,
    create_tables,
    drop_tables,
    init_engine_from_settings,
    init_engine_from_url,
    is_postgres,
    session_scope,
)
from inventory_kernel.db.registry import TenantRegistry

__all__ = [
    "Base",
    "UUIDString",
    "TenantRegistry",
    "create_session_factory",
    "create_tables",
    "drop_tables",
    "init_engine_from_settings",
    "init_engine_from_url",
    "is_postgres",
    "session_scope",
]
