"""SchemaLens core: metadata store, settings and logical FK detection."""

from schemalens_core.database import Base, close_engine, get_engine, get_session
from schemalens_core.models import (
    DbColumn,
    DbTable,
    Dependency,
    DiscoveryMethod,
    LogicalForeignKey,
    LogicalFkStatus,
    PhysicalForeignKey,
    Project,
    StoredProcedure,
)
from schemalens_core.settings import Settings, get_settings

__all__ = [
    "Base",
    "DbColumn",
    "DbTable",
    "Dependency",
    "DiscoveryMethod",
    "LogicalForeignKey",
    "LogicalFkStatus",
    "PhysicalForeignKey",
    "Project",
    "Settings",
    "StoredProcedure",
    "close_engine",
    "get_engine",
    "get_session",
    "get_settings",
]
