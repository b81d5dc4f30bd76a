"""Models package for records and results used in the application."""

from backlog_migrate.models.component_results import ComponentResult
from backlog_migrate.models.migrate_item import (
    AuditLogEntry,
    LockRecord,
    MigrateItem,
    WorkspaceMetadata,
)
from backlog_migrate.models.migration_error import (
    ConfigurationError,
    ItemStoreError,
    LockError,
    MigrationError,
    WorkspaceError,
)

__all__ = [
    "AuditLogEntry",
    "ComponentResult",
    "ConfigurationError",
    "ItemStoreError",
    "LockError",
    "MigrateItem",
    "MigrationError",
    "LockRecord",
    "WorkspaceError",
    "WorkspaceMetadata",
]
