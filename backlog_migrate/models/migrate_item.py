"""Records persisted in a migration workspace."""

from datetime import UTC, datetime

from pydantic import BaseModel, Field

from backlog_migrate.type_definitions import (
    ID_KEYED_TYPES,
    AuditAction,
    AuditStatus,
    DetectedMode,
    ItemType,
)


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(tz=UTC)


class MigrateItem(BaseModel):
    """One conversion unit tracked in ``items.jsonl``.

    ``output_hash`` is the fingerprint of the content file currently on disk
    at ``path``; ``input_hash`` is the fingerprint of the last known remote
    content.
    """

    item_type: ItemType
    item_id: int = 0
    parent_id: int | None = None
    item_key: str
    url: str = ""
    path: str
    fetched_at: datetime | None = None
    updated_at: str | None = None
    detected_mode: DetectedMode = "unknown"
    score: int = 0
    rules: list[str] = Field(default_factory=list)
    warnings: dict[str, int] = Field(default_factory=dict)
    warning_lines: dict[str, list[int]] = Field(default_factory=dict)
    changed: bool = False
    input_hash: str = ""
    output_hash: str = ""
    applied: bool = False
    applied_at: datetime | None = None
    apply_error: str | None = None
    rollback_at: datetime | None = None
    rollback_error: str | None = None

    @property
    def identity(self) -> tuple[str, str]:
        """Stable identity used to deduplicate items across snapshots.

        Wiki pages and issue types are identified by their numeric id since
        their names can change; issues and comments by their key.
        """
        if self.item_type in ID_KEYED_TYPES:
            return (self.item_type, str(self.item_id))
        return (self.item_type, self.item_key)


class WorkspaceMetadata(BaseModel):
    """Workspace metadata stored in ``metadata.json``."""

    project_key: str
    project_name: str = ""
    project_id: int = 0
    base_branch: str = "main"
    include_comments: bool = False
    force_convert: bool = False
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class LockRecord(BaseModel):
    """Diagnostic content of the workspace lock file."""

    pid: int
    time: datetime = Field(default_factory=utc_now)
    cmd: str = ""


class AuditLogEntry(BaseModel):
    """One line of the append-only ``logs.jsonl`` audit log."""

    timestamp: datetime = Field(default_factory=utc_now)
    action: AuditAction
    status: AuditStatus
    item_type: ItemType | None = None
    item_key: str = ""
    url: str = ""
    message: str = ""
