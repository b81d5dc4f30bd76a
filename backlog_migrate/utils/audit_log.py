"""Append-only audit log backed by ``logs.jsonl``."""

from collections import deque
from pathlib import Path

from backlog_migrate.models.migrate_item import AuditLogEntry, MigrateItem
from backlog_migrate.type_definitions import AuditAction, AuditStatus
from backlog_migrate.utils.data_handler import DEFAULT_MAX_LINE_BYTES, append_jsonl, iter_jsonl


class AuditLog:
    """Records one entry per attempted item operation."""

    def __init__(self, path: Path, max_line_bytes: int = DEFAULT_MAX_LINE_BYTES) -> None:
        self.path = path
        self.max_line_bytes = max_line_bytes

    def append(self, entry: AuditLogEntry) -> None:
        """Append an entry to the log."""
        append_jsonl(self.path, entry)

    def record(
        self,
        action: AuditAction,
        status: AuditStatus,
        item: MigrateItem | None = None,
        message: str = "",
    ) -> AuditLogEntry:
        """Build and append an entry for an item.

        Args:
            action: Operation that was attempted
            status: Outcome of the operation
            item: Item the operation was about, None for workspace wide entries
            message: Optional detail such as an error message

        Returns:
            The appended entry

        """
        entry = AuditLogEntry(
            action=action,
            status=status,
            item_type=item.item_type if item else None,
            item_key=item.item_key if item else "",
            url=item.url if item else "",
            message=message,
        )
        self.append(entry)
        return entry

    def read_all(self) -> list[AuditLogEntry]:
        """Read every entry, oldest first. A missing log is empty."""
        if not self.path.exists():
            return []
        return list(iter_jsonl(AuditLogEntry, self.path, self.max_line_bytes))

    def tail(self, limit: int) -> list[AuditLogEntry]:
        """Return the newest ``limit`` entries, oldest first."""
        if not self.path.exists() or limit <= 0:
            return []
        return list(deque(iter_jsonl(AuditLogEntry, self.path, self.max_line_bytes), maxlen=limit))
