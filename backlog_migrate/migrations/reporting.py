"""Read-only views of a migration workspace: items, diffs, audit log and status."""

from collections.abc import Collection

from backlog_migrate import config
from backlog_migrate.clients.git_client import GitClient
from backlog_migrate.models.migrate_item import AuditLogEntry, MigrateItem, WorkspaceMetadata
from backlog_migrate.settings import Settings
from backlog_migrate.type_definitions import ITEM_TYPES
from backlog_migrate.utils.audit_log import AuditLog
from backlog_migrate.utils.item_store import ItemStore
from backlog_migrate.utils.text_diff import unified_diff
from backlog_migrate.utils.workspace import Workspace

logger = config.logger

STATUS_COLUMNS = ("total", "changed", "applied", "pending", "errors")


def needs_attention(item: MigrateItem) -> bool:
    """Return True for items worth listing by default."""
    return item.changed or item.applied or bool(item.apply_error or item.rollback_error)


class WorkspaceReport:
    """Reports on the state of one workspace without modifying it."""

    def __init__(
        self,
        workspace: Workspace,
        settings: Settings | None = None,
        git: GitClient | None = None,
    ) -> None:
        self.workspace = workspace
        self.settings = settings or config.settings
        self.git = git or GitClient(workspace.root, executable=self.settings.git_executable)
        self.store = ItemStore(workspace.items_path, self.settings.max_line_bytes)
        self.audit = AuditLog(workspace.logs_path, self.settings.max_line_bytes)

    def metadata(self) -> WorkspaceMetadata:
        """Load the workspace metadata.

        Raises:
            WorkspaceError: If the workspace is not initialized

        """
        return self.workspace.load_metadata()

    def list_items(self, show_all: bool = False, types: Collection[str] | None = None) -> list[MigrateItem]:
        """List items in snapshot order.

        Args:
            show_all: Include items that need no conversion and were never applied
            types: Restrict to these item types

        Returns:
            Matching items

        """
        items = self.store.read_if_exists()
        return [
            item
            for item in items
            if (show_all or needs_attention(item)) and (not types or item.item_type in types)
        ]

    def item_diff(self, item: MigrateItem) -> str:
        """Diff between the first snapshot of an item and its content on disk.

        Returns:
            Unified diff text, empty when the content is unchanged or has no
            snapshot in history

        """
        commit = self.git.first_commit_for(item.path)
        if commit is None:
            logger.debug("No snapshot in history for %s", item.path)
            return ""
        pristine = self.git.show_file(commit, item.path)
        path = self.workspace.absolute(item.path)
        current = self.workspace.read_content(item) if path.exists() else ""
        return unified_diff(pristine, current, f"snapshot/{item.path}", f"workspace/{item.path}")

    def logs(self, limit: int | None = None, show_all: bool = False) -> list[AuditLogEntry]:
        """Return audit log entries, oldest first.

        Args:
            limit: Number of newest entries to return, defaults to the
                configured log limit
            show_all: Return every entry regardless of the limit

        """
        if show_all:
            return self.audit.read_all()
        return self.audit.tail(limit if limit is not None else self.settings.log_limit)

    def status(self) -> dict[str, dict[str, int]]:
        """Per item type counts of total, changed, applied, pending and errored items.

        Pending items need conversion but have not been applied yet.
        """
        counts = {item_type: dict.fromkeys(STATUS_COLUMNS, 0) for item_type in ITEM_TYPES}
        for item in self.store.read_if_exists():
            row = counts[item.item_type]
            row["total"] += 1
            row["changed"] += int(item.changed)
            row["applied"] += int(item.applied)
            row["pending"] += int(item.changed and not item.applied)
            row["errors"] += int(bool(item.apply_error or item.rollback_error))
        return counts
