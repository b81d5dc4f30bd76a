"""Workspace item store backed by ``items.jsonl``.

The item list is always rewritten wholesale: read everything, modify it in
memory, then atomically replace the file.
"""

from collections.abc import Iterable
from pathlib import Path

from backlog_migrate.models.migrate_item import MigrateItem
from backlog_migrate.utils.data_handler import DEFAULT_MAX_LINE_BYTES, iter_jsonl, write_jsonl


class ItemStore:
    """Reads and writes the migration items of one workspace."""

    def __init__(self, path: Path, max_line_bytes: int = DEFAULT_MAX_LINE_BYTES) -> None:
        """Initialize the store.

        Args:
            path: Location of ``items.jsonl``
            max_line_bytes: Maximum size of one serialized item

        """
        self.path = path
        self.max_line_bytes = max_line_bytes

    def read_all(self) -> list[MigrateItem]:
        """Read every item in snapshot order.

        Raises:
            FileNotFoundError: If the item log does not exist
            ItemStoreError: If a record is corrupt or too long

        """
        return list(iter_jsonl(MigrateItem, self.path, self.max_line_bytes))

    def read_if_exists(self) -> list[MigrateItem]:
        """Read every item, treating a missing item log as an empty workspace."""
        if not self.path.exists():
            return []
        return self.read_all()

    def write_all(self, items: Iterable[MigrateItem]) -> None:
        """Atomically replace the item log.

        Raises:
            ItemStoreError: If the file cannot be written

        """
        write_jsonl(self.path, items)


def index_by_identity(items: Iterable[MigrateItem]) -> dict[tuple[str, str], MigrateItem]:
    """Map each item's identity to the item."""
    return {item.identity: item for item in items}
