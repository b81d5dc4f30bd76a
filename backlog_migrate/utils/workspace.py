"""On-disk layout of a migration workspace.

A workspace directory holds:

- ``metadata.json``: the workspace metadata record
- ``items.jsonl``: one record per migration item, rewritten atomically
- ``logs.jsonl``: the append-only audit log, not tracked by git
- ``lock``: present while a command holds the workspace
- ``issues/``, ``comments/``, ``wikis/`` and ``issue_types/``: one
  ``content.md`` per item, plus a sidecar ``metadata.json`` for wiki pages
  and issue types whose names can change
"""

import json
import re
from pathlib import Path, PurePosixPath

from backlog_migrate.models.migrate_item import MigrateItem, WorkspaceMetadata
from backlog_migrate.models.migration_error import WorkspaceError
from backlog_migrate.type_definitions import ID_KEYED_TYPES, TYPE_DIRECTORIES
from backlog_migrate.utils.data_handler import atomic_write_text, load_model, read_text, save_model

METADATA_FILE = "metadata.json"
ITEMS_FILE = "items.jsonl"
LOGS_FILE = "logs.jsonl"
LOCK_FILE = "lock"
GITIGNORE_FILE = ".gitignore"
CONTENT_FILE = "content.md"
SIDECAR_FILE = "metadata.json"

GITIGNORE_ENTRIES = (LOGS_FILE, LOCK_FILE, "*.tmp")

_UNSAFE_PATH_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def slugify(value: str) -> str:
    """Make a key safe to use as a directory name.

    Characters other than ASCII letters, digits, ``-`` and ``_`` become
    ``_``; leading and trailing underscores are dropped.
    """
    slug = _UNSAFE_PATH_CHARS.sub("_", value).strip("_")
    return slug or "item"


def content_path(item_type: str, item_key: str, item_id: int = 0) -> str:
    """Workspace relative content path for an item.

    Wiki pages and issue types are stored under their numeric id, issues
    and comments under a slug of their key.
    """
    directory = TYPE_DIRECTORIES[item_type]
    name = str(item_id) if item_type in ID_KEYED_TYPES else slugify(item_key)
    return str(PurePosixPath(directory, name, CONTENT_FILE))


class Workspace:
    """Paths and file access for one workspace directory."""

    def __init__(self, root: Path) -> None:
        """Initialize the workspace.

        Args:
            root: Workspace directory, it does not need to exist yet

        """
        self.root = Path(root).resolve()

    @property
    def metadata_path(self) -> Path:
        return self.root / METADATA_FILE

    @property
    def items_path(self) -> Path:
        return self.root / ITEMS_FILE

    @property
    def logs_path(self) -> Path:
        return self.root / LOGS_FILE

    @property
    def lock_path(self) -> Path:
        return self.root / LOCK_FILE

    @property
    def gitignore_path(self) -> Path:
        return self.root / GITIGNORE_FILE

    def create(self) -> None:
        """Create the workspace directory.

        Raises:
            WorkspaceError: If the directory cannot be created

        """
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            msg = f"Cannot create workspace directory {self.root}: {e}"
            raise WorkspaceError(msg) from e

    def has_metadata(self) -> bool:
        return self.metadata_path.exists()

    def load_metadata(self) -> WorkspaceMetadata:
        """Load the workspace metadata.

        Raises:
            WorkspaceError: If the workspace has not been initialized

        """
        try:
            return load_model(WorkspaceMetadata, self.metadata_path)
        except FileNotFoundError as e:
            msg = f"No migration workspace in {self.root} (metadata.json missing, run init first)"
            raise WorkspaceError(msg) from e

    def save_metadata(self, metadata: WorkspaceMetadata) -> None:
        save_model(metadata, self.metadata_path)

    def ensure_gitignore(self) -> bool:
        """Make sure the audit log, lock and temporary files are ignored by git.

        Returns:
            True if the ignore file was created or extended

        """
        existing = read_text(self.gitignore_path) if self.gitignore_path.exists() else ""
        present = {line.strip() for line in existing.splitlines()}
        missing = [entry for entry in GITIGNORE_ENTRIES if entry not in present]
        if not missing:
            return False
        prefix = existing if not existing or existing.endswith("\n") else existing + "\n"
        atomic_write_text(self.gitignore_path, prefix + "".join(f"{entry}\n" for entry in missing))
        return True

    def absolute(self, relative_path: str) -> Path:
        """Resolve a workspace relative path."""
        return self.root / PurePosixPath(relative_path)

    def read_content(self, item: MigrateItem) -> str:
        """Read the content file of an item."""
        return read_text(self.absolute(item.path))

    def write_content(self, item: MigrateItem, content: str) -> None:
        """Write the content file of an item."""
        atomic_write_text(self.absolute(item.path), content)

    def sidecar_path(self, item: MigrateItem) -> str:
        """Workspace relative sidecar metadata path of an item."""
        return str(PurePosixPath(item.path).parent / SIDECAR_FILE)

    def write_sidecar(self, item: MigrateItem) -> str | None:
        """Write the sidecar metadata for wiki pages and issue types.

        Returns:
            The relative sidecar path, or None for item types without one

        """
        if item.item_type not in ID_KEYED_TYPES:
            return None
        sidecar = {
            "id": item.item_id,
            "name": item.item_key,
            "url": item.url,
            "updated_at": item.updated_at,
        }
        relative = self.sidecar_path(item)
        atomic_write_text(
            self.absolute(relative), json.dumps(sidecar, indent=2, ensure_ascii=False) + "\n",
        )
        return relative
