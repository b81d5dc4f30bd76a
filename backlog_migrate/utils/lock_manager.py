"""Exclusive lock for one workspace directory.

The lock is a file created with exclusive-create semantics: creating it
fails when it already exists. Its JSON content only serves diagnostics.
"""

import os
import sys
from pathlib import Path

from backlog_migrate import config
from backlog_migrate.models.migrate_item import LockRecord
from backlog_migrate.models.migration_error import LockError


class WorkspaceLock:
    """Held lock on a workspace, released with :meth:`release`.

    Can be used as a context manager.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self.released = False

    def release(self) -> None:
        """Remove the lock file. Releasing twice is a no-op."""
        if self.released:
            return
        self.path.unlink(missing_ok=True)
        self.released = True
        config.logger.debug("Released workspace lock %s", self.path)

    def __enter__(self) -> "WorkspaceLock":
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.release()


def read_lock_record(path: Path) -> LockRecord | None:
    """Read the diagnostic record of an existing lock, None if unreadable."""
    try:
        return LockRecord.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None


def acquire(lock_path: Path, force: bool = False, command: str | None = None) -> WorkspaceLock:
    """Acquire the workspace lock.

    Args:
        lock_path: Path of the lock file inside the workspace
        force: Delete an existing (stale) lock before acquiring
        command: Command line recorded in the lock, defaults to ``sys.argv``

    Returns:
        The held lock

    Raises:
        LockError: If the lock is held and ``force`` is not set

    """
    if force and lock_path.exists():
        config.logger.warning("Removing existing lock %s", lock_path)
        lock_path.unlink(missing_ok=True)

    record = LockRecord(pid=os.getpid(), cmd=command if command is not None else " ".join(sys.argv))
    try:
        with lock_path.open("x", encoding="utf-8") as f:
            f.write(record.model_dump_json() + "\n")
    except FileExistsError as e:
        holder = read_lock_record(lock_path)
        detail = f" (pid={holder.pid}, since {holder.time.isoformat()}, cmd={holder.cmd!r})" if holder else ""
        msg = f"Workspace is locked by another run{detail}. Use --force-lock to remove {lock_path}"
        raise LockError(msg) from e

    config.logger.debug("Acquired workspace lock %s", lock_path)
    return WorkspaceLock(lock_path)
