"""Defines exceptions for the migration workspace."""


class MigrationError(Exception):
    """Base exception for migration errors.

    Should be used when a command encounters an error that prevents it
    from continuing execution. Per-item failures during apply and rollback
    are recorded on the item instead of being raised.
    """

    def __init__(self, message: str, *args: object, **kwargs: object) -> None:
        """Initialize the exception with a descriptive message.

        Args:
            message: Detailed error message
            *args: Additional positional arguments for Exception
            **kwargs: Additional keyword arguments for Exception

        """
        super().__init__(message, *args, **kwargs)
        self.message = message


class WorkspaceError(MigrationError):
    """Error when the workspace is missing, incomplete or cannot be created."""


class LockError(MigrationError):
    """Error when the workspace lock is held by another run."""


class ItemStoreError(MigrationError):
    """Error when the item log or audit log cannot be read or written."""


class ConfigurationError(MigrationError):
    """Error when the configuration is invalid."""
