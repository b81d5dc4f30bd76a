"""Result models for migration commands."""

from pydantic import BaseModel, Field


class ComponentResult(BaseModel):
    """Represents the result of one migration command run."""

    success: bool = False
    message: str = ""
    errors: list[str] = Field(default_factory=list)
    dry_run: bool = False
    total_count: int = 0
    applied: int = 0
    rolled_back: int = 0
    skipped: int = 0
    commits: int = 0
    quit: bool = False
    status_counts: dict[str, int] = Field(default_factory=dict)

    def add_error(self, error: str) -> None:
        """Add an error message to the errors list."""
        self.errors.append(error)

    def count_status(self, status: str) -> None:
        """Increment the counter for an audit status."""
        self.status_counts[status] = self.status_counts.get(status, 0) + 1
