"""Centralized display utilities for console output.

Provides the rich logging setup, progress tracking for snapshots and the
tables, diffs and prompts shown to the operator.
"""

import logging
import os
from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Protocol, cast

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import BarColumn, Progress, TextColumn
from rich.prompt import Confirm, Prompt
from rich.syntax import Syntax
from rich.table import Table
from rich.theme import Theme

from backlog_migrate.models.migrate_item import AuditLogEntry, MigrateItem
from backlog_migrate.type_definitions import Decision


class ExtendedLogger(Protocol):
    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None: ...
    def info(self, msg: str, *args: Any, **kwargs: Any) -> None: ...
    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None: ...
    def error(self, msg: str, *args: Any, **kwargs: Any) -> None: ...
    def critical(self, msg: str, *args: Any, **kwargs: Any) -> None: ...
    def success(self, msg: str, *args: Any, **kwargs: Any) -> None: ...
    def notice(self, msg: str, *args: Any, **kwargs: Any) -> None: ...
    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None: ...


SUCCESS_LEVEL = 25
NOTICE_LEVEL = 21

LOGGING_THEME = Theme(
    {
        "logging.level.debug": "dim",
        "logging.level.info": "blue",
        "logging.level.notice": "cyan",
        "logging.level.warning": "bold yellow",
        "logging.level.error": "bold red",
        "logging.level.critical": "bold red on white",
        "logging.level.success": "bold green",
        "status.applied": "green",
        "status.pending": "yellow",
        "status.error": "red",
    },
)

# Global console instance with theme
console = Console(theme=LOGGING_THEME)

rich_handler = RichHandler(
    console=console,
    rich_tracebacks=True,
    tracebacks_show_locals=False,
    markup=True,
    show_time=True,
    show_level=True,
    enable_link_path=True,
    log_time_format="[%X]",
)

DECISION_CHOICES = [decision.value for decision in Decision]


def configure_logging(
    level: str = "INFO", log_file: str | os.PathLike[str] | None = None,
) -> ExtendedLogger:
    """Configure logging with rich formatting.

    Args:
        level: Logging level (DEBUG, INFO, NOTICE, SUCCESS, WARNING, ERROR, CRITICAL)
        log_file: Optional path to a log file

    Returns:
        Configured logger instance

    """
    logging.addLevelName(SUCCESS_LEVEL, "SUCCESS")
    logging.addLevelName(NOTICE_LEVEL, "NOTICE")

    match level.upper():
        case "NOTICE":
            numeric_level = NOTICE_LEVEL
        case "SUCCESS":
            numeric_level = SUCCESS_LEVEL
        case other:
            numeric_level = getattr(logging, other, logging.INFO)

    handlers: list[logging.Handler] = [rich_handler]

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s.%(msecs)03d - %(name)s - %(levelname)s - %(message)s",
            ),
        )
        file_handler.setLevel(numeric_level)
        handlers.append(file_handler)

    logging.basicConfig(
        level=numeric_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True,
    )

    logger = logging.getLogger("backlog_migrate")

    def success(self: logging.Logger, message: str, *args: Any, **kwargs: Any) -> None:
        if self.isEnabledFor(SUCCESS_LEVEL):
            kwargs["extra"] = kwargs.get("extra", {})
            kwargs["extra"]["markup"] = True
            self._log(SUCCESS_LEVEL, f"[green]{message}[/]", args, stacklevel=2, **kwargs)

    def notice(self: logging.Logger, message: str, *args: Any, **kwargs: Any) -> None:
        if self.isEnabledFor(NOTICE_LEVEL):
            kwargs["extra"] = kwargs.get("extra", {})
            kwargs["extra"]["markup"] = True
            self._log(NOTICE_LEVEL, message, args, stacklevel=2, **kwargs)

    setattr(logging.Logger, "success", success)
    setattr(logging.Logger, "notice", notice)

    if log_file:
        logger.debug("Log file: %s", log_file)

    return cast(ExtendedLogger, logger)


class ProgressTracker:
    """Progress bar for long remote fetches such as the initial snapshot."""

    def __init__(self, description: str, total: int | None = None) -> None:
        """Initialize a progress tracker.

        Args:
            description: Initial description for the progress bar
            total: Total number of steps, None when unknown

        """
        self.description = description
        self.progress = Progress(
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TextColumn("{task.completed}"),
            console=console,
            transient=True,
        )
        self.task_id = self.progress.add_task(description, total=total)
        self.processed_count = 0

    def __enter__(self) -> "ProgressTracker":
        self.progress.start()
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.progress.stop()

    def increment(self, advance: int = 1, description: str | None = None) -> None:
        """Advance the progress bar, optionally updating its description."""
        self.processed_count += advance
        if description:
            self.progress.update(
                self.task_id, completed=self.processed_count, description=description,
            )
        else:
            self.progress.update(self.task_id, completed=self.processed_count)


def print_diff(diff: str, title: str = "") -> None:
    """Render a unified diff with syntax highlighting."""
    if not diff:
        console.print("[dim](no differences)[/]")
        return
    console.print(
        Panel(
            Syntax(diff, "diff", theme="ansi_dark", word_wrap=True),
            title=title or None,
            border_style="blue",
        ),
    )


def prompt_decision(item_type: str, item_key: str, diff: str) -> Decision:
    """Show a proposed change and ask the operator what to do with it.

    Args:
        item_type: Type of the item being changed
        item_key: Human readable key of the item
        diff: Unified diff between the current and proposed content

    Returns:
        The chosen decision

    """
    print_diff(diff, title=f"{item_type} {item_key}")
    answer = Prompt.ask(
        f"Apply change to [bold]{item_key}[/]?",
        console=console,
        choices=DECISION_CHOICES,
        default=Decision.SKIP.value,
    )
    return Decision(answer)


def confirm(message: str, *, default: bool = False) -> bool:
    """Ask a yes/no question on the console."""
    return Confirm.ask(message, console=console, default=default)


def format_warnings(
    warnings: Mapping[str, int], warning_lines: Mapping[str, Sequence[int]] | None = None,
) -> str:
    """Format warning counts sorted by name, such as ``color_macro=2 @3/5``.

    Line numbers are appended when they are known for a category.
    """
    entries = []
    for name in sorted(warnings):
        lines = (warning_lines or {}).get(name)
        suffix = f" @{'/'.join(str(line) for line in lines)}" if lines else ""
        entries.append(f"{name}={warnings[name]}{suffix}")
    return ", ".join(entries)


def items_table(items: Iterable[MigrateItem], title: str = "Items") -> Table:
    """Build a table describing migration items."""
    table = Table(title=title, show_lines=False)
    table.add_column("Type", style="cyan", no_wrap=True)
    table.add_column("Key", style="bold")
    table.add_column("Mode")
    table.add_column("Score", justify="right")
    table.add_column("State")
    table.add_column("Rules")
    table.add_column("Warnings")
    table.add_column("URL", overflow="fold")

    for item in items:
        if item.apply_error or item.rollback_error:
            state = "[status.error]error[/]"
        elif item.applied:
            state = "[status.applied]applied[/]"
        else:
            state = "[status.pending]pending[/]"
        table.add_row(
            item.item_type,
            item.item_key,
            item.detected_mode,
            str(item.score),
            state,
            ", ".join(item.rules),
            format_warnings(item.warnings, item.warning_lines),
            item.url,
        )
    return table


def logs_table(entries: Iterable[AuditLogEntry]) -> Table:
    """Build a table of audit log entries."""
    table = Table(title="Audit log")
    table.add_column("Time", no_wrap=True)
    table.add_column("Action", style="cyan")
    table.add_column("Status")
    table.add_column("Type")
    table.add_column("Key", style="bold")
    table.add_column("Message", overflow="fold")

    for entry in entries:
        table.add_row(
            entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            entry.action,
            entry.status,
            entry.item_type or "",
            entry.item_key,
            entry.message,
        )
    return table


def status_table(counts: Mapping[str, Mapping[str, int]]) -> Table:
    """Build a per-type status summary table.

    Args:
        counts: Mapping of item type to ``total``/``changed``/``applied``/``pending``
            counters

    """
    table = Table(title="Workspace status")
    table.add_column("Type", style="cyan")
    for column in ("total", "changed", "applied", "pending", "errors"):
        table.add_column(column.capitalize(), justify="right")

    for item_type, row in counts.items():
        table.add_row(
            item_type,
            *(str(row.get(column, 0)) for column in ("total", "changed", "applied", "pending", "errors")),
        )
    return table
