"""Type definitions for the Backlog markdown migration.

This module contains the literal types and small aliases shared by the
converter, the workspace store and the migration engine.
"""

from enum import Enum
from typing import Literal

type ItemType = Literal["issue", "comment", "wiki", "issue_type_description"]

type AuditAction = Literal["apply", "rollback", "clean"]

type AuditStatus = Literal[
    "applied",
    "dry_run",
    "no_change",
    "rejected",
    "skipped",
    "error",
    "rolled_back",
    "no_snapshot",
    "cleanup",
]

type DetectedMode = Literal["backlog", "markdown", "unknown"]

type LogLevel = Literal[
    "DEBUG",
    "INFO",
    "NOTICE",
    "WARNING",
    "ERROR",
    "CRITICAL",
    "SUCCESS",
]

ITEM_TYPES: tuple[str, ...] = ("issue", "comment", "wiki", "issue_type_description")

# Item types whose identity is the numeric remote id rather than the human key
ID_KEYED_TYPES: frozenset[str] = frozenset({"wiki", "issue_type_description"})

# Content subdirectory per item type inside the workspace
TYPE_DIRECTORIES: dict[str, str] = {
    "issue": "issues",
    "comment": "comments",
    "wiki": "wikis",
    "issue_type_description": "issue_types",
}

# Converter rule identifiers, in the order they are applied
RULE_IDS: tuple[str, ...] = (
    "quote_block",
    "code_block",
    "heading_asterisk",
    "toc",
    "list_plus",
    "list_dash_space",
    "table_separator",
    "backlog_link",
    "image_macro",
    "emphasis_italic",
    "emphasis_bold",
    "strikethrough",
    "line_break",
)


class Decision(Enum):
    """Operator decision for one proposed change."""

    APPROVE = "approve"
    REJECT = "reject"
    SKIP = "skip"
    QUIT = "quit"
