"""Unified diffs between two versions of a document."""

import difflib


def unified_diff(
    from_content: str | None,
    to_content: str | None,
    from_name: str = "before",
    to_name: str = "after",
) -> str:
    """Generate a unified diff between two strings.

    Args:
        from_content: Original text
        to_content: New text
        from_name: Label of the original text
        to_name: Label of the new text

    Returns:
        The diff text, empty when both texts have the same lines

    """
    lines1 = from_content.splitlines() if from_content else []
    lines2 = to_content.splitlines() if to_content else []
    return "\n".join(
        difflib.unified_diff(lines1, lines2, fromfile=from_name, tofile=to_name, lineterm=""),
    )
