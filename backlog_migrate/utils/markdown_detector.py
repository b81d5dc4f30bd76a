"""Dialect detection and warning collection for Backlog notation.

Detection scores structural signals of Backlog wiki notation against
signals of GitHub-flavored Markdown. Warning collection counts constructs
that the converter leaves as they are because they have no safe Markdown
equivalent.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

from backlog_migrate.type_definitions import DetectedMode

# Score thresholds for the detected mode
BACKLOG_THRESHOLD = 2
MARKDOWN_THRESHOLD = -1

STRONG_SIGNAL_WEIGHT = 2
WEAK_SIGNAL_WEIGHT = 1
GFM_SIGNAL_WEIGHT = 2
MAX_HEADING_WEIGHT = 3

STRONG_BACKLOG_SIGNALS = [
    re.compile(r"\{code(?::[^}]+)?\}"),
    re.compile(r"\{quote\}"),
    re.compile(r"^#contents[ \t]*$", re.MULTILINE),
    re.compile(r"&br;"),
    re.compile(r"&color\([^)]*\)\s*\{"),
    re.compile(r"%%[^%\n]+%%"),
    re.compile(r"'''[^'\n]+'''"),
    re.compile(r"''[^'\n]+''"),
    re.compile(r"\[\[[^\]]+\]\]"),
    re.compile(r"#(?:image|attach|thumbnail)\([^)]*\)"),
]

WEAK_BACKLOG_SIGNALS = [
    re.compile(r"^\++[ \t]+\S", re.MULTILINE),
    re.compile(r"\|.*\|h[ \t]*$", re.MULTILINE),
]

GFM_SIGNALS = [
    re.compile(r"^\s*[-*+]\s+\[[ xX]\]\s+", re.MULTILINE),
    re.compile(r"^[ \t]*\|?.*\|.*\n[ \t]*\|?[ \t]*:?-{3,}:?[ \t]*\|", re.MULTILINE),
    re.compile(r"(?<!~)~~[^~\s][^~\n]*~~(?!~)"),
    re.compile(r"<https?://[^>\s]+>"),
    re.compile(r"^[ \t]*\[[^\]]+\]:[ \t]+\S+", re.MULTILINE),
]

# Fences are a GFM signal on the raw text since stripping code regions removes them
GFM_FENCE = re.compile(r"^[ \t]*```", re.MULTILINE)

HEADING_LINE = re.compile(r"^(\*+)[ \t]+\S", re.MULTILINE)

FENCED_CODE = re.compile(r"```.*?```", re.DOTALL)
INLINE_CODE = re.compile(r"`[^`\n]*`")
CODE_MACRO_BLOCK = re.compile(r"\{code(?::[^}]*)?\}.*?\{/code\}", re.DOTALL)

# Existing code and the block macros it must not be searched in, scanned left to right
EXISTING_CODE = re.compile(
    r"(?P<fence>^[ \t]*(?P<ticks>`{3,})[^\n]*\n.*?^[ \t]*(?P=ticks)[ \t]*$)"
    r"|(?P<macro>\{code(?::[a-zA-Z0-9_+-]+)?\}.*?\{/code\}|\{quote\}.*?\{/quote\})"
    r"|(?P<inline>`[^`\n]*`)",
    re.MULTILINE | re.DOTALL,
)

COLOR_MACRO = re.compile(r"&color\([^)]*\)\s*\{")
TABLE_HEADER_H = re.compile(r"\|.*\|h[ \t]*$", re.MULTILINE)
TABLE_HEADER_CELL = re.compile(r"\|~")
TABLE_CELL_MERGE = re.compile(r"\|\|")
THUMBNAIL_MACRO = re.compile(r"#thumbnail\(")
HASH_MACRO = re.compile(r"#([a-zA-Z0-9_+-]+)\([^)]*\)")
BRACE_MACRO = re.compile(r"\{/?([a-zA-Z0-9_+-]+)(?::[^}]*)?\}")
WIKI_LINK = re.compile(r"\[\[([^\]]+?)\]\]")
IMAGE_MACRO = re.compile(r"#(image|attach)\(([^)]*)\)")
EMPHASIS = re.compile(r"'''[^'\n]+?'''|''[^'\n]+?''")
STRIKE = re.compile(r"%%[^%\n]+?%%")

ALLOWED_HASH_MACROS = frozenset({"attach", "image", "thumbnail", "rev", "contents"})
ALLOWED_BRACE_MACROS = frozenset({"code", "quote"})

ISSUE_KEY = re.compile(r"^[A-Z][A-Z0-9_]+-\d+$")
URL_SCHEMES = ("http://", "https://", "mailto:")


@dataclass(frozen=True)
class DetectionResult:
    """Detected dialect of a document and the score behind it."""

    mode: DetectedMode
    score: int


@dataclass
class WarningReport:
    """Warning counts per category with the lines they were found on."""

    counts: dict[str, int] = field(default_factory=dict)
    lines: dict[str, list[int]] = field(default_factory=dict)

    def add(self, category: str, line: int | None = None) -> None:
        """Record one hit, skipping a repeated line number for the same category."""
        self.counts[category] = self.counts.get(category, 0) + 1
        if line is None:
            return
        category_lines = self.lines.setdefault(category, [])
        if not category_lines or category_lines[-1] != line:
            category_lines.append(line)


def is_url(value: str) -> bool:
    """Return True if the value starts with a supported link scheme."""
    return value.strip().lower().startswith(URL_SCHEMES)


def is_issue_key(value: str) -> bool:
    """Return True for issue keys such as ``PROJ-12``."""
    return ISSUE_KEY.match(value.strip()) is not None


def parse_wiki_link(content: str) -> tuple[str, str] | None:
    """Split the inside of a ``[[...]]`` link into label and URL.

    Args:
        content: Text between the double brackets

    Returns:
        ``(label, url)`` for convertible links (label may be empty), None for
        links that stay as they are

    Raises:
        ValueError: If the link is ambiguous and cannot be converted

    """
    if ">" in content:
        label, url = (part.strip() for part in content.split(">", 1))
        if is_url(url):
            return label, url
        raise ValueError(content)

    if ":" in content and not is_url(content):
        label, url = (part.strip() for part in content.split(":", 1))
        if is_url(url):
            return label, url
        raise ValueError(content)

    trimmed = content.strip()
    if is_url(trimmed):
        return "", trimmed
    if is_issue_key(trimmed):
        return None
    raise ValueError(content)


def strip_code_regions(text: str) -> str:
    """Remove fenced and inline code so literal examples do not count as signals.

    Block macros are kept, so backticks inside them never pair with code
    outside them.
    """
    return EXISTING_CODE.sub(lambda m: m.group(0) if m.group("macro") else "", text).strip()


def mask_code_regions(text: str) -> str:
    """Blank out code regions while keeping line numbers intact."""

    def blank(match: re.Match[str]) -> str:
        return re.sub(r"[^\n]", " ", match.group(0))

    text = CODE_MACRO_BLOCK.sub(blank, text)
    text = FENCED_CODE.sub(blank, text)
    return INLINE_CODE.sub(blank, text)


def heading_weight(text: str) -> int:
    """Weight of asterisk headings: the longest marker run, capped."""
    runs = [len(match.group(1)) for match in HEADING_LINE.finditer(text)]
    if not runs:
        return 0
    return min(max(runs), MAX_HEADING_WEIGHT)


def detect(text: str) -> DetectionResult:
    """Detect whether a document is written in Backlog notation.

    Args:
        text: Document content

    Returns:
        DetectionResult with mode ``backlog``, ``markdown`` or ``unknown``

    """
    filtered = strip_code_regions(text)

    score = 0
    score += sum(STRONG_SIGNAL_WEIGHT for pattern in STRONG_BACKLOG_SIGNALS if pattern.search(filtered))
    score += sum(WEAK_SIGNAL_WEIGHT for pattern in WEAK_BACKLOG_SIGNALS if pattern.search(filtered))
    score += heading_weight(filtered)
    score -= sum(GFM_SIGNAL_WEIGHT for pattern in GFM_SIGNALS if pattern.search(filtered))
    if GFM_FENCE.search(text):
        score -= GFM_SIGNAL_WEIGHT

    if score >= BACKLOG_THRESHOLD:
        mode: DetectedMode = "backlog"
    elif score <= MARKDOWN_THRESHOLD:
        mode = "markdown"
    else:
        mode = "unknown"
    return DetectionResult(mode=mode, score=score)


def _line_of(text: str, offset: int) -> int:
    return text.count("\n", 0, offset) + 1


def _add_matches(
    report: WarningReport, category: str, pattern: re.Pattern[str], text: str,
) -> None:
    for match in pattern.finditer(text):
        report.add(category, _line_of(text, match.start()))


def collect_warnings(
    text: str,
    *,
    converting: bool = False,
    attachment_names: Iterable[str] = (),
    skip_rules: Iterable[str] = (),
) -> WarningReport:
    """Count constructs that are left unconverted.

    Code regions are ignored. Categories that only matter when the document
    is rewritten (ambiguous links, stray emphasis markers, unresolved image
    macros) are reported only when ``converting`` is set and the rule that
    would produce them is enabled.

    Args:
        text: Document content
        converting: Whether the document is going to be rewritten
        attachment_names: Attachment names valid for image macros
        skip_rules: Converter rule ids excluded from the run

    Returns:
        WarningReport with counts and 1-based line numbers per category

    """
    masked = mask_code_regions(text)
    report = WarningReport()

    _add_matches(report, "color_macro", COLOR_MACRO, masked)
    _add_matches(report, "table_header_h", TABLE_HEADER_H, masked)
    _add_matches(report, "table_header_cell", TABLE_HEADER_CELL, masked)
    _add_matches(report, "table_cell_merge", TABLE_CELL_MERGE, masked)
    _add_matches(report, "thumbnail_macro", THUMBNAIL_MACRO, masked)

    for match in HASH_MACRO.finditer(masked):
        if match.group(1).lower() not in ALLOWED_HASH_MACROS:
            report.add("unknown_hash_macro", _line_of(masked, match.start()))

    for match in BRACE_MACRO.finditer(masked):
        if match.group(1).lower() not in ALLOWED_BRACE_MACROS:
            report.add("unknown_brace_macro", _line_of(masked, match.start()))

    if not converting:
        return report

    skipped = set(skip_rules)

    if "backlog_link" not in skipped:
        for match in WIKI_LINK.finditer(masked):
            try:
                parse_wiki_link(match.group(1))
            except ValueError:
                report.add("wiki_link_ambiguous", _line_of(masked, match.start()))

    if "image_macro" not in skipped:
        names = set(attachment_names)
        for match in IMAGE_MACRO.finditer(masked):
            argument = match.group(2).strip()
            if argument not in names and not is_url(argument):
                report.add("image_macro_unresolved", _line_of(masked, match.start()))

    emphasis_rules = {"emphasis_bold", "emphasis_italic"} - skipped
    strike_rule = "strikethrough" not in skipped
    for number, line in enumerate(masked.split("\n"), start=1):
        if emphasis_rules and EMPHASIS.search(line) and "''" in EMPHASIS.sub("", line):
            report.add("emphasis_ambiguous", number)
        if strike_rule and STRIKE.search(line) and "%%" in STRIKE.sub("", line):
            report.add("emphasis_ambiguous", number)

    return report
