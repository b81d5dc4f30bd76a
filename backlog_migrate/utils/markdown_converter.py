"""Markdown converter for Backlog wiki notation to GitHub-flavored Markdown.

This module rewrites the structural constructs of Backlog notation
(headings, quotes, code macros, lists, tables, links, inline styling and
image macros) while leaving code spans, quoted lines and documents that are
already Markdown untouched. The converter never raises: when a rule fails
the input is returned unchanged with a ``conversion_failed`` warning.
"""

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from backlog_migrate.type_definitions import DetectedMode
from backlog_migrate.utils.markdown_detector import (
    EXISTING_CODE,
    collect_warnings,
    detect,
    is_url,
    parse_wiki_link,
)

logger = logging.getLogger(__name__)

MAX_MARKDOWN_HEADING = 6


@dataclass(frozen=True)
class ConversionOptions:
    """Options for one conversion.

    Attributes:
        force: Convert documents whose dialect could not be decided
        line_break: Replacement for the ``&br;`` entity
        item_type: Type of the item being converted, used in log messages
        item_key: Key of the item being converted, used in log messages
        attachment_names: Attachment file names image macros may refer to
        unsafe_rules: Rule ids that must not rewrite anything

    """

    force: bool = False
    line_break: str = "<br>"
    item_type: str = ""
    item_key: str = ""
    attachment_names: frozenset[str] = frozenset()
    unsafe_rules: frozenset[str] = frozenset()


@dataclass
class ConversionResult:
    """Output of one conversion with its diagnostics."""

    input: str
    output: str
    mode: DetectedMode
    score: int
    rules: list[str] = field(default_factory=list)
    warnings: dict[str, int] = field(default_factory=dict)
    warning_lines: dict[str, list[int]] = field(default_factory=dict)

    @property
    def changed(self) -> bool:
        """Whether the conversion altered the content."""
        return self.output != self.input


class TokenVault:
    """Stores protected text regions behind placeholder tokens.

    Protected regions are replaced with ``<sentinel><n><sentinel>`` so that
    later rules cannot match inside them. The sentinel is a private-use
    character that does not occur in the document.
    """

    def __init__(self, text: str) -> None:
        self.sentinel = next(
            chr(code) for code in range(0xE000, 0xF8FF) if chr(code) not in text
        )
        self.values: list[str] = []
        self.pattern = re.compile(f"{self.sentinel}(\\d+){self.sentinel}")

    def store(self, value: str) -> str:
        """Keep a value and return the token standing in for it."""
        self.values.append(value)
        return f"{self.sentinel}{len(self.values) - 1}{self.sentinel}"

    def is_token_line(self, line: str) -> bool:
        """Return True if the line starts with a token."""
        return line.lstrip().startswith(self.sentinel)

    def restore(self, text: str) -> str:
        """Replace every token with its value, including tokens nested in values."""

        def replace(match: re.Match[str]) -> str:
            return self.restore(self.values[int(match.group(1))])

        return self.pattern.sub(replace, text)


class MarkdownConverter:
    """Converts Backlog wiki notation to GitHub-flavored Markdown.

    Rules run in a fixed order over a copy of the document in which fenced
    code, inline code, quote blocks, quoted lines and code macros have been
    moved into a token vault:

    1. Existing code, then quote blocks and code macros (converted, then protected)
    2. Headings and the table of contents macro
    3. Ordered and dashed lists
    4. Tables without a separator row
    5. Wiki links and image macros
    6. Italic, bold, strikethrough and line breaks
    """

    def __init__(self) -> None:
        """Initialize the markdown converter."""
        self._compile_patterns()

    def _compile_patterns(self) -> None:
        """Compile regex patterns for efficient text processing."""
        # Block macros
        self.quote_block_pattern = re.compile(r"\{quote\}(.*?)\{/quote\}", re.DOTALL)
        self.code_block_pattern = re.compile(
            r"\{code(?::([a-zA-Z0-9_+-]+))?\}(.*?)\{/code\}", re.DOTALL,
        )
        self.quote_line_pattern = re.compile(r"^\s*>")
        self.existing_code_pattern = EXISTING_CODE

        # Headings and table of contents
        self.heading_pattern = re.compile(r"^(\*+)[ \t]+(\S.*)$", re.MULTILINE)
        self.toc_pattern = re.compile(r"^#contents[ \t]*$", re.MULTILINE)

        # Lists
        self.plus_list_pattern = re.compile(r"^([ \t]*)(\++)[ \t]+(\S.*)$")
        self.dash_list_pattern = re.compile(r"^([ \t]*)(-+)[ \t]*([^-\s].*)$")
        self.ordered_list_pattern = re.compile(r"^[ \t]*\d+\.[ \t]+\S")
        self.markdown_bullet_pattern = re.compile(r"^[ \t]*[-*][ \t]+\S")

        # Tables
        self.table_header_mark_pattern = re.compile(r"\|h[ \t]*$")

        # Links and macros
        self.wiki_link_pattern = re.compile(r"\[\[([^\]]+?)\]\]")
        self.image_macro_pattern = re.compile(r"#(image|attach)\(([^)]*)\)")

        # Inline styling
        self.italic_pattern = re.compile(r"'''([^'\n]+?)'''")
        self.bold_pattern = re.compile(r"''([^'\n]+?)''")
        self.strike_pattern = re.compile(r"%%([^%\n]+?)%%")

    def convert(self, content: str, options: ConversionOptions | None = None) -> ConversionResult:
        """Detect the dialect of a document and convert it when needed.

        Documents detected as Backlog notation are converted. Documents with
        an undecided dialect are converted only when ``options.force`` is set.
        Markdown documents are returned unchanged.

        Args:
            content: The document to convert
            options: Conversion options

        Returns:
            ConversionResult with the output and diagnostics

        """
        options = options or ConversionOptions()
        detection = detect(content)
        result = ConversionResult(
            input=content, output=content, mode=detection.mode, score=detection.score,
        )

        converting = detection.mode == "backlog" or (detection.mode == "unknown" and options.force)
        report = collect_warnings(
            content,
            converting=converting,
            attachment_names=options.attachment_names,
            skip_rules=options.unsafe_rules,
        )
        result.warnings = report.counts
        result.warning_lines = report.lines

        if not converting:
            return result

        try:
            result.output, result.rules = self._apply_rules(content, options)
        except Exception:
            logger.warning(
                "Conversion failed for %s %s, keeping original content",
                options.item_type or "item",
                options.item_key or "",
                exc_info=True,
            )
            result.output = content
            result.rules = []
            result.warnings["conversion_failed"] = result.warnings.get("conversion_failed", 0) + 1
        return result

    def _apply_rules(self, content: str, options: ConversionOptions) -> tuple[str, list[str]]:
        """Run every enabled rule over the document.

        Returns:
            The converted text and the ids of the rules that changed something

        """
        vault = TokenVault(content)
        fired: list[str] = []

        def enabled(rule: str) -> bool:
            return rule not in options.unsafe_rules

        def record(rule: str) -> None:
            if rule not in fired:
                fired.append(rule)

        def run(rule: str, text: str, step: Callable[[str], str]) -> str:
            if not enabled(rule):
                return text
            converted = step(text)
            if converted != text:
                record(rule)
            return converted

        text = self._protect_existing_code(content, vault)
        text = self._protect_quote_blocks(text, vault, enabled("quote_block"), record)
        text = self._protect_quote_lines(text, vault)
        text = self._protect_code_blocks(text, vault, enabled("code_block"), record)

        text = run("heading_asterisk", text, self._convert_headings)
        text = run("toc", text, lambda t: self.toc_pattern.sub("[toc]", t))
        text = self._convert_lists(text, vault, enabled("list_plus"), enabled("list_dash_space"), record)
        text = run("table_separator", text, self._convert_tables)
        text = run("backlog_link", text, self._convert_wiki_links)
        text = run(
            "image_macro", text, lambda t: self._convert_image_macros(t, options.attachment_names),
        )
        text = run("emphasis_italic", text, lambda t: self.italic_pattern.sub(r"*\1*", t))
        text = run("emphasis_bold", text, lambda t: self.bold_pattern.sub(r"**\1**", t))
        text = run("strikethrough", text, lambda t: self.strike_pattern.sub(r"~~\1~~", t))
        text = run("line_break", text, lambda t: t.replace("&br;", options.line_break))

        return vault.restore(text), fired

    def _protect_existing_code(self, text: str, vault: TokenVault) -> str:
        """Protect fenced code and inline code spans already in the document.

        The document is scanned left to right, so a construct that starts
        first wins: macros inside code stay literal, and backticks inside a
        ``{code}`` or ``{quote}`` body are left for the macro passes.
        """

        def replace_code(match: re.Match[str]) -> str:
            if match.group("macro"):
                return match.group(0)
            return vault.store(match.group(0))

        return self.existing_code_pattern.sub(replace_code, text)

    def _protect_quote_blocks(
        self, text: str, vault: TokenVault, enabled: bool, record: Callable[[str], None],
    ) -> str:
        """Convert ``{quote}`` blocks to ``>`` lines and protect them.

        The quoted content itself is not converted.
        """

        def replace_quote(match: re.Match[str]) -> str:
            if not enabled:
                return vault.store(match.group(0))
            body = match.group(1).strip("\n")
            lines = [f"> {line}" if line else ">" for line in body.split("\n")]
            record("quote_block")
            return vault.store("\n".join(lines))

        return self.quote_block_pattern.sub(replace_quote, text)

    def _protect_quote_lines(self, text: str, vault: TokenVault) -> str:
        """Protect lines that already start with a quote marker."""
        lines = text.split("\n")
        for index, line in enumerate(lines):
            if self.quote_line_pattern.match(line):
                lines[index] = vault.store(line)
        return "\n".join(lines)

    def _protect_code_blocks(
        self, text: str, vault: TokenVault, enabled: bool, record: Callable[[str], None],
    ) -> str:
        """Convert ``{code}`` macros to fenced or inline code and protect them."""

        def replace_code(match: re.Match[str]) -> str:
            if not enabled:
                return vault.store(match.group(0))
            lang = (match.group(1) or "").strip()
            record("code_block")
            if "\n" not in match.group(0):
                return vault.store(inline_code_with_lang(lang, match.group(2)))
            body = match.group(2).strip("\n")
            fence = "`" * max(3, longest_backtick_run(body) + 1)
            return vault.store(f"{fence}{lang}\n{body}\n{fence}")

        return self.code_block_pattern.sub(replace_code, text)

    def _convert_headings(self, text: str) -> str:
        """Convert ``*`` headings to ``#`` headings.

        Marker runs longer than Markdown supports keep their length.
        """

        def replace_heading(match: re.Match[str]) -> str:
            level = len(match.group(1))
            if level > MAX_MARKDOWN_HEADING:
                logger.debug("Heading deeper than %d kept at depth %d", MAX_MARKDOWN_HEADING, level)
            return f"{'#' * level} {match.group(2)}"

        return self.heading_pattern.sub(replace_heading, text)

    def _is_list_line(self, line: str) -> bool:
        return bool(
            self.dash_list_pattern.match(line)
            or self.plus_list_pattern.match(line)
            or self.ordered_list_pattern.match(line)
            or self.markdown_bullet_pattern.match(line),
        )

    def _convert_lists(
        self,
        text: str,
        vault: TokenVault,
        plus_enabled: bool,
        dash_enabled: bool,
        record: Callable[[str], None],
    ) -> str:
        """Convert ``+`` and ``-`` lists and separate them from following prose.

        A run of three or more dashes followed by text is only treated as a
        list item when it continues a list, otherwise it is kept as text.
        """
        lines = text.split("\n")
        out: list[str] = []
        previous_is_list = False

        for index, line in enumerate(lines):
            converted: str | None = None
            kept_as_text = False
            if vault.is_token_line(line) or is_table_separator(line):
                kept_as_text = True
            elif plus_enabled and (match := self.plus_list_pattern.match(line)):
                depth = len(match.group(2)) - 1
                converted = f"{match.group(1)}{'   ' * depth}1. {match.group(3).strip()}"
                record("list_plus")
            elif dash_enabled and (match := self.dash_list_pattern.match(line)):
                dashes = match.group(2)
                if len(dashes) < 3 or previous_is_list:
                    depth = len(dashes) - 1
                    converted = f"{match.group(1)}{'  ' * depth}- {match.group(3).strip()}"
                    if converted != line:
                        record("list_dash_space")
                else:
                    kept_as_text = True

            if converted is None:
                out.append(line)
                if line.strip():
                    previous_is_list = not kept_as_text and self._is_list_line(line)
                continue

            out.append(converted)
            previous_is_list = True
            next_line = lines[index + 1] if index + 1 < len(lines) else ""
            if next_line.strip() and not self._is_list_line(next_line) and not next_line.startswith((" ", "\t")):
                out.append("")
                record("list_dash_space" if converted.lstrip().startswith("-") else "list_plus")

        return "\n".join(out)

    def _convert_tables(self, text: str) -> str:
        """Normalise Backlog tables and add the missing separator row.

        Tables that already contain a separator row are left as they are.
        """
        lines = text.split("\n")
        out: list[str] = []
        index = 0

        while index < len(lines):
            if not (is_table_row(lines[index]) or is_table_separator(lines[index])):
                out.append(lines[index])
                index += 1
                continue

            end = index
            while end < len(lines) and (is_table_row(lines[end]) or is_table_separator(lines[end])):
                end += 1
            block = lines[index:end]

            if any(is_table_separator(line) for line in block) or not is_table_row(block[0]):
                out.extend(block)
            else:
                if out and out[-1].strip():
                    out.append("")
                rows = [self._normalize_table_row(line) for line in block]
                out.append(rows[0])
                out.append(table_separator_line(table_column_count(block[0])))
                out.extend(rows[1:])
            index = end

        return "\n".join(out)

    def _normalize_table_row(self, line: str) -> str:
        """Drop header markers and pad cells with single spaces."""
        normalized = self.table_header_mark_pattern.sub("|", line.strip())
        normalized = normalized.replace("|~", "|")
        return "| " + " | ".join(cell.strip() for cell in split_table_cells(normalized)) + " |"

    def _convert_wiki_links(self, text: str) -> str:
        """Convert ``[[label>url]]``, ``[[label:url]]`` and ``[[url]]`` links."""

        def replace_link(match: re.Match[str]) -> str:
            try:
                parsed = parse_wiki_link(match.group(1))
            except ValueError:
                return match.group(0)
            if parsed is None:
                return match.group(0)
            label, url = parsed
            if not label:
                return f"<{url}>"
            return f"[{label}]({url})"

        return self.wiki_link_pattern.sub(replace_link, text)

    def _convert_image_macros(self, text: str, attachment_names: Iterable[str]) -> str:
        """Convert ``#image`` and ``#attach`` macros to Markdown images."""
        names = set(attachment_names)

        def replace_image(match: re.Match[str]) -> str:
            argument = match.group(2).strip()
            if argument in names:
                return f"![{argument}][{argument}]"
            if is_url(argument):
                return f"![image]({argument})"
            return match.group(0)

        return self.image_macro_pattern.sub(replace_image, text)


def longest_backtick_run(text: str) -> int:
    """Length of the longest run of backticks in the text."""
    return max((len(run) for run in re.findall(r"`+", text)), default=0)


def inline_code(text: str) -> str:
    """Wrap text in an inline code span that survives backticks inside it."""
    if not text:
        return "``"
    fence = "`" * (longest_backtick_run(text) + 1)
    if text.startswith("`") or text.endswith("`"):
        return f"{fence} {text} {fence}"
    return f"{fence}{text}{fence}"


def inline_code_with_lang(lang: str, body: str) -> str:
    """Inline code for a single line code macro, labelled with its language."""
    lang = lang.strip()
    body = body.strip()
    if not lang:
        return inline_code(body)
    if not body:
        return inline_code(f"{lang}:")
    return inline_code(f"{lang}: {body}")


def split_table_cells(line: str) -> list[str]:
    """Split a table row into cells, ignoring the outer pipes."""
    trimmed = line.strip()
    trimmed = trimmed.removeprefix("|")
    trimmed = trimmed.removesuffix("|")
    return trimmed.split("|")


def table_column_count(line: str) -> int:
    """Number of columns in a table row, 0 when it is not a row."""
    trimmed = re.sub(r"\|h[ \t]*$", "|", line.strip())
    cells = split_table_cells(trimmed)
    return len(cells) if len(cells) >= 2 else 0


def is_table_separator(line: str) -> bool:
    """Return True for Markdown table separator rows such as ``| --- | :-: |``."""
    trimmed = line.strip()
    if not trimmed or "-" not in trimmed:
        return False
    inner = trimmed.removeprefix("|").removesuffix("|")
    if "|" not in inner:
        return False
    cells = [cell.strip() for cell in inner.split("|")]
    return all(re.fullmatch(r":?-+:?", cell) for cell in cells if cell) and any(cells)


def is_table_row(line: str) -> bool:
    """Return True for Backlog table rows: pipe-led lines with two or more cells."""
    trimmed = line.strip()
    if not trimmed.startswith("|") or is_table_separator(trimmed):
        return False
    return table_column_count(trimmed) >= 2


def table_separator_line(columns: int) -> str:
    """Build a separator row for the given number of columns."""
    return "| " + " | ".join("---" for _ in range(columns)) + " |"


_default_converter = MarkdownConverter()


def convert(content: str, options: ConversionOptions | None = None) -> ConversionResult:
    """Convert a document with a shared converter instance."""
    return _default_converter.convert(content, options)
