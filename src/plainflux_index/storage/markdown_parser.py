"""Extraction of links, tags, todos and heading blocks from note text.

Everything here is pure: no I/O, no database access, and no function
raises on malformed markdown. Text that does not match a pattern is
simply skipped. Scanning is line based; there is no markdown AST.
"""
import re
from typing import List, Optional, Tuple

from plainflux_index.models.schema import (
    NUMERIC_PRIORITIES,
    Block,
    ParsedNote,
    ParsedTodo,
    Priority,
)

WIKILINK_PATTERN = re.compile(r"\[\[([^\]]+)\]\]")
TAG_PATTERN = re.compile(r"#(\w+)")
TODO_PATTERN = re.compile(r"^(\s*)[-*]\s*\[([ xX])\]\s*(.+)$")
HEADING_PATTERN = re.compile(r"^(#{1,6})\s+(.+)$")

# Due date formats: @due(2025-01-15), due:2025-01-15, 📅 2025-01-15
DUE_DATE_PATTERN = re.compile(r"(?:@due\(|due:|📅\s*)(\d{4}-\d{2}-\d{2})(?:\))?")
# Every due-date token, including malformed @due(...) bodies
DUE_TOKEN_PATTERN = re.compile(r"(?:@due\([^)]+\)|due:\d{4}-\d{2}-\d{2}|📅\s*\d{4}-\d{2}-\d{2})")
# Priority formats: !high, !medium, !low, p:1, p:2, p:3
PRIORITY_PATTERN = re.compile(r"(?:!(high|medium|low)|p:([123]))")
# Recurrence formats: @every(monday), @repeat(weekly)
RECURRENCE_PATTERN = re.compile(r"(?:@every|@repeat)\(([^)]+)\)")

_SLUG_SEPARATOR = re.compile(r"[\W_]+")

# Two columns of leading whitespace make one nesting level
INDENT_WIDTH = 2


def _physical_lines(text: str) -> List[str]:
    """Split on '\\n' only, dropping a trailing '\\r' from each line."""
    if not text:
        return []
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


def extract_links(text: str) -> List[str]:
    """Return raw ``[[target]]`` targets in encounter order.

    Duplicates are kept and a ``#fragment`` suffix is left in place.
    """
    return WIKILINK_PATTERN.findall(text)


def split_link_target(target: str) -> Tuple[str, Optional[str]]:
    """Split ``Note#fragment`` into ``("Note", "fragment")``."""
    name, sep, fragment = target.partition("#")
    return name, (fragment if sep else None)


def link_target_name(target: str) -> str:
    """The filename part of a link target, without its block fragment."""
    return split_link_target(target)[0]


def extract_tags(text: str) -> List[str]:
    """Return ``#word`` tag names in encounter order, duplicates kept."""
    return TAG_PATTERN.findall(text)


def parse_priority(content: str) -> Optional[Priority]:
    """Priority of the first ``!level`` or ``p:N`` token, if any."""
    match = PRIORITY_PATTERN.search(content)
    if not match:
        return None
    if match.group(1):
        return Priority(match.group(1))
    return NUMERIC_PRIORITIES.get(match.group(2))


def parse_due_date(content: str) -> Optional[str]:
    """Date of the first due-date token, if any."""
    match = DUE_DATE_PATTERN.search(content)
    return match.group(1) if match else None


def parse_recurrence(content: str) -> Optional[str]:
    """Lower-cased pattern of the first ``@every``/``@repeat`` token."""
    match = RECURRENCE_PATTERN.search(content)
    return match.group(1).lower() if match else None


def strip_due_dates(content: str) -> str:
    """Remove every due-date token from a todo's text."""
    return DUE_TOKEN_PATTERN.sub("", content)


def extract_todos(text: str) -> List[ParsedTodo]:
    """Find checkbox items and work out their nesting.

    Metadata tokens stay in ``content``; the due date, priority and
    recurrence pattern are parsed out of it independently.
    """
    todos: List[ParsedTodo] = []
    # (indent_level, line_number) of the todos that may still be parents
    indent_stack: List[Tuple[int, int]] = []

    for index, line in enumerate(_physical_lines(text)):
        match = TODO_PATTERN.match(line)
        if not match:
            continue

        line_number = index + 1
        indent_level = len(match.group(1)) // INDENT_WIDTH
        content = match.group(3).strip()

        while indent_stack and indent_stack[-1][0] >= indent_level:
            indent_stack.pop()
        parent_line = indent_stack[-1][1] if indent_stack and indent_level > 0 else None
        indent_stack.append((indent_level, line_number))

        todos.append(
            ParsedTodo(
                line_number=line_number,
                content=content,
                is_completed=match.group(2) != " ",
                due_date=parse_due_date(content),
                priority=parse_priority(content),
                indent_level=indent_level,
                parent_line=parent_line,
                recurrence_pattern=parse_recurrence(content),
            )
        )

    return todos


def slugify_heading(heading: str) -> str:
    """Lower-case a heading and join its alphanumeric runs with hyphens.

    >>> slugify_heading("Hello, World! ")
    'hello-world'
    """
    return _SLUG_SEPARATOR.sub("-", heading.lower()).strip("-")


def extract_blocks(text: str) -> List[Block]:
    """Return one block per markdown heading (levels 1-6)."""
    blocks: List[Block] = []
    for index, line in enumerate(_physical_lines(text)):
        match = HEADING_PATTERN.match(line)
        if not match:
            continue
        heading = match.group(2).strip()
        blocks.append(
            Block(
                block_id=slugify_heading(heading),
                line_number=index + 1,
                content=heading,
            )
        )
    return blocks


def extract_block_section(text: str, line_number: int) -> Optional[str]:
    """Return a heading and the lines under it.

    The section ends before the next heading of the same or a higher
    level. Returns None if ``line_number`` is not a heading line.
    """
    lines = _physical_lines(text)
    if line_number < 1 or line_number > len(lines):
        return None

    start = HEADING_PATTERN.match(lines[line_number - 1])
    if not start:
        return None
    level = len(start.group(1))

    section = [lines[line_number - 1]]
    for line in lines[line_number:]:
        heading = HEADING_PATTERN.match(line)
        if heading and len(heading.group(1)) <= level:
            break
        section.append(line)
    return "\n".join(section)


def parse_note(text: str) -> ParsedNote:
    """Run every extraction pass over one note."""
    return ParsedNote(
        links=extract_links(text),
        tags=extract_tags(text),
        todos=extract_todos(text),
        blocks=extract_blocks(text),
    )
