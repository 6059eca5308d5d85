"""Pattern-matching helpers for textual strategies."""

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterator, Optional


@dataclass
class TextMatch:
    """A regex match with its 1-based source position."""

    match: re.Match
    line: int
    column: int

    def group(self, *args):
        return self.match.group(*args)


def _line_for_offset(content: str, offset: int) -> int:
    return content.count("\n", 0, offset) + 1


def _column_for_offset(content: str, offset: int) -> int:
    return offset - (content.rfind("\n", 0, offset) + 1) + 1


def iter_matches(pattern: re.Pattern, content: str, group: int | str = 0) -> Iterator[TextMatch]:
    """Yield matches positioned at the start of ``group``."""
    for match in pattern.finditer(content):
        offset = match.start(group)
        yield TextMatch(
            match=match,
            line=_line_for_offset(content, offset),
            column=_column_for_offset(content, offset),
        )


def balanced_span(content: str, open_index: int, open_char: str = "(", close_char: str = ")") -> Optional[str]:
    """Text between the bracket at ``open_index`` and its partner, exclusive.

    Skips brackets inside string literals. Returns None if unbalanced.
    """
    if open_index >= len(content) or content[open_index] != open_char:
        return None

    depth = 0
    quote: Optional[str] = None
    index = open_index
    while index < len(content):
        char = content[index]
        if quote:
            if char == "\\":
                index += 2
                continue
            if char == quote:
                quote = None
        elif char in "\"'`":
            quote = char
        elif char == open_char:
            depth += 1
        elif char == close_char:
            depth -= 1
            if depth == 0:
                return content[open_index + 1:index]
        index += 1
    return None


def split_arguments(span: str) -> list[str]:
    """Split a call's argument text on top-level commas."""
    args: list[str] = []
    depth = 0
    quote: Optional[str] = None
    current: list[str] = []
    index = 0
    while index < len(span):
        char = span[index]
        if quote:
            current.append(char)
            if char == "\\" and index + 1 < len(span):
                current.append(span[index + 1])
                index += 2
                continue
            if char == quote:
                quote = None
        elif char in "\"'`":
            quote = char
            current.append(char)
        elif char in "([{":
            depth += 1
            current.append(char)
        elif char in ")]}":
            depth -= 1
            current.append(char)
        elif char == "," and depth == 0:
            args.append("".join(current).strip())
            current = []
        else:
            current.append(char)
        index += 1

    tail = "".join(current).strip()
    if tail:
        args.append(tail)
    return args


def is_comment_line(line: str) -> bool:
    stripped = line.lstrip()
    return stripped.startswith(("//", "#", "*", "/*"))


@lru_cache(maxsize=256)
def glob_regex(pattern: str) -> re.Pattern:
    """Compile a path glob. ``**/`` spans directories; ``*`` and ``?`` stay inside one.

    Patterns without a leading ``/`` match at any directory depth.
    """
    if not pattern.startswith(("/", "**")):
        pattern = "**/" + pattern

    parts = []
    index = 0
    while index < len(pattern):
        if pattern.startswith("**/", index):
            parts.append("(?:.*/)?")
            index += 3
        elif pattern.startswith("**", index):
            parts.append(".*")
            index += 2
        else:
            char = pattern[index]
            if char == "*":
                parts.append("[^/]*")
            elif char == "?":
                parts.append("[^/]")
            else:
                parts.append(re.escape(char))
            index += 1
    return re.compile("".join(parts) + r"\Z")
