"""Block scanner: logical lines, brace matching and tag extraction.

The scanner knows nothing about statements.  It turns source text into
stripped logical lines (comments and blank lines dropped, multi-line
``text: "..."`` values joined into one line), counts braces outside string
literals, and cuts ``{ ... }`` regions out of a line sequence.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

log = logging.getLogger(__name__)

COMMENT_PREFIX = "//"


@dataclass(frozen=True)
class Line:
    """One logical source line; ``number`` is the 1-based line it starts on."""

    text: str
    number: int


def scan_lines(source: str) -> list[Line]:
    """Split *source* into logical lines."""
    raw = source.splitlines()
    lines: list[Line] = []
    i = 0
    while i < len(raw):
        text = raw[i].strip()
        number = i + 1
        i += 1
        if not text or text.startswith(COMMENT_PREFIX):
            continue
        if opens_multiline_text(text):
            parts = [text]
            closed = False
            while i < len(raw):
                part = raw[i].strip()
                i += 1
                parts.append(part)
                if _quote_count(part) % 2 == 1:
                    closed = True
                    break
            if not closed:
                log.warning("Line %d: unterminated multi-line text", number)
            text = "\n".join(parts)
        lines.append(Line(text, number))
    return lines


def opens_multiline_text(text: str) -> bool:
    """True for a ``text: "...`` line whose string does not close on the same line."""
    if not text.startswith("text:"):
        return False
    value = text[5:].strip()
    return value.startswith('"') and _quote_count(value) % 2 == 1


def _quote_count(text: str) -> int:
    return text.count('"')


def count_braces(text: str) -> tuple[int, int]:
    """Return ``(opening, closing)`` brace counts outside double-quoted strings."""
    opening = closing = 0
    quoted = False
    for ch in text:
        if ch == '"':
            quoted = not quoted
        elif quoted:
            continue
        elif ch == "{":
            opening += 1
        elif ch == "}":
            closing += 1
    return opening, closing


def _split_outside_quotes(text: str, brace: str, last: bool = False) -> tuple[str, str] | None:
    quoted = False
    found = -1
    for index, ch in enumerate(text):
        if ch == '"':
            quoted = not quoted
        elif not quoted and ch == brace:
            found = index
            if not last:
                break
    if found == -1:
        return None
    return text[:found], text[found + 1:]


def collect_block(lines: list[Line], header_index: int) -> tuple[list[Line], int, bool]:
    """Cut the ``{ ... }`` region opened on ``lines[header_index]``.

    Returns ``(body, next_index, closed)``.  A header that also closes its
    block (``vars { hp = 10 }``) yields its inner text as a single body line.
    Content written before a closing brace on the same line is kept.
    """
    header = lines[header_index]
    opening, closing = count_braces(header.text)
    depth = opening - closing
    if depth <= 0:
        inner = _inline_body(header.text)
        body = [Line(inner, header.number)] if inner else []
        return body, header_index + 1, True

    body: list[Line] = []
    index = header_index + 1
    while index < len(lines):
        line = lines[index]
        opening, closing = count_braces(line.text)
        depth += opening - closing
        index += 1
        if depth <= 0:
            content = text_before_closing_brace(line.text)
            if content:
                body.append(Line(content, line.number))
            return body, index, True
        body.append(line)
    log.warning("Line %d: block opened here is never closed", header.number)
    return body, index, False


def text_before_closing_brace(text: str) -> str:
    """Statement text written in front of a block's closing brace, if any."""
    before = _split_outside_quotes(text, "}", last=True)
    return before[0].strip() if before else ""


def _inline_body(text: str) -> str:
    head = _split_outside_quotes(text, "{")
    if head is None:
        return ""
    tail = _split_outside_quotes(head[1], "}", last=True)
    inner = tail[0] if tail else head[1]
    return inner.strip()


def extract_tags(text: str) -> tuple[str, list[str]]:
    """Pull ``[Tag1, Tag2]`` groups (outside string literals) off a statement.

    Returns the statement without its tags and the flat list of tags.
    """
    tags: list[str] = []
    kept: list[str] = []
    quoted = False
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == '"':
            quoted = not quoted
        elif ch == "[" and not quoted:
            end = text.find("]", i + 1)
            if end != -1:
                group = text[i + 1:end]
                tags.extend(tag.strip() for tag in group.split(",") if tag.strip())
                while kept and kept[-1].isspace():
                    kept.pop()
                i = end + 1
                continue
        kept.append(ch)
        i += 1
    return "".join(kept).strip(), tags


def split_commas(text: str) -> list[str]:
    """Split on commas that are not inside a double-quoted string."""
    pieces: list[str] = []
    current: list[str] = []
    quoted = False
    for ch in text:
        if ch == '"':
            quoted = not quoted
        if ch == "," and not quoted:
            pieces.append("".join(current))
            current = []
            continue
        current.append(ch)
    pieces.append("".join(current))
    return pieces
