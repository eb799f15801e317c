"""Story compiler: parses Coslang source text into a ``StoryAST``."""

from __future__ import annotations

import logging
import re
from pathlib import Path

from coslang.nodes import (
    AssetDecl,
    ChoiceNode,
    ErrorNode,
    IfNode,
    MacroNode,
    Node,
    PlayAudioNode,
    Scene,
    SetNode,
    ShowImageNode,
    ShowVideoNode,
    StoryAST,
    TextNode,
    UnknownNode,
    coerce_literal,
)
from coslang.scanner import (
    Line,
    collect_block,
    count_braces,
    extract_tags,
    scan_lines,
    split_commas,
    text_before_closing_brace,
)

log = logging.getLogger(__name__)


class ParseError(Exception):
    """Raised when scene or macro boundaries cannot be determined."""


_META_FIELDS = ("title", "author", "version")

_ASSETS_RE = re.compile(r"^assets\s*\{")
_STATE_BLOCK_RE = re.compile(r"^(vars|stats|inventory)\s*\{")
_SCENE_RE = re.compile(r"^scene\s+(\w+)\s*\{")
_ASSET_DECL_RE = re.compile(r'^(image|audio|video)\s+(\w+)\s*=\s*"([^"]+)"(?:\s*\{([^}]*)\})?')
_ASSIGN_RE = re.compile(r"^(\w+)\s*=\s*(.+)$")

_ASSET_COMMAND_RE = re.compile(r'^(show\s+image|play\s+audio|show\s+video)\s+([\w-]+|"[^"]+")', re.IGNORECASE)
_IF_RE = re.compile(r"^if\s+(.+?)\s*\{$")
_ELSE_RE = re.compile(r"^else(?:\s+if\s+(?P<condition>.+?))?\s*\{$")
_CHOICE_RE = re.compile(r'^choice\s+"([^"]+)"\s*->\s*(\w+)')
_SET_RE = re.compile(r"^set\s+(\w+)\s*=\s*(.+)$")
_MACRO_RE = re.compile(r"^macro\s+(\w+)\s*\(([^)]*)\)\s*\{")

_ASSET_COMMANDS = {
    "show image": ShowImageNode,
    "play audio": PlayAudioNode,
    "show video": ShowVideoNode,
}


def parse_story_file(path: str) -> StoryAST:
    """Read a ``.coslang`` file and parse it.

    Raises ParseError when the file is unreadable or structurally broken.
    """
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ParseError(f"Cannot read story file: {exc}") from exc
    return parse_story(raw)


def parse_story(source: str) -> StoryAST:
    """Parse Coslang source text into a ``StoryAST``.

    Unrecognized statements become ``UnknownNode`` and malformed
    ``choice``/``set`` lines become ``ErrorNode``; only a broken ``scene`` or
    ``macro`` header raises ParseError.
    """
    lines = scan_lines(source)
    story = StoryAST()

    # ── 1. assets { ... } regions, wherever they appear ──────────────────────
    remaining: list[Line] = []
    index = 0
    while index < len(lines):
        if _ASSETS_RE.match(lines[index].text):
            body, index, _ = collect_block(lines, index)
            story.assets.extend(parse_assets_block(body))
            continue
        remaining.append(lines[index])
        index += 1
    lines = remaining

    # ── 2. metadata, story-scope state blocks and scenes ─────────────────────
    index = 0
    while index < len(lines):
        line = lines[index]
        text = line.text

        key, sep, value = text.partition(":")
        if sep and key.strip() in _META_FIELDS:
            setattr(story.meta, key.strip(), _unquote(value.strip()))
            index += 1
            continue

        block = _STATE_BLOCK_RE.match(text)
        if block:
            body, index, _ = collect_block(lines, index)
            target = getattr(story.meta, block.group(1))
            for name, raw_value in _parse_assignments(body).items():
                target[name] = coerce_literal(raw_value)
            continue

        if text == "scene" or text.startswith(("scene ", "scene\t")):
            match = _SCENE_RE.match(text)
            if not match:
                raise ParseError(f"Line {line.number}: malformed scene declaration: {text!r}")
            body, index, _ = collect_block(lines, index)
            scene = parse_scene(body, match.group(1), line.number)
            if scene.id in story.scenes:
                log.warning("Line %d: scene %r redefined", line.number, scene.id)
            story.scenes[scene.id] = scene
            continue

        log.debug("Line %d: ignoring top-level line %r", line.number, text)
        index += 1

    return story


def parse_assets_block(lines: list[Line]) -> list[AssetDecl]:
    """Parse ``type name = "value" { key: value, ... }`` declarations."""
    assets: list[AssetDecl] = []
    for line in lines:
        match = _ASSET_DECL_RE.match(line.text)
        if not match:
            log.debug("Line %d: skipping asset line %r", line.number, line.text)
            continue
        asset_type, name, value, settings_raw = match.groups()
        settings = {}
        if settings_raw:
            for pair in settings_raw.split(","):
                setting, sep, setting_value = pair.partition(":")
                if sep and setting.strip():
                    settings[setting.strip()] = coerce_literal(setting_value.strip())
        assets.append(AssetDecl(asset_type, name, value, settings))
    return assets


def parse_scene(lines: list[Line], scene_id: str, line_number: int = 0) -> Scene:
    """Parse a scene body: state default blocks plus content statements.

    Scene-level defaults stay raw strings; the engine coerces them when it
    seeds them into a running story.
    """
    defaults: dict[str, dict[str, str]] = {}
    content_lines: list[Line] = []
    index = 0
    while index < len(lines):
        block = _STATE_BLOCK_RE.match(lines[index].text)
        if block:
            body, index, _ = collect_block(lines, index)
            defaults[block.group(1)] = _parse_assignments(body)
            continue
        content_lines.append(lines[index])
        index += 1

    return Scene(
        id=scene_id,
        content=tuple(parse_content(content_lines)),
        vars=defaults.get("vars") or None,
        stats=defaults.get("stats") or None,
        inventory=defaults.get("inventory") or None,
        line=line_number,
    )


def parse_content(lines: list[Line]) -> list[Node]:
    """Parse a sequence of content lines into nodes."""
    nodes: list[Node] = []
    index = 0
    while index < len(lines):
        line = lines[index]
        text = line.text
        index += 1

        asset = _ASSET_COMMAND_RE.match(text)
        if asset:
            verb = " ".join(asset.group(1).lower().split())
            nodes.append(_ASSET_COMMANDS[verb](asset.group(2).strip('"'), line.number))
            continue

        condition = _IF_RE.match(text)
        if condition:
            node, index = _parse_if(lines, index, condition.group(1), line.number)
            nodes.append(node)
            continue

        if text.startswith("choice "):
            nodes.append(parse_choice(text, line.number))
            continue

        if text.startswith("set "):
            nodes.append(parse_set(text, line.number))
            continue

        if text.startswith("text:"):
            nodes.append(parse_text(text, line.number))
            continue

        if text.startswith('"'):
            bare, _ = extract_tags(text)
            if len(bare) >= 2 and bare.endswith('"'):
                nodes.append(parse_text(text, line.number))
                continue

        if text == "macro" or text.startswith("macro "):
            node, index = _parse_macro(lines, index - 1)
            nodes.append(node)
            continue

        log.debug("Line %d: unknown statement %r", line.number, text)
        nodes.append(UnknownNode(text, line.number))
    return nodes


# ---------------------------------------------------------------------------
# Statements
# ---------------------------------------------------------------------------


def parse_choice(text: str, line_number: int = 0) -> ChoiceNode | ErrorNode:
    statement, tags = extract_tags(text)
    match = _CHOICE_RE.match(statement)
    if not match:
        return ErrorNode(f"Malformed choice line: {text}", line_number)
    return ChoiceNode(match.group(1), match.group(2), tuple(tags), line_number)


def parse_set(text: str, line_number: int = 0) -> SetNode | ErrorNode:
    statement, tags = extract_tags(text)
    match = _SET_RE.match(statement)
    if not match:
        return ErrorNode(f"Malformed set line: {text}", line_number)
    return SetNode(match.group(1), match.group(2).strip(), tuple(tags), line_number)


def parse_text(text: str, line_number: int = 0) -> TextNode:
    statement, tags = extract_tags(text)
    if statement.startswith("text:"):
        statement = statement[5:].strip()
    return TextNode(_unquote(statement, quotes='"'), tuple(tags), line_number)


def _parse_macro(lines: list[Line], header_index: int) -> tuple[MacroNode, int]:
    header = lines[header_index]
    match = _MACRO_RE.match(header.text)
    if not match:
        raise ParseError(f"Line {header.number}: malformed macro declaration: {header.text!r}")
    params = tuple(p.strip() for p in match.group(2).split(",") if p.strip())
    body, index, _ = collect_block(lines, header_index)
    node = MacroNode(match.group(1), params, "\n".join(line.text for line in body), header.number)
    return node, index


# ---------------------------------------------------------------------------
# Conditionals
# ---------------------------------------------------------------------------


def _parse_if(lines: list[Line], index: int, condition: str, line_number: int) -> tuple[IfNode, int]:
    """Parse an ``if`` block whose body starts at ``lines[index]``.

    ``} else if cond {`` and ``} else {`` close the current branch on the same
    line; a detached ``else`` line right after ``}`` is accepted as well.  An
    ``else if`` recurses on the remaining lines and nests as a single ``IfNode``.
    """
    then_lines, index, closer = _collect_branch(lines, index, line_number)

    if closer is None and index < len(lines) and _ELSE_RE.match(lines[index].text):
        closer = lines[index]
        index += 1

    otherwise: list[Node] = []
    if closer is not None:
        match = _ELSE_RE.match(closer.text.lstrip("}").strip())
        if match.group("condition"):
            nested, index = _parse_if(lines, index, match.group("condition"), closer.number)
            otherwise = [nested]
        else:
            else_lines, index, extra = _collect_branch(lines, index, closer.number)
            if extra is not None:
                log.warning("Line %d: 'else' after a final else branch", extra.number)
            otherwise = parse_content(else_lines)

    node = IfNode(condition, tuple(parse_content(then_lines)), tuple(otherwise), line_number)
    return node, index


def _collect_branch(lines: list[Line], index: int, line_number: int) -> tuple[list[Line], int, Line | None]:
    """Gather one branch body; returns the ``} else ... {`` line that ended it, if any."""
    depth = 1
    body: list[Line] = []
    while index < len(lines):
        line = lines[index]
        index += 1
        if depth == 1 and line.text.startswith("}") and _ELSE_RE.match(line.text[1:].strip()):
            return body, index, line
        opening, closing = count_braces(line.text)
        depth += opening - closing
        if depth <= 0:
            content = text_before_closing_brace(line.text)
            if content:
                body.append(Line(content, line.number))
            return body, index, None
        body.append(line)
    log.warning("Line %d: if block is never closed", line_number)
    return body, index, None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _parse_assignments(lines: list[Line]) -> dict[str, str]:
    """Parse ``name = value`` lines (comma-separated on one line is allowed)."""
    values: dict[str, str] = {}
    for line in lines:
        for piece in split_commas(line.text):
            match = _ASSIGN_RE.match(piece.strip())
            if match:
                values[match.group(1)] = match.group(2).strip()
            elif piece.strip():
                log.debug("Line %d: skipping declaration %r", line.number, piece)
    return values


def _unquote(value: str, quotes: str = "\"'") -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in quotes:
        return value[1:-1]
    return value
