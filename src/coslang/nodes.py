"""Coslang abstract syntax tree.

The parser produces a ``StoryAST``; the engine never mutates it.  Nodes are
frozen dataclasses so a scene's content tuple can be shared between the AST
and any number of running engines.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar, Union

Value = Union[int, float, bool, str]

ASSET_TYPES = ("image", "audio", "video")


def coerce_literal(raw: object) -> Value:
    """Turn a raw declaration value into a typed ``Value``.

    ``true``/``false`` become bools, numeric literals become ints or floats,
    double-quoted text loses its quotes; anything else is kept verbatim.
    """
    if not isinstance(raw, str):
        return raw  # already typed
    text = raw.strip()
    if text == "true":
        return True
    if text == "false":
        return False
    number = parse_number(text)
    if number is not None:
        return number
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ('"', "'"):
        return text[1:-1]
    return text


def parse_number(text: str) -> int | float | None:
    """Return *text* as an int or float, or None when it is not numeric."""
    text = text.strip()
    if not text or "_" in text:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


def format_value(value: object) -> str:
    """Render a runtime value the way story text shows it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# ---------------------------------------------------------------------------
# Content nodes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextNode:
    value: str
    tags: tuple[str, ...] = ()
    line: int = 0

    kind: ClassVar[str] = "text"


@dataclass(frozen=True)
class SetNode:
    var: str
    expr: str
    tags: tuple[str, ...] = ()
    line: int = 0

    kind: ClassVar[str] = "set"


@dataclass(frozen=True)
class ChoiceNode:
    text: str
    target: str
    tags: tuple[str, ...] = ()
    line: int = 0

    kind: ClassVar[str] = "choice"


@dataclass(frozen=True)
class IfNode:
    """Conditional block; an ``else if`` chain nests as ``otherwise == (IfNode,)``."""

    condition: str
    then: tuple["Node", ...] = ()
    otherwise: tuple["Node", ...] = ()
    line: int = 0

    kind: ClassVar[str] = "if"


@dataclass(frozen=True)
class MacroNode:
    """Macro definition. The body is kept verbatim and interpreted on call."""

    name: str
    params: tuple[str, ...] = ()
    body: str = ""
    line: int = 0

    kind: ClassVar[str] = "macro"


@dataclass(frozen=True)
class ShowImageNode:
    name: str
    line: int = 0

    kind: ClassVar[str] = "show_image"
    asset_type: ClassVar[str] = "image"


@dataclass(frozen=True)
class PlayAudioNode:
    name: str
    line: int = 0

    kind: ClassVar[str] = "play_audio"
    asset_type: ClassVar[str] = "audio"


@dataclass(frozen=True)
class ShowVideoNode:
    name: str
    line: int = 0

    kind: ClassVar[str] = "show_video"
    asset_type: ClassVar[str] = "video"


@dataclass(frozen=True)
class UnknownNode:
    raw: str
    line: int = 0

    kind: ClassVar[str] = "unknown"


@dataclass(frozen=True)
class ErrorNode:
    """Placeholder for a malformed ``choice``/``set`` statement."""

    message: str
    line: int = 0

    kind: ClassVar[str] = "error"


AssetNode = Union[ShowImageNode, PlayAudioNode, ShowVideoNode]

Node = Union[
    TextNode,
    SetNode,
    ChoiceNode,
    IfNode,
    MacroNode,
    ShowImageNode,
    PlayAudioNode,
    ShowVideoNode,
    UnknownNode,
    ErrorNode,
]

ASSET_NODES = (ShowImageNode, PlayAudioNode, ShowVideoNode)


def walk(nodes: tuple[Node, ...] | list[Node]):
    """Yield every node, descending into both branches of ``if`` blocks."""
    for node in nodes:
        yield node
        if isinstance(node, IfNode):
            yield from walk(node.then)
            yield from walk(node.otherwise)


def node_to_dict(node: Node) -> dict:
    """Serialize one node to the JSON shape used by Story.v1.json."""
    data: dict = {"type": node.kind, "line": node.line}
    if isinstance(node, TextNode):
        data["value"] = node.value
        data["tags"] = list(node.tags)
    elif isinstance(node, SetNode):
        data["var"] = node.var
        data["expr"] = node.expr
        data["tags"] = list(node.tags)
    elif isinstance(node, ChoiceNode):
        data["text"] = node.text
        data["target"] = node.target
        data["tags"] = list(node.tags)
    elif isinstance(node, IfNode):
        data["condition"] = node.condition
        data["then"] = [node_to_dict(n) for n in node.then]
        data["else"] = [node_to_dict(n) for n in node.otherwise]
    elif isinstance(node, MacroNode):
        data["name"] = node.name
        data["params"] = list(node.params)
        data["body"] = node.body
    elif isinstance(node, ASSET_NODES):
        data["name"] = node.name
    elif isinstance(node, UnknownNode):
        data["raw"] = node.raw
    elif isinstance(node, ErrorNode):
        data["message"] = node.message
    return data


# ---------------------------------------------------------------------------
# Story structure
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AssetDecl:
    type: str
    name: str
    value: str
    settings: dict[str, Value] = field(default_factory=dict)


@dataclass
class StoryMeta:
    title: str = ""
    author: str = ""
    version: str = ""
    vars: dict[str, Value] = field(default_factory=dict)
    stats: dict[str, Value] = field(default_factory=dict)
    inventory: dict[str, Value] = field(default_factory=dict)


@dataclass
class Scene:
    """A named scene. ``vars``/``stats``/``inventory`` hold raw default strings."""

    id: str
    content: tuple[Node, ...] = ()
    vars: dict[str, str] | None = None
    stats: dict[str, str] | None = None
    inventory: dict[str, str] | None = None
    line: int = 0


@dataclass
class StoryAST:
    meta: StoryMeta = field(default_factory=StoryMeta)
    scenes: dict[str, Scene] = field(default_factory=dict)
    assets: list[AssetDecl] = field(default_factory=list)

    @property
    def first_scene_id(self) -> str | None:
        return next(iter(self.scenes), None)

    def to_dict(self) -> dict:
        """Return the Story.v1.json document for this AST."""
        return {
            "schema_id": "Story",
            "schema_version": "1.0",
            "meta": {
                "title": self.meta.title,
                "author": self.meta.author,
                "version": self.meta.version,
                "vars": dict(self.meta.vars),
                "stats": dict(self.meta.stats),
                "inventory": dict(self.meta.inventory),
            },
            "scenes": [
                {
                    "id": scene.id,
                    "line": scene.line,
                    "vars": dict(scene.vars or {}),
                    "stats": dict(scene.stats or {}),
                    "inventory": dict(scene.inventory or {}),
                    "content": [node_to_dict(n) for n in scene.content],
                }
                for scene in self.scenes.values()
            ],
            "assets": [
                {
                    "type": asset.type,
                    "name": asset.name,
                    "value": asset.value,
                    "settings": dict(asset.settings),
                }
                for asset in self.assets
            ],
        }
