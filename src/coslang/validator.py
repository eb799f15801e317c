"""Schema validation of compiled stories and state snapshots, plus story diagnostics."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

import jsonschema

from coslang.nodes import ChoiceNode, ErrorNode, StoryAST, TextNode, UnknownNode, walk

# src/coslang/ -> src/coslang/schemas/
_SCHEMAS = Path(__file__).resolve().parent / "schemas"
_STORY_SCHEMA_PATH = _SCHEMAS / "Story.v1.json"
_STATE_SCHEMA_PATH = _SCHEMAS / "EngineState.v1.json"

START_SCENE = "start"
END_SCENE = "end"


class ValidationError(Exception):
    """Raised when a compiled story or a state snapshot violates its schema."""


def _validate(data: dict, schema_path: Path, label: str) -> dict:
    schema = json.loads(schema_path.read_text(encoding="utf-8"))
    try:
        jsonschema.validate(data, schema)
    except jsonschema.ValidationError as exc:
        raise ValidationError(f"{label} violates schema: {exc.message}") from exc
    return data


def validate_story_dict(data: dict) -> dict:
    """Validate a ``StoryAST.to_dict()`` document against Story.v1.json.

    Returns *data* unchanged on success.
    Raises ValidationError on any problem.
    """
    _validate(data, _STORY_SCHEMA_PATH, "Story")

    # ── Semantic rules (constraints JSON Schema cannot express) ───────────────
    ids = [scene["id"] for scene in data["scenes"]]
    duplicates = sorted({scene_id for scene_id in ids if ids.count(scene_id) > 1})
    if duplicates:
        raise ValidationError(f"Duplicate scene ids: {', '.join(duplicates)}")
    return data


def validate_state_dict(data: dict) -> dict:
    """Validate an ``Engine.get_state()`` snapshot against EngineState.v1.json."""
    return _validate(data, _STATE_SCHEMA_PATH, "Engine state")


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Diagnostic:
    code: str
    severity: str  # error | warning | info
    message: str
    line: int | None = None
    suggestion: str = ""

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "severity": self.severity,
            "message": self.message,
            "line": self.line,
            "suggestion": self.suggestion,
        }

    def __str__(self) -> str:
        where = f"line {self.line}: " if self.line else ""
        return f"{self.severity.upper()} {self.code}: {where}{self.message}"


def diagnose_story(ast: StoryAST) -> list[Diagnostic]:
    """Static checks that catch stories which parse but cannot be played well.

    Diagnostics are ordered: story-level, then per-scene in story order, then
    metadata.  A story without scenes yields only ``NO_SCENES``.
    """
    if not ast.scenes:
        return [
            Diagnostic(
                "NO_SCENES",
                "error",
                "No scenes found in story. Add at least one scene to make your story playable.",
                suggestion="Add a scene with: scene start { ... }",
            )
        ]

    found: list[Diagnostic] = []

    # 1. start scene
    if START_SCENE not in ast.scenes:
        found.append(
            Diagnostic(
                "NO_START_SCENE",
                "warning",
                'No "start" scene found. Stories need a "start" scene to begin.',
                suggestion='Add a scene named "start" or rename an existing scene to "start"',
            )
        )

    # 2. choice targets
    referenced: set[str] = set()
    for scene in ast.scenes.values():
        for node in walk(scene.content):
            if not isinstance(node, ChoiceNode):
                continue
            referenced.add(node.target)
            if node.target not in ast.scenes:
                found.append(
                    Diagnostic(
                        "UNDEFINED_SCENE_REFERENCE",
                        "error",
                        f'Choice in scene "{scene.id}" references undefined scene: "{node.target}"',
                        node.line,
                        f"Create a scene with id: {node.target}",
                    )
                )

    # 3. per-scene structure
    first = ast.first_scene_id
    for scene in ast.scenes.values():
        nodes = list(walk(scene.content))

        if scene.id not in referenced and scene.id not in (first, START_SCENE):
            found.append(
                Diagnostic(
                    "UNREACHABLE_SCENE",
                    "warning",
                    f'Scene "{scene.id}" is unreachable (not referenced by any choice)',
                    scene.line,
                    f"Add a choice to reference scene: {scene.id}",
                )
            )

        if not any(isinstance(node, TextNode) for node in nodes):
            found.append(
                Diagnostic(
                    "EMPTY_SCENE_CONTENT",
                    "warning",
                    f'Scene "{scene.id}" has no text content',
                    scene.line,
                    "Add text content to make the scene meaningful",
                )
            )

        choices = [node for node in nodes if isinstance(node, ChoiceNode)]
        if not choices and scene.id != END_SCENE:
            found.append(
                Diagnostic(
                    "NO_CHOICES",
                    "warning",
                    f'Scene "{scene.id}" has no choices - players cannot progress',
                    scene.line,
                    "Add choices to allow story progression",
                )
            )

        for choice in choices:
            if choice.target == scene.id:
                found.append(
                    Diagnostic(
                        "POTENTIAL_LOOP",
                        "warning",
                        f'Scene "{scene.id}" has a choice that leads back to itself - potential infinite loop',
                        choice.line,
                        "Consider adding a condition or different target to prevent loops",
                    )
                )

        for node in nodes:
            if isinstance(node, ErrorNode):
                found.append(Diagnostic("PARSE_ERROR", "error", node.message, node.line, "Fix the statement syntax"))
            elif isinstance(node, UnknownNode):
                found.append(
                    Diagnostic(
                        "UNKNOWN_LINE",
                        "warning",
                        f'Unrecognized line in scene "{scene.id}": {node.raw}',
                        node.line,
                        "Check the statement keyword and spelling",
                    )
                )

    # 4. metadata
    if not ast.meta.title:
        found.append(
            Diagnostic("MISSING_TITLE", "warning", "Story missing title metadata", suggestion='Add: title: "Your Story Title"')
        )
    if not ast.meta.author:
        found.append(
            Diagnostic("MISSING_AUTHOR", "info", "Story missing author metadata", suggestion='Add: author: "Your Name"')
        )
    return found


def has_errors(diagnostics: list[Diagnostic]) -> bool:
    return any(d.severity == "error" for d in diagnostics)
