"""JSON output for compiled stories and engine state snapshots."""

from __future__ import annotations

import json
from pathlib import Path


def dumps_json(data: dict) -> str:
    """Serialize a Story or EngineState document with sorted keys and ASCII escapes."""
    return json.dumps(data, sort_keys=True, indent=2, ensure_ascii=True)


def write_json(data: dict, path: str) -> None:
    """Write a ``StoryAST.to_dict()`` or ``Engine.get_state()`` document to *path*.

    Compiling the same story twice produces identical bytes: keys are
    sorted, scene and node order come from the source, and the file ends
    in exactly one ``\\n``.  Parent directories are created as needed.
    """
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(dumps_json(data) + "\n", encoding="utf-8", newline="\n")
