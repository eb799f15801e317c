"""Engine configuration and JSON config file loading."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

import jsonschema

from coslang.assets import DEFAULT_FOLDERS

_CONFIG_SCHEMA_PATH = Path(__file__).resolve().parent / "schemas" / "EngineConfig.v1.json"

DEFAULT_MAX_CALL_DEPTH = 16


class ConfigError(Exception):
    """Raised when an engine config file is unreadable or violates its schema."""


@dataclass
class EngineConfig:
    """Per-engine settings.

    max_call_depth   macro call stack limit
    start_scene      scene used by ``Engine.start()`` when none is given
    asset_folders    per-type folder prefixes for local asset paths
    literal_assets   resolve undeclared file-like asset references
    announce         log an INFO banner when the engine is constructed
    """

    max_call_depth: int = DEFAULT_MAX_CALL_DEPTH
    start_scene: str | None = None
    asset_folders: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_FOLDERS))
    literal_assets: bool = True
    announce: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "EngineConfig":
        """Build a config from a dict that matches EngineConfig.v1.json."""
        schema = json.loads(_CONFIG_SCHEMA_PATH.read_text(encoding="utf-8"))
        try:
            jsonschema.validate(data, schema)
        except jsonschema.ValidationError as exc:
            raise ConfigError(f"Engine config violates schema: {exc.message}") from exc
        return cls(
            max_call_depth=data.get("max_call_depth", DEFAULT_MAX_CALL_DEPTH),
            start_scene=data.get("start_scene"),
            asset_folders={**DEFAULT_FOLDERS, **data.get("asset_folders", {})},
            literal_assets=data.get("literal_assets", True),
            announce=data.get("announce", False),
        )


def load_config(path: str) -> EngineConfig:
    """Read and validate an engine config JSON file."""
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot read config file: {exc}") from exc
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON: {exc}") from exc
    return EngineConfig.from_dict(data)
