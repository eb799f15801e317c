"""Asset registry and path resolver for images, audio and video."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Mapping

from coslang.nodes import ASSET_TYPES, AssetDecl, Value

DEFAULT_FOLDERS: dict[str, str] = {
    "image": "assets/images/",
    "audio": "assets/audio/",
    "video": "assets/video/",
}

_REMOTE_RE = re.compile(r"^https?://", re.IGNORECASE)


def resolve_asset_path(asset_type: str, value: str, folders: Mapping[str, str] | None = None) -> str:
    """Map an asset value to a path: remote URLs pass through, anything else
    is placed under the per-type folder."""
    if _REMOTE_RE.match(value):
        return value
    folders = folders or DEFAULT_FOLDERS
    try:
        folder = folders[asset_type]
    except KeyError as exc:
        raise ValueError(f"Unknown asset type: {asset_type!r}") from exc
    return folder + value


@dataclass(frozen=True)
class Asset:
    type: str
    name: str
    value: str
    path: str
    settings: dict[str, Value] = field(default_factory=dict)

    def control(self, key: str) -> Value | None:
        return self.settings.get(key)

    def controls(self) -> dict[str, Value]:
        return dict(self.settings)

    def to_dict(self) -> dict:
        return {"type": self.type, "name": self.name, "value": self.value, "path": self.path}


class AssetRegistry:
    """Declared assets of one story, looked up by alias or file name."""

    def __init__(self, folders: Mapping[str, str] | None = None, *, literal_fallback: bool = True) -> None:
        self.folders = {**DEFAULT_FOLDERS, **(folders or {})}
        self.literal_fallback = literal_fallback
        self._assets: dict[str, dict[str, Asset]] = {t: {} for t in ASSET_TYPES}

    @classmethod
    def from_declarations(cls, declarations: list[AssetDecl], **kwargs) -> "AssetRegistry":
        registry = cls(**kwargs)
        for decl in declarations:
            registry.add(decl)
        return registry

    def add(self, decl: AssetDecl) -> Asset:
        if decl.type not in self._assets:
            raise ValueError(f"Unknown asset type: {decl.type!r}")
        asset = Asset(
            type=decl.type,
            name=decl.name,
            value=decl.value,
            path=resolve_asset_path(decl.type, decl.value, self.folders),
            settings=dict(decl.settings),
        )
        self._assets[decl.type][decl.name] = asset
        return asset

    def get(self, asset_type: str, reference: str) -> Asset | None:
        """Find an asset by alias, then by file name or alias ignoring case.

        Unregistered references that look like a file or URL resolve to a
        literal asset; bare unknown names return None.
        """
        by_name = self._assets.get(asset_type)
        if by_name is None:
            return None
        if reference in by_name:
            return by_name[reference]
        folded = reference.lower()
        for asset in by_name.values():
            if asset.value.lower() == folded or asset.name.lower() == folded:
                return asset
        if self.literal_fallback and ("." in reference or "/" in reference):
            return Asset(asset_type, reference, reference, resolve_asset_path(asset_type, reference, self.folders))
        return None

    def by_type(self, asset_type: str) -> list[Asset]:
        return list(self._assets.get(asset_type, {}).values())

    def all(self) -> list[Asset]:
        return [asset for by_name in self._assets.values() for asset in by_name.values()]
