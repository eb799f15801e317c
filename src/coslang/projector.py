"""Renderable projection of engine state: no I/O, no decisions.

Turns an ``Engine.get_state()`` snapshot into what a front end draws: the
scene's text lines, the numbered choice list, stat/inventory snapshots and
the media currently on screen.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field

from coslang.nodes import format_value


@dataclass
class RenderedChoice:
    index: int
    text: str
    target: str
    tags: list[str] = field(default_factory=list)


@dataclass
class Renderable:
    scene_id: str | None
    text: list[str] = field(default_factory=list)
    choices: list[RenderedChoice] = field(default_factory=list)
    vars: dict[str, str] = field(default_factory=dict)
    stats: dict[str, str] = field(default_factory=dict)
    inventory: dict[str, str] = field(default_factory=dict)
    achievements: list[str] = field(default_factory=list)
    events: list[str] = field(default_factory=list)
    image: str | None = None
    audio: str | None = None
    video: str | None = None
    log: list[dict] = field(default_factory=list)
    error: str | None = None
    title: str = ""

    @property
    def finished(self) -> bool:
        """True when the scene offers nothing to choose."""
        return not self.choices

    def to_dict(self) -> dict:
        return asdict(self)


def project(state: dict) -> Renderable:
    """Build a ``Renderable`` from an engine state snapshot."""
    position = state.get("position", 0)
    content = state.get("content", [])

    # Only text the cursor has already passed is on screen.
    text = [node["value"] for node in content[:position] if node["type"] == "text"]
    choice_nodes = [node for node in content if node["type"] == "choice"]
    choices = [
        RenderedChoice(index, node["text"], node["target"], list(node.get("tags", [])))
        for index, node in enumerate(choice_nodes)
    ]

    return Renderable(
        scene_id=state.get("scene_id"),
        text=text,
        choices=choices,
        vars=_render_table(state.get("vars", {})),
        stats=_render_table(state.get("stats", {})),
        inventory=_render_table(state.get("inventory", {})),
        achievements=sorted(name for name, on in state.get("achievements", {}).items() if on),
        events=sorted(name for name, on in state.get("events", {}).items() if on),
        image=_asset_path(state.get("current_image")),
        audio=_asset_path(state.get("current_audio")),
        video=_asset_path(state.get("current_video")),
        log=list(state.get("log", [])),
        error=state.get("error"),
        title=state.get("meta", {}).get("title", ""),
    )


def render_text(renderable: Renderable) -> str:
    """Plain-text rendering used by ``coslang play``."""
    lines: list[str] = []
    header = f"== {renderable.scene_id} ==" if renderable.scene_id else "== (no scene) =="
    lines.append(header)
    lines.extend(renderable.text)
    for label, path in (("image", renderable.image), ("audio", renderable.audio), ("video", renderable.video)):
        if path:
            lines.append(f"[{label}: {path}]")
    if renderable.stats:
        lines.append("stats: " + ", ".join(f"{k}={v}" for k, v in sorted(renderable.stats.items())))
    if renderable.inventory:
        lines.append("inventory: " + ", ".join(f"{k}={v}" for k, v in sorted(renderable.inventory.items())))
    for choice in renderable.choices:
        lines.append(f"  {choice.index}) {choice.text}")
    if renderable.finished:
        lines.append("(end)")
    if renderable.error:
        lines.append(f"error: {renderable.error}")
    return "\n".join(lines)


def _render_table(table: dict) -> dict[str, str]:
    return {key: format_value(value) for key, value in table.items()}


def _asset_path(asset: dict | None) -> str | None:
    return asset["path"] if asset else None
