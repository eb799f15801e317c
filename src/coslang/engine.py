"""Runtime state machine that plays a parsed Coslang story.

One ``Engine`` owns one playthrough.  ``start``/``choose`` load a scene:
the scene's content is copied out of the AST, its top-level ``set``
statements run, ``if`` blocks are expanded against the current state, and
the cursor auto-advances over text and media until it reaches a choice or
the end of the scene.  All calls are synchronous; callers serialize access.
"""

from __future__ import annotations

import copy
import logging
import re
from collections import ChainMap
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Callable, Iterator, Mapping, NoReturn, Sequence

from coslang.assets import Asset, AssetRegistry
from coslang.compiler import parse_set, parse_text
from coslang.config import EngineConfig
from coslang.expressions import ExpressionError, evaluate
from coslang.nodes import (
    ASSET_NODES,
    ChoiceNode,
    ErrorNode,
    IfNode,
    MacroNode,
    Node,
    SetNode,
    StoryAST,
    StoryMeta,
    TextNode,
    Value,
    coerce_literal,
    format_value,
    node_to_dict,
    parse_number,
    walk,
)
from coslang.scanner import split_commas

log = logging.getLogger(__name__)


class EngineError(Exception):
    """Base class for runtime-fatal engine errors."""


class SceneNotFoundError(EngineError):
    """Raised when a scene id is not in the story."""


class NoSceneLoadedError(EngineError):
    """Raised when an operation needs a loaded scene and there is none."""


class NoChoicesAvailableError(EngineError):
    """Raised by choose() when the current scene offers no choices."""


class InvalidChoiceIndexError(EngineError):
    """Raised by choose() when the index is outside the choice list."""


class ConditionError(EngineError):
    """Raised when an if condition cannot be evaluated."""


class SetStatementError(EngineError):
    """Raised when a set statement or macro value cannot be computed."""


class MacroNotFoundError(EngineError):
    """Raised when a called macro is not defined."""


class MacroArgumentMismatchError(EngineError):
    """Raised when a macro call passes the wrong number of arguments."""


class MacroNoReturnValueError(EngineError):
    """Raised when a macro used for its value has no return line."""


class CallStackOverflowError(EngineError):
    """Raised when macro calls nest deeper than max_call_depth."""


# Fixed clamp table: name -> (minimum, maximum), applied after every assignment.
CLAMP_RULES: dict[str, tuple[int | None, int | None]] = {
    "enemyHealth": (0, None),
    "enemyDamage": (0, None),
    "playerDamage": (0, None),
    "questProgress": (None, 3),
}

_MACRO_CALL_RE = re.compile(r"^(\w+)\s*\(([^)]*)\)$")
_INTERPOLATION_RE = re.compile(r"\{([a-zA-Z_][a-zA-Z0-9_]*)\}")
_OPERATOR_WORDS = frozenset({"and", "or", "not"})


@dataclass(frozen=True)
class MacroDef:
    name: str
    params: tuple[str, ...] = ()
    body: str = ""
    native: Callable[..., Value] | None = None

    @classmethod
    def from_node(cls, node: MacroNode) -> "MacroDef":
        return cls(node.name, node.params, node.body)


BUILTIN_MACROS: dict[str, MacroDef] = {
    "min": MacroDef("min", ("a", "b"), native=min),
    "max": MacroDef("max", ("a", "b"), native=max),
}


@dataclass
class GlobalState:
    vars: dict[str, Value] = field(default_factory=dict)
    stats: dict[str, Value] = field(default_factory=dict)
    inventory: dict[str, Value] = field(default_factory=dict)
    events: dict[str, bool] = field(default_factory=dict)
    achievements: dict[str, bool] = field(default_factory=dict)
    macros: dict[str, MacroDef] = field(default_factory=dict)
    log: list[dict] = field(default_factory=list)


@dataclass
class LoadedScene:
    """A scene's content as played.

    ``templates`` is the expanded node sequence with text as written;
    ``content`` mirrors it index for index with text interpolated.
    """

    id: str
    templates: list[Node]
    content: list[Node]
    conditionals_expanded: bool = False
    set_nodes_executed: bool = False


@dataclass
class RuntimeState:
    scene: LoadedScene | None = None
    scene_id: str | None = None
    position: int = 0
    vars: dict[str, Value] = field(default_factory=dict)
    stats: dict[str, Value] = field(default_factory=dict)
    inventory: dict[str, Value] = field(default_factory=dict)
    events: dict[str, bool] = field(default_factory=dict)
    achievements: dict[str, bool] = field(default_factory=dict)
    macros: dict[str, MacroDef] = field(default_factory=dict)
    call_stack: list[str] = field(default_factory=list)
    log: list[dict] = field(default_factory=list)
    error: str | None = None
    current_image: Asset | None = None
    current_audio: Asset | None = None
    current_video: Asset | None = None


class Engine:
    """Plays one ``StoryAST``."""

    def __init__(
        self,
        ast: StoryAST,
        config: EngineConfig | None = None,
        *,
        assets: AssetRegistry | None = None,
    ) -> None:
        self.ast = ast
        self.config = config or EngineConfig()
        self.assets = assets or AssetRegistry.from_declarations(
            ast.assets,
            folders=self.config.asset_folders,
            literal_fallback=self.config.literal_assets,
        )
        self.global_state = GlobalState(
            vars=dict(ast.meta.vars),
            stats=dict(ast.meta.stats),
            inventory=dict(ast.meta.inventory),
            macros=dict(BUILTIN_MACROS),
        )
        for scene in ast.scenes.values():
            for node in walk(scene.content):
                if isinstance(node, MacroNode):
                    self.global_state.macros[node.name] = MacroDef.from_node(node)
        self.state = self._initial_state()

        if self.config.announce:
            log.info("Coslang engine ready: %r (%d scenes)", ast.meta.title, len(ast.scenes))
        else:
            log.debug("Coslang engine created for %r", ast.meta.title)

    def _initial_state(self) -> RuntimeState:
        g = self.global_state
        return RuntimeState(
            vars=dict(g.vars),
            stats=dict(g.stats),
            inventory=dict(g.inventory),
            events=dict(g.events),
            achievements=dict(g.achievements),
            macros=dict(g.macros),
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def start(self, scene_id: str | None = None, reset: bool = False) -> None:
        """Begin play at *scene_id*, the configured start scene, or the first scene."""
        if reset:
            self.reset()
        scene_id = scene_id or self.config.start_scene or self.ast.first_scene_id
        if scene_id is None:
            self._fail(SceneNotFoundError, "Story has no scenes")
        self.load_scene(scene_id)

    def load_scene(self, scene_id: str) -> None:
        scene = self.ast.scenes.get(scene_id)
        if scene is None:
            self._fail(SceneNotFoundError, f"Scene not found: {scene_id}")

        state = self.state
        log.info("Loading scene %s", scene_id)
        state.error = None
        state.current_image = state.current_audio = state.current_video = None

        for defaults, target in (
            (scene.vars, state.vars),
            (scene.stats, state.stats),
            (scene.inventory, state.inventory),
        ):
            for key, raw in (defaults or {}).items():
                if key not in target:
                    target[key] = coerce_literal(raw)

        for key, value in self.global_state.events.items():
            state.events.setdefault(key, value)
        for key, value in self.global_state.achievements.items():
            state.achievements.setdefault(key, value)
        state.macros = dict(self.global_state.macros)

        # The AST's node tuples are immutable; a list copy is a private play copy.
        state.scene = LoadedScene(scene_id, list(scene.content), list(scene.content))
        state.scene_id = scene_id
        state.position = 0
        self.auto_advance()

    def auto_advance(self) -> None:
        """Run set statements and expand conditionals (once per scene load),
        then move the cursor to the first choice or the end of the scene."""
        scene = self._require_scene()

        if not scene.set_nodes_executed:
            scene.set_nodes_executed = True
            top_level = [node for node in scene.templates if isinstance(node, SetNode)]
            for node in top_level:
                self.handle_set(node)
            if top_level:
                self._reinterpolate()

        if not scene.conditionals_expanded:
            scene.conditionals_expanded = True
            scene.templates = self.expand(scene.templates)
            self._reinterpolate()

        self._scan()

    def expand(self, nodes: Sequence[Node]) -> list[Node]:
        """Return *nodes* with every reachable ``if`` replaced by its chosen branch.

        ``set`` statements exposed by a branch run as soon as it is spliced in,
        so later conditions see their effect.  *nodes* itself is not modified.
        """
        expanded = list(nodes)
        index = 0
        while index < len(expanded):
            node = expanded[index]
            if not isinstance(node, IfNode):
                index += 1
                continue
            branch = self.handle_if(node)
            expanded[index:index + 1] = branch
            for exposed in branch:
                if isinstance(exposed, SetNode):
                    self.handle_set(exposed)
        return expanded

    def advance(self) -> None:
        """Move the cursor one node forward without executing anything."""
        if self.state.scene is None:
            self.state.error = "No scene loaded."
            log.warning("advance() called with no scene loaded")
            return
        self.state.position = min(self.state.position + 1, len(self.state.scene.content))

    def choose(self, index: int) -> None:
        """Take choice *index* of the current scene and load its target."""
        scene = self.state.scene
        if scene is None:
            self._fail(NoSceneLoadedError, "No scene loaded.")
        options = self.choices()
        if not options:
            self._fail(NoChoicesAvailableError, "No choices available in this scene.")
        if not 0 <= index < len(options):
            self._fail(InvalidChoiceIndexError, f"Invalid choice index: {index}")
        choice = options[index]
        if choice.target not in self.ast.scenes:
            self._fail(SceneNotFoundError, f"Scene not found: {choice.target}")

        self.handle_choice(choice)
        self.state.log.append(
            {"type": "choice", "text": choice.text, "target": choice.target, "tags": list(choice.tags)}
        )
        self.load_scene(choice.target)

    def reset(self) -> None:
        """Discard the playthrough and reseed state from the story's globals."""
        self.state = self._initial_state()

    def choices(self) -> list[ChoiceNode]:
        if self.state.scene is None:
            return []
        return [node for node in self.state.scene.content if isinstance(node, ChoiceNode)]

    def current_node(self) -> Node | None:
        scene = self.state.scene
        if scene is None or self.state.position >= len(scene.content):
            return None
        return scene.content[self.state.position]

    def get_meta(self) -> StoryMeta:
        return self.ast.meta

    def get_error(self) -> str | None:
        return self.state.error

    def get_state(self) -> dict:
        """JSON-ready snapshot of the playthrough (see EngineState.v1.json)."""
        state = self.state
        scene = state.scene
        return {
            "scene_id": state.scene_id,
            "position": state.position,
            "vars": dict(state.vars),
            "stats": dict(state.stats),
            "inventory": dict(state.inventory),
            "events": dict(state.events),
            "achievements": dict(state.achievements),
            "log": copy.deepcopy(state.log),
            "error": state.error,
            "current_image": state.current_image.to_dict() if state.current_image else None,
            "current_audio": state.current_audio.to_dict() if state.current_audio else None,
            "current_video": state.current_video.to_dict() if state.current_video else None,
            "content": [node_to_dict(node) for node in scene.content] if scene else [],
            "meta": {
                "title": self.ast.meta.title,
                "author": self.ast.meta.author,
                "version": self.ast.meta.version,
            },
        }

    # ------------------------------------------------------------------
    # Statement handlers
    # ------------------------------------------------------------------

    def handle_text(self, node: TextNode, scope: Mapping[str, Value] | None = None) -> str:
        self.handle_tags(node)
        return self.interpolate(node.value, scope)

    def handle_choice(self, node: ChoiceNode) -> ChoiceNode:
        self.handle_tags(node)
        return node

    def handle_if(self, node: IfNode) -> list[Node]:
        """Evaluate the condition and return the nodes of the branch taken."""
        try:
            result = evaluate(node.condition, self.context())
        except ExpressionError as exc:
            self._fail(ConditionError, f"If/else condition error: {exc}", exc)
        log.debug("Condition %r -> %r", node.condition, result)
        return list(node.then if result else node.otherwise)

    def handle_set(self, node: SetNode, scope: Mapping[str, Value] | None = None) -> None:
        """Assign the value of ``node.expr`` (or of a macro call) to ``node.var``."""
        target = self._write_target(node.var)
        call = _MACRO_CALL_RE.match(node.expr)
        try:
            if call and call.group(1) not in _OPERATOR_WORDS:
                value = self._call_macro(call.group(1), call.group(2), scope)
            else:
                value = evaluate(node.expr, self.context(scope))
        except ExpressionError as exc:
            self._fail(SetStatementError, f"Set statement error: invalid set expression {node.expr!r}: {exc}", exc)

        log.debug("set %s = %r", node.var, value)
        target[node.var] = value
        self._clamp(node.var, target)
        self.handle_tags(node)

    def handle_macro(
        self,
        node: MacroNode | str,
        args: Sequence[object] = (),
        target: str | None = None,
    ) -> Value | None:
        """Invoke a macro directly with explicit arguments.

        ``set`` and ``text`` lines of the body run with the parameters in
        scope; a ``return`` line ends the call and yields its value, which is
        also assigned to *target* when one is given.

        A returned value is never stored implicitly: ``heal(3)`` with body
        ``return hp + amount`` changes ``hp`` only when called with
        ``target="hp"``.  Bodies made of ``set`` lines change state directly.
        """
        name = node if isinstance(node, str) else node.name
        macro = self._resolve_macro(name)
        args = list(args)
        if len(args) != len(macro.params):
            self._fail(
                MacroArgumentMismatchError,
                f"Macro argument mismatch for {name}: expected {len(macro.params)}, got {len(args)}",
            )
        context = self.context()
        bound = {param: self._argument(arg, context) for param, arg in zip(macro.params, args)}

        with self._frame(name):
            if macro.native is not None:
                result = self._call_native(macro, list(bound.values()))
            else:
                result = self._run_macro_body(macro, bound)

        self.state.log.append({"type": "macro", "name": name, "args": args})
        if target is not None:
            if result is None:
                self._fail(MacroNoReturnValueError, f"Macro {name} did not return a value")
            table = self._write_target(target)
            table[target] = result
            self._clamp(target, table)
        return result

    def handle_tags(self, node: Node) -> None:
        """Apply the side effects of a node's ``[...]`` tags."""
        state = self.state
        for tag in getattr(node, "tags", ()):
            if tag.startswith("LOG:"):
                state.log.append({"type": "log", "message": tag[4:].strip()})
            elif tag.startswith("ACHIEVEMENT:"):
                name = tag[12:].strip()
                state.achievements[name] = True
                state.log.append({"type": "achievement", "name": name})
            elif tag.startswith("EVENT:"):
                name = tag[6:].strip()
                state.events[name] = True
                state.log.append({"type": "event", "name": name})
            elif tag.startswith("inventory ++"):
                item = tag[12:].strip()
                state.inventory[item] = self._item_count(item) + 1
                state.log.append({"type": "inventory", "op": "add", "item": item})
            elif tag.startswith("inventory --"):
                item = tag[12:].strip()
                state.inventory[item] = max(0, self._item_count(item) - 1)
                state.log.append({"type": "inventory", "op": "remove", "item": item})
            else:
                state.log.append({"type": "tag", "value": tag})

    def interpolate(self, text: str, scope: Mapping[str, Value] | None = None) -> str:
        """Replace ``{name}`` with its value; unknown names stay as written."""
        context = self.context(scope)

        def substitute(match: re.Match[str]) -> str:
            name = match.group(1)
            if name in context:
                return format_value(context[name])
            return match.group(0)

        return _INTERPOLATION_RE.sub(substitute, text)

    def context(self, scope: Mapping[str, Value] | None = None) -> ChainMap:
        """Lookup view over vars, stats and inventory (plus macro parameters)."""
        maps = [self.state.vars, self.state.stats, self.state.inventory]
        if scope:
            maps.insert(0, scope)
        return ChainMap(*maps)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _scan(self) -> None:
        state = self.state
        scene = state.scene
        while state.position < len(scene.content):
            template = scene.templates[state.position]
            if isinstance(template, ChoiceNode):
                break
            if isinstance(template, TextNode):
                scene.content[state.position] = replace(template, value=self.handle_text(template))
            elif isinstance(template, ASSET_NODES):
                self._show_asset(template)
            elif isinstance(template, ErrorNode):
                log.debug("Skipping malformed statement: %s", template.message)
            state.position += 1

    def _show_asset(self, node) -> None:
        asset = self.assets.get(node.asset_type, node.name)
        setattr(self.state, f"current_{node.asset_type}", asset)
        if asset is None:
            log.error("%s asset not found: %s", node.asset_type.capitalize(), node.name)
            self.state.log.append({"type": "asset_error", "asset_type": node.asset_type, "name": node.name})
        else:
            log.info("Showing %s asset %s -> %s", node.asset_type, node.name, asset.path)

    def _reinterpolate(self) -> None:
        scene = self.state.scene
        scene.content = [
            replace(node, value=self.interpolate(node.value)) if isinstance(node, TextNode) else node
            for node in scene.templates
        ]

    def _require_scene(self) -> LoadedScene:
        if self.state.scene is None:
            self._fail(NoSceneLoadedError, "No scene loaded.")
        return self.state.scene

    def _write_target(self, name: str) -> dict[str, Value]:
        for table in (self.state.vars, self.state.stats, self.state.inventory):
            if name in table:
                return table
        return self.state.vars

    def _clamp(self, name: str, table: dict[str, Value]) -> None:
        bounds = CLAMP_RULES.get(name)
        if bounds is None:
            return
        low, high = bounds
        value = table[name]
        if isinstance(value, bool):
            number = None
        elif isinstance(value, (int, float)):
            number = value
        else:
            number = parse_number(str(value))
        if low is not None and (number is None or number < low):
            table[name] = low
            log.debug("Auto-clamp: %s clamped to %s", name, low)
        elif high is not None and number is not None and number > high:
            table[name] = high
            log.debug("Auto-clamp: %s clamped to %s", name, high)

    def _item_count(self, item: str) -> int:
        value = self.state.inventory.get(item, 0)
        if isinstance(value, str):
            value = parse_number(value) or 0
        return int(value)

    def _resolve_macro(self, name: str) -> MacroDef:
        macro = self.state.macros.get(name) or self.global_state.macros.get(name)
        if macro is None:
            self._fail(MacroNotFoundError, f"Macro not found: {name}")
        return macro

    def _call_macro(self, name: str, args_text: str, scope: Mapping[str, Value] | None) -> Value:
        """Evaluate ``name(args)`` inside a ``set`` expression to its return value."""
        macro = self._resolve_macro(name)
        args = [arg.strip() for arg in split_commas(args_text)] if args_text.strip() else []
        if len(args) != len(macro.params):
            self._fail(
                MacroArgumentMismatchError,
                f"Macro argument mismatch for {name}: expected {len(macro.params)}, got {len(args)}",
            )
        context = self.context(scope)
        values = [evaluate(arg, context) for arg in args]

        with self._frame(name):
            if macro.native is not None:
                return self._call_native(macro, values)
            expr = _return_expression(macro.body)
            if expr is None:
                self._fail(MacroNoReturnValueError, f"Macro {name} did not return a value")
            return evaluate(expr, self.context(dict(zip(macro.params, values))))

    def _call_native(self, macro: MacroDef, values: list[Value]) -> Value:
        """Apply a built-in numeric macro; numeric strings count as numbers."""
        numbers: list[int | float] = []
        for value in values:
            if isinstance(value, bool):
                number = None
            elif isinstance(value, (int, float)):
                number = value
            else:
                number = parse_number(str(value))
            if number is None:
                self._fail(SetStatementError, f"Macro {macro.name} needs numbers, got {value!r}")
            numbers.append(number)
        return macro.native(*numbers)

    def _run_macro_body(self, macro: MacroDef, bound: dict[str, Value]) -> Value | None:
        for raw in macro.body.splitlines():
            line = raw.strip()
            if not line:
                continue
            if line == "return" or line.startswith("return "):
                expr = line[6:].strip()
                if not expr:
                    return None
                try:
                    return evaluate(expr, self.context(bound))
                except ExpressionError as exc:
                    self._fail(SetStatementError, f"Macro {macro.name} return error: {exc}", exc)
            if line.startswith("set "):
                node = parse_set(line)
                if isinstance(node, ErrorNode):
                    self._fail(SetStatementError, f"Set statement error: {node.message}")
                self.handle_set(node, bound)
            elif line.startswith("text:") or line.startswith('"'):
                text = self.handle_text(parse_text(line), bound)
                self.state.log.append({"type": "text", "value": text})
            else:
                log.debug("Macro %s: ignoring line %r", macro.name, line)
        return None

    def _argument(self, arg: object, context: Mapping[str, Value]) -> Value:
        if not isinstance(arg, str):
            return arg
        try:
            return evaluate(arg, context)
        except ExpressionError:
            # Explicit arguments may be bare words such as item names.
            return coerce_literal(arg)

    @contextmanager
    def _frame(self, name: str) -> Iterator[None]:
        if len(self.state.call_stack) >= self.config.max_call_depth:
            self._fail(CallStackOverflowError, "Macro call stack overflow")
        self.state.call_stack.append(name)
        try:
            yield
        finally:
            self.state.call_stack.pop()

    def _fail(self, error: type[EngineError], message: str, cause: Exception | None = None) -> NoReturn:
        self.state.error = message
        raise error(message) from cause


def _return_expression(body: str) -> str | None:
    for raw in body.splitlines():
        line = raw.strip()
        if line.startswith("return "):
            return line[7:].strip() or None
    return None
