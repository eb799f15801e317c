"""CLI entry point for coslang."""

from __future__ import annotations

import logging
import os
import sys
import tempfile
from pathlib import Path

import click

from coslang.compiler import ParseError, parse_story_file
from coslang.config import ConfigError, load_config
from coslang.engine import Engine, EngineError
from coslang.projector import project, render_text
from coslang.validator import ValidationError, diagnose_story, has_errors, validate_state_dict, validate_story_dict
from coslang.writer import write_json

_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(_LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging threshold for messages written to stderr",
)
def main(log_level: str) -> None:
    """coslang — interactive fiction compiler and player."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        stream=sys.stderr,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _load_story(story_path: str):
    try:
        return parse_story_file(story_path)
    except ParseError as exc:
        click.echo(f"ERROR: {exc}", err=True)
        sys.exit(1)


@main.command("compile")
@click.option(
    "--story",
    "story_path",
    required=True,
    type=click.Path(exists=True),
    help="Path to .coslang story file",
)
@click.option(
    "--out",
    "out_path",
    required=True,
    type=click.Path(),
    help="Output path for the compiled Story JSON",
)
@click.option(
    "--strict",
    is_flag=True,
    default=False,
    help="Fail when diagnostics report an error",
)
def compile_story(story_path: str, out_path: str, strict: bool) -> None:
    """Compile a story file into a validated Story JSON document.

    Diagnostics are printed to stderr.  With --strict, error-level
    diagnostics (undefined scene references, malformed statements) fail the
    compile and nothing is written.
    """
    # ── 1. Parse story text → AST ────────────────────────────────────────────
    ast = _load_story(story_path)
    story = ast.to_dict()

    # ── 2. Validate against Story schema ─────────────────────────────────────
    try:
        validate_story_dict(story)
    except ValidationError as exc:
        click.echo(f"ERROR: compiled story violates schema: {exc}", err=True)
        sys.exit(1)

    # ── 3. Diagnostics ───────────────────────────────────────────────────────
    diagnostics = diagnose_story(ast)
    for diagnostic in diagnostics:
        click.echo(str(diagnostic), err=True)
    if strict and has_errors(diagnostics):
        click.echo("ERROR: story has error diagnostics (--strict)", err=True)
        sys.exit(1)

    # ── 4. Write to a temp file, then move to the final destination ──────────
    out = Path(out_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_path = tempfile.mkstemp(suffix=".json", dir=out.parent)
    os.close(tmp_fd)
    try:
        write_json(story, tmp_path)
        Path(tmp_path).replace(out)
    finally:
        # Clean up temp file if the replace above did not already remove it
        if Path(tmp_path).exists():
            os.unlink(tmp_path)

    sys.exit(0)


@main.command("check")
@click.option(
    "--story",
    "story_path",
    required=True,
    type=click.Path(exists=True),
    help="Path to .coslang story file",
)
def check(story_path: str) -> None:
    """Print story diagnostics; exit 1 if any is an error."""
    ast = _load_story(story_path)
    diagnostics = diagnose_story(ast)
    for diagnostic in diagnostics:
        click.echo(str(diagnostic))
        if diagnostic.suggestion:
            click.echo(f"    hint: {diagnostic.suggestion}")
    if not diagnostics:
        click.echo("OK: no problems found")
    sys.exit(1 if has_errors(diagnostics) else 0)


@main.command("play")
@click.option(
    "--story",
    "story_path",
    required=True,
    type=click.Path(exists=True),
    help="Path to .coslang story file",
)
@click.option("--scene", "scene_id", default=None, help="Scene to start in (default: configured or first scene)")
@click.option(
    "--choose",
    "picks",
    multiple=True,
    type=int,
    help="Choice index to take; repeat to script a playthrough",
)
@click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(exists=True),
    help="Path to an EngineConfig JSON file",
)
@click.option(
    "--state-out",
    "state_path",
    default=None,
    type=click.Path(),
    help="Write the final engine state snapshot to this path",
)
def play(story_path: str, scene_id: str | None, picks: tuple[int, ...], config_path: str | None, state_path: str | None) -> None:
    """Play a story non-interactively, printing each step."""
    ast = _load_story(story_path)

    config = None
    if config_path:
        try:
            config = load_config(config_path)
        except ConfigError as exc:
            click.echo(f"ERROR: {exc}", err=True)
            sys.exit(1)

    engine = Engine(ast, config)
    try:
        engine.start(scene_id)
        click.echo(render_text(project(engine.get_state())))
        for pick in picks:
            click.echo(f"> {pick}")
            engine.choose(pick)
            click.echo(render_text(project(engine.get_state())))
    except EngineError as exc:
        click.echo(f"ERROR: {exc}", err=True)
        sys.exit(2)

    if state_path:
        state = engine.get_state()
        try:
            validate_state_dict(state)
        except ValidationError as exc:
            click.echo(f"ERROR: {exc}", err=True)
            sys.exit(1)
        write_json(state, state_path)

    sys.exit(0)
