"""Tests for the coslang command line."""

from __future__ import annotations

import json
from pathlib import Path

import jsonschema
from click.testing import CliRunner

from coslang.cli import main

from conftest import ADVENTURE_STORY

# Paths to schemas: tests/ -> repo root -> src/coslang/schemas/
_SCHEMAS = Path(__file__).resolve().parents[1] / "src/coslang/schemas"
_STORY_SCHEMA_PATH = _SCHEMAS / "Story.v1.json"
_STATE_SCHEMA_PATH = _SCHEMAS / "EngineState.v1.json"

_BROKEN_REFERENCE_STORY = """\
title: "Broken"
author: "Someone"
scene start {
  text: "Where to?"
  choice "Into the void" -> void
}
"""


# ---------------------------------------------------------------------------
# Test 1 — compile writes a schema-valid Story document
# ---------------------------------------------------------------------------


def test_compile_valid_story(story_file, tmp_path):
    runner = CliRunner()
    out = tmp_path / "build" / "story.json"
    result = runner.invoke(main, ["compile", "--story", str(story_file()), "--out", str(out)])
    assert result.exit_code == 0, f"compile failed: {result.output}"
    assert out.exists(), "Output file was not created"

    data = json.loads(out.read_text(encoding="utf-8"))
    schema = json.loads(_STORY_SCHEMA_PATH.read_text(encoding="utf-8"))
    jsonschema.validate(data, schema)
    assert data["meta"]["title"] == "The Cave"
    assert [scene["id"] for scene in data["scenes"]] == ["start", "fight", "end"]


# ---------------------------------------------------------------------------
# Test 2 — compile output is byte-identical across runs
# ---------------------------------------------------------------------------


def test_compile_byte_identical_across_runs(story_file, tmp_path):
    runner = CliRunner()
    path = str(story_file())
    out_a = tmp_path / "a.json"
    out_b = tmp_path / "b.json"
    assert runner.invoke(main, ["compile", "--story", path, "--out", str(out_a)]).exit_code == 0
    assert runner.invoke(main, ["compile", "--story", path, "--out", str(out_b)]).exit_code == 0

    raw = out_a.read_bytes()
    assert raw == out_b.read_bytes()
    assert raw.endswith(b"}\n")
    assert not raw.endswith(b"\n\n")


# ---------------------------------------------------------------------------
# Test 3 — parse failures exit 1 and write nothing
# ---------------------------------------------------------------------------


def test_compile_malformed_scene(story_file, tmp_path):
    runner = CliRunner()
    out = tmp_path / "story.json"
    result = runner.invoke(
        main, ["compile", "--story", str(story_file("scene {\n}\n")), "--out", str(out)]
    )
    assert result.exit_code == 1
    assert "ERROR:" in result.output
    assert "malformed scene declaration" in result.output
    assert not out.exists()


# ---------------------------------------------------------------------------
# Test 4 — diagnostics: warnings by default, failure with --strict
# ---------------------------------------------------------------------------


def test_compile_reports_error_diagnostics_without_failing(story_file, tmp_path):
    runner = CliRunner()
    out = tmp_path / "story.json"
    result = runner.invoke(
        main, ["compile", "--story", str(story_file(_BROKEN_REFERENCE_STORY)), "--out", str(out)]
    )
    assert result.exit_code == 0
    assert "UNDEFINED_SCENE_REFERENCE" in result.output
    assert out.exists()


def test_compile_strict_fails_on_error_diagnostics(story_file, tmp_path):
    runner = CliRunner()
    out = tmp_path / "story.json"
    result = runner.invoke(
        main,
        ["compile", "--story", str(story_file(_BROKEN_REFERENCE_STORY)), "--out", str(out), "--strict"],
    )
    assert result.exit_code == 1
    assert "--strict" in result.output
    assert not out.exists()


# ---------------------------------------------------------------------------
# Test 5 — check
# ---------------------------------------------------------------------------


def test_check_clean_story(story_file):
    result = CliRunner().invoke(main, ["check", "--story", str(story_file())])
    assert result.exit_code == 0
    assert "OK: no problems found" in result.output


def test_check_broken_story(story_file):
    result = CliRunner().invoke(main, ["check", "--story", str(story_file(_BROKEN_REFERENCE_STORY))])
    assert result.exit_code == 1
    assert "ERROR UNDEFINED_SCENE_REFERENCE" in result.output
    assert "hint: Create a scene with id: void" in result.output


def test_check_missing_story_file(tmp_path):
    result = CliRunner().invoke(main, ["check", "--story", str(tmp_path / "nope.coslang")])
    assert result.exit_code == 2  # click usage error: path does not exist


# ---------------------------------------------------------------------------
# Test 6 — play
# ---------------------------------------------------------------------------


def test_play_scripted_choices(story_file, tmp_path):
    runner = CliRunner()
    state_out = tmp_path / "state.json"
    result = runner.invoke(
        main,
        ["play", "--story", str(story_file()), "--choose", "0", "--choose", "0", "--state-out", str(state_out)],
    )
    assert result.exit_code == 0, f"play failed: {result.output}"
    assert "Welcome, Ash. You have 10 hp." in result.output
    assert "The enemy has 0 health." in result.output
    assert "The end." in result.output
    assert "(end)" in result.output

    state = json.loads(state_out.read_text(encoding="utf-8"))
    schema = json.loads(_STATE_SCHEMA_PATH.read_text(encoding="utf-8"))
    jsonschema.validate(state, schema)
    assert state["scene_id"] == "end"
    assert state["achievements"] == {"First Blood": True}


def test_play_start_scene_option(story_file):
    result = CliRunner().invoke(main, ["play", "--story", str(story_file()), "--scene", "end"])
    assert result.exit_code == 0
    assert result.output.startswith("== end ==")


def test_play_invalid_choice_is_runtime_error(story_file):
    result = CliRunner().invoke(main, ["play", "--story", str(story_file()), "--choose", "7"])
    assert result.exit_code == 2
    assert "ERROR: Invalid choice index: 7" in result.output


def test_play_unknown_scene_is_runtime_error(story_file):
    result = CliRunner().invoke(main, ["play", "--story", str(story_file()), "--scene", "nowhere"])
    assert result.exit_code == 2
    assert "ERROR: Scene not found: nowhere" in result.output


def test_play_builtin_on_text_is_runtime_error(story_file):
    path = story_file('vars { name = "Ash" }\nscene s {\n  set x = min(name, 3)\n}\n')
    result = CliRunner().invoke(main, ["play", "--story", str(path)])
    assert result.exit_code == 2
    assert "ERROR: Macro min needs numbers" in result.output


def test_play_with_config(story_file, tmp_path):
    config = tmp_path / "engine.json"
    config.write_text(json.dumps({"start_scene": "fight"}), encoding="utf-8")
    result = CliRunner().invoke(main, ["play", "--story", str(story_file()), "--config", str(config)])
    assert result.exit_code == 0
    assert result.output.startswith("== fight ==")


def test_play_with_invalid_config(story_file, tmp_path):
    config = tmp_path / "engine.json"
    config.write_text(json.dumps({"max_call_depth": -1}), encoding="utf-8")
    result = CliRunner().invoke(main, ["play", "--story", str(story_file()), "--config", str(config)])
    assert result.exit_code == 1
    assert "ERROR: Engine config violates schema" in result.output


def test_log_level_option(story_file):
    result = CliRunner().invoke(main, ["--log-level", "debug", "check", "--story", str(story_file())])
    assert result.exit_code == 0
