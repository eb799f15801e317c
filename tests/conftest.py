"""Shared pytest fixtures for coslang tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from coslang.compiler import parse_story
from coslang.engine import Engine

ROUND_TRIP_STORY = """\
scene intro {
  vars { hp = 10 }
  text: "Hello, world!"
  set hp = 10
  choice "Go" -> next
}
scene next {
  text: "You advanced."
}
"""

ADVENTURE_STORY = """\
title: "The Cave"
author: "A. Writer"
version: "1.0"

vars {
  hp = 10
  name = "Ash"
  brave = true
}

stats {
  enemyHealth = 5
  questProgress = 0
}

inventory {
  torch = 1
}

assets {
  image cave = "cave.png" { fit: "cover" }
  audio drip = "drip.mp3" { loop: true, volume: 0.5 }
}

// opening scene
scene start {
  show image cave
  play audio drip
  text: "Welcome, {name}. You have {hp} hp." [LOG: entered cave]
  choice "Fight" -> fight [EVENT: fought]
  choice "Flee" -> end
}

scene fight {
  set enemyHealth = enemyHealth - 8
  set questProgress = questProgress + 5
  text: "The enemy has {enemyHealth} health." [ACHIEVEMENT: First Blood]
  choice "Continue" -> end
}

scene end {
  text: "The end."
}
"""


@pytest.fixture()
def story_file(tmp_path: Path):
    """Factory fixture: write story text to a uniquely-named temp file, return the Path."""
    counter = {"n": 0}

    def _make(content: str = ADVENTURE_STORY) -> Path:
        counter["n"] += 1
        p = tmp_path / f"story_{counter['n']}.coslang"
        p.write_text(content, encoding="utf-8")
        return p

    return _make


@pytest.fixture()
def make_engine():
    """Factory fixture: parse story text and return an unstarted Engine."""

    def _make(source: str, **kwargs) -> Engine:
        return Engine(parse_story(source), **kwargs)

    return _make
