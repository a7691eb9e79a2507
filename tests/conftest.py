from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from lessonlab.service import LessonService  # noqa: E402


@pytest.fixture
def service() -> Iterator[LessonService]:
    """In-memory service with the bundled lessons."""
    svc = LessonService(":memory:")
    try:
        yield svc
    finally:
        svc.close()


def lesson_document(**overrides: object) -> dict[str, object]:
    """Newton's-law lesson document used across tests."""
    config: dict[str, object] = {
        "objectives": ["Relate force, mass and acceleration."],
        "introduction": "Intro",
        "mainEquation": "F = m \\times a",
        "variables": [
            {"id": "m", "symbol": "m", "name": "Mass", "unit": "kg", "defaultValue": 10, "min": 1, "max": 100, "step": 1},
            {
                "id": "a",
                "symbol": "a",
                "name": "Acceleration",
                "unit": "m/s^2",
                "defaultValue": 5,
                "min": 0,
                "max": 50,
                "step": 0.5,
            },
        ],
        "calculationFormula": "m * a",
        "resultUnit": "N",
        "interactiveQuiz": {"question": "Q?", "options": ["A", "B", "C"], "correctIndex": 0},
        "graphConfig": {"xAxisVariableId": "a", "yAxisLabel": "Force", "chartType": "line", "lineColor": "#00d2ff"},
    }
    config_overrides = overrides.pop("universalConfig", None)
    if isinstance(config_overrides, dict):
        config.update(config_overrides)
    document: dict[str, object] = {
        "id": "newton",
        "title": "Newton",
        "type": "THEORY",
        "duration": "15 min",
        "templateType": "UNIVERSAL",
        "content": [],
        "universalConfig": config,
    }
    document.update(overrides)
    return document
