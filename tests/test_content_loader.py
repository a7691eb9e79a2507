import json
from pathlib import Path

import pytest
from conftest import lesson_document

from lessonlab.content_loader import (
    lesson_from_dict,
    lesson_to_dict,
    load_lesson_file,
    load_lessons,
    load_lessons_from_dir,
    validate_config,
    validate_lesson,
)
from lessonlab.models import SchemaError


def test_load_lessons_contains_bundled_samples() -> None:
    lessons = load_lessons()
    assert sorted(lessons) == ["kinetic-energy", "measurement-units", "newton-second-law", "ohms-law"]

    newton = lessons["newton-second-law"]
    assert newton.is_pinned is True
    assert newton.book_reference == "Physics grade 10, unit 2"
    assert newton.universal_config is not None
    assert newton.universal_config.calculation_formula == "m * a"
    assert [variable.id for variable in newton.universal_config.variables] == ["m", "a"]
    assert newton.universal_config.variables[1].step == 0.5

    ohm = lessons["ohms-law"]
    assert ohm.universal_config is not None
    assert ohm.universal_config.interactive_quiz is None
    assert ohm.universal_config.graph_config is not None
    assert ohm.universal_config.graph_config.line_color == "#00d2ff"

    units = lessons["measurement-units"]
    assert units.template_type == "STANDARD"
    assert units.universal_config is None
    assert units.content[0].caption == "SI base units"


def test_load_lessons_from_dir(tmp_path: Path) -> None:
    root = tmp_path / "lessons"
    root.mkdir()
    (root / "newton.json").write_text(json.dumps(lesson_document()), encoding="utf-8")

    lessons = load_lessons_from_dir(root)
    assert list(lessons) == ["newton"]
    config = lessons["newton"].universal_config
    assert config is not None
    assert config.variable("m") is not None
    assert config.variable("missing") is None
    assert config.interactive_quiz is not None
    assert config.interactive_quiz.options == ("A", "B", "C")


def test_load_lessons_from_dir_rejects_duplicate_ids(tmp_path: Path) -> None:
    root = tmp_path / "dupes"
    root.mkdir()
    (root / "a.json").write_text(json.dumps(lesson_document()), encoding="utf-8")
    (root / "b.json").write_text(json.dumps(lesson_document(title="Other")), encoding="utf-8")

    with pytest.raises(ValueError, match="Duplicate lesson id: newton"):
        load_lessons_from_dir(root)


def test_load_lessons_from_dir_reports_invalid_lessons_with_id(tmp_path: Path) -> None:
    root = tmp_path / "invalid"
    root.mkdir()
    document = lesson_document(universalConfig={"calculationFormula": "m * g"})
    (root / "newton.json").write_text(json.dumps(document), encoding="utf-8")

    with pytest.raises(SchemaError) as exc_info:
        load_lessons_from_dir(root)
    assert exc_info.value.problems == ["newton: Calculation formula references undeclared variable 'g'."]


def test_load_lesson_file_accepts_utf8_bom(tmp_path: Path) -> None:
    path = tmp_path / "bom.json"
    path.write_text("\ufeff" + json.dumps(lesson_document(title="Ley de Newton")), encoding="utf-8")
    assert load_lesson_file(path).title == "Ley de Newton"


def test_lesson_document_round_trip() -> None:
    document = lesson_document(
        isPinned=True,
        bookReference="Chapter 4",
        content=[{"type": "text", "content": "Body", "caption": "Heading"}, {"type": "image", "content": "f.png"}],
    )
    lesson = lesson_from_dict(document)
    again = lesson_from_dict(lesson_to_dict(lesson))
    assert again == lesson
    assert lesson_to_dict(lesson)["universalConfig"]["graphConfig"]["xAxisVariableId"] == "a"
    assert "caption" not in lesson_to_dict(lesson)["content"][1]


def test_lesson_from_dict_accepts_storage_column_names() -> None:
    document = lesson_document()
    config = document.pop("universalConfig")
    document.pop("templateType")
    document["universal_config"] = config
    document["is_pinned"] = 1
    document["book_reference"] = "Unit 3"

    lesson = lesson_from_dict(document)
    assert lesson.universal_config is not None
    assert lesson.template_type == "UNIVERSAL"
    assert lesson.is_pinned is True
    assert lesson.book_reference == "Unit 3"


def test_lesson_from_dict_defaults() -> None:
    lesson = lesson_from_dict({"id": "bare", "title": "Bare"})
    assert lesson.type == "THEORY"
    assert lesson.template_type == "STANDARD"
    assert lesson.content == ()
    assert lesson.is_pinned is False
    assert lesson.universal_config is None


def test_validate_lesson_accepts_sample_document() -> None:
    validate_lesson(lesson_from_dict(lesson_document()))


def test_validate_config_collects_every_problem() -> None:
    document = lesson_document(
        universalConfig={
            "variables": [
                {"id": "m", "defaultValue": 10, "min": 1, "max": 100, "step": 0},
                {"id": "m", "defaultValue": 5, "min": 50, "max": 0, "step": 1},
                {"id": "2x", "defaultValue": 500, "min": 0, "max": 100, "step": 1},
            ],
            "calculationFormula": "m * a",
            "graphConfig": {"xAxisVariableId": "velocity", "chartType": "pie"},
            "interactiveQuiz": {"question": "Q?", "options": ["A", "B"], "correctIndex": 2},
        }
    )
    config = lesson_from_dict(document).universal_config
    assert config is not None

    with pytest.raises(SchemaError) as exc_info:
        validate_config(config)
    assert exc_info.value.problems == [
        "Variable 'm': step must be greater than zero.",
        "Duplicate variable id: m",
        "Variable 'm': min (50) is greater than max (0).",
        "Variable '2x': id must be a valid identifier.",
        "Variable '2x': default value 500 is outside [0, 100].",
        "Calculation formula references undeclared variable 'a'.",
        "Graph axis references undeclared variable 'velocity'.",
        "Unknown chart type 'pie' (expected one of line, bar, area).",
        "Quiz correct index 2 is out of range for 2 options.",
    ]


def test_validate_config_reports_unparsable_formula() -> None:
    config = lesson_from_dict(lesson_document(universalConfig={"calculationFormula": "m *"})).universal_config
    assert config is not None
    with pytest.raises(SchemaError, match="Calculation formula is invalid"):
        validate_config(config)


def test_validate_config_allows_constants_in_formula() -> None:
    config = lesson_from_dict(lesson_document(universalConfig={"calculationFormula": "m * a * Math.PI"})).universal_config
    assert config is not None
    validate_config(config)


def test_validate_lesson_requires_title_and_formula() -> None:
    document = lesson_document(title="  ", universalConfig={"mainEquation": "", "calculationFormula": ""})
    with pytest.raises(SchemaError) as exc_info:
        validate_lesson(lesson_from_dict(document))
    assert exc_info.value.problems == [
        "Lesson title is required.",
        "Main equation is required.",
        "Calculation formula is required.",
    ]
    assert "Lesson title is required." in str(exc_info.value)
