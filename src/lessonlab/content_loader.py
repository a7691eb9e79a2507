"""Load, serialize and validate lesson documents."""

from __future__ import annotations

import json
import math
import re
from importlib import resources
from pathlib import Path
from typing import Any

from .formula import FormulaError, compile_formula
from .models import (
    CHART_TYPES,
    CONTENT_BLOCK_TYPES,
    DEFAULT_LINE_COLOR,
    LESSON_TYPES,
    TEMPLATE_TYPES,
    ContentBlock,
    GraphConfig,
    InteractiveQuiz,
    Lesson,
    SchemaError,
    UniversalLessonConfig,
    Variable,
)

CONTENT_PACKAGE = "lessonlab.content.lessons"
IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Storage column names accepted alongside the camelCase document keys.
_SNAKE_ALIASES = {
    "universalConfig": "universal_config",
    "isPinned": "is_pinned",
    "templateType": "template_type",
    "bookReference": "book_reference",
}


def _field(raw: dict[str, Any], key: str, default: Any = None) -> Any:
    if key in raw:
        return raw[key]
    alias = _SNAKE_ALIASES.get(key)
    if alias is not None and alias in raw:
        return raw[alias]
    return default


def _number(raw: dict[str, Any], key: str, owner: str) -> float:
    value = raw.get(key)
    if isinstance(value, bool):
        raise ValueError(f"{owner}: '{key}' must be a number.")
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise ValueError(f"{owner}: '{key}' must be a number, got {value!r}.") from None


def _list(raw: dict[str, Any], key: str, owner: str) -> list[Any]:
    value = raw.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{owner}: '{key}' must be a list, got {type(value).__name__}.")
    return value


def _object(value: Any, owner: str) -> dict[str, Any] | None:
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValueError(f"{owner} must be a JSON object, got {type(value).__name__}.")
    return value


def _variable_from_dict(raw: dict[str, Any]) -> Variable:
    """Build a variable from raw JSON content."""
    if not isinstance(raw, dict):
        raise ValueError(f"Each variable must be a JSON object, got {type(raw).__name__}.")
    variable_id = str(raw.get("id", "")).strip()
    owner = f"Variable '{variable_id or '<unknown>'}'"
    return Variable(
        id=variable_id,
        symbol=str(raw.get("symbol", variable_id)),
        name=str(raw.get("name", variable_id)),
        unit=str(raw.get("unit", "")),
        default_value=_number(raw, "defaultValue", owner),
        min=_number(raw, "min", owner),
        max=_number(raw, "max", owner),
        step=_number(raw, "step", owner),
    )


def _quiz_from_dict(raw: dict[str, Any]) -> InteractiveQuiz:
    """Build a quiz from raw JSON content."""
    options = _list(raw, "options", "Quiz")
    correct = raw.get("correctIndex", 0)
    if isinstance(correct, bool) or not isinstance(correct, (int, str)):
        raise ValueError(f"Quiz 'correctIndex' must be an integer, got {correct!r}.")
    try:
        correct_index = int(correct)
    except ValueError:
        raise ValueError(f"Quiz 'correctIndex' must be an integer, got {correct!r}.") from None
    return InteractiveQuiz(
        question=str(raw.get("question", "")),
        options=tuple(str(option) for option in options),
        correct_index=correct_index,
    )


def _graph_from_dict(raw: dict[str, Any]) -> GraphConfig:
    """Build a graph config from raw JSON content."""
    return GraphConfig(
        x_axis_variable_id=str(raw.get("xAxisVariableId") or ""),
        y_axis_label=str(raw.get("yAxisLabel", "")),
        chart_type=str(raw.get("chartType") or "line"),
        line_color=str(raw.get("lineColor") or DEFAULT_LINE_COLOR),
    )


def config_from_dict(raw: dict[str, Any]) -> UniversalLessonConfig:
    """Build a universal lesson config from raw JSON content."""
    quiz_raw = _object(raw.get("interactiveQuiz"), "'interactiveQuiz'")
    graph_raw = _object(raw.get("graphConfig"), "'graphConfig'")
    return UniversalLessonConfig(
        objectives=tuple(str(item) for item in _list(raw, "objectives", "Lesson config")),
        introduction=str(raw.get("introduction", "")),
        main_equation=str(raw.get("mainEquation", "")),
        variables=tuple(_variable_from_dict(item) for item in _list(raw, "variables", "Lesson config")),
        calculation_formula=str(raw.get("calculationFormula", "")),
        result_unit=str(raw.get("resultUnit", "")),
        interactive_quiz=_quiz_from_dict(quiz_raw) if quiz_raw is not None else None,
        graph_config=_graph_from_dict(graph_raw) if graph_raw is not None else None,
    )


def lesson_from_dict(raw: dict[str, Any]) -> Lesson:
    """Build a lesson from a JSON document."""
    if not isinstance(raw, dict):
        raise ValueError("Lesson document must be a JSON object.")
    config_raw = _object(_field(raw, "universalConfig"), "'universalConfig'")
    config = config_from_dict(config_raw) if config_raw is not None else None
    blocks = []
    for item in _list(raw, "content", "Lesson"):
        if not isinstance(item, dict):
            raise ValueError(f"Each content block must be a JSON object, got {type(item).__name__}.")
        caption = item.get("caption")
        blocks.append(
            ContentBlock(
                type=str(item.get("type", "text")),
                content=str(item.get("content", "")),
                caption=str(caption) if caption is not None else None,
            )
        )
    default_template = "UNIVERSAL" if config is not None else "STANDARD"
    book_reference = _field(raw, "bookReference")
    return Lesson(
        id=str(raw.get("id", "")),
        title=str(raw.get("title", "")),
        type=str(raw.get("type") or "THEORY"),
        duration=str(raw.get("duration", "")),
        content=tuple(blocks),
        template_type=str(_field(raw, "templateType") or default_template),
        is_pinned=bool(_field(raw, "isPinned", False)),
        book_reference=str(book_reference) if book_reference is not None else None,
        universal_config=config,
    )


def config_to_dict(config: UniversalLessonConfig) -> dict[str, Any]:
    """Serialize a universal lesson config to its JSON document form."""
    payload: dict[str, Any] = {
        "objectives": list(config.objectives),
        "introduction": config.introduction,
        "mainEquation": config.main_equation,
        "variables": [
            {
                "id": item.id,
                "symbol": item.symbol,
                "name": item.name,
                "unit": item.unit,
                "defaultValue": item.default_value,
                "min": item.min,
                "max": item.max,
                "step": item.step,
            }
            for item in config.variables
        ],
        "calculationFormula": config.calculation_formula,
        "resultUnit": config.result_unit,
    }
    if config.interactive_quiz is not None:
        payload["interactiveQuiz"] = {
            "question": config.interactive_quiz.question,
            "options": list(config.interactive_quiz.options),
            "correctIndex": config.interactive_quiz.correct_index,
        }
    if config.graph_config is not None:
        payload["graphConfig"] = {
            "xAxisVariableId": config.graph_config.x_axis_variable_id,
            "yAxisLabel": config.graph_config.y_axis_label,
            "chartType": config.graph_config.chart_type,
            "lineColor": config.graph_config.line_color,
        }
    return payload


def lesson_to_dict(lesson: Lesson) -> dict[str, Any]:
    """Serialize a lesson to its JSON document form."""
    content: list[dict[str, Any]] = []
    for block in lesson.content:
        item: dict[str, Any] = {"type": block.type, "content": block.content}
        if block.caption is not None:
            item["caption"] = block.caption
        content.append(item)
    payload: dict[str, Any] = {
        "id": lesson.id,
        "title": lesson.title,
        "type": lesson.type,
        "duration": lesson.duration,
        "content": content,
        "templateType": lesson.template_type,
        "isPinned": lesson.is_pinned,
    }
    if lesson.book_reference is not None:
        payload["bookReference"] = lesson.book_reference
    if lesson.universal_config is not None:
        payload["universalConfig"] = config_to_dict(lesson.universal_config)
    return payload


def config_problems(config: UniversalLessonConfig) -> list[str]:
    """Return every authoring problem found in a universal lesson config."""
    problems: list[str] = []
    declared: set[str] = set()
    for variable in config.variables:
        label = f"Variable '{variable.id}'"
        if not IDENTIFIER_RE.match(variable.id):
            problems.append(f"{label}: id must be a valid identifier.")
        if variable.id in declared:
            problems.append(f"Duplicate variable id: {variable.id}")
        declared.add(variable.id)
        numbers = (variable.default_value, variable.min, variable.max, variable.step)
        if not all(math.isfinite(value) for value in numbers):
            problems.append(f"{label}: values must be finite numbers.")
            continue
        if variable.min > variable.max:
            problems.append(f"{label}: min ({variable.min:g}) is greater than max ({variable.max:g}).")
        elif not variable.min <= variable.default_value <= variable.max:
            problems.append(
                f"{label}: default value {variable.default_value:g} is outside "
                f"[{variable.min:g}, {variable.max:g}]."
            )
        if variable.step <= 0:
            problems.append(f"{label}: step must be greater than zero.")

    if config.calculation_formula.strip():
        try:
            formula = compile_formula(config.calculation_formula)
        except FormulaError as exc:
            problems.append(f"Calculation formula is invalid: {exc}")
        else:
            for name in sorted(formula.free_names() - declared):
                problems.append(f"Calculation formula references undeclared variable '{name}'.")

    graph = config.graph_config
    if graph is not None:
        if graph.x_axis_variable_id and graph.x_axis_variable_id not in declared:
            problems.append(f"Graph axis references undeclared variable '{graph.x_axis_variable_id}'.")
        if graph.chart_type not in CHART_TYPES:
            problems.append(f"Unknown chart type '{graph.chart_type}' (expected one of {', '.join(CHART_TYPES)}).")

    quiz = config.interactive_quiz
    if quiz is not None:
        if not quiz.options:
            problems.append("Quiz has no options.")
        elif not 0 <= quiz.correct_index < len(quiz.options):
            problems.append(f"Quiz correct index {quiz.correct_index} is out of range for {len(quiz.options)} options.")
    return problems


def validate_config(config: UniversalLessonConfig) -> None:
    """Raise SchemaError if the config breaks any authoring rule."""
    problems = config_problems(config)
    if problems:
        raise SchemaError(problems)


def lesson_problems(lesson: Lesson) -> list[str]:
    """Return every authoring problem found in a lesson."""
    problems: list[str] = []
    if not lesson.title.strip():
        problems.append("Lesson title is required.")
    if lesson.type not in LESSON_TYPES:
        problems.append(f"Unknown lesson type '{lesson.type}'.")
    if lesson.template_type not in TEMPLATE_TYPES:
        problems.append(f"Unknown template type '{lesson.template_type}'.")
    for index, block in enumerate(lesson.content, start=1):
        if block.type not in CONTENT_BLOCK_TYPES:
            problems.append(f"Content block {index} has unknown type '{block.type}'.")

    config = lesson.universal_config
    if lesson.template_type == "UNIVERSAL" and config is None:
        problems.append("Universal lesson has no configuration.")
    if config is not None:
        if not config.main_equation.strip():
            problems.append("Main equation is required.")
        if not config.calculation_formula.strip():
            problems.append("Calculation formula is required.")
        problems.extend(config_problems(config))
    return problems


def validate_lesson(lesson: Lesson) -> None:
    """Raise SchemaError if the lesson cannot be saved as-is."""
    problems = lesson_problems(lesson)
    if problems:
        raise SchemaError(problems)


def load_lesson_file(path: Path) -> Lesson:
    """Read one lesson JSON file without validating it."""
    raw = json.loads(path.read_text(encoding="utf-8-sig"))
    return lesson_from_dict(raw)


def _add_validated(lessons: dict[str, Lesson], lesson: Lesson, source: str) -> None:
    if not lesson.id:
        raise ValueError(f"Lesson in {source} has no id.")
    if lesson.id in lessons:
        raise ValueError(f"Duplicate lesson id: {lesson.id}")
    problems = lesson_problems(lesson)
    if problems:
        raise SchemaError([f"{lesson.id}: {problem}" for problem in problems])
    lessons[lesson.id] = lesson


def load_lessons() -> dict[str, Lesson]:
    """Load bundled sample lessons."""
    lessons: dict[str, Lesson] = {}
    for entry in sorted(resources.files(CONTENT_PACKAGE).iterdir(), key=lambda item: item.name):
        if entry.name.endswith(".json"):
            lesson = lesson_from_dict(json.loads(entry.read_text(encoding="utf-8-sig")))
            _add_validated(lessons, lesson, entry.name)
    return lessons


def load_lessons_from_dir(path: Path) -> dict[str, Lesson]:
    """Load lessons from a directory for tests and tools."""
    lessons: dict[str, Lesson] = {}
    for file_path in sorted(path.glob("*.json")):
        _add_validated(lessons, load_lesson_file(file_path), file_path.name)
    return lessons
