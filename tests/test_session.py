import pytest
from conftest import lesson_document

from lessonlab.content_loader import lesson_from_dict
from lessonlab.models import Lesson, Variable
from lessonlab.session import (
    CORRECT_MESSAGE,
    INCORRECT_MESSAGE,
    LessonSession,
    format_number,
    snap_to_slider,
)


def _lesson(**overrides: object) -> Lesson:
    return lesson_from_dict(lesson_document(**overrides))


def test_session_starts_ready_with_defaults() -> None:
    session = LessonSession(_lesson())
    assert session.state == "ready"
    assert session.values == {"m": 10, "a": 5}
    assert session.result == 50
    assert session.formatted_result == "50 N"
    assert session.formula_error is None
    assert session.quiz_open is False


def test_moving_a_slider_recomputes_result_and_chart() -> None:
    session = LessonSession(_lesson())
    assert session.chart is not None
    assert session.chart.labels == (0, 8, 17, 25, 33, 42, 50)
    assert session.chart.values == (0, 80, 170, 250, 330, 420, 500)

    applied = session.set_value("m", 20)
    assert applied == 20
    assert session.result == 100
    assert session.chart.labels == (0, 8, 17, 25, 33, 42, 50)
    assert session.chart.values == (0, 160, 340, 500, 660, 840, 1000)


def test_chart_carries_graph_settings() -> None:
    session = LessonSession(_lesson())
    assert session.chart is not None
    assert session.chart.x_variable_id == "a"
    assert session.chart.y_label == "Force"
    assert session.chart.chart_type == "line"
    assert session.chart.line_color == "#00d2ff"


def test_chart_is_hidden_without_graph_or_axis_variable() -> None:
    no_graph = LessonSession(_lesson(universalConfig={"graphConfig": None}))
    assert no_graph.chart is None

    missing_axis = LessonSession(_lesson(universalConfig={"graphConfig": {"xAxisVariableId": "velocity"}}))
    assert missing_axis.chart is None
    assert missing_axis.result == 50


def test_custom_sample_points() -> None:
    session = LessonSession(_lesson(), sample_points=3)
    assert session.chart is not None
    assert session.chart.labels == (0, 25, 50)
    assert session.chart.values == (0, 250, 500)


def test_set_value_snaps_and_clamps() -> None:
    session = LessonSession(_lesson())
    assert session.set_value("a", 7.3) == 7.5
    assert session.set_value("a", 999) == 50
    assert session.set_value("m", -4) == 1
    assert session.result == 50
    assert session.values == {"m": 1, "a": 50}


def test_set_value_rejects_unknown_variable_and_non_finite() -> None:
    session = LessonSession(_lesson())
    with pytest.raises(KeyError):
        session.set_value("g", 9.81)
    with pytest.raises(ValueError):
        session.set_value("m", float("nan"))
    assert session.values == {"m": 10, "a": 5}


def test_reset_restores_defaults() -> None:
    session = LessonSession(_lesson())
    session.set_value("m", 30)
    session.reset()
    assert session.values == {"m": 10, "a": 5}
    assert session.result == 50


def test_broken_formula_shows_fallback_and_error() -> None:
    session = LessonSession(_lesson(universalConfig={"calculationFormula": "m * g"}))
    assert session.result == 0.0
    assert session.formula_error == "Unknown name 'g'."
    assert session.chart is not None
    assert session.chart.values == (0, 0, 0, 0, 0, 0, 0)

    unparsable = LessonSession(_lesson(universalConfig={"calculationFormula": "m *"}))
    assert unparsable.result == 0.0
    assert unparsable.formula_error is not None


def test_division_by_zero_only_affects_that_point() -> None:
    document = lesson_document(
        universalConfig={
            "variables": [
                {"id": "V", "defaultValue": 12, "min": 0, "max": 240, "step": 1},
                {"id": "R", "defaultValue": 6, "min": 0, "max": 60, "step": 1},
            ],
            "calculationFormula": "V / R",
            "graphConfig": {"xAxisVariableId": "R"},
        }
    )
    session = LessonSession(lesson_from_dict(document))
    assert session.result == 2
    assert session.chart is not None
    assert session.chart.labels == (0, 10, 20, 30, 40, 50, 60)
    assert session.chart.values == (0.0, 1.2, 0.6, 0.4, 0.3, 0.24, 0.2)


def test_quiz_feedback() -> None:
    session = LessonSession(_lesson())
    assert session.toggle_quiz() is True

    wrong = session.answer_quiz(1)
    assert wrong.correct is False
    assert wrong.message == INCORRECT_MESSAGE
    assert session.state == "ready"

    right = session.answer_quiz(0)
    assert right.correct is True
    assert right.message == CORRECT_MESSAGE
    assert session.toggle_quiz() is False


def test_quiz_errors() -> None:
    session = LessonSession(_lesson())
    with pytest.raises(IndexError):
        session.answer_quiz(3)

    no_quiz = LessonSession(_lesson(universalConfig={"interactiveQuiz": None}))
    with pytest.raises(LookupError):
        no_quiz.answer_quiz(0)


def test_complete_notifies_owner() -> None:
    completed: list[str] = []
    session = LessonSession(_lesson(), on_complete=completed.append)
    result = session.complete()
    assert result.completed is True
    assert result.lesson_id == "newton"
    assert completed == ["newton"]


def test_leave_does_not_notify() -> None:
    completed: list[str] = []
    session = LessonSession(_lesson(), on_complete=completed.append)
    result = session.leave()
    assert result.completed is False
    assert completed == []


def test_session_requires_universal_config() -> None:
    with pytest.raises(ValueError, match="no universal configuration"):
        LessonSession(Lesson(id="plain", title="Plain"))


def test_snap_to_slider_keeps_within_max() -> None:
    variable = Variable(id="x", symbol="x", name="X", unit="", default_value=0, min=0, max=1, step=0.3)
    assert snap_to_slider(variable, 1) == 0.9
    assert snap_to_slider(variable, 0.31) == 0.3


def test_snap_to_slider_rounds_half_steps_up() -> None:
    variable = Variable(id="x", symbol="x", name="X", unit="", default_value=0, min=0, max=10, step=1)
    assert snap_to_slider(variable, 2.5) == 3
    assert snap_to_slider(variable, 3.5) == 4
    assert snap_to_slider(variable, 2.49) == 2
    assert LessonSession(_lesson()).set_value("a", 7.25) == 7.5

    uneven = Variable(id="y", symbol="y", name="Y", unit="", default_value=0, min=0, max=1, step=0.4)
    assert snap_to_slider(uneven, 1) == 0.8


def test_format_number() -> None:
    assert format_number(50) == "50"
    assert format_number(1234.5) == "1,234.5"
    assert format_number(2.0 / 3.0) == "0.67"
    assert format_number(-0.001) == "0"
    assert format_number(1234.56789, digits=3) == "1,234.568"
