"""Live view state for one open parametric lesson."""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass

from .formula import (
    DEFAULT_SAMPLE_POINTS,
    Formula,
    FormulaError,
    compile_formula,
    compute,
    generate_series,
    sample_axis,
)
from .models import GraphConfig, Lesson, UniversalLessonConfig, Variable

CompleteFn = Callable[[str], None]

CORRECT_MESSAGE = "Correct answer! Well done."
INCORRECT_MESSAGE = "Not quite. Try again."


@dataclass(frozen=True)
class ChartSeries:
    """Chart data for the formula swept over one variable."""

    x_variable_id: str
    labels: tuple[int, ...]
    values: tuple[float, ...]
    y_label: str
    chart_type: str
    line_color: str


@dataclass(frozen=True)
class QuizFeedback:
    """Immediate feedback for one quiz answer."""

    selected_index: int
    correct: bool
    message: str


@dataclass(frozen=True)
class SessionExit:
    """How the learner left the lesson view."""

    lesson_id: str
    completed: bool


class LessonSession:
    """Binds slider values to the formula and keeps result, chart and quiz in sync.

    Values live only as long as the session; reopening a lesson starts again
    from each variable's default value.
    """

    def __init__(
        self,
        lesson: Lesson,
        on_complete: CompleteFn | None = None,
        sample_points: int = DEFAULT_SAMPLE_POINTS,
    ) -> None:
        if lesson.universal_config is None:
            raise ValueError(f"Lesson '{lesson.id}' has no universal configuration.")
        self.lesson = lesson
        self.config: UniversalLessonConfig = lesson.universal_config
        self.sample_points = sample_points
        self.state = "initializing"
        self.quiz_open = False
        self._on_complete = on_complete
        self._values: dict[str, float] = {}
        self._formula: Formula | None = None
        self.result = 0.0
        self.formula_error: str | None = None
        self.chart: ChartSeries | None = None
        try:
            self._formula = compile_formula(self.config.calculation_formula)
        except FormulaError:
            # Evaluated from source instead, so the failure lands in formula_error.
            self._formula = None
        self.reset()

    @property
    def values(self) -> dict[str, float]:
        """Copy of the current live values."""
        return dict(self._values)

    @property
    def formatted_result(self) -> str:
        """Result with at most two decimals, followed by the result unit."""
        text = format_number(self.result)
        return f"{text} {self.config.result_unit}".strip()

    def reset(self) -> None:
        """Bind every variable to its default value and recompute."""
        self._values = {variable.id: variable.default_value for variable in self.config.variables}
        self.state = "ready"
        self._recompute()

    def set_value(self, variable_id: str, value: float) -> float:
        """Move one slider; returns the value actually applied."""
        variable = self.config.variable(variable_id)
        if variable is None:
            raise KeyError(variable_id)
        applied = snap_to_slider(variable, value)
        self._values[variable_id] = applied
        self._recompute()
        return applied

    def toggle_quiz(self) -> bool:
        """Show or hide the quiz panel; returns whether it is now open."""
        self.quiz_open = not self.quiz_open
        return self.quiz_open

    def answer_quiz(self, index: int) -> QuizFeedback:
        """Check one quiz option."""
        quiz = self.config.interactive_quiz
        if quiz is None:
            raise LookupError(f"Lesson '{self.lesson.id}' has no quiz.")
        if not 0 <= index < len(quiz.options):
            raise IndexError(index)
        correct = index == quiz.correct_index
        return QuizFeedback(
            selected_index=index,
            correct=correct,
            message=CORRECT_MESSAGE if correct else INCORRECT_MESSAGE,
        )

    def complete(self) -> SessionExit:
        """Report lesson completion to the owner."""
        if self._on_complete is not None:
            self._on_complete(self.lesson.id)
        return SessionExit(lesson_id=self.lesson.id, completed=True)

    def leave(self) -> SessionExit:
        """Leave without completing."""
        return SessionExit(lesson_id=self.lesson.id, completed=False)

    def _recompute(self) -> None:
        if self._formula is None:
            evaluation = compute(self.config.calculation_formula, self._values)
        else:
            evaluation = compute(self._formula, self._values)
        self.result = evaluation.value
        self.formula_error = evaluation.error
        self.chart = self._build_chart()

    def _build_chart(self) -> ChartSeries | None:
        graph: GraphConfig | None = self.config.graph_config
        if graph is None:
            return None
        axis = self.config.variable(graph.x_axis_variable_id)
        if axis is None:
            return None
        labels = sample_axis(axis.min, axis.max, self.sample_points)
        formula = self._formula if self._formula is not None else self.config.calculation_formula
        values = generate_series(formula, self._values, axis.id, labels)
        return ChartSeries(
            x_variable_id=axis.id,
            labels=tuple(labels),
            values=tuple(values),
            y_label=graph.y_axis_label,
            chart_type=graph.chart_type,
            line_color=graph.line_color,
        )


def snap_to_slider(variable: Variable, value: float) -> float:
    """Clamp to [min, max] and snap to the nearest step from min."""
    if not math.isfinite(value):
        raise ValueError(f"Value for '{variable.id}' must be a finite number.")
    clamped = min(max(value, variable.min), variable.max)
    if variable.step <= 0:
        return clamped
    # Half steps round up, matching range inputs.
    steps = math.floor((clamped - variable.min) / variable.step + 0.5)
    snapped = round(variable.min + steps * variable.step, 10)
    if snapped > variable.max:
        snapped = round(variable.min + (steps - 1) * variable.step, 10)
    return snapped


def format_number(value: float, digits: int = 2) -> str:
    """Group thousands and keep at most `digits` fraction digits."""
    text = f"{value:,.{digits}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if text in ("-0", ""):
        return "0"
    return text
