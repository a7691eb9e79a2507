"""Draft authoring for parametric lessons."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from typing import Any
from uuid import uuid4

from .content_loader import validate_lesson
from .models import (
    DEFAULT_LINE_COLOR,
    ContentBlock,
    GraphConfig,
    InteractiveQuiz,
    Lesson,
    UniversalLessonConfig,
    Variable,
)
from .session import LessonSession

SaveFn = Callable[[Lesson], Lesson]

NEW_LESSON_ID_PREFIX = "temp_"
VARIABLE_ID_PREFIX = "var_"
_NUMERIC_FIELDS = {"default_value", "min", "max", "step"}
_TEXT_FIELDS = {"id", "symbol", "name", "unit"}


def new_lesson_id() -> str:
    """Temporary id for a lesson that has not been saved yet."""
    return f"{NEW_LESSON_ID_PREFIX}{uuid4().hex[:8]}"


def empty_config() -> UniversalLessonConfig:
    """Blank configuration with an unanswered three-option quiz."""
    return UniversalLessonConfig(
        objectives=(),
        introduction="",
        main_equation="",
        variables=(),
        calculation_formula="",
        result_unit="",
        interactive_quiz=InteractiveQuiz(question="", options=("", "", ""), correct_index=0),
    )


def sample_lesson() -> Lesson:
    """Starter lesson used by the builder: Newton's second law."""
    return Lesson(
        id=new_lesson_id(),
        title="Newton's second law",
        type="THEORY",
        duration="15 min",
        template_type="UNIVERSAL",
        universal_config=UniversalLessonConfig(
            objectives=(
                "Relate force, mass and acceleration.",
                "Predict how force changes when mass doubles.",
            ),
            introduction="Write the lesson introduction here...",
            main_equation="F = m \\times a",
            variables=(
                Variable(id="m", symbol="m", name="Mass", unit="kg", default_value=10, min=1, max=100, step=1),
                Variable(
                    id="a", symbol="a", name="Acceleration", unit="m/s^2", default_value=5, min=0, max=50, step=0.5
                ),
            ),
            calculation_formula="m * a",
            result_unit="Newton (N)",
            interactive_quiz=InteractiveQuiz(
                question="What happens to the force if the mass doubles?",
                options=("It doubles", "It halves", "It stays the same"),
                correct_index=0,
            ),
            graph_config=GraphConfig(
                x_axis_variable_id="a",
                y_axis_label="Force (F)",
                chart_type="line",
                line_color=DEFAULT_LINE_COLOR,
            ),
        ),
    )


class LessonEditor:
    """Owns one in-progress lesson draft until it is saved."""

    def __init__(self, initial: Lesson | None = None) -> None:
        if initial is not None and initial.template_type != "UNIVERSAL":
            raise ValueError(f"Only UNIVERSAL lessons can be edited; '{initial.id}' is {initial.template_type}.")
        base = initial if initial is not None else Lesson(id=new_lesson_id(), title="")
        config = base.universal_config if base.universal_config is not None else empty_config()
        self.lesson = replace(base, template_type="UNIVERSAL", universal_config=config)

    @property
    def config(self) -> UniversalLessonConfig:
        assert self.lesson.universal_config is not None
        return self.lesson.universal_config

    def _update_config(self, **changes: Any) -> None:
        self.lesson = replace(self.lesson, universal_config=replace(self.config, **changes))

    def set_title(self, title: str) -> None:
        self.lesson = replace(self.lesson, title=title)

    def set_lesson_type(self, lesson_type: str) -> None:
        self.lesson = replace(self.lesson, type=lesson_type)

    def set_duration(self, duration: str) -> None:
        self.lesson = replace(self.lesson, duration=duration)

    def set_introduction(self, text: str) -> None:
        self._update_config(introduction=text)

    def set_main_equation(self, equation: str) -> None:
        self._update_config(main_equation=equation)

    def set_calculation_formula(self, formula: str) -> None:
        self._update_config(calculation_formula=formula)

    def set_result_unit(self, unit: str) -> None:
        self._update_config(result_unit=unit)

    def add_variable(self) -> Variable:
        """Append a variable with placeholder values and a fresh id."""
        taken = {variable.id for variable in self.config.variables}
        number = len(self.config.variables) + 1
        while f"{VARIABLE_ID_PREFIX}{number}" in taken:
            number += 1
        variable = Variable(
            id=f"{VARIABLE_ID_PREFIX}{number}",
            symbol="x",
            name="Variable",
            unit="unit",
            default_value=10,
            min=0,
            max=100,
            step=1,
        )
        self._update_config(variables=self.config.variables + (variable,))
        return variable

    def update_variable(self, index: int, field: str, value: object) -> Variable:
        """Change one field of a variable; numeric fields accept numeric strings."""
        variables = list(self.config.variables)
        current = variables[index]
        if field in _NUMERIC_FIELDS:
            try:
                converted: object = float(value)  # type: ignore[arg-type]
            except (TypeError, ValueError):
                raise ValueError(f"'{field}' must be a number, got {value!r}.") from None
        elif field in _TEXT_FIELDS:
            converted = str(value).strip() if field == "id" else str(value)
        else:
            raise KeyError(field)
        variables[index] = replace(current, **{field: converted})
        self._update_config(variables=tuple(variables))
        return variables[index]

    def remove_variable(self, index: int) -> None:
        variables = list(self.config.variables)
        del variables[index]
        self._update_config(variables=tuple(variables))

    def add_objective(self, text: str = "") -> None:
        self._update_config(objectives=self.config.objectives + (text,))

    def update_objective(self, index: int, text: str) -> None:
        objectives = list(self.config.objectives)
        objectives[index] = text
        self._update_config(objectives=tuple(objectives))

    def remove_objective(self, index: int) -> None:
        objectives = list(self.config.objectives)
        del objectives[index]
        self._update_config(objectives=tuple(objectives))

    def add_content_block(self, block_type: str = "text", content: str = "", caption: str = "Section title") -> None:
        block = ContentBlock(type=block_type, content=content, caption=caption)
        self.lesson = replace(self.lesson, content=self.lesson.content + (block,))

    def update_content_block(self, index: int, field: str, value: str) -> None:
        if field not in ("type", "content", "caption"):
            raise KeyError(field)
        blocks = list(self.lesson.content)
        blocks[index] = replace(blocks[index], **{field: value})
        self.lesson = replace(self.lesson, content=tuple(blocks))

    def remove_content_block(self, index: int) -> None:
        blocks = list(self.lesson.content)
        del blocks[index]
        self.lesson = replace(self.lesson, content=tuple(blocks))

    def _quiz(self) -> InteractiveQuiz:
        quiz = self.config.interactive_quiz
        if quiz is None:
            return InteractiveQuiz(question="", options=("", "", ""), correct_index=0)
        return quiz

    def set_quiz_question(self, question: str) -> None:
        self._update_config(interactive_quiz=replace(self._quiz(), question=question))

    def set_quiz_option(self, index: int, text: str) -> None:
        """Set option text; an index one past the end appends an option."""
        options = list(self._quiz().options)
        if index == len(options):
            options.append(text)
        else:
            options[index] = text
        self._update_config(interactive_quiz=replace(self._quiz(), options=tuple(options)))

    def set_correct_index(self, index: int) -> None:
        self._update_config(interactive_quiz=replace(self._quiz(), correct_index=index))

    def clear_quiz(self) -> None:
        self._update_config(interactive_quiz=None)

    def set_graph(
        self,
        x_axis_variable_id: str,
        y_axis_label: str = "",
        chart_type: str = "line",
        line_color: str = DEFAULT_LINE_COLOR,
    ) -> None:
        graph = GraphConfig(
            x_axis_variable_id=x_axis_variable_id,
            y_axis_label=y_axis_label,
            chart_type=chart_type,
            line_color=line_color,
        )
        self._update_config(graph_config=graph)

    def clear_graph(self) -> None:
        self._update_config(graph_config=None)

    def build(self) -> Lesson:
        """Return the draft with blank optional sections dropped."""
        config = self.config
        quiz = config.interactive_quiz
        if quiz is not None and not quiz.question.strip() and not any(option.strip() for option in quiz.options):
            config = replace(config, interactive_quiz=None)
        graph = config.graph_config
        if graph is not None and not graph.x_axis_variable_id:
            config = replace(config, graph_config=None)
        return replace(self.lesson, universal_config=config)

    def save(self, saver: SaveFn) -> Lesson:
        """Validate the draft and hand it to `saver`; raises SchemaError when invalid."""
        lesson = self.build()
        validate_lesson(lesson)
        saved = saver(lesson)
        self.lesson = saved
        return saved

    def preview(self) -> LessonSession:
        """Open the current draft in a live session without saving it."""
        return LessonSession(self.build())
