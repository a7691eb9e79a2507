"""Core domain models for parametric lessons."""

from __future__ import annotations

from dataclasses import dataclass, field

CHART_TYPES = ("line", "bar", "area")
CONTENT_BLOCK_TYPES = ("text", "image", "video", "pdf", "youtube", "audio")
LESSON_TYPES = ("THEORY", "EXAMPLE", "EXERCISE")
TEMPLATE_TYPES = ("STANDARD", "UNIVERSAL")
DEFAULT_LINE_COLOR = "#00d2ff"


class SchemaError(ValueError):
    """Raised when a lesson definition breaks its authoring rules."""

    def __init__(self, problems: list[str]) -> None:
        self.problems = list(problems)
        super().__init__("; ".join(self.problems) if self.problems else "Invalid lesson.")


@dataclass(frozen=True)
class Variable:
    """Named numeric input to a calculation formula."""

    id: str
    symbol: str
    name: str
    unit: str
    default_value: float
    min: float
    max: float
    step: float


@dataclass(frozen=True)
class GraphConfig:
    """How to chart the formula against one variable."""

    x_axis_variable_id: str
    y_axis_label: str = ""
    chart_type: str = "line"
    line_color: str = DEFAULT_LINE_COLOR


@dataclass(frozen=True)
class InteractiveQuiz:
    """Single multiple-choice comprehension check."""

    question: str
    options: tuple[str, ...]
    correct_index: int


@dataclass(frozen=True)
class UniversalLessonConfig:
    """Live simulation definition attached to a lesson."""

    objectives: tuple[str, ...]
    introduction: str
    main_equation: str
    variables: tuple[Variable, ...]
    calculation_formula: str
    result_unit: str
    interactive_quiz: InteractiveQuiz | None = None
    graph_config: GraphConfig | None = None

    def variable(self, variable_id: str) -> Variable | None:
        """Return the variable with this id, if declared."""
        for item in self.variables:
            if item.id == variable_id:
                return item
        return None


@dataclass(frozen=True)
class ContentBlock:
    """Narrative section of a lesson."""

    type: str
    content: str
    caption: str | None = None


@dataclass(frozen=True)
class Lesson:
    """Lesson document, optionally carrying a parametric model."""

    id: str
    title: str
    type: str = "THEORY"
    duration: str = ""
    content: tuple[ContentBlock, ...] = field(default_factory=tuple)
    template_type: str = "STANDARD"
    is_pinned: bool = False
    book_reference: str | None = None
    universal_config: UniversalLessonConfig | None = None
