import math

import pytest
from structlog.testing import capture_logs

from lessonlab.formula import (
    FALLBACK_VALUE,
    FormulaError,
    compile_formula,
    compute,
    evaluate,
    generate_series,
    sample_axis,
)


def test_evaluate_product_of_bindings() -> None:
    assert evaluate("m*a", {"m": 10, "a": 5}) == 50


def test_operator_precedence_and_associativity() -> None:
    assert evaluate("2 + 3 * 4", {}) == 14
    assert evaluate("(2 + 3) * 4", {}) == 20
    assert evaluate("10 - 4 - 3", {}) == 3
    assert evaluate("2 ** 3 ** 2", {}) == 512
    assert evaluate("-2 ** 2", {}) == -4
    assert evaluate("2 ** -1", {}) == 0.5
    assert evaluate("7 % 3", {}) == 1
    assert evaluate("-7 % 3", {}) == -1


def test_numeric_literals() -> None:
    assert evaluate(".5 + 1.", {}) == 1.5
    assert evaluate("6.02e23 / 1e23", {}) == pytest.approx(6.02)
    assert evaluate("1E-3 * 1000", {}) == pytest.approx(1.0)


def test_functions_and_constants() -> None:
    assert evaluate("sqrt(16) + abs(-2)", {}) == 6
    assert evaluate("pow(c, 2) * m", {"c": 3, "m": 2}) == 18
    assert evaluate("max(1, 7, 3) - min(4, 2)", {}) == 5
    assert evaluate("round(2.5) + round(-2.5)", {}) == 1
    assert evaluate("hypot(3, 4)", {}) == 5
    assert evaluate("sign(-3)", {}) == -1
    assert evaluate("sin(pi / 2)", {}) == pytest.approx(1.0)
    assert evaluate("log(E)", {}) == pytest.approx(1.0)


def test_math_prefix_is_accepted() -> None:
    assert evaluate("0.5 * m * Math.pow(v, 2)", {"m": 2, "v": 3}) == 9
    assert evaluate("Math.PI * r ** 2", {"r": 1}) == pytest.approx(math.pi)


def test_bindings_shadow_constants() -> None:
    assert evaluate("E * 2", {"E": 5}) == 10


def test_missing_binding_falls_back() -> None:
    assert evaluate("m * a", {"m": 10}) == FALLBACK_VALUE


def test_division_by_zero_falls_back() -> None:
    assert evaluate("V / R", {"V": 12, "R": 0}) == FALLBACK_VALUE
    assert evaluate("5 % 0", {}) == FALLBACK_VALUE


def test_syntax_errors_fall_back() -> None:
    for formula in ["m *", "(m + a", "m a", "2m", "m ^ 2", "", "   ", "m.a", "eval(1)", "__import__('os')"]:
        assert evaluate(formula, {"m": 1, "a": 2}) == FALLBACK_VALUE


def test_domain_errors_and_non_finite_results_fall_back() -> None:
    assert evaluate("sqrt(x)", {"x": -1}) == FALLBACK_VALUE
    assert evaluate("log(0)", {}) == FALLBACK_VALUE
    assert evaluate("(-8) ** (1/3)", {}) == FALLBACK_VALUE
    assert evaluate("10 ** 400", {}) == FALLBACK_VALUE
    assert evaluate("1e308 * 10", {}) == FALLBACK_VALUE


def test_non_numeric_binding_falls_back() -> None:
    assert evaluate("m * 2", {"m": "ten"}) == FALLBACK_VALUE  # type: ignore[dict-item]


def test_remainder_of_infinite_operand_falls_back() -> None:
    assert evaluate("1e999 % 2", {}) == FALLBACK_VALUE
    assert evaluate("x % 3", {"x": math.inf}) == FALLBACK_VALUE
    assert generate_series("a * 1e308 % 7", {"a": 1.0}, "a", [0, 10]) == [0.0, FALLBACK_VALUE]


def test_oversized_integer_binding_falls_back() -> None:
    with capture_logs() as logs:
        result = compute("m * 2", {"m": 10**400})
    assert result.value == FALLBACK_VALUE
    assert result.error == "Value for 'm' is too large."
    assert logs[0]["event"] == "formula_evaluation_failed"


def test_evaluation_failure_is_logged() -> None:
    with capture_logs() as logs:
        result = compute("m / 0", {"m": 1})
    assert result.value == FALLBACK_VALUE
    assert result.ok is False
    assert result.error == "Division by zero."
    assert logs[0]["event"] == "formula_evaluation_failed"
    assert logs[0]["log_level"] == "warning"
    assert logs[0]["formula"] == "m / 0"


def test_successful_compute_reports_no_error() -> None:
    result = compute("m * a", {"m": 2, "a": 3})
    assert result.ok is True
    assert result.value == 6


def test_evaluate_is_idempotent_and_does_not_mutate_bindings() -> None:
    bindings = {"m": 3.0, "a": 4.0}
    first = evaluate("m * a + sqrt(m)", bindings)
    second = evaluate("m * a + sqrt(m)", bindings)
    assert first == second
    assert bindings == {"m": 3.0, "a": 4.0}


def test_compile_formula_reports_names_and_functions() -> None:
    formula = compile_formula("0.5 * m * Math.pow(v, 2) + pi")
    assert formula.names == frozenset({"m", "v", "pi"})
    assert formula.free_names() == frozenset({"m", "v"})
    assert formula.functions == frozenset({"pow"})
    assert formula.evaluate({"m": 2, "v": 3}) == pytest.approx(9 + math.pi)


def test_compile_formula_rejects_bad_input() -> None:
    with pytest.raises(FormulaError, match="Unknown function"):
        compile_formula("system(1)")
    with pytest.raises(FormulaError, match="takes 2 argument"):
        compile_formula("pow(2)")
    with pytest.raises(FormulaError, match="at least one argument"):
        compile_formula("max()")
    with pytest.raises(FormulaError, match="empty"):
        compile_formula("")
    with pytest.raises(FormulaError, match="Unexpected character"):
        compile_formula("m; a")


def test_deep_nesting_is_reported_not_raised() -> None:
    formula = "(" * 5000 + "1" + ")" * 5000
    with pytest.raises(FormulaError):
        compile_formula(formula)
    assert evaluate(formula, {}) == FALLBACK_VALUE


def test_generate_series_overrides_one_variable() -> None:
    series = generate_series("m * a", {"m": 10, "a": 5}, "a", [0, 10, 20])
    assert series == [0, 100, 200]


def test_generate_series_degrades_points_individually() -> None:
    series = generate_series("V / R", {"V": 12, "R": 6}, "R", [0, 2, 0, 4])
    assert series == [FALLBACK_VALUE, 6, FALLBACK_VALUE, 3]


def test_generate_series_with_broken_formula_keeps_length() -> None:
    assert generate_series("m *", {"m": 1}, "m", [1, 2, 3]) == [0.0, 0.0, 0.0]
    assert generate_series("m * a", {}, "m", []) == []


def test_sample_axis_default_seven_points() -> None:
    assert sample_axis(0, 60) == [0, 10, 20, 30, 40, 50, 60]


def test_sample_axis_rounds_half_up() -> None:
    assert sample_axis(1, 100) == [1, 18, 34, 51, 67, 84, 100]


def test_sample_axis_custom_points() -> None:
    assert sample_axis(0, 10, points=3) == [0, 5, 10]
    with pytest.raises(ValueError):
        sample_axis(0, 10, points=1)
