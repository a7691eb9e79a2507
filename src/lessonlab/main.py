"""CLI entrypoint for parametric lesson viewing and authoring."""

from __future__ import annotations

import argparse
import os
import sqlite3
from collections.abc import Callable
from pathlib import Path

from .content_loader import lesson_problems, load_lesson_file
from .editor import LessonEditor, sample_lesson
from .formula import FormulaError, compile_formula, compute
from .logging_config import configure_logging
from .models import SchemaError
from .service import LessonService
from .session import LessonSession, format_number

InputFn = Callable[[str], str]
PrintFn = Callable[[str], None]
BACK_COMMANDS = {":back", ":b", "back"}
MENU_QUIT_COMMANDS = {"q"}
FLOW_EXIT_COMMANDS = {":quit", ":exit", ":q"}
MENU_BACK_COMMANDS = {"b"}
CLEAR_ANSWER = "-"
DEFAULT_DB_PATH = Path(".lessonlab") / "lessons.db"
DB_ENV_VAR = "LESSONLAB_DB"
LOG_LEVEL_ENV_VAR = "LESSONLAB_LOG_LEVEL"


class QuitApp(Exception):
    """Signal immediate app exit from nested menu flows."""


def _service(db_path: Path | str) -> LessonService:
    """Create app service for a database path."""
    return LessonService(db_path=db_path)


def build_parser() -> argparse.ArgumentParser:
    """Argument parser with environment-backed defaults."""
    parser = argparse.ArgumentParser(prog="lessonlab", description="Interactive parametric physics lessons")
    parser.add_argument("--db", default=os.environ.get(DB_ENV_VAR, str(DEFAULT_DB_PATH)), help="database path")
    parser.add_argument(
        "--log-level",
        default=os.environ.get(LOG_LEVEL_ENV_VAR, "WARNING"),
        help="log level (DEBUG, INFO, WARNING, ERROR)",
    )
    parser.add_argument("--json-logs", action="store_true", help="emit logs as JSON lines")
    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("play", help="open the interactive menu (default)")
    validate = subparsers.add_parser("validate", help="validate lesson JSON files")
    validate.add_argument("paths", nargs="+", type=Path)
    evaluate = subparsers.add_parser("eval", help="evaluate a formula")
    evaluate.add_argument("formula")
    evaluate.add_argument("bindings", nargs="*", metavar="NAME=VALUE")
    return parser


def run(argv: list[str] | None = None, print_fn: PrintFn = print) -> int:
    """Run the CLI application."""
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, json_output=args.json_logs)
    if args.command == "validate":
        return validate_files(args.paths, print_fn)
    if args.command == "eval":
        return evaluate_command(args.formula, args.bindings, print_fn)
    db_path = Path(args.db) if args.db != ":memory:" else args.db
    return play_shell(db_path=db_path)


def validate_files(paths: list[Path], print_fn: PrintFn = print) -> int:
    """Validate lesson files; returns 1 if any file has problems."""
    failed = False
    for path in paths:
        try:
            lesson = load_lesson_file(path)
        except (OSError, ValueError) as exc:
            print_fn(f"{path}: cannot read lesson: {exc}")
            failed = True
            continue
        problems = lesson_problems(lesson)
        if problems:
            failed = True
            print_fn(f"{path}: {len(problems)} problem(s)")
            for problem in problems:
                print_fn(f"- {problem}")
        else:
            print_fn(f"{path}: ok")
    return 1 if failed else 0


def evaluate_command(formula: str, raw_bindings: list[str], print_fn: PrintFn = print) -> int:
    """Evaluate one formula against NAME=VALUE bindings."""
    bindings: dict[str, float] = {}
    for item in raw_bindings:
        name, sep, value = item.partition("=")
        if not sep or not name.strip():
            print_fn(f"Invalid binding '{item}' (expected NAME=VALUE).")
            return 2
        try:
            bindings[name.strip()] = float(value)
        except ValueError:
            print_fn(f"Invalid number for '{name.strip()}': {value!r}")
            return 2
    try:
        compile_formula(formula)
    except FormulaError as exc:
        print_fn(f"Formula error: {exc}")
        return 1
    evaluation = compute(formula, bindings)
    if not evaluation.ok:
        print_fn(f"Formula error: {evaluation.error}")
        return 1
    print_fn(format_number(evaluation.value, digits=6))
    return 0


def play_shell(
    db_path: Path | str = DEFAULT_DB_PATH,
    input_fn: InputFn = input,
    print_fn: PrintFn = print,
) -> int:
    """Run persistent menu-driven shell."""
    service = _service(db_path)
    try:
        selected = _select_profile(service, input_fn, print_fn)
        if selected is None:
            return 0
        profile_id, profile_name = selected
        try:
            while True:
                print_fn("\n=== Science Lessons ===")
                print_fn(f"Profile: {profile_name}")
                print_fn("1) Open a lesson")
                print_fn("2) Author a lesson")
                print_fn("3) Status")
                print_fn("4) Admin")
                print_fn("b) Back")
                print_fn("q) Quit")
                choice = input_fn("Choose: ").strip().lower()

                if choice == "1":
                    _open_lesson_flow(service, profile_id, input_fn, print_fn)
                elif choice == "2":
                    _author_flow(service, None, input_fn, print_fn)
                elif choice == "3":
                    _status_flow(service, profile_id, print_fn)
                elif choice == "4":
                    _admin_flow(service, input_fn, print_fn)
                elif choice in MENU_BACK_COMMANDS:
                    switched = _select_profile(service, input_fn, print_fn)
                    if switched is None:
                        return 0
                    profile_id, profile_name = switched
                elif choice in MENU_QUIT_COMMANDS:
                    return 0
                else:
                    print_fn("Invalid choice.")
        except QuitApp:
            return 0
    finally:
        service.close()


def _select_profile(service: LessonService, input_fn: InputFn, print_fn: PrintFn) -> tuple[int, str] | None:
    """Select existing profile or create new one."""
    while True:
        profiles = service.list_profiles()
        print_fn("\n=== Profiles ===")
        if profiles:
            for idx, profile in enumerate(profiles, start=1):
                print_fn(f"{idx}) {profile.name} ({profile.points} pts)")
        else:
            print_fn("No profiles yet.")
        print_fn("n) New profile")
        print_fn("d) Delete profile")
        print_fn("q) Quit")

        choice = input_fn("Select profile: ").strip().lower()
        if choice in MENU_QUIT_COMMANDS:
            return None
        if choice == "n":
            name = input_fn("New profile name: ").strip()
            if not name:
                print_fn("Profile name is required.")
                continue
            try:
                created = service.create_profile(name)
            except sqlite3.IntegrityError:
                print_fn("Could not create profile (name may already exist).")
                continue
            return (created.id, created.name)
        if choice == "d":
            _delete_profile_flow(service, input_fn, print_fn)
            continue
        if choice.isdigit():
            index = int(choice) - 1
            if 0 <= index < len(profiles):
                return (profiles[index].id, profiles[index].name)
        print_fn("Invalid profile selection.")


def _delete_profile_flow(service: LessonService, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Delete a profile after explicit confirmation."""
    profiles = service.list_profiles()
    if not profiles:
        print_fn("No profiles available to delete.")
        return
    print_fn("\nDelete profile")
    for idx, profile in enumerate(profiles, start=1):
        print_fn(f"{idx}) {profile.name}")
    print_fn("b) Back")
    choice = input_fn("Choose profile to delete: ").strip().lower()
    if choice in MENU_BACK_COMMANDS:
        return
    if not choice.isdigit() or not (0 <= int(choice) - 1 < len(profiles)):
        print_fn("Invalid choice.")
        return
    target = profiles[int(choice) - 1]
    print_fn(f"WARNING: This permanently deletes profile '{target.name}' and its completed lessons.")
    if input_fn("Type YES to confirm deletion: ").strip() != "YES":
        print_fn("Deletion cancelled.")
        return
    if service.delete_profile(target.id):
        print_fn(f"Deleted profile '{target.name}'.")
    else:
        print_fn("Profile was not found.")


def _status_flow(service: LessonService, profile_id: int, print_fn: PrintFn) -> None:
    """Print points and lesson completion."""
    status = service.status(profile_id)
    print_fn("\n=== Status ===")
    print_fn(f"Points: {status.points}")
    print_fn(f"Completed lessons: {len(status.completed_lesson_ids)}/{status.total_lessons}")
    for lesson_id in status.completed_lesson_ids:
        print_fn(f"- {lesson_id}")


def _choose_lesson(
    service: LessonService, profile_id: int | None, input_fn: InputFn, print_fn: PrintFn, prompt: str
) -> str | None:
    """List lessons and return the chosen id."""
    rows = service.list_lessons(profile_id)
    if not rows:
        print_fn("No lessons available.")
        return None
    id_width = max(len("Lesson"), max(len(row.lesson_id) for row in rows))
    header = f"{'#':>2} {'Lesson':<{id_width}} {'Kind':<11} {'Done':<4} Title"
    print_fn(header)
    print_fn("-" * len(header))
    for idx, row in enumerate(rows, start=1):
        kind = "interactive" if row.interactive else "reading"
        done = "yes" if row.completed else ""
        pin = "* " if row.is_pinned else ""
        print_fn(f"{idx:>2} {row.lesson_id:<{id_width}} {kind:<11} {done:<4} {pin}{row.title}")
    print_fn("b) Back")
    print_fn("q) Quit")
    choice = input_fn(prompt).strip().lower()
    if choice in MENU_BACK_COMMANDS:
        return None
    if choice in MENU_QUIT_COMMANDS:
        raise QuitApp()
    if not choice.isdigit() or not (0 <= int(choice) - 1 < len(rows)):
        print_fn("Invalid choice.")
        return None
    return rows[int(choice) - 1].lesson_id


def _open_lesson_flow(service: LessonService, profile_id: int, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Pick a lesson and run it."""
    print_fn("\n=== Lessons ===")
    lesson_id = _choose_lesson(service, profile_id, input_fn, print_fn, "Choose lesson: ")
    if lesson_id is None:
        return
    lesson = service.get_lesson(lesson_id)
    if lesson is None:
        print_fn("Lesson not found.")
        return
    if lesson.universal_config is None:
        print_fn(f"\n{lesson.title}")
        for block in lesson.content:
            if block.caption:
                print_fn(f"\n## {block.caption}")
            print_fn(block.content)
        if input_fn("Mark as completed? (y/N): ").strip().lower() == "y":
            service.complete_lesson(profile_id, lesson.id)
            print_fn("Lesson completed.")
        return
    session = service.open_lesson(profile_id, lesson_id)
    run_session(session, input_fn, print_fn, completed=service.is_completed(profile_id, lesson_id))


def run_session(
    session: LessonSession,
    input_fn: InputFn,
    print_fn: PrintFn,
    *,
    completed: bool = False,
    preview: bool = False,
) -> bool:
    """Drive one lesson session; returns True when the learner completed it."""
    lesson = session.lesson
    config = session.config
    print_fn(f"\n=== {lesson.title} ===")
    if config.introduction:
        print_fn(config.introduction)
    if config.objectives:
        print_fn("\nObjectives:")
        for idx, objective in enumerate(config.objectives, start=1):
            print_fn(f"{idx}. {objective}")
    print_fn(f"\nEquation: {config.main_equation}")
    for block in lesson.content:
        if block.caption:
            print_fn(f"\n## {block.caption}")
        if block.type == "text":
            print_fn(block.content)
        else:
            print_fn(f"[{block.type}] {block.content}")
    print_fn("\nCommands: set <id> <value>, quiz, answer <n>, reset, complete, :b")
    _print_calculator(session, print_fn)

    while True:
        raw = input_fn("> ").strip()
        lowered = raw.lower()
        if lowered in BACK_COMMANDS or lowered in FLOW_EXIT_COMMANDS:
            session.leave()
            return False
        parts = raw.split()
        if not parts:
            continue
        command = parts[0].lower()
        if command == "set" and len(parts) == 3:
            try:
                applied = session.set_value(parts[1], float(parts[2]))
            except KeyError:
                print_fn(f"Unknown variable '{parts[1]}'.")
                continue
            except ValueError:
                print_fn("Value must be a number.")
                continue
            print_fn(f"{parts[1]} = {format_number(applied, digits=6)}")
            _print_calculator(session, print_fn)
        elif command == "quiz":
            if config.interactive_quiz is None:
                print_fn("This lesson has no quiz.")
                continue
            if session.toggle_quiz():
                print_fn(config.interactive_quiz.question)
                for idx, option in enumerate(config.interactive_quiz.options, start=1):
                    print_fn(f"{idx}) {option}")
            else:
                print_fn("Quiz hidden.")
        elif command == "answer" and len(parts) == 2 and parts[1].isdigit():
            try:
                feedback = session.answer_quiz(int(parts[1]) - 1)
            except LookupError:
                print_fn("No such quiz option.")
                continue
            print_fn(feedback.message)
        elif command == "reset":
            session.reset()
            _print_calculator(session, print_fn)
        elif command == "complete":
            if preview:
                print_fn("Preview finished.")
            elif completed:
                print_fn("Lesson already completed.")
            else:
                session.complete()
                print_fn("Lesson completed. +10 points.")
            return True
        else:
            print_fn("Unknown command.")


def _print_calculator(session: LessonSession, print_fn: PrintFn) -> None:
    """Print live values, result and chart table."""
    values = session.values
    for variable in session.config.variables:
        value = format_number(values[variable.id], digits=6)
        print_fn(
            f"  {variable.name} ({variable.symbol}) = {value} {variable.unit}"
            f"  [{format_number(variable.min, 6)}..{format_number(variable.max, 6)}"
            f" step {format_number(variable.step, 6)}]"
        )
    print_fn(f"Result: {session.formatted_result}")
    if session.formula_error:
        print_fn(f"Formula error: {session.formula_error}")
    chart = session.chart
    if chart is None:
        return
    print_fn(f"\n{chart.y_label or 'Result'} vs {chart.x_variable_id} ({chart.chart_type})")
    label_width = max(len(chart.x_variable_id), max(len(str(label)) for label in chart.labels))
    for label, value in zip(chart.labels, chart.values):
        print_fn(f"  {label:>{label_width}}  {format_number(value)}")


def _author_flow(service: LessonService, lesson_id: str | None, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Guided lesson authoring with validation before save."""
    if lesson_id is None and input_fn("Start from the sample lesson? (y/N): ").strip().lower() == "y":
        editor = LessonEditor(sample_lesson())
    else:
        try:
            editor = service.new_editor(lesson_id)
        except ValueError as exc:
            print_fn(str(exc))
            return
    print_fn("\n=== Author Lesson ===")
    print_fn("Press Enter to keep the current value.")
    editor.set_title(_ask(input_fn, "Title", editor.lesson.title))
    editor.set_introduction(_ask(input_fn, "Introduction", editor.config.introduction))
    editor.set_main_equation(_ask(input_fn, "Display equation", editor.config.main_equation))
    editor.set_calculation_formula(_ask(input_fn, "Calculation formula", editor.config.calculation_formula))
    editor.set_result_unit(_ask(input_fn, "Result unit", editor.config.result_unit))

    while input_fn("Add a variable? (y/N): ").strip().lower() == "y":
        variable = editor.add_variable()
        index = len(editor.config.variables) - 1
        for field, label in (
            ("id", "Id"),
            ("symbol", "Symbol"),
            ("name", "Name"),
            ("unit", "Unit"),
            ("min", "Min"),
            ("max", "Max"),
            ("step", "Step"),
            ("default_value", "Default value"),
        ):
            answer = _ask(input_fn, f"  {label}", str(getattr(variable, field)))
            try:
                variable = editor.update_variable(index, field, answer)
            except ValueError as exc:
                print_fn(f"  {exc}")

    while input_fn("Add an objective? (y/N): ").strip().lower() == "y":
        editor.add_objective(input_fn("  Objective: ").strip())

    graph = editor.config.graph_config
    current_axis = graph.x_axis_variable_id if graph else ""
    axis = _ask(input_fn, f"Graph x-axis variable id ({CLEAR_ANSWER} for none)", current_axis)
    if axis == CLEAR_ANSWER or not axis:
        editor.clear_graph()
    else:
        label = _ask(input_fn, "Graph y-axis label", graph.y_axis_label if graph else "")
        if graph is not None:
            editor.set_graph(axis, label, graph.chart_type, graph.line_color)
        else:
            editor.set_graph(axis, label)

    quiz = editor.config.interactive_quiz
    question = _ask(input_fn, f"Quiz question ({CLEAR_ANSWER} for none)", quiz.question if quiz else "")
    if question == CLEAR_ANSWER or not question:
        editor.clear_quiz()
    else:
        editor.set_quiz_question(question)
        options = quiz.options if quiz else ()
        for idx in range(len(options) or 3):
            current = options[idx] if idx < len(options) else ""
            editor.set_quiz_option(idx, _ask(input_fn, f"  Option {idx + 1}", current))
        correct = _ask(input_fn, "  Correct option number", str(quiz.correct_index + 1) if quiz else "1")
        if correct.isdigit():
            editor.set_correct_index(int(correct) - 1)

    if input_fn("Preview before saving? (y/N): ").strip().lower() == "y":
        preview_editor(editor, input_fn, print_fn)

    try:
        saved = editor.save(service.save_lesson)
    except SchemaError as exc:
        print_fn("Cannot save lesson:")
        for problem in exc.problems:
            print_fn(f"- {problem}")
        service.save_draft(editor.lesson)
        print_fn(f"Draft kept as '{editor.lesson.id}'.")
        return
    print_fn(f"Saved lesson '{saved.id}'.")


def _ask(input_fn: InputFn, label: str, current: str) -> str:
    """Prompt with a default shown in brackets."""
    suffix = f" [{current}]" if current else ""
    answer = input_fn(f"{label}{suffix}: ").strip()
    return answer if answer else current


def _admin_flow(service: LessonService, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Admin menu for lesson management."""
    while True:
        print_fn("\n=== Admin ===")
        print_fn("1) Pin / unpin lesson")
        print_fn("2) Edit lesson")
        print_fn("3) Export lesson")
        print_fn("4) Import lesson")
        print_fn("5) Drafts")
        print_fn("b) Back")
        print_fn("q) Quit")
        choice = input_fn("Choose admin option: ").strip().lower()
        if choice in MENU_BACK_COMMANDS:
            return
        if choice in MENU_QUIT_COMMANDS:
            raise QuitApp()
        if choice == "1":
            lesson_id = _choose_lesson(service, None, input_fn, print_fn, "Choose lesson to pin/unpin: ")
            if lesson_id is not None:
                lesson = service.get_lesson(lesson_id)
                if lesson is not None:
                    updated = service.set_pinned(lesson_id, not lesson.is_pinned)
                    print_fn(f"{'Pinned' if updated.is_pinned else 'Unpinned'} '{updated.title}'.")
        elif choice == "2":
            lesson_id = _choose_lesson(service, None, input_fn, print_fn, "Choose lesson to edit: ")
            if lesson_id is not None:
                _author_flow(service, lesson_id, input_fn, print_fn)
        elif choice == "3":
            _export_lesson_flow(service, input_fn, print_fn)
        elif choice == "4":
            _import_lesson_flow(service, input_fn, print_fn)
        elif choice == "5":
            _drafts_flow(service, input_fn, print_fn)
        else:
            print_fn("Invalid choice.")


def _export_lesson_flow(service: LessonService, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Export one lesson to a JSON file."""
    lesson_id = _choose_lesson(service, None, input_fn, print_fn, "Choose lesson to export: ")
    if lesson_id is None:
        return
    path_text = input_fn("Export file path: ").strip()
    if not path_text:
        print_fn("File path is required.")
        return
    try:
        path = service.export_lesson(lesson_id, path_text)
    except (OSError, KeyError) as exc:
        print_fn(f"Export failed: {exc}")
        return
    print_fn(f"Exported '{lesson_id}' to {path}")


def _import_lesson_flow(service: LessonService, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Import one lesson from a JSON file."""
    path_text = input_fn("Import file path: ").strip()
    if not path_text:
        print_fn("File path is required.")
        return
    try:
        lesson = service.import_lesson(path_text)
    except SchemaError as exc:
        print_fn("Import failed:")
        for problem in exc.problems:
            print_fn(f"- {problem}")
        return
    except (OSError, ValueError) as exc:
        print_fn(f"Import failed: {exc}")
        return
    print_fn(f"Imported lesson '{lesson.id}'.")


def _drafts_flow(service: LessonService, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Resume or discard saved drafts."""
    drafts = service.list_drafts()
    print_fn("\n=== Drafts ===")
    if not drafts:
        print_fn("No drafts.")
        return
    for idx, lesson_id in enumerate(drafts, start=1):
        print_fn(f"{idx}) {lesson_id}")
    print_fn("b) Back")
    choice = input_fn("Choose draft: ").strip().lower()
    if choice in MENU_BACK_COMMANDS:
        return
    if not choice.isdigit() or not (0 <= int(choice) - 1 < len(drafts)):
        print_fn("Invalid choice.")
        return
    lesson_id = drafts[int(choice) - 1]
    action = input_fn("r) Resume  d) Discard: ").strip().lower()
    if action == "r":
        _author_flow(service, lesson_id, input_fn, print_fn)
    elif action == "d":
        service.discard_draft(lesson_id)
        print_fn(f"Discarded draft '{lesson_id}'.")
    else:
        print_fn("Invalid choice.")


def preview_editor(editor: LessonEditor, input_fn: InputFn = input, print_fn: PrintFn = print) -> None:
    """Run the current draft in a throwaway session."""
    run_session(editor.preview(), input_fn, print_fn, preview=True)


def main_entry() -> None:
    """Console script entrypoint."""
    raise SystemExit(run())


if __name__ == "__main__":  # pragma: no cover
    main_entry()
