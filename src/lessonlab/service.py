"""Application service for lessons, authoring drafts and learner progress."""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from pathlib import Path
from typing import cast
from uuid import uuid4

import structlog

from . import __version__
from .content_loader import lesson_from_dict, lesson_to_dict, load_lessons, validate_lesson
from .editor import LessonEditor
from .models import Lesson
from .session import LessonSession
from .store import SCHEMA_VERSION, LessonStore, Profile

logger = structlog.get_logger(__name__)

EXPORT_FORMAT_VERSION = 1
TEMPORARY_ID_PREFIXES = ("temp_", "l_")


@dataclass(frozen=True)
class LessonSummary:
    """One row of the lesson list."""

    lesson_id: str
    title: str
    type: str
    duration: str
    is_pinned: bool
    interactive: bool
    completed: bool
    source: str


@dataclass(frozen=True)
class ProfileStatus:
    """Completion summary for one profile."""

    profile: Profile
    points: int
    completed_lesson_ids: tuple[str, ...]
    total_lessons: int


class LessonService:
    """Coordinates lesson content, authoring and progress."""

    def __init__(self, db_path: Path | str) -> None:
        """Initialize service with database path."""
        self.bundled = load_lessons()
        self.store = LessonStore(db_path)

    def list_profiles(self) -> list[Profile]:
        """Return all profiles."""
        return self.store.list_profiles()

    def create_profile(self, name: str) -> Profile:
        """Create profile by name."""
        return self.store.create_profile(name.strip())

    def delete_profile(self, profile_id: int) -> bool:
        """Delete one profile by id."""
        return self.store.delete_profile(profile_id)

    def lessons(self) -> dict[str, Lesson]:
        """Bundled lessons overlaid by stored ones."""
        merged = dict(self.bundled)
        for stored in self.store.list_lesson_documents():
            try:
                merged[stored.lesson_id] = lesson_from_dict(stored.document)
            except ValueError as exc:
                logger.error("stored_lesson_unreadable", lesson_id=stored.lesson_id, error=str(exc))
        return merged

    def get_lesson(self, lesson_id: str) -> Lesson | None:
        """Get lesson by id."""
        stored = self.store.get_lesson_document(lesson_id)
        if stored is not None:
            return lesson_from_dict(stored.document)
        return self.bundled.get(lesson_id)

    def list_lessons(self, profile_id: int | None = None) -> list[LessonSummary]:
        """Return lesson rows, pinned first and then by title."""
        completed = self.store.completed_lesson_ids(profile_id) if profile_id is not None else set()
        stored_ids = {item.lesson_id for item in self.store.list_lesson_documents()}
        rows = [
            LessonSummary(
                lesson_id=lesson.id,
                title=lesson.title,
                type=lesson.type,
                duration=lesson.duration,
                is_pinned=lesson.is_pinned,
                interactive=lesson.universal_config is not None,
                completed=lesson.id in completed,
                source="stored" if lesson.id in stored_ids else "bundled",
            )
            for lesson in self.lessons().values()
        ]
        rows.sort(key=lambda item: (not item.is_pinned, item.title.lower(), item.lesson_id))
        return rows

    def save_lesson(self, lesson: Lesson) -> Lesson:
        """Validate and store a lesson, assigning a permanent id when needed."""
        validate_lesson(lesson)
        previous_id = lesson.id
        if not lesson.id or lesson.id.startswith(TEMPORARY_ID_PREFIXES):
            lesson = replace(lesson, id=f"lesson-{uuid4().hex[:12]}")
        self.store.save_lesson_document(lesson.id, lesson_to_dict(lesson))
        if previous_id:
            self.store.delete_draft(previous_id)
        self.store.delete_draft(lesson.id)
        logger.info("lesson_saved", lesson_id=lesson.id, previous_id=previous_id or None)
        return lesson

    def delete_lesson(self, lesson_id: str) -> bool:
        """Delete a stored lesson; bundled lessons cannot be deleted."""
        return self.store.delete_lesson(lesson_id)

    def set_pinned(self, lesson_id: str, pinned: bool) -> Lesson:
        """Pin or unpin a lesson, storing a copy of bundled lessons."""
        lesson = self.get_lesson(lesson_id)
        if lesson is None:
            raise KeyError(lesson_id)
        updated = replace(lesson, is_pinned=pinned)
        self.store.save_lesson_document(updated.id, lesson_to_dict(updated))
        return updated

    def is_completed(self, profile_id: int, lesson_id: str) -> bool:
        """Return whether a profile has completed a lesson."""
        return lesson_id in self.store.completed_lesson_ids(profile_id)

    def complete_lesson(self, profile_id: int, lesson_id: str) -> bool:
        """Mark a lesson completed once; returns True only on first completion."""
        if self.is_completed(profile_id, lesson_id):
            return False
        self.store.toggle_lesson_completed(profile_id, lesson_id)
        logger.info("lesson_completed", profile_id=profile_id, lesson_id=lesson_id)
        return True

    def toggle_lesson_completed(self, profile_id: int, lesson_id: str) -> bool:
        """Flip completion state; returns whether the lesson is now completed."""
        return self.store.toggle_lesson_completed(profile_id, lesson_id)

    def open_lesson(self, profile_id: int, lesson_id: str) -> LessonSession:
        """Start a live session whose completion is recorded for the profile."""
        lesson = self.get_lesson(lesson_id)
        if lesson is None:
            raise KeyError(lesson_id)
        return LessonSession(lesson, on_complete=lambda done_id: self.complete_lesson(profile_id, done_id))

    def status(self, profile_id: int) -> ProfileStatus:
        """Return points and completed lessons for a profile."""
        profile = self.store.get_profile(profile_id)
        if profile is None:
            raise KeyError(profile_id)
        known = self.lessons()
        completed = sorted(lesson_id for lesson_id in self.store.completed_lesson_ids(profile_id) if lesson_id in known)
        return ProfileStatus(
            profile=profile,
            points=self.store.points(profile_id),
            completed_lesson_ids=tuple(completed),
            total_lessons=len(known),
        )

    def new_editor(self, lesson_id: str | None = None) -> LessonEditor:
        """Editor over a draft, a stored or bundled lesson, or a blank lesson.

        Raises KeyError for unknown ids and ValueError for non-UNIVERSAL lessons.
        """
        if lesson_id is None:
            return LessonEditor()
        draft = self.load_draft(lesson_id)
        if draft is not None:
            return LessonEditor(draft)
        lesson = self.get_lesson(lesson_id)
        if lesson is None:
            raise KeyError(lesson_id)
        return LessonEditor(lesson)

    def save_draft(self, lesson: Lesson) -> None:
        """Keep an unvalidated draft under its lesson id."""
        self.store.save_draft(lesson.id, lesson_to_dict(lesson))

    def load_draft(self, lesson_id: str) -> Lesson | None:
        """Return the draft for a lesson id, if any."""
        stored = self.store.get_draft(lesson_id)
        if stored is None:
            return None
        return lesson_from_dict(stored.document)

    def discard_draft(self, lesson_id: str) -> bool:
        """Drop the draft for a lesson id."""
        return self.store.delete_draft(lesson_id)

    def list_drafts(self) -> list[str]:
        """Return lesson ids that have drafts."""
        return self.store.list_draft_ids()

    def export_lesson(self, lesson_id: str, export_path: Path | str) -> Path:
        """Write one lesson to a JSON file."""
        lesson = self.get_lesson(lesson_id)
        if lesson is None:
            raise KeyError(lesson_id)
        payload = {
            "format_version": EXPORT_FORMAT_VERSION,
            "exported_at": datetime.now(UTC).isoformat(),
            "source": {
                "app_version": __version__,
                "schema_version": SCHEMA_VERSION,
            },
            "lesson": lesson_to_dict(lesson),
        }
        path = Path(export_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        return path

    def import_lesson(self, import_path: Path | str) -> Lesson:
        """Import a lesson from an export file or a bare lesson document."""
        path = Path(import_path)
        raw_obj: object = json.loads(path.read_text(encoding="utf-8-sig"))
        if not isinstance(raw_obj, dict):
            raise ValueError("Import file root must be a JSON object.")
        raw = cast(dict[str, object], raw_obj)

        if "lesson" in raw:
            version = raw.get("format_version", 0)
            if isinstance(version, bool) or not isinstance(version, int):
                raise ValueError("Import file has invalid format_version.")
            if version > EXPORT_FORMAT_VERSION:
                raise ValueError(
                    f"Import file format version {version} is newer than supported {EXPORT_FORMAT_VERSION}."
                )
            document = raw["lesson"]
        else:
            document = raw
        if not isinstance(document, dict):
            raise ValueError("Import file has no lesson object.")
        return self.save_lesson(lesson_from_dict(cast(dict[str, object], document)))

    def close(self) -> None:
        """Close resources."""
        self.store.close()

    def __del__(self) -> None:  # pragma: no cover
        """Best-effort cleanup for test/process teardown."""
        try:
            self.close()
        except Exception:
            pass
