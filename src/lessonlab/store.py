"""SQLite persistence for lesson documents, drafts and learner progress."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

SCHEMA_VERSION = 1
COMPLETION_POINTS = 10


@dataclass(frozen=True)
class Profile:
    """Learner profile record."""

    id: int
    name: str
    points: int = 0


@dataclass(frozen=True)
class StoredDocument:
    """One stored lesson or draft document."""

    lesson_id: str
    document: dict[str, Any]
    updated_at: str


class LessonStore:
    """Database access layer for lessons, drafts and progress."""

    def __init__(self, db_path: Path | str) -> None:
        """Open the database and bring its schema up to date."""
        if isinstance(db_path, Path):
            db_path.parent.mkdir(parents=True, exist_ok=True)
            target = str(db_path)
        else:
            target = db_path
        self._conn = sqlite3.connect(target)
        self._conn.row_factory = sqlite3.Row
        self._apply_migrations()

    def _apply_migrations(self) -> None:
        """Apply forward-only schema migrations to the latest version."""
        current = int(self._conn.execute("PRAGMA user_version").fetchone()[0])
        if current > SCHEMA_VERSION:
            raise RuntimeError(f"Database schema version {current} is newer than supported {SCHEMA_VERSION}.")

        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT NOT NULL
                )
                """)

        for version in range(current + 1, SCHEMA_VERSION + 1):
            if version == 1:
                self._migrate_to_v1()
            with self._conn:
                self._conn.execute(f"PRAGMA user_version = {version}")
                self._conn.execute(
                    "INSERT OR REPLACE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                    (version, _now()),
                )
            logger.info("store_migrated", version=version)

    def _migrate_to_v1(self) -> None:
        """Create lesson, draft, profile and completion tables."""
        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS lessons (
                    id TEXT PRIMARY KEY,
                    document TEXT NOT NULL,
                    is_pinned INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL
                )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS drafts (
                    lesson_id TEXT PRIMARY KEY,
                    document TEXT NOT NULL,
                    saved_at TEXT NOT NULL
                )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS profiles (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    points INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS lesson_completions (
                    profile_id INTEGER NOT NULL,
                    lesson_id TEXT NOT NULL,
                    completed_at TEXT NOT NULL,
                    PRIMARY KEY (profile_id, lesson_id)
                )
                """)

    def save_lesson_document(self, lesson_id: str, document: dict[str, Any]) -> None:
        """Insert or replace a lesson document verbatim."""
        pinned = 1 if document.get("isPinned") else 0
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO lessons (id, document, is_pinned, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    document = excluded.document,
                    is_pinned = excluded.is_pinned,
                    updated_at = excluded.updated_at
                """,
                (lesson_id, json.dumps(document), pinned, _now()),
            )

    def get_lesson_document(self, lesson_id: str) -> StoredDocument | None:
        """Return one stored lesson document."""
        row = self._conn.execute(
            "SELECT id, document, updated_at FROM lessons WHERE id = ?",
            (lesson_id,),
        ).fetchone()
        if row is None:
            return None
        return StoredDocument(
            lesson_id=str(row["id"]),
            document=json.loads(row["document"]),
            updated_at=str(row["updated_at"]),
        )

    def list_lesson_documents(self) -> list[StoredDocument]:
        """Return stored lessons, pinned first."""
        rows = self._conn.execute(
            "SELECT id, document, updated_at FROM lessons ORDER BY is_pinned DESC, id"
        ).fetchall()
        return [
            StoredDocument(
                lesson_id=str(row["id"]),
                document=json.loads(row["document"]),
                updated_at=str(row["updated_at"]),
            )
            for row in rows
        ]

    def delete_lesson(self, lesson_id: str) -> bool:
        """Delete one stored lesson and its completion records."""
        with self._conn:
            self._conn.execute("DELETE FROM lesson_completions WHERE lesson_id = ?", (lesson_id,))
            cursor = self._conn.execute("DELETE FROM lessons WHERE id = ?", (lesson_id,))
        return cursor.rowcount > 0

    def set_pinned(self, lesson_id: str, pinned: bool) -> bool:
        """Update the pinned flag of a stored lesson."""
        stored = self.get_lesson_document(lesson_id)
        if stored is None:
            return False
        document = dict(stored.document)
        document["isPinned"] = pinned
        self.save_lesson_document(lesson_id, document)
        return True

    def save_draft(self, lesson_id: str, document: dict[str, Any]) -> None:
        """Keep the in-progress draft for one lesson id."""
        with self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO drafts (lesson_id, document, saved_at) VALUES (?, ?, ?)",
                (lesson_id, json.dumps(document), _now()),
            )

    def get_draft(self, lesson_id: str) -> StoredDocument | None:
        """Return the draft for one lesson id."""
        row = self._conn.execute(
            "SELECT lesson_id, document, saved_at FROM drafts WHERE lesson_id = ?",
            (lesson_id,),
        ).fetchone()
        if row is None:
            return None
        return StoredDocument(
            lesson_id=str(row["lesson_id"]),
            document=json.loads(row["document"]),
            updated_at=str(row["saved_at"]),
        )

    def list_draft_ids(self) -> list[str]:
        """Return lesson ids with a saved draft, most recent first."""
        rows = self._conn.execute("SELECT lesson_id FROM drafts ORDER BY saved_at DESC, lesson_id").fetchall()
        return [str(row["lesson_id"]) for row in rows]

    def delete_draft(self, lesson_id: str) -> bool:
        """Discard the draft for one lesson id."""
        with self._conn:
            cursor = self._conn.execute("DELETE FROM drafts WHERE lesson_id = ?", (lesson_id,))
        return cursor.rowcount > 0

    def list_profiles(self) -> list[Profile]:
        """Return profiles ordered by name."""
        rows = self._conn.execute("SELECT id, name, points FROM profiles ORDER BY name").fetchall()
        return [_profile(row) for row in rows]

    def create_profile(self, name: str) -> Profile:
        """Create a new profile."""
        with self._conn:
            cursor = self._conn.execute(
                "INSERT INTO profiles (name, points, created_at) VALUES (?, 0, ?)",
                (name, _now()),
            )
        row_id = cursor.lastrowid
        if row_id is None:
            raise RuntimeError("Could not create profile.")
        return Profile(id=int(row_id), name=name)

    def get_profile(self, profile_id: int) -> Profile | None:
        """Get one profile by id."""
        row = self._conn.execute("SELECT id, name, points FROM profiles WHERE id = ?", (profile_id,)).fetchone()
        if row is None:
            return None
        return _profile(row)

    def delete_profile(self, profile_id: int) -> bool:
        """Delete a profile and its completion records."""
        with self._conn:
            self._conn.execute("DELETE FROM lesson_completions WHERE profile_id = ?", (profile_id,))
            cursor = self._conn.execute("DELETE FROM profiles WHERE id = ?", (profile_id,))
        return cursor.rowcount > 0

    def toggle_lesson_completed(self, profile_id: int, lesson_id: str) -> bool:
        """Flip completion for one lesson; returns whether it is now completed.

        Completing awards COMPLETION_POINTS and un-completing takes them back.
        """
        row = self._conn.execute(
            "SELECT 1 FROM lesson_completions WHERE profile_id = ? AND lesson_id = ?",
            (profile_id, lesson_id),
        ).fetchone()
        with self._conn:
            if row is None:
                self._conn.execute(
                    "INSERT INTO lesson_completions (profile_id, lesson_id, completed_at) VALUES (?, ?, ?)",
                    (profile_id, lesson_id, _now()),
                )
                delta = COMPLETION_POINTS
            else:
                self._conn.execute(
                    "DELETE FROM lesson_completions WHERE profile_id = ? AND lesson_id = ?",
                    (profile_id, lesson_id),
                )
                delta = -COMPLETION_POINTS
            self._conn.execute("UPDATE profiles SET points = points + ? WHERE id = ?", (delta, profile_id))
        return row is None

    def completed_lesson_ids(self, profile_id: int) -> set[str]:
        """Return lesson ids completed by a profile."""
        rows = self._conn.execute(
            "SELECT lesson_id FROM lesson_completions WHERE profile_id = ?",
            (profile_id,),
        ).fetchall()
        return {str(row["lesson_id"]) for row in rows}

    def points(self, profile_id: int) -> int:
        """Return the points balance of a profile."""
        row = self._conn.execute("SELECT points FROM profiles WHERE id = ?", (profile_id,)).fetchone()
        if row is None:
            raise KeyError(profile_id)
        return int(row["points"])

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __del__(self) -> None:  # pragma: no cover
        """Best-effort connection cleanup."""
        try:
            self.close()
        except Exception:
            pass


def _profile(row: sqlite3.Row) -> Profile:
    return Profile(id=int(row["id"]), name=str(row["name"]), points=int(row["points"]))


def _now() -> str:
    return datetime.now(UTC).isoformat()
