"""
Routine Tracker — SQLite store.

The Memory pillar: profiles, categories, routine templates and generated
tasks persist in SQLite across days, surviving bot restarts.

Every read and write is filtered by the owning user id. The partial unique
index on tasks(user_id, template_id, scheduled_date) for non-adhoc rows is
the final guard against generating a routine twice for the same day.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterator

from src.core.errors import ValidationError
from src.data.models import (
    SLOT_ORDER,
    Category,
    Frequency,
    Profile,
    TaskInstance,
    TaskStatus,
    TaskTemplate,
    TimeSlot,
    frequency_config,
    parse_frequency,
)
from src.ports.store_port import StoreError

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = (
    ("Health", "#22c55e", "heart"),
    ("Work", "#3b82f6", "briefcase"),
    ("Home", "#f59e0b", "home"),
    ("Learning", "#a855f7", "book"),
)

_PROFILE_FIELDS = {
    "display_name", "work_start", "work_end", "rest_day_index",
    "strict_mode", "timezone", "onboarding_completed",
}
_CATEGORY_FIELDS = {"name", "color", "icon", "sort_order"}
_TEMPLATE_FIELDS = {
    "title", "description", "category_id", "frequency", "time_slot", "is_active",
}


class TrackerDB:
    """SQLite-backed implementation of the TrackerStore port."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection whose statements commit or roll back together."""
        conn = self._connect()
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            logger.error("Store operation failed: %s", exc)
            raise StoreError(str(exc)) from exc
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Create tables and indexes if they don't exist, and migrate schema."""
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS profiles (
                    user_id              INTEGER PRIMARY KEY,
                    display_name         TEXT    NOT NULL,
                    work_start           TEXT    NOT NULL DEFAULT '09:00',
                    work_end             TEXT    NOT NULL DEFAULT '18:00',
                    rest_day_index       INTEGER NOT NULL DEFAULT 0,
                    strict_mode          INTEGER NOT NULL DEFAULT 0,
                    timezone             TEXT    NOT NULL DEFAULT 'Asia/Bangkok',
                    onboarding_completed INTEGER NOT NULL DEFAULT 0,
                    created_at           TEXT    NOT NULL,
                    updated_at           TEXT    NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS categories (
                    id          INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id     INTEGER NOT NULL,
                    name        TEXT    NOT NULL,
                    color       TEXT    NOT NULL DEFAULT '#6366f1',
                    icon        TEXT,
                    sort_order  INTEGER NOT NULL DEFAULT 0,
                    is_default  INTEGER NOT NULL DEFAULT 0,
                    created_at  TEXT    NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS task_templates (
                    id               INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id          INTEGER NOT NULL,
                    category_id      INTEGER REFERENCES categories(id) ON DELETE SET NULL,
                    title            TEXT    NOT NULL,
                    description      TEXT,
                    frequency_type   TEXT    NOT NULL,
                    frequency_config TEXT    NOT NULL DEFAULT '{}',
                    time_slot        TEXT    NOT NULL DEFAULT 'anytime',
                    is_active        INTEGER NOT NULL DEFAULT 1,
                    created_at       TEXT    NOT NULL,
                    updated_at       TEXT    NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id              INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id         INTEGER NOT NULL,
                    template_id     INTEGER REFERENCES task_templates(id) ON DELETE SET NULL,
                    title           TEXT    NOT NULL,
                    scheduled_date  TEXT    NOT NULL,
                    time_slot       TEXT    NOT NULL DEFAULT 'anytime',
                    status          TEXT    NOT NULL DEFAULT 'pending'
                                    CHECK (status IN ('pending', 'completed', 'skipped')),
                    is_adhoc        INTEGER NOT NULL DEFAULT 0,
                    completed_at    TEXT,
                    created_at      TEXT    NOT NULL
                )
            """)
            conn.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS ux_tasks_template_day
                    ON tasks (user_id, template_id, scheduled_date)
                    WHERE is_adhoc = 0
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS ix_tasks_user_day ON tasks (user_id, scheduled_date)"
            )
            # Migrate existing DBs: add new columns if missing
            existing_cols = {
                row[1] for row in conn.execute("PRAGMA table_info(task_templates)").fetchall()
            }
            if "description" not in existing_cols:
                conn.execute("ALTER TABLE task_templates ADD COLUMN description TEXT")
        logger.debug("Tracker tables initialized at %s", self._db_path)

    # ------------------------------------------------------------------
    # Row converters
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_profile(row: sqlite3.Row) -> Profile:
        return Profile(
            user_id=row["user_id"],
            display_name=row["display_name"],
            work_start=row["work_start"],
            work_end=row["work_end"],
            rest_day_index=row["rest_day_index"],
            strict_mode=bool(row["strict_mode"]),
            timezone=row["timezone"],
            onboarding_completed=bool(row["onboarding_completed"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_category(row: sqlite3.Row) -> Category:
        return Category(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            color=row["color"],
            icon=row["icon"],
            sort_order=row["sort_order"],
            is_default=bool(row["is_default"]),
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_template(row: sqlite3.Row) -> TaskTemplate:
        frequency: Frequency | None
        try:
            frequency = parse_frequency(
                row["frequency_type"], json.loads(row["frequency_config"] or "{}"),
            )
        except (ValidationError, json.JSONDecodeError) as exc:
            logger.warning("Routine #%d has an unreadable frequency: %s", row["id"], exc)
            frequency = None
        return TaskTemplate(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            frequency=frequency,
            time_slot=TimeSlot(row["time_slot"]),
            category_id=row["category_id"],
            description=row["description"],
            is_active=bool(row["is_active"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_instance(row: sqlite3.Row) -> TaskInstance:
        completed_at = row["completed_at"]
        return TaskInstance(
            id=row["id"],
            user_id=row["user_id"],
            template_id=row["template_id"],
            title=row["title"],
            scheduled_date=date.fromisoformat(row["scheduled_date"]),
            time_slot=TimeSlot(row["time_slot"]),
            status=TaskStatus(row["status"]),
            is_adhoc=bool(row["is_adhoc"]),
            completed_at=datetime.fromisoformat(completed_at) if completed_at else None,
            created_at=row["created_at"],
        )

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def get_profile(self, user_id: int) -> Profile | None:
        """Fetch a user's profile, or None if onboarding never ran."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM profiles WHERE user_id = ?", (user_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_profile(row)

    def list_profiles(self, onboarded_only: bool = True) -> list[Profile]:
        query = "SELECT * FROM profiles"
        if onboarded_only:
            query += " WHERE onboarding_completed = 1"
        query += " ORDER BY created_at"
        with self._transaction() as conn:
            rows = conn.execute(query).fetchall()
        return [self._row_to_profile(r) for r in rows]

    def upsert_profile(self, profile: Profile) -> Profile:
        """Insert the profile, or overwrite its settings if it already exists."""
        now = datetime.now().isoformat()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO profiles
                    (user_id, display_name, work_start, work_end, rest_day_index,
                     strict_mode, timezone, onboarding_completed, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    display_name = excluded.display_name,
                    work_start = excluded.work_start,
                    work_end = excluded.work_end,
                    rest_day_index = excluded.rest_day_index,
                    strict_mode = excluded.strict_mode,
                    timezone = excluded.timezone,
                    onboarding_completed = excluded.onboarding_completed,
                    updated_at = excluded.updated_at
                """,
                (
                    profile.user_id, profile.display_name, profile.work_start,
                    profile.work_end, profile.rest_day_index, int(profile.strict_mode),
                    profile.timezone, int(profile.onboarding_completed), now, now,
                ),
            )
            row = conn.execute(
                "SELECT * FROM profiles WHERE user_id = ?", (profile.user_id,)
            ).fetchone()
        logger.info("Profile saved for user %d", profile.user_id)
        return self._row_to_profile(row)

    def update_profile(self, user_id: int, **fields: Any) -> Profile | None:
        """Update selected profile settings. Returns None if there is no profile."""
        unknown = set(fields) - _PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Unknown profile fields: {sorted(unknown)}")
        if not fields:
            return self.get_profile(user_id)

        values = {k: int(v) if isinstance(v, bool) else v for k, v in fields.items()}
        assignments = ", ".join(f"{k} = ?" for k in values)
        params = [*values.values(), datetime.now().isoformat(), user_id]
        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE profiles SET {assignments}, updated_at = ? WHERE user_id = ?",
                params,
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute(
                "SELECT * FROM profiles WHERE user_id = ?", (user_id,)
            ).fetchone()
        logger.info("Profile updated for user %d: %s", user_id, ", ".join(sorted(fields)))
        return self._row_to_profile(row)

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def add_category(
        self,
        user_id: int,
        name: str,
        color: str = "#6366f1",
        icon: str | None = None,
        sort_order: int = 0,
        is_default: bool = False,
    ) -> Category:
        now = datetime.now().isoformat()
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO categories
                    (user_id, name, color, icon, sort_order, is_default, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (user_id, name, color, icon, sort_order, int(is_default), now),
            )
            category_id = cursor.lastrowid
        logger.info("Category added: #%d '%s' for user %d", category_id, name, user_id)
        return Category(
            id=category_id,
            user_id=user_id,
            name=name,
            color=color,
            icon=icon,
            sort_order=sort_order,
            is_default=is_default,
            created_at=now,
        )

    def seed_default_categories(self, user_id: int) -> int:
        """Create the default categories once per user. Returns how many were added."""
        now = datetime.now().isoformat()
        with self._transaction() as conn:
            existing = conn.execute(
                "SELECT 1 FROM categories WHERE user_id = ? AND is_default = 1",
                (user_id,),
            ).fetchone()
            if existing is not None:
                return 0
            conn.executemany(
                """
                INSERT INTO categories
                    (user_id, name, color, icon, sort_order, is_default, created_at)
                VALUES (?, ?, ?, ?, ?, 1, ?)
                """,
                [
                    (user_id, name, color, icon, i, now)
                    for i, (name, color, icon) in enumerate(DEFAULT_CATEGORIES)
                ],
            )
        logger.info("Default categories created for user %d", user_id)
        return len(DEFAULT_CATEGORIES)

    def get_category(self, user_id: int, category_id: int) -> Category | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM categories WHERE id = ? AND user_id = ?",
                (category_id, user_id),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_category(row)

    def list_categories(self, user_id: int) -> list[Category]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM categories WHERE user_id = ? ORDER BY sort_order, id",
                (user_id,),
            ).fetchall()
        return [self._row_to_category(r) for r in rows]

    def update_category(self, user_id: int, category_id: int, **fields: Any) -> bool:
        unknown = set(fields) - _CATEGORY_FIELDS
        if unknown:
            raise ValueError(f"Unknown category fields: {sorted(unknown)}")
        if not fields:
            return False
        assignments = ", ".join(f"{k} = ?" for k in fields)
        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE categories SET {assignments} WHERE id = ? AND user_id = ?",
                [*fields.values(), category_id, user_id],
            )
        return cursor.rowcount > 0

    def delete_category(self, user_id: int, category_id: int) -> bool:
        """Delete a category. Its routines stay, uncategorized."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM categories WHERE id = ? AND user_id = ?",
                (category_id, user_id),
            )
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Category #%d deleted for user %d", category_id, user_id)
        return deleted

    # ------------------------------------------------------------------
    # Routine templates
    # ------------------------------------------------------------------

    def add_template(
        self,
        user_id: int,
        title: str,
        frequency: Frequency,
        time_slot: TimeSlot = TimeSlot.ANYTIME,
        category_id: int | None = None,
        description: str | None = None,
    ) -> TaskTemplate:
        """Insert a new active routine."""
        now = datetime.now().isoformat()
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO task_templates
                    (user_id, category_id, title, description, frequency_type,
                     frequency_config, time_slot, is_active, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, 1, ?, ?)
                """,
                (
                    user_id, category_id, title, description,
                    frequency.frequency_type, json.dumps(frequency_config(frequency)),
                    time_slot.value, now, now,
                ),
            )
            template_id = cursor.lastrowid
        logger.info(
            "Routine added: #%d '%s' (%s) for user %d",
            template_id, title, frequency.frequency_type, user_id,
        )
        return TaskTemplate(
            id=template_id,
            user_id=user_id,
            title=title,
            frequency=frequency,
            time_slot=time_slot,
            category_id=category_id,
            description=description,
            is_active=True,
            created_at=now,
            updated_at=now,
        )

    def get_template(self, user_id: int, template_id: int) -> TaskTemplate | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM task_templates WHERE id = ? AND user_id = ?",
                (template_id, user_id),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_template(row)

    def list_templates(self, user_id: int, active_only: bool = False) -> list[TaskTemplate]:
        """List a user's routines, newest first."""
        query = "SELECT * FROM task_templates WHERE user_id = ?"
        if active_only:
            query += " AND is_active = 1"
        query += " ORDER BY created_at DESC, id DESC"
        with self._transaction() as conn:
            rows = conn.execute(query, (user_id,)).fetchall()
        return [self._row_to_template(r) for r in rows]

    def list_active_templates(self, user_id: int) -> list[TaskTemplate]:
        return self.list_templates(user_id, active_only=True)

    def update_template(self, user_id: int, template_id: int, **fields: Any) -> TaskTemplate | None:
        """Update selected routine fields. Already generated tasks are not touched."""
        unknown = set(fields) - _TEMPLATE_FIELDS
        if unknown:
            raise ValueError(f"Unknown routine fields: {sorted(unknown)}")

        values: dict[str, Any] = {}
        for key, value in fields.items():
            if key == "frequency":
                values["frequency_type"] = value.frequency_type
                values["frequency_config"] = json.dumps(frequency_config(value))
            elif key == "time_slot":
                values["time_slot"] = TimeSlot(value).value
            elif key == "is_active":
                values["is_active"] = int(value)
            else:
                values[key] = value

        assignments = ", ".join(f"{k} = ?" for k in values)
        if assignments:
            assignments += ", "
        params = [*values.values(), datetime.now().isoformat(), template_id, user_id]
        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE task_templates SET {assignments}updated_at = ? "
                "WHERE id = ? AND user_id = ?",
                params,
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute(
                "SELECT * FROM task_templates WHERE id = ?", (template_id,)
            ).fetchone()
        logger.info("Routine #%d updated: %s", template_id, ", ".join(sorted(fields)))
        return self._row_to_template(row)

    def delete_template(self, user_id: int, template_id: int) -> bool:
        """Permanently delete a routine. Its generated tasks are kept."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM task_templates WHERE id = ? AND user_id = ?",
                (template_id, user_id),
            )
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Routine #%d deleted for user %d", template_id, user_id)
        return deleted

    # ------------------------------------------------------------------
    # Task instances
    # ------------------------------------------------------------------

    def insert_instances(self, batch: list[TaskInstance]) -> list[TaskInstance]:
        """Insert all tasks in one transaction; any failure inserts none of them.

        Raises StoreError if a non-adhoc task duplicates (user, routine, date).
        """
        if not batch:
            return []
        now = datetime.now().isoformat()
        inserted: list[TaskInstance] = []
        with self._transaction() as conn:
            for task in batch:
                cursor = conn.execute(
                    """
                    INSERT INTO tasks
                        (user_id, template_id, title, scheduled_date, time_slot,
                         status, is_adhoc, completed_at, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        task.user_id, task.template_id, task.title,
                        task.scheduled_date.isoformat(), task.time_slot.value,
                        task.status.value, int(task.is_adhoc),
                        task.completed_at.isoformat() if task.completed_at else None,
                        now,
                    ),
                )
                inserted.append(
                    TaskInstance(
                        id=cursor.lastrowid,
                        user_id=task.user_id,
                        template_id=task.template_id,
                        title=task.title,
                        scheduled_date=task.scheduled_date,
                        time_slot=task.time_slot,
                        status=task.status,
                        is_adhoc=task.is_adhoc,
                        completed_at=task.completed_at,
                        created_at=now,
                    )
                )
        logger.debug("Inserted %d task(s)", len(inserted))
        return inserted

    def get_instance(self, user_id: int, task_id: int) -> TaskInstance | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM tasks WHERE id = ? AND user_id = ?",
                (task_id, user_id),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_instance(row)

    def list_instances(
        self, user_id: int, scheduled_date: date, is_adhoc: bool | None = None,
    ) -> list[TaskInstance]:
        """Return a user's tasks for one day, ordered by time slot."""
        query = "SELECT * FROM tasks WHERE user_id = ? AND scheduled_date = ?"
        params: list = [user_id, scheduled_date.isoformat()]
        if is_adhoc is not None:
            query += " AND is_adhoc = ?"
            params.append(int(is_adhoc))
        query += " ORDER BY id"
        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
        tasks = [self._row_to_instance(r) for r in rows]
        tasks.sort(key=lambda t: SLOT_ORDER[t.time_slot])
        return tasks

    def update_instance_status(
        self,
        user_id: int,
        task_id: int,
        status: TaskStatus,
        completed_at: datetime | None,
    ) -> TaskInstance | None:
        """Set status and completed_at on one owned task. None if no such task."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE tasks SET status = ?, completed_at = ? WHERE id = ? AND user_id = ?",
                (
                    status.value,
                    completed_at.isoformat() if completed_at else None,
                    task_id,
                    user_id,
                ),
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return self._row_to_instance(row)

    def list_instances_in_range(
        self, user_id: int, start_date: date, end_date: date,
    ) -> list[tuple[date, TaskStatus]]:
        """Return (scheduled_date, status) for every task in [start, end]."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT scheduled_date, status FROM tasks
                WHERE user_id = ? AND scheduled_date >= ? AND scheduled_date <= ?
                ORDER BY scheduled_date
                """,
                (user_id, start_date.isoformat(), end_date.isoformat()),
            ).fetchall()
        return [
            (date.fromisoformat(r["scheduled_date"]), TaskStatus(r["status"]))
            for r in rows
        ]

    def list_overdue_instances(
        self, user_id: int, before: date, limit: int = 10,
    ) -> list[TaskInstance]:
        """Pending tasks scheduled before ``before``, most recent first."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM tasks
                WHERE user_id = ? AND status = 'pending' AND scheduled_date < ?
                ORDER BY scheduled_date DESC, id DESC
                LIMIT ?
                """,
                (user_id, before.isoformat(), limit),
            ).fetchall()
        return [self._row_to_instance(r) for r in rows]
