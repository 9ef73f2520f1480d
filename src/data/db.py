"""
Discipline Coach — SQLite storage.

The store is the only durable state. Sweeps are stateless and may overlap,
so every lifecycle transition here is a single conditional statement
(compare-and-set); nothing reads a value, decides in Python, then writes it.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from src.data.models import Task, User, UserStats

logger = logging.getLogger(__name__)

# (date, from HH:MM, to HH:MM), inclusive. Built by src.core.local_time.window_segments
Segment = tuple[str, str, str]


def _utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class _SQLiteStore:
    """Shared connection handling for the table-specific stores."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        # Generous busy timeout: overlapping sweeps queue on the write lock
        conn = sqlite3.connect(self._db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        raise NotImplementedError


class UserDB(_SQLiteStore):
    """Chat users and their UTC offsets."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
                    chat_id            TEXT    NOT NULL UNIQUE,
                    utc_offset_minutes INTEGER NOT NULL DEFAULT 0
                        CHECK (utc_offset_minutes BETWEEN -720 AND 840),
                    ai_calls_today     INTEGER NOT NULL DEFAULT 0,
                    ai_calls_date      TEXT,
                    created_at         TEXT    NOT NULL
                )
            """)
            # Migrate existing DBs: the help counter came later
            existing_cols = {
                row[1] for row in conn.execute("PRAGMA table_info(users)").fetchall()
            }
            if "stuck_calls_today" not in existing_cols:
                conn.execute(
                    "ALTER TABLE users ADD COLUMN stuck_calls_today INTEGER NOT NULL DEFAULT 0"
                )
            if "stuck_calls_date" not in existing_cols:
                conn.execute("ALTER TABLE users ADD COLUMN stuck_calls_date TEXT")
        logger.debug("Users table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            chat_id=row["chat_id"],
            utc_offset_minutes=row["utc_offset_minutes"],
            ai_calls_today=row["ai_calls_today"],
            ai_calls_date=row["ai_calls_date"],
            stuck_calls_today=row["stuck_calls_today"],
            stuck_calls_date=row["stuck_calls_date"],
            created_at=row["created_at"],
        )

    def get_or_create(self, chat_id: str, utc_offset_minutes: int | None = None) -> User:
        """Return the user for a chat handle, registering it on first contact."""
        if utc_offset_minutes is None:
            from src.config import settings
            utc_offset_minutes = settings.DEFAULT_UTC_OFFSET_MINUTES

        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO users (chat_id, utc_offset_minutes, created_at)
                VALUES (?, ?, ?)
                ON CONFLICT(chat_id) DO NOTHING
                """,
                (str(chat_id), utc_offset_minutes, _utc_iso()),
            )
            if cursor.rowcount:
                logger.info("User registered: chat %s", chat_id)
            row = conn.execute(
                "SELECT * FROM users WHERE chat_id = ?", (str(chat_id),)
            ).fetchone()
        return self._row_to_user(row)

    def get_user(self, user_id: int) -> User | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def list_users(self) -> list[User]:
        """Return all registered users."""
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY id").fetchall()
        return [self._row_to_user(r) for r in rows]

    def set_utc_offset(self, user_id: int, offset_minutes: int) -> None:
        """Store a pre-validated offset. The CHECK constraint backs the range."""
        with self._connect() as conn:
            conn.execute(
                "UPDATE users SET utc_offset_minutes = ? WHERE id = ?",
                (offset_minutes, user_id),
            )
        logger.info("User %d offset set to %d minutes", user_id, offset_minutes)


# Counter/date column pairs on the users table, one per independent budget
_QUOTA_COLUMNS = {
    "ai": ("ai_calls_today", "ai_calls_date"),
    "stuck": ("stuck_calls_today", "stuck_calls_date"),
}


class QuotaLedger(_SQLiteStore):
    """Per-user, per-local-day call budget.

    reserve() is one conditional UPDATE: it resets the counter when the
    stored date is not today, otherwise increments only while below the
    limit. Concurrent callers serialize on SQLite's write lock, so exactly
    `limit` reservations can succeed per user-day.
    """

    def __init__(self, kind: str, limit: int, db_path: str | None = None) -> None:
        if kind not in _QUOTA_COLUMNS:
            raise ValueError(f"Unknown quota kind {kind!r}. Supported: {', '.join(_QUOTA_COLUMNS)}")
        self.kind = kind
        self.limit = limit
        self._counter, self._date = _QUOTA_COLUMNS[kind]
        super().__init__(db_path)

    def _init_db(self) -> None:
        # Columns live on the users table
        UserDB(self._db_path)

    def reserve(self, user_id: int, local_date: str) -> bool:
        """Take one unit of today's budget. False means none left today."""
        if self.limit <= 0:
            return False
        with self._connect() as conn:
            cursor = conn.execute(
                f"""
                UPDATE users
                SET {self._counter} = CASE
                        WHEN {self._date} IS ? THEN {self._counter} + 1
                        ELSE 1
                    END,
                    {self._date} = ?
                WHERE id = ?
                  AND ({self._date} IS NOT ? OR {self._counter} < ?)
                """,
                (local_date, local_date, user_id, local_date, self.limit),
            )
        reserved = cursor.rowcount > 0
        if not reserved:
            logger.info("%s quota exhausted for user %d on %s", self.kind, user_id, local_date)
        return reserved

    def rollback(self, user_id: int) -> None:
        """Give back one unit after a failed generation. Floors at zero."""
        with self._connect() as conn:
            conn.execute(
                f"UPDATE users SET {self._counter} = MAX({self._counter} - 1, 0) WHERE id = ?",
                (user_id,),
            )
        logger.info("%s quota rolled back for user %d", self.kind, user_id)

    def used(self, user_id: int, local_date: str) -> int:
        """Units consumed on local_date (0 if the counter belongs to another day)."""
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {self._counter} AS used, {self._date} AS day FROM users WHERE id = ?",
                (user_id,),
            ).fetchone()
        if row is None or row["day"] != local_date:
            return 0
        return row["used"]


class TaskDB(_SQLiteStore):
    """Planned tasks and their daily lifecycle."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id            INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id       INTEGER NOT NULL REFERENCES users(id),
                    task_date     TEXT    NOT NULL,
                    task_time     TEXT    NOT NULL,
                    task_name     TEXT    NOT NULL,
                    reminder_sent INTEGER NOT NULL DEFAULT 0,
                    user_response TEXT,
                    responded_at  TEXT,
                    praised       INTEGER NOT NULL DEFAULT 0,
                    scolded       INTEGER NOT NULL DEFAULT 0,
                    created_at    TEXT    NOT NULL,
                    CHECK (NOT (praised = 1 AND scolded = 1))
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_tasks_user_date ON tasks (user_id, task_date)"
            )
        logger.debug("Tasks table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=row["id"],
            user_id=row["user_id"],
            task_date=row["task_date"],
            task_time=row["task_time"],
            task_name=row["task_name"],
            reminder_sent=bool(row["reminder_sent"]),
            user_response=row["user_response"],
            responded_at=row["responded_at"],
            praised=bool(row["praised"]),
            scolded=bool(row["scolded"]),
        )

    @staticmethod
    def _segments_clause(segments: list[Segment]) -> tuple[str, list]:
        """Build '(task_date = ? AND task_time BETWEEN ? AND ?) OR ...'."""
        clause = " OR ".join("(task_date = ? AND task_time BETWEEN ? AND ?)" for _ in segments)
        params: list = []
        for day, lo, hi in segments:
            params.extend([day, lo, hi])
        return f"({clause})", params

    # -- planning ---------------------------------------------------------

    def add_tasks(
        self, user_id: int, task_date: str, entries: list[tuple[str, str]],
    ) -> list[Task]:
        """Insert (HH:MM, name) entries for one local date."""
        created: list[Task] = []
        now = _utc_iso()
        with self._connect() as conn:
            for task_time, task_name in entries:
                cursor = conn.execute(
                    """
                    INSERT INTO tasks (user_id, task_date, task_time, task_name, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (user_id, task_date, task_time, task_name, now),
                )
                created.append(Task(
                    id=cursor.lastrowid,
                    user_id=user_id,
                    task_date=task_date,
                    task_time=task_time,
                    task_name=task_name,
                ))
        logger.info("Saved %d tasks for user %d on %s", len(created), user_id, task_date)
        return created

    def get_task(self, task_id: int) -> Task | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def list_for_date(self, user_id: int, task_date: str) -> list[Task]:
        """Tasks for one local date in schedule order."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM tasks
                WHERE user_id = ? AND task_date = ?
                ORDER BY task_time ASC, id ASC
                """,
                (user_id, task_date),
            ).fetchall()
        return [self._row_to_task(r) for r in rows]

    def update_task(self, task_id: int, task_time: str, task_name: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE tasks SET task_time = ?, task_name = ? WHERE id = ?",
                (task_time, task_name, task_id),
            )
        updated = cursor.rowcount > 0
        if updated:
            logger.info("Task #%d updated to %s '%s'", task_id, task_time, task_name)
        return updated

    def delete_task(self, task_id: int) -> bool:
        """Permanently delete a task the user removed from tomorrow's plan."""
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Task #%d deleted", task_id)
        return deleted

    # -- lifecycle transitions --------------------------------------------

    def claim_reminders(self, user_id: int, segments: list[Segment]) -> list[Task]:
        """Mark due, unreminded tasks as reminded and return only the rows changed.

        A row already claimed by an overlapping sweep fails the
        reminder_sent = 0 predicate and is not returned here.
        """
        if not segments:
            return []
        window, params = self._segments_clause(segments)
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                UPDATE tasks SET reminder_sent = 1
                WHERE user_id = ?
                  AND reminder_sent = 0
                  AND praised = 0 AND scolded = 0
                  AND {window}
                RETURNING *
                """,
                [user_id, *params],
            ).fetchall()
        tasks = sorted((self._row_to_task(r) for r in rows), key=lambda t: (t.task_date, t.task_time))
        if tasks:
            logger.info("Claimed %d reminders for user %d", len(tasks), user_id)
        return tasks

    def feedback_candidates(self, user_id: int, segments: list[Segment]) -> list[Task]:
        """Reminded, non-terminal tasks whose time falls in the look-back window.

        Selection only; the terminal write in mark_terminal() is the claim.
        """
        if not segments:
            return []
        window, params = self._segments_clause(segments)
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM tasks
                WHERE user_id = ?
                  AND reminder_sent = 1
                  AND praised = 0 AND scolded = 0
                  AND {window}
                ORDER BY task_date, task_time
                """,
                [user_id, *params],
            ).fetchall()
        return [self._row_to_task(r) for r in rows]

    def mark_terminal(self, task_id: int, praised: bool) -> bool:
        """Move a reminded task to Praised or Scolded. True only for the winner."""
        column = "praised" if praised else "scolded"
        with self._connect() as conn:
            cursor = conn.execute(
                f"""
                UPDATE tasks SET {column} = 1
                WHERE id = ? AND reminder_sent = 1 AND praised = 0 AND scolded = 0
                """,
                (task_id,),
            )
        won = cursor.rowcount > 0
        if won:
            logger.info("Task #%d -> %s", task_id, column)
        return won

    def record_response(
        self, user_id: int, task_date: str, response: str, responded_at: str | None = None,
    ) -> Task | None:
        """Attach a 'doing …' reply to the earliest reminded task still awaiting one.

        Returns the updated task, or None if nothing is pending.
        """
        responded_at = responded_at or _utc_iso()
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE tasks
                SET user_response = ?, responded_at = ?
                WHERE id = (
                    SELECT id FROM tasks
                    WHERE user_id = ? AND task_date = ?
                      AND reminder_sent = 1
                      AND user_response IS NULL
                      AND praised = 0 AND scolded = 0
                    ORDER BY task_time ASC, id ASC
                    LIMIT 1
                )
                AND user_response IS NULL
                RETURNING *
                """,
                (response, responded_at, user_id, task_date),
            ).fetchone()
        if row is None:
            return None
        task = self._row_to_task(row)
        logger.info("Response recorded on task #%d", task.id)
        return task

    def rollover(
        self, user_id: int, before_date: str, awaiting: list[Segment] | None = None,
    ) -> int:
        """Reset lifecycle fields on tasks dated strictly before before_date.

        Reminded, non-terminal tasks inside the `awaiting` segments are left
        alone: their feedback is still due. Rows already at their initial
        state are not touched, so re-running is a no-op.
        """
        keep, keep_params = "", []
        if awaiting:
            window, keep_params = self._segments_clause(awaiting)
            keep = f"AND NOT (reminder_sent = 1 AND praised = 0 AND scolded = 0 AND {window})"
        with self._connect() as conn:
            cursor = conn.execute(
                f"""
                UPDATE tasks
                SET reminder_sent = 0, user_response = NULL, responded_at = NULL,
                    praised = 0, scolded = 0
                WHERE user_id = ? AND task_date < ?
                  AND (reminder_sent = 1 OR user_response IS NOT NULL
                       OR responded_at IS NOT NULL OR praised = 1 OR scolded = 1)
                  {keep}
                """,
                (user_id, before_date, *keep_params),
            )
        if cursor.rowcount:
            logger.info("Rolled over %d tasks for user %d before %s", cursor.rowcount, user_id, before_date)
        return cursor.rowcount

    def count_for_date(self, user_id: int, task_date: str) -> tuple[int, int]:
        """Return (planned, completed) for one local date."""
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS planned, COALESCE(SUM(praised), 0) AS completed
                FROM tasks WHERE user_id = ? AND task_date = ?
                """,
                (user_id, task_date),
            ).fetchone()
        return row["planned"], row["completed"]


class StatsDB(_SQLiteStore):
    """Streak counters, one row per user."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_stats (
                    user_id           INTEGER PRIMARY KEY REFERENCES users(id),
                    current_streak    INTEGER NOT NULL DEFAULT 0,
                    longest_streak    INTEGER NOT NULL DEFAULT 0,
                    last_success_date TEXT,
                    last_summary_date TEXT
                )
            """)
        logger.debug("User stats table initialized at %s", self._db_path)

    def get_stats(self, user_id: int) -> UserStats:
        """Return the user's stats, or zeroed stats if none were saved yet."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM user_stats WHERE user_id = ?", (user_id,)
            ).fetchone()
        if row is None:
            return UserStats(user_id=user_id)
        return UserStats(
            user_id=row["user_id"],
            current_streak=row["current_streak"],
            longest_streak=row["longest_streak"],
            last_success_date=row["last_success_date"],
            last_summary_date=row["last_summary_date"],
        )

    def save_summary(self, stats: UserStats) -> bool:
        """Upsert all fields together, only if last_summary_date moves forward.

        False means another invocation already summarized that day.
        """
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO user_stats
                    (user_id, current_streak, longest_streak, last_success_date, last_summary_date)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    current_streak    = excluded.current_streak,
                    longest_streak    = excluded.longest_streak,
                    last_success_date = excluded.last_success_date,
                    last_summary_date = excluded.last_summary_date
                WHERE user_stats.last_summary_date IS NULL
                   OR user_stats.last_summary_date < excluded.last_summary_date
                """,
                (
                    stats.user_id, stats.current_streak, stats.longest_streak,
                    stats.last_success_date, stats.last_summary_date,
                ),
            )
        return cursor.rowcount > 0


class EventDB(_SQLiteStore):
    """Idempotency guard: append-only (user, event type, local date) records."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_events (
                    user_id    INTEGER NOT NULL REFERENCES users(id),
                    event_type TEXT    NOT NULL,
                    event_date TEXT    NOT NULL,
                    created_at TEXT    NOT NULL,
                    PRIMARY KEY (user_id, event_type, event_date)
                )
            """)
        logger.debug("User events table initialized at %s", self._db_path)

    def claim(self, user_id: int, event_type: str, event_date: str) -> bool:
        """Record the event. True only for the first caller on that local date."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO user_events (user_id, event_type, event_date, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT DO NOTHING
                """,
                (user_id, event_type, event_date, _utc_iso()),
            )
        return cursor.rowcount > 0

    def has_fired(self, user_id: int, event_type: str, event_date: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT 1 FROM user_events
                WHERE user_id = ? AND event_type = ? AND event_date = ?
                """,
                (user_id, event_type, event_date),
            ).fetchone()
        return row is not None


@dataclass
class Stores:
    """All stores over one database file, handed to sweeps and handlers."""

    users: UserDB
    tasks: TaskDB
    stats: StatsDB
    events: EventDB
    ai_quota: QuotaLedger
    stuck_quota: QuotaLedger

    @classmethod
    def open(cls, db_path: str | None = None) -> Stores:
        from src.config import settings

        if db_path is None:
            db_path = settings.DATABASE_PATH
        return cls(
            users=UserDB(db_path),
            tasks=TaskDB(db_path),
            stats=StatsDB(db_path),
            events=EventDB(db_path),
            ai_quota=QuotaLedger("ai", settings.AI_DAILY_LIMIT, db_path),
            stuck_quota=QuotaLedger("stuck", settings.STUCK_DAILY_LIMIT, db_path),
        )
