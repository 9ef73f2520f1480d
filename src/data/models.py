"""
Discipline Coach — Data Models.

Plain records mirroring the SQLite rows. The store owns all durable state;
sweeps only ever hold these for the duration of one invocation.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """A chat user, created on first inbound message and never deleted."""

    id: int
    chat_id: str
    utc_offset_minutes: int = 0
    ai_calls_today: int = 0
    ai_calls_date: str | None = None      # local date the counter applies to
    stuck_calls_today: int = 0
    stuck_calls_date: str | None = None
    created_at: str = ""


@dataclass
class Task:
    """A planned intention for one local date and time-of-day.

    Lifecycle fields (reminder_sent, user_response/responded_at, praised,
    scolded) are reset by the daily rollover; the row itself is kept.
    """

    id: int
    user_id: int
    task_date: str                      # ISO date YYYY-MM-DD, user's local calendar
    task_time: str                      # HH:MM, user's local clock
    task_name: str                      # e.g. "Study Go"
    reminder_sent: bool = False
    user_response: str | None = None
    responded_at: str | None = None     # UTC ISO timestamp
    praised: bool = False
    scolded: bool = False


@dataclass
class UserStats:
    """Streak bookkeeping, one row per user."""

    user_id: int
    current_streak: int = 0
    longest_streak: int = 0
    last_success_date: str | None = None
    last_summary_date: str | None = None

