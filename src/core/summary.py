"""
Discipline Coach — Daily Aggregator.

Near the end of each user's local day: count planned vs. praised tasks,
decide success, advance the streak, and send one summary.

The streak maths is pure (compute_day / next_stats). The aggregator itself
re-checks the local clock instead of trusting when it was triggered, and
persists the new stats with a single upsert that only succeeds if
last_summary_date moves forward, so a repeated call changes nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING

from src.config import settings
from src.core.coach import fallback_summary, generate_with_quota
from src.core.local_time import in_daily_slot
from src.core.sweeps import SweepReport, for_each_user
from src.data.models import UserStats
from src.ports.notification_port import notify

if TYPE_CHECKING:
    from src.core.local_time import LocalTime
    from src.data.db import Stores
    from src.data.models import User
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


@dataclass
class DayResult:
    """Counts for one user-local day."""

    planned: int
    completed: int
    missed: int
    success: bool


def compute_day(planned: int, completed: int, threshold: float) -> DayResult:
    """Success iff completed / planned reaches the threshold. planned must be > 0."""
    if planned <= 0:
        raise ValueError("Cannot score a day with no planned tasks")
    return DayResult(
        planned=planned,
        completed=completed,
        missed=planned - completed,
        success=completed / planned >= threshold,
    )


def next_stats(stats: UserStats, local_date: str, success: bool) -> UserStats:
    """Advance the streak for local_date.

    A success extends the streak only if the previous success was local
    yesterday; otherwise it restarts at 1. A miss resets it to 0. The
    longest streak never decreases.
    """
    yesterday = (date.fromisoformat(local_date) - timedelta(days=1)).isoformat()

    if success:
        current = stats.current_streak + 1 if stats.last_success_date == yesterday else 1
        last_success = local_date
    else:
        current = 0
        last_success = stats.last_success_date

    return UserStats(
        user_id=stats.user_id,
        current_streak=current,
        longest_streak=max(stats.longest_streak, current),
        last_success_date=last_success,
        last_summary_date=local_date,
    )


async def run_daily_summary(
    stores: Stores,
    notifier: NotificationPort,
    now: datetime | None = None,
) -> SweepReport:
    """Summarize each user's day once, inside their local SUMMARY_HOUR slot."""

    async def _summarize(user: User, local: LocalTime, report: SweepReport) -> None:
        if not in_daily_slot(local, settings.SUMMARY_HOUR, settings.DAILY_SLOT_MINUTES):
            report.bump("not_due")
            return

        stats = stores.stats.get_stats(user.id)
        if stats.last_summary_date == local.date_key:
            report.bump("already_done")
            return

        planned, completed = stores.tasks.count_for_date(user.id, local.date_key)
        if planned == 0:
            report.bump("no_tasks")
            return

        day = compute_day(planned, completed, settings.SUCCESS_THRESHOLD)
        updated = next_stats(stats, local.date_key, day.success)
        if not stores.stats.save_summary(updated):
            # A concurrent pass got there first
            report.bump("already_done")
            return

        logger.info(
            "User %d day %s: %d/%d, success=%s, streak=%d (longest %d)",
            user.id, local.date_key, completed, planned, day.success,
            updated.current_streak, updated.longest_streak,
        )
        report.bump("summarized")

        context = dict(
            planned=day.planned, completed=day.completed, missed=day.missed,
            success=day.success, streak=updated.current_streak,
        )
        text = await generate_with_quota(
            stores.ai_quota, user.id, local.date_key, "summary", **context,
        )
        if await notify(notifier, user.chat_id, text or fallback_summary(**context)):
            report.bump("sent")

    return await for_each_user("daily_summary", stores, _summarize, now)
