"""
Discipline Coach — Task Sweeps.

Reminder Sweep: a few minutes before a task's local time, claim it and ask
the user what they are doing.

Feedback Sweep: a few minutes after, judge the reply and move the task to
its terminal state (Praised or Scolded), sending at most one message.

Rollover Sweep: reset lifecycle flags on tasks from past local days.

Each sweep is a single stateless pass over all users, triggered from
outside (see src.api.app). Overlapping or repeated passes are harmless:
every transition is a conditional update in the store, and one user's
failure never stops the pass for the others.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Awaitable, Callable

from src.config import settings
from src.core.coach import generate_with_quota
from src.core.local_time import resolve_local, utc_now, window_segments
from src.core.task_state import TaskState, feedback_verdict
from src.ports.notification_port import notify

if TYPE_CHECKING:
    from src.core.local_time import LocalTime
    from src.data.db import Stores
    from src.data.models import Task, User
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """Outcome of one pass, returned to the trigger as JSON."""

    name: str
    users: int = 0
    failed: int = 0
    counts: dict[str, int] = field(default_factory=dict)

    def bump(self, key: str, amount: int = 1) -> None:
        self.counts[key] = self.counts.get(key, 0) + amount

    def as_dict(self) -> dict:
        return {"sweep": self.name, "users": self.users, "failed": self.failed, **self.counts}


async def for_each_user(
    name: str,
    stores: Stores,
    unit: Callable[[User, LocalTime, SweepReport], Awaitable[None]],
    now: datetime | None = None,
) -> SweepReport:
    """Run one bounded unit of work per user at that user's local time.

    Exceptions from a unit are logged and counted; the pass continues.
    Failing to list users propagates to the caller.
    """
    now = now or utc_now()
    report = SweepReport(name=name)

    for user in stores.users.list_users():
        report.users += 1
        try:
            local = resolve_local(now, user.utc_offset_minutes)
            await unit(user, local, report)
        except Exception as exc:
            report.failed += 1
            logger.error("%s: user %d abandoned for this pass: %s", name, user.id, exc)

    logger.info("%s pass done: %s", name, report.as_dict())
    return report


# ---------------------------------------------------------------------------
# Reminder sweep
# ---------------------------------------------------------------------------


def format_reminder(task: Task) -> str:
    return (
        f"⏰ Reminder\n\nAt {task.task_time} you planned:\n{task.task_name}\n\n"
        "What are you doing right now?\nReply: doing <what you're doing>"
    )


async def run_reminder_sweep(
    stores: Stores,
    notifier: NotificationPort,
    now: datetime | None = None,
) -> SweepReport:
    """Claim tasks starting REMINDER_LEAD_MIN..REMINDER_LEAD_MAX minutes from now.

    The window is wider than the sweep cadence, so every task is inside at
    least one pass; the claim makes sure only one pass ever sends it.
    """

    async def _remind(user: User, local: LocalTime, report: SweepReport) -> None:
        segments = window_segments(local, settings.REMINDER_LEAD_MIN, settings.REMINDER_LEAD_MAX)
        claimed = stores.tasks.claim_reminders(user.id, segments)
        report.bump("claimed", len(claimed))
        for task in claimed:
            if await notify(notifier, user.chat_id, format_reminder(task)):
                report.bump("sent")

    return await for_each_user("reminders", stores, _remind, now)


# ---------------------------------------------------------------------------
# Feedback sweep
# ---------------------------------------------------------------------------


async def _give_feedback(
    task: Task,
    user: User,
    local: LocalTime,
    stores: Stores,
    notifier: NotificationPort,
    report: SweepReport,
) -> None:
    """Generate the message, then settle the task with one terminal write.

    Praise stands only if its text was obtained; with no budget or a failed
    generator the outcome is Scolded. The terminal write is the claim: a
    concurrent pass that loses it gives back its reservation and sends
    nothing. Feedback is at most one message per task: a Scolded outcome
    without text closes the task silently.
    """
    deserved = feedback_verdict(task) is TaskState.PRAISED
    if deserved:
        text = await generate_with_quota(
            stores.ai_quota, user.id, local.date_key, "praise", task_name=task.task_name,
        )
    else:
        text = await generate_with_quota(
            stores.ai_quota, user.id, local.date_key, "scold",
            task_name=task.task_name, user_response=task.user_response,
        )
    praised = deserved and text is not None

    if not stores.tasks.mark_terminal(task.id, praised=praised):
        if text is not None:
            stores.ai_quota.rollback(user.id)
        report.bump("skipped")
        return

    if text is None:
        logger.info("Task #%d closed as scolded without a message", task.id)
        report.bump("silent")
        return

    report.bump("praised" if praised else "scolded")
    if await notify(notifier, user.chat_id, text):
        report.bump("sent")


async def run_feedback_sweep(
    stores: Stores,
    notifier: NotificationPort,
    now: datetime | None = None,
) -> SweepReport:
    """Judge reminded tasks FEEDBACK_DELAY_MIN..FEEDBACK_DELAY_MAX minutes past their time."""

    async def _judge(user: User, local: LocalTime, report: SweepReport) -> None:
        segments = window_segments(
            local, -settings.FEEDBACK_DELAY_MAX, -settings.FEEDBACK_DELAY_MIN,
        )
        for task in stores.tasks.feedback_candidates(user.id, segments):
            await _give_feedback(task, user, local, stores, notifier, report)

    return await for_each_user("feedback", stores, _judge, now)


# ---------------------------------------------------------------------------
# Rollover sweep
# ---------------------------------------------------------------------------


async def run_rollover_sweep(stores: Stores, now: datetime | None = None) -> SweepReport:
    """Reset lifecycle flags on every task dated before each user's local today.

    Tasks from just before midnight that are reminded but not yet judged are
    kept until the Feedback Sweep has closed them.
    """

    async def _rollover(user: User, local: LocalTime, report: SweepReport) -> None:
        awaiting = window_segments(local, -settings.FEEDBACK_DELAY_MAX, 0)
        report.bump("reset", stores.tasks.rollover(user.id, local.date_key, awaiting))

    return await for_each_user("rollover", stores, _rollover, now)
