"""
Discipline Coach — Daily Notifications.

Morning Greeting: at the user's local MORNING_HOUR, an energetic note with
today's task count.

Planning Prompt: at the user's local PLANNING_HOUR, a nudge to plan
tomorrow.

Both run from a frequent external trigger. Each user is greeted only inside
their own local slot and at most once per local day: the idempotency guard
is claimed before anything is generated or sent.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from src.config import settings
from src.core.coach import FALLBACK_MORNING, FALLBACK_PLANNING, generate_with_quota
from src.core.local_time import in_daily_slot
from src.core.planner import PLAN_EXAMPLE
from src.core.sweeps import SweepReport, for_each_user
from src.ports.notification_port import notify

if TYPE_CHECKING:
    from src.core.local_time import LocalTime
    from src.data.db import Stores
    from src.data.models import User
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

MORNING_EVENT = "morning_start"
PLANNING_EVENT = "plan_reminder"


async def send_morning_greeting(
    stores: Stores,
    notifier: NotificationPort,
    now: datetime | None = None,
) -> SweepReport:
    """Greet every user whose local morning slot is open and who wasn't greeted today."""

    async def _greet(user: User, local: LocalTime, report: SweepReport) -> None:
        if not in_daily_slot(local, settings.MORNING_HOUR, settings.DAILY_SLOT_MINUTES):
            report.bump("not_due")
            return
        if not stores.events.claim(user.id, MORNING_EVENT, local.date_key):
            report.bump("already_done")
            return

        task_count = len(stores.tasks.list_for_date(user.id, local.date_key))
        text = await generate_with_quota(
            stores.ai_quota, user.id, local.date_key, "morning", task_count=task_count,
        )
        if await notify(notifier, user.chat_id, text or FALLBACK_MORNING):
            report.bump("sent")
            logger.info("Morning greeting sent to user %d", user.id)

    return await for_each_user("morning_start", stores, _greet, now)


async def send_planning_prompt(
    stores: Stores,
    notifier: NotificationPort,
    now: datetime | None = None,
) -> SweepReport:
    """Ask every user in their local evening slot to plan tomorrow, once per day."""

    async def _prompt(user: User, local: LocalTime, report: SweepReport) -> None:
        if not in_daily_slot(local, settings.PLANNING_HOUR, settings.DAILY_SLOT_MINUTES):
            report.bump("not_due")
            return
        if not stores.events.claim(user.id, PLANNING_EVENT, local.date_key):
            report.bump("already_done")
            return

        text = await generate_with_quota(
            stores.ai_quota, user.id, local.date_key, "planning",
        )
        message = f"{text}\n\nReply like:\n{PLAN_EXAMPLE}" if text else FALLBACK_PLANNING
        if await notify(notifier, user.chat_id, message):
            report.bump("sent")
            logger.info("Planning prompt sent to user %d", user.id)

    return await for_each_user("plan_reminder", stores, _prompt, now)
