"""
Discipline Coach — Telegram Bot.

Telegram is the only user interface. Users plan tomorrow as plain text
("07:00 Gym"), review and fix the plan with /plan, /edit and /delete,
answer reminders with "doing …", and ask for help with /stuck.

Handlers are thin: parsing lives in src.core.planner, state in the store.
Numbered listings are re-read from the store on every edit/delete, so no
per-chat state is kept in the process.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine

from telegram import Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from src.config import settings
from src.core.coach import FALLBACK_STUCK, generate_with_quota
from src.core.local_time import (
    InvalidOffsetError,
    LocalTime,
    format_offset,
    parse_offset,
    resolve_local,
    utc_now,
)
from src.core.planner import (
    PLAN_EXAMPLE,
    normalize_command,
    parse_delete,
    parse_doing,
    parse_edit,
    parse_tasks,
)
from src.core.task_state import TaskState, state_of

if TYPE_CHECKING:
    from src.data.db import Stores
    from src.data.models import Task, User

logger = logging.getLogger(__name__)

_Handler = Callable[..., Coroutine[Any, Any, None]]

_STATE_MARKS = {
    TaskState.PLANNED: "•",
    TaskState.REMINDED: "⏰",
    TaskState.PRAISED: "✅",
    TaskState.SCOLDED: "❌",
}


# ---------------------------------------------------------------------------
# User resolution decorator
# ---------------------------------------------------------------------------


def with_user(func: _Handler) -> Callable[[Update, ContextTypes.DEFAULT_TYPE], Coroutine[Any, Any, None]]:
    """Resolve (or register) the chat's user and pass it to the handler.

    Any unexpected error is logged and answered with a generic apology;
    nothing propagates out of a handler.
    """

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if update.effective_chat is None or update.message is None:
            return
        stores: Stores = context.bot_data["stores"]
        try:
            user = stores.users.get_or_create(str(update.effective_chat.id))
            await func(update, context, user)
        except Exception as exc:
            logger.error("Handler %s failed: %s", func.__name__, exc)
            await update.message.reply_text("Sorry, something went wrong. Please try again.")

    return wrapper


def _local_now(user: User) -> LocalTime:
    return resolve_local(utc_now(), user.utc_offset_minutes)


def _tomorrow(user: User) -> str:
    return (_local_now(user).date + timedelta(days=1)).isoformat()


def _format_plan(tasks: list[Task]) -> str:
    return "\n".join(f"{i}. {t.task_time} — {t.task_name}" for i, t in enumerate(tasks, start=1))


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


@with_user
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE, user: User) -> None:
    """Handle /start — welcome message."""
    await update.message.reply_text(
        "👋 I'm your discipline coach.\n\n"
        "Send me tomorrow's plan, one task per line:\n"
        f"{PLAN_EXAMPLE}\n\n"
        "I'll remind you before each task and check on you after.\n"
        f"Your timezone is {format_offset(user.utc_offset_minutes)} — "
        "change it with /timezone +05:30\n\n"
        "Type /help for the full command list."
    )


@with_user
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE, user: User) -> None:
    """Handle /help — list available commands."""
    await update.message.reply_text(
        "Available commands:\n"
        "/plan — Tomorrow's plan\n"
        "/today — Today's tasks and their status\n"
        "/edit — Change a task in tomorrow's plan\n"
        "/delete — Remove a task from tomorrow's plan\n"
        "/timezone ±HH:MM — Set your UTC offset\n"
        "/stuck <problem> — Get unstuck\n"
        "/stats — Your streak\n\n"
        "Answer a reminder with: doing <what you're doing>"
    )


@with_user
async def cmd_plan(update: Update, context: ContextTypes.DEFAULT_TYPE, user: User) -> None:
    """Handle /plan — list tomorrow's tasks."""
    stores: Stores = context.bot_data["stores"]
    task_date = _tomorrow(user)
    tasks = stores.tasks.list_for_date(user.id, task_date)

    if not tasks:
        await update.message.reply_text("📭 No tasks planned for tomorrow.")
        return

    await update.message.reply_text(f"📅 Plan for {task_date}\n\n{_format_plan(tasks)}")


@with_user
async def cmd_today(update: Update, context: ContextTypes.DEFAULT_TYPE, user: User) -> None:
    """Handle /today — today's tasks with lifecycle markers."""
    stores: Stores = context.bot_data["stores"]
    today = _local_now(user).date_key
    tasks = stores.tasks.list_for_date(user.id, today)

    if not tasks:
        await update.message.reply_text("📭 Nothing planned for today.")
        return

    lines = [f"📅 Today ({today})\n"]
    for t in tasks:
        lines.append(f"{_STATE_MARKS[state_of(t)]} {t.task_time} — {t.task_name}")
    await update.message.reply_text("\n".join(lines))


@with_user
async def cmd_edit(update: Update, context: ContextTypes.DEFAULT_TYPE, user: User) -> None:
    """Handle /edit — show tomorrow's plan and the edit syntax."""
    stores: Stores = context.bot_data["stores"]
    tasks = stores.tasks.list_for_date(user.id, _tomorrow(user))
    if not tasks:
        await update.message.reply_text("❌ No tasks found. Plan tomorrow first.")
        return

    await update.message.reply_text(
        f"{_format_plan(tasks)}\n\n"
        "✏️ Reply like:\nedit <number> <new time> <new task>\n\n"
        "Example:\nedit 2 11:00 Study Go"
    )


@with_user
async def cmd_delete(update: Update, context: ContextTypes.DEFAULT_TYPE, user: User) -> None:
    """Handle /delete — show tomorrow's plan and the delete syntax."""
    stores: Stores = context.bot_data["stores"]
    tasks = stores.tasks.list_for_date(user.id, _tomorrow(user))
    if not tasks:
        await update.message.reply_text("❌ No tasks to delete.")
        return

    await update.message.reply_text(
        f"🗑️ Select task to delete:\n\n{_format_plan(tasks)}\n\n"
        "Reply with:\ndelete <number>\n\nExample:\ndelete 2"
    )


@with_user
async def cmd_timezone(update: Update, context: ContextTypes.DEFAULT_TYPE, user: User) -> None:
    """Handle /timezone ±HH:MM — store the user's UTC offset."""
    stores: Stores = context.bot_data["stores"]
    args = context.args or []
    if not args:
        await update.message.reply_text(
            f"Your timezone is {format_offset(user.utc_offset_minutes)}.\n"
            "Set it with /timezone +05:30 (range -12:00 to +14:00)."
        )
        return

    try:
        offset = parse_offset(args[0])
    except InvalidOffsetError:
        await update.message.reply_text(
            "❌ Invalid timezone. Use an offset like +05:30 or -08:00 "
            "(range -12:00 to +14:00)."
        )
        return

    stores.users.set_utc_offset(user.id, offset)
    local = resolve_local(utc_now(), offset)
    await update.message.reply_text(
        f"✅ Timezone set to {format_offset(offset)}. Your local time is {local.hhmm}."
    )


@with_user
async def cmd_stuck(update: Update, context: ContextTypes.DEFAULT_TYPE, user: User) -> None:
    """Handle /stuck <problem> — rate-limited coaching help."""
    stores: Stores = context.bot_data["stores"]
    problem = " ".join(context.args or []).strip()
    if not problem:
        await update.message.reply_text("🧠 Tell me what's blocking you:\n/stuck <problem>")
        return

    local = _local_now(user)
    if not stores.stuck_quota.reserve(user.id, local.date_key):
        await update.message.reply_text(
            f"⚠️ You've used all {stores.stuck_quota.limit} help requests for today.\n\n"
            f"{FALLBACK_STUCK}"
        )
        return

    # The help budget is spent; the AI budget still meters the call itself
    text = await generate_with_quota(
        stores.ai_quota, user.id, local.date_key, "stuck", problem=problem,
    )
    if text is None:
        stores.stuck_quota.rollback(user.id)
        text = FALLBACK_STUCK
    await update.message.reply_text(text)


@with_user
async def cmd_stats(update: Update, context: ContextTypes.DEFAULT_TYPE, user: User) -> None:
    """Handle /stats — current and longest streak."""
    stores: Stores = context.bot_data["stores"]
    stats = stores.stats.get_stats(user.id)
    await update.message.reply_text(
        f"🔥 Current streak: {stats.current_streak}\n"
        f"🏆 Longest streak: {stats.longest_streak}"
    )


# ---------------------------------------------------------------------------
# Plain-text replies
# ---------------------------------------------------------------------------


async def _handle_edit(text: str, update: Update, stores: Stores, user: User) -> None:
    try:
        cmd = parse_edit(text)
    except ValueError as exc:
        await update.message.reply_text(f"❌ {exc}")
        return

    tasks = stores.tasks.list_for_date(user.id, _tomorrow(user))
    if cmd.index > len(tasks):
        await update.message.reply_text("❌ Invalid task number. Use /plan again.")
        return

    task = tasks[cmd.index - 1]
    stores.tasks.update_task(task.id, cmd.time, cmd.name)
    await update.message.reply_text(f"✅ Task updated:\n{cmd.time} {cmd.name}")


async def _handle_delete(text: str, update: Update, stores: Stores, user: User) -> None:
    try:
        cmd = parse_delete(text)
    except ValueError as exc:
        await update.message.reply_text(f"❌ {exc}")
        return

    tasks = stores.tasks.list_for_date(user.id, _tomorrow(user))
    if cmd.index > len(tasks):
        await update.message.reply_text("❌ Invalid task number. Use /delete again.")
        return

    task = tasks[cmd.index - 1]
    stores.tasks.delete_task(task.id)
    await update.message.reply_text(f"✅ Deleted: {task.task_time} — {task.task_name}")


async def _handle_doing(response: str, update: Update, stores: Stores, user: User) -> None:
    today = _local_now(user).date_key
    task = stores.tasks.record_response(user.id, today, response)
    if task is None:
        await update.message.reply_text(
            "❌ No task is waiting for an answer right now."
        )
        return
    await update.message.reply_text("✍️ Noted.")


async def _handle_plan_text(text: str, update: Update, stores: Stores, user: User) -> None:
    planned = parse_tasks(text)
    if not planned:
        await update.message.reply_text(f"❌ Format invalid.\nUse:\n{PLAN_EXAMPLE}")
        return

    task_date = _tomorrow(user)
    stores.tasks.add_tasks(user.id, task_date, [(p.time, p.name) for p in planned])
    await update.message.reply_text(f"✅ Saved {len(planned)} tasks for {task_date}")


@with_user
async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE, user: User) -> None:
    """Route plain text: edit / delete / doing replies, otherwise a new plan."""
    stores: Stores = context.bot_data["stores"]
    text = normalize_command(update.message.text or "")
    lowered = text.lower()

    if lowered.startswith("edit "):
        await _handle_edit(text, update, stores, user)
        return
    if lowered.startswith("delete "):
        await _handle_delete(text, update, stores, user)
        return

    response = parse_doing(text)
    if response is not None:
        await _handle_doing(response, update, stores, user)
        return

    await _handle_plan_text(text, update, stores, user)


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(stores: Stores | None = None, webhook: bool = True) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        stores: Store bundle. Defaults to the configured database.
        webhook: When True, no Updater is created; updates are fed in by
                 the HTTP webhook route (see src.api.app).
    """
    builder = ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN)
    if webhook:
        builder = builder.updater(None)
    app = builder.build()

    if stores is None:
        from src.data.db import Stores as _Stores
        stores = _Stores.open()
    app.bot_data["stores"] = stores

    # Commands
    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("plan", cmd_plan))
    app.add_handler(CommandHandler("today", cmd_today))
    app.add_handler(CommandHandler("edit", cmd_edit))
    app.add_handler(CommandHandler("delete", cmd_delete))
    app.add_handler(CommandHandler("timezone", cmd_timezone))
    app.add_handler(CommandHandler("stuck", cmd_stuck))
    app.add_handler(CommandHandler("stats", cmd_stats))

    # Text messages (non-command); unknown commands are ignored
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app
