"""Tests for src.bot.telegram_bot — Telegram bot handlers.

Handlers run against a real temp-file store; Telegram objects and the
LLM are mocked.
"""

from datetime import date, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.bot.telegram_bot import (
    build_app,
    cmd_delete,
    cmd_edit,
    cmd_help,
    cmd_plan,
    cmd_start,
    cmd_stats,
    cmd_stuck,
    cmd_timezone,
    cmd_today,
    handle_text,
)
from src.core.coach import FALLBACK_STUCK
from src.data.models import UserStats


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_update(text, chat_id=12345):
    """Create a mock Update with a text message from a chat."""
    update = MagicMock()
    update.message.text = text
    update.effective_chat.id = chat_id
    update.message.reply_text = AsyncMock()
    return update


def _make_context(stores, args=None):
    context = MagicMock()
    context.args = args or []
    context.bot_data = {"stores": stores}
    return context


def _reply(update) -> str:
    return update.message.reply_text.call_args.args[0]


def _today() -> str:
    return date.today().isoformat()


def _tomorrow() -> str:
    return (date.today() + timedelta(days=1)).isoformat()


@pytest.fixture(autouse=True)
def fixed_clock():
    """Pin handlers' 'now' to the test's local date at UTC midday."""
    from datetime import datetime, timezone

    noon = datetime.combine(date.today(), datetime.min.time()).replace(hour=12, tzinfo=timezone.utc)
    with patch("src.bot.telegram_bot.utc_now", return_value=noon):
        yield noon


# ---------------------------------------------------------------------------
# User resolution
# ---------------------------------------------------------------------------


class TestWithUser:
    @pytest.mark.asyncio
    async def test_first_message_registers_user(self, stores):
        update = _make_update("/start", chat_id=999)
        await cmd_start(update, _make_context(stores))
        assert [u.chat_id for u in stores.users.list_users()] == ["999"]
        assert "discipline coach" in _reply(update)

    @pytest.mark.asyncio
    async def test_unexpected_error_is_answered(self, stores):
        update = _make_update("07:00 Gym")
        with patch.object(stores.tasks, "add_tasks", side_effect=RuntimeError("disk full")):
            await handle_text(update, _make_context(stores))
        assert "something went wrong" in _reply(update)

    @pytest.mark.asyncio
    async def test_update_without_message_ignored(self, stores):
        update = MagicMock()
        update.message = None
        await handle_text(update, _make_context(stores))
        assert stores.users.list_users() == []


@pytest.mark.asyncio
async def test_help_lists_commands(stores):
    update = _make_update("/help")
    await cmd_help(update, _make_context(stores))
    assert [u.chat_id for u in stores.users.list_users()] == ["12345"]
    text = _reply(update)
    for command in ("/plan", "/today", "/edit", "/delete", "/timezone", "/stuck", "/stats"):
        assert command in text


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


class TestPlanning:
    @pytest.mark.asyncio
    async def test_plan_text_saved_for_tomorrow(self, stores):
        update = _make_update("07:00 Gym\n10:00 Study Go")
        await handle_text(update, _make_context(stores))

        user = stores.users.get_or_create("12345")
        tasks = stores.tasks.list_for_date(user.id, _tomorrow())
        assert [(t.task_time, t.task_name) for t in tasks] == [("07:00", "Gym"), ("10:00", "Study Go")]
        assert _reply(update) == f"✅ Saved 2 tasks for {_tomorrow()}"

    @pytest.mark.asyncio
    async def test_invalid_plan_text(self, stores):
        update = _make_update("gym in the morning")
        await handle_text(update, _make_context(stores))
        assert _reply(update).startswith("❌ Format invalid.")

    @pytest.mark.asyncio
    async def test_plan_lists_tomorrow(self, stores):
        user = stores.users.get_or_create("12345")
        stores.tasks.add_tasks(user.id, _tomorrow(), [("07:00", "Gym")])
        update = _make_update("/plan")
        await cmd_plan(update, _make_context(stores))
        assert "1. 07:00 — Gym" in _reply(update)

    @pytest.mark.asyncio
    async def test_plan_empty(self, stores):
        update = _make_update("/plan")
        await cmd_plan(update, _make_context(stores))
        assert "No tasks planned" in _reply(update)

    @pytest.mark.asyncio
    async def test_today_shows_states(self, stores):
        user = stores.users.get_or_create("12345")
        tasks = stores.tasks.add_tasks(user.id, _today(), [("07:00", "Gym"), ("21:00", "Read")])
        stores.tasks.claim_reminders(user.id, [(_today(), "07:00", "07:00")])
        stores.tasks.mark_terminal(tasks[0].id, praised=True)

        update = _make_update("/today")
        await cmd_today(update, _make_context(stores))
        text = _reply(update)
        assert "✅ 07:00 — Gym" in text
        assert "• 21:00 — Read" in text

    @pytest.mark.asyncio
    async def test_plan_follows_user_timezone(self, stores, fixed_clock):
        user = stores.users.get_or_create("12345")
        stores.users.set_utc_offset(user.id, 780)   # UTC+13: noon UTC is already tomorrow
        update = _make_update("07:00 Gym")
        await handle_text(update, _make_context(stores))
        day_after = (date.today() + timedelta(days=2)).isoformat()
        assert len(stores.tasks.list_for_date(user.id, day_after)) == 1


# ---------------------------------------------------------------------------
# Edit / delete
# ---------------------------------------------------------------------------


class TestEditDelete:
    @pytest.fixture
    def planned(self, stores):
        user = stores.users.get_or_create("12345")
        stores.tasks.add_tasks(user.id, _tomorrow(), [("07:00", "Gym"), ("10:00", "Study Go")])
        return user

    @pytest.mark.asyncio
    async def test_edit_command_shows_syntax(self, stores, planned):
        update = _make_update("/edit")
        await cmd_edit(update, _make_context(stores))
        assert "edit <number>" in _reply(update)

    @pytest.mark.asyncio
    async def test_edit_updates_task(self, stores, planned):
        update = _make_update("edit 2 11:00 Study Rust")
        await handle_text(update, _make_context(stores))
        tasks = stores.tasks.list_for_date(planned.id, _tomorrow())
        assert (tasks[1].task_time, tasks[1].task_name) == ("11:00", "Study Rust")
        assert _reply(update) == "✅ Task updated:\n11:00 Study Rust"

    @pytest.mark.asyncio
    async def test_edit_out_of_range(self, stores, planned):
        update = _make_update("edit 5 11:00 Nope")
        await handle_text(update, _make_context(stores))
        assert "Invalid task number" in _reply(update)

    @pytest.mark.asyncio
    async def test_edit_bad_time(self, stores, planned):
        update = _make_update("edit 1 7am Gym")
        await handle_text(update, _make_context(stores))
        assert "HH:MM" in _reply(update)

    @pytest.mark.asyncio
    async def test_delete_removes_task(self, stores, planned):
        update = _make_update("delete 1")
        await handle_text(update, _make_context(stores))
        tasks = stores.tasks.list_for_date(planned.id, _tomorrow())
        assert [t.task_name for t in tasks] == ["Study Go"]
        assert _reply(update) == "✅ Deleted: 07:00 — Gym"

    @pytest.mark.asyncio
    async def test_delete_without_plan(self, stores):
        update = _make_update("/delete")
        await cmd_delete(update, _make_context(stores))
        assert "No tasks to delete" in _reply(update)


# ---------------------------------------------------------------------------
# doing replies
# ---------------------------------------------------------------------------


class TestDoing:
    @pytest.mark.asyncio
    async def test_records_on_reminded_task(self, stores):
        user = stores.users.get_or_create("12345")
        stores.tasks.add_tasks(user.id, _today(), [("12:05", "Study Go")])
        stores.tasks.claim_reminders(user.id, [(_today(), "12:00", "12:10")])

        update = _make_update("doing go study")
        await handle_text(update, _make_context(stores))

        task = stores.tasks.list_for_date(user.id, _today())[0]
        assert task.user_response == "go study"
        assert task.responded_at is not None
        assert _reply(update) == "✍️ Noted."

    @pytest.mark.asyncio
    async def test_nothing_pending(self, stores):
        update = _make_update("doing nothing much")
        await handle_text(update, _make_context(stores))
        assert "No task is waiting" in _reply(update)


# ---------------------------------------------------------------------------
# Timezone / stuck / stats
# ---------------------------------------------------------------------------


class TestTimezone:
    @pytest.mark.asyncio
    async def test_sets_offset(self, stores):
        update = _make_update("/timezone +05:30")
        await cmd_timezone(update, _make_context(stores, args=["+05:30"]))
        user = stores.users.get_or_create("12345")
        assert user.utc_offset_minutes == 330
        assert "UTC+05:30" in _reply(update)
        assert "17:30" in _reply(update)

    @pytest.mark.asyncio
    async def test_rejects_out_of_range(self, stores):
        update = _make_update("/timezone +15:00")
        await cmd_timezone(update, _make_context(stores, args=["+15:00"]))
        assert stores.users.get_or_create("12345").utc_offset_minutes == 0
        assert "Invalid timezone" in _reply(update)

    @pytest.mark.asyncio
    async def test_without_args_shows_current(self, stores):
        update = _make_update("/timezone")
        await cmd_timezone(update, _make_context(stores))
        assert "UTC+00:00" in _reply(update)


class TestStuck:
    @pytest.mark.asyncio
    async def test_ai_help(self, stores):
        update = _make_update("/stuck can't start essay")
        with patch("src.core.coach.complete", new=AsyncMock(return_value="1. Open the doc.")):
            await cmd_stuck(update, _make_context(stores, args=["can't", "start", "essay"]))
        assert _reply(update) == "1. Open the doc."
        user = stores.users.get_or_create("12345")
        assert stores.stuck_quota.used(user.id, _today()) == 1
        assert stores.ai_quota.used(user.id, _today()) == 1

    @pytest.mark.asyncio
    async def test_generator_failure_refunds_both_budgets(self, stores):
        update = _make_update("/stuck tired")
        with patch("src.core.coach.complete", new=AsyncMock(side_effect=RuntimeError("down"))):
            await cmd_stuck(update, _make_context(stores, args=["tired"]))
        assert _reply(update) == FALLBACK_STUCK
        user = stores.users.get_or_create("12345")
        assert stores.stuck_quota.used(user.id, _today()) == 0
        assert stores.ai_quota.used(user.id, _today()) == 0

    @pytest.mark.asyncio
    async def test_daily_help_limit(self, stores):
        user = stores.users.get_or_create("12345")
        for _ in range(stores.stuck_quota.limit):
            stores.stuck_quota.reserve(user.id, _today())

        update = _make_update("/stuck tired")
        mock_llm = AsyncMock(return_value="unused")
        with patch("src.core.coach.complete", new=mock_llm):
            await cmd_stuck(update, _make_context(stores, args=["tired"]))
        mock_llm.assert_not_called()
        assert "used all" in _reply(update)

    @pytest.mark.asyncio
    async def test_requires_problem(self, stores):
        update = _make_update("/stuck")
        await cmd_stuck(update, _make_context(stores))
        assert "/stuck <problem>" in _reply(update)


@pytest.mark.asyncio
async def test_stats_shows_streaks(stores):
    user = stores.users.get_or_create("12345")
    stores.stats.save_summary(UserStats(user.id, 2, 5, "2025-03-10", "2025-03-10"))
    update = _make_update("/stats")
    await cmd_stats(update, _make_context(stores))
    assert "Current streak: 2" in _reply(update)
    assert "Longest streak: 5" in _reply(update)


# ---------------------------------------------------------------------------
# build_app
# ---------------------------------------------------------------------------


def test_build_app_registers_handlers(stores):
    app = build_app(stores)
    assert app.bot_data["stores"] is stores
    assert app.updater is None
    commands = {
        cmd for handler in app.handlers[0] if hasattr(handler, "commands") for cmd in handler.commands
    }
    assert {"start", "help", "plan", "today", "edit", "delete", "timezone", "stuck", "stats"} <= commands
