"""
Discipline Coach — HTTP trigger surface.

An external scheduler (cron service, uptime pinger, …) calls these routes
on its own cadence; the process keeps no timers. Every /cron route is
authenticated by the shared CRON_SECRET header and may be called at any
time, any number of times.

The same app hosts the Telegram webhook, which hands updates to the
python-telegram-bot Application.
"""

from __future__ import annotations

import hmac
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from telegram import Update

from src.config import settings
from src.core.scheduler import send_morning_greeting, send_planning_prompt
from src.core.summary import run_daily_summary
from src.core.sweeps import run_feedback_sweep, run_reminder_sweep, run_rollover_sweep

if TYPE_CHECKING:
    from telegram.ext import Application

    from src.core.sweeps import SweepReport
    from src.data.db import Stores
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


def verify_cron_secret(x_cron_secret: str | None = Header(None)) -> None:
    """Reject any trigger call without the shared secret."""
    if not x_cron_secret or not hmac.compare_digest(
        x_cron_secret.encode(), settings.CRON_SECRET.encode(),
    ):
        logger.warning("Rejected cron call with missing or wrong secret")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


async def _run_sweep(name: str, sweep: Callable[[], Awaitable[SweepReport]]) -> Any:
    """Run one pass; per-user failures are inside the report, anything else is a 500."""
    try:
        report = await sweep()
    except Exception as exc:
        logger.error("%s trigger failed: %s", name, exc)
        return JSONResponse(status_code=500, content={"ok": False})
    return {"ok": True, **report.as_dict()}


def create_app(
    stores: Stores | None = None,
    notifier: NotificationPort | None = None,
    bot_app: Application | None = None,
) -> FastAPI:
    """Build the FastAPI app.

    Args:
        stores: Store bundle. Defaults to the configured database.
        notifier: Messaging gateway. Defaults to a TelegramNotifier on bot_app.
        bot_app: Telegram Application fed by the webhook route. When None,
                 the webhook answers 503 and notifier must be given.
    """
    if stores is None:
        from src.data.db import Stores as _Stores
        stores = _Stores.open()

    if notifier is None:
        if bot_app is None:
            raise ValueError("Either notifier or bot_app is required")
        from src.adapters.telegram_notifier import TelegramNotifier
        notifier = TelegramNotifier(bot_app.bot)

    @asynccontextmanager
    async def lifespan(api: FastAPI):
        if bot_app is None:
            yield
            return
        await bot_app.initialize()
        if settings.WEBHOOK_URL:
            url = settings.WEBHOOK_URL.rstrip("/") + settings.WEBHOOK_PATH
            await bot_app.bot.set_webhook(url=url)
            logger.info("Telegram webhook registered at %s", url)
        await bot_app.start()
        try:
            yield
        finally:
            await bot_app.stop()
            await bot_app.shutdown()

    api = FastAPI(title="Discipline Coach", lifespan=lifespan)
    api.state.stores = stores
    api.state.notifier = notifier
    api.state.bot_app = bot_app

    cron = [Depends(verify_cron_secret)]

    @api.get("/", tags=["health"])
    def root() -> str:
        return "Bot is running"

    @api.get("/health", tags=["health"])
    def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @api.post("/cron/task-reminders", dependencies=cron, tags=["cron"])
    async def task_reminders() -> Any:
        return await _run_sweep("task-reminders", lambda: run_reminder_sweep(stores, notifier))

    @api.post("/cron/feedback-check", dependencies=cron, tags=["cron"])
    async def feedback_check() -> Any:
        return await _run_sweep("feedback-check", lambda: run_feedback_sweep(stores, notifier))

    @api.post("/cron/daily-summary", dependencies=cron, tags=["cron"])
    async def daily_summary() -> Any:
        return await _run_sweep("daily-summary", lambda: run_daily_summary(stores, notifier))

    @api.post("/cron/morning-start", dependencies=cron, tags=["cron"])
    async def morning_start() -> Any:
        return await _run_sweep("morning-start", lambda: send_morning_greeting(stores, notifier))

    @api.post("/cron/plan-reminder", dependencies=cron, tags=["cron"])
    async def plan_reminder() -> Any:
        return await _run_sweep("plan-reminder", lambda: send_planning_prompt(stores, notifier))

    @api.post("/cron/rollover", dependencies=cron, tags=["cron"])
    async def rollover() -> Any:
        return await _run_sweep("rollover", lambda: run_rollover_sweep(stores))

    @api.post(settings.WEBHOOK_PATH, tags=["telegram"])
    async def telegram_webhook(request: Request) -> Any:
        if bot_app is None:
            return JSONResponse(status_code=503, content={"ok": False})
        payload = await request.json()
        await bot_app.update_queue.put(Update.de_json(payload, bot_app.bot))
        return {"ok": True}

    return api
