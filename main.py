"""
Discipline Coach — Entry Point.

Single entry point: `python main.py` starts the HTTP server that hosts the
Telegram webhook and the /cron trigger routes.
"""

import logging

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

import uvicorn

from src.adapters.telegram_notifier import TelegramNotifier
from src.api.app import create_app
from src.bot.telegram_bot import build_app
from src.config import settings
from src.data.db import Stores


def main() -> None:
    stores = Stores.open()
    bot_app = build_app(stores)
    api = create_app(stores, TelegramNotifier(bot_app.bot), bot_app)
    uvicorn.run(api, host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    main()
