"""
Gardenit Notifications — Telegram application.

Telegram carries the push channel, and its job queue is the clock that
drives the engine: one tick every TICK_INTERVAL_SECONDS, aligned to the
start of a minute so schedule matching sees every minute once.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from telegram import Update
from telegram.ext import Application, ApplicationBuilder, CommandHandler, ContextTypes

from gardenit.config import settings
from gardenit.core.clock import utcnow

if TYPE_CHECKING:
    from gardenit.core.engine import NotificationEngine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Reply with the chat id to link in Gardenit for push notifications."""
    chat_id = update.effective_chat.id
    await update.message.reply_text(
        "🌱 Gardenit notifications\n\n"
        f"Your chat id is {chat_id}. Add it under Settings → Push in Gardenit "
        "to get garden alerts here."
    )


# ---------------------------------------------------------------------------
# Tick job
# ---------------------------------------------------------------------------


async def _tick_job(context: ContextTypes.DEFAULT_TYPE) -> None:
    engine: NotificationEngine = context.bot_data["engine"]
    await engine.run_tick(utcnow())


def _setup_tick(app: Application) -> None:
    """Register the repeating engine tick, first run at the next minute."""
    first = 60 - utcnow().second
    app.job_queue.run_repeating(
        _tick_job,
        interval=settings.TICK_INTERVAL_SECONDS,
        first=first,
        name="notification_tick",
    )
    logger.info(
        "Notification tick scheduled every %ds (first in %ds)",
        settings.TICK_INTERVAL_SECONDS, first,
    )


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(engine: NotificationEngine | None = None) -> Application:
    """Build the Telegram Application with the engine wired in.

    Args:
        engine: Engine to tick. Defaults to one over the configured database,
                with email and push transports from the channel factory.
    """
    app = ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).build()

    if engine is None:
        from gardenit.adapters.channel_factory import create_transports
        from gardenit.core.dispatcher import Dispatcher
        from gardenit.core.engine import NotificationEngine
        from gardenit.data.db import GardenDB, NotificationStore
        from gardenit.integrations.open_meteo import fetch_weather_snapshot

        store = NotificationStore()
        engine = NotificationEngine(
            garden_db=GardenDB(),
            store=store,
            dispatcher=Dispatcher(store, create_transports(app.bot)),
            weather_fetcher=fetch_weather_snapshot,
        )

    app.bot_data["engine"] = engine
    app.add_handler(CommandHandler("start", cmd_start))
    _setup_tick(app)

    logger.info("Telegram application built")
    return app


def main() -> None:
    """Entry point: build the app and start polling."""
    logger.info("Starting Gardenit notification engine...")
    app = build_app()
    app.run_polling()
