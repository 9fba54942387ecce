"""
Smart Calendar — Telegram Bot.

Telegram is the chat channel: every inbound message is captured here and
handed to the MessageHandler, and the daily digest is delivered back
through the same bot.

The bot's job queue also plays the external scheduler: once a day it
enqueues the digest job, and every minute it invokes the digest worker
and sends any event reminders that have come due.
"""

from __future__ import annotations

import logging
from datetime import time as dt_time
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from telegram import Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CommandHandler,
    ContextTypes,
    MessageHandler as TelegramMessageHandler,
    filters,
)

from smartcal.config import settings

if TYPE_CHECKING:
    from smartcal.core.message_handler import MessageHandler, Reply
    from smartcal.core.reminders import ReminderWorker
    from smartcal.core.scheduler import DigestWorker
    from smartcal.ports.job_queue_port import JobQueuePort

logger = logging.getLogger(__name__)

_HELP_TEXT = (
    "Send me what's coming up and I'll keep track of it:\n"
    "• meeting tomorrow 4pm with Raj\n"
    "• flight day after tomorrow 7:30am\n"
    "• call mom today 6pm\n"
    "Several lines in one message are saved as separate events.\n\n"
    "Ask about your schedule:\n"
    "• today / tomorrow / show my schedule / next 7\n\n"
    "Commands:\n"
    "/today — today's events\n"
    "/email you@example.com — also get the daily digest by email\n"
    "/digest on|off — turn the daily digest on or off"
)


def _sender(update: Update) -> tuple[str, str | None]:
    """Return (channel address, display name) for the message sender."""
    address = str(update.effective_chat.id)
    user = update.effective_user
    display_name = user.first_name if user else None
    return address, display_name


async def _send_reply(update: Update, reply: Reply) -> None:
    await update.message.reply_text(reply.text)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    _, display_name = _sender(update)
    greeting = f"Hi {display_name}! 👋" if display_name else "Hi! 👋"
    await update.message.reply_text(f"{greeting}\n\n{_HELP_TEXT}")


async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(_HELP_TEXT)


async def cmd_today(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    handler: MessageHandler = context.bot_data["handler"]
    address, display_name = _sender(update)
    await _send_reply(update, handler.handle(address, "today", display_name))


async def cmd_email(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    handler: MessageHandler = context.bot_data["handler"]
    address, display_name = _sender(update)
    if not context.args:
        await update.message.reply_text("Usage: /email you@example.com")
        return
    await _send_reply(update, handler.set_email(address, context.args[0], display_name))


async def cmd_digest(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    handler: MessageHandler = context.bot_data["handler"]
    address, display_name = _sender(update)
    choice = context.args[0].lower() if context.args else ""
    if choice not in ("on", "off"):
        await update.message.reply_text("Usage: /digest on  or  /digest off")
        return
    await _send_reply(update, handler.set_digest(address, choice == "on", display_name))


# ---------------------------------------------------------------------------
# Message handlers
# ---------------------------------------------------------------------------


async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle plain text messages — parse, then query or save events."""
    handler: MessageHandler = context.bot_data["handler"]
    address, display_name = _sender(update)
    reply = handler.handle(address, update.message.text, display_name)
    await _send_reply(update, reply)


# ---------------------------------------------------------------------------
# Scheduled jobs
# ---------------------------------------------------------------------------


async def _enqueue_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
    from smartcal.core.scheduler import enqueue_daily_digest

    queue: JobQueuePort = context.bot_data["queue"]
    try:
        enqueue_daily_digest(queue)
    except Exception as exc:
        logger.error("Failed to enqueue daily digest: %s", exc)


async def _worker_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
    worker: DigestWorker = context.bot_data["worker"]
    status = await worker.run()
    if status.status != "no_jobs":
        logger.info("Digest worker: %s", status.to_dict())


async def _reminder_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
    reminders: ReminderWorker = context.bot_data["reminders"]
    result = await reminders.run()
    if result.status != "no_reminders":
        logger.info("Reminder worker: %s", result.to_dict())


def _setup_scheduled_jobs(app: Application) -> None:
    """Register the daily enqueue trigger, the digest worker tick and the reminder tick."""
    tz = ZoneInfo(settings.TIMEZONE)
    trigger_time = dt_time(hour=settings.DIGEST_HOUR, minute=0, tzinfo=tz)

    app.job_queue.run_daily(
        _enqueue_job_callback,
        time=trigger_time,
        name="daily_digest_trigger",
    )
    app.job_queue.run_repeating(
        _worker_job_callback,
        interval=settings.WORKER_INTERVAL_SECONDS,
        first=10,
        name="digest_worker",
    )
    app.job_queue.run_repeating(
        _reminder_job_callback,
        interval=settings.REMINDER_INTERVAL_SECONDS,
        first=20,
        name="event_reminders",
    )

    logger.info(
        "Daily digest scheduled at %02d:00 %s (worker every %ds)",
        settings.DIGEST_HOUR,
        settings.TIMEZONE,
        settings.WORKER_INTERVAL_SECONDS,
    )


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_worker(bot=None) -> DigestWorker:
    """Wire a DigestWorker from the configured stores and channels."""
    from smartcal.adapters.channel_factory import create_chat_channel, create_email_channel
    from smartcal.adapters.ics_renderer import ICalendarRenderer
    from smartcal.core.scheduler import DigestWorker
    from smartcal.data.db import EventDB
    from smartcal.data.jobs import DigestLedgerDB, JobQueueDB

    return DigestWorker(
        events=EventDB(),
        queue=JobQueueDB(),
        ledger=DigestLedgerDB(),
        renderer=ICalendarRenderer(),
        chat=create_chat_channel(bot) if bot is not None else None,
        email=create_email_channel(),
    )


def build_reminder_worker(bot) -> ReminderWorker:
    """Wire a ReminderWorker that delivers through `bot`."""
    from smartcal.adapters.channel_factory import create_chat_channel
    from smartcal.core.reminders import ReminderWorker
    from smartcal.data.db import EventDB

    return ReminderWorker(events=EventDB(), chat=create_chat_channel(bot))


def build_app(
    handler: MessageHandler | None = None,
    worker: DigestWorker | None = None,
    queue: JobQueuePort | None = None,
    reminders: ReminderWorker | None = None,
) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        handler: Message handler. Defaults to one backed by the SQLite stores.
        worker: Digest worker. Defaults to one delivering through this bot.
        queue: Job queue the daily trigger writes to. Defaults to JobQueueDB.
        reminders: Reminder worker. Defaults to one delivering through this bot.
    """
    app = ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).build()

    # Wire default adapters if not provided
    if handler is None:
        from smartcal.core.message_handler import MessageHandler
        from smartcal.data.db import EventDB, RateLimitDB

        handler = MessageHandler(EventDB(), rate_limiter=RateLimitDB())

    if worker is None:
        worker = build_worker(app.bot)

    if queue is None:
        from smartcal.data.jobs import JobQueueDB
        queue = JobQueueDB()

    if reminders is None:
        reminders = build_reminder_worker(app.bot)

    app.bot_data["handler"] = handler
    app.bot_data["worker"] = worker
    app.bot_data["queue"] = queue
    app.bot_data["reminders"] = reminders

    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("today", cmd_today))
    app.add_handler(CommandHandler("email", cmd_email))
    app.add_handler(CommandHandler("digest", cmd_digest))
    app.add_handler(TelegramMessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))

    _setup_scheduled_jobs(app)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting Smart Calendar bot...")
    app = build_app()
    app.run_polling()
