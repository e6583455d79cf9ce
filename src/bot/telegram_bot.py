"""
Lembra Assistant — Telegram Bot.

Telegram is the chat channel and the host of the periodic trigger: every
inbound text goes to the ActionService, and the job queue runs the
reminder, follow-up and snooze ticks plus the daily morning agenda and the
weekly summary. With MESSAGING_PROVIDER=zapi it also serves the Z-API
read-receipt webhook for the lifetime of the application.

Security-first: when ALLOWED_USER_IDS is set, other users are silently ignored.
"""

from __future__ import annotations

import logging
from datetime import time as dt_time
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine

from telegram import Update
from telegram.error import BadRequest
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from src.config import settings
from src.core.action_service import ActionService
from src.core.agenda import format_agenda, period_bounds
from src.core.event_search import list_period
from src.core.timeutils import BRT, now_brt

if TYPE_CHECKING:
    from src.data.db import Store
    from src.ports.notification_port import NotificationPort
    from src.ports.travel_port import TravelPort

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores messages from unauthorized users.

    Does NOT send any response to strangers — the bot must not reveal
    its existence to unauthorized users. An empty allow-list opens the bot.
    """

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        allowed = settings.ALLOWED_USER_IDS
        if user is None or (allowed and user.id not in allowed):
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _owner_id(update: Update) -> str:
    return str(update.effective_user.id)


def _ensure_user(store: Store, update: Update) -> str:
    """Return the user's channel handle, registering them on first contact."""
    owner = _owner_id(update)
    handle = store.users.handle_for(owner)
    if handle:
        return handle
    user = store.users.add_user(owner, str(update.effective_chat.id), update.effective_user.first_name or "")
    logger.info("Registered user %s on first message", owner)
    return user.handle


async def _reply(update: Update, text: str) -> None:
    try:
        await update.message.reply_text(text, parse_mode="Markdown")
    except BadRequest:
        await update.message.reply_text(text)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — register the user and say hello.

    With the WhatsApp transport, ``/start 5511999999999`` binds the phone
    number that outbound reminders go to.
    """
    store: Store = context.bot_data["store"]
    handle = str(update.effective_chat.id)
    if settings.MESSAGING_PROVIDER.lower() == "zapi" and context.args:
        handle = "".join(ch for ch in context.args[0] if ch.isdigit())

    store.users.add_user(_owner_id(update), handle, update.effective_user.first_name or "")
    await _reply(
        update,
        "Olá! Eu sou o *Lembra* 👋\n\n"
        "Me diga o que precisa lembrar, do seu jeito:\n"
        "• \"dentista amanhã às 14h\"\n"
        "• \"academia toda seg, qua e sex 7h\"\n"
        "• \"lembra de comprar leite\"\n"
        "• \"o que tenho hoje?\"\n\n"
        "Digite /ajuda para mais exemplos.",
    )


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /ajuda — usage examples."""
    await _reply(
        update,
        "*Exemplos:*\n"
        "• \"consulta na clínica sexta 9h saindo de casa\"\n"
        "• \"muda dentista para 8h30\"\n"
        "• \"cancela academia de amanhã\"\n"
        "• \"já fiz a fono\"\n"
        "• \"me lembra em 10 minutos\"\n"
        "• \"salva clínica como Rua XV 500\" / \"meus locais\"\n"
        "/hoje — agenda de hoje",
    )


@authorized_only
async def cmd_today(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /hoje — today's agenda without going through the LLM."""
    store: Store = context.bot_data["store"]
    start, end = period_bounds("hoje", now_brt())
    events = list_period(store.events, _owner_id(update), start, end)
    await _reply(update, format_agenda(events, "hoje"))


# ---------------------------------------------------------------------------
# Message handlers
# ---------------------------------------------------------------------------


async def _process(update: Update, context: ContextTypes.DEFAULT_TYPE, text: str, has_image: bool) -> None:
    store: Store = context.bot_data["store"]
    service: ActionService = context.bot_data["service"]

    handle = _ensure_user(store, update)
    quoted = update.message.reply_to_message
    quoted_id = str(quoted.message_id) if quoted is not None else None

    response = await service.handle_message(
        owner=_owner_id(update),
        handle=handle,
        text=text,
        has_image=has_image,
        quoted_delivery_id=quoted_id,
    )
    await _reply(update, response.message)


@authorized_only
async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle plain text messages — route to the action service."""
    await _process(update, context, update.message.text, has_image=False)


@authorized_only
async def handle_photo(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle photos — only the caption is interpreted."""
    await _process(update, context, update.message.caption or "", has_image=True)


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(
    store: Store | None = None,
    notifier: NotificationPort | None = None,
    travel: TravelPort | None = None,
) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        store: Persistence bundle. Defaults to Store() on DATABASE_PATH.
        notifier: Outbound transport. Defaults to the MESSAGING_PROVIDER
                  adapter (created from the bot instance after app is built).
        travel: Travel-time port. Defaults to Google Maps when
                GOOGLE_MAPS_API_KEY is set, else travel is disabled.
    """
    app = (
        ApplicationBuilder()
        .token(settings.TELEGRAM_BOT_TOKEN)
        .post_init(_start_status_webhook)
        .post_shutdown(_stop_status_webhook)
        .build()
    )

    # Wire default adapters if not provided
    if store is None:
        from src.data.db import Store
        store = Store()

    if notifier is None:
        from src.adapters.notifier_factory import create_notifier
        notifier = create_notifier(app.bot)

    if travel is None and settings.GOOGLE_MAPS_API_KEY:
        from src.integrations.google_maps import GoogleMapsTravel
        travel = GoogleMapsTravel(settings.GOOGLE_MAPS_API_KEY)

    app.bot_data["store"] = store
    app.bot_data["notifier"] = notifier
    app.bot_data["travel"] = travel
    app.bot_data["service"] = ActionService(store)

    # Commands
    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler(["ajuda", "help"], cmd_help))
    app.add_handler(CommandHandler("hoje", cmd_today))

    # Text and captioned photos
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))
    app.add_handler(MessageHandler(filters.PHOTO, handle_photo))

    _setup_jobs(app, store, notifier, travel)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def _setup_jobs(
    app: Application,
    store: Store,
    notifier: NotificationPort,
    travel: TravelPort | None,
) -> None:
    """Register the periodic tick, the daily morning agenda and the weekly summary."""
    from src.core.scheduler import run_periodic_tick, send_morning_agenda, send_weekly_summary

    async def _tick_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
        await run_periodic_tick(store, notifier, travel)

    async def _morning_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
        await send_morning_agenda(store, notifier)

    async def _weekly_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
        await send_weekly_summary(store, notifier)

    app.job_queue.run_repeating(
        _tick_job_callback,
        interval=settings.REMINDER_INTERVAL_MINUTES * 60,
        first=10,
        name="reminder_tick",
    )
    app.job_queue.run_daily(
        _morning_job_callback,
        time=dt_time(hour=settings.MORNING_AGENDA_HOUR, minute=0, tzinfo=BRT),
        name="morning_agenda",
    )
    app.job_queue.run_daily(
        _weekly_job_callback,
        time=dt_time(hour=settings.WEEKLY_SUMMARY_HOUR, minute=0, tzinfo=BRT),
        days=(settings.WEEKLY_SUMMARY_WEEKDAY,),
        name="weekly_summary",
    )

    logger.info(
        "Periodic tick every %d min; morning agenda at %02d:00 BRT; weekly summary on day %d at %02d:00",
        settings.REMINDER_INTERVAL_MINUTES,
        settings.MORNING_AGENDA_HOUR,
        settings.WEEKLY_SUMMARY_WEEKDAY,
        settings.WEEKLY_SUMMARY_HOUR,
    )


async def _start_status_webhook(app: Application) -> None:
    """Open the Z-API read-receipt endpoint when WhatsApp is the outbound channel."""
    if settings.MESSAGING_PROVIDER != "zapi":
        return
    from src.bot.zapi_webhook import start_status_server

    app.bot_data["status_webhook"] = await start_status_server(
        app.bot_data["store"], settings.ZAPI_WEBHOOK_PORT,
    )


async def _stop_status_webhook(app: Application) -> None:
    runner = app.bot_data.pop("status_webhook", None)
    if runner is not None:
        await runner.cleanup()


def main() -> None:
    """Entry point: build the app and start polling."""
    logger.info("Starting Lembra Assistant bot...")
    app = build_app()
    app.run_polling()
