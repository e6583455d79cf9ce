"""
Lembra Assistant — UI-Agnostic Action Service.

Orchestrates one inbound message end to end: load the conversation context,
resolve the message with the dialogue resolver, execute the resulting action
against the store and persist the turn (with any new pending action).

Each channel adapter (Telegram today) calls handle_message and renders the
returned ServiceResponse; this layer never sends messages itself.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable

from src.config import settings
from src.core import places
from src.core.agenda import format_agenda, period_bounds
from src.core.dialogue import (
    Clarify,
    ConfirmPending,
    ConversationContext,
    DeclinePending,
    DeclineQuotedFollowup,
    Extracted,
    MarkQuotedDone,
    PendingAction,
    PendingCancel,
    PendingChoice,
    PendingConfirmFound,
    PendingCreate,
    PendingEdit,
    PendingRecurring,
    QuotedMessageContext,
    pending_to_dict,
    resolve,
)
from src.core.event_search import (
    SearchResult,
    find_events,
    find_recent_events,
    format_event_menu,
    list_period,
)
from src.core.followup import complete_event, create_standalone_reminder, decline_followup
from src.core.nlu import (
    AmbiguousIntentError,
    CancelEventIntent,
    ConversationIntent,
    CreateEventIntent,
    CreateRecurringIntent,
    CreateReminderIntent,
    EditEventIntent,
    FavoritePlaceIntent,
    MarkStatusIntent,
    QueryAgendaIntent,
    SnoozeIntent,
    extract,
)
from src.core.recurrence import create_recurring, exclude_occurrence
from src.core.timeutils import (
    WEEKDAY_SHORT,
    compose_timestamp,
    format_date_br,
    format_remaining,
    local_date,
    now_brt,
    parse_hhmm,
    parse_timestamp,
    to_iso,
)
from src.data.models import Event, EventKind, EventStatus, Frequency

if TYPE_CHECKING:
    from src.data.db import Store

logger = logging.getLogger(__name__)

HISTORY_TURNS = 10
SNOOZE_LOOKBACK = timedelta(hours=2)
MENU_LIMIT = 5

MSG_NOT_UNDERSTOOD = "🤔 Não entendi. Pode reformular?"
MSG_TEMPORARY_ERROR = "❌ Erro temporário. Tente novamente."
MSG_CANCELED = "Ok, cancelado!"


# ---------------------------------------------------------------------------
# Response types
# ---------------------------------------------------------------------------


class ResponseKind(Enum):
    SUCCESS = "success"
    ERROR = "error"
    PROMPT = "prompt"               # awaiting confirmation / choice
    CLARIFY = "clarify"
    QUERY_RESULT = "query_result"
    CONVERSATION = "conversation"


@dataclass
class ServiceResponse:
    kind: ResponseKind
    message: str
    pending: PendingAction | None = None


def _success(message: str) -> ServiceResponse:
    return ServiceResponse(ResponseKind.SUCCESS, message)


def _error(message: str) -> ServiceResponse:
    return ServiceResponse(ResponseKind.ERROR, message)


def _prompt(message: str, pending: PendingAction) -> ServiceResponse:
    return ServiceResponse(ResponseKind.PROMPT, message, pending)


def truncate_reply(text: str, has_image: bool = False, keep_last_line: bool = False) -> str:
    """Cap outbound text at the reply budget, ending with "..." when cut.

    With keep_last_line the closing question ("Confirma?") survives and the
    body above it is shortened instead.
    """
    limit = settings.REPLY_MAX_CHARS_WITH_IMAGE if has_image else settings.REPLY_MAX_CHARS
    if len(text) <= limit:
        return text
    if keep_last_line and "\n" in text:
        body, tail = text.rsplit("\n", 1)
        budget = limit - len(tail) - 2
        if budget > 3:
            return body.rstrip("\n")[: budget - 3] + "...\n\n" + tail
    return text[: limit - 3] + "..."


# Responses capped by truncate_reply; listings and menus are sent whole
_TRUNCATED_KINDS = {ResponseKind.PROMPT, ResponseKind.CONVERSATION, ResponseKind.CLARIFY}


# ---------------------------------------------------------------------------
# ActionService
# ---------------------------------------------------------------------------

Extractor = Callable[..., Awaitable[object]]


class ActionService:
    """Executes resolved intents for one user message at a time.

    Messages from the same owner are expected to arrive serially.
    """

    def __init__(self, store: Store, extractor: Extractor = extract) -> None:
        self._store = store
        self._extract = extractor

    # ------------------------------------------------------------------
    # Public: one inbound message
    # ------------------------------------------------------------------

    async def handle_message(
        self,
        owner: str,
        handle: str,
        text: str,
        has_image: bool = False,
        quoted_delivery_id: str | None = None,
        now: datetime | None = None,
    ) -> ServiceResponse:
        """Resolve and execute *text*; returns the reply to send back."""
        now = now or now_brt()
        turns = self._store.conversations.recent_turns(owner, HISTORY_TURNS)
        quoted = self._quoted_context(quoted_delivery_id, now)
        self._acknowledge_latest(owner, now)
        ticket = self._store.followups.latest_active_for_owner(owner)
        context = ConversationContext.from_turns(turns, quoted, ticket.event_id if ticket else None)

        history = []
        for turn in turns:
            history.append(("user", turn.user_message))
            history.append(("assistant", turn.assistant_message))

        async def _extract(message: str) -> object:
            return await self._extract(message, now=now, history=history)

        try:
            resolution = await resolve(text, context, _extract)
            response = await self._execute(resolution, owner, handle, text, now)
        except AmbiguousIntentError as exc:
            logger.info("Ambiguous message from %s: %s", owner, exc)
            response = ServiceResponse(ResponseKind.CLARIFY, MSG_NOT_UNDERSTOOD)
        except ValueError as exc:
            logger.info("Rejected input from %s: %s", owner, exc)
            response = _error("❌ Data ou horário inválido. Ex: 14:30, amanhã às 9h.")
        except Exception as exc:
            logger.error("Failed to handle message from %s: %s", owner, exc)
            response = _error(MSG_TEMPORARY_ERROR)

        if response.kind in _TRUNCATED_KINDS:
            response.message = truncate_reply(
                response.message, has_image, keep_last_line=response.kind == ResponseKind.PROMPT,
            )

        self._save_turn(owner, text, has_image, response)
        return response

    # ------------------------------------------------------------------
    # Context helpers
    # ------------------------------------------------------------------

    def _quoted_context(self, delivery_id: str | None, now: datetime) -> QuotedMessageContext | None:
        if not delivery_id:
            return None
        sent = self._store.sent.find_by_delivery_id(delivery_id)
        if sent is None:
            return None
        if not sent.read_at:
            self._store.sent.mark_read(delivery_id, to_iso(now))
        return QuotedMessageContext(
            event_id=sent.event_id, reminder_kind=sent.reminder_kind, delivery_id=delivery_id,
        )

    def _acknowledge_latest(self, owner: str, now: datetime) -> None:
        """An inbound message counts as having read the latest delivery."""
        latest = self._store.sent.latest_for_owner(owner)
        if latest is not None and latest.delivery_id and not latest.read_at:
            self._store.sent.mark_read(latest.delivery_id, to_iso(now))

    def _save_turn(self, owner: str, text: str, has_image: bool, response: ServiceResponse) -> None:
        user_message = f"{text or 'Imagem'} [+imagem]" if has_image else text
        context = {"pending": pending_to_dict(response.pending)} if response.pending else {}
        try:
            self._store.conversations.add_turn(owner, user_message, response.message, context)
        except sqlite3.Error as exc:
            logger.error("Could not persist conversation turn for %s: %s", owner, exc)

    # ------------------------------------------------------------------
    # Resolution dispatch
    # ------------------------------------------------------------------

    async def _execute(self, resolution, owner: str, handle: str, text: str, now: datetime) -> ServiceResponse:
        if isinstance(resolution, Clarify):
            return ServiceResponse(ResponseKind.CLARIFY, resolution.message)
        if isinstance(resolution, MarkQuotedDone):
            return self._mark_done_by_id(resolution.event_id)
        if isinstance(resolution, DeclineQuotedFollowup):
            return self._decline_followup(resolution.event_id, now)
        if isinstance(resolution, DeclinePending):
            return _success(MSG_CANCELED)
        if isinstance(resolution, ConfirmPending):
            return self._confirm(resolution, owner, now)
        if isinstance(resolution, Extracted):
            return self._dispatch_intent(resolution.intent, owner, handle, text, now)
        raise TypeError(f"Unhandled resolution: {type(resolution).__name__}")

    def _dispatch_intent(self, intent, owner: str, handle: str, text: str, now: datetime) -> ServiceResponse:
        if isinstance(intent, CreateEventIntent):
            return self._propose_create(intent, owner, text)
        if isinstance(intent, EditEventIntent):
            return self._propose_edit(intent, owner, now)
        if isinstance(intent, CancelEventIntent):
            return self._propose_cancel(intent, owner, now)
        if isinstance(intent, MarkStatusIntent):
            return self._mark_status(intent, owner, now)
        if isinstance(intent, QueryAgendaIntent):
            return self._query_agenda(intent, owner, now)
        if isinstance(intent, SnoozeIntent):
            return self._snooze(intent, owner, handle, now)
        if isinstance(intent, FavoritePlaceIntent):
            return self._favorite_place(intent, owner)
        if isinstance(intent, CreateRecurringIntent):
            return self._propose_recurring(intent)
        if isinstance(intent, CreateReminderIntent):
            return _success(create_standalone_reminder(self._store, owner, handle, intent.title, now))
        if isinstance(intent, ConversationIntent):
            return ServiceResponse(ResponseKind.CONVERSATION, intent.reply)
        raise AmbiguousIntentError(f"Unsupported intent: {type(intent).__name__}")

    # ------------------------------------------------------------------
    # Confirmations
    # ------------------------------------------------------------------

    def _confirm(self, resolution: ConfirmPending, owner: str, now: datetime) -> ServiceResponse:
        pending = resolution.pending

        if isinstance(pending, PendingCreate):
            return self._create_from_draft(owner, pending.draft)

        if isinstance(pending, PendingRecurring):
            draft = dict(pending.draft)
            if resolution.duration:
                draft["duration"] = resolution.duration
            return self._create_recurring(owner, draft, now)

        if isinstance(pending, PendingEdit):
            event = self._active_event(pending.event_id)
            if event is None:
                return _success(f"⚠️ *{pending.event_title}* não está mais ativo. Nada alterado.")
            return self._apply_edit(event, pending.new_date, pending.new_time)

        if isinstance(pending, PendingCancel):
            event = self._active_event(pending.event_id)
            if event is None:
                return _success(f"⚠️ *{pending.event_title}* já não está ativo.")
            return self._apply_cancel(event)

        if isinstance(pending, PendingConfirmFound):
            event = self._active_event(pending.event_id)
            if event is None:
                return _success(f"⚠️ *{pending.event_title}* já não está ativo.")
            if pending.then == "edit":
                return self._edit_prompt(event, pending.new_date, pending.new_time)
            return self._cancel_prompt(event)

        if isinstance(pending, PendingChoice):
            if resolution.choice is None:
                return ServiceResponse(
                    ResponseKind.CLARIFY,
                    f"Responda com o número (1 a {len(pending.event_ids)}).",
                    pending,
                )
            event = self._store.events.get_event(pending.event_ids[resolution.choice - 1])
            if event is None or event.status == EventStatus.CANCELED:
                return _success("⚠️ Esse evento não está mais ativo.")
            if pending.then == "edit":
                return self._apply_edit(event, pending.new_date, pending.new_time)
            if pending.then == "cancel":
                return self._apply_cancel(event)
            return self._apply_status(event, pending.status or EventStatus.DONE.value)

        raise TypeError(f"Unhandled pending action: {type(pending).__name__}")

    def _active_event(self, event_id: int) -> Event | None:
        event = self._store.events.get_event(event_id)
        if event is None or event.status != EventStatus.PENDING:
            return None
        return event

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def _propose_create(self, intent: CreateEventIntent, owner: str, text: str) -> ServiceResponse:
        day = date.fromisoformat(intent.date)
        timestamp = compose_timestamp(day, intent.time or "00:00")
        address = places.resolve_address(self._store.places, owner, intent.address)
        origin = places.extract_origin(self._store.places, owner, text)

        draft = {
            "kind": EventKind.from_label(intent.kind).value,
            "title": intent.title.strip(),
            "timestamp": timestamp,
            "person": intent.person,
            "address": address,
            "checklist": intent.checklist,
            "travel_origin": origin,
        }

        when = format_date_br(parse_timestamp(timestamp)) if intent.time else day.strftime("%d/%m")
        lines = ["📋 Entendi:", f"• {draft['title']}", f"• {when}"]
        if address:
            lines.append(f"📍 {address}")
        if intent.checklist:
            lines.append("")
            lines.append("📋 Vou lembrar:")
            lines += [f"□ {item}" for item in intent.checklist]
        lines.append("")
        lines.append("Confirma?")
        return _prompt("\n".join(lines), PendingCreate(draft=draft))

    def _create_from_draft(self, owner: str, draft: dict) -> ServiceResponse:
        event = self._store.events.add_event(
            owner=owner,
            kind=EventKind(draft["kind"]),
            title=draft["title"],
            timestamp=draft["timestamp"],
            person=draft.get("person"),
            address=draft.get("address"),
            checklist=draft.get("checklist") or [],
            travel_origin=draft.get("travel_origin"),
        )
        return _success(f"✅ Salvo! *{event.title}* — {format_date_br(event.start)}")

    # ------------------------------------------------------------------
    # Recurring
    # ------------------------------------------------------------------

    def _propose_recurring(self, intent: CreateRecurringIntent) -> ServiceResponse:
        parse_hhmm(intent.time)
        draft = intent.model_dump(mode="json")

        if intent.frequency == Frequency.WEEKLY and intent.weekdays:
            rhythm = "toda " + ", ".join(WEEKDAY_SHORT[d] for d in intent.weekdays)
        elif intent.frequency == Frequency.MONTHLY:
            rhythm = f"todo dia {intent.month_day}" if intent.month_day else "todo mês"
        elif intent.frequency == Frequency.WEEKLY:
            rhythm = "toda semana"
        else:
            rhythm = "todo dia"
        if intent.interval > 1:
            rhythm += f" (a cada {intent.interval})"

        lines = [f"🔁 *{intent.title}*", f"• {rhythm} às {intent.time}"]
        if intent.duration:
            lines.append(f"• {intent.duration}")
            lines += ["", "Confirma?"]
            return _prompt("\n".join(lines), PendingRecurring(draft=draft))

        lines += ["", "Até quando? (ex: 3 meses, 10 vezes, até dezembro)"]
        return _prompt("\n".join(lines), PendingRecurring(draft=draft, awaiting_duration=True))

    def _create_recurring(self, owner: str, draft: dict, now: datetime) -> ServiceResponse:
        result = create_recurring(
            self._store,
            owner=owner,
            title=draft["title"],
            hhmm=draft["time"],
            frequency=Frequency(draft["frequency"]),
            kind=EventKind.from_label(draft.get("kind")),
            interval=draft.get("interval") or 1,
            weekdays=draft.get("weekdays") or None,
            month_day=draft.get("month_day"),
            duration=draft.get("duration"),
            person=draft.get("person"),
            address=places.resolve_address(self._store.places, owner, draft.get("address")),
            today=now.date(),
        )
        return _success(result.reply)

    # ------------------------------------------------------------------
    # Edit / cancel
    # ------------------------------------------------------------------

    def _propose_edit(self, intent: EditEventIntent, owner: str, now: datetime) -> ServiceResponse:
        if not intent.new_date and not intent.new_time:
            return _error("❌ Me diga a nova data ou horário.\nEx: \"muda dentista para 8h30\"")
        if intent.new_time:
            parse_hhmm(intent.new_time)
        if intent.new_date:
            date.fromisoformat(intent.new_date)

        result = find_events(self._store.events, owner, intent.query, now=now)
        if not result.events:
            return _error(f"❌ Não encontrei \"{intent.query}\" na sua agenda.")
        return self._single_or_menu(
            result, "edit", "✏️ Qual deles alterar?",
            new_date=intent.new_date, new_time=intent.new_time,
        )

    def _propose_cancel(self, intent: CancelEventIntent, owner: str, now: datetime) -> ServiceResponse:
        result = find_events(self._store.events, owner, intent.query, now=now)
        if not result.events:
            return _error(f"❌ Não encontrei \"{intent.query}\" na sua agenda.")
        return self._single_or_menu(result, "cancel", "🗑️ Qual deles cancelar?")

    def _single_or_menu(
        self,
        result: SearchResult,
        then: str,
        menu_title: str,
        new_date: str | None = None,
        new_time: str | None = None,
    ) -> ServiceResponse:
        if len(result.events) == 1:
            event = result.events[0]
            if result.was_fuzzy:
                return _prompt(
                    f"🔍 Você quis dizer *{event.title}* ({format_date_br(event.start)})?",
                    PendingConfirmFound(
                        event_id=event.id, event_title=event.title, then=then,
                        new_date=new_date, new_time=new_time,
                    ),
                )
            if then == "edit":
                return self._edit_prompt(event, new_date, new_time)
            return self._cancel_prompt(event)

        events = result.events[:MENU_LIMIT]
        return ServiceResponse(
            ResponseKind.PROMPT,
            f"{menu_title}\n\n{format_event_menu(events, MENU_LIMIT)}\n\nResponda com o número.",
            PendingChoice(
                then=then, event_ids=[e.id for e in events], new_date=new_date, new_time=new_time,
            ),
        )

    def _new_timestamp(self, event: Event, new_date: str | None, new_time: str | None) -> str:
        start = event.start
        day = date.fromisoformat(new_date) if new_date else start.date()
        hhmm = new_time or f"{start.hour:02d}:{start.minute:02d}"
        return compose_timestamp(day, hhmm)

    def _edit_prompt(self, event: Event, new_date: str | None, new_time: str | None) -> ServiceResponse:
        new_ts = self._new_timestamp(event, new_date, new_time)
        return _prompt(
            f"✏️ Alterar *{event.title}*\nde {format_date_br(event.start)}\n"
            f"para {format_date_br(parse_timestamp(new_ts))}?\n\nConfirma?",
            PendingEdit(event_id=event.id, event_title=event.title, new_date=new_date, new_time=new_time),
        )

    def _cancel_prompt(self, event: Event) -> ServiceResponse:
        return _prompt(
            f"🗑️ Cancelar *{event.title}* ({format_date_br(event.start)})?\n\nConfirma?",
            PendingCancel(event_id=event.id, event_title=event.title),
        )

    def _apply_edit(self, event: Event, new_date: str | None, new_time: str | None) -> ServiceResponse:
        new_ts = self._new_timestamp(event, new_date, new_time)
        self._store.events.update_fields(event.id, timestamp=new_ts)
        return _success(f"✅ *{event.title}* alterado para {format_date_br(parse_timestamp(new_ts))}")

    def _apply_cancel(self, event: Event) -> ServiceResponse:
        if event.is_recurring and event.recurrence_ref is not None:
            exclude_occurrence(self._store, event.recurrence_ref, local_date(event.start).isoformat())
        self._store.events.set_status(event.id, EventStatus.CANCELED)
        return _success(f"🗑️ *{event.title}* cancelado.")

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def _mark_status(self, intent: MarkStatusIntent, owner: str, now: datetime) -> ServiceResponse:
        result = find_recent_events(self._store.events, owner, intent.query, now=now)
        if not result.events:
            return _error(f"❌ Não encontrei \"{intent.query}\" nos últimos dias.")
        if len(result.events) == 1:
            return self._apply_status(result.events[0], intent.status)
        return ServiceResponse(
            ResponseKind.PROMPT,
            f"✅ Qual deles?\n\n{format_event_menu(result.events, MENU_LIMIT)}\n\nResponda com o número.",
            PendingChoice(
                then="mark_status", event_ids=[e.id for e in result.events], status=intent.status,
            ),
        )

    def _apply_status(self, event: Event, status: str) -> ServiceResponse:
        if status == EventStatus.DONE.value:
            complete_event(self._store, event)
            return _success(f"🎉 Ótimo! *{event.title}* marcado como feito!")
        self._store.events.set_status(event.id, EventStatus.PENDING)
        return _success(f"⏳ *{event.title}* voltou para pendente.")

    def _mark_done_by_id(self, event_id: int) -> ServiceResponse:
        event = self._store.events.get_event(event_id)
        if event is None or event.status == EventStatus.CANCELED:
            return _success("⚠️ Esse evento não está mais ativo.")
        if event.status == EventStatus.DONE:
            return _success(f"👍 *{event.title}* já estava marcado como feito.")
        return self._apply_status(event, EventStatus.DONE.value)

    def _decline_followup(self, event_id: int, now: datetime) -> ServiceResponse:
        ticket = self._store.followups.get_for_event(event_id)
        if ticket is None or not ticket.active or ticket.completed:
            return _success("👍 Ok!")
        return _success(decline_followup(self._store, ticket, now))

    # ------------------------------------------------------------------
    # Agenda / snooze / places
    # ------------------------------------------------------------------

    def _query_agenda(self, intent: QueryAgendaIntent, owner: str, now: datetime) -> ServiceResponse:
        start, end = period_bounds(intent.period, now)
        events = list_period(self._store.events, owner, start, end)
        if intent.status:
            events = [e for e in events if e.status.value == intent.status]
        return ServiceResponse(ResponseKind.QUERY_RESULT, format_agenda(events, intent.period))

    def _snooze(self, intent: SnoozeIntent, owner: str, handle: str, now: datetime) -> ServiceResponse:
        send_at = now + timedelta(minutes=intent.minutes)
        message = "⏰ Lembrete!"
        event_id = None

        latest = self._store.sent.latest_for_owner(owner, since=to_iso(now - SNOOZE_LOOKBACK))
        if latest is not None:
            event = self._store.events.get_event(latest.event_id)
            if event is not None:
                event_id = event.id
                remaining = int((event.start - send_at).total_seconds() // 60)
                if remaining > 0:
                    message = f"⏰ {event.title} em {format_remaining(remaining)}"
                else:
                    message = f"⏰ {event.title}"

        self._store.snoozes.add_snooze(owner, handle, message, to_iso(send_at), event_id)
        return _success(f"⏰ Ok! Te lembro em {intent.minutes} minutos.")

    def _favorite_place(self, intent: FavoritePlaceIntent, owner: str) -> ServiceResponse:
        if intent.operation == "save":
            reply = places.save_place(self._store.places, owner, intent.nickname, intent.address)
        elif intent.operation == "remove":
            reply = places.remove_place(self._store.places, owner, intent.nickname)
        else:
            reply = places.list_places_reply(self._store.places, owner)
        kind = ResponseKind.ERROR if reply.startswith("❌") else ResponseKind.SUCCESS
        return ServiceResponse(kind, reply)
