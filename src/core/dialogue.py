"""Dialogue state resolver — decides what a short incoming message means.

Combines the current text with the pending action (a proposal awaiting
yes/no or a numbered choice) and the quoted-message context (the bot
message the user replied to). Rules are tried in order; the first match
wins:

1. Text that is not a bare confirmation token is a fresh request and goes
   to extraction, even when a pending action exists.
2. A bare token with a pending action confirms, declines or picks from it.
3. A completion acknowledgment quoting an event marks that event done; a
   bare "não" pushes the quoted follow-up, or without a quote the most
   recently asked open one.
4. A completion acknowledgment with no context gets a clarifying question.
5. Anything else goes to extraction.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Awaitable, Callable, Union

from src.core.recurrence import is_duration_phrase
from src.data.models import ConversationTurn

logger = logging.getLogger(__name__)

AFFIRMATIVE = frozenset({
    "sim", "s", "ok", "okay", "confirma", "confirmo", "confirmado", "isso", "pode",
    "pode salvar", "pode sim", "correto", "certo", "claro", "beleza", "blz", "yes", "👍",
})
NEGATIVE = frozenset({
    "não", "nao", "n", "cancela", "errado", "deixa", "deixa pra lá", "deixa pra la",
    "ainda não", "ainda nao", "no",
})
COMPLETION = frozenset({
    "feito", "fiz", "já fiz", "ja fiz", "fiz sim", "pronto", "concluído", "concluido",
    "done", "ok", "sim", "já", "ja", "✅",
})

_TRIM = " \t\n.!?,;"


def normalize(text: str) -> str:
    return " ".join((text or "").strip(_TRIM).lower().split())


# ---------------------------------------------------------------------------
# Context: pending actions and quoted messages
# ---------------------------------------------------------------------------


@dataclass
class PendingEdit:
    event_id: int
    event_title: str
    new_date: str | None = None
    new_time: str | None = None


@dataclass
class PendingCancel:
    event_id: int
    event_title: str


@dataclass
class PendingConfirmFound:
    """Asked after a single fuzzy hit; a yes turns into the edit/cancel proposal."""

    event_id: int
    event_title: str
    then: str                   # "edit" | "cancel"
    new_date: str | None = None
    new_time: str | None = None


@dataclass
class PendingChoice:
    """Numbered menu; the chosen event gets *then* applied directly."""

    then: str                   # "edit" | "cancel" | "mark_status"
    event_ids: list[int] = field(default_factory=list)
    new_date: str | None = None
    new_time: str | None = None
    status: str | None = None


@dataclass
class PendingCreate:
    draft: dict                 # CreateEventIntent fields, address already resolved


@dataclass
class PendingRecurring:
    draft: dict                 # CreateRecurringIntent fields
    awaiting_duration: bool = False


PendingAction = Union[
    PendingEdit, PendingCancel, PendingConfirmFound, PendingChoice, PendingCreate, PendingRecurring,
]

_PENDING_TYPES: dict[str, type] = {
    "edit": PendingEdit,
    "cancel": PendingCancel,
    "confirm_found": PendingConfirmFound,
    "choice": PendingChoice,
    "create": PendingCreate,
    "recurring": PendingRecurring,
}
_PENDING_TAGS = {cls: tag for tag, cls in _PENDING_TYPES.items()}


def pending_to_dict(pending: PendingAction) -> dict:
    return {"type": _PENDING_TAGS[type(pending)], **asdict(pending)}


def pending_from_dict(data: dict | None) -> PendingAction | None:
    """Rebuild a pending action from its stored form; unknown shapes → None."""
    if not data:
        return None
    fields = dict(data)
    cls = _PENDING_TYPES.get(fields.pop("type", None))
    if cls is None:
        logger.warning("Discarding unknown pending action: %s", data)
        return None
    try:
        return cls(**fields)
    except TypeError as exc:
        logger.warning("Discarding malformed pending action %s: %s", data, exc)
        return None


@dataclass
class QuotedMessageContext:
    """The bot message a user replied to, resolved through the sent-log."""

    event_id: int
    reminder_kind: str
    delivery_id: str | None = None

    @property
    def is_followup(self) -> bool:
        return self.reminder_kind.startswith("followup_")


@dataclass
class ConversationContext:
    pending: PendingAction | None = None
    quoted: QuotedMessageContext | None = None
    history: list[ConversationTurn] = field(default_factory=list)
    active_followup_event_id: int | None = None   # most recently asked open ticket

    @classmethod
    def from_turns(
        cls,
        turns: list[ConversationTurn],
        quoted: QuotedMessageContext | None = None,
        active_followup_event_id: int | None = None,
    ) -> ConversationContext:
        """Pending action comes from the newest turn only."""
        pending = None
        if turns:
            try:
                blob = json.loads(turns[-1].context_json or "{}")
            except json.JSONDecodeError:
                logger.warning("Corrupt context on turn #%d", turns[-1].id)
                blob = {}
            pending = pending_from_dict(blob.get("pending"))
        return cls(
            pending=pending, quoted=quoted, history=list(turns),
            active_followup_event_id=active_followup_event_id,
        )


# ---------------------------------------------------------------------------
# Resolutions
# ---------------------------------------------------------------------------


@dataclass
class ConfirmPending:
    pending: PendingAction
    choice: int | None = None       # 1-based menu position
    duration: str | None = None     # duration phrase answering "Até quando?"


@dataclass
class DeclinePending:
    pending: PendingAction


@dataclass
class MarkQuotedDone:
    event_id: int


@dataclass
class DeclineQuotedFollowup:
    event_id: int


@dataclass
class Clarify:
    message: str


@dataclass
class Extracted:
    intent: object                  # one of src.core.nlu intents


Resolution = Union[ConfirmPending, DeclinePending, MarkQuotedDone, DeclineQuotedFollowup, Clarify, Extracted]

Extractor = Callable[[str], Awaitable[object]]

CLARIFY_WHICH_EVENT = "🤔 Feito o quê? Me diga qual compromisso ou responda à mensagem do lembrete."


def _menu_size(pending: PendingAction) -> int:
    return len(pending.event_ids) if isinstance(pending, PendingChoice) else 0


def is_bare_token(text: str, pending: PendingAction | None = None) -> bool:
    """True for confirmation/negation/acknowledgment words, menu digits and,
    while a recurring draft waits for "Até quando?", a duration phrase.
    """
    norm = normalize(text)
    if not norm:
        return False
    if norm in AFFIRMATIVE or norm in NEGATIVE or norm in COMPLETION:
        return True
    if norm.isdigit() and _menu_size(pending) > 0:
        return True
    if isinstance(pending, PendingRecurring) and pending.awaiting_duration:
        return is_duration_phrase(norm)
    return False


async def resolve(text: str, context: ConversationContext, extract: Extractor) -> Resolution:
    """Pick exactly one action for *text* under *context*."""
    norm = normalize(text)
    pending = context.pending

    # 1. explicit request: stale pending is ignored
    if not is_bare_token(text, pending):
        if pending is not None:
            logger.info("Ignoring pending %s for a fresh request", type(pending).__name__)
        return Extracted(await extract(text))

    # 2. bare token answering the pending action
    if pending is not None:
        if norm.isdigit() and isinstance(pending, PendingChoice):
            choice = int(norm)
            if 1 <= choice <= len(pending.event_ids):
                return ConfirmPending(pending, choice=choice)
            return Clarify(f"Escolha um número de 1 a {len(pending.event_ids)}.")
        if norm in NEGATIVE:
            return DeclinePending(pending)
        if norm in AFFIRMATIVE or norm in COMPLETION:
            return ConfirmPending(pending)
        if isinstance(pending, PendingRecurring):
            return ConfirmPending(pending, duration=text.strip())

    # 3. acknowledgment of a quoted reminder
    if context.quoted is not None:
        if norm in COMPLETION or norm in AFFIRMATIVE:
            return MarkQuotedDone(context.quoted.event_id)
        if norm in NEGATIVE and context.quoted.is_followup:
            return DeclineQuotedFollowup(context.quoted.event_id)
    elif norm in NEGATIVE and context.active_followup_event_id is not None:
        return DeclineQuotedFollowup(context.active_followup_event_id)

    # 4. acknowledgment about nothing in particular
    if norm in COMPLETION:
        return Clarify(CLARIFY_WHICH_EVENT)

    # 5. everything else
    return Extracted(await extract(text))
