"""
Lembra Assistant — Natural-language extraction.

Converts a free-text Portuguese message into exactly one typed intent using
the configured LLM provider. The JSON contract is a pydantic discriminated
union keyed on ``action``; anything that does not validate against it is an
AmbiguousIntentError, never a silent default.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from src.core.llm import History, complete
from src.core.timeutils import WEEKDAY_LONG, now_brt, weekday_sun0
from src.data.models import EventKind, Frequency

logger = logging.getLogger(__name__)


class AmbiguousIntentError(Exception):
    """The message could not be mapped to a valid intent."""


# ---------------------------------------------------------------------------
# JSON contract
# ---------------------------------------------------------------------------


class CreateEventIntent(BaseModel):
    """A new one-off event. Always proposed first, saved on confirmation.

    {"action": "create_event", "kind": "health", "title": "Consulta cardiologista",
     "date": "2025-02-14", "time": "09:00", "address": "clínica",
     "checklist": ["RG e carteirinha", "Exames anteriores"]}
    """
    action: Literal["create_event"] = "create_event"
    kind: str = EventKind.APPOINTMENT.value
    title: str
    date: str                       # YYYY-MM-DD
    time: str | None = None         # HH:MM, None for all-day
    person: str | None = None
    address: str | None = None
    checklist: list[str] = []

    @field_validator("checklist")
    @classmethod
    def cap_checklist(cls, v: list[str]) -> list[str]:
        return [item for item in v if item][:4]


class EditEventIntent(BaseModel):
    """{"action": "edit_event", "query": "dentista", "new_time": "08:30"}"""
    action: Literal["edit_event"] = "edit_event"
    query: str
    new_date: str | None = None
    new_time: str | None = None


class CancelEventIntent(BaseModel):
    action: Literal["cancel_event"] = "cancel_event"
    query: str


class MarkStatusIntent(BaseModel):
    """{"action": "mark_status", "query": "fono", "status": "done"}"""
    action: Literal["mark_status"] = "mark_status"
    query: str
    status: Literal["done", "pending"] = "done"


class QueryAgendaIntent(BaseModel):
    action: Literal["query_agenda"] = "query_agenda"
    period: Literal["hoje", "amanha", "semana", "todos"] = "hoje"
    status: Literal["pending", "done"] | None = None


class SnoozeIntent(BaseModel):
    action: Literal["snooze"] = "snooze"
    minutes: int = Field(gt=0, le=24 * 60)


class FavoritePlaceIntent(BaseModel):
    action: Literal["favorite_place"] = "favorite_place"
    operation: Literal["save", "list", "remove"]
    nickname: str | None = None
    address: str | None = None


class CreateRecurringIntent(BaseModel):
    """{"action": "create_recurring", "title": "Academia", "time": "07:00",
     "frequency": "weekly", "weekdays": [1, 3, 5], "duration": "3 meses"}
    """
    action: Literal["create_recurring"] = "create_recurring"
    title: str
    kind: str = EventKind.TASK.value
    time: str
    frequency: Frequency
    interval: int = Field(default=1, ge=1)
    weekdays: list[int] = []
    month_day: int | None = Field(default=None, ge=1, le=31)
    duration: str | None = None
    person: str | None = None
    address: str | None = None

    @field_validator("weekdays")
    @classmethod
    def check_weekdays(cls, v: list[int]) -> list[int]:
        if any(d < 0 or d > 6 for d in v):
            raise ValueError("weekdays must be 0 (Sunday) … 6 (Saturday)")
        return sorted(set(v))


class CreateReminderIntent(BaseModel):
    action: Literal["create_reminder"] = "create_reminder"
    title: str


class ConversationIntent(BaseModel):
    action: Literal["conversation"] = "conversation"
    reply: str


Intent = Annotated[
    Union[
        CreateEventIntent,
        EditEventIntent,
        CancelEventIntent,
        MarkStatusIntent,
        QueryAgendaIntent,
        SnoozeIntent,
        FavoritePlaceIntent,
        CreateRecurringIntent,
        CreateReminderIntent,
        ConversationIntent,
    ],
    Field(discriminator="action"),
]

_INTENT_ADAPTER: TypeAdapter[Intent] = TypeAdapter(Intent)


# ---------------------------------------------------------------------------
# System prompt for LLM
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT = """\
Você é o motor de interpretação de um assistente pessoal de lembretes no WhatsApp/Telegram.
Sua tarefa: classificar a mensagem do usuário em EXATAMENTE UMA ação e extrair os campos.

Hoje é {weekday}, {today}. Fuso: Brasília (UTC-3). Formato 24h (15h = 15:00).

Retorne APENAS um objeto JSON, sem markdown e sem texto extra.

Ações:
1. Criar evento único:
{{"action": "create_event", "kind": "birthday|appointment|task|health", "title": "...", "date": "YYYY-MM-DD", "time": "HH:MM ou null", "person": "nome ou null", "address": "endereço/apelido ou null", "checklist": ["até 4 itens práticos"]}}
   - checklist de itens a levar conforme o contexto (consulta: RG e carteirinha, exames; academia: roupa, tênis, água). Sem itens óbvios: [].
2. Editar data/hora: {{"action": "edit_event", "query": "palavras do título", "new_date": "YYYY-MM-DD ou null", "new_time": "HH:MM ou null"}}
3. Cancelar/excluir: {{"action": "cancel_event", "query": "palavras do título"}}
4. Marcar como feito/pendente ("marcar X como concluído", "já fiz X"): {{"action": "mark_status", "query": "palavras do título", "status": "done|pending"}}
5. Consultar agenda: {{"action": "query_agenda", "period": "hoje|amanha|semana|todos", "status": "pending|done ou null"}}
6. Adiar ("me lembra em 10 minutos"): {{"action": "snooze", "minutes": 10}}
7. Locais favoritos ("salva clínica como Rua X 500", "meus locais", "remove local clínica"):
{{"action": "favorite_place", "operation": "save|list|remove", "nickname": "...", "address": "..."}}
8. Evento recorrente ("academia toda seg, qua e sex 7h por 3 meses"):
{{"action": "create_recurring", "title": "...", "kind": "task|appointment|health", "time": "HH:MM", "frequency": "daily|weekly|monthly", "interval": 1, "weekdays": [0-6, domingo=0], "month_day": 1-31 ou null, "duration": "texto da duração ou null"}}
9. Lembrete sem hora ("lembra de comprar leite"): {{"action": "create_reminder", "title": "comprar leite"}}
10. Conversa casual: {{"action": "conversation", "reply": "resposta curta, no máximo 2 linhas"}}

Regras:
- "query" deve conter as palavras que identificam o evento, sem verbos de comando.
- Datas relativas ("amanhã", "terça que vem") são relativas a hoje.
- Use o histórico apenas para entender referências; a mensagem atual decide a ação.
"""


# ---------------------------------------------------------------------------
# Response cleaning
# ---------------------------------------------------------------------------


def _clean_llm_response(raw_text: str) -> str:
    """Strip markdown fences and anything outside the outermost JSON object."""
    cleaned = raw_text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned.removeprefix("```json")
    elif cleaned.startswith("```"):
        cleaned = cleaned.removeprefix("```")
    if cleaned.endswith("```"):
        cleaned = cleaned.removesuffix("```")
    cleaned = cleaned.strip()

    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start != -1 and end > start:
        cleaned = cleaned[start:end + 1]
    return cleaned


def parse_intent(raw_text: str) -> Intent:
    """Validate an LLM reply against the intent contract.

    Raises AmbiguousIntentError on empty output, invalid JSON, unknown
    action or schema mismatch.
    """
    cleaned = _clean_llm_response(raw_text or "")
    if not cleaned or cleaned in ("null", "{}"):
        raise AmbiguousIntentError("Empty extraction result")

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        logger.error("Failed to parse LLM response as JSON: %s — raw: '%s'", exc, raw_text)
        raise AmbiguousIntentError("LLM reply is not JSON") from exc

    if not isinstance(data, dict):
        raise AmbiguousIntentError(f"Expected a JSON object, got {type(data).__name__}")

    try:
        intent = _INTENT_ADAPTER.validate_python(data)
    except ValidationError as exc:
        logger.warning("LLM reply failed schema validation: %s", exc.errors()[:3])
        raise AmbiguousIntentError(f"Schema validation failed for action {data.get('action')!r}") from exc

    logger.info("Extracted intent: %s", intent.action)
    return intent


async def extract(
    text: str,
    now: datetime | None = None,
    history: History | None = None,
) -> Intent:
    """Classify *text* into one intent using the configured LLM.

    Provider errors and timeouts are reported as AmbiguousIntentError so
    the caller can answer with a clarifying question.
    """
    now = now or now_brt()
    system = _SYSTEM_PROMPT.format(
        weekday=WEEKDAY_LONG[weekday_sun0(now.date())], today=now.date().isoformat(),
    )

    try:
        raw_text = await complete(system=system, user_message=text, max_tokens=512, history=history)
    except Exception as exc:
        logger.error("LLM extraction failed: %s", exc)
        raise AmbiguousIntentError("LLM call failed") from exc

    logger.debug("LLM raw response: %s", raw_text)
    return parse_intent(raw_text)
