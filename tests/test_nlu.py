"""Tests for src.core.nlu — LLM reply validation against the intent contract."""

import json

import pytest
from unittest.mock import AsyncMock, patch

from conftest import NOW
from src.core.nlu import (
    AmbiguousIntentError,
    CancelEventIntent,
    ConversationIntent,
    CreateEventIntent,
    CreateRecurringIntent,
    SnoozeIntent,
    _clean_llm_response,
    extract,
    parse_intent,
)
from src.data.models import Frequency


class TestCleanResponse:
    def test_strips_json_fence(self):
        assert _clean_llm_response('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_strips_surrounding_prose(self):
        assert _clean_llm_response('Claro! {"a": 1} Pronto.') == '{"a": 1}'


class TestParseIntent:
    def test_create_event(self):
        raw = json.dumps({
            "action": "create_event", "kind": "health", "title": "Consulta",
            "date": "2025-02-14", "time": "09:00",
            "checklist": ["RG", "Carteirinha", "Exames", "Receita", "Extra"],
        })
        intent = parse_intent(raw)
        assert isinstance(intent, CreateEventIntent)
        assert intent.time == "09:00"
        assert len(intent.checklist) == 4

    def test_recurring_weekdays_sorted_and_validated(self):
        raw = json.dumps({
            "action": "create_recurring", "title": "Academia", "time": "07:00",
            "frequency": "weekly", "weekdays": [5, 1, 3, 1],
        })
        intent = parse_intent(raw)
        assert isinstance(intent, CreateRecurringIntent)
        assert intent.frequency == Frequency.WEEKLY
        assert intent.weekdays == [1, 3, 5]

    def test_recurring_bad_weekday_is_ambiguous(self):
        raw = json.dumps({
            "action": "create_recurring", "title": "Academia", "time": "07:00",
            "frequency": "weekly", "weekdays": [7],
        })
        with pytest.raises(AmbiguousIntentError):
            parse_intent(raw)

    def test_snooze_bounds(self):
        assert parse_intent('{"action": "snooze", "minutes": 10}') == SnoozeIntent(minutes=10)
        with pytest.raises(AmbiguousIntentError):
            parse_intent('{"action": "snooze", "minutes": 0}')

    def test_fenced_cancel(self):
        intent = parse_intent('```json\n{"action": "cancel_event", "query": "dentista"}\n```')
        assert intent == CancelEventIntent(query="dentista")

    @pytest.mark.parametrize("raw", [
        "",
        "null",
        "{}",
        "not json at all",
        "[1, 2]",
        '{"action": "fly_to_moon"}',
        '{"action": "create_event", "title": "sem data"}',
    ])
    def test_invalid_replies_are_ambiguous(self, raw):
        with pytest.raises(AmbiguousIntentError):
            parse_intent(raw)


class TestExtract:
    @pytest.mark.asyncio
    async def test_prompt_carries_date_and_history(self):
        llm = AsyncMock(return_value='{"action": "conversation", "reply": "Oi!"}')
        history = [("user", "oi"), ("assistant", "Olá!")]
        with patch("src.core.nlu.complete", llm):
            intent = await extract("tudo bem?", now=NOW, history=history)

        assert intent == ConversationIntent(reply="Oi!")
        kwargs = llm.call_args.kwargs
        assert "Hoje é segunda, 2025-02-03" in kwargs["system"]
        assert kwargs["user_message"] == "tudo bem?"
        assert kwargs["history"] == history

    @pytest.mark.asyncio
    async def test_llm_failure_is_ambiguous(self):
        with patch("src.core.nlu.complete", AsyncMock(side_effect=TimeoutError())):
            with pytest.raises(AmbiguousIntentError):
                await extract("dentista amanhã", now=NOW)
