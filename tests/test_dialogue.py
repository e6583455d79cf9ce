"""Tests for src.core.dialogue — pending/quoted context resolution."""

import pytest
from unittest.mock import AsyncMock

from conftest import OWNER
from src.core.dialogue import (
    CLARIFY_WHICH_EVENT,
    Clarify,
    ConfirmPending,
    ConversationContext,
    DeclinePending,
    DeclineQuotedFollowup,
    Extracted,
    MarkQuotedDone,
    PendingChoice,
    PendingCreate,
    PendingEdit,
    PendingRecurring,
    QuotedMessageContext,
    is_bare_token,
    normalize,
    pending_from_dict,
    pending_to_dict,
    resolve,
)
from src.data.models import ConversationTurn


def _extractor():
    return AsyncMock(return_value="INTENT")


def _ctx(pending=None, quoted=None, active_followup=None):
    return ConversationContext(pending=pending, quoted=quoted, active_followup_event_id=active_followup)


CREATE = PendingCreate(draft={"title": "Dentista"})
CHOICE = PendingChoice(then="cancel", event_ids=[4, 5, 6])
FOLLOWUP_QUOTE = QuotedMessageContext(event_id=7, reminder_kind="followup_2", delivery_id="m9")
REMINDER_QUOTE = QuotedMessageContext(event_id=7, reminder_kind="1h", delivery_id="m8")


class TestBareTokens:
    def test_normalize(self):
        assert normalize("  Feito!! ") == "feito"
        assert normalize("Pode   Salvar.") == "pode salvar"

    @pytest.mark.parametrize("text", ["sim", "Ok", "não", "feito", "já fiz", "👍"])
    def test_confirmation_words(self, text):
        assert is_bare_token(text) is True

    def test_digit_only_with_menu(self):
        assert is_bare_token("2") is False
        assert is_bare_token("2", CHOICE) is True

    def test_duration_only_when_awaiting(self):
        assert is_bare_token("3 meses") is False
        assert is_bare_token("3 meses", PendingRecurring(draft={}, awaiting_duration=True)) is True
        assert is_bare_token("3 meses", PendingRecurring(draft={})) is False

    def test_sentences_are_not_tokens(self):
        assert is_bare_token("sim, mas muda para 15h") is False


class TestResolve:
    @pytest.mark.asyncio
    async def test_fresh_request_ignores_pending(self):
        extract = _extractor()
        result = await resolve("dentista amanhã 14h", _ctx(pending=CREATE), extract)
        assert result == Extracted("INTENT")
        extract.assert_awaited_once_with("dentista amanhã 14h")

    @pytest.mark.asyncio
    async def test_yes_confirms_pending(self):
        extract = _extractor()
        result = await resolve("Sim!", _ctx(pending=CREATE), extract)
        assert result == ConfirmPending(CREATE)
        extract.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_declines_pending(self):
        assert await resolve("não", _ctx(pending=CREATE), _extractor()) == DeclinePending(CREATE)

    @pytest.mark.asyncio
    async def test_menu_digit(self):
        assert await resolve("2", _ctx(pending=CHOICE), _extractor()) == ConfirmPending(CHOICE, choice=2)

    @pytest.mark.asyncio
    async def test_menu_digit_out_of_range(self):
        result = await resolve("5", _ctx(pending=CHOICE), _extractor())
        assert isinstance(result, Clarify)

    @pytest.mark.asyncio
    async def test_duration_answers_recurring(self):
        pending = PendingRecurring(draft={"title": "Academia"}, awaiting_duration=True)
        result = await resolve("3 meses", _ctx(pending=pending), _extractor())
        assert result == ConfirmPending(pending, duration="3 meses")

    @pytest.mark.asyncio
    async def test_pending_wins_over_quote(self):
        result = await resolve("ok", _ctx(pending=CREATE, quoted=REMINDER_QUOTE), _extractor())
        assert result == ConfirmPending(CREATE)

    @pytest.mark.asyncio
    async def test_done_quoting_reminder(self):
        result = await resolve("feito", _ctx(quoted=REMINDER_QUOTE), _extractor())
        assert result == MarkQuotedDone(7)

    @pytest.mark.asyncio
    async def test_no_quoting_followup(self):
        result = await resolve("ainda não", _ctx(quoted=FOLLOWUP_QUOTE), _extractor())
        assert result == DeclineQuotedFollowup(7)

    @pytest.mark.asyncio
    async def test_no_quoting_plain_reminder_goes_to_extraction(self):
        result = await resolve("não", _ctx(quoted=REMINDER_QUOTE), _extractor())
        assert result == Extracted("INTENT")

    @pytest.mark.asyncio
    async def test_bare_no_pushes_latest_open_followup(self):
        result = await resolve("ainda não", _ctx(active_followup=9), _extractor())
        assert result == DeclineQuotedFollowup(9)

    @pytest.mark.asyncio
    async def test_bare_no_without_open_followup_goes_to_extraction(self):
        assert await resolve("não", _ctx(), _extractor()) == Extracted("INTENT")

    @pytest.mark.asyncio
    async def test_pending_wins_over_open_followup(self):
        result = await resolve("não", _ctx(pending=CREATE, active_followup=9), _extractor())
        assert result == DeclinePending(CREATE)

    @pytest.mark.asyncio
    async def test_done_without_context_asks_which(self):
        assert await resolve("feito", _ctx(), _extractor()) == Clarify(CLARIFY_WHICH_EVENT)


class TestPendingStorage:
    def test_round_trip(self):
        pending = PendingEdit(event_id=3, event_title="Dentista", new_time="08:30")
        data = pending_to_dict(pending)
        assert data["type"] == "edit"
        assert pending_from_dict(data) == pending

    def test_unknown_or_malformed(self):
        assert pending_from_dict(None) is None
        assert pending_from_dict({"type": "teleport"}) is None
        assert pending_from_dict({"type": "edit", "bogus": 1}) is None

    def test_context_from_newest_turn_only(self):
        old = ConversationTurn(1, OWNER, "a", "b", '{"pending": {"type": "cancel", "event_id": 1, "event_title": "X"}}')
        new = ConversationTurn(2, OWNER, "c", "d", "{}")
        assert ConversationContext.from_turns([old, new]).pending is None
        assert ConversationContext.from_turns([new, old]).pending is not None

    def test_corrupt_context(self):
        turn = ConversationTurn(1, OWNER, "a", "b", "{not json")
        assert ConversationContext.from_turns([turn]).pending is None
