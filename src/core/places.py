"""Favorite places — nicknames for addresses the user goes to often.

Nicknames replace full addresses when events are created ("consulta na
clínica") and name the departure point for travel estimates ("saindo de
casa"). The nickname containing "casa" is the default travel origin.
"""

from __future__ import annotations

import logging
import re

from src.data.db import PlaceDB
from src.data.models import FavoritePlace

logger = logging.getLogger(__name__)

NICKNAME_MIN = 2
NICKNAME_MAX = 50
ADDRESS_MIN = 5
ADDRESS_MAX = 200
HOME_NICKNAME = "casa"

_ORIGIN_PATTERNS = [
    re.compile(r"saindo\s+d[aeo]\s+(.+?)(?:\s*[,.]|$)", re.IGNORECASE),
    re.compile(r"partindo\s+d[aeo]\s+(.+?)(?:\s*[,.]|$)", re.IGNORECASE),
    re.compile(r"vindo\s+d[aeo]\s+(.+?)(?:\s*[,.]|$)", re.IGNORECASE),
    re.compile(r"a\s+partir\s+d[aeo]\s+(.+?)(?:\s*[,.]|$)", re.IGNORECASE),
]
# Trailing time/day words that follow the origin in a sentence
_ORIGIN_TAIL = re.compile(
    r"\s+(às?\s+\d+|para\s+o|no\s+dia|amanhã|hoje|segunda|terça|quarta|quinta"
    r"|sexta|sábado|domingo).*",
    re.IGNORECASE,
)


def match_place(places: list[FavoritePlace], text: str | None) -> FavoritePlace | None:
    """Exact nickname match first, then a nickname contained in *text*."""
    if not text or not places:
        return None
    lowered = text.lower().strip()
    for place in places:
        if lowered == place.nickname.lower():
            return place
    for place in places:
        if place.nickname.lower() in lowered:
            return place
    return None


def resolve_address(place_db: PlaceDB, owner: str, address: str | None) -> str | None:
    """Swap a nickname ("na clínica") for the saved address."""
    place = match_place(place_db.list_places(owner), address)
    if place is None:
        return address
    logger.info("Address '%s' resolved to favorite '%s'", address, place.nickname)
    return place.address


def extract_origin(place_db: PlaceDB, owner: str, message: str) -> str | None:
    """Departure point from "saindo de X" style phrases, nickname-resolved."""
    for pattern in _ORIGIN_PATTERNS:
        match = pattern.search(message)
        if not match:
            continue
        origin = _ORIGIN_TAIL.sub("", match.group(1).strip()).strip()
        if not origin:
            return None
        place = match_place(place_db.list_places(owner), origin)
        return place.address if place else origin
    return None


def home_address(place_db: PlaceDB, owner: str) -> str | None:
    for place in place_db.list_places(owner):
        if HOME_NICKNAME in place.nickname.lower():
            return place.address
    return None


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def save_place(place_db: PlaceDB, owner: str, nickname: str | None, address: str | None) -> str:
    """Validate and upsert a favorite place. Returns the reply text."""
    if not nickname or not address:
        return '❌ Especifique apelido e endereço.\nEx: "salva Clínica como Rua XV 500"'
    if len(nickname.strip()) < NICKNAME_MIN:
        return f"❌ Apelido muito curto (mínimo {NICKNAME_MIN} caracteres)"
    if len(address.strip()) < ADDRESS_MIN:
        return f"❌ Endereço muito curto (mínimo {ADDRESS_MIN} caracteres)"

    normalized = nickname.lower().strip()[:NICKNAME_MAX]
    cleaned = address.strip()[:ADDRESS_MAX]
    place, created = place_db.upsert_place(owner, normalized, cleaned)

    if created:
        return f'✅ *{nickname}* salvo!\n📍 {place.address}\n\n💡 Use: "evento na {nickname}"'
    return f"✅ *{nickname}* atualizado!\n📍 {place.address}"


def list_places_reply(place_db: PlaceDB, owner: str) -> str:
    places = place_db.list_places(owner)
    if not places:
        return '📍 Nenhum local salvo.\n\n💡 Salve: "salva [nome] como [endereço]"'
    lines = [f"📍 *SEUS LOCAIS* ({len(places)})", ""]
    for i, place in enumerate(places, start=1):
        lines.append(f"{i}. *{place.nickname}*\n   📍 {place.address}\n")
    lines.append('💡 Use: "evento na [nome]"')
    return "\n".join(lines)


def remove_place(place_db: PlaceDB, owner: str, nickname: str | None) -> str:
    if not nickname:
        return '❌ Qual local remover?\nEx: "remove local Clínica"'
    needle = nickname.lower().strip()
    for place in place_db.list_places(owner):
        if needle in place.nickname.lower():
            place_db.delete_place(place.id)
            logger.info("Favorite place '%s' removed for %s", place.nickname, owner)
            return f"✅ *{place.nickname}* removido!"
    return f'❌ Local "{nickname}" não encontrado.\n\n💡 Veja: "meus locais"'
