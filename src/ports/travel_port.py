"""Travel-time port — abstract route estimation used by the reminder scheduler."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


@dataclass
class TravelEstimate:
    minutes: int
    distance_km: float | None = None
    traffic: str | None = None     # "leve" | "moderado" | "pesado"


class TravelPort(Protocol):
    """Returns None when no route can be estimated."""

    async def estimate(
        self, origin: str, destination: str, departure: datetime,
    ) -> TravelEstimate | None: ...
