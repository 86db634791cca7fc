"""
Realtime port and message DTOs (contracts-first).

Operator dashboards follow donation lifecycle changes through a broadcast
channel. The application layer only sees this contract; in-memory and
Redis pub/sub brokers live in infrastructure.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Protocol
from pydantic import BaseModel, Field
from datetime import datetime, timezone


ADMIN_DONATIONS_ROOM = "admin:donations"


def _utc_now_z() -> str:
    ts = datetime.now(timezone.utc)
    s = ts.isoformat()
    return s.replace("+00:00", "Z")


class Envelope(BaseModel):
    """Unified broadcast envelope.

    Fields:
      - type: semantic message type (donation.created / donation.status_changed)
      - room: broadcast channel
      - data: payload (JSON-serializable)
      - ts: server-generated UTC timestamp (ISO8601 with Z)
    """

    type: str
    room: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    ts: str = Field(default_factory=_utc_now_z)


Handler = Callable[[Envelope], Awaitable[None]]


class RealtimeBrokerPort(Protocol):
    """Abstraction for cross-process broadcast."""

    async def publish(self, room: str, envelope: Envelope) -> None: ...

    async def subscribe(self, handler: Handler) -> None: ...

    async def aclose(self) -> None: ...  # pragma: no cover - optional


__all__ = ["ADMIN_DONATIONS_ROOM", "Envelope", "RealtimeBrokerPort", "Handler"]
