"""
Bridges donation domain events onto the realtime broker.

Events become Envelopes in the operator room; the admin dashboard uses
them to refresh lists and pending-count badges.
"""
from __future__ import annotations

from dataclasses import asdict
from typing import Any

from application.ports.realtime import ADMIN_DONATIONS_ROOM, Envelope, RealtimeBrokerPort
from core.logging_config import get_logger
from domain.donation.events import DonationCreated, DonationStatusChanged


logger = get_logger(__name__)

EVENT_TYPES = {
    DonationCreated: "donation.created",
    DonationStatusChanged: "donation.status_changed",
}


def to_envelope(event: Any, room: str = ADMIN_DONATIONS_ROOM) -> Envelope:
    event_type = EVENT_TYPES.get(type(event))
    if event_type is None:
        raise ValueError(f"Unsupported event: {type(event).__name__}")
    data = asdict(event)
    data["occurred_at"] = event.occurred_at.isoformat()
    return Envelope(type=event_type, room=room, data=data)


class RealtimeEventPublisher:
    def __init__(self, broker: RealtimeBrokerPort, room: str = ADMIN_DONATIONS_ROOM) -> None:
        self._broker = broker
        self._room = room

    async def publish(self, event: Any) -> None:
        envelope = to_envelope(event, self._room)
        await self._broker.publish(self._room, envelope)
        logger.debug("donation_event_published", type=envelope.type, donation_id=envelope.data.get("donation_id"))
