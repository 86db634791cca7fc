"""Process-local broker used when Redis is not configured.

Operator dashboards connected to this process see donation events;
other workers do not.
"""
from __future__ import annotations

import asyncio

from application.ports.realtime import Envelope, Handler, RealtimeBrokerPort
from core.logging_config import get_logger


logger = get_logger(__name__)


class InMemoryRealtimeBroker(RealtimeBrokerPort):
    def __init__(self) -> None:
        self._subscribers: list[Handler] = []
        self._guard = asyncio.Lock()

    async def publish(self, room: str, envelope: Envelope) -> None:  # type: ignore[override]
        async with self._guard:
            targets = tuple(self._subscribers)
        for deliver in targets:
            try:
                await deliver(envelope)
            except Exception as exc:  # a dead dashboard socket must not block the others
                logger.warning(
                    "inmemory_delivery_failed",
                    room=room,
                    type=envelope.type,
                    error=str(exc),
                )

    async def subscribe(self, handler: Handler) -> None:  # type: ignore[override]
        async with self._guard:
            self._subscribers.append(handler)
        logger.debug("inmemory_subscriber_added", subscribers=len(self._subscribers))

    async def aclose(self) -> None:  # type: ignore[override]
        async with self._guard:
            self._subscribers.clear()
