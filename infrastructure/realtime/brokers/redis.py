"""Redis Pub/Sub based RealtimeBrokerPort implementation.

Reuses the shared RedisClient from infrastructure.external.cache.
Publishes to per-room channels `rt:room:{room}` and pattern-subscribes
`rt:room:*` to receive all rooms.
"""
from __future__ import annotations

import asyncio
from typing import Optional

from pydantic import ValidationError

from application.ports.realtime import Envelope, RealtimeBrokerPort, Handler
from core.logging_config import get_logger
from infrastructure.external.cache import get_redis_client, RedisClient


logger = get_logger(__name__)

CHANNEL_PATTERN = "rt:room:*"


class RedisRealtimeBroker(RealtimeBrokerPort):
    def __init__(self, client: Optional[RedisClient] = None) -> None:
        self._task: Optional[asyncio.Task] = None
        self._handler: Optional[Handler] = None
        self._client: Optional[RedisClient] = client

    @staticmethod
    def _room_channel(room: str) -> str:
        return f"rt:room:{room}"

    async def _ensure_client(self) -> RedisClient:
        if self._client is None:
            self._client = await get_redis_client()
        return self._client

    async def publish(self, room: str, envelope: Envelope) -> None:  # type: ignore[override]
        client = await self._ensure_client()
        # RedisClient logs publish failures itself
        await client.publish(self._room_channel(room), envelope.model_dump(mode="json"))

    async def _listen(self) -> None:
        assert self._client is not None and self._handler is not None
        logger.info("redis_pubsub_subscribed", pattern=CHANNEL_PATTERN)
        async for message in self._client.psubscribe(CHANNEL_PATTERN):
            data = message.get("data")
            if not isinstance(data, dict):
                continue
            try:
                env = Envelope.model_validate(data)
            except ValidationError as exc:
                logger.warning("redis_pubsub_parse_failed", channel=message.get("channel"), error=str(exc))
                continue
            await self._handler(env)

    async def subscribe(self, handler: Handler) -> None:  # type: ignore[override]
        self._handler = handler
        await self._ensure_client()
        self._task = asyncio.create_task(self._listen(), name="redis-realtime-listener")

    async def aclose(self) -> None:  # type: ignore[override]
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._client = None
