"""
Redis客户端 - 命名空间隔离的 JSON 发布/订阅与健康检查
"""
from __future__ import annotations

import asyncio
import json
import socket
from typing import Any, AsyncGenerator, Callable, Dict, Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from core.config import settings
from core.logging_config import get_logger


logger = get_logger(__name__)


class RedisClient:
    """
    Redis客户端

    特性:
    - 命名空间隔离（频道名自动加前缀）
    - 自动 JSON 序列化/反序列化
    - 发布失败只记录日志，不向调用方抛出
    """

    def __init__(
        self,
        client: aioredis.Redis,
        namespace: str = "",
        serializer: Optional[Callable[[Any], str]] = None,
    ):
        self._client = client
        self._namespace = namespace.strip(":")
        self._serializer = serializer or self._default_serializer

    def _format_key(self, key: str) -> str:
        """格式化键名，添加命名空间前缀"""
        if not self._namespace:
            return key
        return f"{self._namespace}:{key}"

    def _strip_namespace(self, key: str) -> str:
        prefix = f"{self._namespace}:"
        if self._namespace and key.startswith(prefix):
            return key[len(prefix):]
        return key

    @staticmethod
    def _default_serializer(value: Any) -> str:
        if isinstance(value, str):
            return value
        return json.dumps(value, default=str, ensure_ascii=False)

    @staticmethod
    def _default_deserializer(value: Optional[str]) -> Any:
        if value is None:
            return None
        try:
            return json.loads(value)
        except (TypeError, ValueError):
            return value

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as e:
            logger.warning("redis_ping_failed", error=str(e))
            return False

    async def publish(self, channel: str, message: Any) -> int:
        """发布消息到频道，返回接收者数量"""
        formatted_channel = self._format_key(channel)
        try:
            return await self._client.publish(formatted_channel, self._serializer(message))
        except RedisError as e:
            logger.error("redis_publish_failed", channel=formatted_channel, error=str(e))
            return 0

    async def psubscribe(self, *patterns: str) -> AsyncGenerator[Dict[str, Any], None]:
        """按模式订阅，产出 {'channel', 'pattern', 'data'}"""
        formatted = [self._format_key(p) for p in patterns]
        pubsub = self._client.pubsub()
        try:
            await pubsub.psubscribe(*formatted)
            async for message in pubsub.listen():
                if message["type"] not in ("message", "pmessage"):
                    continue
                yield {
                    "channel": self._strip_namespace(message["channel"]),
                    "pattern": message.get("pattern"),
                    "data": self._default_deserializer(message["data"]),
                }
        finally:
            await pubsub.punsubscribe(*formatted)
            await pubsub.aclose()

    async def close(self) -> None:
        await self._client.aclose()


# ============= 单例模式管理 =============

_cache_instance: Optional[RedisClient] = None
_lock = asyncio.Lock()


def _keepalive_options() -> dict:
    if hasattr(socket, "TCP_KEEPIDLE") and hasattr(socket, "TCP_KEEPINTVL") and hasattr(socket, "TCP_KEEPCNT"):
        return {
            socket.TCP_KEEPIDLE: 1,
            socket.TCP_KEEPINTVL: 1,
            socket.TCP_KEEPCNT: 3,
        }
    return {}


async def init_redis_client(namespace: Optional[str] = None, **kwargs) -> RedisClient:
    """初始化全局Redis客户端（连接失败直接抛出）"""
    global _cache_instance

    if _cache_instance is not None:
        return _cache_instance

    async with _lock:
        if _cache_instance is not None:
            return _cache_instance

        if not settings.redis.url:
            raise RuntimeError("REDIS__URL 未配置，无法初始化Redis客户端")

        client = aioredis.from_url(
            settings.redis.url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=settings.redis.max_connections,
            socket_keepalive=True,
            socket_keepalive_options=_keepalive_options(),
            **kwargs,
        )
        try:
            await client.ping()
        except RedisError as e:
            logger.error("redis_init_failed", url=settings.redis.url, error=str(e))
            await client.aclose()
            raise

        _cache_instance = RedisClient(client=client, namespace=namespace or settings.redis.namespace)
        logger.info("redis_client_initialized", url=settings.redis.url)
        return _cache_instance


async def get_redis_client() -> RedisClient:
    """获取全局Redis客户端实例"""
    if _cache_instance is None:
        return await init_redis_client()
    return _cache_instance


async def shutdown_redis_client() -> None:
    """关闭Redis连接"""
    global _cache_instance

    if _cache_instance is not None:
        try:
            await _cache_instance.close()
            logger.info("redis_client_closed")
        except RedisError as e:
            logger.error("redis_close_failed", error=str(e))
        finally:
            _cache_instance = None


__all__ = [
    "RedisClient",
    "init_redis_client",
    "get_redis_client",
    "shutdown_redis_client",
]
