# medride/infra/redis_client.py
"""
Клиент Redis для моста fan-out между инстансами (Pub/Sub).
"""

from __future__ import annotations

import json
from typing import Any

import redis.asyncio as redis
from redis.asyncio.client import PubSub

from medride.common.logger import log_error, log_info


class RedisClient:
    """
    Асинхронный клиент Redis.
    Используется только для публикации и подписки на каналы рассылки.
    """

    _instance: RedisClient | None = None
    _client: redis.Redis | None = None

    def __new__(cls) -> RedisClient:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if hasattr(self, "_initialized"):
            return
        self._initialized = True
        self._client = None
        self._namespace = "medride"

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise RuntimeError("Redis клиент не инициализирован. Вызовите connect() сначала.")
        return self._client

    @property
    def namespace(self) -> str:
        return self._namespace

    def make_key(self, key: str) -> str:
        """Добавляет namespace к ключу или имени канала."""
        return f"{self._namespace}:{key}"

    async def connect(
        self,
        url: str,
        max_connections: int = 50,
        namespace: str | None = None,
    ) -> None:
        """
        Подключается к Redis и проверяет соединение PING-ом.

        Args:
            url: URL Redis
            max_connections: Максимальное количество соединений
            namespace: Префикс ключей и каналов
        """
        if self._client is not None:
            return

        if namespace:
            self._namespace = namespace

        await log_info("Подключение к Redis...")

        self._client = redis.from_url(
            url,
            max_connections=max_connections,
            decode_responses=True,
        )
        await self._client.ping()

        await log_info("Подключение к Redis установлено")

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            await log_info("Соединение с Redis закрыто")

    async def publish(self, channel: str, message: dict[str, Any]) -> int:
        """
        Публикует JSON-сообщение в канал (с namespace).

        Returns:
            Количество подписчиков, получивших сообщение
        """
        payload = json.dumps(message, ensure_ascii=False, default=str)
        return await self.client.publish(self.make_key(channel), payload)

    def pubsub(self) -> PubSub:
        return self.client.pubsub()

    async def health_check(self) -> bool:
        try:
            return bool(await self.client.ping())
        except Exception as e:
            await log_error(f"Health check Redis failed: {e}")
            return False


def get_redis() -> RedisClient:
    return RedisClient()


async def init_redis() -> RedisClient:
    """Подключается к Redis по настройкам."""
    from medride.config import settings

    client = get_redis()
    await client.connect(
        url=settings.redis.url,
        max_connections=settings.redis.REDIS_MAX_CONNECTIONS,
        namespace=settings.redis.REDIS_NAMESPACE,
    )
    await log_info(
        f"Redis подключён: {settings.redis.REDIS_HOST}:{settings.redis.REDIS_PORT}/{settings.redis.REDIS_DB}"
    )
    return client


async def close_redis() -> None:
    await get_redis().disconnect()
