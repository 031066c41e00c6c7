# medride/services/realtime/redis_bridge.py
"""
Мост рассылки между инстансами через Redis Pub/Sub.

Каждая рассылка публикуется в канал {namespace}:fanout:{channel};
подписчик на каждом узле пересылает её в локальный реестр соединений.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Coroutine

from medride.common.logger import log_debug, log_error
from medride.infra.redis_client import RedisClient

FANOUT_PREFIX = "fanout:"


class RedisBridge:
    """
    Подписчик на Redis Pub/Sub.

    Получает сообщения из общего пространства fanout и отдаёт их handler-у
    как (логический канал, сообщение).
    """

    def __init__(
        self,
        redis: RedisClient,
        message_handler: Callable[[str, dict[str, Any]], Coroutine[Any, Any, Any]],
    ) -> None:
        """
        Args:
            redis: Клиент Redis
            message_handler: Callback (channel, data), обычно PresenceRegistry.deliver
        """
        self._redis = redis
        self._handler = message_handler
        self._pubsub = None
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def pattern(self) -> str:
        return self._redis.make_key(f"{FANOUT_PREFIX}*")

    async def start(self) -> None:
        if self._running:
            return

        self._pubsub = self._redis.pubsub()
        await self._pubsub.psubscribe(self.pattern)
        self._running = True
        self._task = asyncio.create_task(self._listen(), name="fanout-bridge")
        await log_debug(f"Мост fan-out подписан на {self.pattern}")

    async def stop(self) -> None:
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._pubsub:
            await self._pubsub.punsubscribe()
            await self._pubsub.aclose()
            self._pubsub = None

    async def publish(self, channel: str, message: dict[str, Any]) -> int:
        return await self._redis.publish(f"{FANOUT_PREFIX}{channel}", message)

    async def _listen(self) -> None:
        while self._running:
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=1.0,
                )
                if message is None:
                    continue

                await self.process_message(message)

            except asyncio.CancelledError:
                break
            except Exception as e:
                await log_error(f"Ошибка моста fan-out: {e}", exc_info=True)
                await asyncio.sleep(1)

    async def process_message(self, message: dict[str, Any]) -> None:
        """Разбирает сообщение Redis и передаёт его в локальный реестр."""
        if message.get("type") not in ("message", "pmessage"):
            return

        channel = message.get("channel", "")
        if isinstance(channel, bytes):
            channel = channel.decode("utf-8")

        prefix = self._redis.make_key(FANOUT_PREFIX)
        if not channel.startswith(prefix):
            return
        logical_channel = channel[len(prefix):]

        data = message.get("data", "")
        if isinstance(data, bytes):
            data = data.decode("utf-8")

        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            await log_error(f"Некорректное сообщение в канале {channel}")
            return

        await self._handler(logical_channel, payload)
