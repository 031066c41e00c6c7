# medride/services/realtime/presence.py
"""
Реестр живых соединений.

Хранит для каждого соединения идентичность пользователя, набор логических
каналов и время последней активности; рассылает сообщения по каналам и
периодически вытесняет неактивные соединения.

Каналы:
- user:{user_id} - всегда при подключении
- drivers - если роль водитель
- ride:{ride_id} - по запросу клиента (joinRide / leaveRide)

Реестр живёт в одном event loop; изменять его из других потоков нельзя.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Protocol
from uuid import UUID, uuid4

from medride.common.constants import Channel
from medride.common.logger import log_debug, log_info, log_warning
from medride.shared.models.user import Identity

# Код закрытия WebSocket при вытеснении по неактивности
IDLE_CLOSE_CODE = 4000
# Код закрытия, если сокет перестал принимать сообщения
SEND_FAILED_CLOSE_CODE = 1011


class Transport(Protocol):
    """То, что нужно реестру от сокета (совместимо с starlette WebSocket)."""

    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


@dataclass
class Connection:
    id: str
    identity: Identity
    transport: Transport
    last_activity: float
    channels: set[str] = field(default_factory=set)
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class PresenceRegistry:
    """
    Реестр соединений и каналов.

    Создаётся при старте приложения (start запускает задачу вытеснения)
    и закрывается при остановке (close отменяет задачу и закрывает сокеты).
    """

    def __init__(
        self,
        sweep_interval: float = 60.0,
        idle_timeout: float = 120.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sweep_interval = sweep_interval
        self._idle_timeout = idle_timeout
        self._clock = clock

        # connection_id -> Connection
        self._connections: dict[str, Connection] = {}
        # channel -> set of connection_id
        self._channels: dict[str, set[str]] = {}

        self._sweep_task: asyncio.Task | None = None

        self._total_connections = 0
        self._total_messages_sent = 0
        self._total_evicted = 0

    # =========================================================================
    # ЖИЗНЕННЫЙ ЦИКЛ
    # =========================================================================

    async def start(self) -> None:
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop(), name="presence-sweep")
            await log_debug(
                "Запущено вытеснение неактивных соединений",
                extra={"interval": self._sweep_interval, "idle_timeout": self._idle_timeout},
            )

    async def close(self) -> None:
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

        for connection_id in list(self._connections):
            await self.disconnect(connection_id, close_code=1001, reason="server shutdown")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            await self.sweep_idle()

    # =========================================================================
    # СОЕДИНЕНИЯ
    # =========================================================================

    @property
    def active_connections(self) -> int:
        return len(self._connections)

    def get(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def register(self, transport: Transport, identity: Identity) -> Connection:
        """Регистрирует уже принятое соединение и подписывает его на базовые каналы."""
        connection = Connection(
            id=uuid4().hex,
            identity=identity,
            transport=transport,
            last_activity=self._clock(),
        )
        self._connections[connection.id] = connection
        self._total_connections += 1

        self.join(connection.id, Channel.user(identity.id))
        if identity.is_driver:
            self.join(connection.id, Channel.DRIVERS)

        return connection

    async def disconnect(
        self,
        connection_id: str,
        *,
        close_code: int | None = None,
        reason: str | None = None,
    ) -> bool:
        """
        Удаляет соединение из всех каналов. Если указан close_code, закрывает сокет.

        Returns:
            True если соединение было зарегистрировано
        """
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return False

        for channel in list(connection.channels):
            self._remove_member(channel, connection_id)
        connection.channels.clear()

        if close_code is not None:
            try:
                await connection.transport.close(code=close_code, reason=reason)
            except Exception as e:
                # Сокет уже закрыт клиентом
                await log_debug(f"Сокет {connection_id} не закрылся штатно: {e}")

        await log_debug(
            "Соединение отключено",
            extra={"connection_id": connection_id, "user_id": str(connection.identity.id), "reason": reason},
        )
        return True

    def touch(self, connection_id: str) -> None:
        connection = self._connections.get(connection_id)
        if connection is not None:
            connection.last_activity = self._clock()

    def heartbeat(self, connection_id: str) -> bool:
        """Отмечает активность. False, если соединения нет."""
        if connection_id not in self._connections:
            return False
        self.touch(connection_id)
        return True

    # =========================================================================
    # КАНАЛЫ
    # =========================================================================

    def join(self, connection_id: str, channel: str) -> bool:
        """Идемпотентно добавляет соединение в канал."""
        connection = self._connections.get(connection_id)
        if connection is None:
            return False
        connection.channels.add(channel)
        self._channels.setdefault(channel, set()).add(connection_id)
        connection.last_activity = self._clock()
        return True

    def leave(self, connection_id: str, channel: str) -> bool:
        connection = self._connections.get(connection_id)
        if connection is None:
            return False
        connection.channels.discard(channel)
        self._remove_member(channel, connection_id)
        connection.last_activity = self._clock()
        return True

    def join_ride(self, connection_id: str, ride_id: UUID | str | None) -> bool:
        if not ride_id:
            return False
        return self.join(connection_id, Channel.ride(ride_id))

    def leave_ride(self, connection_id: str, ride_id: UUID | str | None) -> bool:
        if not ride_id:
            return False
        return self.leave(connection_id, Channel.ride(ride_id))

    def _remove_member(self, channel: str, connection_id: str) -> None:
        members = self._channels.get(channel)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._channels[channel]

    def members(self, channel: str) -> set[str]:
        return set(self._channels.get(channel, ()))

    def channels_of(self, connection_id: str) -> set[str]:
        connection = self._connections.get(connection_id)
        return set(connection.channels) if connection else set()

    # =========================================================================
    # РАССЫЛКА
    # =========================================================================

    async def send(self, connection_id: str, message: dict[str, Any]) -> bool:
        """Отправляет сообщение одному соединению; при ошибке соединение удаляется."""
        connection = self._connections.get(connection_id)
        if connection is None:
            return False
        try:
            await connection.transport.send_json(message)
        except Exception as e:
            await log_warning(
                f"Не удалось отправить сообщение, соединение удалено: {e}",
                extra={"connection_id": connection_id, "event": message.get("event")},
            )
            await self.disconnect(connection_id, close_code=SEND_FAILED_CLOSE_CODE, reason="send failed")
            return False
        self._total_messages_sent += 1
        return True

    async def deliver(self, channel: str, message: dict[str, Any]) -> int:
        """
        Рассылает сообщение всем участникам канала.
        Пустой или несуществующий канал не ошибка.

        Returns:
            Количество успешно доставленных сообщений
        """
        sent = 0
        for connection_id in self.members(channel):
            if await self.send(connection_id, message):
                sent += 1
        return sent

    # =========================================================================
    # ВЫТЕСНЕНИЕ
    # =========================================================================

    async def sweep_idle(self) -> list[str]:
        """Закрывает соединения без активности дольше idle_timeout."""
        deadline = self._clock() - self._idle_timeout
        idle = [cid for cid, conn in self._connections.items() if conn.last_activity < deadline]

        for connection_id in idle:
            await self.disconnect(connection_id, close_code=IDLE_CLOSE_CODE, reason="idle timeout")
        self._total_evicted += len(idle)

        if idle:
            await log_info("Вытеснены неактивные соединения", extra={"count": len(idle)})
        return idle

    def get_stats(self) -> dict[str, Any]:
        by_role: dict[str, int] = {}
        for connection in self._connections.values():
            role = str(connection.identity.role)
            by_role[role] = by_role.get(role, 0) + 1
        return {
            "active_connections": len(self._connections),
            "total_channels": len(self._channels),
            "total_connections_ever": self._total_connections,
            "total_messages_sent": self._total_messages_sent,
            "total_evicted": self._total_evicted,
            "connections_by_role": by_role,
        }
