# medride/services/realtime/fanout.py
"""
Рассылка событий жизненного цикла поездки по логическим каналам.

Доставка best-effort: ошибки рассылки логируются и никогда не
пробрасываются в операцию над поездкой, которая её вызвала.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from medride.common.constants import Channel, RideStatus
from medride.common.logger import log_warning
from medride.services.realtime.presence import PresenceRegistry
from medride.services.realtime.redis_bridge import RedisBridge
from medride.shared.events.ride_events import (
    DriverLocationEvent,
    NewRideEvent,
    RideRatedEvent,
    RideStatusChangeEvent,
    RideUpdateEvent,
    STATUS_CHANGE_UPDATE,
)
from medride.shared.models.location import DriverLocation
from medride.shared.models.ride import Ride


class FanoutService:
    """Отправка событий в реестр соединений (напрямую или через Redis)."""

    def __init__(self, presence: PresenceRegistry, bridge: RedisBridge | None = None) -> None:
        self._presence = presence
        self._bridge = bridge

    async def publish(self, channel: str, message: dict[str, Any]) -> None:
        """
        Публикует сообщение в канал.
        С мостом сообщение уходит в Redis и возвращается на каждый узел,
        включая этот; без моста доставляется локально.
        """
        try:
            if self._bridge is not None:
                try:
                    await self._bridge.publish(channel, message)
                    return
                except Exception as e:
                    await log_warning(
                        f"Мост fan-out недоступен, доставка только локально: {e}",
                        extra={"channel": channel},
                    )
            await self._presence.deliver(channel, message)
        except Exception as e:
            await log_warning(
                f"Ошибка рассылки: {e}",
                extra={"channel": channel, "event": message.get("event")},
            )

    async def broadcast_new_ride(self, ride: Ride) -> None:
        await self.publish(Channel.DRIVERS, NewRideEvent(ride=ride).to_message())

    async def broadcast_status_change(self, ride_id: UUID, status: RideStatus, patient_id: UUID) -> None:
        message = RideStatusChangeEvent(ride_id=ride_id, status=status).to_message()
        for channel in (Channel.ride(ride_id), Channel.DRIVERS, Channel.user(patient_id)):
            await self.publish(channel, message)

    async def broadcast_ride_update(
        self,
        ride_id: UUID,
        update_type: str,
        *,
        old_status: RideStatus | None = None,
        new_status: RideStatus | None = None,
        ride: Ride | None = None,
    ) -> None:
        message = RideUpdateEvent(
            ride_id=ride_id,
            type=update_type,
            old_status=old_status,
            new_status=new_status,
            ride=ride,
        ).to_message()
        for channel in (Channel.ride(ride_id), Channel.DRIVERS):
            await self.publish(channel, message)

    async def broadcast_transition(self, old_status: RideStatus, ride: Ride) -> None:
        """Полный набор событий после успешной смены статуса."""
        await self.broadcast_status_change(ride.id, ride.status, ride.patient_id)
        await self.broadcast_ride_update(
            ride.id,
            STATUS_CHANGE_UPDATE,
            old_status=old_status,
            new_status=ride.status,
            ride=ride,
        )

    async def broadcast_ride_rated(self, ride: Ride) -> None:
        if ride.rating is None:
            return
        message = RideRatedEvent(
            ride_id=ride.id,
            rating=ride.rating.score,
            comment=ride.rating.comment,
        ).to_message()
        channels = [Channel.ride(ride.id)]
        if ride.driver_id is not None:
            channels.insert(0, Channel.user(ride.driver_id))
        for channel in channels:
            await self.publish(channel, message)

    async def broadcast_driver_location(self, location: DriverLocation, ride_ids: list[UUID]) -> None:
        """Позиция водителя подписчикам каждой его активной поездки."""
        for ride_id in ride_ids:
            message = DriverLocationEvent(
                driver_id=location.driver_id,
                ride_id=ride_id,
                location=location.location,
                heading=location.heading,
                speed=location.speed,
                recorded_at=location.recorded_at,
            ).to_message()
            await self.publish(Channel.ride(ride_id), message)
