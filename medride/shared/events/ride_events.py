# medride/shared/events/ride_events.py
"""
Сообщения realtime-протокола.

Формат в обе стороны: JSON-объект {"event": <имя>, ...поля}, поля в camelCase.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field

from medride.common.constants import RealtimeEvent, RideStatus
from medride.shared.models.common import CamelModel
from medride.shared.models.ride import GeoPoint, Ride


class RealtimeMessage(CamelModel):
    """Базовое сообщение протокола."""

    event: str

    def to_message(self) -> dict[str, Any]:
        return self.to_wire()


# ----------------------------------------------------------------------------
# Клиент -> сервер
# ----------------------------------------------------------------------------

class ClientMessage(RealtimeMessage):
    """Входящее сообщение: joinRide / leaveRide / ping."""

    ride_id: UUID | None = None


# ----------------------------------------------------------------------------
# Сервер -> клиент
# ----------------------------------------------------------------------------

class PongEvent(RealtimeMessage):
    event: str = RealtimeEvent.PONG


class NewRideEvent(RealtimeMessage):
    event: str = RealtimeEvent.NEW_RIDE
    ride: Ride


# Тип rideUpdate при смене статуса; прочие типы: "payment", "fare"
STATUS_CHANGE_UPDATE = "status_change"


class RideUpdateEvent(RealtimeMessage):
    event: str = RealtimeEvent.RIDE_UPDATE
    ride_id: UUID
    type: str
    old_status: RideStatus | None = None
    new_status: RideStatus | None = None
    ride: Ride | None = None


class RideStatusChangeEvent(RealtimeMessage):
    event: str = RealtimeEvent.RIDE_STATUS_CHANGE
    ride_id: UUID
    status: RideStatus


class RideRatedEvent(RealtimeMessage):
    event: str = RealtimeEvent.RIDE_RATED
    ride_id: UUID
    rating: int
    comment: str | None = None


class DriverLocationEvent(RealtimeMessage):
    event: str = RealtimeEvent.DRIVER_LOCATION
    driver_id: UUID
    ride_id: UUID
    location: GeoPoint
    heading: float | None = None
    speed: float | None = None
    recorded_at: datetime


class ErrorEvent(RealtimeMessage):
    event: str = RealtimeEvent.ERROR
    error_code: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
