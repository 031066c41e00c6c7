# medride/services/locations/service.py
"""
Запись и чтение геопозиций водителя.

После записи позиция рассылается в каналы активных поездок водителя;
ошибка рассылки не отменяет уже сохранённую запись.
"""

from __future__ import annotations

from datetime import datetime

from medride.common.constants import UserRole
from medride.common.exceptions import ValidationError
from medride.common.logger import log_debug, log_warning
from medride.services.locations.repository import LocationRepository
from medride.services.realtime.fanout import FanoutService
from medride.services.rides.repository import RideRepository
from medride.services.rides.service import require_role
from medride.shared.models.location import DriverLocation, LocationUpdateRequest
from medride.shared.models.user import Identity


class LocationService:
    def __init__(
        self,
        locations: LocationRepository,
        rides: RideRepository,
        fanout: FanoutService,
        *,
        history_limit: int = 100,
    ) -> None:
        self._locations = locations
        self._rides = rides
        self._fanout = fanout
        self._history_limit = history_limit

    async def record(self, actor: Identity, request: LocationUpdateRequest) -> DriverLocation:
        """
        Сохраняет позицию водителя.

        Raises:
            AuthorizationError: Вызывающий не водитель
        """
        require_role(actor, UserRole.DRIVER)
        location = await self._locations.record(
            actor.id,
            request.location,
            accuracy=request.accuracy,
            speed=request.speed,
            heading=request.heading,
        )
        await log_debug(
            "Позиция водителя сохранена",
            extra={"driver_id": str(actor.id), "location_id": location.id},
        )

        try:
            active = await self._rides.assignments(actor.id)
        except Exception as e:
            await log_warning(
                f"Не удалось получить активные поездки для трансляции позиции: {e}",
                extra={"driver_id": str(actor.id)},
            )
            return location

        if active:
            await self._fanout.broadcast_driver_location(location, [ride.id for ride in active])
        return location

    async def history(
        self,
        actor: Identity,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[DriverLocation]:
        """История позиций вызывающего водителя, новые первыми."""
        require_role(actor, UserRole.DRIVER)
        if since is not None and until is not None and since > until:
            raise ValidationError(
                "startDate must not be after endDate",
                {"startDate": since.isoformat(), "endDate": until.isoformat()},
            )
        return await self._locations.history(actor.id, since, until, self._history_limit)
