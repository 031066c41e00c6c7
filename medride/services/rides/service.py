# medride/services/rides/service.py
"""
Сервис поездок: создание, захват водителем, смена статусов, гео-поиск,
оценка, запись статуса оплаты и пересчёт тарифа.

После каждой успешной записи сервис рассылает события через FanoutService.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Protocol
from uuid import UUID
from zoneinfo import ZoneInfo

from medride.common.constants import RideStatus, UserRole
from medride.common.exceptions import (
    AuthorizationError,
    ClaimConflict,
    InvalidTransition,
    NotFound,
    ReferentialIntegrityViolation,
    ValidationError,
)
from medride.common.logger import log_debug, log_info
from medride.config.loader import DispatchSettings
from medride.services.pricing.engine import compute_fare
from medride.services.realtime.fanout import FanoutService
from medride.services.rides.repository import RideRepository
from medride.services.rides.state_machine import (
    Party,
    allowed_targets,
    parties_of,
    plan_transition,
)
from medride.services.utils.geo_utils import distance_meters
from medride.shared.models.common import PaginatedResponse, PaginationParams
from medride.shared.models.pricing import PricingConfig
from medride.shared.models.ride import (
    CreateRideRequest,
    Fare,
    FareRecomputeRequest,
    PaymentUpdateRequest,
    Ride,
)
from medride.shared.models.user import Identity


class PricingProvider(Protocol):
    async def get_config(self) -> PricingConfig: ...


class IdentityDirectory(Protocol):
    async def get_identity(self, user_id: UUID) -> Identity | None: ...


def require_role(actor: Identity, *roles: UserRole) -> None:
    if actor.role not in roles:
        raise AuthorizationError(
            "This action is not available for your role",
            {"role": str(actor.role), "required": sorted(str(r) for r in roles)},
        )


class RideService:
    """Операции жизненного цикла поездки."""

    def __init__(
        self,
        rides: RideRepository,
        users: IdentityDirectory,
        pricing: PricingProvider,
        fanout: FanoutService,
        *,
        timezone: str,
        holidays: Iterable[str] = (),
        dispatch: DispatchSettings | None = None,
    ) -> None:
        """
        Args:
            rides: Хранилище поездок с условными обновлениями
            users: Справочник пользователей
            pricing: Источник текущей конфигурации тарифов
            fanout: Рассылка событий
            timezone: Локальная таймзона (ночные и пиковые надбавки)
            holidays: Даты праздников (ISO-8601)
            dispatch: Параметры гео-поиска
        """
        self._rides = rides
        self._users = users
        self._pricing = pricing
        self._fanout = fanout
        self._timezone = timezone
        self._tz = ZoneInfo(timezone)
        self._holidays = tuple(holidays)
        self._dispatch = dispatch or DispatchSettings()

    def _localize(self, moment: datetime) -> datetime:
        """Наивное время считается локальным временем сервиса."""
        return moment if moment.tzinfo is not None else moment.replace(tzinfo=self._tz)

    async def _quote(self, distance: float, scheduled_time: datetime) -> Fare:
        pricing = await self._pricing.get_config()
        return compute_fare(
            distance,
            scheduled_time,
            pricing,
            tz_name=self._timezone,
            holidays=self._holidays,
        )

    async def _load(self, ride_id: UUID) -> Ride:
        ride = await self._rides.get(ride_id)
        if ride is None:
            raise NotFound("Ride not found", {"ride_id": str(ride_id)})
        return ride

    # =========================================================================
    # СОЗДАНИЕ И ЧТЕНИЕ
    # =========================================================================

    async def create_ride(self, actor: Identity, request: CreateRideRequest) -> Ride:
        """
        Создаёт поездку в статусе pending с рассчитанным тарифом.

        Пациент бронирует для себя; учреждение указывает patientId и
        записывается в facility_id.

        Raises:
            AuthorizationError: роль не может бронировать
            ValidationError: учреждение не указало пациента; некорректный тариф
            ReferentialIntegrityViolation: пациента не существует
        """
        require_role(actor, UserRole.PATIENT, UserRole.FACILITY)

        facility_id: UUID | None = None
        if actor.role == UserRole.FACILITY:
            if request.patient_id is None:
                raise ValidationError(
                    "patientId is required when a facility books a ride",
                    {"field": "patientId"},
                )
            patient_id = request.patient_id
            facility_id = actor.id
        else:
            if request.patient_id is not None and request.patient_id != actor.id:
                raise AuthorizationError("Patients can only book rides for themselves")
            patient_id = actor.id

        patient = await self._users.get_identity(patient_id)
        if patient is None or patient.role != UserRole.PATIENT:
            raise ReferentialIntegrityViolation(
                "Patient does not exist",
                {"patient_id": str(patient_id)},
            )

        scheduled_time = self._localize(request.scheduled_time)
        fare = await self._quote(request.distance, scheduled_time)

        ride = await self._rides.create(
            patient_id=patient_id,
            facility_id=facility_id,
            pickup=request.pickup,
            dropoff=request.dropoff,
            distance=request.distance,
            scheduled_time=scheduled_time,
            special_requirements=request.special_requirements,
            notes=request.notes,
            fare=fare,
        )
        await log_info(
            "Поездка создана",
            extra={
                "ride_id": str(ride.id),
                "patient_id": str(patient_id),
                "actor": str(actor.id),
                "fare_total": fare.total,
            },
        )

        await self._fanout.broadcast_new_ride(ride)
        return ride

    async def get_ride(self, actor: Identity, ride_id: UUID) -> Ride:
        """
        Доступ: пациент, бронировавшее учреждение, назначенный водитель, админ.
        Любой водитель видит ожидающую поездку, чтобы решить, брать ли её.
        """
        ride = await self._load(ride_id)
        parties = parties_of(ride, actor)
        if parties - {Party.ANY_DRIVER}:
            return ride
        if Party.ANY_DRIVER in parties and ride.status == RideStatus.PENDING:
            return ride
        raise AuthorizationError("Not allowed to view this ride", {"ride_id": str(ride_id)})

    async def list_rides(
        self,
        actor: Identity,
        pagination: PaginationParams,
        statuses: Iterable[RideStatus] | None = None,
    ) -> PaginatedResponse[Ride]:
        """Поездки пользователя: свои для пациента/учреждения/водителя, все для админа."""
        filters: dict[str, UUID] = {}
        match actor.role:
            case UserRole.PATIENT:
                filters["patient_id"] = actor.id
            case UserRole.FACILITY:
                filters["facility_id"] = actor.id
            case UserRole.DRIVER:
                filters["driver_id"] = actor.id

        items, total = await self._rides.list_rides(
            **filters,
            statuses=list(statuses) if statuses else None,
            limit=pagination.limit,
            offset=pagination.offset,
        )
        return PaginatedResponse[Ride].create(items, total, pagination)

    # =========================================================================
    # ГЕО-ПОИСК
    # =========================================================================

    async def nearby_pending(
        self,
        actor: Identity,
        longitude: float,
        latitude: float,
        radius_meters: float | None = None,
    ) -> list[Ride]:
        """
        Ожидающие поездки в радиусе от водителя, ранние первыми.

        Raises:
            AuthorizationError: не водитель
            ValidationError: некорректные координаты или радиус
        """
        require_role(actor, UserRole.DRIVER)

        radius = self._dispatch.DEFAULT_RADIUS_METERS if radius_meters is None else radius_meters
        errors = {}
        if not -180.0 <= longitude <= 180.0:
            errors["longitude"] = "must be within [-180, 180]"
        if not -90.0 <= latitude <= 90.0:
            errors["latitude"] = "must be within [-90, 90]"
        if not 0 < radius <= self._dispatch.MAX_RADIUS_METERS:
            errors["maxDistance"] = f"must be within (0, {self._dispatch.MAX_RADIUS_METERS}]"
        if errors:
            raise ValidationError("Invalid dispatch query", errors)

        rides = await self._rides.nearby_pending(
            longitude,
            latitude,
            radius,
            self._dispatch.NEARBY_LIMIT,
        )
        return [
            ride.model_copy(update={
                "pickup_distance_meters": round(
                    distance_meters(
                        longitude,
                        latitude,
                        ride.pickup.location.longitude,
                        ride.pickup.location.latitude,
                    ),
                    1,
                ),
            })
            for ride in rides
        ]

    async def assignments(self, actor: Identity) -> list[Ride]:
        require_role(actor, UserRole.DRIVER)
        return await self._rides.assignments(actor.id)

    # =========================================================================
    # ЗАХВАТ И ПЕРЕХОДЫ
    # =========================================================================

    async def claim(self, actor: Identity, ride_id: UUID) -> Ride:
        """
        Атомарно назначает ожидающую поездку водителю.

        Raises:
            AuthorizationError: не водитель
            NotFound: поездки нет
            ClaimConflict: поездку уже забрали или отменили (без автоповтора)
        """
        require_role(actor, UserRole.DRIVER)

        ride = await self._rides.claim(ride_id, actor.id)
        if ride is None:
            current = await self._rides.get(ride_id)
            if current is None:
                raise NotFound("Ride not found", {"ride_id": str(ride_id)})
            await log_debug(
                "Поездка уже недоступна для захвата",
                extra={"ride_id": str(ride_id), "driver_id": str(actor.id), "status": str(current.status)},
            )
            raise ClaimConflict(ride_id)

        await log_info(
            "Поездка назначена водителю",
            extra={"ride_id": str(ride.id), "driver_id": str(actor.id)},
        )
        await self._fanout.broadcast_transition(RideStatus.PENDING, ride)
        return ride

    async def start(self, actor: Identity, ride_id: UUID) -> Ride:
        require_role(actor, UserRole.DRIVER)
        return await self._transition(actor, ride_id, RideStatus.IN_PROGRESS)

    async def complete(self, actor: Identity, ride_id: UUID) -> Ride:
        require_role(actor, UserRole.DRIVER)
        return await self._transition(actor, ride_id, RideStatus.COMPLETED)

    async def cancel(self, actor: Identity, ride_id: UUID, reason: str | None = None) -> Ride:
        return await self._transition(actor, ride_id, RideStatus.CANCELLED, reason=reason)

    async def _transition(
        self,
        actor: Identity,
        ride_id: UUID,
        target: RideStatus,
        *,
        reason: str | None = None,
    ) -> Ride:
        """
        Проверяет переход по таблице и записывает его одним условным UPDATE,
        привязанным к прочитанному статусу.
        """
        ride = await self._load(ride_id)
        plan = plan_transition(ride, target, actor, reason=reason)

        updated = await self._rides.transition(
            ride.id,
            plan.expected_status,
            plan.target,
            plan.changes,
            expected_driver_id=ride.driver_id,
        )
        if updated is None:
            # Статус изменился между чтением и записью
            current = await self._load(ride_id)
            raise InvalidTransition(current.status, target, allowed_targets(current.status))

        await log_info(
            "Статус поездки изменён",
            extra={
                "ride_id": str(ride.id),
                "actor": str(actor.id),
                "role": str(actor.role),
                "from": str(plan.expected_status),
                "to": str(plan.target),
            },
        )
        await self._fanout.broadcast_transition(plan.expected_status, updated)
        return updated

    # =========================================================================
    # ОЦЕНКА, ОПЛАТА, ТАРИФ
    # =========================================================================

    async def rate(self, actor: Identity, ride_id: UUID, score: int, comment: str | None = None) -> Ride:
        """
        Оценка завершённой поездки пациентом или бронировавшим учреждением.
        Повторная оценка перезаписывает предыдущую.
        """
        ride = await self._load(ride_id)
        if not parties_of(ride, actor) & {Party.PATIENT, Party.BOOKING_FACILITY}:
            raise AuthorizationError("Only the patient or booking facility can rate this ride")
        if not 1 <= score <= 5:
            raise ValidationError("Rating must be between 1 and 5", {"field": "rating"})

        updated = await self._rides.rate(ride.id, score, comment)
        if updated is None:
            current = await self._load(ride_id)
            raise ValidationError(
                "Only completed rides can be rated",
                {"ride_id": str(ride_id), "status": str(current.status)},
            )

        await log_info("Поездка оценена", extra={"ride_id": str(ride.id), "rating": score})
        await self._fanout.broadcast_ride_rated(updated)
        return updated

    async def update_payment(self, actor: Identity, ride_id: UUID, request: PaymentUpdateRequest) -> Ride:
        """Запись статуса оплаты от платёжного сервиса; на статус поездки не влияет."""
        require_role(actor, UserRole.ADMIN)

        ride = await self._rides.update_payment(ride_id, request.payment_status, request.payment_details)
        if ride is None:
            raise NotFound("Ride not found", {"ride_id": str(ride_id)})

        await log_info(
            "Статус оплаты обновлён",
            extra={"ride_id": str(ride_id), "payment_status": str(request.payment_status)},
        )
        await self._fanout.broadcast_ride_update(ride.id, "payment", ride=ride)
        return ride

    async def recompute_fare(self, actor: Identity, ride_id: UUID, request: FareRecomputeRequest) -> Ride:
        """
        Пересчитывает тариф с новым расстоянием и/или временем, пока поездка
        не завершена и не отменена.
        """
        require_role(actor, UserRole.ADMIN)

        ride = await self._load(ride_id)
        if ride.is_terminal:
            raise ValidationError(
                "Fare cannot be recomputed for a completed or cancelled ride",
                {"ride_id": str(ride_id), "status": str(ride.status)},
            )

        distance = ride.distance if request.distance is None else request.distance
        scheduled_time = self._localize(request.scheduled_time or ride.scheduled_time)
        fare = await self._quote(distance, scheduled_time)

        updated = await self._rides.update_fare(ride.id, ride.status, distance, scheduled_time, fare)
        if updated is None:
            current = await self._load(ride_id)
            raise ValidationError(
                "Ride changed while recomputing the fare",
                {"ride_id": str(ride_id), "status": str(current.status)},
            )

        await log_info(
            "Тариф пересчитан",
            extra={"ride_id": str(ride.id), "old_total": ride.fare.total, "new_total": fare.total},
        )
        await self._fanout.broadcast_ride_update(ride.id, "fare", ride=updated)
        return updated
