# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock
from uuid import UUID, uuid4

import jwt
import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("REDIS_PASSWORD", "")
os.environ.setdefault("JWT_SECRET", "medride-test-secret-0123456789abcdef")

from medride.common.constants import PaymentStatus, RideStatus, UserRole  # noqa: E402
from medride.config.loader import DispatchSettings  # noqa: E402
from medride.services.auth.tokens import TokenAuthenticator  # noqa: E402
from medride.services.locations.service import LocationService  # noqa: E402
from medride.services.pricing.engine import compute_fare  # noqa: E402
from medride.services.realtime.fanout import FanoutService  # noqa: E402
from medride.services.realtime.presence import PresenceRegistry  # noqa: E402
from medride.services.reconciler.service import OrphanReconciler  # noqa: E402
from medride.services.rides.dependencies import AppContainer  # noqa: E402
from medride.services.rides.repository import RideRef  # noqa: E402
from medride.services.rides.service import RideService  # noqa: E402
from medride.services.utils.geo_utils import distance_meters  # noqa: E402
from medride.shared.models.location import DriverLocation  # noqa: E402
from medride.shared.models.pricing import AdditionalFees, PricingConfig  # noqa: E402
from medride.shared.models.ride import (  # noqa: E402
    Fare,
    GeoPoint,
    Place,
    Rating,
    Ride,
    SpecialRequirements,
)
from medride.shared.models.user import Identity  # noqa: E402

TEST_JWT_SECRET = "medride-test-secret-0123456789abcdef"
TEST_TIMEZONE = "America/New_York"


# =============================================================================
# ФЕЙКОВЫЕ ХРАНИЛИЩА
# =============================================================================

class FakeRideRepository:
    """
    Хранилище поездок в памяти с той же семантикой условных записей,
    что и RideRepository: проверка и запись без точек переключения между ними.
    """

    def __init__(self) -> None:
        self.rides: dict[UUID, Ride] = {}
        self.claim_calls = 0

    def put(self, ride: Ride) -> Ride:
        self.rides[ride.id] = ride
        return ride

    async def get(self, ride_id: UUID) -> Ride | None:
        return self.rides.get(ride_id)

    async def nearby_pending(self, longitude: float, latitude: float, radius_meters: float, limit: int) -> list[Ride]:
        found = [
            ride for ride in self.rides.values()
            if ride.status == RideStatus.PENDING
            and distance_meters(
                longitude, latitude, ride.pickup.location.longitude, ride.pickup.location.latitude,
            ) <= radius_meters
        ]
        found.sort(key=lambda r: (r.scheduled_time, str(r.id)))
        return found[:limit]

    async def assignments(self, driver_id: UUID) -> list[Ride]:
        found = [
            ride for ride in self.rides.values()
            if ride.driver_id == driver_id and ride.status in (RideStatus.ACCEPTED, RideStatus.IN_PROGRESS)
        ]
        return sorted(found, key=lambda r: (r.scheduled_time, str(r.id)))

    async def list_rides(
        self,
        *,
        patient_id: UUID | None = None,
        facility_id: UUID | None = None,
        driver_id: UUID | None = None,
        statuses: list[RideStatus] | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Ride], int]:
        found = [
            ride for ride in self.rides.values()
            if (patient_id is None or ride.patient_id == patient_id)
            and (facility_id is None or ride.facility_id == facility_id)
            and (driver_id is None or ride.driver_id == driver_id)
            and (not statuses or ride.status in statuses)
        ]
        found.sort(key=lambda r: (r.scheduled_time, str(r.id)), reverse=True)
        return found[offset:offset + limit], len(found)

    async def page_refs(self, after_id: UUID | None, limit: int) -> list[RideRef]:
        ordered = sorted(self.rides.values(), key=lambda r: r.id)
        if after_id is not None:
            ordered = [r for r in ordered if r.id > after_id]
        return [RideRef(id=r.id, patient_id=r.patient_id, status=r.status) for r in ordered[:limit]]

    async def create(self, **fields: Any) -> Ride:
        now = datetime.now(timezone.utc)
        ride = Ride(id=uuid4(), status=RideStatus.PENDING, created_at=now, updated_at=now, **fields)
        return self.put(ride)

    async def claim(self, ride_id: UUID, driver_id: UUID) -> Ride | None:
        self.claim_calls += 1
        ride = self.rides.get(ride_id)
        if ride is None or ride.status != RideStatus.PENDING or ride.driver_id is not None:
            return None
        return self.put(ride.model_copy(update={"status": RideStatus.ACCEPTED, "driver_id": driver_id}))

    async def transition(
        self,
        ride_id: UUID,
        expected_status: RideStatus,
        target: RideStatus,
        changes: dict[str, Any],
        *,
        expected_driver_id: UUID | None = None,
    ) -> Ride | None:
        ride = self.rides.get(ride_id)
        if ride is None or ride.status != expected_status:
            return None
        if expected_driver_id is not None and ride.driver_id != expected_driver_id:
            return None
        return self.put(ride.model_copy(update={"status": target, **changes}))

    async def rate(self, ride_id: UUID, score: int, comment: str | None) -> Ride | None:
        ride = self.rides.get(ride_id)
        if ride is None or ride.status != RideStatus.COMPLETED:
            return None
        rating = Rating(score=score, comment=comment, created_at=datetime.now(timezone.utc))
        return self.put(ride.model_copy(update={"rating": rating}))

    async def update_payment(
        self,
        ride_id: UUID,
        payment_status: PaymentStatus,
        payment_details: dict[str, Any] | None,
    ) -> Ride | None:
        ride = self.rides.get(ride_id)
        if ride is None:
            return None
        details = {**ride.payment_details, **(payment_details or {})}
        return self.put(ride.model_copy(update={"payment_status": payment_status, "payment_details": details}))

    async def update_fare(
        self,
        ride_id: UUID,
        expected_status: RideStatus,
        distance: float,
        scheduled_time: datetime,
        fare: Fare,
    ) -> Ride | None:
        ride = self.rides.get(ride_id)
        if ride is None or ride.status != expected_status:
            return None
        return self.put(ride.model_copy(update={
            "distance": distance,
            "scheduled_time": scheduled_time,
            "fare": fare,
        }))

    async def delete_orphan(self, ride_id: UUID, patient_id: UUID) -> RideRef | None:
        ride = self.rides.get(ride_id)
        if ride is None or ride.patient_id != patient_id:
            return None
        del self.rides[ride_id]
        return RideRef(id=ride.id, patient_id=ride.patient_id, status=ride.status)


class FakeUsers:
    """Справочник пользователей в памяти."""

    def __init__(self, *identities: Identity) -> None:
        self.identities: dict[UUID, Identity] = {i.id: i for i in identities}

    def add(self, identity: Identity) -> Identity:
        self.identities[identity.id] = identity
        return identity

    def remove(self, user_id: UUID) -> None:
        self.identities.pop(user_id, None)

    async def get_identity(self, user_id: UUID) -> Identity | None:
        return self.identities.get(user_id)

    async def exists(self, user_id: UUID) -> bool:
        return user_id in self.identities


class FakeLocationRepository:
    """Журнал позиций в памяти; история новые первыми, как в LocationRepository."""

    def __init__(self, start: datetime | None = None) -> None:
        self.records: list[DriverLocation] = []
        self.now = start or datetime(2024, 3, 5, 14, 0, tzinfo=timezone.utc)

    async def record(
        self,
        driver_id: UUID,
        location: GeoPoint,
        *,
        accuracy: float | None = None,
        speed: float | None = None,
        heading: float | None = None,
    ) -> DriverLocation:
        entry = DriverLocation(
            id=len(self.records) + 1,
            driver_id=driver_id,
            location=location,
            accuracy=accuracy,
            speed=speed,
            heading=heading,
            recorded_at=self.now,
        )
        self.records.append(entry)
        self.now += timedelta(seconds=30)
        return entry

    async def history(
        self,
        driver_id: UUID,
        since: datetime | None,
        until: datetime | None,
        limit: int,
    ) -> list[DriverLocation]:
        matching = [
            entry for entry in self.records
            if entry.driver_id == driver_id
            and (since is None or entry.recorded_at >= since)
            and (until is None or entry.recorded_at <= until)
        ]
        matching.sort(key=lambda entry: (entry.recorded_at, entry.id), reverse=True)
        return matching[:limit]


class FakePricing:
    def __init__(self, config: PricingConfig) -> None:
        self.config = config

    async def get_config(self) -> PricingConfig:
        return self.config


class FakeWebSocket:
    """Транспорт, запоминающий отправленные сообщения."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed_with: int | None = None
        self.fail = fail

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise ConnectionError("socket is gone")
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.closed_with = code

    def events(self) -> list[str]:
        return [message["event"] for message in self.sent]


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


@pytest.fixture
def pricing_config() -> PricingConfig:
    """Тарифы из примеров: база $5, $2.5/миля, минимум $10."""
    return PricingConfig(base_fare=5.0, per_mile_rate=2.5, minimum_fare=10.0)


@pytest.fixture
def pricing_with_fees() -> PricingConfig:
    return PricingConfig(
        base_fare=5.0,
        per_mile_rate=2.5,
        minimum_fare=10.0,
        additional_fees=AdditionalFees(night_charge=3.0, peak_hour_charge=2.0, holiday_charge=4.0),
    )


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (МОКИ)
# =============================================================================

@pytest.fixture
def mock_db() -> AsyncMock:
    """Мок менеджера базы данных."""
    db = AsyncMock()
    db.fetchrow = AsyncMock(return_value=None)
    db.fetch = AsyncMock(return_value=[])
    db.execute = AsyncMock(return_value="UPDATE 1")
    db.fetchval = AsyncMock(return_value=None)
    return db


# =============================================================================
# ФИКСТУРЫ ПОЛЬЗОВАТЕЛЕЙ
# =============================================================================

def make_identity(role: UserRole, **kwargs: Any) -> Identity:
    return Identity(id=kwargs.pop("id", uuid4()), role=role, **kwargs)


@pytest.fixture
def patient() -> Identity:
    return make_identity(UserRole.PATIENT, email="patient@example.com")


@pytest.fixture
def facility() -> Identity:
    return make_identity(UserRole.FACILITY, email="clinic@example.com")


@pytest.fixture
def driver() -> Identity:
    return make_identity(UserRole.DRIVER, email="driver@example.com")


@pytest.fixture
def other_driver() -> Identity:
    return make_identity(UserRole.DRIVER, email="driver2@example.com")


@pytest.fixture
def admin() -> Identity:
    return make_identity(UserRole.ADMIN, email="admin@example.com")


@pytest.fixture
def users(patient: Identity, facility: Identity, driver: Identity, other_driver: Identity, admin: Identity) -> FakeUsers:
    return FakeUsers(patient, facility, driver, other_driver, admin)


def make_token(user_id: UUID | str, *, secret: str = TEST_JWT_SECRET, expires_in: int = 3600) -> str:
    payload = {
        "sub": str(user_id),
        "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    }
    return jwt.encode(payload, secret, algorithm="HS256")


# =============================================================================
# ФИКСТУРЫ ПОЕЗДОК
# =============================================================================

def make_ride(
    patient_id: UUID,
    *,
    status: RideStatus = RideStatus.PENDING,
    driver_id: UUID | None = None,
    facility_id: UUID | None = None,
    pickup: tuple[float, float] = (-73.9855, 40.7580),
    scheduled_time: datetime | None = None,
    **extra: Any,
) -> Ride:
    """Поездка с тарифом, рассчитанным по базовым тарифам."""
    scheduled = scheduled_time or datetime(2024, 3, 13, 12, 0, tzinfo=timezone.utc)
    pricing = PricingConfig(base_fare=5.0, per_mile_rate=2.5, minimum_fare=10.0)
    return Ride(
        id=extra.pop("id", uuid4()),
        patient_id=patient_id,
        driver_id=driver_id,
        facility_id=facility_id,
        pickup=Place(address="1 Pickup St", location=GeoPoint.of(*pickup)),
        dropoff=Place(address="2 Clinic Ave", location=GeoPoint.of(-73.9680, 40.7851)),
        distance=4.0,
        scheduled_time=scheduled,
        status=status,
        special_requirements=SpecialRequirements(wheelchair=True),
        fare=compute_fare(4.0, scheduled, pricing),
        **extra,
    )


@pytest.fixture
def ride_repo() -> FakeRideRepository:
    return FakeRideRepository()


@pytest.fixture
def location_repo() -> FakeLocationRepository:
    return FakeLocationRepository()


@pytest.fixture
def presence(clock: FakeClock) -> PresenceRegistry:
    return PresenceRegistry(sweep_interval=3600, idle_timeout=120, clock=clock)


@pytest.fixture
def fanout() -> AsyncMock:
    """Мок рассылки: сервис поездок проверяется без реального реестра."""
    return AsyncMock(spec=FanoutService)


@pytest.fixture
def ride_service(
    ride_repo: FakeRideRepository,
    users: FakeUsers,
    pricing_config: PricingConfig,
    fanout: AsyncMock,
) -> RideService:
    return RideService(
        ride_repo,
        users,
        FakePricing(pricing_config),
        fanout,
        timezone=TEST_TIMEZONE,
        dispatch=DispatchSettings(DEFAULT_RADIUS_METERS=10000, MAX_RADIUS_METERS=100000, NEARBY_LIMIT=100),
    )


@pytest.fixture
def container(
    ride_repo: FakeRideRepository,
    users: FakeUsers,
    pricing_config: PricingConfig,
    location_repo: FakeLocationRepository,
) -> AppContainer:
    """Контейнер приложения на фейковых хранилищах и реальном реестре соединений."""
    presence = PresenceRegistry(sweep_interval=3600, idle_timeout=3600)
    fanout = FanoutService(presence)
    pricing = AsyncMock()
    pricing.get_config = AsyncMock(return_value=pricing_config)
    pricing.update = AsyncMock(return_value=pricing_config)
    return AppContainer(
        presence=presence,
        fanout=fanout,
        rides=RideService(ride_repo, users, pricing, fanout, timezone=TEST_TIMEZONE),
        pricing=pricing,
        authenticator=TokenAuthenticator(users, TEST_JWT_SECRET),
        reconciler=OrphanReconciler(ride_repo, users, batch_size=50),
        locations=LocationService(location_repo, ride_repo, fanout),
    )


@pytest.fixture
def ride_factory():
    """Фабрика поездок (см. make_ride)."""
    return make_ride


@pytest.fixture
def token_factory():
    """Фабрика JWT, подписанных тестовым секретом."""
    return make_token


@pytest.fixture
def ws_factory():
    """Фабрика фейковых WebSocket-транспортов."""
    return FakeWebSocket


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
