# medride/shared/models/ride.py
"""
DTO поездки: геоточки, тариф, оценка, запросы REST API.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import Field, field_validator

from medride.common.constants import PaymentStatus, RideStatus
from medride.shared.models.common import CamelModel


class GeoPoint(CamelModel):
    """Точка GeoJSON: coordinates = [долгота, широта]."""

    type: Literal["Point"] = "Point"
    coordinates: list[float] = Field(min_length=2, max_length=2)

    @field_validator("coordinates")
    @classmethod
    def check_range(cls, value: list[float]) -> list[float]:
        lon, lat = value
        if not -180.0 <= lon <= 180.0:
            raise ValueError("longitude must be within [-180, 180]")
        if not -90.0 <= lat <= 90.0:
            raise ValueError("latitude must be within [-90, 90]")
        return value

    @property
    def longitude(self) -> float:
        return self.coordinates[0]

    @property
    def latitude(self) -> float:
        return self.coordinates[1]

    @classmethod
    def of(cls, longitude: float, latitude: float) -> "GeoPoint":
        return cls(coordinates=[longitude, latitude])


class Place(CamelModel):
    address: str = Field(min_length=1, max_length=500)
    location: GeoPoint


class SpecialRequirements(CamelModel):
    """Пожелания к перевозке. Только информативно: на тариф и статусы не влияют."""

    wheelchair: bool = False
    medical_equipment: bool = False
    assistance_required: bool = False


# =============================================================================
# ТАРИФ
# =============================================================================

class FareItem(CamelModel):
    name: str
    amount: float


class DistanceCharge(FareItem):
    details: str


class FareLines(CamelModel):
    base_fare: FareItem
    distance: DistanceCharge
    additional_fees: list[FareItem] = Field(default_factory=list)


class Fare(CamelModel):
    """
    Расчёт стоимости поездки.

    subtotal = base_fare + distance + sum(additional_fees);
    total = max(subtotal, minimum_fare).
    """

    total: float
    subtotal: float
    breakdown: FareLines
    minimum_fare_applied: bool = False


class Rating(CamelModel):
    score: int = Field(ge=1, le=5)
    comment: str | None = Field(default=None, max_length=500)
    created_at: datetime | None = None


# =============================================================================
# ПОЕЗДКА
# =============================================================================

class Ride(CamelModel):
    id: UUID
    patient_id: UUID
    driver_id: UUID | None = None
    facility_id: UUID | None = None

    pickup: Place
    dropoff: Place
    distance: float
    scheduled_time: datetime
    status: RideStatus = RideStatus.PENDING

    special_requirements: SpecialRequirements = Field(default_factory=SpecialRequirements)
    notes: str | None = None
    fare: Fare

    start_time: datetime | None = None
    completed_by: UUID | None = None
    completed_at: datetime | None = None
    cancelled_by: UUID | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None

    rating: Rating | None = None

    payment_status: PaymentStatus = PaymentStatus.UNPAID
    payment_details: dict[str, Any] = Field(default_factory=dict)

    created_at: datetime | None = None
    updated_at: datetime | None = None

    # Заполняется только в ответе гео-поиска
    pickup_distance_meters: float | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (RideStatus.COMPLETED, RideStatus.CANCELLED)


# =============================================================================
# ЗАПРОСЫ
# =============================================================================

class CreateRideRequest(CamelModel):
    """Создание поездки пациентом или учреждением (тогда patient_id обязателен)."""

    patient_id: UUID | None = None
    pickup: Place
    dropoff: Place
    distance: float
    scheduled_time: datetime
    special_requirements: SpecialRequirements = Field(default_factory=SpecialRequirements)
    notes: str | None = Field(default=None, max_length=1000)


class CancelRideRequest(CamelModel):
    reason: str | None = Field(default=None, max_length=500)


class RateRideRequest(CamelModel):
    rating: int = Field(ge=1, le=5)
    comment: str | None = Field(default=None, max_length=500)


class PaymentUpdateRequest(CamelModel):
    payment_status: PaymentStatus
    payment_details: dict[str, Any] | None = None


class FareRecomputeRequest(CamelModel):
    distance: float | None = None
    scheduled_time: datetime | None = None
