# medride/services/rides/routes.py
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query

from medride.common.constants import RideStatus
from medride.common.exceptions import ValidationError
from medride.services.rides.dependencies import get_current_identity, get_ride_service
from medride.services.rides.service import RideService
from medride.shared.models.common import PaginatedResponse, PaginationParams
from medride.shared.models.ride import (
    CancelRideRequest,
    CreateRideRequest,
    FareRecomputeRequest,
    PaymentUpdateRequest,
    RateRideRequest,
    Ride,
)
from medride.shared.models.user import Identity

router = APIRouter(prefix="/rides", tags=["Rides"])


def _parse_statuses(raw: str | None) -> list[RideStatus] | None:
    if not raw:
        return None
    statuses: list[RideStatus] = []
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        try:
            statuses.append(RideStatus(item))
        except ValueError:
            raise ValidationError(
                f"Unknown ride status '{item}'",
                {"field": "status", "allowed": [s.value for s in RideStatus]},
            ) from None
    return statuses or None


@router.post("", response_model=Ride, status_code=201)
async def create_ride(
    request: CreateRideRequest,
    actor: Identity = Depends(get_current_identity),
    service: RideService = Depends(get_ride_service),
):
    return await service.create_ride(actor, request)


@router.get("", response_model=PaginatedResponse[Ride])
async def list_rides(
    status: str | None = Query(default=None, description="Статусы через запятую"),
    page: int = Query(default=1, ge=1),
    size: int = Query(default=20, ge=1, le=100),
    actor: Identity = Depends(get_current_identity),
    service: RideService = Depends(get_ride_service),
):
    return await service.list_rides(
        actor,
        PaginationParams(page=page, page_size=size),
        _parse_statuses(status),
    )


@router.get("/nearby", response_model=list[Ride])
async def nearby_rides(
    longitude: float = Query(...),
    latitude: float = Query(...),
    max_distance: float | None = Query(default=None, alias="maxDistance"),
    actor: Identity = Depends(get_current_identity),
    service: RideService = Depends(get_ride_service),
):
    return await service.nearby_pending(actor, longitude, latitude, max_distance)


@router.get("/assignments", response_model=list[Ride])
async def driver_assignments(
    actor: Identity = Depends(get_current_identity),
    service: RideService = Depends(get_ride_service),
):
    return await service.assignments(actor)


@router.get("/{ride_id}", response_model=Ride)
async def get_ride(
    ride_id: UUID,
    actor: Identity = Depends(get_current_identity),
    service: RideService = Depends(get_ride_service),
):
    return await service.get_ride(actor, ride_id)


@router.post("/{ride_id}/accept", response_model=Ride)
async def accept_ride(
    ride_id: UUID,
    actor: Identity = Depends(get_current_identity),
    service: RideService = Depends(get_ride_service),
):
    return await service.claim(actor, ride_id)


@router.post("/{ride_id}/start", response_model=Ride)
async def start_ride(
    ride_id: UUID,
    actor: Identity = Depends(get_current_identity),
    service: RideService = Depends(get_ride_service),
):
    return await service.start(actor, ride_id)


@router.post("/{ride_id}/complete", response_model=Ride)
async def complete_ride(
    ride_id: UUID,
    actor: Identity = Depends(get_current_identity),
    service: RideService = Depends(get_ride_service),
):
    return await service.complete(actor, ride_id)


@router.post("/{ride_id}/cancel", response_model=Ride)
async def cancel_ride(
    ride_id: UUID,
    request: CancelRideRequest | None = Body(default=None),
    actor: Identity = Depends(get_current_identity),
    service: RideService = Depends(get_ride_service),
):
    return await service.cancel(actor, ride_id, request.reason if request else None)


@router.post("/{ride_id}/rate", response_model=Ride)
async def rate_ride(
    ride_id: UUID,
    request: RateRideRequest,
    actor: Identity = Depends(get_current_identity),
    service: RideService = Depends(get_ride_service),
):
    return await service.rate(actor, ride_id, request.rating, request.comment)


@router.put("/{ride_id}/payment", response_model=Ride)
async def update_payment(
    ride_id: UUID,
    request: PaymentUpdateRequest,
    actor: Identity = Depends(get_current_identity),
    service: RideService = Depends(get_ride_service),
):
    return await service.update_payment(actor, ride_id, request)


@router.post("/{ride_id}/fare", response_model=Ride)
async def recompute_fare(
    ride_id: UUID,
    request: FareRecomputeRequest,
    actor: Identity = Depends(get_current_identity),
    service: RideService = Depends(get_ride_service),
):
    return await service.recompute_fare(actor, ride_id, request)
