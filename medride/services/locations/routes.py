# medride/services/locations/routes.py
from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query

from medride.services.locations.service import LocationService
from medride.services.rides.dependencies import get_current_identity, get_location_service
from medride.shared.models.location import DriverLocation, LocationUpdateRequest
from medride.shared.models.user import Identity

router = APIRouter(prefix="/location", tags=["Location"])


@router.post("", response_model=DriverLocation, status_code=201)
async def record_location(
    request: LocationUpdateRequest,
    actor: Identity = Depends(get_current_identity),
    service: LocationService = Depends(get_location_service),
):
    return await service.record(actor, request)


@router.get("/history", response_model=list[DriverLocation])
async def location_history(
    start_date: datetime | None = Query(default=None, alias="startDate"),
    end_date: datetime | None = Query(default=None, alias="endDate"),
    actor: Identity = Depends(get_current_identity),
    service: LocationService = Depends(get_location_service),
):
    return await service.history(actor, start_date, end_date)
