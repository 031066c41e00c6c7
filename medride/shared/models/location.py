# medride/shared/models/location.py
"""
Геопозиции водителей.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import Field

from medride.shared.models.common import CamelModel
from medride.shared.models.ride import GeoPoint


class DriverLocation(CamelModel):
    id: int
    driver_id: UUID
    location: GeoPoint
    accuracy: float | None = None
    speed: float | None = None
    heading: float | None = None
    recorded_at: datetime


class LocationUpdateRequest(CamelModel):
    """Позиция от приложения водителя: точность в метрах, скорость в м/с, курс в градусах."""

    location: GeoPoint
    accuracy: float | None = Field(default=None, ge=0)
    speed: float | None = Field(default=None, ge=0)
    heading: float | None = Field(default=None, ge=0, lt=360)
