# medride/services/locations/repository.py
"""
Репозиторий геопозиций водителей (PostgreSQL + PostGIS).

Записи только добавляются: одна позиция = один INSERT ... RETURNING.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from asyncpg import Record

from medride.infra.database import DatabaseManager
from medride.shared.models.location import DriverLocation
from medride.shared.models.ride import GeoPoint

_LOCATION_COLUMNS = "id, driver_id, lon, lat, accuracy, speed, heading, recorded_at"


def row_to_location(row: Record | dict[str, Any]) -> DriverLocation:
    return DriverLocation(
        id=row["id"],
        driver_id=row["driver_id"],
        location=GeoPoint.of(row["lon"], row["lat"]),
        accuracy=row["accuracy"],
        speed=row["speed"],
        heading=row["heading"],
        recorded_at=row["recorded_at"],
    )


class LocationRepository:
    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def record(
        self,
        driver_id: UUID,
        location: GeoPoint,
        *,
        accuracy: float | None = None,
        speed: float | None = None,
        heading: float | None = None,
    ) -> DriverLocation:
        """Сохраняет позицию; колонка geog вычисляется базой из lon/lat."""
        row = await self._db.fetchrow(
            f"""
            INSERT INTO driver_locations (driver_id, lon, lat, accuracy, speed, heading)
            VALUES ($1, $2, $3, $4, $5, $6)
            RETURNING {_LOCATION_COLUMNS}
            """,
            driver_id,
            location.longitude,
            location.latitude,
            accuracy,
            speed,
            heading,
        )
        return row_to_location(row)

    async def history(
        self,
        driver_id: UUID,
        since: datetime | None,
        until: datetime | None,
        limit: int,
    ) -> list[DriverLocation]:
        """Позиции водителя за период, новые первыми."""
        rows = await self._db.fetch(
            f"""
            SELECT {_LOCATION_COLUMNS}
            FROM driver_locations
            WHERE driver_id = $1
              AND ($2::timestamptz IS NULL OR recorded_at >= $2)
              AND ($3::timestamptz IS NULL OR recorded_at <= $3)
            ORDER BY recorded_at DESC, id DESC
            LIMIT $4
            """,
            driver_id,
            since,
            until,
            limit,
        )
        return [row_to_location(row) for row in rows]
