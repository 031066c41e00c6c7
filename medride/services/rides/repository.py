# medride/services/rides/repository.py
"""
Репозиторий поездок (PostgreSQL + PostGIS).

Любое изменение поездки выражено одним условным UPDATE/DELETE ... RETURNING:
если условие не выполнилось, метод возвращает None, и вызывающий код
решает, что это значит (конфликт захвата, устаревшее чтение и т.д.).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable
from uuid import UUID

from asyncpg import Record

from medride.common.constants import PaymentStatus, RideStatus
from medride.infra.database import DatabaseManager
from medride.shared.models.ride import (
    Fare,
    GeoPoint,
    Place,
    Rating,
    Ride,
    SpecialRequirements,
)

_RIDE_COLUMNS = """
    id, patient_id, driver_id, facility_id,
    pickup_address, pickup_lon, pickup_lat,
    dropoff_address, dropoff_lon, dropoff_lat,
    distance, scheduled_time, status,
    wheelchair, medical_equipment, assistance, notes,
    fare, start_time, completed_by, completed_at,
    cancelled_by, cancelled_at, cancellation_reason,
    rating_score, rating_comment, rated_at,
    payment_status, payment_details, created_at, updated_at
"""

# Колонки, которые может выставить переход статуса
_TRANSITION_COLUMNS = frozenset({
    "driver_id",
    "start_time",
    "completed_by",
    "completed_at",
    "cancelled_by",
    "cancelled_at",
    "cancellation_reason",
})


@dataclass(frozen=True)
class RideRef:
    """Минимум данных о поездке для сверки ссылок на пациента."""
    id: UUID
    patient_id: UUID
    status: RideStatus


def row_to_ride(row: Record | dict[str, Any]) -> Ride:
    """Преобразует строку таблицы rides в модель Ride."""
    rating = None
    if row["rating_score"] is not None:
        rating = Rating(
            score=row["rating_score"],
            comment=row["rating_comment"],
            created_at=row["rated_at"],
        )

    return Ride(
        id=row["id"],
        patient_id=row["patient_id"],
        driver_id=row["driver_id"],
        facility_id=row["facility_id"],
        pickup=Place(
            address=row["pickup_address"],
            location=GeoPoint.of(row["pickup_lon"], row["pickup_lat"]),
        ),
        dropoff=Place(
            address=row["dropoff_address"],
            location=GeoPoint.of(row["dropoff_lon"], row["dropoff_lat"]),
        ),
        distance=float(row["distance"]),
        scheduled_time=row["scheduled_time"],
        status=RideStatus(row["status"]),
        special_requirements=SpecialRequirements(
            wheelchair=row["wheelchair"],
            medical_equipment=row["medical_equipment"],
            assistance_required=row["assistance"],
        ),
        notes=row["notes"],
        fare=Fare.model_validate(row["fare"]),
        start_time=row["start_time"],
        completed_by=row["completed_by"],
        completed_at=row["completed_at"],
        cancelled_by=row["cancelled_by"],
        cancelled_at=row["cancelled_at"],
        cancellation_reason=row["cancellation_reason"],
        rating=rating,
        payment_status=PaymentStatus(row["payment_status"]),
        payment_details=row["payment_details"] or {},
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class RideRepository:
    """Репозиторий поездок."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def get(self, ride_id: UUID) -> Ride | None:
        row = await self._db.fetchrow(
            f"SELECT {_RIDE_COLUMNS} FROM rides WHERE id = $1",
            ride_id,
        )
        return row_to_ride(row) if row else None

    async def nearby_pending(
        self,
        longitude: float,
        latitude: float,
        radius_meters: float,
        limit: int,
    ) -> list[Ride]:
        """
        Ожидающие поездки в радиусе от точки, ранние первыми.
        ST_DWithin по geography использует GiST-индекс idx_rides_pickup_geog.
        """
        rows = await self._db.fetch(
            f"""
            SELECT {_RIDE_COLUMNS}
            FROM rides
            WHERE status = $1
              AND ST_DWithin(
                    pickup_geog,
                    ST_SetSRID(ST_MakePoint($2, $3), 4326)::geography,
                    $4
                  )
            ORDER BY scheduled_time ASC, id ASC
            LIMIT $5
            """,
            RideStatus.PENDING.value,
            longitude,
            latitude,
            radius_meters,
            limit,
        )
        return [row_to_ride(row) for row in rows]

    async def assignments(self, driver_id: UUID) -> list[Ride]:
        """Принятые и выполняемые поездки водителя, ранние первыми."""
        rows = await self._db.fetch(
            f"""
            SELECT {_RIDE_COLUMNS}
            FROM rides
            WHERE driver_id = $1 AND status = ANY($2::text[])
            ORDER BY scheduled_time ASC, id ASC
            """,
            driver_id,
            [RideStatus.ACCEPTED.value, RideStatus.IN_PROGRESS.value],
        )
        return [row_to_ride(row) for row in rows]

    async def list_rides(
        self,
        *,
        patient_id: UUID | None = None,
        facility_id: UUID | None = None,
        driver_id: UUID | None = None,
        statuses: Iterable[RideStatus] | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Ride], int]:
        """
        Поездки с фильтрами по участнику и статусам, поздние первыми.

        Returns:
            (страница поездок, общее количество)
        """
        conditions: list[str] = []
        args: list[Any] = []
        for column, value in (
            ("patient_id", patient_id),
            ("facility_id", facility_id),
            ("driver_id", driver_id),
        ):
            if value is not None:
                args.append(value)
                conditions.append(f"{column} = ${len(args)}")
        if statuses:
            args.append([RideStatus(s).value for s in statuses])
            conditions.append(f"status = ANY(${len(args)}::text[])")

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        total = await self._db.fetchval(f"SELECT COUNT(*) FROM rides {where}", *args)
        rows = await self._db.fetch(
            f"""
            SELECT {_RIDE_COLUMNS}
            FROM rides
            {where}
            ORDER BY scheduled_time DESC, id DESC
            LIMIT ${len(args) + 1} OFFSET ${len(args) + 2}
            """,
            *args,
            limit,
            offset,
        )
        return [row_to_ride(row) for row in rows], int(total or 0)

    async def page_refs(self, after_id: UUID | None, limit: int) -> list[RideRef]:
        """Постраничный обход всех поездок по ключу id (keyset pagination)."""
        if after_id is None:
            rows = await self._db.fetch(
                "SELECT id, patient_id, status FROM rides ORDER BY id LIMIT $1",
                limit,
            )
        else:
            rows = await self._db.fetch(
                "SELECT id, patient_id, status FROM rides WHERE id > $1 ORDER BY id LIMIT $2",
                after_id,
                limit,
            )
        return [RideRef(id=r["id"], patient_id=r["patient_id"], status=RideStatus(r["status"])) for r in rows]

    # =========================================================================
    # ЗАПИСЬ
    # =========================================================================

    async def create(
        self,
        *,
        patient_id: UUID,
        facility_id: UUID | None,
        pickup: Place,
        dropoff: Place,
        distance: float,
        scheduled_time: datetime,
        special_requirements: SpecialRequirements,
        notes: str | None,
        fare: Fare,
    ) -> Ride:
        row = await self._db.fetchrow(
            f"""
            INSERT INTO rides (
                patient_id, facility_id,
                pickup_address, pickup_lon, pickup_lat,
                dropoff_address, dropoff_lon, dropoff_lat,
                distance, scheduled_time, status,
                wheelchair, medical_equipment, assistance, notes,
                fare, fare_total
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16, $17)
            RETURNING {_RIDE_COLUMNS}
            """,
            patient_id,
            facility_id,
            pickup.address,
            pickup.location.longitude,
            pickup.location.latitude,
            dropoff.address,
            dropoff.location.longitude,
            dropoff.location.latitude,
            distance,
            scheduled_time,
            RideStatus.PENDING.value,
            special_requirements.wheelchair,
            special_requirements.medical_equipment,
            special_requirements.assistance_required,
            notes,
            fare.to_wire(),
            fare.total,
        )
        return row_to_ride(row)

    async def claim(self, ride_id: UUID, driver_id: UUID) -> Ride | None:
        """
        Атомарно отдаёт ожидающую неназначенную поездку водителю.
        Проверка и запись выполняются одним UPDATE; None означает, что поездку
        уже забрали или отменили.
        """
        row = await self._db.fetchrow(
            f"""
            UPDATE rides
            SET status = $3, driver_id = $2, updated_at = NOW()
            WHERE id = $1 AND status = $4 AND driver_id IS NULL
            RETURNING {_RIDE_COLUMNS}
            """,
            ride_id,
            driver_id,
            RideStatus.ACCEPTED.value,
            RideStatus.PENDING.value,
        )
        return row_to_ride(row) if row else None

    async def transition(
        self,
        ride_id: UUID,
        expected_status: RideStatus,
        target: RideStatus,
        changes: dict[str, Any],
        *,
        expected_driver_id: UUID | None = None,
    ) -> Ride | None:
        """
        Переводит поездку в новый статус, если она всё ещё в expected_status.

        Args:
            changes: отметки жизненного цикла (см. _TRANSITION_COLUMNS)
            expected_driver_id: дополнительно требовать этого водителя
        """
        unknown = set(changes) - _TRANSITION_COLUMNS
        if unknown:
            raise ValueError(f"Недопустимые колонки для перехода: {sorted(unknown)}")

        args: list[Any] = [ride_id, RideStatus(target).value, RideStatus(expected_status).value]
        assignments = ["status = $2", "updated_at = NOW()"]
        for column, value in changes.items():
            args.append(value)
            assignments.append(f"{column} = ${len(args)}")

        condition = "id = $1 AND status = $3"
        if expected_driver_id is not None:
            args.append(expected_driver_id)
            condition += f" AND driver_id = ${len(args)}"

        row = await self._db.fetchrow(
            f"""
            UPDATE rides
            SET {', '.join(assignments)}
            WHERE {condition}
            RETURNING {_RIDE_COLUMNS}
            """,
            *args,
        )
        return row_to_ride(row) if row else None

    async def rate(self, ride_id: UUID, score: int, comment: str | None) -> Ride | None:
        """Оценка ставится только завершённой поездке."""
        row = await self._db.fetchrow(
            f"""
            UPDATE rides
            SET rating_score = $2, rating_comment = $3, rated_at = NOW(), updated_at = NOW()
            WHERE id = $1 AND status = $4
            RETURNING {_RIDE_COLUMNS}
            """,
            ride_id,
            score,
            comment,
            RideStatus.COMPLETED.value,
        )
        return row_to_ride(row) if row else None

    async def update_payment(
        self,
        ride_id: UUID,
        payment_status: PaymentStatus,
        payment_details: dict[str, Any] | None,
    ) -> Ride | None:
        """Записывает статус оплаты и дополняет payment_details (jsonb merge)."""
        row = await self._db.fetchrow(
            f"""
            UPDATE rides
            SET payment_status = $2,
                payment_details = payment_details || $3::jsonb,
                updated_at = NOW()
            WHERE id = $1
            RETURNING {_RIDE_COLUMNS}
            """,
            ride_id,
            PaymentStatus(payment_status).value,
            payment_details or {},
        )
        return row_to_ride(row) if row else None

    async def update_fare(
        self,
        ride_id: UUID,
        expected_status: RideStatus,
        distance: float,
        scheduled_time: datetime,
        fare: Fare,
    ) -> Ride | None:
        row = await self._db.fetchrow(
            f"""
            UPDATE rides
            SET distance = $2, scheduled_time = $3, fare = $4, fare_total = $5, updated_at = NOW()
            WHERE id = $1 AND status = $6
            RETURNING {_RIDE_COLUMNS}
            """,
            ride_id,
            distance,
            scheduled_time,
            fare.to_wire(),
            fare.total,
            RideStatus(expected_status).value,
        )
        return row_to_ride(row) if row else None

    async def delete_orphan(self, ride_id: UUID, patient_id: UUID) -> RideRef | None:
        """Удаляет поездку, если она всё ещё ссылается на этого пациента."""
        row = await self._db.fetchrow(
            """
            DELETE FROM rides
            WHERE id = $1 AND patient_id = $2
            RETURNING id, patient_id, status
            """,
            ride_id,
            patient_id,
        )
        if row is None:
            return None
        return RideRef(id=row["id"], patient_id=row["patient_id"], status=RideStatus(row["status"]))
