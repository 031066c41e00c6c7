# tests/services/test_ride_repository.py
"""
Тесты SQL-слоя поездок на моке DatabaseManager.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import pytest

from medride.common.constants import PaymentStatus, RideStatus
from medride.services.rides.repository import RideRef, RideRepository, row_to_ride
from medride.services.users.repository import UserDirectory


def ride_row(**overrides: Any) -> dict[str, Any]:
    """Строка таблицы rides в том виде, в каком её возвращает asyncpg."""
    row = {
        "id": uuid4(),
        "patient_id": uuid4(),
        "driver_id": None,
        "facility_id": None,
        "pickup_address": "1 Pickup St",
        "pickup_lon": -73.9855,
        "pickup_lat": 40.7580,
        "dropoff_address": "2 Clinic Ave",
        "dropoff_lon": -73.9680,
        "dropoff_lat": 40.7851,
        "distance": 4.0,
        "scheduled_time": datetime(2024, 3, 13, 12, 0, tzinfo=timezone.utc),
        "status": "pending",
        "wheelchair": True,
        "medical_equipment": False,
        "assistance": True,
        "notes": None,
        "fare": {
            "total": 15.0,
            "subtotal": 15.0,
            "breakdown": {
                "baseFare": {"name": "Base Fare", "amount": 5.0},
                "distance": {"name": "Distance Charge", "amount": 10.0, "details": "4.0 miles at $2.5/mile"},
                "additionalFees": [],
            },
            "minimumFareApplied": False,
        },
        "start_time": None,
        "completed_by": None,
        "completed_at": None,
        "cancelled_by": None,
        "cancelled_at": None,
        "cancellation_reason": None,
        "rating_score": None,
        "rating_comment": None,
        "rated_at": None,
        "payment_status": "unpaid",
        "payment_details": {},
        "created_at": datetime(2024, 3, 1, tzinfo=timezone.utc),
        "updated_at": datetime(2024, 3, 1, tzinfo=timezone.utc),
    }
    row.update(overrides)
    return row


def sql_of(mock_call) -> str:
    return " ".join(mock_call.args[0].split())


class TestRowToRide:
    def test_maps_columns(self) -> None:
        row = ride_row(rating_score=4, rating_comment="ok", rated_at=datetime(2024, 3, 2, tzinfo=timezone.utc))

        ride = row_to_ride(row)

        assert ride.pickup.location.coordinates == [-73.9855, 40.7580]
        assert ride.special_requirements.assistance_required is True
        assert ride.fare.breakdown.distance.details == "4.0 miles at $2.5/mile"
        assert ride.rating.score == 4
        assert ride.payment_status == PaymentStatus.UNPAID

    def test_wire_shape(self) -> None:
        wire = row_to_ride(ride_row()).to_wire()

        assert wire["pickup"]["location"] == {"type": "Point", "coordinates": [-73.9855, 40.7580]}
        assert wire["specialRequirements"] == {
            "wheelchair": True,
            "medicalEquipment": False,
            "assistanceRequired": True,
        }
        assert wire["fare"]["minimumFareApplied"] is False
        assert wire["status"] == "pending"


class TestRideRepository:
    @pytest.mark.asyncio
    async def test_claim_is_single_conditional_update(self, mock_db) -> None:
        repo = RideRepository(mock_db)
        ride_id, driver_id = uuid4(), uuid4()
        mock_db.fetchrow.return_value = ride_row(id=ride_id, status="accepted", driver_id=driver_id)

        ride = await repo.claim(ride_id, driver_id)

        assert ride.driver_id == driver_id
        mock_db.fetchrow.assert_awaited_once()
        call = mock_db.fetchrow.await_args
        sql = sql_of(call)
        assert sql.startswith("UPDATE rides")
        assert "WHERE id = $1 AND status = $4 AND driver_id IS NULL" in sql
        assert call.args[1:] == (ride_id, driver_id, "accepted", "pending")

    @pytest.mark.asyncio
    async def test_claim_lost(self, mock_db) -> None:
        mock_db.fetchrow.return_value = None
        assert await RideRepository(mock_db).claim(uuid4(), uuid4()) is None

    @pytest.mark.asyncio
    async def test_transition_guards_status_and_driver(self, mock_db) -> None:
        repo = RideRepository(mock_db)
        ride_id, driver_id = uuid4(), uuid4()
        moment = datetime(2024, 3, 13, 15, tzinfo=timezone.utc)
        mock_db.fetchrow.return_value = ride_row(id=ride_id, status="in_progress", driver_id=driver_id)

        await repo.transition(
            ride_id,
            RideStatus.ACCEPTED,
            RideStatus.IN_PROGRESS,
            {"start_time": moment},
            expected_driver_id=driver_id,
        )

        call = mock_db.fetchrow.await_args
        sql = sql_of(call)
        assert "SET status = $2, updated_at = NOW(), start_time = $4" in sql
        assert "WHERE id = $1 AND status = $3 AND driver_id = $5" in sql
        assert call.args[1:] == (ride_id, "in_progress", "accepted", moment, driver_id)

    @pytest.mark.asyncio
    async def test_transition_rejects_unknown_columns(self, mock_db) -> None:
        with pytest.raises(ValueError):
            await RideRepository(mock_db).transition(
                uuid4(), RideStatus.PENDING, RideStatus.CANCELLED, {"fare": {}},
            )
        mock_db.fetchrow.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_nearby_uses_dwithin(self, mock_db) -> None:
        mock_db.fetch.return_value = [ride_row()]

        rides = await RideRepository(mock_db).nearby_pending(-73.98, 40.75, 5000, 100)

        assert len(rides) == 1
        call = mock_db.fetch.await_args
        sql = sql_of(call)
        assert "ST_DWithin" in sql
        assert "ORDER BY scheduled_time ASC, id ASC" in sql
        assert call.args[1:] == ("pending", -73.98, 40.75, 5000, 100)

    @pytest.mark.asyncio
    async def test_list_rides_filters(self, mock_db) -> None:
        patient_id = uuid4()
        mock_db.fetchval.return_value = 3
        mock_db.fetch.return_value = [ride_row(patient_id=patient_id)]

        items, total = await RideRepository(mock_db).list_rides(
            patient_id=patient_id,
            statuses=[RideStatus.PENDING, RideStatus.ACCEPTED],
            limit=1,
            offset=2,
        )

        assert total == 3
        assert len(items) == 1
        count_sql = sql_of(mock_db.fetchval.await_args)
        assert "WHERE patient_id = $1 AND status = ANY($2::text[])" in count_sql
        assert mock_db.fetch.await_args.args[1:] == (patient_id, ["pending", "accepted"], 1, 2)

    @pytest.mark.asyncio
    async def test_rate_only_completed(self, mock_db) -> None:
        await RideRepository(mock_db).rate(uuid4(), 5, None)

        call = mock_db.fetchrow.await_args
        assert "WHERE id = $1 AND status = $4" in sql_of(call)
        assert call.args[-1] == "completed"

    @pytest.mark.asyncio
    async def test_update_payment_merges_details(self, mock_db) -> None:
        await RideRepository(mock_db).update_payment(uuid4(), PaymentStatus.PAID, None)

        call = mock_db.fetchrow.await_args
        assert "payment_details = payment_details || $3::jsonb" in sql_of(call)
        assert call.args[2:] == ("paid", {})

    @pytest.mark.asyncio
    async def test_page_refs_keyset(self, mock_db) -> None:
        after = uuid4()
        row = {"id": uuid4(), "patient_id": uuid4(), "status": "cancelled"}
        mock_db.fetch.return_value = [row]

        refs = await RideRepository(mock_db).page_refs(after, 50)

        assert refs == [RideRef(id=row["id"], patient_id=row["patient_id"], status=RideStatus.CANCELLED)]
        assert "WHERE id > $1 ORDER BY id LIMIT $2" in sql_of(mock_db.fetch.await_args)

    @pytest.mark.asyncio
    async def test_delete_orphan_conditional(self, mock_db) -> None:
        ride_id, patient_id = uuid4(), uuid4()
        mock_db.fetchrow.return_value = {"id": ride_id, "patient_id": patient_id, "status": "pending"}

        ref = await RideRepository(mock_db).delete_orphan(ride_id, patient_id)

        assert ref.status == RideStatus.PENDING
        assert "WHERE id = $1 AND patient_id = $2" in sql_of(mock_db.fetchrow.await_args)


class TestUserDirectory:
    @pytest.mark.asyncio
    async def test_get_identity(self, mock_db) -> None:
        user_id = uuid4()
        mock_db.fetchrow.return_value = {
            "id": user_id,
            "role": "driver",
            "email": "d@example.com",
            "first_name": "Dana",
            "last_name": "Lee",
        }

        identity = await UserDirectory(mock_db).get_identity(user_id)

        assert identity.is_driver
        assert "is_active" in sql_of(mock_db.fetchrow.await_args)

    @pytest.mark.asyncio
    async def test_get_identity_missing(self, mock_db) -> None:
        assert await UserDirectory(mock_db).get_identity(uuid4()) is None

    @pytest.mark.asyncio
    async def test_exists(self, mock_db) -> None:
        mock_db.fetchval.return_value = True
        assert await UserDirectory(mock_db).exists(uuid4()) is True

    @pytest.mark.asyncio
    async def test_errors_propagate(self, mock_db) -> None:
        mock_db.fetchval.side_effect = ConnectionError("db down")
        with pytest.raises(ConnectionError):
            await UserDirectory(mock_db).exists(uuid4())
