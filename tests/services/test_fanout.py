# tests/services/test_fanout.py
"""
Тесты рассылки событий и моста Redis.
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from medride.common.constants import Channel, RideStatus
from medride.services.realtime.fanout import FanoutService
from medride.services.realtime.redis_bridge import RedisBridge


def published_channels(presence_mock: AsyncMock) -> list[str]:
    return [c.args[0] for c in presence_mock.deliver.await_args_list]


@pytest.fixture
def presence_mock() -> AsyncMock:
    presence = AsyncMock()
    presence.deliver = AsyncMock(return_value=1)
    return presence


class TestFanoutChannels:
    @pytest.mark.asyncio
    async def test_new_ride_goes_to_drivers(self, presence_mock, patient, ride_factory) -> None:
        ride = ride_factory(patient.id)

        await FanoutService(presence_mock).broadcast_new_ride(ride)

        channel, message = presence_mock.deliver.await_args.args
        assert channel == Channel.DRIVERS
        assert message["event"] == "newRide"
        assert message["ride"]["id"] == str(ride.id)
        assert message["ride"]["specialRequirements"]["wheelchair"] is True

    @pytest.mark.asyncio
    async def test_transition_events(self, presence_mock, patient, driver, ride_factory) -> None:
        ride = ride_factory(patient.id, status=RideStatus.ACCEPTED, driver_id=driver.id)

        await FanoutService(presence_mock).broadcast_transition(RideStatus.PENDING, ride)

        assert published_channels(presence_mock) == [
            Channel.ride(ride.id),
            Channel.DRIVERS,
            Channel.user(patient.id),
            Channel.ride(ride.id),
            Channel.DRIVERS,
        ]
        messages = [c.args[1] for c in presence_mock.deliver.await_args_list]
        assert messages[0] == {"event": "rideStatusChange", "rideId": str(ride.id), "status": "accepted"}
        update = messages[3]
        assert update["event"] == "rideUpdate"
        assert update["type"] == "status_change"
        assert update["oldStatus"] == "pending"
        assert update["newStatus"] == "accepted"

    @pytest.mark.asyncio
    async def test_rating_goes_to_driver_and_ride(self, presence_mock, patient, driver, ride_factory) -> None:
        from medride.shared.models.ride import Rating

        ride = ride_factory(
            patient.id,
            status=RideStatus.COMPLETED,
            driver_id=driver.id,
            rating=Rating(score=5, comment="Great"),
        )

        await FanoutService(presence_mock).broadcast_ride_rated(ride)

        assert published_channels(presence_mock) == [Channel.user(driver.id), Channel.ride(ride.id)]
        message = presence_mock.deliver.await_args.args[1]
        assert message == {"event": "ride-rated", "rideId": str(ride.id), "rating": 5, "comment": "Great"}

    @pytest.mark.asyncio
    async def test_unrated_ride_sends_nothing(self, presence_mock, patient, ride_factory) -> None:
        await FanoutService(presence_mock).broadcast_ride_rated(ride_factory(patient.id))
        presence_mock.deliver.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delivery_errors_are_swallowed(self, presence_mock, patient, ride_factory) -> None:
        presence_mock.deliver.side_effect = RuntimeError("boom")

        await FanoutService(presence_mock).broadcast_new_ride(ride_factory(patient.id))

    @pytest.mark.asyncio
    async def test_real_registry_delivery(self, presence, driver, patient, ws_factory, ride_factory) -> None:
        driver_ws = ws_factory()
        patient_ws = ws_factory()
        presence.register(driver_ws, driver)
        patient_conn = presence.register(patient_ws, patient)
        ride = ride_factory(patient.id, status=RideStatus.CANCELLED)
        presence.join_ride(patient_conn.id, ride.id)

        await FanoutService(presence).broadcast_status_change(ride.id, ride.status, patient.id)

        assert driver_ws.events() == ["rideStatusChange"]
        # Канал поездки и личный канал пациента
        assert patient_ws.events() == ["rideStatusChange", "rideStatusChange"]


class TestBridge:
    @pytest.mark.asyncio
    async def test_publish_through_bridge(self, presence_mock, patient, ride_factory) -> None:
        bridge = AsyncMock()

        await FanoutService(presence_mock, bridge).broadcast_new_ride(ride_factory(patient.id))

        bridge.publish.assert_awaited_once()
        assert bridge.publish.await_args.args[0] == Channel.DRIVERS
        presence_mock.deliver.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bridge_failure_falls_back_to_local(self, presence_mock, patient, ride_factory) -> None:
        bridge = AsyncMock()
        bridge.publish.side_effect = ConnectionError("redis down")

        await FanoutService(presence_mock, bridge).broadcast_new_ride(ride_factory(patient.id))

        presence_mock.deliver.assert_awaited_once()

    @pytest.fixture
    def redis_client(self) -> MagicMock:
        client = MagicMock()
        client.make_key.side_effect = lambda key: f"medride:{key}"
        client.publish = AsyncMock(return_value=1)
        return client

    @pytest.mark.asyncio
    async def test_bridge_publish_prefix(self, redis_client) -> None:
        bridge = RedisBridge(redis_client, AsyncMock())

        await bridge.publish("drivers", {"event": "newRide"})

        redis_client.publish.assert_awaited_once_with("fanout:drivers", {"event": "newRide"})
        assert bridge.pattern == "medride:fanout:*"

    @pytest.mark.asyncio
    async def test_process_message_routes_to_channel(self, redis_client) -> None:
        handler = AsyncMock()
        bridge = RedisBridge(redis_client, handler)

        await bridge.process_message({
            "type": "pmessage",
            "channel": b"medride:fanout:ride:42",
            "data": json.dumps({"event": "rideUpdate"}).encode(),
        })

        handler.assert_awaited_once_with("ride:42", {"event": "rideUpdate"})

    @pytest.mark.asyncio
    async def test_process_message_ignores_foreign_and_broken(self, redis_client) -> None:
        handler = AsyncMock()
        bridge = RedisBridge(redis_client, handler)

        await bridge.process_message({"type": "psubscribe", "channel": "medride:fanout:*", "data": 1})
        await bridge.process_message({"type": "pmessage", "channel": "other:fanout:drivers", "data": "{}"})
        await bridge.process_message({"type": "pmessage", "channel": "medride:fanout:drivers", "data": "not json"})

        handler.assert_not_awaited()
