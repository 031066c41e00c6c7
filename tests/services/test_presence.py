# tests/services/test_presence.py
"""
Тесты реестра живых соединений.
"""

from __future__ import annotations

from uuid import uuid4

import pytest

from medride.common.constants import Channel
from medride.services.realtime.presence import IDLE_CLOSE_CODE, SEND_FAILED_CLOSE_CODE, PresenceRegistry


class TestRegistration:
    def test_patient_joins_own_channel(self, presence, patient, ws_factory) -> None:
        connection = presence.register(ws_factory(), patient)

        assert presence.channels_of(connection.id) == {Channel.user(patient.id)}
        assert presence.active_connections == 1

    def test_driver_joins_driver_pool(self, presence, driver, ws_factory) -> None:
        connection = presence.register(ws_factory(), driver)

        assert presence.channels_of(connection.id) == {Channel.user(driver.id), Channel.DRIVERS}
        assert presence.members(Channel.DRIVERS) == {connection.id}

    def test_join_is_idempotent(self, presence, patient, ws_factory) -> None:
        connection = presence.register(ws_factory(), patient)
        ride_id = uuid4()

        assert presence.join_ride(connection.id, ride_id)
        assert presence.join_ride(connection.id, ride_id)

        assert presence.members(Channel.ride(ride_id)) == {connection.id}
        assert len(presence.channels_of(connection.id)) == 2

    def test_join_ride_without_id(self, presence, patient, ws_factory) -> None:
        connection = presence.register(ws_factory(), patient)
        assert presence.join_ride(connection.id, None) is False
        assert presence.join_ride(connection.id, "") is False

    def test_leave_ride(self, presence, patient, ws_factory) -> None:
        connection = presence.register(ws_factory(), patient)
        ride_id = uuid4()
        presence.join_ride(connection.id, ride_id)

        presence.leave_ride(connection.id, ride_id)

        assert presence.members(Channel.ride(ride_id)) == set()
        assert Channel.ride(ride_id) not in presence.channels_of(connection.id)

    def test_unknown_connection(self, presence) -> None:
        assert presence.join("missing", Channel.DRIVERS) is False
        assert presence.heartbeat("missing") is False

    @pytest.mark.asyncio
    async def test_disconnect_removes_from_all_channels(self, presence, driver, ws_factory) -> None:
        connection = presence.register(ws_factory(), driver)
        presence.join_ride(connection.id, uuid4())

        assert await presence.disconnect(connection.id) is True

        assert presence.active_connections == 0
        assert presence.members(Channel.DRIVERS) == set()
        assert presence.get_stats()["total_channels"] == 0
        assert await presence.disconnect(connection.id) is False


class TestDelivery:
    @pytest.mark.asyncio
    async def test_deliver_to_channel_members_only(self, presence, driver, other_driver, patient, ws_factory) -> None:
        first, second, bystander = ws_factory(), ws_factory(), ws_factory()
        presence.register(first, driver)
        presence.register(second, other_driver)
        presence.register(bystander, patient)

        sent = await presence.deliver(Channel.DRIVERS, {"event": "newRide"})

        assert sent == 2
        assert first.events() == ["newRide"]
        assert second.events() == ["newRide"]
        assert bystander.sent == []

    @pytest.mark.asyncio
    async def test_empty_channel_is_not_an_error(self, presence) -> None:
        assert await presence.deliver(Channel.ride(uuid4()), {"event": "rideUpdate"}) == 0

    @pytest.mark.asyncio
    async def test_failed_send_drops_connection(self, presence, driver, other_driver, ws_factory) -> None:
        broken_ws = ws_factory(fail=True)
        broken = presence.register(broken_ws, driver)
        healthy_ws = ws_factory()
        presence.register(healthy_ws, other_driver)

        sent = await presence.deliver(Channel.DRIVERS, {"event": "newRide"})

        assert sent == 1
        assert presence.get(broken.id) is None
        assert len(presence.members(Channel.DRIVERS)) == 1
        assert healthy_ws.events() == ["newRide"]
        assert broken_ws.closed_with == SEND_FAILED_CLOSE_CODE
        assert healthy_ws.closed_with is None


class TestIdleEviction:
    @pytest.mark.asyncio
    async def test_idle_connection_evicted(self, presence, clock, patient, ws_factory) -> None:
        socket = ws_factory()
        connection = presence.register(socket, patient)

        clock.advance(121)
        evicted = await presence.sweep_idle()

        assert evicted == [connection.id]
        assert socket.closed_with == IDLE_CLOSE_CODE
        assert presence.active_connections == 0
        assert presence.members(Channel.user(patient.id)) == set()

    @pytest.mark.asyncio
    async def test_heartbeat_keeps_connection(self, presence, clock, patient, ws_factory) -> None:
        connection = presence.register(ws_factory(), patient)

        clock.advance(100)
        presence.heartbeat(connection.id)
        clock.advance(100)

        assert await presence.sweep_idle() == []
        assert presence.get(connection.id) is not None

    @pytest.mark.asyncio
    async def test_channel_activity_counts(self, presence, clock, patient, ws_factory) -> None:
        connection = presence.register(ws_factory(), patient)

        clock.advance(100)
        presence.join_ride(connection.id, uuid4())
        clock.advance(100)

        assert await presence.sweep_idle() == []

    @pytest.mark.asyncio
    async def test_stats_count_evictions(self, presence, clock, patient, driver, ws_factory) -> None:
        presence.register(ws_factory(), patient)
        presence.register(ws_factory(), driver)

        clock.advance(500)
        await presence.sweep_idle()

        stats = presence.get_stats()
        assert stats["total_evicted"] == 2
        assert stats["total_connections_ever"] == 2
        assert stats["active_connections"] == 0


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_close_disconnects_everyone(self, patient, driver, ws_factory) -> None:
        registry = PresenceRegistry(sweep_interval=3600, idle_timeout=120)
        sockets = [ws_factory(), ws_factory()]
        registry.register(sockets[0], patient)
        registry.register(sockets[1], driver)
        await registry.start()

        await registry.close()

        assert registry.active_connections == 0
        assert [s.closed_with for s in sockets] == [1001, 1001]

    @pytest.mark.asyncio
    async def test_registries_are_independent(self, patient, ws_factory) -> None:
        first = PresenceRegistry()
        second = PresenceRegistry()

        first.register(ws_factory(), patient)

        assert first.active_connections == 1
        assert second.active_connections == 0
