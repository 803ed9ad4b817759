"""Message correlator: identifiers, routing, bootstrap, keepalive, teardown."""

import asyncio

import pytest

from buttplug_client.errors import (
    ErrorCode,
    MessageError,
    ServerReportedError,
    TeardownError,
    TransportError,
)
from buttplug_client.models.messages import (
    MAX_MESSAGE_ID,
    BatteryLevelReading,
    DeviceAdded,
    Error,
    Ok,
    Ping,
    RequestDeviceList,
    RequestServerInfo,
    ScanningFinished,
    ServerInfo,
    StopDeviceCmd,
)

from conftest import FakeServer, FakeTransport, Harness, device_info


class TestBootstrap:
    @pytest.mark.asyncio
    async def test_handshake_then_device_list(self, harness: Harness):
        info = await harness.correlator.connect("ws://test")

        sent = harness.transport.sent_messages()
        assert isinstance(sent[0], RequestServerInfo)
        assert sent[0].id == 1
        assert sent[0].client_name == "Test Client"
        assert sent[0].message_version == 2
        assert isinstance(sent[1], RequestDeviceList)
        assert sent[1].id == 2

        assert info.server_name == "Fake Server"
        assert harness.correlator.server_info is info
        assert [d.index for d in harness.added] == [0]
        assert 0 in harness.devices
        await harness.correlator.close()

    @pytest.mark.asyncio
    async def test_server_info_sets_keepalive_to_half_ping_time(self):
        h = Harness(FakeTransport(FakeServer(max_ping_time=1000)))
        await h.correlator.connect("ws://test")
        assert h.correlator.max_ping_time == 1000
        assert h.correlator.keepalive_interval == 0.5
        await h.correlator.close()

    @pytest.mark.asyncio
    async def test_transport_connect_failure_propagates(self, harness: Harness):
        harness.transport.connect_error = TransportError("refused")
        with pytest.raises(TransportError):
            await harness.correlator.connect("ws://test")
        assert harness.transport.sent == []

    @pytest.mark.asyncio
    async def test_handshake_error_tears_down(self):
        def refuse(message):
            return [Error(id=message.id, error_message="Version mismatch", error_code=ErrorCode.INIT)]

        h = Harness(FakeTransport(refuse))
        with pytest.raises(ServerReportedError) as exc_info:
            await h.correlator.connect("ws://test")
        assert exc_info.value.error_code == ErrorCode.INIT
        assert h.transport.close_calls == 1
        assert not h.correlator.connected

    @pytest.mark.asyncio
    async def test_unexpected_handshake_reply_is_message_error(self):
        h = Harness(FakeTransport(lambda m: [Ok(id=m.id)]))
        with pytest.raises(MessageError):
            await h.correlator.connect("ws://test")
        assert h.transport.close_calls == 1


class TestRouting:
    @pytest.mark.asyncio
    async def test_concurrent_requests_route_to_their_originators(self, harness: Harness):
        await harness.correlator.connect("ws://test")
        harness.transport.server.silent.add("StopDeviceCmd")

        futures = {}
        for index in range(6):
            futures[index] = await harness.correlator.send_request(StopDeviceCmd(device_index=index))

        ids = {msg.device_index: msg.id for msg in harness.transport.sent_messages()
               if isinstance(msg, StopDeviceCmd)}
        assert len(set(ids.values())) == 6

        # Reverse order, split over two frames, one reply is an error.
        replies = [
            BatteryLevelReading(id=ids[i], device_index=i, battery_level=i / 10)
            for i in reversed(range(5))
        ]
        harness.transport.push(*replies[:2])
        harness.transport.push(Error(id=ids[5], error_message="Device gone", error_code=ErrorCode.DEVICE),
                               *replies[2:])

        for index in range(5):
            result = await futures[index]
            assert result.device_index == index
            assert result.battery_level == index / 10
        with pytest.raises(ServerReportedError) as exc_info:
            await futures[5]
        assert exc_info.value.error_code == ErrorCode.DEVICE
        assert harness.correlator.pending_count == 0
        assert harness.errors == []
        await harness.correlator.close()

    @pytest.mark.asyncio
    async def test_unmatched_id_raises_without_breaking_the_correlator(self, harness: Harness):
        await harness.correlator.connect("ws://test")

        with pytest.raises(MessageError):
            harness.correlator.dispatch(Ok(id=99))

        harness.transport.push(Ok(id=1234))
        assert len(harness.errors) == 1
        assert isinstance(harness.errors[0], MessageError)

        reply = await harness.correlator.request(Ping())
        assert isinstance(reply, Ok)
        await harness.correlator.close()

    @pytest.mark.asyncio
    async def test_notification_never_touches_pending(self, harness: Harness):
        await harness.correlator.connect("ws://test")
        harness.transport.server.silent.add("Ping")
        future = await harness.correlator.send_request(Ping())

        harness.transport.push(DeviceAdded(id=0, device_index=3, device_name="Kiiroo"), Ok(id=0))

        assert not future.done()
        assert harness.correlator.pending_count == 1
        assert 3 in harness.devices
        await harness.correlator.close()

    @pytest.mark.asyncio
    async def test_ping_timeout_error_fails_request_and_signals(self, harness: Harness):
        await harness.correlator.connect("ws://test")
        harness.transport.server.silent.add("Ping")
        futures = [await harness.correlator.send_request(Ping()) for _ in range(5)]
        pings = [m for m in harness.transport.sent_messages() if isinstance(m, Ping)]
        target = pings[-1].id
        assert target == 7

        harness.transport.push(Error(id=target, error_message="Ping timed out", error_code=ErrorCode.PING_TIMEOUT))

        with pytest.raises(ServerReportedError) as exc_info:
            await futures[-1]
        assert exc_info.value.is_ping_timeout
        assert harness.ping_timeouts == 1
        assert harness.errors == []
        assert all(not f.done() for f in futures[:-1])
        await harness.correlator.close()

    @pytest.mark.asyncio
    async def test_uncorrelated_server_error_is_broadcast(self, harness: Harness):
        await harness.correlator.connect("ws://test")
        harness.transport.push(Error(id=0, error_message="Ping timed out", error_code=ErrorCode.PING_TIMEOUT))
        harness.transport.push(Error(id=0, error_message="Something", error_code=ErrorCode.UNKNOWN))

        assert harness.ping_timeouts == 1
        assert [e.error_code for e in harness.errors] == [ErrorCode.PING_TIMEOUT, ErrorCode.UNKNOWN]
        await harness.correlator.close()

    @pytest.mark.asyncio
    async def test_server_error_for_retired_id_keeps_its_code(self, harness: Harness):
        await harness.correlator.connect("ws://test")
        harness.transport.push(Error(id=42, error_message="Ping timed out", error_code=ErrorCode.PING_TIMEOUT))

        assert harness.ping_timeouts == 1
        server_error, mismatch = harness.errors
        assert isinstance(server_error, ServerReportedError)
        assert server_error.is_ping_timeout
        assert server_error.msg_id == 42
        assert isinstance(mismatch, MessageError)
        assert mismatch.details == {"id": 42, "kind": "Error"}
        await harness.correlator.close()

    @pytest.mark.asyncio
    async def test_error_reply_after_failed_send_still_reported(self, harness: Harness):
        await harness.correlator.connect("ws://test")
        harness.transport.send_error = ConnectionResetError("reset")
        future = await harness.correlator.send_request(Ping())
        with pytest.raises(TransportError):
            await future
        harness.transport.send_error = None

        failed_id = harness.correlator._counter
        harness.transport.push(Error(id=failed_id, error_message="Ping timed out", error_code=ErrorCode.PING_TIMEOUT))

        assert harness.ping_timeouts == 1
        assert any(isinstance(e, ServerReportedError) for e in harness.errors)
        await harness.correlator.close()

    @pytest.mark.asyncio
    async def test_undecodable_bytes_reach_the_error_channel(self, harness: Harness):
        await harness.correlator.connect("ws://test")
        harness.transport.feed(b"\xff\xfe")
        harness.transport.feed(b'[{"ScanningFinished": {"Id": 0}}]')

        assert len(harness.errors) == 1
        assert isinstance(harness.errors[0], MessageError)
        assert harness.scanning_finished == 1
        assert isinstance(await harness.correlator.request(Ping()), Ok)
        await harness.correlator.close()

    @pytest.mark.asyncio
    async def test_bad_envelope_does_not_stop_the_rest_of_the_frame(self, harness: Harness):
        await harness.correlator.connect("ws://test")
        harness.transport.feed('[{"Bogus": 1, "Extra": 2}, {"ScanningFinished": {"Id": 0}}]')
        harness.transport.feed("not json")

        assert harness.scanning_finished == 1
        assert len(harness.errors) == 2
        assert all(isinstance(e, MessageError) for e in harness.errors)
        await harness.correlator.close()

    @pytest.mark.asyncio
    async def test_unknown_kind_notification_is_ignored(self, harness: Harness):
        await harness.correlator.connect("ws://test")
        harness.transport.feed('[{"SensorReading": {"Id": 0, "DeviceIndex": 0, "Data": [1]}}]')
        assert harness.errors == []
        await harness.correlator.close()


class TestIdentifiers:
    @pytest.mark.asyncio
    async def test_ids_are_monotonic_and_never_zero(self, harness: Harness):
        await harness.correlator.connect("ws://test")
        for _ in range(3):
            await harness.correlator.request(Ping())
        ids = [m.id for m in harness.transport.sent_messages()]
        assert 0 not in ids
        assert ids == sorted(ids)
        assert len(ids) == len(set(ids))
        await harness.correlator.close()

    @pytest.mark.asyncio
    async def test_wraparound_skips_zero(self, harness: Harness):
        await harness.correlator.connect("ws://test")
        harness.correlator._counter = MAX_MESSAGE_ID - 1
        await harness.correlator.request(Ping())
        await harness.correlator.request(Ping())
        last_two = [m.id for m in harness.transport.sent_messages()[-2:]]
        assert last_two == [MAX_MESSAGE_ID, 1]
        await harness.correlator.close()

    @pytest.mark.asyncio
    async def test_outgoing_message_is_not_mutated(self, harness: Harness):
        await harness.correlator.connect("ws://test")
        ping = Ping()
        await harness.correlator.request(ping)
        assert ping.id == 0
        await harness.correlator.close()


class TestKeepalive:
    @pytest.mark.asyncio
    async def test_structured_pings_at_half_interval(self):
        server = FakeServer(max_ping_time=100)
        h = Harness(FakeTransport(server))
        await h.correlator.connect("ws://test")
        await asyncio.sleep(0.22)

        assert server.received_kinds().count("Ping") >= 3
        assert h.transport.heartbeats == 0
        assert h.correlator.pending_count <= 1
        await h.correlator.close()

    @pytest.mark.asyncio
    async def test_heartbeat_frames_when_no_ping_time(self, server: FakeServer):
        h = Harness(FakeTransport(server), heartbeat_interval=0.05)
        await h.correlator.connect("ws://test")
        await asyncio.sleep(0.17)

        assert h.transport.heartbeats >= 3
        assert "Ping" not in server.received_kinds()
        await h.correlator.close()

    @pytest.mark.asyncio
    async def test_keepalive_stops_after_close(self):
        server = FakeServer(max_ping_time=100)
        h = Harness(FakeTransport(server))
        await h.correlator.connect("ws://test")
        await h.correlator.close()
        count = server.received_kinds().count("Ping")
        await asyncio.sleep(0.12)
        assert server.received_kinds().count("Ping") == count


class TestTeardown:
    @pytest.mark.asyncio
    async def test_close_fails_all_pending_and_closes_transport_once(self, harness: Harness):
        await harness.correlator.connect("ws://test")
        harness.transport.server.silent.add("Ping")
        futures = [await harness.correlator.send_request(Ping()) for _ in range(3)]

        await harness.correlator.close("bye")
        await harness.correlator.close("bye again")

        for future in futures:
            with pytest.raises(TeardownError) as exc_info:
                await future
            assert exc_info.value.reason == "bye"
        assert harness.transport.close_calls == 1
        assert harness.correlator.pending_count == 0

    @pytest.mark.asyncio
    async def test_request_after_close_fails(self, harness: Harness):
        await harness.correlator.connect("ws://test")
        await harness.correlator.close()
        with pytest.raises(TransportError):
            await harness.correlator.request(Ping())

    @pytest.mark.asyncio
    async def test_send_failure_fails_fast(self, harness: Harness):
        await harness.correlator.connect("ws://test")
        harness.transport.send_error = TransportError("socket gone")
        with pytest.raises(TransportError):
            await harness.correlator.request(Ping())
        assert harness.correlator.pending_count == 0
        await harness.correlator.close()

    @pytest.mark.asyncio
    async def test_transport_loss_tears_down_and_notifies(self, harness: Harness):
        await harness.correlator.connect("ws://test")
        harness.transport.server.silent.add("Ping")
        future = await harness.correlator.send_request(Ping())

        await harness.transport.drop(1006, "gone")

        with pytest.raises(TeardownError):
            await future
        assert harness.disconnects == [(1006, "gone")]
        assert harness.transport.close_calls == 1
        assert not harness.correlator.connected


@pytest.mark.asyncio
async def test_device_added_twice_keeps_one_handle():
    h = Harness(FakeTransport(FakeServer()))
    await h.correlator.connect("ws://test")
    h.transport.push(DeviceAdded(id=0, device_index=5, device_name="First"))
    first = h.devices.get(5)
    h.transport.push(DeviceAdded(id=0, device_index=5, device_name="Second"))

    assert len(h.devices) == 1
    assert h.devices.get(5) is first
    assert first.name == "First"
    assert len(h.errors) == 1
    await h.correlator.close()


@pytest.mark.asyncio
async def test_device_list_entries_go_through_add_device():
    server = FakeServer(devices=[device_info(1), device_info(1)])
    h = Harness(FakeTransport(server))
    await h.correlator.connect("ws://test")
    assert len(h.devices) == 1
    assert len(h.errors) == 1
    await h.correlator.close()


@pytest.mark.asyncio
async def test_scanning_finished_notification():
    h = Harness(FakeTransport(FakeServer()))
    await h.correlator.connect("ws://test")
    h.transport.push(ScanningFinished())
    assert h.scanning_finished == 1
    await h.correlator.close()


def test_keepalive_interval_defaults_to_heartbeat():
    h = Harness(FakeTransport(), heartbeat_interval=7.0)
    assert h.correlator.server_info is None
    assert h.correlator.keepalive_interval == 7.0
    h.correlator._server_info = ServerInfo(id=1, max_ping_time=0)
    assert h.correlator.keepalive_interval == 7.0
