"""Tests for the pipelined device connection."""

import asyncio
import gc
import itertools
import json

import pytest
from libyeelight import (
    CommandTimeoutError,
    ConnectionState,
    DeviceConnection,
    DeviceError,
    Notification,
    TransportError,
)

from conftest import FakeDevice, settle


class TestLifecycle:
    """Tests for connecting and closing."""

    async def test_lazy_connect(self, connection: DeviceConnection, device: FakeDevice) -> None:
        """Test that the first send opens the connection."""
        assert connection.state == ConnectionState.DISCONNECTED
        assert device.open_count == 0

        await connection.send("toggle")

        assert connection.state == ConnectionState.CONNECTED
        assert connection.is_connected
        assert device.open_count == 1

    async def test_connect_is_idempotent(self, connection: DeviceConnection, device: FakeDevice) -> None:
        """Test that connecting twice keeps one stream."""
        await connection.connect()
        await connection.connect()
        assert device.open_count == 1

    async def test_connect_failure(self, connection: DeviceConnection, device: FakeDevice) -> None:
        """Test that a refused connection raises TransportError."""
        device.fail_connect = ConnectionRefusedError("refused")

        with pytest.raises(TransportError, match="Could not connect"):
            await connection.connect()
        assert connection.state == ConnectionState.DISCONNECTED

    async def test_close(self, connection: DeviceConnection, device: FakeDevice) -> None:
        """Test that close is terminal and rejects later sends."""
        await connection.connect()
        await connection.close()

        assert connection.state == ConnectionState.CLOSED
        assert device.writer.closed
        with pytest.raises(TransportError, match="closed"):
            await connection.send("toggle")
        with pytest.raises(TransportError):
            await connection.connect()

        # closing again is a no-op
        await connection.close()

    async def test_context_manager(self, device: FakeDevice) -> None:
        """Test async with connects and closes."""
        async with DeviceConnection("192.168.1.50", opener=device.open) as connection:
            assert connection.is_connected
        assert connection.state == ConnectionState.CLOSED


class TestSend:
    """Tests for writing commands."""

    async def test_wire_format(self, connection: DeviceConnection, device: FakeDevice) -> None:
        """Test that each command is one CRLF-terminated JSON line."""
        await connection.send("set_bright", [50, "smooth", 500])

        assert bytes(device.writer.written) == (
            b'{"id":1,"method":"set_bright","params":[50,"smooth",500]}\r\n'
        )

    async def test_ids_increase(self, connection: DeviceConnection, device: FakeDevice) -> None:
        """Test that ids start at 1 and strictly increase."""
        pending = [await connection.send("toggle") for _ in range(5)]

        assert [p.id for p in pending] == [1, 2, 3, 4, 5]
        assert [c["id"] for c in device.commands] == [1, 2, 3, 4, 5]
        assert connection.pending_count == 5

    async def test_ids_not_reused_after_reconnect(self, connection: DeviceConnection, device: FakeDevice) -> None:
        """Test that a reconnect continues the id sequence."""
        first = await connection.send("toggle")
        device.disconnect()
        with pytest.raises(TransportError):
            await first

        second = await connection.send("toggle")

        assert device.open_count == 2
        assert second.id == 2
        assert connection.state == ConnectionState.CONNECTED

    async def test_write_failure(self, connection: DeviceConnection, device: FakeDevice) -> None:
        """Test that a failed write raises and drops the connection."""
        await connection.connect()
        device.writer.fail_with = BrokenPipeError("broken pipe")
        lost = []
        connection.add_disconnect_callback(lost.append)

        with pytest.raises(TransportError, match="Write"):
            await connection.send("toggle")

        assert connection.state == ConnectionState.DISCONNECTED
        assert connection.pending_count == 0
        assert len(lost) == 1


class TestCorrelation:
    """Tests for matching responses to commands."""

    @pytest.mark.parametrize("order", list(itertools.permutations(range(4))))
    async def test_out_of_order_responses(self, order, connection: DeviceConnection, device: FakeDevice) -> None:
        """Test that every permutation of response order resolves by id."""
        pending = [await connection.send("get_prop", [f"p{i}"]) for i in range(4)]

        for index in order:
            device.respond(pending[index].id, [f"result-{pending[index].id}"])

        for request in pending:
            response = await request
            assert response.id == request.id
            assert response.result == [f"result-{request.id}"]
        assert connection.pending_count == 0

    async def test_concurrent_requests(self, connection: DeviceConnection, device: FakeDevice) -> None:
        """Test that concurrent callers each get their own result."""
        tasks = [
            asyncio.ensure_future(connection.request("get_prop", [name]))
            for name in ("power", "bright", "ct")
        ]
        await device.wait_for_commands(3)

        for command in reversed(device.commands):
            device.respond(command["id"], [command["params"][0]])

        assert await asyncio.gather(*tasks) == [["power"], ["bright"], ["ct"]]

    async def test_unknown_id_is_discarded(self, connection: DeviceConnection, device: FakeDevice) -> None:
        """Test that a response for an id never sent resolves nothing."""
        pending = await connection.send("toggle")

        device.respond(999)
        device.respond(0)
        await settle()

        assert not pending.future.done()
        assert connection.is_connected

        device.respond(pending.id, ["ok"])
        assert (await pending).result == ["ok"]

    async def test_duplicate_response_is_discarded(self, connection: DeviceConnection, device: FakeDevice) -> None:
        """Test that a second response for a resolved id is ignored."""
        first = await connection.send("toggle")
        device.respond(first.id, ["ok"])
        assert (await first).result == ["ok"]

        second = await connection.send("toggle")
        device.respond(first.id, ["stale"])
        device.respond(second.id, ["fresh"])

        assert (await second).result == ["fresh"]

    async def test_malformed_line_keeps_reading(self, connection: DeviceConnection, device: FakeDevice) -> None:
        """Test that garbage on the stream does not stop the reader."""
        pending = await connection.send("toggle")

        device.feed(b"this is not json")
        device.feed(b'{"unexpected": true}')
        device.feed(b"")
        device.respond(pending.id, ["ok"])

        assert (await pending).result == ["ok"]
        assert connection.is_connected

    async def test_device_error(self, connection: DeviceConnection, device: FakeDevice) -> None:
        """Test that an error response raises DeviceError verbatim."""
        task = asyncio.ensure_future(connection.request("set_scene", ["bogus"]))
        await device.wait_for_commands(1)
        device.fail(device.commands[0]["id"], -1, "unsupported method")

        with pytest.raises(DeviceError) as exc_info:
            await task
        assert exc_info.value.code == -1
        assert exc_info.value.message == "unsupported method"
        assert exc_info.value.method == "set_scene"
        assert connection.is_connected


class TestTimeout:
    """Tests for abandoning a single command."""

    async def test_timeout_abandons_only_that_command(self, connection: DeviceConnection, device: FakeDevice) -> None:
        """Test that a timeout removes its entry and keeps the connection."""
        other = await connection.send("get_prop", ["power"])

        with pytest.raises(CommandTimeoutError) as exc_info:
            await connection.request("toggle", timeout=0.01)

        timed_out_id = exc_info.value.command_id
        assert exc_info.value.method == "toggle"
        assert connection.is_connected
        assert connection.pending_count == 1

        # a late answer is discarded, the other command still resolves
        device.respond(timed_out_id, ["late"])
        device.respond(other.id, ["on"])
        assert (await other).result == ["on"]

        task = asyncio.ensure_future(connection.request("toggle"))
        await device.wait_for_commands(3)
        device.respond(device.commands[-1]["id"], ["ok"])
        assert await task == ["ok"]

    async def test_timeout_is_a_timeout_error(self, connection: DeviceConnection) -> None:
        """Test that callers can catch the built-in TimeoutError."""
        with pytest.raises(TimeoutError):
            await connection.request("toggle", timeout=0.01)


class TestConnectionLoss:
    """Tests for failing outstanding commands."""

    async def test_loss_fails_all_pending(self, connection: DeviceConnection, device: FakeDevice) -> None:
        """Test that losing the stream fails all three pending commands once."""
        pending = [await connection.send("toggle") for _ in range(3)]

        device.disconnect()
        results = await asyncio.gather(*(p.future for p in pending), return_exceptions=True)

        assert all(isinstance(r, TransportError) for r in results)
        assert len({str(r) for r in results}) == 1
        assert connection.state == ConnectionState.DISCONNECTED
        assert connection.pending_count == 0
        assert all(p.future.exception() is r for p, r in zip(pending, results))

    async def test_loss_while_waiting_to_write(self, connection: DeviceConnection, device: FakeDevice) -> None:
        """Test that a command failed before its write leaves no unretrieved future."""
        loop = asyncio.get_running_loop()
        unhandled = []
        loop.set_exception_handler(lambda loop, context: unhandled.append(context))
        try:
            await connection.connect()
            async with connection._write_lock:
                task = asyncio.ensure_future(connection.send("toggle"))
                await settle()
                assert connection.pending_count == 1

                device.disconnect()
                await settle()
                assert connection.pending_count == 0

            with pytest.raises(TransportError, match="before the command was sent"):
                await task
            del task
            gc.collect()
            await settle()
        finally:
            loop.set_exception_handler(None)

        assert unhandled == []
        assert device.raw_lines == []

    async def test_close_fails_pending(self, connection: DeviceConnection, device: FakeDevice) -> None:
        """Test that close fails outstanding commands with TransportError."""
        pending = [await connection.send("toggle") for _ in range(2)]

        await connection.close()

        for request in pending:
            with pytest.raises(TransportError, match="closed"):
                await request

    async def test_disconnect_callback(self, connection: DeviceConnection, device: FakeDevice) -> None:
        """Test that disconnect callbacks receive the error."""
        errors = []
        connection.add_disconnect_callback(errors.append)
        await connection.connect()

        device.disconnect()
        await settle()

        assert len(errors) == 1
        assert isinstance(errors[0], TransportError)
        assert connection.remove_disconnect_callback(errors.append)


class TestNotifications:
    """Tests for routing unsolicited notifications."""

    async def test_sync_and_async_callbacks(self, connection: DeviceConnection, device: FakeDevice) -> None:
        """Test that both callback kinds receive the notification."""
        received = []
        awaited = []

        async def async_callback(notification: Notification) -> None:
            awaited.append(notification)

        connection.add_notification_callback(received.append)
        connection.add_notification_callback(async_callback)
        await connection.connect()

        device.notify(power="off")
        await settle()

        assert received == [Notification("props", {"power": "off"})]
        assert awaited == received

    async def test_notifications_do_not_resolve_commands(self, connection: DeviceConnection, device: FakeDevice) -> None:
        """Test that a notification between responses is routed separately."""
        received = []
        connection.add_notification_callback(received.append)
        pending = await connection.send("set_power", ["on", "sudden", 0])

        device.notify(power="on")
        await settle()
        assert not pending.future.done()

        device.respond(pending.id, ["ok"])
        assert (await pending).result == ["ok"]
        assert len(received) == 1

    async def test_failing_callback_is_isolated(self, connection: DeviceConnection, device: FakeDevice) -> None:
        """Test that a raising callback neither stops others nor the reader."""
        received = []

        def broken(notification: Notification) -> None:
            raise RuntimeError("boom")

        connection.add_notification_callback(broken)
        connection.add_notification_callback(received.append)
        pending = await connection.send("toggle")

        device.notify(bright=5)
        device.respond(pending.id, ["ok"])

        assert (await pending).result == ["ok"]
        assert len(received) == 1
        assert connection.remove_notification_callback(broken)
        assert not connection.remove_notification_callback(broken)

    async def test_notification_payload(self, connection: DeviceConnection, device: FakeDevice) -> None:
        """Test that typed values arrive unchanged."""
        received = []
        connection.add_notification_callback(received.append)
        await connection.connect()

        device.feed(json.dumps({"method": "props", "params": {"bright": 10, "ct": 2700}}).encode())
        await settle()

        assert received[0].params == {"bright": 10, "ct": 2700}
