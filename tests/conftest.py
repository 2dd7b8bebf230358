"""Shared fixtures: a scripted fake device behind a DeviceConnection."""

import asyncio
import json
from typing import Any, Awaitable, Dict, List, Optional, Sequence, Tuple, Union

import pytest

from libyeelight import DeviceConnection


class FakeStreamWriter:
    """Stands in for asyncio.StreamWriter and records every byte written."""

    def __init__(self) -> None:
        self.written = bytearray()
        self.closed = False
        self.fail_with: Optional[Exception] = None

    def write(self, data: bytes) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.written.extend(data)

    async def drain(self) -> None:
        return None

    def close(self) -> None:
        self.closed = True

    def is_closing(self) -> bool:
        return self.closed

    async def wait_closed(self) -> None:
        return None


class FakeDevice:
    """
    A device on the other end of a DeviceConnection.

    Each call to open() hands out a fresh reader/writer pair, so reconnects
    can be observed through open_count and writers.
    """

    def __init__(self) -> None:
        self.reader: Optional[asyncio.StreamReader] = None
        self.writers: List[FakeStreamWriter] = []
        self.open_count = 0
        self.fail_connect: Optional[Exception] = None

    @property
    def writer(self) -> Optional[FakeStreamWriter]:
        return self.writers[-1] if self.writers else None

    async def open(self, host: str, port: int) -> Tuple[asyncio.StreamReader, FakeStreamWriter]:
        if self.fail_connect is not None:
            raise self.fail_connect
        self.open_count += 1
        self.reader = asyncio.StreamReader()
        self.writers.append(FakeStreamWriter())
        return self.reader, self.writers[-1]

    @property
    def raw_lines(self) -> List[bytes]:
        lines = []
        for writer in self.writers:
            lines.extend(line for line in bytes(writer.written).split(b"\r\n") if line)
        return lines

    @property
    def commands(self) -> List[Dict[str, Any]]:
        return [json.loads(line) for line in self.raw_lines]

    def feed(self, payload: Union[Dict[str, Any], bytes]) -> None:
        data = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
        self.reader.feed_data(data + b"\r\n")

    def respond(self, command_id: int, result: Sequence[Any] = ("ok",)) -> None:
        self.feed({"id": command_id, "result": list(result)})

    def fail(self, command_id: int, code: int, message: str) -> None:
        self.feed({"id": command_id, "error": {"code": code, "message": message}})

    def notify(self, **params: Any) -> None:
        self.feed({"method": "props", "params": params})

    def disconnect(self) -> None:
        self.reader.feed_eof()

    async def wait_for_commands(self, count: int) -> None:
        for _ in range(200):
            if len(self.raw_lines) >= count:
                return
            await asyncio.sleep(0)
        raise AssertionError(f"expected {count} command(s), got {len(self.raw_lines)}")

    async def run(self, coro: Awaitable[Any], result: Sequence[Any] = ("ok",)) -> Any:
        """Run a coroutine that sends one command and answer it with result."""
        expected = len(self.raw_lines) + 1
        task = asyncio.ensure_future(coro)
        for _ in range(200):
            if task.done() or len(self.raw_lines) >= expected:
                break
            await asyncio.sleep(0)
        if not task.done():
            self.respond(self.commands[-1]["id"], result)
        return await task


async def settle() -> None:
    """Let the connection's reader task process everything fed so far."""
    for _ in range(10):
        await asyncio.sleep(0)


@pytest.fixture
def device() -> FakeDevice:
    return FakeDevice()


@pytest.fixture
async def connection(device: FakeDevice):
    conn = DeviceConnection("192.168.1.50", opener=device.open)
    yield conn
    await conn.close()
