"""
Persistent command channel to a single device.

A DeviceConnection owns one TCP stream to one device. Commands are written as
``\\r\\n``-terminated JSON lines and may be pipelined: any number of callers
can have a command outstanding at the same time. A reader task consumes the
inbound stream and dispatches every line:

- responses resolve the pending request with the matching id
- ``props`` notifications go to the registered notification callbacks
- malformed lines are logged and dropped

Command ids come from a counter owned by the connection. It starts at 1 and is
never reset, so ids stay unique across reconnects.

State machine::

    DISCONNECTED -> CONNECTING -> CONNECTED -> CLOSED
                         ^            |
                         +------------+  (transport error)
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Generator,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
    Union,
)

from .discovery import DEFAULT_PORT
from .exceptions import CommandTimeoutError, TransportError
from .message import Command, Message, Notification, ParseError, Response, parse_message


DEFAULT_CONNECT_TIMEOUT = 5.0

DEFAULT_COMMAND_TIMEOUT = 5.0

LINE_DELIMITER = b"\r\n"


class ConnectionState(Enum):
    """Lifecycle state of a DeviceConnection."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


# Opens the stream pair, e.g. asyncio.open_connection
Opener = Callable[[str, int], Awaitable[Tuple[asyncio.StreamReader, asyncio.StreamWriter]]]

NotificationCallback = Union[
    Callable[[Notification], None],
    Callable[[Notification], Awaitable[None]]
]

DisconnectCallback = Callable[[TransportError], None]


@dataclass
class PendingRequest:
    """
    A sent command awaiting its response.

    Awaiting a PendingRequest yields the Response. It raises TransportError
    if the connection is lost or closed first.
    """
    command: Command
    future: "asyncio.Future[Response]"

    @property
    def id(self) -> int:
        return self.command.id

    @property
    def method(self) -> str:
        return self.command.method

    def __await__(self) -> Generator[Any, None, Response]:
        return self.future.__await__()


class DeviceConnection:
    """
    Pipelined JSON-lines connection to one device.

    Example:
        ```python
        async with DeviceConnection("192.168.1.50") as connection:
            result = await connection.request("set_bright", [50, "smooth", 500])
        ```
    """

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        opener: Optional[Opener] = None
    ):
        """
        Initialize the connection. No network activity happens until
        connect() or the first send().

        Args:
            host: Device IP address or host name.
            port: Control channel port.
            connect_timeout: Seconds to wait for the TCP connection.
            opener: Coroutine function returning a (reader, writer) pair.
                Defaults to asyncio.open_connection.
        """
        self._host = host
        self._port = port
        self._connect_timeout = connect_timeout
        self._opener: Opener = opener or asyncio.open_connection

        self._logger = logging.getLogger(f"yeelight.connection.{host}")

        self._state = ConnectionState.DISCONNECTED
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._reader_task: Optional[asyncio.Task] = None

        self._ids = itertools.count(1)
        self._pending: Dict[int, PendingRequest] = {}

        self._connect_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()

        self._notification_callbacks: List[NotificationCallback] = []
        self._disconnect_callbacks: List[DisconnectCallback] = []
        self._callback_tasks: Set[asyncio.Task] = set()

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def pending_count(self) -> int:
        """Number of commands sent but not yet resolved."""
        return len(self._pending)

    def add_notification_callback(self, callback: NotificationCallback) -> None:
        """
        Register a callback for unsolicited notifications.

        Coroutine callbacks are scheduled as tasks so they never block the
        reader.

        Args:
            callback: Function called with each Notification.
        """
        if callback not in self._notification_callbacks:
            self._notification_callbacks.append(callback)

    def remove_notification_callback(self, callback: NotificationCallback) -> bool:
        if callback in self._notification_callbacks:
            self._notification_callbacks.remove(callback)
            return True
        return False

    def add_disconnect_callback(self, callback: DisconnectCallback) -> None:
        """Register a callback invoked with the error when the connection is lost."""
        if callback not in self._disconnect_callbacks:
            self._disconnect_callbacks.append(callback)

    def remove_disconnect_callback(self, callback: DisconnectCallback) -> bool:
        if callback in self._disconnect_callbacks:
            self._disconnect_callbacks.remove(callback)
            return True
        return False

    async def connect(self) -> None:
        """
        Open the stream to the device and start the reader.

        Does nothing if already connected.

        Raises:
            TransportError: If the connection cannot be established or the
                connection has been closed.
        """
        async with self._connect_lock:
            if self._state == ConnectionState.CLOSED:
                raise TransportError("Connection is closed")
            if self._state == ConnectionState.CONNECTED:
                return

            self._state = ConnectionState.CONNECTING
            self._logger.debug("Connecting to %s:%d", self._host, self._port)

            try:
                reader, writer = await asyncio.wait_for(
                    self._opener(self._host, self._port),
                    self._connect_timeout
                )
            except (OSError, asyncio.TimeoutError) as e:
                if self._state == ConnectionState.CONNECTING:
                    self._state = ConnectionState.DISCONNECTED
                raise TransportError(
                    f"Could not connect to {self._host}:{self._port}: {e!r}"
                ) from e

            if self._state == ConnectionState.CLOSED:
                writer.close()
                raise TransportError("Connection was closed while connecting")

            self._reader = reader
            self._writer = writer
            self._state = ConnectionState.CONNECTED
            self._reader_task = asyncio.create_task(self._read_loop(reader))

            self._logger.info("Connected to %s:%d", self._host, self._port)

    async def send(
        self,
        method: str,
        params: Optional[Sequence[Any]] = None
    ) -> PendingRequest:
        """
        Send a command without waiting for its response.

        Connects first if the connection is not established.

        Args:
            method: Protocol method name.
            params: Ordered parameter list.

        Returns:
            The PendingRequest to await for the response.

        Raises:
            TransportError: If the connection is closed or the write fails.
        """
        if self._state == ConnectionState.CLOSED:
            raise TransportError("Connection is closed")
        if self._state != ConnectionState.CONNECTED:
            await self.connect()

        command = Command(next(self._ids), method, list(params or []))
        pending = PendingRequest(command, asyncio.get_running_loop().create_future())
        self._pending[command.id] = pending

        data = command.encode() + LINE_DELIMITER
        try:
            async with self._write_lock:
                writer = self._writer
                if writer is None or self._state != ConnectionState.CONNECTED:
                    raise TransportError("Connection lost before the command was sent")
                writer.write(data)
                await writer.drain()
        except TransportError:
            self._discard(pending)
            raise
        except (OSError, RuntimeError) as e:
            self._discard(pending)
            error = TransportError(f"Write to {self._host}:{self._port} failed: {e!r}")
            self._connection_lost(error)
            raise error from e

        self._logger.debug("Sent %s", data.rstrip())
        return pending

    async def request(
        self,
        method: str,
        params: Optional[Sequence[Any]] = None,
        timeout: Optional[float] = DEFAULT_COMMAND_TIMEOUT
    ) -> List[Any]:
        """
        Send a command and wait for its result.

        A timeout abandons only this command; the connection stays up.

        Args:
            method: Protocol method name.
            params: Ordered parameter list.
            timeout: Seconds to wait for the response, or None to wait
                indefinitely.

        Returns:
            The result list of the response.

        Raises:
            DeviceError: If the device answered with an error.
            TransportError: If the connection failed or was closed.
            CommandTimeoutError: If no response arrived in time.
        """
        pending = await self.send(method, params)
        try:
            response = await asyncio.wait_for(pending.future, timeout)
        except asyncio.TimeoutError:
            self._logger.warning(
                "No response to %s (id %d) within %.1fs",
                method,
                pending.id,
                timeout
            )
            raise CommandTimeoutError(method, pending.id, timeout) from None
        finally:
            self._discard(pending)

        return response.raise_for_error(method)

    async def close(self) -> None:
        """
        Close the connection permanently.

        Outstanding commands fail with TransportError and further sends are
        rejected. Calling close() again has no effect.
        """
        if self._state == ConnectionState.CLOSED:
            return

        self._state = ConnectionState.CLOSED
        task = self._reader_task
        writer = self._writer
        self._reader_task = None
        self._reader = None
        self._writer = None

        if task is not None and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        self._fail_pending("Connection closed")

        if writer is not None:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as e:
                self._logger.debug("Error while closing stream: %s", e)

        self._logger.info("Connection to %s:%d closed", self._host, self._port)

    def abort(self) -> None:
        """
        Close the connection permanently without waiting.

        Like close(), but synchronous: the reader task is cancelled and the
        stream closed without awaiting either. Used when the owner of the
        connection is garbage collected.
        """
        if self._state == ConnectionState.CLOSED:
            return

        self._state = ConnectionState.CLOSED
        task = self._reader_task
        writer = self._writer
        self._reader_task = None
        self._reader = None
        self._writer = None

        if task is not None and not task.done():
            task.cancel()

        self._fail_pending("Connection closed")

        if writer is not None:
            writer.close()

        self._logger.info("Connection to %s:%d aborted", self._host, self._port)

    async def _read_loop(self, reader: asyncio.StreamReader) -> None:
        """Read and dispatch lines until the stream ends or fails."""
        try:
            while True:
                line = await reader.readline()
                if not line:
                    error = TransportError(
                        f"Connection closed by {self._host}:{self._port}"
                    )
                    break

                line = line.strip()
                if line:
                    self._dispatch(parse_message(line))
        except (OSError, ValueError) as e:
            # ValueError: line longer than the stream reader's limit
            error = TransportError(f"Read from {self._host}:{self._port} failed: {e!r}")

        if reader is self._reader:
            self._connection_lost(error)

    def _dispatch(self, message: Message) -> None:
        if isinstance(message, Response):
            self._resolve(message)
        elif isinstance(message, Notification):
            self._notify(message)
        elif isinstance(message, ParseError):
            self._logger.warning(
                "Dropping malformed message from %s: %s (%r)",
                self._host,
                message.reason,
                message.raw
            )

    def _resolve(self, response: Response) -> None:
        pending = self._pending.pop(response.id, None)
        if pending is None or pending.future.done():
            self._logger.warning(
                "Discarding response with unknown id %d from %s",
                response.id,
                self._host
            )
            return

        self._logger.debug("Received response to %s (id %d)", pending.method, response.id)
        pending.future.set_result(response)

    def _notify(self, notification: Notification) -> None:
        self._logger.debug("Received notification %s: %s", notification.method, notification.params)

        for callback in list(self._notification_callbacks):
            try:
                result = callback(notification)
            except Exception:
                self._logger.exception("Notification callback raised an exception")
                continue

            if asyncio.iscoroutine(result):
                task = asyncio.ensure_future(result)
                self._callback_tasks.add(task)
                task.add_done_callback(self._on_callback_done)

    def _on_callback_done(self, task: asyncio.Task) -> None:
        self._callback_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self._logger.error(
                "Notification callback raised an exception",
                exc_info=task.exception()
            )

    def _discard(self, pending: PendingRequest) -> None:
        """
        Forget a request that no caller will wait for.

        The request may already have been failed and removed from the registry
        by a connection loss, so its future is settled here either way.
        """
        if self._pending.get(pending.id) is pending:
            del self._pending[pending.id]
        if pending.future.done():
            if not pending.future.cancelled():
                pending.future.exception()
        else:
            pending.future.cancel()

    def _fail_pending(self, reason: str) -> None:
        pending, self._pending = self._pending, {}
        for request in pending.values():
            if not request.future.done():
                request.future.set_exception(TransportError(reason))
        if pending:
            self._logger.debug("Failed %d pending command(s): %s", len(pending), reason)

    def _connection_lost(self, error: TransportError) -> None:
        if self._state != ConnectionState.CONNECTED:
            return

        self._logger.warning("Lost connection to %s:%d: %s", self._host, self._port, error)

        self._state = ConnectionState.DISCONNECTED
        task = self._reader_task
        writer = self._writer
        self._reader_task = None
        self._reader = None
        self._writer = None

        if task is not None and task is not asyncio.current_task():
            task.cancel()
        if writer is not None:
            writer.close()

        self._fail_pending(str(error))

        for callback in list(self._disconnect_callbacks):
            try:
                callback(error)
            except Exception:
                self._logger.exception("Disconnect callback raised an exception")

    async def __aenter__(self) -> "DeviceConnection":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        return (
            f"DeviceConnection("
            f"host={self._host}, "
            f"port={self._port}, "
            f"state={self._state.value}, "
            f"pending={len(self._pending)})"
        )
