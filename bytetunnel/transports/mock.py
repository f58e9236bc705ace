import asyncio
from typing import Iterable, List, Optional, Union

from bytetunnel.errors import ConnectError

from .base import ByteSink, Connection, Connector

_EOF = None


class MockConnection(Connection):
    """In-memory duplex connection.

    Bytes queued with ``feed`` come out of ``read`` in order; ``feed_eof``
    (or ``close``) ends the stream once the queued data is drained. Queue an
    exception with ``feed_error`` to make ``read`` raise it. Everything
    written is collected in ``written``.
    """

    def __init__(
        self,
        chunks: Iterable[bytes] = (),
        eof: bool = False,
        address: str = "mock",
        write_error: Optional[BaseException] = None,
    ):
        self._address = address
        self.rx_queue: asyncio.Queue = asyncio.Queue()
        self.written = bytearray()
        self.writes: List[bytes] = []
        self.write_error = write_error
        self.close_calls = 0
        self.closes = 0
        self._closed = False
        for chunk in chunks:
            self.feed(chunk)
        if eof:
            self.feed_eof()

    @property
    def address(self) -> str:
        return self._address

    @property
    def closed(self) -> bool:
        return self._closed

    def feed(self, data: bytes) -> None:
        self.rx_queue.put_nowait(bytes(data))

    def feed_eof(self) -> None:
        self.rx_queue.put_nowait(_EOF)

    def feed_error(self, error: BaseException) -> None:
        self.rx_queue.put_nowait(error)

    async def read(self) -> bytes:
        item: Union[bytes, BaseException, None] = await self.rx_queue.get()
        if item is _EOF:
            # Keep reporting EOF to any later reader
            self.rx_queue.put_nowait(_EOF)
            return b""
        if isinstance(item, BaseException):
            raise item
        return item

    async def write(self, data: bytes):
        if self._closed:
            raise ConnectionResetError(f"{self._address} is closed")
        if self.write_error is not None:
            raise self.write_error
        self.writes.append(bytes(data))
        self.written += data

    async def close(self):
        self.close_calls += 1
        if self._closed:
            return
        self._closed = True
        self.closes += 1
        self.feed_eof()


class MockSink(ByteSink):
    """Collects writes; optionally fails on write or close."""

    def __init__(
        self,
        write_error: Optional[BaseException] = None,
        close_error: Optional[BaseException] = None,
    ):
        self.written = bytearray()
        self.write_error = write_error
        self.close_error = close_error
        self.closes = 0

    async def write(self, data: bytes):
        if self.write_error is not None:
            raise self.write_error
        self.written += data

    async def close(self):
        self.closes += 1
        if self.close_error is not None:
            raise self.close_error


class MockConnector(Connector):
    """Hands out pre-built connections, or fails like an unreachable host.

    With ``hold=True`` every ``connect`` waits for ``release`` to be set, so a
    session can be observed while it is still connecting; ``connecting`` is
    set once the first attempt is waiting.
    """

    def __init__(
        self,
        connections: Iterable[MockConnection] = (),
        fail: bool = False,
        host: str = "mock-upstream",
        port: int = 0,
        hold: bool = False,
    ):
        self.connections = list(connections)
        self.fail = fail
        self.host = host
        self.port = port
        self.attempts = 0
        self.hold = hold
        self.connecting = asyncio.Event()
        self.release = asyncio.Event()

    async def connect(self) -> MockConnection:
        self.attempts += 1
        if self.hold:
            self.connecting.set()
            await self.release.wait()
        if self.fail or not self.connections:
            raise ConnectError(self.host, self.port, ConnectionRefusedError("refused"))
        return self.connections.pop(0)
