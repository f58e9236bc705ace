import asyncio
import logging
from typing import Optional

from bytetunnel.errors import ConnectError

from .base import Connection, Connector

logger = logging.getLogger("bytetunnel.transports.tcp")

DEFAULT_READ_SIZE = 4096


class TcpConnection(Connection):
    """asyncio stream pair exposed as a duplex byte connection.

    ``read`` returns whatever is currently buffered (at most ``read_size``
    bytes) so that nothing is held back waiting for a full chunk. ``close``
    is idempotent: both pumps of a session and the session itself may call
    it.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        read_size: int = DEFAULT_READ_SIZE,
    ):
        self.reader = reader
        self.writer = writer
        self.read_size = read_size
        self._closed = False
        self._addr = writer.get_extra_info("peername")

    @property
    def address(self) -> str:
        if self._addr:
            return f"{self._addr[0]}:{self._addr[1]}"
        return "unknown"

    @property
    def closed(self) -> bool:
        return self._closed

    async def read(self) -> bytes:
        if self._closed:
            return b""
        return await self.reader.read(self.read_size)

    async def write(self, data: bytes):
        if self._closed:
            raise ConnectionResetError(f"Connection to {self.address} is closed")
        self.writer.write(data)
        await self.writer.drain()

    async def close(self):
        if self._closed:
            return
        self._closed = True
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except OSError as e:
            # The socket is gone either way; the peer may have reset it first
            logger.debug("Close of %s reported: %r", self.address, e)


class TcpConnector(Connector):
    """Opens connections to one fixed upstream host/port."""

    def __init__(
        self,
        host: str,
        port: int,
        timeout: Optional[float] = 10.0,
        read_size: int = DEFAULT_READ_SIZE,
    ):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.read_size = read_size

    async def connect(self) -> TcpConnection:
        logger.debug("Connecting to upstream %s:%d", self.host, self.port)
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise ConnectError(self.host, self.port, e) from e
        except OSError as e:
            raise ConnectError(self.host, self.port, e) from e
        return TcpConnection(reader, writer, read_size=self.read_size)

    def __repr__(self) -> str:
        return f"TcpConnector({self.host}:{self.port})"
