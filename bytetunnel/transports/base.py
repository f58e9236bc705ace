from abc import ABC, abstractmethod


class ByteSource(ABC):
    @abstractmethod
    async def read(self) -> bytes:
        """Return the next available bytes, or ``b""`` at end-of-stream."""

    @abstractmethod
    async def close(self):
        pass


class ByteSink(ABC):
    @abstractmethod
    async def write(self, data: bytes):
        pass

    @abstractmethod
    async def close(self):
        pass


class Connection(ByteSource, ByteSink):
    """Duplex byte stream; ``close`` must be safe to call more than once."""

    @property
    def closed(self) -> bool:
        return False

    @property
    def address(self) -> str:
        return "unknown"


class Connector(ABC):
    @abstractmethod
    async def connect(self) -> Connection:
        pass
