"""Error taxonomy for the relay.

End-of-stream is not an error and has no exception type; a pump that reads
``b""`` simply stops.
"""
from __future__ import annotations

from typing import Optional


class TunnelError(Exception):
    """Base class for relay errors."""


class ConnectError(TunnelError):
    """The upstream connection could not be established."""

    def __init__(self, host: str, port: int, cause: Optional[BaseException] = None):
        self.host = host
        self.port = port
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Cannot connect to upstream {host}:{port}{detail}")


class ReadError(TunnelError):
    """A pump's source failed mid-stream."""

    def __init__(self, pump: str, cause: BaseException):
        self.pump = pump
        self.cause = cause
        super().__init__(f"{pump}: read failed: {cause}")


class WriteError(TunnelError):
    """A pump's sink rejected a write."""

    def __init__(self, pump: str, cause: BaseException):
        self.pump = pump
        self.cause = cause
        super().__init__(f"{pump}: write failed: {cause}")
