"""Byte sources and sinks the relay reads from and writes to."""

from .base import ByteSink, ByteSource, Connection, Connector
from .capture import CaptureSink, EchoSink, TeeSink
from .tcp import TcpConnection, TcpConnector

__all__ = [
    "ByteSink",
    "ByteSource",
    "Connection",
    "Connector",
    "CaptureSink",
    "EchoSink",
    "TeeSink",
    "TcpConnection",
    "TcpConnector",
]
