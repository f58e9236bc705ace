"""Relay core - byte pumps, tunnel sessions and the accept loop.

A session pairs one accepted client connection with one upstream
connection and runs a StreamPump per direction. Pumps copy bytes verbatim
and can optionally repair a missing continuation byte after a configured
trigger sequence.
"""

from bytetunnel.errors import ConnectError, ReadError, TunnelError, WriteError

from .broker import ConnectionBroker
from .pump import PumpExit, StreamPump
from .session import (
    CLIENT_TO_UPSTREAM,
    UPSTREAM_TO_CLIENT,
    DirectionOptions,
    SessionState,
    TunnelSession,
)
from .window import SlidingWindowMatcher, Trigger

__all__ = [
    "ConnectionBroker",
    "ConnectError",
    "ReadError",
    "TunnelError",
    "WriteError",
    "PumpExit",
    "StreamPump",
    "CLIENT_TO_UPSTREAM",
    "UPSTREAM_TO_CLIENT",
    "DirectionOptions",
    "SessionState",
    "TunnelSession",
    "SlidingWindowMatcher",
    "Trigger",
]
