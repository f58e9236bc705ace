"""TunnelSession - one inbound connection wired to one upstream connection.

Lifecycle:

    CONNECTING --connect ok--> ACTIVE --both pumps done--> CLOSED
        |                                                   ^
        +--------connect failed, closed or cancelled--------+

Each direction runs as its own asyncio task. When either pump stops it
closes its source and sink, which are the session's two connections; the
other pump then sees end-of-stream (or a write error) and stops as well.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

from bytetunnel.errors import ConnectError
from bytetunnel.transports.base import ByteSink, Connection, Connector

from .pump import StreamPump
from .window import Trigger

logger = logging.getLogger("bytetunnel.session")

CLIENT_TO_UPSTREAM = "client_to_upstream"
UPSTREAM_TO_CLIENT = "upstream_to_client"


class SessionState(Enum):
    CONNECTING = "connecting"
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass
class DirectionOptions:
    """Per-direction pump settings.

    Attributes:
        triggers: Trigger corrections to apply; empty disables correction
        tee: Secondary sink (already opened) that receives a copy of the stream
    """

    triggers: Sequence[Trigger] = ()
    tee: Optional[ByteSink] = None


class TunnelSession:
    """Relays one client connection to the upstream service."""

    def __init__(
        self,
        inbound: Connection,
        connector: Connector,
        session_id: int = 0,
        client_to_upstream: Optional[DirectionOptions] = None,
        upstream_to_client: Optional[DirectionOptions] = None,
    ):
        self.inbound = inbound
        self.connector = connector
        self.session_id = session_id
        self.client_to_upstream = client_to_upstream or DirectionOptions()
        self.upstream_to_client = upstream_to_client or DirectionOptions()

        self.upstream: Optional[Connection] = None
        self.state = SessionState.CONNECTING
        self.pumps: List[StreamPump] = []
        self._tasks: List[asyncio.Task] = []
        self._closed = False

    @property
    def label(self) -> str:
        return f"session {self.session_id} ({self.inbound.address})"

    async def run(self) -> None:
        """Connect upstream, relay until both directions end, then close.

        A session closed while still connecting never becomes ACTIVE; the
        late upstream connection is closed and ``run`` returns.

        Raises:
            ConnectError: upstream unreachable; the inbound connection has
                been closed and no pump was started.
        """
        try:
            upstream = await self.connector.connect()
        except ConnectError:
            await self._abort()
            raise
        except asyncio.CancelledError:
            await self.close()
            raise

        if self._closed:
            logger.info("%s: closed while connecting, dropping upstream", self.label)
            await self._close_quietly(upstream)
            return
        self.upstream = upstream

        self.pumps = [
            StreamPump(
                self.inbound,
                self.upstream,
                secondary=self.client_to_upstream.tee,
                triggers=self.client_to_upstream.triggers,
                name=f"s{self.session_id}:{CLIENT_TO_UPSTREAM}",
            ),
            StreamPump(
                self.upstream,
                self.inbound,
                secondary=self.upstream_to_client.tee,
                triggers=self.upstream_to_client.triggers,
                name=f"s{self.session_id}:{UPSTREAM_TO_CLIENT}",
            ),
        ]
        self.state = SessionState.ACTIVE
        logger.info("%s: relaying to %s", self.label, self.upstream.address)

        self._tasks = [asyncio.create_task(p.run(), name=p.name) for p in self.pumps]
        try:
            await asyncio.gather(*self._tasks)
        finally:
            await self.close()

    async def _close_quietly(self, resource) -> None:
        if resource is None:
            return
        try:
            await resource.close()
        except Exception as e:
            logger.warning("%s: failed to close %r: %s", self.label, resource, e)

    async def _abort(self) -> None:
        """Tear down a session whose upstream never connected."""
        if self._closed:
            return
        self._closed = True
        self.state = SessionState.CLOSED
        for resource in (self.inbound, self.client_to_upstream.tee, self.upstream_to_client.tee):
            await self._close_quietly(resource)

    async def close(self) -> None:
        """Stop both directions and close both connections (idempotent).

        Before any pump has started the tee sinks still belong to the
        session, so they are closed here too.
        """
        if self._closed:
            return
        self._closed = True

        for task in self._tasks:
            if not task.done():
                task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        for conn in (self.inbound, self.upstream):
            if conn is None or conn.closed:
                continue
            await self._close_quietly(conn)

        if not self.pumps:
            await self._close_quietly(self.client_to_upstream.tee)
            await self._close_quietly(self.upstream_to_client.tee)

        self.state = SessionState.CLOSED
        logger.info("%s: closed", self.label)

    @property
    def is_closed(self) -> bool:
        return self.state is SessionState.CLOSED

    def get_stats(self) -> dict:
        return {
            "session_id": self.session_id,
            "client": self.inbound.address,
            "state": self.state.value,
            "pumps": [p.get_stats() for p in self.pumps],
        }
