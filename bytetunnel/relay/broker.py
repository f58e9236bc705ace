"""ConnectionBroker - accepts clients and starts one TunnelSession per client."""
from __future__ import annotations

import asyncio
import logging
import sys
from typing import TYPE_CHECKING, Dict, List, Optional, Set

from bytetunnel.errors import ConnectError
from bytetunnel.transports.base import ByteSink, Connector
from bytetunnel.transports.capture import CaptureSink, EchoSink, TeeSink
from bytetunnel.transports.tcp import TcpConnection, TcpConnector

from .session import CLIENT_TO_UPSTREAM, UPSTREAM_TO_CLIENT, DirectionOptions, TunnelSession

if TYPE_CHECKING:
    # bytetunnel.config imports relay.window, which loads this package
    from bytetunnel.config import TunnelConfig

logger = logging.getLogger("bytetunnel.broker")

# Client bytes echo to stdout, upstream bytes to stderr
ECHO_STREAMS = {
    "client_to_upstream": "stdout",
    "upstream_to_client": "stderr",
}


class ConnectionBroker:
    """TCP accept loop relaying every client to the configured upstream."""

    def __init__(self, config: TunnelConfig, connector: Optional[Connector] = None):
        config.validate()
        self.config = config
        self.connector = connector or TcpConnector(
            config.upstream_host,
            config.upstream_port,
            timeout=config.connect_timeout,
            read_size=config.read_size,
        )

        self._server: Optional[asyncio.Server] = None
        self._sessions: Set[TunnelSession] = set()
        self._session_tasks: Set[asyncio.Task] = set()
        self._session_counter = 0
        self._failed_connects = 0
        self._running = False

    async def start(self) -> None:
        """Start listening for clients."""
        self._running = True
        self._server = await asyncio.start_server(
            self._handle_client,
            self.config.listen_host,
            self.config.listen_port,
        )
        logger.info(
            "Listening on %s, relaying to %s:%d",
            ", ".join(self._describe(s.getsockname()) for s in self._server.sockets),
            self.config.upstream_host,
            self.config.upstream_port,
        )

    async def stop(self) -> None:
        """Stop accepting and close every live session."""
        self._running = False

        server, self._server = self._server, None
        if server:
            server.close()

        # Sessions go first: wait_closed() also waits for open client handlers
        for session in list(self._sessions):
            await session.close()
        for task in list(self._session_tasks):
            task.cancel()
        if self._session_tasks:
            await asyncio.gather(*self._session_tasks, return_exceptions=True)
        self._sessions.clear()

        if server:
            await server.wait_closed()
        logger.info("Broker stopped")

    async def serve_forever(self) -> None:
        if not self._server:
            await self.start()
        try:
            await self._server.serve_forever()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    # --- Per-client handling ---

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        self._session_counter += 1
        session_id = self._session_counter
        inbound = TcpConnection(reader, writer, read_size=self.config.read_size)
        logger.info("Client connected: %s (session %d)", inbound.address, session_id)

        task = asyncio.current_task()
        if task is not None:
            self._session_tasks.add(task)
        try:
            await self._run_session(session_id, inbound)
        finally:
            self._session_tasks.discard(task)

    async def _run_session(self, session_id: int, inbound: TcpConnection) -> None:
        opened: List[ByteSink] = []
        try:
            session = TunnelSession(
                inbound,
                self.connector,
                session_id=session_id,
                client_to_upstream=self._direction_options(session_id, CLIENT_TO_UPSTREAM, opened),
                upstream_to_client=self._direction_options(session_id, UPSTREAM_TO_CLIENT, opened),
            )
        except Exception as e:
            logger.error("Session %d: cannot set up capture: %s", session_id, e)
            for sink in opened:
                await sink.close()
            await inbound.close()
            return

        self._sessions.add(session)
        try:
            await session.run()
        except ConnectError as e:
            self._failed_connects += 1
            logger.warning("Session %d aborted: %s", session_id, e)
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.exception("Error in session %d: %s", session_id, e)
        finally:
            await session.close()
            self._sessions.discard(session)

    def _direction_options(
        self,
        session_id: int,
        direction: str,
        opened: List[ByteSink],
    ) -> DirectionOptions:
        """Build pump options for one direction; opened files go to ``opened``."""
        sinks: List[ByteSink] = []
        capture = self.config.capture
        if capture.enabled and direction in capture.directions:
            sink = CaptureSink(capture.path_for(session_id, direction))
            sink.open()
            opened.append(sink)
            sinks.append(sink)
        if direction in self.config.echo:
            stream = getattr(sys, ECHO_STREAMS[direction]).buffer
            sinks.append(EchoSink(stream))

        tee: Optional[ByteSink] = None
        if len(sinks) == 1:
            tee = sinks[0]
        elif sinks:
            tee = TeeSink(sinks)
        return DirectionOptions(triggers=self.config.triggers_for(direction), tee=tee)

    # --- Properties ---

    @staticmethod
    def _describe(sockname) -> str:
        return f"{sockname[0]}:{sockname[1]}"

    @property
    def sockets(self) -> List:
        return list(self._server.sockets) if self._server else []

    @property
    def port(self) -> Optional[int]:
        """Bound listen port (useful when configured with port 0)."""
        for sock in self.sockets:
            return sock.getsockname()[1]
        return None

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    @property
    def is_running(self) -> bool:
        return self._running

    def get_stats(self) -> Dict[str, object]:
        """Get broker statistics."""
        return {
            "running": self._running,
            "sessions_opened": self._session_counter,
            "sessions_active": len(self._sessions),
            "failed_connects": self._failed_connects,
            "sessions": [s.get_stats() for s in self._sessions],
        }

