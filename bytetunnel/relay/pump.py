"""StreamPump - relays one direction of a tunnel.

The pump reads from a source and writes every byte, unaltered and in order,
to a primary sink and an optional secondary sink (tee). When triggers are
configured it also watches the stream through one sliding window per
trigger and repairs a missing continuation byte:

    input   ... \\nREPORT Xrest
    output  ... \\nREPORT /Xrest

Per byte ``b``:
  1. check each trigger against its window *before* ``b`` is pushed; on the
     first match with ``b != continuation`` emit the continuation byte
  2. emit ``b``
  3. push ``b`` into every window

A read returns whatever the source has buffered; the result of processing
that chunk goes straight to the sinks, so no byte waits for later input.
Windows persist across reads, so a trigger split over two reads is still
detected.

The pump never raises out of :meth:`StreamPump.run`. On end-of-stream or any
I/O failure it closes its source and sinks (best-effort) and records why it
stopped.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from bytetunnel.errors import ReadError, TunnelError, WriteError
from bytetunnel.transports.base import ByteSink, ByteSource

from .window import SlidingWindowMatcher, Trigger

logger = logging.getLogger("bytetunnel.pump")


class PumpExit(Enum):
    """Why a pump stopped."""

    EOF = "eof"
    READ_ERROR = "read_error"
    WRITE_ERROR = "write_error"
    CANCELLED = "cancelled"


class StreamPump:
    """Copies bytes from ``source`` to ``primary`` (and ``secondary``)."""

    def __init__(
        self,
        source: ByteSource,
        primary: ByteSink,
        secondary: Optional[ByteSink] = None,
        triggers: Sequence[Trigger] = (),
        name: str = "pump",
    ):
        self.source = source
        self.primary = primary
        self.secondary = secondary
        self.name = name

        # One window per trigger, evaluated in registration order
        self._matchers: List[Tuple[SlidingWindowMatcher, Trigger]] = [
            (SlidingWindowMatcher.for_trigger(t), t) for t in triggers
        ]

        self.running = False
        self.exit_reason: Optional[PumpExit] = None
        self.error: Optional[TunnelError] = None

        self._bytes_read = 0
        self._bytes_written = 0
        self._corrections = 0

    @property
    def correction_enabled(self) -> bool:
        return bool(self._matchers)

    @property
    def sinks(self) -> List[ByteSink]:
        if self.secondary is not None:
            return [self.primary, self.secondary]
        return [self.primary]

    # --- Byte processing ---

    def process(self, chunk: bytes) -> bytes:
        """Apply trigger correction to ``chunk`` and return what to forward.

        Updates the windows, so calls must follow stream order.
        """
        if not self._matchers:
            return chunk

        out = bytearray()
        for b in chunk:
            for matcher, trigger in self._matchers:
                if matcher.matches_prefix(trigger.sequence):
                    if b != trigger.continuation:
                        out.append(trigger.continuation)
                        self._corrections += 1
                        logger.debug(
                            "%s: inserted %r after %r",
                            self.name,
                            bytes([trigger.continuation]),
                            trigger.sequence,
                        )
                    # First matching trigger decides for this byte
                    break
            out.append(b)
            for matcher, _ in self._matchers:
                matcher.push(b)
        return bytes(out)

    # --- Lifecycle ---

    async def run(self) -> PumpExit:
        """Pump until end-of-stream or failure, then tear down."""
        self.running = True
        try:
            self.exit_reason = await self._loop()
        except asyncio.CancelledError:
            self.exit_reason = PumpExit.CANCELLED
            raise
        finally:
            self.running = False
            await self._teardown()
            logger.debug(
                "%s stopped (%s): %d bytes in, %d bytes out, %d corrections",
                self.name,
                self.exit_reason.value if self.exit_reason else "unknown",
                self._bytes_read,
                self._bytes_written,
                self._corrections,
            )
        return self.exit_reason

    async def _loop(self) -> PumpExit:
        sinks = self.sinks
        while True:
            try:
                chunk = await self.source.read()
            except OSError as e:
                self.error = ReadError(self.name, e)
                logger.warning("%s", self.error)
                return PumpExit.READ_ERROR

            if not chunk:
                return PumpExit.EOF
            self._bytes_read += len(chunk)

            data = self.process(chunk)
            for sink in sinks:
                try:
                    await sink.write(data)
                except (OSError, RuntimeError) as e:
                    self.error = WriteError(self.name, e)
                    logger.warning("%s", self.error)
                    return PumpExit.WRITE_ERROR
            self._bytes_written += len(data)

    async def _teardown(self) -> None:
        """Close source and every sink; one failure does not skip the rest."""
        for resource in [self.source, *self.sinks]:
            try:
                await resource.close()
            except Exception as e:
                logger.warning("%s: failed to close %r: %s", self.name, resource, e)

    # --- Stats ---

    def get_stats(self) -> dict:
        return {
            "name": self.name,
            "running": self.running,
            "bytes_read": self._bytes_read,
            "bytes_written": self._bytes_written,
            "corrections": self._corrections,
            "exit": self.exit_reason.value if self.exit_reason else None,
        }
