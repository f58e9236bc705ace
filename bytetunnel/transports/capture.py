"""Secondary sinks: capture files and console echo.

A pump writes every forwarded byte (including injected corrections) to its
secondary sink right after the primary one, so a capture file holds exactly
what the peer received on that direction.

Usage:
    capture = CaptureSink("fromClient2Server.bin")
    capture.open()
    pump = StreamPump(source, primary, secondary=capture)

The capture file is raw bytes with no framing, suitable for ``xxd`` or a
hex editor.
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import BinaryIO, List, Optional, Sequence, Union

from .base import ByteSink

logger = logging.getLogger("bytetunnel.transports.capture")


class CaptureSink(ByteSink):
    """Append forwarded bytes to a binary file.

    The file must be opened (``open()`` or ``with``) before the pump starts;
    closing is idempotent and happens during pump teardown.
    """

    def __init__(self, filepath: Union[str, Path], flush: bool = True):
        """Initialize the capture sink.

        Args:
            filepath: Path to the output file (truncated on open)
            flush: Flush after every write so the file is readable live
        """
        self.filepath = Path(filepath)
        self.flush_each_write = flush
        self._file: Optional[BinaryIO] = None
        self._bytes_written = 0

    def open(self) -> None:
        """Create or truncate the capture file."""
        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self.filepath, "wb")
        logger.info("Capturing to %s", self.filepath)

    async def write(self, data: bytes):
        if not self._file:
            raise RuntimeError(f"Capture file not open: {self.filepath}")
        self._file.write(data)
        if self.flush_each_write:
            self._file.flush()
        self._bytes_written += len(data)

    def _close_file(self) -> None:
        if self._file:
            f, self._file = self._file, None
            f.flush()
            f.close()

    async def close(self):
        self._close_file()

    @property
    def is_open(self) -> bool:
        return self._file is not None

    @property
    def bytes_written(self) -> int:
        return self._bytes_written

    def __enter__(self) -> "CaptureSink":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self._close_file()


class EchoSink(ByteSink):
    """Echo forwarded bytes to a binary console stream (stdout by default).

    The underlying stream is shared with the rest of the process, so
    ``close`` only flushes it.
    """

    def __init__(self, stream: Optional[BinaryIO] = None):
        self.stream = stream if stream is not None else sys.stdout.buffer

    async def write(self, data: bytes):
        self.stream.write(data)
        self.stream.flush()

    async def close(self):
        self.stream.flush()


class TeeSink(ByteSink):
    """Fan one sink slot out to several sinks, written in list order."""

    def __init__(self, sinks: Sequence[ByteSink]):
        self.sinks: List[ByteSink] = list(sinks)

    async def write(self, data: bytes):
        for sink in self.sinks:
            await sink.write(data)

    async def close(self):
        # Close every member even if one fails, then report the first failure
        first_error: Optional[BaseException] = None
        for sink in self.sinks:
            try:
                await sink.close()
            except Exception as e:
                logger.warning("Failed to close %r: %s", sink, e)
                if first_error is None:
                    first_error = e
        if first_error is not None:
            raise first_error

    def __len__(self) -> int:
        return len(self.sinks)
