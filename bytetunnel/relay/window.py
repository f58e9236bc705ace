"""Sliding byte window and trigger definitions for in-stream correction.

A :class:`SlidingWindowMatcher` remembers the last ``N`` bytes of an
unbounded stream in O(1) memory. The pump keeps one window per
:class:`Trigger`, sized to that trigger's sequence, and asks it whether the
trigger has just been completed.

Usage:
    trigger = Trigger(b"\\nREPORT ", ord("/"))
    window = SlidingWindowMatcher.for_trigger(trigger)
    for b in stream:
        if window.matches_prefix(trigger.sequence) and b != trigger.continuation:
            ...  # continuation byte is missing
        window.push(b)
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Union


@dataclass(frozen=True)
class Trigger:
    """A byte sequence and the byte that must follow it.

    Attributes:
        sequence: Non-empty trigger bytes, e.g. ``b"\\nPROPFIND "``
        continuation: Byte value (0-255) expected right after ``sequence``
    """

    sequence: bytes
    continuation: int

    def __post_init__(self) -> None:
        if not isinstance(self.sequence, (bytes, bytearray)):
            raise TypeError("Trigger sequence must be bytes")
        if len(self.sequence) == 0:
            raise ValueError("Trigger sequence must not be empty")
        if not 0 <= int(self.continuation) <= 0xFF:
            raise ValueError(
                f"Continuation byte out of range: {self.continuation!r}"
            )
        # Normalise bytearray input so the trigger stays hashable/immutable
        object.__setattr__(self, "sequence", bytes(self.sequence))
        object.__setattr__(self, "continuation", int(self.continuation))

    @classmethod
    def from_text(
        cls,
        sequence: str,
        continuation: Union[str, int],
        encoding: str = "utf-8",
    ) -> "Trigger":
        """Build a trigger from text, e.g. ``Trigger.from_text("\\nREPORT ", "/")``."""
        if isinstance(continuation, str):
            encoded = continuation.encode(encoding)
            if len(encoded) != 1:
                raise ValueError(
                    f"Continuation must encode to exactly one byte: {continuation!r}"
                )
            continuation = encoded[0]
        return cls(sequence.encode(encoding), continuation)

    def __len__(self) -> int:
        return len(self.sequence)


class SlidingWindowMatcher:
    """Fixed-capacity FIFO window over the most recent bytes of a stream.

    The window holds exactly ``min(bytes_seen, capacity)`` bytes, oldest
    first. Pushing into a full window evicts the oldest byte; there is no
    error path for a full insert.

    Storage is a ring buffer: ``_start`` indexes the oldest byte and
    ``_count`` is the number of valid bytes.
    """

    __slots__ = ("_buf", "_capacity", "_start", "_count")

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"Window capacity must be >= 1, got {capacity}")
        self._capacity = capacity
        self._buf = bytearray(capacity)
        self._start = 0
        self._count = 0

    @classmethod
    def for_trigger(cls, trigger: Trigger) -> "SlidingWindowMatcher":
        """Create a window sized exactly to ``trigger``."""
        return cls(len(trigger.sequence))

    # --- Mutation ---

    def push(self, b: int) -> None:
        """Append one byte, evicting the oldest when the window is full."""
        if self._count < self._capacity:
            self._buf[(self._start + self._count) % self._capacity] = b
            self._count += 1
        else:
            self._buf[self._start] = b
            self._start = (self._start + 1) % self._capacity

    def extend(self, data: Iterable[int]) -> None:
        """Push every byte of ``data`` in order."""
        for b in data:
            self.push(b)

    def reset(self) -> None:
        """Forget everything seen so far."""
        self._start = 0
        self._count = 0

    # --- Queries ---

    def matches_prefix(self, sequence: bytes) -> bool:
        """Return True iff the window contents equal ``sequence`` exactly.

        A window that holds a different number of bytes than ``sequence``
        never matches, so a stream shorter than the trigger cannot match.
        """
        if len(sequence) != self._count:
            return False
        buf = self._buf
        cap = self._capacity
        start = self._start
        for i, expected in enumerate(sequence):
            if buf[(start + i) % cap] != expected:
                return False
        return True

    def contents(self) -> bytes:
        """Return the window contents in arrival order."""
        end = self._start + self._count
        if end <= self._capacity:
            return bytes(self._buf[self._start:end])
        return bytes(self._buf[self._start:]) + bytes(self._buf[: end - self._capacity])

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def is_full(self) -> bool:
        return self._count == self._capacity

    def __len__(self) -> int:
        return self._count

    def __repr__(self) -> str:
        return f"SlidingWindowMatcher(capacity={self._capacity}, contents={self.contents()!r})"
