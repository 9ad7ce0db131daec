"""
Fixed-capacity cyclic buffer holding the frames that precede a trigger.
"""

from __future__ import annotations

from typing import Generic, TypeVar

T = TypeVar("T")


class PreEventBuffer(Generic[T]):
    """
    Cyclic buffer of the most recent frames.

    Frames are written at ``cursor`` which then advances modulo ``capacity``.
    ``drain`` hands every stored frame over in capture order and leaves the
    buffer empty with the cursor back at zero.
    """

    def __init__(self, capacity: int = 150) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._slots: list[T | None] = [None] * capacity
        self._cursor = 0
        self._fill = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def full(self) -> bool:
        return self._fill == self._capacity

    def __len__(self) -> int:
        return self._fill

    def push(self, frame: T) -> None:
        self._slots[self._cursor] = frame
        self._cursor = (self._cursor + 1) % self._capacity
        if self._fill < self._capacity:
            self._fill += 1

    def drain(self) -> list[T]:
        """Remove and return all frames, oldest first."""
        if self.full:
            order = [*range(self._cursor, self._capacity), *range(self._cursor)]
        else:
            order = list(range(self._fill))
        frames: list[T] = []
        for index in order:
            frame = self._slots[index]
            self._slots[index] = None
            frames.append(frame)  # type: ignore[arg-type]
        self._cursor = 0
        self._fill = 0
        return frames


__all__ = ["PreEventBuffer"]
