"""A bounded queue whose members become ready only after a fixed delay."""

from __future__ import annotations

from collections import deque
from itertools import islice
from typing import Generic, Iterator, TypeVar

T = TypeVar("T")


class DelayQueue(Generic[T]):
    """Fixed-size FIFO that releases members once their delay has elapsed.

    Readiness is recomputed by ``operate``, which must be called once per
    cycle. Members are always popped in order, ready or not.
    """

    def __init__(self, size: int, latency: int) -> None:
        if size < 0:
            raise ValueError("size must not be negative")
        self.size = size
        self.latency = latency
        self._items: deque[T] = deque()
        self._delays: deque[int] = deque()
        self._ready = 0

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self._items)

    def occupancy(self) -> int:
        return len(self._items)

    def empty(self) -> bool:
        return not self._items

    def full(self) -> bool:
        return len(self._items) == self.size

    def has_ready(self) -> bool:
        return self._ready > 0

    def ready(self) -> Iterator[T]:
        """Iterate over the members that were ready at the last ``operate``."""
        return islice(self._items, self._ready)

    def front(self) -> T:
        if not self._items:
            raise IndexError("front of empty queue")
        return self._items[0]

    def back(self) -> T:
        if not self._items:
            raise IndexError("back of empty queue")
        return self._items[-1]

    def _push(self, item: T, delay: int) -> None:
        if self.full():
            raise IndexError("push onto full queue")
        self._items.append(item)
        self._delays.append(delay)

    def push_back(self, item: T) -> None:
        """Append a member delayed by the queue's latency."""
        self._push(item, self.latency)

    def push_back_ready(self, item: T) -> None:
        """Append a member with no delay; it becomes ready at the next ``operate``."""
        self._push(item, 0)

    def pop_front(self) -> T:
        if not self._items:
            raise IndexError("pop from empty queue")
        self._delays.popleft()
        self._ready = max(self._ready - 1, 0)
        return self._items.popleft()

    def clear(self) -> None:
        self._items.clear()
        self._delays.clear()
        self._ready = 0

    def operate(self) -> None:
        """Count down every delay and recompute the ready prefix."""
        # Delays may go negative; that is permitted.
        self._delays = deque(d - 1 for d in self._delays)
        delays = self._delays
        first, length = 0, len(delays)
        while length > 0:
            half = length >> 1
            middle = first + half
            if delays[middle] <= 0:
                first = middle + 1
                length -= half + 1
            else:
                length = half
        self._ready = first