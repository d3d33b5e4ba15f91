"""A bounded first-in first-out buffer."""

from __future__ import annotations

from collections import deque
from typing import Generic, Iterator, TypeVar

T = TypeVar("T")


class CircularBuffer(Generic[T]):
    """Deque-like container with a fixed maximum number of elements."""

    def __init__(self, capacity: int) -> None:
        if capacity < 0:
            raise ValueError("capacity must not be negative")
        self.capacity = capacity
        self._items: deque[T] = deque()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self._items)

    def __reversed__(self) -> Iterator[T]:
        return reversed(self._items)

    def __getitem__(self, index: int) -> T:
        return self._items[index]

    def occupancy(self) -> int:
        """Number of elements held."""
        return len(self._items)

    def empty(self) -> bool:
        return not self._items

    def full(self) -> bool:
        return len(self._items) == self.capacity

    def front(self) -> T:
        if not self._items:
            raise IndexError("front of empty buffer")
        return self._items[0]

    def back(self) -> T:
        if not self._items:
            raise IndexError("back of empty buffer")
        return self._items[-1]

    def push_back(self, item: T) -> None:
        """Append an element; raises IndexError when the buffer is full."""
        if self.full():
            raise IndexError("push onto full buffer")
        self._items.append(item)

    def pop_front(self) -> T:
        """Remove and return the oldest element."""
        if not self._items:
            raise IndexError("pop from empty buffer")
        return self._items.popleft()

    def clear(self) -> None:
        self._items.clear()