"""Bit helpers, entry predicates, LRU utilities and the clocked-component base."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Iterable, Sequence

UINT64_MASK = (1 << 64) - 1

# Progress states shared by instructions and queue entries.
INFLIGHT = 1
COMPLETED = 2

# Fill levels.
FILL_L1 = 1
FILL_L2 = 2
FILL_LLC = 4
FILL_DRC = 8
FILL_DRAM = 16


class Deadlock(Exception):
    """Raised when a core makes no forward progress for too long."""

    def __init__(self, which: int) -> None:
        super().__init__(f"deadlock detected on cpu {which}")
        self.which = which


def lg2(n: int) -> int:
    """Floor of log base 2 of ``n``; 0 for values below 2."""
    return max(n.bit_length() - 1, 0)


def bitmask(begin: int, end: int = 0) -> int:
    """Mask with bits ``end`` (inclusive) through ``begin`` (exclusive) set."""
    return (((1 << (begin - end)) - 1) << end) & UINT64_MASK


def splice_bits(upper: int, lower: int, bits: int) -> int:
    """Take the low ``bits`` bits from ``lower`` and the rest from ``upper``."""
    mask = bitmask(bits)
    return ((upper & ~mask) | (lower & mask)) & UINT64_MASK


def is_valid(entry: Any) -> bool:
    """Whether an entry holds live data, as reported by its ``valid`` attribute."""
    return bool(entry.valid)


def eq_addr(val: int, shamt: int = 0) -> Callable[[Any], bool]:
    """Predicate matching valid entries whose address equals ``val`` above ``shamt`` bits."""
    target = val >> shamt

    def matches(entry: Any) -> bool:
        return is_valid(entry) and (entry.address >> shamt) == target

    return matches


def _lru_less(lhs: Any, rhs: Any) -> bool:
    # Invalid entries compare as maximal, so they are chosen as victims first.
    return not is_valid(rhs) or (is_valid(lhs) and lhs.lru < rhs.lru)


def lru_victim(entries: Iterable[Any]) -> Any:
    """Return the replacement victim: an invalid entry if any, else the least recently used."""
    iterator = iter(entries)
    try:
        largest = next(iterator)
    except StopIteration:
        raise ValueError("cannot choose a victim from an empty set") from None
    for candidate in iterator:
        if _lru_less(largest, candidate):
            largest = candidate
    return largest


def lru_update(entries: Iterable[Any], hit: Any) -> None:
    """Make ``hit`` most recently used, ageing every other entry by one."""
    val = hit.lru
    for entry in entries:
        if entry.lru == val:
            entry.lru = 0
        else:
            entry.lru += 1


def event_cycle_key(entry: Any) -> tuple[int, int]:
    """Sort key ordering valid entries by event cycle, invalid entries last."""
    if is_valid(entry):
        return (0, entry.event_cycle)
    return (1, 0)


def by_next_operate(component: "Operable") -> float:
    """Sort key placing the component due to operate soonest first."""
    return component.leap_operation


class Operable(ABC):
    """A clocked component that may run slower than the global clock."""

    def __init__(self, scale: float) -> None:
        self.clock_scale = scale - 1
        self.leap_operation = 0.0
        self.current_cycle = 0

    def tick(self) -> None:
        """Advance one global cycle, operating unless this cycle is skipped."""
        if self.leap_operation >= 1:
            self.leap_operation -= 1
            return
        self.operate()
        self.leap_operation += self.clock_scale
        self.current_cycle += 1

    @abstractmethod
    def operate(self) -> None:
        """Do one cycle of work."""

    def print_deadlock(self) -> None:
        """Report internal state after a deadlock; silent by default."""
        return None


def sort_components(components: Sequence[Operable]) -> list[Operable]:
    """Components ordered by who operates next."""
    return sorted(components, key=by_next_operate)