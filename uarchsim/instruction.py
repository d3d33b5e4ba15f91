"""Trace records, in-flight instruction state, memory packets and the memory interfaces."""

from __future__ import annotations

import heapq
import struct
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import IntEnum
from itertools import groupby
from typing import Any, Callable, ClassVar, Optional

from uarchsim.util import UINT64_MASK

NUM_INSTR_DESTINATIONS_SPARC = 4
NUM_INSTR_DESTINATIONS = 2
NUM_INSTR_SOURCES = 4

# Special registers that identify branches.
REG_STACK_POINTER = 6
REG_FLAGS = 25
REG_INSTRUCTION_POINTER = 26

UINT8_MAX = 0xFF
UINT32_MAX = 0xFFFFFFFF

# Results of the add_*q methods besides a positive queue occupancy.
QUEUE_FULL = -2
FORWARDED = -1
MERGED = 0


class BranchType(IntEnum):
    NOT_BRANCH = 0
    BRANCH_DIRECT_JUMP = 1
    BRANCH_INDIRECT = 2
    BRANCH_CONDITIONAL = 3
    BRANCH_DIRECT_CALL = 4
    BRANCH_INDIRECT_CALL = 5
    BRANCH_RETURN = 6
    BRANCH_OTHER = 7


class AccessType(IntEnum):
    LOAD = 0
    RFO = 1
    PREFETCH = 2
    WRITEBACK = 3
    TRANSLATION = 4


NUM_TYPES = len(AccessType)


def _zeros(count: int) -> Callable[[], list[int]]:
    return lambda: [0] * count


def _no_asid() -> list[int]:
    return [UINT8_MAX, UINT8_MAX]


def _padded(values: list[int], length: int) -> list[int]:
    values = list(values)
    if len(values) > length:
        raise ValueError(f"expected at most {length} values, got {len(values)}")
    return values + [0] * (length - len(values))


@dataclass
class InputInstr:
    """One record of the standard binary trace format."""

    ip: int = 0
    is_branch: int = 0
    branch_taken: int = 0
    destination_registers: list[int] = field(default_factory=_zeros(NUM_INSTR_DESTINATIONS))
    source_registers: list[int] = field(default_factory=_zeros(NUM_INSTR_SOURCES))
    destination_memory: list[int] = field(default_factory=_zeros(NUM_INSTR_DESTINATIONS))
    source_memory: list[int] = field(default_factory=_zeros(NUM_INSTR_SOURCES))

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("<QBB2B4B2Q4Q")
    SIZE: ClassVar[int] = _FORMAT.size

    def pack(self) -> bytes:
        """Serialise to the on-disk record layout."""
        try:
            return self._FORMAT.pack(
                self.ip,
                self.is_branch,
                self.branch_taken,
                *self.destination_registers,
                *self.source_registers,
                *self.destination_memory,
                *self.source_memory,
            )
        except struct.error as exc:
            raise ValueError(f"cannot pack trace record: {exc}") from exc

    @classmethod
    def unpack(cls, data: bytes) -> "InputInstr":
        """Parse one on-disk record."""
        try:
            values = cls._FORMAT.unpack(data)
        except struct.error as exc:
            raise ValueError(f"expected {cls.SIZE} bytes, got {len(data)}") from exc
        return cls(
            ip=values[0],
            is_branch=values[1],
            branch_taken=values[2],
            destination_registers=list(values[3:5]),
            source_registers=list(values[5:9]),
            destination_memory=list(values[9:11]),
            source_memory=list(values[11:15]),
        )


@dataclass
class CloudsuiteInstr:
    """One record of the cloudsuite binary trace format."""

    ip: int = 0
    is_branch: int = 0
    branch_taken: int = 0
    destination_registers: list[int] = field(default_factory=_zeros(NUM_INSTR_DESTINATIONS_SPARC))
    source_registers: list[int] = field(default_factory=_zeros(NUM_INSTR_SOURCES))
    destination_memory: list[int] = field(default_factory=_zeros(NUM_INSTR_DESTINATIONS_SPARC))
    source_memory: list[int] = field(default_factory=_zeros(NUM_INSTR_SOURCES))
    asid: list[int] = field(default_factory=_no_asid)

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("<QBB4B4B6x4Q4Q2B6x")
    SIZE: ClassVar[int] = _FORMAT.size

    def pack(self) -> bytes:
        """Serialise to the on-disk record layout."""
        try:
            return self._FORMAT.pack(
                self.ip,
                self.is_branch,
                self.branch_taken,
                *self.destination_registers,
                *self.source_registers,
                *self.destination_memory,
                *self.source_memory,
                *self.asid,
            )
        except struct.error as exc:
            raise ValueError(f"cannot pack trace record: {exc}") from exc

    @classmethod
    def unpack(cls, data: bytes) -> "CloudsuiteInstr":
        """Parse one on-disk record."""
        try:
            values = cls._FORMAT.unpack(data)
        except struct.error as exc:
            raise ValueError(f"expected {cls.SIZE} bytes, got {len(data)}") from exc
        return cls(
            ip=values[0],
            is_branch=values[1],
            branch_taken=values[2],
            destination_registers=list(values[3:7]),
            source_registers=list(values[7:11]),
            destination_memory=list(values[11:15]),
            source_memory=list(values[15:19]),
            asid=list(values[19:21]),
        )


@dataclass(eq=False)
class OooModelInstr:
    """An instruction as it flows through the out-of-order core."""

    instr_id: int = 0
    ip: int = 0
    event_cycle: int = 0

    is_branch: bool = False
    is_memory: bool = False
    branch_taken: bool = False
    branch_mispredicted: bool = False
    source_added: list[bool] = field(default_factory=lambda: [False] * NUM_INSTR_SOURCES)
    destination_added: list[bool] = field(default_factory=lambda: [False] * NUM_INSTR_DESTINATIONS_SPARC)

    asid: list[int] = field(default_factory=_no_asid)

    branch_type: int = BranchType.NOT_BRANCH
    branch_target: int = 0

    translated: int = 0
    fetched: int = 0
    decoded: int = 0
    scheduled: int = 0
    executed: int = 0
    num_reg_ops: int = 0
    num_mem_ops: int = 0
    num_reg_dependent: int = 0

    destination_registers: list[int] = field(default_factory=_zeros(NUM_INSTR_DESTINATIONS_SPARC))
    source_registers: list[int] = field(default_factory=_zeros(NUM_INSTR_SOURCES))

    # Instructions in the reorder buffer that depend on this one.
    registers_instrs_depend_on_me: list["OooModelInstr"] = field(default_factory=list)
    memory_instrs_depend_on_me: list["OooModelInstr"] = field(default_factory=list)

    instruction_pa: int = 0
    destination_memory: list[int] = field(default_factory=_zeros(NUM_INSTR_DESTINATIONS_SPARC))
    source_memory: list[int] = field(default_factory=_zeros(NUM_INSTR_SOURCES))

    lq_index: list[Optional["LsqEntry"]] = field(default_factory=lambda: [None] * NUM_INSTR_SOURCES)
    sq_index: list[Optional["LsqEntry"]] = field(default_factory=lambda: [None] * NUM_INSTR_DESTINATIONS_SPARC)

    @classmethod
    def from_trace(cls, cpu: int, instr: InputInstr | CloudsuiteInstr) -> "OooModelInstr":
        """Build the core's view of a trace record."""
        if not isinstance(instr, (InputInstr, CloudsuiteInstr)):
            raise TypeError(f"unsupported trace record: {type(instr).__name__}")
        model = cls(
            ip=instr.ip,
            is_branch=bool(instr.is_branch),
            branch_taken=bool(instr.branch_taken),
            destination_registers=_padded(instr.destination_registers, NUM_INSTR_DESTINATIONS_SPARC),
            destination_memory=_padded(instr.destination_memory, NUM_INSTR_DESTINATIONS_SPARC),
            source_registers=_padded(instr.source_registers, NUM_INSTR_SOURCES),
            source_memory=_padded(instr.source_memory, NUM_INSTR_SOURCES),
        )
        if isinstance(instr, InputInstr):
            model.asid = [cpu, cpu]
        # Cloudsuite records leave the address-space ids at their defaults.
        return model


@dataclass
class Packet:
    """A memory request travelling between components."""

    scheduled: bool = False
    asid: list[int] = field(default_factory=_no_asid)
    type: int = 0
    fill_level: int = 0
    pf_origin_level: int = 0
    pf_metadata: int = 0
    cpu: Optional[int] = None
    address: int = 0
    v_address: int = 0
    data: int = 0
    instr_id: int = 0
    ip: int = 0
    event_cycle: int = UINT64_MASK
    cycle_enqueued: int = 0
    lq_index_depend_on_me: list[Any] = field(default_factory=list)
    sq_index_depend_on_me: list[Any] = field(default_factory=list)
    instr_depend_on_me: list[Any] = field(default_factory=list)
    to_return: list[Any] = field(default_factory=list)
    translation_level: int = 0
    init_translation_level: int = 0

    @property
    def valid(self) -> bool:
        return self.address != 0


@dataclass(eq=False)
class LsqEntry:
    """An entry of the load or store queue."""

    instr_id: int = 0
    producer_id: int = UINT64_MASK
    virtual_address: int = 0
    physical_address: int = 0
    ip: int = 0
    event_cycle: int = 0
    rob_index: Optional[OooModelInstr] = None
    translated: int = 0
    fetched: int = 0
    asid: list[int] = field(default_factory=_no_asid)

    @property
    def valid(self) -> bool:
        return self.virtual_address != 0


@dataclass
class Block:
    """A cache block with its replacement state."""

    valid: bool = False
    prefetch: bool = False
    dirty: bool = False
    address: int = 0
    v_address: int = 0
    tag: int = 0
    data: int = 0
    ip: int = 0
    cpu: int = 0
    instr_id: int = 0
    lru: int = UINT32_MAX >> 1


class MemoryRequestConsumer(ABC):
    """A component that accepts memory requests.

    The add_*q methods return QUEUE_FULL, FORWARDED, MERGED, or the new
    queue occupancy when positive.
    """

    def __init__(self, fill_level: int) -> None:
        self.fill_level = fill_level

    @abstractmethod
    def add_rq(self, packet: Packet) -> int:
        """Offer a read request."""

    @abstractmethod
    def add_wq(self, packet: Packet) -> int:
        """Offer a write request."""

    @abstractmethod
    def add_pq(self, packet: Packet) -> int:
        """Offer a prefetch request."""

    @abstractmethod
    def get_occupancy(self, queue_type: int, address: int) -> int:
        """Number of entries in the given queue."""

    @abstractmethod
    def get_size(self, queue_type: int, address: int) -> int:
        """Capacity of the given queue."""


class MemoryRequestProducer(ABC):
    """A component that issues requests and receives their responses."""

    def __init__(self, lower_level: Optional[MemoryRequestConsumer] = None) -> None:
        self.lower_level = lower_level

    @abstractmethod
    def return_data(self, packet: Packet) -> None:
        """Receive a completed request."""


def packet_dep_merge(dest: list[Any], src: list[Any]) -> None:
    """Merge sorted ``src`` into sorted ``dest`` in place, dropping adjacent duplicates."""
    merged = heapq.merge(list(dest), src)
    dest[:] = [key for key, _ in groupby(merged)]