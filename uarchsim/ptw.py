"""Page table walker with paging-structure caches."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Optional

from uarchsim.delay_queue import DelayQueue
from uarchsim.instruction import (
    QUEUE_FULL,
    UINT32_MAX,
    AccessType,
    MemoryRequestConsumer,
    MemoryRequestProducer,
    Packet,
)
from uarchsim.util import (
    UINT64_MASK,
    Operable,
    bitmask,
    eq_addr,
    event_cycle_key,
    is_valid,
    lg2,
    lru_update,
    lru_victim,
    splice_bits,
)
from uarchsim.vmem import LOG2_BLOCK_SIZE, LOG2_PAGE_SIZE, PTE_BYTES, VirtualMemory


@dataclass(frozen=True)
class PtwConfig:
    """Geometry of the paging-structure caches and the walker's queues."""

    pscl5_set: int
    pscl5_way: int
    pscl4_set: int
    pscl4_way: int
    pscl3_set: int
    pscl3_way: int
    pscl2_set: int
    pscl2_way: int
    rq_size: int
    mshr_size: int
    max_read: int
    max_fill: int
    latency: int


@dataclass
class _PscBlock:
    valid: bool = False
    address: int = 0
    data: int = 0
    lru: int = UINT32_MAX >> 1


def _copy_packet(packet: Packet) -> Packet:
    return dataclasses.replace(
        packet,
        asid=list(packet.asid),
        lq_index_depend_on_me=list(packet.lq_index_depend_on_me),
        sq_index_depend_on_me=list(packet.sq_index_depend_on_me),
        instr_depend_on_me=list(packet.instr_depend_on_me),
        to_return=list(packet.to_return),
    )


class PagingStructureCache:
    """Caches the physical address of page-table pages for a given level."""

    def __init__(self, name: str, level: int, num_set: int, num_way: int, vmem: VirtualMemory) -> None:
        self.name = name
        self.level = level
        self.num_set = num_set
        self.num_way = num_way
        self.vmem = vmem
        self._blocks = [_PscBlock() for _ in range(num_set * num_way)]

    def _set_of(self, address: int) -> list[_PscBlock]:
        set_idx = (address >> self.vmem.shamt(self.level + 1)) & bitmask(lg2(self.num_set))
        start = set_idx * self.num_way
        return self._blocks[start : start + self.num_way]

    def check_hit(self, address: int) -> Optional[int]:
        """Address of the page-table entry to read next, or None on a miss."""
        matches = eq_addr(address, self.vmem.shamt(self.level + 1))
        hit = next((block for block in self._set_of(address) if matches(block)), None)
        if hit is None:
            return None
        return splice_bits(hit.data, self.vmem.get_offset(address, self.level) * PTE_BYTES, LOG2_PAGE_SIZE)

    def fill_cache(self, next_level_paddr: int, vaddr: int) -> None:
        """Record the page-table page that translates ``vaddr`` at this level."""
        cache_set = self._set_of(vaddr)
        victim = lru_victim(cache_set)
        victim.valid = True
        victim.address = vaddr
        victim.data = next_level_paddr
        lru_update(cache_set, victim)


class PageTableWalker(Operable, MemoryRequestConsumer, MemoryRequestProducer):
    """Walks the page table for translation misses, one level per memory access."""

    def __init__(
        self,
        name: str,
        cpu: int,
        fill_level: int,
        config: PtwConfig,
        lower_level: MemoryRequestConsumer,
        vmem: VirtualMemory,
    ) -> None:
        Operable.__init__(self, 1)
        MemoryRequestConsumer.__init__(self, fill_level)
        MemoryRequestProducer.__init__(self, lower_level)
        self.name = name
        self.cpu = cpu
        self.vmem = vmem
        self.mshr_size = config.mshr_size
        self.max_read = config.max_read
        self.max_fill = config.max_fill
        self.rq: DelayQueue[Packet] = DelayQueue(config.rq_size, config.latency)
        self.mshr: list[Packet] = []
        self.total_miss_latency = 0
        self.warmup_complete = False

        self.pscl5 = PagingStructureCache("PSCL5", 4, config.pscl5_set, config.pscl5_way, vmem)
        self.pscl4 = PagingStructureCache("PSCL4", 3, config.pscl4_set, config.pscl4_way, vmem)
        self.pscl3 = PagingStructureCache("PSCL3", 2, config.pscl3_set, config.pscl3_way, vmem)
        self.pscl2 = PagingStructureCache("PSCL2", 1, config.pscl2_set, config.pscl2_way, vmem)

        self.cr3_addr = vmem.get_pte_pa(cpu, 0, vmem.pt_levels)[0]

    def _sort_mshr(self) -> None:
        self.mshr.sort(key=event_cycle_key)

    def _remove_mshr(self, entry: Packet) -> None:
        for index, candidate in enumerate(self.mshr):
            if candidate is entry:
                del self.mshr[index]
                return

    def handle_read(self) -> None:
        """Start walks for ready read requests while MSHRs are available."""
        reads_this_cycle = self.max_read
        vmem = self.vmem
        while reads_this_cycle > 0 and self.rq.has_ready() and len(self.mshr) != self.mshr_size:
            handle_pkt = self.rq.front()

            ptw_addr = splice_bits(
                self.cr3_addr,
                vmem.get_offset(handle_pkt.address, vmem.pt_levels - 1) * PTE_BYTES,
                LOG2_PAGE_SIZE,
            )
            ptw_level = vmem.pt_levels - 1
            for pscl in (self.pscl5, self.pscl4, self.pscl3, self.pscl2):
                check_addr = pscl.check_hit(handle_pkt.address)
                if check_addr is not None:
                    ptw_addr = check_addr
                    ptw_level = pscl.level - 1

            packet = _copy_packet(handle_pkt)
            packet.fill_level = self.lower_level.fill_level
            packet.address = ptw_addr
            packet.v_address = handle_pkt.address
            packet.cpu = self.cpu
            packet.type = AccessType.TRANSLATION
            packet.init_translation_level = ptw_level
            packet.translation_level = ptw_level
            packet.to_return = [self]

            if self.lower_level.add_rq(packet) == QUEUE_FULL:
                return

            entry = _copy_packet(packet)
            entry.to_return = list(handle_pkt.to_return)
            entry.type = handle_pkt.type
            entry.cycle_enqueued = self.current_cycle
            entry.event_cycle = UINT64_MASK
            self.mshr.append(entry)

            self.rq.pop_front()
            reads_this_cycle -= 1

    def handle_fill(self) -> None:
        """Advance walks whose memory access has returned."""
        fill_this_cycle = self.max_fill
        vmem = self.vmem
        while fill_this_cycle > 0 and self.mshr and self.mshr[0].event_cycle <= self.current_cycle:
            fill = self.mshr[0]
            if fill.translation_level == 0:
                addr, fault = vmem.va_to_pa(self.cpu, fill.v_address)
                if self.warmup_complete and fault:
                    fill.event_cycle = self.current_cycle + vmem.minor_fault_penalty
                    self._sort_mshr()
                else:
                    fill.data = addr
                    fill.address = fill.v_address
                    for ret in fill.to_return:
                        ret.return_data(fill)
                    if self.warmup_complete:
                        self.total_miss_latency += self.current_cycle - fill.cycle_enqueued
                    self._remove_mshr(fill)
            else:
                addr, fault = vmem.get_pte_pa(self.cpu, fill.v_address, fill.translation_level)
                if self.warmup_complete and fault:
                    fill.event_cycle = self.current_cycle + vmem.minor_fault_penalty
                    self._sort_mshr()
                else:
                    if fill.translation_level == self.pscl5.level:
                        self.pscl5.fill_cache(addr, fill.v_address)
                    if fill.translation_level == self.pscl4.level:
                        self.pscl4.fill_cache(addr, fill.v_address)
                    if fill.translation_level == self.pscl2.level:
                        self.pscl3.fill_cache(addr, fill.v_address)
                    if fill.translation_level == self.pscl2.level:
                        self.pscl2.fill_cache(addr, fill.v_address)

                    packet = _copy_packet(fill)
                    packet.cpu = self.cpu
                    packet.type = AccessType.TRANSLATION
                    packet.address = addr
                    packet.to_return = [self]
                    packet.translation_level = fill.translation_level - 1

                    if self.lower_level.add_rq(packet) != QUEUE_FULL:
                        fill.event_cycle = UINT64_MASK
                        fill.address = packet.address
                        fill.translation_level -= 1
                        self._remove_mshr(fill)
                        self.mshr.append(fill)

            fill_this_cycle -= 1

    def operate(self) -> None:
        self.handle_fill()
        self.handle_read()
        self.rq.operate()

    def add_rq(self, packet: Packet) -> int:
        """Queue a translation request; returns the new occupancy or QUEUE_FULL."""
        if packet.address == 0:
            raise ValueError("translation request without an address")
        same_page = eq_addr(packet.address, LOG2_PAGE_SIZE)
        if any(same_page(entry) for entry in self.rq):
            raise ValueError(f"duplicate translation request for address {packet.address:#x}")
        if self.rq.full():
            return QUEUE_FULL
        self.rq.push_back(_copy_packet(packet))
        return self.rq.occupancy()

    def add_wq(self, packet: Packet) -> int:
        raise TypeError("the page table walker does not accept write requests")

    def add_pq(self, packet: Packet) -> int:
        raise TypeError("the page table walker does not accept prefetch requests")

    def return_data(self, packet: Packet) -> None:
        """Mark walks waiting on the returned block as ready."""
        matches = eq_addr(packet.address, LOG2_BLOCK_SIZE)
        for entry in self.mshr:
            if matches(entry):
                entry.event_cycle = self.current_cycle
        self._sort_mshr()

    def get_occupancy(self, queue_type: int, address: int) -> int:
        if queue_type == 0:
            return sum(1 for entry in self.mshr if is_valid(entry))
        if queue_type == 1:
            return self.rq.occupancy()
        return 0

    def get_size(self, queue_type: int, address: int) -> int:
        if queue_type == 0:
            return self.mshr_size
        if queue_type == 1:
            return self.rq.size
        return 0

    def print_deadlock(self) -> None:
        if not self.mshr:
            print(f"{self.name} MSHR empty")
            return
        print(f"{self.name} MSHR Entry")
        for j, entry in enumerate(self.mshr):
            print(
                f"[{self.name} MSHR] entry: {j} instr_id: {entry.instr_id}"
                f" address: {entry.address:x} v_address: {entry.v_address:x} type: {int(entry.type)}"
                f" translation_level: {entry.translation_level}"
                f" fill_level: {entry.fill_level} event_cycle: {entry.event_cycle}"
            )