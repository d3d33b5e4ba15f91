"""Virtual-to-physical address translation with on-demand page allocation."""

from __future__ import annotations

import random
from collections import deque

from uarchsim.util import bitmask, lg2, splice_bits

LOG2_PAGE_SIZE = 12
PAGE_SIZE = 1 << LOG2_PAGE_SIZE
LOG2_BLOCK_SIZE = 6
BLOCK_SIZE = 1 << LOG2_BLOCK_SIZE

# Physical memory below this address is never handed out.
VMEM_RESERVE_CAPACITY = 1048576

PTE_BYTES = 8


class VirtualMemory:
    """Allocates physical pages and page-table pages as addresses are first touched.

    ``capacity`` and ``pg_size`` are in bytes; ``capacity`` must be a multiple
    of the page size.
    """

    def __init__(
        self,
        capacity: int,
        pg_size: int,
        page_table_levels: int,
        random_seed: int,
        minor_fault_penalty: int,
    ) -> None:
        if capacity % PAGE_SIZE:
            raise ValueError(f"capacity {capacity} is not a multiple of the page size {PAGE_SIZE}")
        if pg_size != 1 << lg2(pg_size) or pg_size <= 1024:
            raise ValueError(f"page-table page size {pg_size} must be a power of two above 1024")
        count = (capacity - VMEM_RESERVE_CAPACITY) // PAGE_SIZE
        if count <= 0:
            raise ValueError("capacity leaves no physical pages beyond the reserved region")

        self.minor_fault_penalty = minor_fault_penalty
        self.pt_levels = page_table_levels
        self.page_size = pg_size

        pages = list(range(VMEM_RESERVE_CAPACITY, VMEM_RESERVE_CAPACITY + count * PAGE_SIZE, PAGE_SIZE))
        random.Random(random_seed).shuffle(pages)
        self.ppage_free_list: deque[int] = deque(pages)

        self._vpage_to_ppage: dict[tuple[int, int], int] = {}
        self._page_table: dict[tuple[int, int, int], int] = {}
        self._next_pte_page = self._take_page()

    def _take_page(self) -> int:
        if not self.ppage_free_list:
            raise MemoryError("physical memory exhausted")
        return self.ppage_free_list.popleft()

    def shamt(self, level: int) -> int:
        """Bit position at which the index for ``level`` begins."""
        return LOG2_PAGE_SIZE + lg2(self.page_size // PTE_BYTES) * level

    def get_offset(self, vaddr: int, level: int) -> int:
        """Index of ``vaddr`` within a page-table page at ``level``."""
        return (vaddr >> self.shamt(level)) & bitmask(lg2(self.page_size // PTE_BYTES))

    def va_to_pa(self, cpu_num: int, vaddr: int) -> tuple[int, bool]:
        """Translate a virtual address; the flag is true when a page was newly mapped."""
        key = (cpu_num, vaddr >> LOG2_PAGE_SIZE)
        fault = key not in self._vpage_to_ppage
        if fault:
            self._vpage_to_ppage[key] = self._take_page()
        return splice_bits(self._vpage_to_ppage[key], vaddr, LOG2_PAGE_SIZE), fault

    def get_pte_pa(self, cpu_num: int, vaddr: int, level: int) -> tuple[int, bool]:
        """Physical address of the page-table entry for ``vaddr`` at ``level``."""
        key = (cpu_num, vaddr >> self.shamt(level + 1), level)
        fault = key not in self._page_table
        if fault:
            self._page_table[key] = self._next_pte_page
            self._next_pte_page += self.page_size
            if self._next_pte_page % PAGE_SIZE:
                self._next_pte_page = self._take_page()
        return (
            splice_bits(self._page_table[key], self.get_offset(vaddr, level) * PTE_BYTES, lg2(self.page_size)),
            fault,
        )