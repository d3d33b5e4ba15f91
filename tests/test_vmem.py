import pytest

from uarchsim.util import lg2
from uarchsim.vmem import (
    LOG2_PAGE_SIZE,
    PAGE_SIZE,
    PTE_BYTES,
    VMEM_RESERVE_CAPACITY,
    VirtualMemory,
)

PAGES = 16
CAPACITY = VMEM_RESERVE_CAPACITY + PAGES * PAGE_SIZE


def make(seed=0, pg_size=PAGE_SIZE):
    return VirtualMemory(CAPACITY, pg_size, 5, seed, 200)


def test_first_touch_faults_then_hits():
    vmem = make()
    pa1, fault1 = vmem.va_to_pa(0, 0x12345)
    pa2, fault2 = vmem.va_to_pa(0, 0x12345)
    assert fault1 is True
    assert fault2 is False
    assert pa1 == pa2


def test_offset_preserved_and_page_in_range():
    vmem = make()
    pa, _ = vmem.va_to_pa(0, 0x12345)
    assert pa & (PAGE_SIZE - 1) == 0x12345 & (PAGE_SIZE - 1)
    page = pa - (pa & (PAGE_SIZE - 1))
    assert VMEM_RESERVE_CAPACITY <= page < CAPACITY


def test_same_page_shares_frame():
    vmem = make()
    pa1, _ = vmem.va_to_pa(1, 0x5000)
    pa2, fault = vmem.va_to_pa(1, 0x5FF8)
    assert fault is False
    assert pa1 >> LOG2_PAGE_SIZE == pa2 >> LOG2_PAGE_SIZE


def test_cpus_get_distinct_frames():
    vmem = make()
    pa0, _ = vmem.va_to_pa(0, 0x5000)
    pa1, fault = vmem.va_to_pa(1, 0x5000)
    assert fault is True
    assert pa0 != pa1


def test_free_list_shrinks_and_exhausts():
    vmem = make()
    available = len(vmem.ppage_free_list)
    assert available == PAGES - 1
    frames = {vmem.va_to_pa(0, n << LOG2_PAGE_SIZE)[0] for n in range(available)}
    assert len(frames) == available
    assert len(vmem.ppage_free_list) == 0
    with pytest.raises(MemoryError):
        vmem.va_to_pa(0, available << LOG2_PAGE_SIZE)


def test_same_seed_same_mapping():
    a, b = make(seed=7), make(seed=7)
    assert [a.va_to_pa(0, n << 12)[0] for n in range(5)] == [b.va_to_pa(0, n << 12)[0] for n in range(5)]


def test_shamt_steps_by_entries_per_page():
    vmem = make()
    assert vmem.shamt(0) == LOG2_PAGE_SIZE
    assert vmem.shamt(3) - vmem.shamt(2) == lg2(PAGE_SIZE // PTE_BYTES)


def test_get_offset_extracts_each_level():
    vmem = make()
    vaddr = (7 << vmem.shamt(2)) | (3 << vmem.shamt(1)) | (5 << vmem.shamt(0)) | 0x12
    assert vmem.get_offset(vaddr, 0) == 5
    assert vmem.get_offset(vaddr, 1) == 3
    assert vmem.get_offset(vaddr, 2) == 7


def test_pte_lookup_faults_once_and_places_entry():
    vmem = make()
    vaddr = (4 << vmem.shamt(1)) | (9 << vmem.shamt(0))
    pa1, fault1 = vmem.get_pte_pa(0, vaddr, 1)
    pa2, fault2 = vmem.get_pte_pa(0, vaddr, 1)
    assert fault1 is True and fault2 is False
    assert pa1 == pa2
    assert pa1 & (PAGE_SIZE - 1) == vmem.get_offset(vaddr, 1) * PTE_BYTES


def test_successive_pte_pages_are_consecutive():
    vmem = make()
    first, _ = vmem.get_pte_pa(0, 0, 4)
    second, _ = vmem.get_pte_pa(0, 0, 3)
    base = lambda pa: pa - (pa & (PAGE_SIZE - 1))
    assert base(second) - base(first) == vmem.page_size


def test_small_pte_pages_take_fresh_frames():
    vmem = make(pg_size=2048)
    before = len(vmem.ppage_free_list)
    vmem.get_pte_pa(0, 0, 2)
    assert len(vmem.ppage_free_list) == before - 1


@pytest.mark.parametrize(
    "capacity, pg_size",
    [
        (VMEM_RESERVE_CAPACITY + PAGE_SIZE + 1, PAGE_SIZE),
        (CAPACITY, 3000),
        (CAPACITY, 1024),
        (VMEM_RESERVE_CAPACITY, PAGE_SIZE),
    ],
)
def test_invalid_configuration_rejected(capacity, pg_size):
    with pytest.raises(ValueError):
        VirtualMemory(capacity, pg_size, 5, 0, 200)