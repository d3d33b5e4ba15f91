import pytest

from uarchsim.kpcp import (
    CSIG_MAX,
    L2_PT_PRIME,
    L2_PT_WAY,
    SIG_MASK,
    KpcpTables,
    get_new_signature,
    GlobalHistoryEntry,
    PatternEntry,
    SignatureEntry,
)


def addr(page, block):
    return (page << 12) | (block << 6)


def test_zero_delta_keeps_signature():
    assert get_new_signature(0x123, 0) == 0x123


def test_negative_delta_encoded_as_64_plus_magnitude():
    assert get_new_signature(0, -1) == get_new_signature(0, 65)
    assert get_new_signature(0, -3) == get_new_signature(0, 67)


def test_signature_fits_mask():
    for old in (0, 1, 0x7FF, SIG_MASK):
        for delta in (-63, -1, 1, 5, 63):
            assert 0 <= get_new_signature(old, delta) <= SIG_MASK


def test_zero_fold_returns_delta():
    assert get_new_signature(1, 8) == 8


def test_default_entries():
    entry = SignatureEntry()
    assert not entry.valid
    assert len(entry.l2_pf) == 64
    assert PatternEntry().c_sig == 0
    assert GlobalHistoryEntry().signature == 0


def test_first_access_fills_invalid_way():
    t = KpcpTables()
    assert t.st_update(0, addr(5, 3)) == -1
    assert t.st_stats[0].invalid == 1
    assert t.st_stats[0].access == 1
    entry = t.st[0][0][0]
    assert entry.valid and entry.tag == 5 and entry.last_block == 3


def test_first_hit_sets_initial_signature():
    t = KpcpTables()
    t.st_update(0, addr(5, 3))
    assert t.st_update(0, addr(5, 7)) == -1
    entry = t.st[0][0][0]
    assert entry.signature == 4
    assert entry.first_hit
    assert entry.last_block == 7
    assert t.st_stats[0].hit == 1
    assert t.pt_stats[0].access == 0


def test_first_hit_negative_delta():
    t = KpcpTables()
    t.st_update(0, addr(9, 10))
    t.st_update(0, addr(9, 8))
    assert t.st[0][0][0].signature == 64 + 2


def test_second_hit_updates_pattern_table():
    t = KpcpTables()
    t.st_update(0, addr(5, 3))
    t.st_update(0, addr(5, 7))
    assert t.st_update(0, addr(5, 9)) == 0
    entry = t.st[0][0][0]
    assert entry.signature == get_new_signature(4, 2)
    assert not entry.first_hit
    assert t.pt_stats[0].invalid == 1
    assert t.pt[0][4 % L2_PT_PRIME][0].delta == 2


def test_repeated_block_after_signature_returns_way_without_counting():
    t = KpcpTables()
    t.st_update(0, addr(5, 3))
    t.st_update(0, addr(5, 7))
    hits = t.st_stats[0].hit
    assert t.st_update(0, addr(5, 7)) == 0
    assert t.st_stats[0].hit == hits
    assert t.st[0][0][0].signature == 4


def test_st_check():
    t = KpcpTables()
    t.st_update(0, addr(1, 0))
    t.st_update(0, addr(2, 0))
    assert t.st_check(0, addr(2, 5)) == 1
    assert t.st_check(0, addr(3, 0)) == -1


def test_cpus_are_independent():
    t = KpcpTables(num_cpus=2)
    t.st_update(1, addr(4, 0))
    assert t.st_check(0, addr(4, 0)) == -1
    assert t.st_check(1, addr(4, 0)) == 0


def test_lru_most_recent_is_zero():
    t = KpcpTables()
    t.st_update(0, addr(1, 0))
    t.st_update(0, addr(2, 0))
    t.st_update(0, addr(1, 1))
    assert t.st[0][0][t.st_check(0, addr(1, 0))].lru == 0


def test_pt_hit_increments_counter():
    t = KpcpTables()
    t.pt_update(0, 10, 3)
    t.pt_update(0, 10, 3)
    table = t.pt[0][10]
    assert table[0].delta == 3
    assert table[0].c_delta == 1
    assert t.pt_stats[0].hit == 1
    assert t.pt_stats[0].invalid == 1
    assert table[0].c_sig == 2


def test_pt_saturation_halves_counters():
    t = KpcpTables()
    for _ in range(CSIG_MAX - 1):
        t.pt_update(0, 10, 3)
    table = t.pt[0][10]
    before = table[0].c_delta
    t.pt_update(0, 10, 3)
    assert table[0].c_sig == CSIG_MAX >> 1
    assert table[0].c_delta == (before >> 1) + 1


def test_pt_miss_replaces_weakest():
    t = KpcpTables()
    for delta in range(1, L2_PT_WAY + 1):
        t.pt_update(0, 20, delta)
    t.pt_update(0, 20, 1)
    t.pt_update(0, 20, 2)
    t.pt_update(0, 20, 4)
    t.pt_update(0, 20, 9)
    deltas = [e.delta for e in t.pt[0][20]]
    assert 9 in deltas
    assert 3 not in deltas
    assert t.pt_stats[0].miss == 1


def test_invalid_cpu_count():
    with pytest.raises(ValueError):
        KpcpTables(num_cpus=0)