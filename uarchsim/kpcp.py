"""Signature and pattern tables of a signature-path style L2 prefetcher."""

from __future__ import annotations

from dataclasses import dataclass, field

L2_ST_SET = 1
L2_ST_WAY = 256
L2_ST_PRIME = 1
L2_PT_SET = 512
L2_PT_WAY = 4
L2_PT_PRIME = 509
CDELTA_MAX = 16
CSIG_MAX = 16
L2_GHR_TRACK = 8
SIG_SHIFT = 3
SIG_LENGTH = 12
SIG_MASK = (1 << SIG_LENGTH) - 1
BAD_MAX = 7

BLOCKS_PER_PAGE = 64


def _blocks() -> list[int]:
    return [0] * BLOCKS_PER_PAGE


@dataclass
class SignatureEntry:
    """One way of the signature table: the delta history of one page."""

    valid: bool = False
    tag: int = 0
    last_block: int = 0
    signature: int = 0
    lru: int = 0
    l2_pf: list[int] = field(default_factory=_blocks)
    used: list[int] = field(default_factory=_blocks)
    delta: list[int] = field(default_factory=_blocks)
    depth: list[int] = field(default_factory=_blocks)
    dirty: list[int] = field(default_factory=_blocks)
    first_hit: bool = False


@dataclass
class PatternEntry:
    """One way of the pattern table: a delta and its confidence counters."""

    delta: int = 0
    c_delta: int = 0
    c_sig: int = 0


@dataclass
class GlobalHistoryEntry:
    """One entry of the global history register."""

    signature: int = 0
    path_conf: int = 0
    last_block: int = 0
    oop_delta: int = 0
    lru: int = 0


def _signed_delta(delta: int) -> int:
    # Negative deltas are encoded as 64 plus their magnitude.
    return delta if delta >= 0 else BLOCKS_PER_PAGE - delta


def get_new_signature(old_signature: int, curr_delta: int) -> int:
    """Fold ``curr_delta`` into ``old_signature``."""
    if curr_delta == 0:
        return old_signature
    sig_delta = _signed_delta(curr_delta)
    new_signature = ((old_signature << SIG_SHIFT) ^ sig_delta) & SIG_MASK
    if new_signature == 0:
        return sig_delta if sig_delta else old_signature
    return new_signature


@dataclass
class _CpuStats:
    access: int = 0
    hit: int = 0
    invalid: int = 0
    miss: int = 0


class KpcpTables:
    """Per-cpu signature table, pattern table and global history register."""

    def __init__(self, num_cpus: int = 1, log2_page_size: int = 12, log2_block_size: int = 6) -> None:
        if num_cpus < 1:
            raise ValueError("at least one cpu is required")
        self.num_cpus = num_cpus
        self.log2_page_size = log2_page_size
        self.log2_block_size = log2_block_size
        self.st = [
            [[SignatureEntry() for _ in range(L2_ST_WAY)] for _ in range(L2_ST_SET)] for _ in range(num_cpus)
        ]
        self.pt = [
            [[PatternEntry() for _ in range(L2_PT_WAY)] for _ in range(L2_PT_SET)] for _ in range(num_cpus)
        ]
        self.ghr = [[GlobalHistoryEntry() for _ in range(L2_GHR_TRACK)] for _ in range(num_cpus)]
        self.st_stats = [_CpuStats() for _ in range(num_cpus)]
        self.pt_stats = [_CpuStats() for _ in range(num_cpus)]
        self.sig_dist = [[0] * (1 << SIG_LENGTH) for _ in range(num_cpus)]

    def _locate(self, cpu: int, addr: int) -> tuple[list[SignatureEntry], int, int]:
        curr_page = addr >> self.log2_page_size
        table = self.st[cpu][curr_page % L2_ST_PRIME]
        tag = curr_page & 0xFFFF
        curr_block = (addr >> self.log2_block_size) & 0x3F
        return table, tag, curr_block

    def st_update(self, cpu: int, addr: int) -> int:
        """Record an access; returns the way on a signature hit, else -1."""
        table, tag, curr_block = self._locate(cpu, addr)
        stats = self.st_stats[cpu]
        hit = False

        match = next((i for i, e in enumerate(table) if e.valid and e.tag == tag), None)
        if match is not None:
            entry = table[match]
            delta = curr_block - entry.last_block
            old_signature = entry.signature
            if old_signature == 0:
                # The first hit only establishes an initial signature; it
                # has no history to associate with the pattern table.
                entry.signature = _signed_delta(delta) & SIG_MASK
                entry.first_hit = True
                self.sig_dist[cpu][entry.signature] += 1
                entry.last_block = curr_block
                stats.hit += 1
                stats.access += 1
            else:
                hit = True
                entry.first_hit = False
                if delta:
                    self.pt_update(cpu, old_signature, delta)
                    entry.signature = get_new_signature(old_signature, delta)
                    self.sig_dist[cpu][entry.signature] += 1
                    entry.last_block = curr_block
                    stats.hit += 1
                    stats.access += 1
        else:
            match = next((i for i, e in enumerate(table) if not e.valid), None)
            if match is not None:
                entry = table[match]
                entry.valid = True
                entry.tag = tag
                entry.signature = 0
                entry.first_hit = False
                entry.last_block = curr_block
                stats.invalid += 1
                stats.access += 1
            else:
                match = next((i for i, e in enumerate(table) if e.lru == L2_ST_WAY - 1), None)
                if match is None:
                    # No entry has reached the oldest age; evict the oldest one.
                    match = max(range(L2_ST_WAY), key=lambda i: table[i].lru)
                entry = table[match]
                entry.valid = True
                entry.tag = tag
                entry.signature = 0
                entry.first_hit = False
                entry.last_block = curr_block
                entry.l2_pf = _blocks()
                entry.used = _blocks()
                stats.miss += 1
                stats.access += 1

        position = table[match].lru
        for other in table:
            if other.lru < position:
                other.lru += 1
        table[match].lru = 0

        return match if hit else -1

    def st_check(self, cpu: int, addr: int) -> int:
        """Way tracking the page of ``addr``, or -1 when none does."""
        table, tag, _ = self._locate(cpu, addr)
        return next((i for i, e in enumerate(table) if e.valid and e.tag == tag), -1)

    def pt_update(self, cpu: int, signature: int, delta: int) -> None:
        """Associate ``delta`` with ``signature`` in the pattern table."""
        table = self.pt[cpu][signature % L2_PT_PRIME]
        stats = self.pt_stats[cpu]

        table[0].c_sig += 1
        if table[0].c_sig == CSIG_MAX:
            table[0].c_sig = CSIG_MAX >> 1
            for entry in table:
                entry.c_delta >>= 1

        for entry in table:
            if entry.delta == delta:
                entry.c_delta += 1
                stats.hit += 1
                stats.access += 1
                return

        for entry in table:
            if entry.delta == 0:
                entry.delta = delta
                entry.c_delta = 0
                stats.invalid += 1
                stats.access += 1
                return

        victim = min(table, key=lambda e: e.c_delta)
        victim.delta = delta
        victim.c_delta = 0
        stats.miss += 1
        stats.access += 1