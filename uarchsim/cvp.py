"""Conversion of CVP-1 value-prediction traces into the simulator's trace format."""

from __future__ import annotations

import argparse
import gzip
import lzma
import sys
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass
from enum import IntEnum
from typing import BinaryIO, Collection, Iterator, Optional, Sequence, TextIO

from uarchsim.instruction import NUM_INSTR_DESTINATIONS, NUM_INSTR_SOURCES, InputInstr
from uarchsim.util import UINT64_MASK

REG_SP = 6
REG_IP = 26
REG_FLAGS = 25
REG_AX = 56

# ARM calls link the return address in X30; returns jump through it.
LINK_REGISTER = 30

_XZ_MAGIC = b"\xfd7zXZ\x00"
_GZIP_MAGIC = b"\x1f\x8b"

# Registers that collide with the simulator's special registers are moved aside.
_REGISTER_REMAP = {REG_IP: 64, REG_SP: 65, REG_FLAGS: 66, 0: 67}

_PAGE_SHIFT = 12
_PAGE_OFFSET_MASK = 0xFFF


class InstClass(IntEnum):
    """Instruction classes of the CVP-1 trace format."""

    aluInstClass = 0
    loadInstClass = 1
    storeInstClass = 2
    condBranchInstClass = 3
    uncondDirectBranchInstClass = 4
    uncondIndirectBranchInstClass = 5
    fpInstClass = 6
    slowAluInstClass = 7
    undefInstClass = 8


class OpType(IntEnum):
    """Branch kinds as classified for conversion."""

    OPTYPE_OP = 2
    OPTYPE_RET_UNCOND = 3
    OPTYPE_JMP_DIRECT_UNCOND = 4
    OPTYPE_JMP_INDIRECT_UNCOND = 5
    OPTYPE_CALL_DIRECT_UNCOND = 6
    OPTYPE_CALL_INDIRECT_UNCOND = 7
    OPTYPE_RET_COND = 8
    OPTYPE_JMP_DIRECT_COND = 9
    OPTYPE_JMP_INDIRECT_COND = 10
    OPTYPE_CALL_DIRECT_COND = 11
    OPTYPE_CALL_INDIRECT_COND = 12
    OPTYPE_ERROR = 13
    OPTYPE_MAX = 14


_BRANCH_CLASSES = frozenset(
    {
        InstClass.condBranchInstClass,
        InstClass.uncondDirectBranchInstClass,
        InstClass.uncondIndirectBranchInstClass,
    }
)

_MEMORY_CLASSES = frozenset({InstClass.loadInstClass, InstClass.storeInstClass})


def is_branch(inst_class: InstClass) -> bool:
    """Whether the instruction class is a branch."""
    return inst_class in _BRANCH_CLASSES


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    data = stream.read(size)
    if len(data) != size:
        raise ValueError(f"truncated trace record: wanted {size} bytes, got {len(data)}")
    return data


def _read_uint(stream: BinaryIO, size: int) -> int:
    return int.from_bytes(_read_exact(stream, size), "little")


@dataclass(frozen=True)
class CvpRecord:
    """One record of a CVP-1 trace."""

    pc: int = 0
    inst_class: InstClass = InstClass.undefInstClass
    ea: int = 0
    target: int = 0
    access_size: int = 0
    taken: int = 0
    input_regs: tuple[int, ...] = ()
    output_regs: tuple[int, ...] = ()
    output_values: tuple[int, ...] = ()

    @classmethod
    def read(cls, stream: BinaryIO) -> Optional["CvpRecord"]:
        """Read one record; None at the end of the trace."""
        head = stream.read(8)
        if len(head) != 8:
            return None
        pc = int.from_bytes(head, "little")

        raw_class = _read_uint(stream, 1)
        try:
            inst_class = InstClass(raw_class)
        except ValueError:
            raise ValueError(f"unknown instruction class {raw_class}") from None

        ea = target = access_size = taken = 0
        if inst_class in _MEMORY_CLASSES:
            ea = _read_uint(stream, 8)
            access_size = _read_uint(stream, 1)
        elif inst_class in _BRANCH_CLASSES:
            taken = _read_uint(stream, 1)
            if taken:
                target = _read_uint(stream, 8)
            else:
                # A branch that falls through continues at the next instruction.
                target = (pc + 4) & UINT64_MASK
                if inst_class != InstClass.condBranchInstClass:
                    raise ValueError(f"unconditional branch at {pc:#x} recorded as not taken")

        num_inputs = _read_uint(stream, 1)
        input_regs = tuple(_read_exact(stream, num_inputs))
        num_outputs = _read_uint(stream, 1)
        output_regs = tuple(_read_exact(stream, num_outputs))

        values = []
        for name in output_regs:
            if name <= 31 or name == 64:
                values.append(_read_uint(stream, 8))
            elif 32 <= name < 64:
                values.append(_read_uint(stream, 16))
            else:
                raise ValueError(f"unknown output register {name}")

        return cls(
            pc=pc,
            inst_class=inst_class,
            ea=ea,
            target=target,
            access_size=access_size,
            taken=taken,
            input_regs=input_regs,
            output_regs=output_regs,
            output_values=tuple(values),
        )


def _records(stream: BinaryIO) -> Iterator[CvpRecord]:
    while (record := CvpRecord.read(stream)) is not None:
        yield record


def open_trace(path: str) -> BinaryIO:
    """Open a trace, plain or xz/gzip compressed; ``-`` reads standard input."""
    if path == "-":
        print("reading from standard input", file=sys.stderr, flush=True)
        return sys.stdin.buffer

    with open(path, "rb") as probe:
        magic = probe.read(6)
    if len(magic) != 6:
        raise ValueError(f"trace file too short to identify: {path}")

    if magic == _XZ_MAGIC:
        print(f'opening xz file "{path}"', file=sys.stderr, flush=True)
        return lzma.open(path, "rb")
    if magic[:2] == _GZIP_MAGIC:
        print(f'opening gz file "{path}"', file=sys.stderr, flush=True)
        return gzip.open(path, "rb")
    print(f'opening file "{path}"', file=sys.stderr, flush=True)
    return open(path, "rb")


@contextmanager
def _trace(path: str) -> Iterator[BinaryIO]:
    stream = open_trace(path)
    try:
        yield stream
    finally:
        if stream is not sys.stdin.buffer:
            stream.close()


def scan_pages(path: str) -> tuple[set[int], set[int]]:
    """Collect the code pages and data pages the trace touches."""
    print("preprocessing to find code and data pages...", file=sys.stderr, flush=True)
    code_pages: set[int] = set()
    data_pages: set[int] = set()
    with _trace(path) as stream:
        for count, record in enumerate(_records(stream), start=1):
            code_pages.add(record.pc >> _PAGE_SHIFT)
            if record.inst_class in _MEMORY_CLASSES:
                data_pages.add(record.ea >> _PAGE_SHIFT)
            if count % 10_000_000 == 0:
                print(".", end="", file=sys.stderr, flush=True)
                if count % 600_000_000 == 0:
                    print(file=sys.stderr, flush=True)
    print(f"{len(code_pages)} code pages, {len(data_pages)} data pages", file=sys.stderr, flush=True)
    return code_pages, data_pages


class AddressRemapper:
    """Moves data addresses that fall on code pages onto otherwise unused pages."""

    def __init__(self, code_pages: Collection[int], data_pages: Collection[int]) -> None:
        self.code_pages = frozenset(code_pages)
        self.data_pages = frozenset(data_pages)
        self.remapped_pages: dict[int, int] = {}
        self.bump_page = 0x1000
        self.num_allocs = 0

    def transform(self, address: int) -> int:
        """Return ``address`` relocated so that it does not overlap code."""
        page = address >> _PAGE_SHIFT
        new_page = page
        if page in self.code_pages:
            new_page = self.remapped_pages.get(page, 0)
            if new_page == 0:
                self.num_allocs += 1
                print(f"[{self.num_allocs}]", end="", file=sys.stderr, flush=True)
                new_page = self.bump_page
                while new_page in self.code_pages or new_page in self.data_pages:
                    new_page += 1
                self.bump_page = new_page + 1
                self.remapped_pages[page] = new_page
        return ((new_page << _PAGE_SHIFT) | (address & _PAGE_OFFSET_MASK)) & UINT64_MASK


def classify_branch(record: CvpRecord) -> OpType:
    """Kind of branch a record represents; OPTYPE_OP for non-branches."""
    if not is_branch(record.inst_class):
        return OpType.OPTYPE_OP
    if record.inst_class == InstClass.condBranchInstClass:
        return OpType.OPTYPE_JMP_DIRECT_COND
    if not record.target:
        raise ValueError(f"unconditional branch at {record.pc:#x} has no target")

    indirect = record.inst_class == InstClass.uncondIndirectBranchInstClass
    if record.output_regs == (LINK_REGISTER,):
        kind = OpType.OPTYPE_CALL_INDIRECT_UNCOND if indirect else OpType.OPTYPE_CALL_DIRECT_UNCOND
    else:
        kind = OpType.OPTYPE_JMP_INDIRECT_UNCOND if indirect else OpType.OPTYPE_JMP_DIRECT_UNCOND
    if record.input_regs == (LINK_REGISTER,):
        kind = OpType.OPTYPE_RET_UNCOND
    return kind


# Branch register usage: (taken always, destination registers, source registers).
_BRANCH_SHAPES: dict[OpType, tuple[bool, tuple[int, ...], tuple[int, ...]]] = {
    OpType.OPTYPE_JMP_DIRECT_UNCOND: (False, (REG_IP,), ()),
    OpType.OPTYPE_JMP_DIRECT_COND: (False, (REG_IP,), (REG_IP, REG_FLAGS)),
    OpType.OPTYPE_CALL_INDIRECT_UNCOND: (True, (REG_IP, REG_SP), (REG_IP, REG_SP, REG_AX)),
    OpType.OPTYPE_CALL_DIRECT_UNCOND: (True, (REG_IP, REG_SP), (REG_IP, REG_SP)),
    OpType.OPTYPE_JMP_INDIRECT_UNCOND: (True, (REG_IP,), (REG_AX,)),
    OpType.OPTYPE_RET_UNCOND: (True, (REG_IP, REG_SP), (REG_SP,)),
}


def _pad(values: Sequence[int], length: int) -> list[int]:
    return list(values) + [0] * (length - len(values))


def _remap_register(name: int) -> int:
    return _REGISTER_REMAP.get(name, name)


def _effective_outputs(record: CvpRecord) -> tuple[int, ...]:
    return record.output_regs or (0,)


def _effective_inputs(record: CvpRecord) -> tuple[int, ...]:
    return record.input_regs[:NUM_INSTR_SOURCES]


def convert_record(record: CvpRecord, remapper: AddressRemapper) -> InputInstr:
    """Build the simulator's trace record for one CVP record."""
    kind = classify_branch(record)
    if kind != OpType.OPTYPE_OP:
        try:
            always_taken, destinations, sources = _BRANCH_SHAPES[kind]
        except KeyError:
            raise ValueError(f"unsupported branch kind {kind.name}") from None
        return InputInstr(
            ip=record.pc,
            is_branch=1,
            branch_taken=1 if always_taken else record.taken,
            destination_registers=_pad(destinations, NUM_INSTR_DESTINATIONS),
            source_registers=_pad(sources, NUM_INSTR_SOURCES),
        )

    destination_memory = [0] * NUM_INSTR_DESTINATIONS
    source_memory = [0] * NUM_INSTR_SOURCES
    if record.inst_class == InstClass.loadInstClass:
        source_memory[0] = remapper.transform(record.ea)
    elif record.inst_class == InstClass.storeInstClass:
        destination_memory[0] = remapper.transform(record.ea)
    elif record.inst_class not in (InstClass.aluInstClass, InstClass.fpInstClass, InstClass.slowAluInstClass):
        raise ValueError(f"cannot convert instruction class {record.inst_class.name}")

    # Only the first output register is carried over.
    destination = _remap_register(_effective_outputs(record)[0])
    return InputInstr(
        ip=record.pc,
        is_branch=0,
        branch_taken=0,
        destination_registers=_pad((destination,), NUM_INSTR_DESTINATIONS),
        source_registers=_pad([_remap_register(r) for r in _effective_inputs(record)], NUM_INSTR_SOURCES),
        destination_memory=destination_memory,
        source_memory=source_memory,
    )


_CLASS_LABELS = {
    InstClass.aluInstClass: "ALU",
    InstClass.fpInstClass: "FP",
    InstClass.slowAluInstClass: "SLOWALU",
}


def _describe(index: int, record: CvpRecord, kind: OpType) -> str:
    text = f"{index} {record.pc:x} "
    if kind != OpType.OPTYPE_OP:
        return text + f"{kind.name} {record.target:x}"
    if record.inst_class == InstClass.loadInstClass:
        text += f"LOAD (0x{record.ea:x})"
    elif record.inst_class == InstClass.storeInstClass:
        text += f"STORE (0x{record.ea:x})"
    else:
        text += _CLASS_LABELS.get(record.inst_class, "")
    text += "".join(f" I{r}" for r in _effective_inputs(record))
    text += "".join(f" O{r}" for r in _effective_outputs(record))
    return text


def convert(path: str, out: BinaryIO, verbose: bool = False, err: Optional[TextIO] = None) -> Counter[OpType]:
    """Convert the trace at ``path``, writing records to ``out``; returns counts per kind."""
    err = sys.stderr if err is None else err
    code_pages, data_pages = scan_pages(path)
    remapper = AddressRemapper(code_pages, data_pages)
    counts: Counter[OpType] = Counter()

    n = 0
    old_pc = 0
    converted = 0
    with _trace(path) as stream:
        while True:
            n += 1
            if n % 1_000_000 == 0:
                print(f"{n} instructions", file=err, flush=True)

            record = CvpRecord.read(stream)
            pc = record.pc if record is not None else 0
            if pc == old_pc:
                print("hmm, that's weird", file=err)
            old_pc = pc
            if record is None:
                break

            kind = classify_branch(record)
            out.write(convert_record(record, remapper).pack())
            counts[kind] += 1
            converted += 1

            if verbose:
                print(_describe(converted, record, kind), file=err)

    print(f"converted {n} instructions", file=err)
    for kind in OpType:
        if kind == OpType.OPTYPE_MAX:
            continue
        if counts[kind]:
            print(f"{kind.name} {counts[kind]} {100 * counts[kind] / n:f}%", file=err)
    err.flush()
    return counts


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Command-line entry: convert a CVP trace to standard output."""
    parser = argparse.ArgumentParser(description="Convert a CVP-1 trace to the simulator trace format.")
    parser.add_argument("-v", dest="verbose", action="store_true", help="describe each instruction")
    parser.add_argument("trace", nargs="*", help="trace file, or - for standard input")
    args = parser.parse_args(argv)
    path = args.trace[-1] if args.trace else "-"

    try:
        convert(path, sys.stdout.buffer, args.verbose, sys.stderr)
    except OSError as exc:
        print(f"{path}: {exc.strerror or exc}", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(f"{path}: {exc}", file=sys.stderr)
        return 1
    sys.stdout.buffer.flush()
    return 0