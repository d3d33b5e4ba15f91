# uarchsim

Components for a trace-driven, cycle-level model of a processor's memory
system and front end, plus a converter for CVP-1 traces.

## What is inside

- `uarchsim.util`: bit helpers (`lg2`, `bitmask`, `splice_bits`), entry
  predicates (`is_valid`, `eq_addr`), LRU helpers (`lru_victim`,
  `lru_update`), sort keys (`event_cycle_key`, `by_next_operate`), the
  `Deadlock` exception, and `Operable`, the base class for clocked
  components. `Operable.tick()` calls `operate()` and skips cycles when the
  component runs on a slower clock.
- `uarchsim.circular_buffer.CircularBuffer`: a fixed-capacity FIFO that can
  be indexed, iterated forwards and in reverse. Pushing onto a full buffer or
  popping an empty one raises `IndexError`.
- `uarchsim.delay_queue.DelayQueue`: a fixed-capacity queue whose entries
  become ready only after a set number of `operate()` calls. `ready()`
  iterates over the entries that are ready; `push_back_ready()` adds an entry
  with no delay.
- `uarchsim.instruction`: the binary trace record formats (`InputInstr`,
  `CloudsuiteInstr`, each with `pack()` and `unpack()`), the in-flight
  instruction `OooModelInstr` (built from a record with `from_trace`),
  `Packet`, `LsqEntry`, `Block`, the `BranchType` and `AccessType` enums,
  `packet_dep_merge`, and the abstract `MemoryRequestConsumer` /
  `MemoryRequestProducer` interfaces.
- `uarchsim.vmem.VirtualMemory`: maps virtual pages to shuffled physical pages
  and allocates page-table pages on first touch. `va_to_pa` and `get_pte_pa`
  return the physical address and whether a new mapping was made.
- `uarchsim.ptw`: `PageTableWalker`, which walks the page table one level per
  memory access through a lower-level `MemoryRequestConsumer`, with four
  `PagingStructureCache`s; its geometry comes from a `PtwConfig`.
- `uarchsim.tracereader`: `InputTraceReader` and `CloudsuiteTraceReader`
  (or `get_tracereader`) stream instructions out of `.gz` or `.xz` traces,
  from a local path or an `http` URL, and reopen the trace when it runs out.
  Each instruction carries the address of the next one as its branch target.
  A missing trace raises `TraceNotFoundError`.
- `uarchsim.prince`: the PRINCE 64-bit block cipher (`encrypt`, `decrypt`,
  `enc_dec_uint64` and the individual layers).
- `uarchsim.kpcp`: `KpcpTables`, the per-cpu signature table, pattern table
  and global history register of a signature-path prefetcher, with
  `st_update`, `st_check`, `pt_update` and `get_new_signature`.
- `uarchsim.cvp`: reading CVP-1 trace records (`CvpRecord`), classifying
  branches, remapping data addresses away from code pages
  (`AddressRemapper`) and converting whole traces (`convert`).

## Example

```python
from uarchsim.delay_queue import DelayQueue

queue = DelayQueue(size=4, latency=2)
queue.push_back("request")
queue.operate()
assert not queue.has_ready()
queue.operate()
assert queue.has_ready()
```

```python
from uarchsim.prince import encrypt, decrypt

key = bytes(16)
block = bytes(8)
assert decrypt(encrypt(block, key), key) == block
```

## Converting CVP-1 traces

```
cvp2trace input.gz > output.trace
cvp2trace -v input.xz > output.trace
```

The input can be compressed with gzip or xz, or left uncompressed. Pass `-`
or nothing to read from standard input. Converted records go to standard
output; progress messages, per-kind counts and, with `-v`, a description of
each instruction go to standard error.

## What it does not do

The package provides the pieces listed above and nothing more. It has no
out-of-order core model, no caches, no DRAM controller, no branch predictor
and no command that runs a simulation; the page table walker needs a
`MemoryRequestConsumer` to be supplied by the caller. It does not capture
traces from running programs: the only command is the CVP-1 converter.

## Running the tests

```
pip install .[test]
pytest
```