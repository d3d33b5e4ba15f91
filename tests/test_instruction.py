import pytest

from uarchsim.instruction import (
    NUM_INSTR_DESTINATIONS_SPARC,
    NUM_INSTR_SOURCES,
    AccessType,
    Block,
    BranchType,
    CloudsuiteInstr,
    InputInstr,
    LsqEntry,
    MemoryRequestConsumer,
    MemoryRequestProducer,
    OooModelInstr,
    Packet,
    packet_dep_merge,
)
from uarchsim.util import UINT64_MASK, is_valid


def _sample_input():
    return InputInstr(
        ip=0x401000,
        is_branch=1,
        branch_taken=1,
        destination_registers=[26, 6],
        source_registers=[26, 6, 0, 0],
        destination_memory=[0x7FFF0000, 0],
        source_memory=[0x1000, 0x2000, 0, 0],
    )


def test_input_record_size_matches_format():
    assert InputInstr.SIZE == 64
    assert len(_sample_input().pack()) == InputInstr.SIZE


def test_input_round_trip():
    record = _sample_input()
    assert InputInstr.unpack(record.pack()) == record


def test_input_layout_is_little_endian_without_padding():
    data = InputInstr(ip=0x0102030405060708, is_branch=1, destination_memory=[5, 0]).pack()
    assert data[:8] == (0x0102030405060708).to_bytes(8, "little")
    assert data[8] == 1
    assert data[16:24] == (5).to_bytes(8, "little")


def test_cloudsuite_record_size_and_round_trip():
    record = CloudsuiteInstr(
        ip=0x55,
        destination_registers=[1, 2, 3, 4],
        destination_memory=[9, 8, 7, 6],
        source_memory=[1, 0, 0, 0],
        asid=[3, 4],
    )
    data = record.pack()
    assert CloudsuiteInstr.SIZE == 96
    assert len(data) == CloudsuiteInstr.SIZE
    assert CloudsuiteInstr.unpack(data) == record
    assert data[24:32] == (9).to_bytes(8, "little")
    assert list(data[88:90]) == [3, 4]


def test_unpack_wrong_length_raises():
    with pytest.raises(ValueError):
        InputInstr.unpack(b"\x00" * 10)
    with pytest.raises(ValueError):
        CloudsuiteInstr.unpack(b"\x00" * InputInstr.SIZE)


def test_pack_wrong_list_length_raises():
    with pytest.raises(ValueError):
        InputInstr(destination_registers=[1, 2, 3]).pack()


def test_from_input_trace_copies_and_pads():
    record = _sample_input()
    model = OooModelInstr.from_trace(3, record)
    assert model.ip == record.ip
    assert model.is_branch is True
    assert model.branch_taken is True
    assert model.destination_registers == [26, 6, 0, 0]
    assert len(model.destination_memory) == NUM_INSTR_DESTINATIONS_SPARC
    assert model.destination_memory[:2] == record.destination_memory
    assert model.source_memory == record.source_memory
    assert len(model.source_registers) == NUM_INSTR_SOURCES
    assert model.asid == [3, 3]


def test_from_cloudsuite_trace_keeps_default_asid():
    record = CloudsuiteInstr(ip=7, asid=[1, 2], destination_registers=[1, 2, 3, 4])
    model = OooModelInstr.from_trace(0, record)
    assert model.asid == [255, 255]
    assert model.destination_registers == [1, 2, 3, 4]


def test_from_trace_rejects_other_types():
    with pytest.raises(TypeError):
        OooModelInstr.from_trace(0, object())


def test_model_instr_defaults():
    model = OooModelInstr()
    assert model.branch_type == BranchType.NOT_BRANCH
    assert model.lq_index == [None] * NUM_INSTR_SOURCES
    assert model.registers_instrs_depend_on_me == []


def test_packet_validity_follows_address():
    packet = Packet()
    assert not is_valid(packet)
    assert packet.event_cycle == UINT64_MASK
    packet.address = 0x40
    assert is_valid(packet)


def test_lsq_entry_validity_follows_virtual_address():
    entry = LsqEntry()
    assert not entry.valid
    assert entry.producer_id == UINT64_MASK
    entry.virtual_address = 0x100
    assert entry.valid


def test_block_defaults():
    block = Block()
    assert block.valid is False
    assert block.lru == (2**32 - 1) >> 1


def test_access_type_values():
    assert AccessType(0) is AccessType.LOAD
    assert AccessType(1) is AccessType.RFO
    assert AccessType(2) is AccessType.PREFETCH
    assert AccessType(3) is AccessType.WRITEBACK
    assert AccessType(4).name == "TRANSLATION"
    with pytest.raises(ValueError):
        AccessType(5)


def test_packet_dep_merge_sorted_unique():
    dest = [1, 3, 5]
    packet_dep_merge(dest, [2, 3, 6])
    assert dest == sorted(set([1, 3, 5, 2, 6]))


def test_packet_dep_merge_empty_source():
    dest = [4, 8]
    packet_dep_merge(dest, [])
    assert dest == [4, 8]


def test_consumer_is_abstract():
    with pytest.raises(TypeError):
        MemoryRequestConsumer(1)


def test_concrete_consumer_and_producer():
    class Sink(MemoryRequestConsumer):
        def __init__(self):
            super().__init__(4)
            self.seen = []

        def add_rq(self, packet):
            self.seen.append(packet)
            return len(self.seen)

        def add_wq(self, packet):
            return self.add_rq(packet)

        def add_pq(self, packet):
            return self.add_rq(packet)

        def get_occupancy(self, queue_type, address):
            return len(self.seen)

        def get_size(self, queue_type, address):
            return 8

    class Source(MemoryRequestProducer):
        def __init__(self, lower):
            super().__init__(lower)
            self.returned = []

        def return_data(self, packet):
            self.returned.append(packet)

    sink = Sink()
    source = Source(sink)
    assert source.lower_level.fill_level == 4
    assert source.lower_level.add_rq(Packet(address=64)) == 1
    assert sink.get_occupancy(0, 0) == 1
    source.return_data(sink.seen[0])
    assert source.returned[0].address == 64