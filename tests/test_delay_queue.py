import pytest

from uarchsim.delay_queue import DelayQueue


def test_member_ready_after_latency():
    dq = DelayQueue(4, 2)
    dq.push_back("x")
    assert not dq.has_ready()
    dq.operate()
    assert not dq.has_ready()
    dq.operate()
    assert dq.has_ready()
    assert list(dq.ready()) == ["x"]


def test_push_back_ready_needs_one_operate():
    dq = DelayQueue(4, 5)
    dq.push_back_ready("y")
    assert not dq.has_ready()
    dq.operate()
    assert dq.has_ready()
    assert dq.front() == "y"


def test_full_and_overflow():
    dq = DelayQueue(2, 1)
    dq.push_back(1)
    dq.push_back(2)
    assert dq.full()
    with pytest.raises(IndexError):
        dq.push_back(3)


def test_pop_reduces_ready_and_keeps_order():
    dq = DelayQueue(4, 1)
    for value in [1, 2, 3]:
        dq.push_back(value)
    dq.operate()
    popped = []
    while dq.has_ready():
        popped.append(dq.pop_front())
    assert popped == [1, 2, 3]
    assert dq.empty()


def test_bandwidth_limited_drain():
    dq = DelayQueue(10, 1)
    for value in range(6):
        dq.push_back(value)
    dq.operate()
    bandwidth = 4
    taken = []
    while bandwidth > 0 and dq.has_ready():
        taken.append(dq.pop_front())
        bandwidth -= 1
    assert taken == [0, 1, 2, 3]
    assert dq.occupancy() == 2
    assert list(dq.ready()) == [4, 5]


def test_later_pushes_not_ready_yet():
    dq = DelayQueue(4, 1)
    dq.push_back("old")
    dq.operate()
    dq.push_back("new")
    assert list(dq.ready()) == ["old"]
    dq.operate()
    assert list(dq.ready()) == ["old", "new"]


def test_pop_empty_raises():
    with pytest.raises(IndexError):
        DelayQueue(1, 1).pop_front()


def test_clear_resets_readiness():
    dq = DelayQueue(3, 0)
    dq.push_back("a")
    dq.operate()
    dq.clear()
    assert dq.empty()
    assert not dq.has_ready()
    assert len(dq) == 0


def test_front_and_back():
    dq = DelayQueue(3, 1)
    dq.push_back("a")
    dq.push_back("b")
    assert dq.front() == "a"
    assert dq.back() == "b"
    assert list(dq) == ["a", "b"]