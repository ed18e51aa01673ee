import threading

import pytest

from lbengine.marks import (
    DSR_MARK_BASE,
    DSR_MARK_SIZE,
    FWM_ALLOC_BASE,
    FWM_ALLOC_SIZE,
    AllocatorExhausted,
    MarkAllocator,
)


def test_first_mark_is_base():
    alloc = MarkAllocator(FWM_ALLOC_BASE, FWM_ALLOC_SIZE)
    assert alloc.get() == FWM_ALLOC_BASE
    assert alloc.get() == FWM_ALLOC_BASE + 1


def test_pool_holds_size_marks():
    alloc = MarkAllocator(DSR_MARK_BASE, DSR_MARK_SIZE)
    assert len(alloc) == DSR_MARK_SIZE
    marks = list(alloc)
    assert marks[0] == DSR_MARK_BASE
    assert marks[-1] == DSR_MARK_BASE + DSR_MARK_SIZE - 1


def test_marks_are_handed_out_in_order_until_exhausted():
    base, size = 10, 4
    alloc = MarkAllocator(base, size)
    taken = [alloc.get() for _ in range(size)]
    assert taken == list(range(base, base + size))
    assert len(alloc) == 0
    with pytest.raises(AllocatorExhausted):
        alloc.get()


def test_returned_mark_goes_to_the_back():
    alloc = MarkAllocator(100, 3)
    first = alloc.get()
    alloc.put(first)
    assert list(alloc) == [101, 102, first]
    assert alloc.get() == 101


def test_put_after_exhaustion_makes_mark_available():
    alloc = MarkAllocator(5, 1)
    mark = alloc.get()
    with pytest.raises(AllocatorExhausted):
        alloc.get()
    alloc.put(mark)
    assert alloc.get() == mark


def test_empty_pool():
    alloc = MarkAllocator(FWM_ALLOC_BASE, 0)
    assert len(alloc) == 0
    with pytest.raises(AllocatorExhausted):
        alloc.get()


def test_negative_size_rejected():
    with pytest.raises(ValueError):
        MarkAllocator(FWM_ALLOC_BASE, -1)


def test_concurrent_gets_return_unique_marks():
    base, size = 1000, 400
    alloc = MarkAllocator(base, size)
    results = []
    lock = threading.Lock()

    def worker():
        got = [alloc.get() for _ in range(size // 4)]
        with lock:
            results.extend(got)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(results) == list(range(base, base + size))
    assert len(alloc) == 0