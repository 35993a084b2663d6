import pytest

from scpileup.errors import AllocationError, PileupError
from scpileup.models import ObservationUnit
from scpileup.pool import ObjectPool, PileupPools, StringPool


def test_acquire_reuses_elements_after_reset() -> None:
    pool = ObjectPool(list, list.clear)
    a = pool.acquire()
    b = pool.acquire()
    a.append(1)
    b.append(2)
    assert pool.in_use == 2 and pool.capacity == 2

    pool.reset()
    assert pool.in_use == 0
    assert pool.capacity == 2
    assert pool.acquire() is a
    assert pool.acquire() is b
    assert a == [] and b == []
    pool.acquire()
    assert pool.capacity == 3


def test_clear_called_only_for_used_elements() -> None:
    cleared = []
    pool = ObjectPool(list, cleared.append)
    for _ in range(3):
        pool.acquire()
    pool.reset()
    pool.acquire()
    pool.reset()
    assert len(cleared) == 4


def test_max_size_raises_allocation_error() -> None:
    pool = ObjectPool(ObservationUnit, max_size=2, name="units")
    pool.acquire()
    pool.acquire()
    with pytest.raises(AllocationError) as ei:
        pool.acquire()
    assert isinstance(ei.value, MemoryError)
    assert ei.value.pool == "units"
    assert ei.value.size == 2

    # a reset frees the slots again
    pool.reset()
    pool.acquire()


def test_factory_memory_error_is_wrapped() -> None:
    def factory():
        raise MemoryError()

    pool = ObjectPool(factory)
    with pytest.raises(AllocationError):
        pool.acquire()
    assert pool.capacity == 0


def test_destroyed_pool_refuses_acquire() -> None:
    pool = ObjectPool(list)
    pool.acquire()
    pool.destroy()
    assert pool.capacity == 0
    with pytest.raises(PileupError):
        pool.acquire()


def test_string_pool_intern() -> None:
    pool = StringPool()
    assert pool.intern("ACGTACGT") == "ACGTACGT"
    assert pool.intern(b"TTTT") == "TTTT"
    assert len(pool) == 2
    pool.reset()
    assert len(pool) == 0
    assert pool.capacity == 2


def test_pileup_pools_reset_all() -> None:
    pools = PileupPools()
    pools.units.acquire()
    pools.lists.acquire().append(1)
    pools.strings.intern("AAA")
    pools.reset()
    assert (pools.units.in_use, pools.lists.in_use, pools.strings.in_use) == (0, 0, 0)
    assert pools.lists.acquire() == []


def test_double_reset_matches_single_reset() -> None:
    cleared = []
    pool = ObjectPool(list, cleared.append)
    first = pool.acquire()
    pool.acquire()
    pool.reset()
    pool.reset()
    assert len(cleared) == 2
    assert pool.in_use == 0
    assert pool.capacity == 2
    assert pool.acquire() is first
