import threading
from datetime import timedelta

from safetrip.Services.position_cache import PositionCache

from conftest import T0


def entry(minutes, **fields):
    return {"latitude": 40.42, "longitude": -3.70, "recorded_at": T0 + timedelta(minutes=minutes), **fields}


def test_compare_and_set_only_moves_forward():
    cache = PositionCache()

    assert cache.compare_and_set("t1", entry(10, latitude=1.0))
    assert not cache.compare_and_set("t1", entry(5, latitude=2.0))
    assert not cache.compare_and_set("t1", entry(10, latitude=3.0))
    assert cache.compare_and_set("t1", entry(11, latitude=4.0))

    assert cache.get("t1")["latitude"] == 4.0


def test_get_returns_a_copy():
    cache = PositionCache()
    cache.compare_and_set("t1", entry(1))

    cache.get("t1")["latitude"] = 0.0
    assert cache.get("t1")["latitude"] == 40.42
    assert cache.get("unknown") is None


def test_lru_eviction():
    cache = PositionCache(max_size=2)
    cache.compare_and_set("t1", entry(1))
    cache.compare_and_set("t2", entry(1))
    cache.get("t1")  # t2 is now least recently used
    cache.compare_and_set("t3", entry(1))

    assert cache.get("t2") is None
    assert cache.get("t1") is not None
    assert cache.get("t3") is not None
    assert cache.stats()["size"] == 2


def test_invalidate_and_clear():
    cache = PositionCache()
    cache.compare_and_set("t1", entry(1))
    cache.compare_and_set("t2", entry(2))

    assert cache.invalidate("t1") is True
    assert cache.invalidate("t1") is False
    assert cache.stats()["newest_recorded_at"] == T0 + timedelta(minutes=2)

    cache.clear()
    assert cache.stats() == {"size": 0, "max_size": 10000, "newest_recorded_at": None}


def test_concurrent_writers_end_at_newest():
    cache = PositionCache()
    barrier = threading.Barrier(8)

    def writer(offset):
        barrier.wait()
        for minute in range(offset, 400, 8):
            cache.compare_and_set("t1", entry(minute, latitude=float(minute)))

    threads = [threading.Thread(target=writer, args=(i,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert cache.get("t1")["recorded_at"] == T0 + timedelta(minutes=399)
    assert cache.get("t1")["latitude"] == 399.0
