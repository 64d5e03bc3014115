import threading
import time

import pytest

from superview.errors import LockTimeoutError, ViewServiceError
from superview.locking.locking_backend import LockingBackend
from superview.locking.name_lock import NameLock, _local_locks, name_resource
from superview.redis_catalog import RedisCatalog


# ---------------------------
# Backend selection
# ---------------------------

@pytest.mark.parametrize("raw, expected", [
    (None, LockingBackend.LOCAL),
    ("", LockingBackend.LOCAL),
    ("local", LockingBackend.LOCAL),
    ("  Redis ", LockingBackend.REDIS),
    ("memcached", LockingBackend.LOCAL),
])
def test_backend_from_str(raw, expected):
    assert LockingBackend.from_str(raw) is expected


def test_backend_from_str_default():
    assert LockingBackend.from_str("nope", default=LockingBackend.REDIS) is LockingBackend.REDIS


def test_name_resource():
    assert name_resource("sales", 3) == "view_name:3:sales"


# ---------------------------
# Local (in-process) name locks
# ---------------------------

def test_local_lock_is_exclusive_per_name():
    lock = NameLock(backend=LockingBackend.LOCAL, timeout_seconds=1)
    with lock.hold("sales", 1):
        other = NameLock(backend=LockingBackend.LOCAL, timeout_seconds=1)
        start = time.monotonic()
        assert other.acquire("sales", 1) is None, "Should not acquire a name that is already locked"
        assert time.monotonic() - start >= 0.9
        # Different name or project is independent.
        token = other.acquire("sales", 2)
        assert token is not None
        other.release("sales", 2, token)
    token = lock.acquire("sales", 1)
    assert token is not None, "Lock should be acquired after the previous holder released it"
    lock.release("sales", 1, token)


def test_local_lock_entries_are_dropped():
    lock = NameLock(backend=LockingBackend.LOCAL, timeout_seconds=1)
    with lock.hold("transient", 1):
        assert name_resource("transient", 1) in _local_locks._locks
    assert name_resource("transient", 1) not in _local_locks._locks


def test_hold_times_out():
    lock = NameLock(backend=LockingBackend.LOCAL, timeout_seconds=1)
    with lock.hold("busy", 1):
        with pytest.raises(LockTimeoutError) as exc:
            with NameLock(backend=LockingBackend.LOCAL, timeout_seconds=1).hold("busy", 1):
                pass
    assert isinstance(exc.value, ViewServiceError)
    assert isinstance(exc.value, TimeoutError)


def test_local_lock_serialises_threads():
    lock = NameLock(backend=LockingBackend.LOCAL, timeout_seconds=5)
    inside = []
    overlaps = []
    guard = threading.Lock()

    def worker():
        with lock.hold("shared", 1):
            with guard:
                inside.append(1)
                if len(inside) > 1:
                    overlaps.append(True)
            time.sleep(0.02)
            with guard:
                inside.pop()

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert overlaps == []


# ---------------------------
# Redis-based name locks
# ---------------------------

def test_redis_lock_context_manager(fake_redis):
    catalog = RedisCatalog(client=fake_redis)
    lock1 = NameLock(backend=LockingBackend.REDIS, redis_catalog=catalog, timeout_seconds=1)
    with lock1.hold("sales", 1):
        lock2 = NameLock(backend=LockingBackend.REDIS, redis_catalog=catalog, timeout_seconds=1)
        assert lock2.acquire("sales", 1) is None, "Should not acquire Redis lock if name is already locked"
    token = lock2.acquire("sales", 1)
    assert token is not None, "Redis lock should be acquired after previous lock is released"
    lock2.release("sales", 1, token)
    assert fake_redis.get("superview:lock:view_name:1:sales") is None


def test_redis_lock_release_after_expiry(fake_redis):
    catalog = RedisCatalog(client=fake_redis)
    lock = NameLock(backend=LockingBackend.REDIS, redis_catalog=catalog, timeout_seconds=1, lock_duration_seconds=2)
    token = lock.acquire("sales", 1)
    fake_redis.advance(3)
    stolen = catalog.acquire_simple_lock(name_resource("sales", 1), ttl_s=10, timeout_s=1)
    assert stolen is not None
    # The stale holder must not delete the new holder's key.
    lock.release("sales", 1, token)
    assert fake_redis.get("superview:lock:view_name:1:sales") == stolen
