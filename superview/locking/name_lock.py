# superview/locking/name_lock.py

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from superview.config.defaults import default, logger
from superview.errors import LockTimeoutError
from superview.locking.locking_backend import LockingBackend


def name_resource(name: str, project_id: int) -> str:
    return f"view_name:{project_id}:{name}"


class _LocalLocks:
    """Process-wide ``threading.Lock`` per resource, dropped when unused."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, List] = {}  # resource -> [lock, users]

    def acquire(self, resource: str, timeout: float) -> bool:
        with self._guard:
            entry = self._locks.setdefault(resource, [threading.Lock(), 0])
            entry[1] += 1
        acquired = entry[0].acquire(timeout=timeout)
        if not acquired:
            self._drop(resource)
        return acquired

    def release(self, resource: str) -> None:
        with self._guard:
            entry = self._locks.get(resource)
            if entry is None:
                return
            entry[0].release()
        self._drop(resource)

    def _drop(self, resource: str) -> None:
        with self._guard:
            entry = self._locks.get(resource)
            if entry is None:
                return
            entry[1] -= 1
            if entry[1] <= 0:
                del self._locks[resource]


_local_locks = _LocalLocks()


class NameLock:
    """
    Advisory lock keyed by ``(name, project_id)``.

    Serialises view-name availability checks so a create and a rename
    racing for the same name cannot both see it as free.

    - LOCAL: in-process locks (single worker process).
    - REDIS: ``SET NX EX`` token on the catalog, safe across processes.
    """

    def __init__(
            self,
            backend: Optional[LockingBackend] = None,
            redis_catalog=None,
            timeout_seconds: Optional[int] = None,
            lock_duration_seconds: Optional[int] = None,
    ):
        self.backend = backend or LockingBackend.from_str(default.LOCK_BACKEND)
        self.timeout_seconds = timeout_seconds or default.DEFAULT_TIMEOUT_SEC
        self.lock_duration_seconds = lock_duration_seconds or default.DEFAULT_LOCK_DURATION_SEC
        self._catalog = redis_catalog

        if self.backend == LockingBackend.REDIS and self._catalog is None:
            # Lazy import keeps the LOCAL backend free of Redis configuration.
            from superview.redis_catalog import RedisCatalog
            self._catalog = RedisCatalog()

    def acquire(self, name: str, project_id: int) -> Optional[str]:
        """Return a release token, or None if the lock was not acquired in time."""
        resource = name_resource(name, project_id)
        if self.backend == LockingBackend.REDIS:
            return self._catalog.acquire_simple_lock(
                resource, ttl_s=self.lock_duration_seconds, timeout_s=self.timeout_seconds,
            )
        if _local_locks.acquire(resource, timeout=self.timeout_seconds):
            return resource
        return None

    def release(self, name: str, project_id: int, token: str) -> None:
        resource = name_resource(name, project_id)
        if self.backend == LockingBackend.REDIS:
            if not self._catalog.release_simple_lock(resource, token):
                logger.warning(f"[name-lock] lock on {resource} expired before release")
            return
        _local_locks.release(resource)

    @contextmanager
    def hold(self, name: str, project_id: int) -> Iterator[None]:
        token = self.acquire(name, project_id)
        if token is None:
            raise LockTimeoutError(f"Unable to acquire name lock for '{name}' in project {project_id}")
        try:
            yield
        finally:
            self.release(name, project_id, token)
