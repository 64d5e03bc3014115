# conftest.py
"""
Shared pytest fixtures for the superview test suites.

Auto-discovered by pytest from the project root.
Provides an in-memory Redis fake (with key expiry driven by a manual
clock) and keeps expected warning/error logs out of test output.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import pytest


# ---------------------------------------------------------------------------
# Minimal in-memory Redis fake
# ---------------------------------------------------------------------------

class FakePipeline:
    """Buffers commands and executes them sequentially."""

    def __init__(self, store: "FakeRedis"):
        self._store = store
        self._cmds: list = []

    def __enter__(self):
        return self

    def __exit__(self, *args):
        pass

    def __getattr__(self, name):
        def _queue(*args, **kwargs):
            self._cmds.append((name, args, kwargs))
            return self
        return _queue

    def execute(self):
        results = [getattr(self._store, op)(*args, **kwargs) for op, args, kwargs in self._cmds]
        self._cmds.clear()
        return results


class FakeScript:
    """Python stand-in for the compare-and-delete lock release script."""

    def __init__(self, store: "FakeRedis", lua_src: str):
        self._store = store
        self._src = lua_src

    def __call__(self, keys=None, args=None):
        keys = keys or []
        args = args or []
        if "DEL" in self._src and "GET" in self._src:
            if self._store.get(keys[0]) == args[0]:
                self._store.delete(keys[0])
                return 1
            return 0
        raise NotImplementedError(self._src)


class FakeRedis:
    """Minimal in-memory Redis mock (decode_responses=True semantics)."""

    def __init__(self):
        self._data: Dict[str, Any] = {}
        self._expires: Dict[str, float] = {}
        self.now = 1_000.0

    # -- clock --

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def _live(self, key) -> bool:
        exp = self._expires.get(key)
        if exp is not None and exp <= self.now:
            self._data.pop(key, None)
            self._expires.pop(key, None)
        return key in self._data

    def ttl(self, key) -> int:
        if not self._live(key):
            return -2
        exp = self._expires.get(key)
        return -1 if exp is None else int(exp - self.now)

    # -- strings --

    def get(self, key):
        if not self._live(key):
            return None
        v = self._data[key]
        return v if isinstance(v, str) else None

    def set(self, key, value, nx=False, ex=None, **kwargs):
        if nx and self._live(key):
            return None
        self._data[key] = str(value)
        if ex is not None:
            self._expires[key] = self.now + int(ex)
        else:
            self._expires.pop(key, None)
        return True

    def delete(self, *keys):
        count = 0
        for k in keys:
            if self._live(k):
                del self._data[k]
                count += 1
            self._expires.pop(k, None)
        return count

    # -- hashes --

    def hset(self, key, field=None, value=None, mapping=None):
        if not self._live(key) or not isinstance(self._data[key], dict):
            self._data[key] = {}
        added = 0
        items = dict(mapping or {})
        if field is not None:
            items[field] = value
        for k, v in items.items():
            if k not in self._data[key]:
                added += 1
            self._data[key][k] = v if isinstance(v, str) else str(v)
        return added

    def hget(self, key, field):
        d = self._data.get(key) if self._live(key) else None
        return d.get(field) if isinstance(d, dict) else None

    def hmget(self, key, fields):
        return [self.hget(key, f) for f in fields]

    def hdel(self, key, *fields):
        d = self._data.get(key) if self._live(key) else None
        count = 0
        if isinstance(d, dict):
            for f in fields:
                if f in d:
                    del d[f]
                    count += 1
        return count

    # -- sets --

    def sadd(self, key, *values):
        if not self._live(key) or not isinstance(self._data[key], set):
            self._data[key] = set()
        before = len(self._data[key])
        self._data[key].update(str(v) for v in values)
        return len(self._data[key]) - before

    def smembers(self, key):
        s = self._data.get(key) if self._live(key) else None
        return set(s) if isinstance(s, set) else set()

    # -- misc --

    def pipeline(self):
        return FakePipeline(self)

    def register_script(self, lua_src):
        return FakeScript(self, lua_src)

    def keys(self, pattern: Optional[str] = None):
        prefix = (pattern or "*").rstrip("*")
        return [k for k in list(self._data) if self._live(k) and k.startswith(prefix)]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True, scope="session")
def _suppress_test_log_noise():
    """
    Error-path tests (malformed grants, failed fetches, cache outages) log
    warnings on purpose. Keep them out of the test report.
    """
    for name in ("superview", "superview.operation"):
        logging.getLogger(name).setLevel(logging.CRITICAL)
    yield
    for name in ("superview", "superview.operation"):
        logging.getLogger(name).setLevel(logging.NOTSET)


@pytest.fixture()
def fake_redis():
    return FakeRedis()


@pytest.fixture()
def catalog(fake_redis):
    from superview.redis_catalog import RedisCatalog
    return RedisCatalog(client=fake_redis)
