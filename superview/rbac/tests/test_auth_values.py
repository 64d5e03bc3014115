# superview/rbac/tests/test_auth_values.py
"""
Tests for superview.rbac.auth_values.

Covers:
  - granted values short-circuit external lookups
  - external lookups run concurrently on the auth-fetch pool
  - fail-closed behaviour: fetch error, timeout and cancellation all
    yield an empty mapping
  - Redis-backed value source
"""

from __future__ import annotations

import threading
import time

import pytest

from superview.data_classes import SqlVariable
from superview.rbac.auth_values import (
    AuthValueResolver,
    AuthValueSource,
    RedisAuthValueSource,
    StaticAuthValueSource,
)


def _var(name):
    return SqlVariable(name=name, type="auth")


class _RecordingSource(AuthValueSource):
    def __init__(self, values=None, delay=0.0):
        self.values = values or {}
        self.delay = delay
        self.calls = []
        self.threads = set()
        self._lock = threading.Lock()

    def fetch(self, variable):
        with self._lock:
            self.calls.append(variable.name)
            self.threads.add(threading.current_thread().name)
        if self.delay:
            time.sleep(self.delay)
        return self.values.get(variable.name)


class _BlockingSource(AuthValueSource):
    """Blocks until released; used for timeout and cancel paths."""

    def __init__(self):
        self.release = threading.Event()

    def fetch(self, variable):
        self.release.wait(5)
        return ["late"]


class _FailingSource(AuthValueSource):
    def fetch(self, variable):
        if variable.name == "bad":
            raise ConnectionError("value service unreachable")
        return ["ok"]


class TestResolve:

    def test_granted_values_skip_fetch(self):
        source = _RecordingSource({"dept": ["x"]})
        resolver = AuthValueResolver(source)
        assert resolver.resolve([_var("dept")], granted={"dept": ["a", "b"]}) == {"dept": ["a", "b"]}
        assert source.calls == []

    def test_fetches_missing_variables(self):
        source = _RecordingSource({"dept": ["sales"], "region": ["eu", "us"]})
        resolver = AuthValueResolver(source)
        result = resolver.resolve([_var("dept"), _var("region"), _var("team")], granted={"team": ["t1"]})
        assert result == {"dept": ["sales"], "region": ["eu", "us"], "team": ["t1"]}
        assert sorted(source.calls) == ["dept", "region"]

    def test_no_answer_is_empty(self):
        resolver = AuthValueResolver(_RecordingSource({}))
        assert resolver.resolve([_var("dept")]) == {"dept": []}

    def test_empty_input(self):
        assert AuthValueResolver(_RecordingSource()).resolve([]) == {}

    def test_runs_on_worker_pool(self):
        source = _RecordingSource({f"v{i}": [str(i)] for i in range(5)}, delay=0.2)
        resolver = AuthValueResolver(source, max_workers=5, timeout_seconds=5)
        start = time.monotonic()
        result = resolver.resolve([_var(f"v{i}") for i in range(5)])
        elapsed = time.monotonic() - start
        assert result == {f"v{i}": [str(i)] for i in range(5)}
        assert elapsed < 0.2 * 5
        assert all(name.startswith("auth-fetch") for name in source.threads)


class TestFailClosed:

    def test_fetch_error(self):
        resolver = AuthValueResolver(_FailingSource(), timeout_seconds=5)
        assert resolver.resolve([_var("good"), _var("bad")]) == {}

    def test_timeout(self):
        source = _BlockingSource()
        resolver = AuthValueResolver(source, timeout_seconds=0.2)
        try:
            start = time.monotonic()
            assert resolver.resolve([_var("dept")], granted={"region": ["eu"]}) == {}
            assert time.monotonic() - start < 2
        finally:
            source.release.set()

    def test_cancelled(self):
        source = _BlockingSource()
        resolver = AuthValueResolver(source, timeout_seconds=5)
        cancel = threading.Event()
        threading.Timer(0.1, cancel.set).start()
        try:
            start = time.monotonic()
            assert resolver.resolve([_var("dept")], cancel_event=cancel) == {}
            assert time.monotonic() - start < 2
        finally:
            source.release.set()

    def test_granted_only_never_fails(self):
        source = _BlockingSource()
        resolver = AuthValueResolver(source, timeout_seconds=0.1)
        assert resolver.resolve([_var("dept")], granted={"dept": []}) == {"dept": []}


class TestSources:

    def test_static_source(self):
        source = StaticAuthValueSource({"dept": ("a", "b")})
        assert source.fetch(_var("dept")) == ["a", "b"]
        assert source.fetch(_var("region")) is None

    def test_redis_source(self, catalog):
        catalog.set_auth_values("dept", ["ops", "sales"])
        source = RedisAuthValueSource(catalog)
        assert source.fetch(_var("dept")) == ["ops", "sales"]
        assert source.fetch(_var("region")) is None

    def test_resolver_over_redis(self, catalog):
        catalog.set_auth_values("dept", ["sales"])
        resolver = AuthValueResolver(RedisAuthValueSource(catalog))
        assert resolver.resolve([_var("dept"), _var("region")]) == {"dept": ["sales"], "region": []}
