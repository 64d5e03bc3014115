# superview/tests/test_redis_connector.py

from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from superview.redis_connector import RedisConnector, RedisOptions, create_redis_client


@pytest.fixture()
def clean_env(monkeypatch):
    """Remove all SUPERVIEW_REDIS_* env vars for a clean slate."""
    for key in list(os.environ):
        if key.startswith("SUPERVIEW_REDIS_"):
            monkeypatch.delenv(key, raising=False)
    return monkeypatch


class TestRedisOptions:

    def test_defaults(self, clean_env):
        opts = RedisOptions.from_env()
        assert (opts.url, opts.host, opts.port, opts.db, opts.password) == (None, "localhost", 6379, 0, None)
        assert opts.decode_responses is True
        assert opts.socket_timeout == 3.0

    def test_split_vars(self, clean_env):
        clean_env.setenv("SUPERVIEW_REDIS_HOST", "cache")
        clean_env.setenv("SUPERVIEW_REDIS_PORT", "6380")
        clean_env.setenv("SUPERVIEW_REDIS_DB", "2")
        clean_env.setenv("SUPERVIEW_REDIS_PASSWORD", "secret")
        clean_env.setenv("SUPERVIEW_REDIS_DECODE_RESPONSES", "no")
        opts = RedisOptions.from_env()
        assert (opts.host, opts.port, opts.db, opts.password) == ("cache", 6380, 2, "secret")
        assert opts.decode_responses is False

    def test_bad_timeout_falls_back(self, clean_env):
        clean_env.setenv("SUPERVIEW_REDIS_SOCKET_TIMEOUT", "soon")
        assert RedisOptions.from_env().socket_timeout == 3.0


class TestCreateClient:

    def test_url_wins(self, clean_env):
        clean_env.setenv("SUPERVIEW_REDIS_URL", "rediss://:pw@redis.internal:6380/1")
        clean_env.setenv("SUPERVIEW_REDIS_HOST", "ignored")
        with patch("superview.redis_connector.redis.Redis.from_url") as from_url:
            create_redis_client()
        from_url.assert_called_once()
        assert from_url.call_args.args[0] == "rediss://:pw@redis.internal:6380/1"
        assert from_url.call_args.kwargs["decode_responses"] is True

    def test_host_port(self, clean_env):
        with patch("superview.redis_connector.redis.Redis") as client_cls:
            RedisConnector(RedisOptions(host="h", port=1, db=3, password="p"))
        kwargs = client_cls.call_args.kwargs
        assert (kwargs["host"], kwargs["port"], kwargs["db"], kwargs["password"]) == ("h", 1, 3, "p")
