# superview/redis_connector.py

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import redis

from superview.config.defaults import logger

_TRUE = ("1", "true", "yes", "y", "on")
_ENV = "SUPERVIEW_REDIS_"


def _flag(name: str, fallback: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return fallback
    return raw.strip().lower() in _TRUE


@dataclass(frozen=True)
class RedisOptions:
    """
    Connection options for the catalog, cache and lock clients.

    ``from_env`` reads:
      - SUPERVIEW_REDIS_URL (redis://:pass@host:6379/0, rediss:// for TLS); wins when set
      - or SUPERVIEW_REDIS_HOST / _PORT / _DB / _PASSWORD
      - SUPERVIEW_REDIS_DECODE_RESPONSES (default true)
      - SUPERVIEW_REDIS_SOCKET_TIMEOUT (seconds, default 3)
    """
    url: Optional[str] = None
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    decode_responses: bool = True
    socket_timeout: float = 3.0

    @classmethod
    def from_env(cls) -> "RedisOptions":
        try:
            timeout = float(os.getenv(f"{_ENV}SOCKET_TIMEOUT", "3"))
        except ValueError:
            logger.warning(f"[redis-options] invalid {_ENV}SOCKET_TIMEOUT; using 3s")
            timeout = 3.0
        return cls(
            url=os.getenv(f"{_ENV}URL") or None,
            host=os.getenv(f"{_ENV}HOST", "localhost"),
            port=int(os.getenv(f"{_ENV}PORT", "6379")),
            db=int(os.getenv(f"{_ENV}DB", "0")),
            password=os.getenv(f"{_ENV}PASSWORD") or None,
            decode_responses=_flag(f"{_ENV}DECODE_RESPONSES", True),
            socket_timeout=timeout,
        )

    def client_kwargs(self) -> Dict[str, Any]:
        return {
            "decode_responses": self.decode_responses,
            "socket_timeout": self.socket_timeout,
            "socket_connect_timeout": self.socket_timeout,
        }


def create_redis_client(options: Optional[RedisOptions] = None) -> redis.Redis:
    opts = options or RedisOptions.from_env()
    if opts.url:
        logger.info("[redis-connector] connecting via SUPERVIEW_REDIS_URL")
        return redis.Redis.from_url(opts.url, **opts.client_kwargs())

    logger.info(f"[redis-connector] host={opts.host}, port={opts.port}, db={opts.db}")
    return redis.Redis(
        host=opts.host,
        port=opts.port,
        db=opts.db,
        password=opts.password,
        **opts.client_kwargs(),
    )


class RedisConnector:
    """Creates and holds a Redis client connection based on RedisOptions."""

    def __init__(self, options: Optional[RedisOptions] = None):
        self.r = create_redis_client(options)
