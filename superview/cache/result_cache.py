# superview/cache/result_cache.py

from __future__ import annotations

import base64
import datetime
import hashlib
import json
import uuid
from decimal import Decimal
from typing import Any, Dict, Optional

import redis

from superview.config.defaults import default, logger
from superview.data_classes import PaginatedResult
from superview.errors import CacheError
from superview.redis_connector import RedisConnector, RedisOptions

# Values JSON has no type for are stored as {"__sv__": <tag>, "v": <text>}
# so a cache hit hands back the same Python types the executor produced.
_TAG = "__sv__"

_DECODERS = {
    "decimal": Decimal,
    "datetime": datetime.datetime.fromisoformat,
    "date": datetime.date.fromisoformat,
    "time": datetime.time.fromisoformat,
    "timedelta": lambda v: datetime.timedelta(microseconds=int(v)),
    "bytes": base64.b64decode,
    "uuid": uuid.UUID,
}


def _encode_value(value: Any) -> Dict[str, str]:
    # datetime is a date subclass, so it is checked first
    if isinstance(value, Decimal):
        return {_TAG: "decimal", "v": str(value)}
    if isinstance(value, datetime.datetime):
        return {_TAG: "datetime", "v": value.isoformat()}
    if isinstance(value, datetime.date):
        return {_TAG: "date", "v": value.isoformat()}
    if isinstance(value, datetime.time):
        return {_TAG: "time", "v": value.isoformat()}
    if isinstance(value, datetime.timedelta):
        return {_TAG: "timedelta", "v": str(value // datetime.timedelta(microseconds=1))}
    if isinstance(value, (bytes, bytearray, memoryview)):
        return {_TAG: "bytes", "v": base64.b64encode(bytes(value)).decode("ascii")}
    if isinstance(value, uuid.UUID):
        return {_TAG: "uuid", "v": str(value)}
    raise TypeError(f"Object of type {type(value).__name__} is not cacheable")


def _decode_object(obj: Dict[str, Any]) -> Any:
    if len(obj) == 2 and obj.get(_TAG) in _DECODERS and "v" in obj:
        return _DECODERS[obj[_TAG]](obj["v"])
    return obj


def signature(page_no: int, limit: int, page_size: int, query: str) -> str:
    """32-hex MD5 of ``"<page_no>-<limit>-<page_size>"`` followed by the query text."""
    key = f"{page_no}-{limit}-{page_size}{query}"
    return hashlib.md5(key.encode("utf-8")).hexdigest()


class ResultCache:
    """
    Paginated results stored as JSON under ``<prefix><signature>`` with a TTL.

    Decimal, temporal, binary and UUID cells are tagged on write and restored
    on read. Errors surface as ``CacheError``; callers decide whether to
    ignore them.
    """

    def __init__(
            self,
            client: Optional[redis.Redis] = None,
            options: Optional[RedisOptions] = None,
            prefix: Optional[str] = None,
    ):
        self.r = client if client is not None else RedisConnector(options).r
        self.prefix = prefix if prefix is not None else default.CACHE_PREFIX

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> Optional[PaginatedResult]:
        try:
            raw = self.r.get(self._key(key))
        except redis.RedisError as e:
            raise CacheError(f"cache read failed: {e}") from e
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return PaginatedResult.from_json(json.loads(raw, object_hook=_decode_object))
        except (ValueError, KeyError, TypeError) as e:
            raise CacheError(f"unreadable cache entry {key}: {e}") from e

    def set(self, key: str, result: PaginatedResult, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        try:
            payload = json.dumps(result.to_json(), default=_encode_value, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            raise CacheError(f"result for {key} is not cacheable: {e}") from e
        try:
            self.r.set(self._key(key), payload, ex=int(ttl_seconds))
        except redis.RedisError as e:
            raise CacheError(f"cache write failed: {e}") from e
        logger.debug(f"[cache] stored {key} rows={len(result.result_list)} ttl={ttl_seconds}s")
