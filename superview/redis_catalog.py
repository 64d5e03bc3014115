# superview/redis_catalog.py

from __future__ import annotations

import json
import time
import uuid
from typing import Any, Dict, Iterable, List, Optional

import redis

from superview.config.defaults import logger
from superview.data_classes import RoleViewGrant, Source, SqlVariable, ViewWithSource
from superview.redis_connector import RedisConnector, RedisOptions


def _now_ms() -> int:
    return int(time.time() * 1000)


def _to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def _project_key(project_id: int) -> str:
    return f"superview:meta:project:{project_id}"


def _source_key(source_id: int) -> str:
    return f"superview:meta:source:{source_id}"


def _view_key(view_id: int) -> str:
    return f"superview:meta:view:{view_id}"


def _view_names_key(project_id: int) -> str:
    # Hash: view name -> view id, per project
    return f"superview:meta:project:{project_id}:view_names"


def _view_grants_key(view_id: int) -> str:
    # Hash: role id -> grant JSON
    return f"superview:meta:view:{view_id}:grants"


def _user_roles_key(user_id: int) -> str:
    return f"superview:meta:user:{user_id}:roles"


def _auth_values_key(name: str) -> str:
    return f"superview:auth:values:{name}"


def _lock_key(resource: str) -> str:
    return f"superview:lock:{resource}"


class RedisCatalog:
    """
    Redis-backed metadata store for views:
      * meta:project:{id}                -> project JSON (maintainers, member permissions)
      * meta:source:{id}                 -> source JSON (url, username, password)
      * meta:view:{id}                   -> view JSON (sql, variables, source_id)
      * meta:project:{id}:view_names     -> HASH name -> view id
      * meta:view:{id}:grants            -> HASH role id -> grant JSON
      * meta:user:{id}:roles             -> SET of role ids
      * auth:values:{name}               -> SET of allowed values for an auth variable
      * lock:{resource}                  -> token (SET NX EX)
    """

    _LUA_LOCK_RELEASE_IF_TOKEN = """
local key = KEYS[1]
local token = ARGV[1]
local cur = redis.call('GET', key)
if cur and cur == token then
  redis.call('DEL', key)
  return 1
end
return 0
"""

    def __init__(self, options: Optional[RedisOptions] = None, client: Optional[redis.Redis] = None):
        self.r = client if client is not None else RedisConnector(options).r
        self._lock_release_if_token = self.r.register_script(self._LUA_LOCK_RELEASE_IF_TOKEN)

    # ------------- Locking -------------

    def acquire_simple_lock(self, resource: str, ttl_s: int = 30, timeout_s: int = 30) -> Optional[str]:
        """SET lock key NX EX with retry/backoff <= timeout. Returns token if acquired else None."""
        key = _lock_key(resource)
        token = uuid.uuid4().hex
        deadline = time.time() + max(1, int(timeout_s))
        while time.time() < deadline:
            try:
                ok = self.r.set(key, token, nx=True, ex=max(1, int(ttl_s)))
                if ok:
                    return token
            except redis.RedisError as e:
                logger.debug(f"[redis-lock] acquire error on {key}: {e}")
            time.sleep(0.05)
        return None

    def release_simple_lock(self, resource: str, token: str) -> bool:
        """Compare-and-delete via Lua."""
        try:
            res = self._lock_release_if_token(keys=[_lock_key(resource)], args=[token])
            return int(res or 0) == 1
        except redis.RedisError as e:
            logger.debug(f"[redis-lock] release error: {e}")
            return False

    # ------------- JSON helpers -------------

    def _get_json(self, key: str) -> Optional[Dict[str, Any]]:
        raw = _to_str(self.r.get(key))
        if not raw:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"[catalog] corrupt document at {key}: {e}")
            return None

    def _set_json(self, key: str, doc: Dict[str, Any]) -> None:
        self.r.set(key, json.dumps(doc, separators=(",", ":"), ensure_ascii=False))

    # ------------- Projects -------------

    def put_project(self, project_id: int, doc: Dict[str, Any]) -> None:
        doc = dict(doc)
        doc["id"] = project_id
        doc["updated_ms"] = _now_ms()
        self._set_json(_project_key(project_id), doc)

    def get_project(self, project_id: int) -> Optional[Dict[str, Any]]:
        return self._get_json(_project_key(project_id))

    # ------------- Sources -------------

    def put_source(self, source: Source) -> None:
        self._set_json(_source_key(source.id), {
            "id": source.id,
            "project_id": source.project_id,
            "name": source.name,
            "url": source.url,
            "username": source.username,
            "password": source.password,
        })

    def get_source(self, source_id: int) -> Optional[Source]:
        doc = self._get_json(_source_key(source_id))
        if not doc:
            return None
        return Source(
            id=int(doc["id"]),
            project_id=int(doc["project_id"]),
            url=doc["url"],
            username=doc.get("username"),
            password=doc.get("password"),
            name=doc.get("name") or "",
        )

    # ------------- Views -------------

    def put_view(
            self,
            view_id: int,
            project_id: int,
            name: str,
            sql: str,
            source_id: Optional[int],
            variables: Iterable[SqlVariable] = (),
    ) -> None:
        """Store a view and index its name. Callers serialise name changes."""
        previous = self._get_json(_view_key(view_id))
        with self.r.pipeline() as pipe:
            if previous and previous.get("name") != name:
                pipe.hdel(_view_names_key(int(previous["project_id"])), previous["name"])
            pipe.set(_view_key(view_id), json.dumps({
                "id": view_id,
                "project_id": project_id,
                "name": name,
                "sql": sql,
                "source_id": source_id,
                "variables": [v.to_json() for v in variables],
                "updated_ms": _now_ms(),
            }, separators=(",", ":"), ensure_ascii=False))
            pipe.hset(_view_names_key(project_id), name, str(view_id))
            pipe.execute()

    def get_view_id_by_name(self, name: str, project_id: int) -> Optional[int]:
        raw = _to_str(self.r.hget(_view_names_key(project_id), name))
        return int(raw) if raw else None

    def get_view_with_source(self, view_id: int) -> Optional[ViewWithSource]:
        doc = self._get_json(_view_key(view_id))
        if not doc:
            return None
        source_id = doc.get("source_id")
        return ViewWithSource(
            id=int(doc["id"]),
            name=doc.get("name") or "",
            project_id=int(doc["project_id"]),
            sql=doc.get("sql") or "",
            variables=[SqlVariable.from_json(v) for v in doc.get("variables") or []],
            source=self.get_source(int(source_id)) if source_id is not None else None,
        )

    # ------------- Role grants -------------

    def put_grants(self, view_id: int, grants: Iterable[RoleViewGrant]) -> int:
        count = 0
        with self.r.pipeline() as pipe:
            for g in grants:
                pipe.hset(_view_grants_key(view_id), str(g.role_id), json.dumps({
                    "role_id": g.role_id,
                    "row_auth": g.row_auth,
                    "column_auth": g.column_auth,
                }, separators=(",", ":"), ensure_ascii=False))
                count += 1
            pipe.execute()
        return count

    def delete_grants(self, view_id: int) -> None:
        self.r.delete(_view_grants_key(view_id))

    def add_user_role(self, user_id: int, role_id: int) -> None:
        self.r.sadd(_user_roles_key(user_id), str(role_id))

    def get_grants_by_user_and_view(self, user_id: int, view_id: int) -> List[RoleViewGrant]:
        role_ids = sorted(_to_str(x) for x in (self.r.smembers(_user_roles_key(user_id)) or set()))
        if not role_ids:
            return []
        raw_docs = self.r.hmget(_view_grants_key(view_id), role_ids)
        grants: List[RoleViewGrant] = []
        for role_id, raw in zip(role_ids, raw_docs):
            raw = _to_str(raw)
            if not raw:
                continue
            try:
                doc = json.loads(raw)
            except json.JSONDecodeError as e:
                logger.warning(f"[catalog] corrupt grant view={view_id} role={role_id}: {e}")
                continue
            grants.append(RoleViewGrant(
                role_id=int(role_id),
                view_id=view_id,
                row_auth=doc.get("row_auth"),
                column_auth=doc.get("column_auth"),
            ))
        return grants

    # ------------- Authorization values -------------

    def set_auth_values(self, name: str, values: Iterable[str]) -> None:
        key = _auth_values_key(name)
        with self.r.pipeline() as pipe:
            pipe.delete(key)
            vals = [str(v) for v in values]
            if vals:
                pipe.sadd(key, *vals)
            pipe.execute()

    def get_auth_values(self, name: str) -> Optional[List[str]]:
        members = self.r.smembers(_auth_values_key(name))
        if not members:
            return None
        return sorted(_to_str(m) for m in members)
