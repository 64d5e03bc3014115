# superview/rbac/grant_writer.py

from __future__ import annotations

import queue
import threading
from concurrent.futures import Future
from typing import List, Optional, Sequence, Set

from superview.config.defaults import logger, operation_logger
from superview.data_classes import RoleGrantRequest, RoleViewGrant, SqlVariable, User
from superview.rbac.row_column_security import parse_row_auth

_STOP = object()


def grants_for_variables(
        view_id: int,
        variables: Sequence[SqlVariable],
        roles: Sequence[RoleGrantRequest],
) -> List[RoleViewGrant]:
    """Keep role grants whose row restrictions name at least one declared variable."""
    names: Set[str] = {v.name for v in variables}
    grants: List[RoleViewGrant] = []
    for role in roles:
        if not role.row_auth or role.role_id <= 0:
            continue
        candidate = RoleViewGrant(role_id=role.role_id, view_id=view_id, row_auth=role.row_auth)
        if any(entry["name"] in names for entry in parse_row_auth(candidate)):
            grants.append(RoleViewGrant(
                role_id=role.role_id,
                view_id=view_id,
                row_auth=role.row_auth,
                column_auth=role.column_auth,
            ))
    return grants


class GrantWriter:
    """
    Writes role grants for a view on a single background thread.

    ``submit`` returns a ``Future`` that resolves to the number of grants
    stored, so callers can wait on it or ignore it. ``shutdown`` drains the
    queue and joins the worker.
    """

    def __init__(self, redis_catalog):
        self._catalog = redis_catalog
        self._queue: "queue.Queue" = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False
        self._thread = threading.Thread(target=self._loop, name="GrantWriter", daemon=True)
        self._thread.start()

    def submit(
            self,
            view_id: int,
            variables: Sequence[SqlVariable],
            roles: Sequence[RoleGrantRequest],
            user: Optional[User] = None,
    ) -> Future:
        fut: Future = Future()
        with self._lock:
            if self._closed:
                raise RuntimeError("GrantWriter is shut down")
            self._queue.put((fut, view_id, list(variables), list(roles), user))
        return fut

    def _loop(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                fut, view_id, variables, roles, user = item
                if not fut.set_running_or_notify_cancel():
                    continue
                try:
                    grants = grants_for_variables(view_id, variables, roles)
                    count = self._catalog.put_grants(view_id, grants) if grants else 0
                    operation_logger.info(
                        f"[grants] {count} grant(s) stored for view (:{view_id}) "
                        f"by user (:{user.id if user else '-'})"
                    )
                    fut.set_result(count)
                except Exception as e:
                    logger.error(f"[grants] storing grants for view (:{view_id}) failed: {e}")
                    fut.set_exception(e)
            finally:
                self._queue.task_done()

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(_STOP)
        if wait:
            self._thread.join()
