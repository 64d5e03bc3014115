# superview/rbac/auth_values.py
"""
Resolution of allowed values for authorization variables.

Values granted by roles are used as-is. Variables no grant covers are
looked up from an ``AuthValueSource``; lookups are independent and run on a
small thread pool that lives only for one ``resolve`` call.

Failure is closed: a missing answer means "no value allowed", and a failed,
timed out or cancelled resolution returns ``{}``, which callers expand to
"deny" for every referenced variable.
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from superview.config.defaults import default, logger
from superview.data_classes import SqlVariable


class AuthValueSource(ABC):
    """Where allowed values come from when no role grant supplies them."""

    @abstractmethod
    def fetch(self, variable: SqlVariable) -> Optional[List[str]]:
        """Return allowed values, or None when the source has no answer."""


class StaticAuthValueSource(AuthValueSource):
    def __init__(self, values: Optional[Mapping[str, Sequence[str]]] = None):
        self.values = {k: list(v) for k, v in (values or {}).items()}

    def fetch(self, variable: SqlVariable) -> Optional[List[str]]:
        found = self.values.get(variable.name)
        return list(found) if found is not None else None


class RedisAuthValueSource(AuthValueSource):
    """Reads the set ``superview:auth:values:{name}`` from the catalog."""

    def __init__(self, catalog):
        self.catalog = catalog

    def fetch(self, variable: SqlVariable) -> Optional[List[str]]:
        return self.catalog.get_auth_values(variable.name)


class AuthValueResolver:
    def __init__(
            self,
            source: Optional[AuthValueSource] = None,
            max_workers: Optional[int] = None,
            timeout_seconds: Optional[float] = None,
            poll_interval: float = 0.05,
    ):
        self.source = source or StaticAuthValueSource()
        self.max_workers = max(1, int(max_workers or default.AUTH_FETCH_WORKERS))
        self.timeout_seconds = float(timeout_seconds or default.AUTH_FETCH_TIMEOUT_SEC)
        self.poll_interval = max(0.01, float(poll_interval))

    def _fetch_one(self, variable: SqlVariable) -> Tuple[str, List[str]]:
        values = self.source.fetch(variable)
        return variable.name, list(values or [])

    def resolve(
            self,
            variables: Sequence[SqlVariable],
            granted: Optional[Mapping[str, Sequence[str]]] = None,
            cancel_event: Optional[threading.Event] = None,
    ) -> Dict[str, List[str]]:
        """
        Map every variable name to its allowed values.

        Returns ``{}`` if the external lookups fail, time out or are cancelled.
        """
        granted = granted or {}
        resolved: Dict[str, List[str]] = {}
        pending: List[SqlVariable] = []
        for var in variables:
            if var.name in granted:
                resolved[var.name] = list(granted[var.name])
            elif var.name not in resolved:
                pending.append(var)

        if not pending:
            return resolved

        workers = min(self.max_workers, len(pending))
        logger.debug(f"[auth-fetch] fetching {len(pending)} variable(s) with {workers} worker(s)")
        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="auth-fetch")
        futures: List[Future] = []
        try:
            futures = [pool.submit(self._fetch_one, var) for var in pending]
            if not self._await_all(futures, cancel_event):
                return {}
            for fut in futures:
                name, values = fut.result()
                resolved[name] = values
            return resolved
        finally:
            for fut in futures:
                fut.cancel()
            pool.shutdown(wait=False, cancel_futures=True)

    def _await_all(self, futures: List[Future], cancel_event: Optional[threading.Event]) -> bool:
        deadline = time.monotonic() + self.timeout_seconds
        not_done = set(futures)
        while not_done:
            if cancel_event is not None and cancel_event.is_set():
                logger.warning("[auth-fetch] resolution cancelled; denying all authorization values")
                return False
            left = deadline - time.monotonic()
            if left <= 0:
                logger.warning(
                    f"[auth-fetch] timed out after {self.timeout_seconds:.1f}s with "
                    f"{len(not_done)} fetch(es) outstanding; denying all authorization values"
                )
                return False
            done, not_done = wait(not_done, timeout=min(self.poll_interval, left), return_when=FIRST_EXCEPTION)
            for fut in done:
                err = fut.exception()
                if err is not None:
                    logger.error(f"[auth-fetch] fetch failed: {err}; denying all authorization values")
                    return False
        return True
