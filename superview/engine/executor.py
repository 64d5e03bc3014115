# superview/engine/executor.py

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import duckdb

from superview.config.defaults import default, logger
from superview.data_classes import PaginatedResult, QueryColumn, Source
from superview.errors import ExecutionError


# =========================================================
# Dialect detection
# =========================================================

_SCHEME_TO_DIALECT: Dict[str, str] = {
    "mysql": "mysql",
    "mariadb": "mysql",
    "tidb": "mysql",
    "doris": "doris",
    "starrocks": "starrocks",
    "postgresql": "postgres",
    "postgres": "postgres",
    "redshift": "redshift",
    "sqlserver": "tsql",
    "mssql": "tsql",
    "oracle": "oracle",
    "sqlite": "sqlite",
    "duckdb": "duckdb",
    "clickhouse": "clickhouse",
    "hive2": "hive",
    "hive": "hive",
    "spark": "spark",
    "presto": "presto",
    "trino": "trino",
    "snowflake": "snowflake",
}

_BACKTICK = ("`", "`")
_BRACKET = ("[", "]")
_DOUBLE_QUOTE = ('"', '"')

_DIALECT_QUOTES: Dict[str, Tuple[str, str]] = {
    "mysql": _BACKTICK,
    "doris": _BACKTICK,
    "starrocks": _BACKTICK,
    "clickhouse": _BACKTICK,
    "hive": _BACKTICK,
    "spark": _BACKTICK,
    "tsql": _BRACKET,
}


def url_scheme(url: str) -> str:
    """Scheme of a connection URL; a leading ``jdbc:`` is ignored."""
    raw = (url or "").strip()
    if raw.lower().startswith("jdbc:"):
        raw = raw[5:]
    return (urlparse(raw).scheme or "").lower()


def dialect_for_url(url: str) -> Optional[str]:
    return _SCHEME_TO_DIALECT.get(url_scheme(url))


def keyword_prefix(url: str) -> str:
    return _DIALECT_QUOTES.get(dialect_for_url(url) or "", _DOUBLE_QUOTE)[0]


def keyword_suffix(url: str) -> str:
    return _DIALECT_QUOTES.get(dialect_for_url(url) or "", _DOUBLE_QUOTE)[1]


# =========================================================
# Executor contract
# =========================================================

class RelationalExecutor(ABC):
    """
    Runs statements against one source. Implementations own their
    connection handling; callers only see rows and column metadata.
    """

    def __init__(self, source: Source):
        self.source = source

    @property
    def dialect(self) -> Optional[str]:
        return dialect_for_url(self.source.url)

    def keyword_prefix(self) -> str:
        return keyword_prefix(self.source.url)

    def keyword_suffix(self) -> str:
        return keyword_suffix(self.source.url)

    @abstractmethod
    def execute(self, sql: str) -> None:
        ...

    @abstractmethod
    def query_list(self, sql: str, limit: int = -1) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def query_paginated(
            self,
            sql: str,
            page_no: int = -1,
            page_size: int = -1,
            total_count: bool = False,
            limit: int = -1,
    ) -> PaginatedResult:
        ...


# =========================================================
# DuckDB
# =========================================================

# One connection per database, shared across requests. Each call works on
# its own cursor so concurrent callers do not share statement state.
_connections: Dict[str, duckdb.DuckDBPyConnection] = {}
_connections_lock = threading.Lock()


def duckdb_database_for_url(url: str) -> str:
    """
    ``duckdb:///data/app.db`` -> ``/data/app.db``
    ``duckdb://:memory:``     -> ``:memory:``
    ``duckdb://:memory:demo`` -> ``:memory:demo``
    """
    raw = (url or "").strip()
    if raw.lower().startswith("jdbc:"):
        raw = raw[5:]
    prefix = "duckdb://"
    if not raw.lower().startswith(prefix):
        raise ExecutionError(f"Not a DuckDB URL: {url}")
    rest = raw[len(prefix):]
    if not rest:
        return ":memory:"
    if rest.startswith("/:memory:"):
        return rest[1:]
    return rest


def _get_connection(database: str) -> duckdb.DuckDBPyConnection:
    con = _connections.get(database)
    if con is None:
        with _connections_lock:
            con = _connections.get(database)
            if con is None:
                con = duckdb.connect(database)
                init_connection(con)
                _connections[database] = con
                logger.info(f"[executor] opened duckdb database '{database}'")
    return con


def init_connection(con: duckdb.DuckDBPyConnection) -> None:
    """Apply standard settings to a freshly opened DuckDB connection."""
    con.execute(f"SET memory_limit='{default.DUCKDB_MEMORY_LIMIT}';")
    if default.DUCKDB_THREADS > 0:
        con.execute(f"SET threads={int(default.DUCKDB_THREADS)};")


def close_connections() -> None:
    with _connections_lock:
        for database, con in list(_connections.items()):
            try:
                con.close()
            except duckdb.Error as e:
                logger.debug(f"[executor] close failed for '{database}': {e}")
        _connections.clear()


class DuckDBExecutor(RelationalExecutor):
    """DuckDB-backed executor. Username/password are not used by DuckDB."""

    def __init__(self, source: Source):
        super().__init__(source)
        self.database = duckdb_database_for_url(source.url)

    def _run(self, sql: str, max_rows: Optional[int] = None) -> Tuple[List[Dict[str, Any]], List[QueryColumn]]:
        cur = _get_connection(self.database).cursor()
        try:
            cur.execute(sql)
            if cur.description is None:
                return [], []
            columns = [QueryColumn(name=d[0], type=str(d[1])) for d in cur.description]
            names = [c.name for c in columns]
            raw = cur.fetchmany(max_rows) if max_rows is not None else cur.fetchall()
            return [dict(zip(names, row)) for row in raw], columns
        except duckdb.Error as e:
            logger.error(f"[executor] statement failed: {e}")
            raise ExecutionError(str(e), cause=e) from e
        finally:
            cur.close()

    def execute(self, sql: str) -> None:
        logger.debug(f"[executor] execute: {sql}")
        self._run(sql)

    def query_list(self, sql: str, limit: int = -1) -> List[Dict[str, Any]]:
        rows, _ = self._run(sql, max_rows=limit if limit and limit > 0 else None)
        return rows

    def _count(self, sql: str) -> int:
        rows, _ = self._run(f"SELECT COUNT(*) AS total FROM ({sql}) AS _count_src")
        return int(rows[0]["total"]) if rows else 0

    def query_paginated(
            self,
            sql: str,
            page_no: int = -1,
            page_size: int = -1,
            total_count: bool = False,
            limit: int = -1,
    ) -> PaginatedResult:
        page_no = page_no if page_no is not None else -1
        page_size = page_size if page_size is not None else -1
        limit = limit if limit is not None else -1

        if page_size < 1:
            rows, columns = self._run(sql, max_rows=limit if limit > 0 else None)
            return PaginatedResult(
                result_list=rows,
                columns=columns,
                page_no=0,
                page_size=0,
                total_count=len(rows),
            )

        page_no = max(page_no, 1)
        start = (page_no - 1) * page_size
        end = page_no * page_size
        if limit > 0:
            end = min(end, limit)
        fetch = max(end - start, 0)

        count = 0
        if total_count:
            count = self._count(sql)
            if limit > 0:
                count = min(count, limit)

        rows, columns = self._run(f"SELECT * FROM ({sql}) AS _page_src LIMIT {fetch} OFFSET {start}")
        return PaginatedResult(
            result_list=rows,
            columns=columns,
            page_no=page_no,
            page_size=page_size,
            total_count=count,
        )


# =========================================================
# Factory
# =========================================================

_factories: Dict[str, Callable[[Source], RelationalExecutor]] = {
    "duckdb": DuckDBExecutor,
}


def register_executor(scheme: str, factory: Callable[[Source], RelationalExecutor]) -> None:
    """Register an executor implementation for a URL scheme."""
    _factories[scheme.lower()] = factory


def create_executor(source: Source) -> RelationalExecutor:
    scheme = url_scheme(source.url)
    factory = _factories.get(scheme)
    if factory is None:
        raise ExecutionError(f"Unsupported source scheme: '{scheme}'")
    return factory(source)
