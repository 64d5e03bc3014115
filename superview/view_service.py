# superview/view_service.py

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Set, Tuple

from superview.cache.result_cache import ResultCache, signature
from superview.config.defaults import default, logger
from superview.data_classes import (
    DistinctParam,
    ExecuteParams,
    PaginatedResult,
    Param,
    ParsedSqlEntity,
    RoleGrantRequest,
    RoleViewGrant,
    Source,
    SqlVariable,
    User,
    ViewExecuteSql,
    ViewWithSource,
)
from superview.engine.executor import RelationalExecutor, create_executor
from superview.errors import (
    CacheError,
    ExecutionError,
    NotFoundError,
    ParseError,
    UnauthorizedError,
)
from superview.locking.name_lock import NameLock
from superview.rbac.auth_values import AuthValueResolver
from superview.rbac.grant_writer import GrantWriter
from superview.rbac.permissions import ProjectDetail, UserPermission, has_permission
from superview.rbac.project_directory import ProjectDirectory
from superview.rbac.row_column_security import get_column_auth, get_row_variables
from superview.sql.query_builder import QueryBuilder, format_query, normalize_column
from superview.sql.sql_parser import parse_sql, replace_params, split_statements
from superview.utils.timer import Timer

_PASSTHROUGH = (NotFoundError, UnauthorizedError, ParseError, ExecutionError)


class ViewService:
    """
    Turns a stored view into a paginated, authorization-filtered result.

    Pipeline per call: parse the template, resolve the caller's row/column
    restrictions, substitute, run setup statements, wrap the last query with
    grouping/aggregation/ordering, then execute it (through the result cache
    when asked to).
    """

    def __init__(
            self,
            redis_catalog,
            project_directory: ProjectDirectory,
            result_cache: Optional[ResultCache] = None,
            auth_resolver: Optional[AuthValueResolver] = None,
            name_lock: Optional[NameLock] = None,
            executor_factory: Callable[[Source], RelationalExecutor] = create_executor,
            grant_writer: Optional[GrantWriter] = None,
            delimiter: Optional[str] = None,
    ):
        self.catalog = redis_catalog
        self.projects = project_directory
        self.cache = result_cache
        self.auth_resolver = auth_resolver or AuthValueResolver()
        self.name_lock = name_lock or NameLock()
        self.executor_factory = executor_factory
        self.grant_writer = grant_writer
        self.delimiter = delimiter or default.SQL_TEMPLATE_DELIMITER

    # -------------------------------------------------------------------------------------
    # Name availability
    # -------------------------------------------------------------------------------------

    def _name_taken(self, name: str, view_id: Optional[int], project_id: int) -> bool:
        existing = self.catalog.get_view_id_by_name(name, project_id)
        if view_id is not None and existing is not None:
            return view_id != existing
        return existing is not None and existing > 0

    def is_exist(self, name: str, view_id: Optional[int], project_id: int) -> bool:
        with self.name_lock.hold(name, project_id):
            return self._name_taken(name, view_id, project_id)

    @contextmanager
    def reserve_name(self, name: str, view_id: Optional[int], project_id: int) -> Iterator[bool]:
        """
        Hold the name lock across check and write.

        Yields True when the name is available to ``view_id`` (None for a new
        view); the caller stores the view before leaving the block.
        """
        with self.name_lock.hold(name, project_id):
            yield not self._name_taken(name, view_id, project_id)

    # -------------------------------------------------------------------------------------
    # Grants
    # -------------------------------------------------------------------------------------

    def submit_role_grants(
            self,
            view_id: int,
            variables: Sequence[SqlVariable],
            roles: Sequence[RoleGrantRequest],
            user: Optional[User] = None,
    ):
        if self.grant_writer is None:
            self.grant_writer = GrantWriter(self.catalog)
        return self.grant_writer.submit(view_id, variables, roles, user)

    # -------------------------------------------------------------------------------------
    # Authorization
    # -------------------------------------------------------------------------------------

    def parse_params(
            self,
            project: ProjectDetail,
            entity: ParsedSqlEntity,
            params: Optional[List[Param]],
            grants: Optional[List[RoleViewGrant]],
            row_variables: Optional[List[SqlVariable]],
            user: User,
    ) -> bool:
        """
        Fill ``entity`` with query values and resolved authorization values.

        Returns True when the user is a maintainer (no restrictions apply).
        """
        if params:
            merged = dict(entity.query_params or {})
            for p in params:
                merged[p.name.strip()] = "" if p.value is None else str(p.value)
            entity.query_params = merged

        if self.projects.is_maintainer(project, user):
            entity.auth_params = None
            return True

        if not grants:
            # No grant configured for this user: row authorization does not apply.
            entity.auth_params = None
            return False

        referenced = sorted(entity.auth_placeholders)
        if not referenced:
            entity.auth_params = {}
            return False

        granted = {v.name: v.default_values for v in (row_variables or []) if v.is_auth}
        resolved = self.auth_resolver.resolve(
            [entity.variables[name] for name in referenced],
            granted=granted,
        )
        entity.auth_params = {name: list(resolved.get(name, [])) for name in referenced}
        return False

    def _prepare(
            self,
            project: ProjectDetail,
            view: ViewWithSource,
            params: Optional[List[Param]],
            user: User,
            timer: Timer,
    ) -> Tuple[str, Optional[Set[str]]]:
        entity = parse_sql(view.sql, view.variables, self.delimiter)
        timer.capture_and_reset_timing("PARSE")

        grants = self.catalog.get_grants_by_user_and_view(user.id, view.id)
        row_variables = get_row_variables(grants, view.variables)
        exclude_columns = get_column_auth(grants)

        maintainer = self.parse_params(project, entity, params, grants, row_variables, user)
        if maintainer:
            exclude_columns = None
        timer.capture_and_reset_timing("AUTH")

        return replace_params(entity, self.delimiter), exclude_columns

    # -------------------------------------------------------------------------------------
    # Data
    # -------------------------------------------------------------------------------------

    def _load_view_for_data(self, view_id: int, user: User) -> Tuple[ProjectDetail, ViewWithSource]:
        view = self.catalog.get_view_with_source(view_id)
        if view is None:
            logger.info(f"[view] view (:{view_id}) not found")
            raise NotFoundError("view is not found")

        project = self.projects.get_project_detail(view.project_id, user)
        if not self.projects.allow_get_data(project, user):
            raise UnauthorizedError("you have not permission to get data")
        return project, view

    def get_data(self, view_id: int, params: Optional[ExecuteParams], user: User) -> Optional[PaginatedResult]:
        if params is None or not params.has_shape():
            return None
        project, view = self._load_view_for_data(view_id, user)
        return self.get_result_data_list(project, view, params, user)

    def _cache_get(self, key: str) -> Optional[PaginatedResult]:
        try:
            return self.cache.get(key)
        except CacheError as e:
            logger.warning(f"[cache] get data by cache: {e}")
            return None

    def _cache_set(self, key: str, result: PaginatedResult, ttl: int) -> None:
        try:
            self.cache.set(key, result, ttl)
        except CacheError as e:
            logger.warning(f"[cache] set data to cache: {e}")

    def get_result_data_list(
            self,
            project: ProjectDetail,
            view: ViewWithSource,
            params: Optional[ExecuteParams],
            user: User,
    ) -> Optional[PaginatedResult]:
        if params is None or not params.has_shape():
            return None
        if view.source is None:
            raise NotFoundError("source is not found")
        if not view.sql or not view.sql.strip():
            return None

        timer = Timer()
        log_ctx = f"[view][vid={view.id} uid={user.id}]"
        result: Optional[PaginatedResult] = None
        cache_key: Optional[str] = None
        use_cache = self.cache is not None and params.wants_cache()

        try:
            src_sql, exclude_columns = self._prepare(project, view, params.params, user, timer)

            executor = self.executor_factory(view.source)
            execute_list, query_list = split_statements(src_sql, executor.dialect)
            for sql in execute_list:
                executor.execute(sql)

            if query_list:
                builder = QueryBuilder(executor.keyword_prefix(), executor.keyword_suffix(), executor.dialect)
                query_list[-1] = builder.render(query_list[-1], params, exclude_columns)
                timer.capture_and_reset_timing("RENDER")

                if use_cache:
                    cache_key = signature(params.page_no, params.limit, params.page_size, query_list[-1])
                    cached = self._cache_get(cache_key)
                    if cached is not None:
                        logger.info(f"{log_ctx} cache hit {cache_key}")
                        return cached

                for sql in query_list[:-1]:
                    executor.execute(sql)
                result = executor.query_paginated(
                    query_list[-1],
                    page_no=params.page_no,
                    page_size=params.page_size,
                    total_count=params.total_count,
                    limit=params.limit,
                )
            timer.capture_and_reset_timing("EXECUTE")
        except _PASSTHROUGH:
            raise
        except Exception as e:
            logger.error(f"{log_ctx} Exception: {e}")
            raise ExecutionError(str(e), cause=e) from e

        if use_cache and cache_key and result is not None and result.result_list:
            self._cache_set(cache_key, result, int(params.expired))

        timer.capture_duration("TOTAL")
        logger.info(
            f"{log_ctx} Timing(s): total={(timer.get('TOTAL') or 0.0):.3f} | "
            f"parse={(timer.get('PARSE') or 0.0):.3f} | auth={(timer.get('AUTH') or 0.0):.3f} | "
            f"render={(timer.get('RENDER') or 0.0):.3f} | execute={(timer.get('EXECUTE') or 0.0):.3f}"
        )
        return result

    # -------------------------------------------------------------------------------------
    # Distinct values
    # -------------------------------------------------------------------------------------

    def get_distinct_value(
            self,
            view_id: int,
            param: Optional[DistinctParam],
            user: User,
    ) -> Optional[List[Dict[str, Any]]]:
        project, view = self._load_view_for_data(view_id, user)
        return self.get_distinct_value_data(project, view, param, user)

    def get_distinct_value_data(
            self,
            project: ProjectDetail,
            view: ViewWithSource,
            param: Optional[DistinctParam],
            user: User,
    ) -> Optional[List[Dict[str, Any]]]:
        if view.source is None:
            raise NotFoundError("source is not found")
        if not view.sql or not view.sql.strip():
            return None

        try:
            src_sql, exclude_columns = self._prepare(project, view, None, user, Timer())
            executor = self.executor_factory(view.source)
            execute_list, query_list = split_statements(src_sql, executor.dialect)
            for sql in execute_list:
                executor.execute(sql)
            if not query_list:
                return None

            if param is not None:
                builder = QueryBuilder(executor.keyword_prefix(), executor.keyword_suffix(), executor.dialect)
                clauses = builder.build_distinct(query_list[-1], param, exclude_columns)
                if not clauses.select_list:
                    return []
                query_list[-1] = format_query(clauses)

            for sql in query_list[:-1]:
                executor.execute(sql)
            rows = executor.query_list(query_list[-1], -1)
            if param is None and exclude_columns:
                hidden = {normalize_column(c) for c in exclude_columns}
                rows = [{k: v for k, v in row.items() if normalize_column(k) not in hidden} for row in rows]
            return rows
        except _PASSTHROUGH:
            raise
        except Exception as e:
            logger.error(f"[view][vid={view.id}] distinct value exception: {e}")
            raise ExecutionError(str(e), cause=e) from e

    # -------------------------------------------------------------------------------------
    # Ad-hoc execution
    # -------------------------------------------------------------------------------------

    def execute_sql(self, request: ViewExecuteSql, user: User) -> Optional[PaginatedResult]:
        """Run SQL being authored against a source, without row/column restrictions."""
        source = self.catalog.get_source(request.source_id)
        if source is None:
            raise NotFoundError("source is not found")

        project = self.projects.get_project_detail(source.project_id, user)
        permission = self.projects.get_project_permission(project, user)
        if permission.source_permission == UserPermission.HIDDEN or not has_permission(
                permission.view_permission, UserPermission.WRITE
        ):
            raise UnauthorizedError("you have not permission to execute sql")

        result: Optional[PaginatedResult] = None
        try:
            entity = parse_sql(request.sql, request.variables, self.delimiter)
            if not entity.sql:
                return None
            src_sql = replace_params(entity, self.delimiter)

            executor = self.executor_factory(source)
            execute_list, query_list = split_statements(src_sql, executor.dialect)
            for sql in execute_list:
                executor.execute(sql)
            for sql in query_list:
                result = executor.query_paginated(sql, limit=request.limit)
        except _PASSTHROUGH:
            raise
        except Exception as e:
            logger.error(f"[view][source={source.id}] execute sql exception: {e}")
            raise ExecutionError(str(e), cause=e) from e
        return result
