# superview/sql/query_builder.py
"""
Outer query rendering for view results.

The view's own SQL is wrapped as a derived table ``T`` and the caller's
grouping, aggregation, filtering and ordering are layered on top:

    SELECT <groups>, <aggregators> FROM (<view sql>) T
    WHERE <filters> GROUP BY <groups> ORDER BY <orders>

``QueryBuilder`` produces a ``QueryClauses`` value; ``format_query`` turns it
into text. Column-level security is applied while building: excluded
columns never reach the select list, the grouping or the ordering, and a
filter that reads an excluded column is refused.

Column names are compared case-insensitively, unquoted and without their
table qualifier, since that is how the engines resolve them.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set

import sqlglot
from sqlglot import exp
from sqlglot.errors import ParseError as SqlglotParseError, TokenError

from superview.data_classes import Aggregator, DistinctParam, ExecuteParams, Order
from superview.errors import ParseError, UnauthorizedError

_FUNC_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_DIRECTIONS = ("ASC", "DESC")
_QUOTE_CHARS = "\"`[]"
DERIVED_TABLE_ALIAS = "T"


@dataclass
class QueryClauses:
    sql: str
    select_list: List[str] = field(default_factory=list)
    where: List[str] = field(default_factory=list)
    group_by: List[str] = field(default_factory=list)
    order_by: List[str] = field(default_factory=list)
    distinct: bool = False


def format_query(clauses: QueryClauses) -> str:
    """Render clauses to SQL. Empty clause lists emit nothing."""
    select = ", ".join(clauses.select_list) or "*"
    parts = [
        f"SELECT {'DISTINCT ' if clauses.distinct else ''}{select}",
        f"FROM ({clauses.sql}) {DERIVED_TABLE_ALIAS}",
    ]
    if clauses.where:
        if len(clauses.where) == 1:
            parts.append(f"WHERE {clauses.where[0]}")
        else:
            parts.append("WHERE " + " AND ".join(f"({w})" for w in clauses.where))
    if clauses.group_by:
        parts.append("GROUP BY " + ", ".join(clauses.group_by))
    if clauses.order_by:
        parts.append("ORDER BY " + ", ".join(clauses.order_by))
    return " ".join(parts)


def sql_string_literal(value) -> str:
    return "'" + str(value).replace("'", "''") + "'"


def normalize_column(name: str) -> str:
    """``T."Salary"`` -> ``salary``."""
    last = str(name).strip().rsplit(".", 1)[-1]
    return last.strip().strip(_QUOTE_CHARS).casefold()


class QueryBuilder:
    def __init__(self, keyword_prefix: str = '"', keyword_suffix: str = '"', dialect: Optional[str] = None):
        self.keyword_prefix = keyword_prefix
        self.keyword_suffix = keyword_suffix
        self.dialect = dialect

    # ---------------- helpers ----------------

    def quote(self, name: str) -> str:
        name = name.strip()
        if name == "*":
            return "*"
        escaped = name.replace(self.keyword_suffix, self.keyword_suffix * 2)
        return f"{self.keyword_prefix}{escaped}{self.keyword_suffix}"

    def referenced_columns(self, text: str) -> Set[str]:
        """Normalized column names ``text`` may read, as a name or as an expression."""
        names = {normalize_column(text)}
        try:
            parsed = sqlglot.parse_one(text, read=self.dialect)
        except (SqlglotParseError, TokenError):
            return names
        names.update(c.name.casefold() for c in parsed.find_all(exp.Column))
        return names

    def _allowed(self, text: str, excluded: Set[str]) -> bool:
        return not excluded or not (self.referenced_columns(text) & excluded)

    def aggregator_sql(self, agg: Aggregator, with_alias: bool = True) -> str:
        if not agg.func:
            return self.quote(agg.column)
        if not _FUNC_NAME_RE.match(agg.func):
            raise ParseError(f"Invalid aggregate function name: '{agg.func}'")
        func = agg.func.upper()
        column = self.quote(agg.column)
        if func == "COUNTDISTINCT":
            body = f"COUNT(DISTINCT {column})"
        else:
            body = f"{func}({column})"
        if not with_alias:
            return body
        return f"{body} AS {self.quote(f'{agg.func.lower()}({agg.column.strip()})')}"

    def filter_sql(self, predicate: str, excluded: Optional[Set[str]] = None) -> str:
        """Parse a caller predicate as a single condition and re-render it."""
        try:
            parsed = [e for e in sqlglot.parse(predicate, read=self.dialect) if e is not None]
        except (SqlglotParseError, TokenError) as e:
            raise ParseError(f"Invalid filter '{predicate}': {e}") from e
        if len(parsed) != 1 or not isinstance(parsed[0], exp.Condition):
            raise ParseError(f"Filter must be a single condition: '{predicate}'")
        if excluded and any(c.name.casefold() in excluded for c in parsed[0].find_all(exp.Column)):
            raise UnauthorizedError(f"Filter reads a restricted column: '{predicate}'")
        return parsed[0].sql(dialect=self.dialect)

    def order_sql(self, order: Order) -> str:
        direction = (order.direction or "asc").strip().upper()
        if direction not in _DIRECTIONS:
            raise ParseError(f"Invalid order direction: '{order.direction}'")
        agg = Aggregator.parse(order.column)
        return f"{self.aggregator_sql(agg, with_alias=False)} {direction}"

    # ---------------- builders ----------------

    def build(
            self,
            sql: str,
            params: ExecuteParams,
            exclude_columns: Optional[Set[str]] = None,
    ) -> QueryClauses:
        excluded = {normalize_column(c) for c in exclude_columns or ()}

        groups = [g.strip() for g in (params.groups or []) if g and self._allowed(g, excluded)]
        aggregators = [
            a for a in (Aggregator.parse(x) for x in (params.aggregators or []))
            if self._allowed(a.column, excluded)
            and (not params.native_query or self._allowed(a.expression(), excluded))
        ]
        orders = [o for o in (params.orders or []) if self._allowed(o.column, excluded)]

        if params.native_query:
            select_list = [a.expression() for a in aggregators]
            group_by: List[str] = []
        else:
            quoted_groups = [self.quote(g) for g in groups]
            select_list = quoted_groups + [self.aggregator_sql(a) for a in aggregators]
            group_by = quoted_groups

        if excluded and not select_list:
            # an empty select list renders as SELECT *, restricted columns included
            raise UnauthorizedError("No permitted column left in the requested result")

        return QueryClauses(
            sql=sql,
            select_list=select_list,
            where=[self.filter_sql(f, excluded) for f in (params.filters or []) if f and f.strip()],
            group_by=group_by,
            order_by=[self.order_sql(o) for o in orders],
        )

    def build_distinct(
            self,
            sql: str,
            param: DistinctParam,
            exclude_columns: Optional[Iterable[str]] = None,
    ) -> QueryClauses:
        excluded = {normalize_column(c) for c in exclude_columns or ()}
        where = []
        for parent in param.parents or []:
            if normalize_column(parent.name) in excluded:
                raise UnauthorizedError(f"Parent filter reads a restricted column: '{parent.name}'")
            if parent.value is None:
                where.append(f"{self.quote(parent.name)} IS NULL")
            else:
                where.append(f"{self.quote(parent.name)} = {sql_string_literal(parent.value)}")
        return QueryClauses(
            sql=sql,
            select_list=[self.quote(c) for c in param.columns if normalize_column(c) not in excluded],
            where=where,
            distinct=True,
        )

    def render(
            self,
            sql: str,
            params: ExecuteParams,
            exclude_columns: Optional[Set[str]] = None,
    ) -> str:
        return format_query(self.build(sql, params, exclude_columns))
