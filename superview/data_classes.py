# superview/data_classes.py

from __future__ import annotations

import re
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Union


class SqlVariableType(Enum):
    QUERY = "query"  # supplied by the end user per request
    AUTH = "auth"  # injected from role policy


_AGG_RE = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_]*)\s*\((.*)\)\s*$", re.DOTALL)


@dataclass
class SqlVariable:
    name: str
    type: str = SqlVariableType.QUERY.value
    default_values: List[str] = field(default_factory=list)
    alias: Optional[str] = None
    value_type: str = "string"
    udf: bool = False

    @property
    def is_auth(self) -> bool:
        return self.type == SqlVariableType.AUTH.value

    @property
    def is_query(self) -> bool:
        return self.type == SqlVariableType.QUERY.value

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "SqlVariable":
        values = data.get("default_values", data.get("defaultValues")) or []
        return cls(
            name=str(data["name"]).strip(),
            type=str(data.get("type", SqlVariableType.QUERY.value)).lower(),
            default_values=[str(v) for v in values],
            alias=data.get("alias"),
            value_type=str(data.get("value_type", data.get("valueType", "string"))).lower(),
            udf=bool(data.get("udf", False)),
        )

    def to_json(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Source:
    id: int
    project_id: int
    url: str
    username: Optional[str] = None
    password: Optional[str] = None
    name: str = ""


@dataclass
class ViewWithSource:
    """Read-only snapshot of a stored view and its connection descriptor."""
    id: int
    name: str
    project_id: int
    sql: str
    variables: List[SqlVariable] = field(default_factory=list)
    source: Optional[Source] = None


@dataclass
class RoleViewGrant:
    """
    Row/column restrictions of one role on one view.

    - row_auth: JSON array ``[{"name": "<variable>", "values": [...]}]`` or None.
    - column_auth: comma separated column names hidden from the role, or None.
    """
    role_id: int
    view_id: int
    row_auth: Optional[str] = None
    column_auth: Optional[str] = None


@dataclass
class RoleGrantRequest:
    """Grant submitted together with a view definition."""
    role_id: int
    row_auth: Optional[str] = None
    column_auth: Optional[str] = None


@dataclass
class ParsedSqlEntity:
    """
    Working unit threaded through the pipeline.

    ``auth_params`` is ``None`` when row authorization does not apply
    (no grants, or maintainer bypass). Once resolved it holds an entry for
    every authorization variable referenced by ``sql``.
    """
    sql: str
    placeholders: Set[str] = field(default_factory=set)
    variables: Dict[str, SqlVariable] = field(default_factory=dict)
    query_params: Optional[Dict[str, str]] = None
    auth_params: Optional[Dict[str, List[str]]] = None

    @property
    def auth_placeholders(self) -> Set[str]:
        return {n for n in self.placeholders if n in self.variables and self.variables[n].is_auth}


@dataclass
class Param:
    name: str
    value: Any


@dataclass
class Order:
    column: str
    direction: str = "asc"


@dataclass
class Aggregator:
    column: str
    func: Optional[str] = None

    @classmethod
    def parse(cls, item: Union["Aggregator", str, Dict[str, Any]]) -> "Aggregator":
        if isinstance(item, Aggregator):
            return item
        if isinstance(item, dict):
            return cls(column=str(item["column"]), func=item.get("func"))
        m = _AGG_RE.match(str(item))
        if m:
            return cls(column=m.group(2).strip(), func=m.group(1))
        return cls(column=str(item).strip())

    def expression(self) -> str:
        return f"{self.func}({self.column})" if self.func else self.column


@dataclass
class ExecuteParams:
    groups: Optional[List[str]] = None
    aggregators: Optional[List[Union[Aggregator, str]]] = None
    orders: Optional[List[Order]] = None
    filters: Optional[List[str]] = None
    params: Optional[List[Param]] = None
    native_query: bool = False
    page_no: int = -1
    page_size: int = -1
    limit: int = -1
    total_count: bool = False
    cache: bool = False
    expired: int = 0

    def has_shape(self) -> bool:
        """True when grouping or aggregation information is present."""
        return bool(self.groups) or bool(self.aggregators)

    def wants_cache(self) -> bool:
        return bool(self.cache) and int(self.expired or 0) > 0


@dataclass
class QueryColumn:
    name: str
    type: str


@dataclass
class PaginatedResult:
    result_list: List[Dict[str, Any]] = field(default_factory=list)
    columns: List[QueryColumn] = field(default_factory=list)
    page_no: int = 0
    page_size: int = 0
    total_count: int = 0

    def to_json(self) -> Dict[str, Any]:
        return {
            "result_list": self.result_list,
            "columns": [{"name": c.name, "type": c.type} for c in self.columns],
            "page_no": self.page_no,
            "page_size": self.page_size,
            "total_count": self.total_count,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "PaginatedResult":
        return cls(
            result_list=list(data.get("result_list") or []),
            columns=[QueryColumn(name=c["name"], type=c["type"]) for c in data.get("columns") or []],
            page_no=int(data.get("page_no", 0)),
            page_size=int(data.get("page_size", 0)),
            total_count=int(data.get("total_count", 0)),
        )


@dataclass
class DistinctParam:
    columns: List[str] = field(default_factory=list)
    parents: List[Param] = field(default_factory=list)


@dataclass
class ViewExecuteSql:
    source_id: int
    sql: str
    variables: List[SqlVariable] = field(default_factory=list)
    limit: int = -1


@dataclass
class User:
    id: int
    username: str = ""
