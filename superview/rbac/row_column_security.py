# superview/rbac/row_column_security.py
"""
Row and column restrictions derived from a user's role grants on a view.

Restrictions from several grants are unioned: a column hidden by any grant
stays hidden, and the allowed values of a row variable are the union of the
values every grant lists for it.
"""

import json
from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Set

from superview.config.defaults import logger
from superview.data_classes import RoleViewGrant, SqlVariable


def parse_row_auth(grant: RoleViewGrant) -> List[Dict]:
    """
    Decode a grant's ``row_auth`` JSON into ``[{"name": ..., "values": [...]}]``.

    Malformed documents are logged and contribute nothing.
    """
    if not grant.row_auth or not grant.row_auth.strip():
        return []
    try:
        data = json.loads(grant.row_auth)
    except json.JSONDecodeError as e:
        logger.warning(f"[rbac] unreadable row_auth on role={grant.role_id} view={grant.view_id}: {e}")
        return []
    if not isinstance(data, list):
        logger.warning(f"[rbac] row_auth on role={grant.role_id} view={grant.view_id} is not a list")
        return []

    entries = []
    for item in data:
        if not isinstance(item, dict) or not item.get("name"):
            continue
        values = item.get("values") or []
        if not isinstance(values, list):
            values = [values]
        entries.append({"name": str(item["name"]).strip(), "values": [str(v) for v in values]})
    return entries


def get_row_variables(
        grants: Optional[Sequence[RoleViewGrant]],
        variables: Optional[Sequence[SqlVariable]],
) -> Optional[List[SqlVariable]]:
    """
    Declared variables restricted by at least one grant, each carrying the
    union of the grant values as ``default_values``.

    Returns None when there are no grants or no declared variables.
    """
    if not grants or not variables:
        return None

    declared = {v.name.strip(): v for v in variables}
    merged: Dict[str, List[str]] = {}
    for grant in grants:
        for entry in parse_row_auth(grant):
            name = entry["name"]
            if name not in declared:
                continue
            values = merged.setdefault(name, [])
            for v in entry["values"]:
                if v not in values:
                    values.append(v)

    # Copies, so the view's own declarations are left untouched.
    return [replace(declared[name], default_values=values) for name, values in merged.items()]


def get_column_auth(grants: Optional[Sequence[RoleViewGrant]]) -> Optional[Set[str]]:
    """Columns hidden by any grant, or None when there are no grants."""
    if not grants:
        return None
    columns: Set[str] = set()
    for grant in grants:
        if grant.column_auth:
            columns.update(c.strip() for c in grant.column_auth.split(",") if c.strip())
    return columns
