# superview/sql/sql_parser.py
"""
View SQL template handling.

A view's SQL is a template: ``$name$`` placeholders (delimiter configurable)
are bound either to query variables (end-user filter values) or to
authorization variables (role policy). This module

  * parses the template against the declared variables (``parse_sql``),
  * substitutes resolved values into it (``replace_params``),
  * splits the substituted text into setup statements and queries
    (``split_statements``).
"""

from __future__ import annotations

import re
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import sqlglot
from sqlglot.errors import TokenError
from sqlglot.tokens import TokenType

from superview.config.defaults import default, logger
from superview.data_classes import ParsedSqlEntity, SqlVariable
from superview.errors import ParseError

ALLOW_PREDICATE = "1=1"
DENY_PREDICATE = "1=0"

QUERY_KEYWORDS = {"SELECT", "WITH", "SHOW", "DESC", "DESCRIBE", "EXPLAIN", "VALUES"}

_NAME_START = re.compile(r"[A-Za-z_]")
_NAME_CHARS = re.compile(r"[A-Za-z0-9_]*")

_OPERAND = r'(?:"[^"]+"|`[^`]+`|\[[^\]]+\]|[A-Za-z_]\w*)'
_AUTH_LHS_RE = re.compile(
    rf"(?P<operand>{_OPERAND}(?:\.{_OPERAND})*)\s*"
    r"(?P<op>=|!=|<>|\bnot\s+in\b|\bin\b)\s*"
    r"(?P<paren>\(\s*)?(?P<quote>')?$",
    re.IGNORECASE,
)

# Segment kinds produced by _scan
TEXT = "text"
VAR = "var"
ESCAPE = "escape"


def _scan(sql: str, delimiter: str) -> Iterator[Tuple[str, str]]:
    """
    Tokenise a template into (kind, value) segments.

    ``$$`` is an escaped delimiter, ``$name$`` a placeholder. A delimiter not
    followed by a name character is literal text (``$1``); a delimiter
    followed by a name that is never closed is a syntax error.
    """
    if not delimiter:
        raise ParseError("SQL template delimiter must not be empty")

    d = delimiter
    n = len(d)
    i = 0
    buf: List[str] = []
    length = len(sql)
    while i < length:
        if not sql.startswith(d, i):
            buf.append(sql[i])
            i += 1
            continue

        if sql.startswith(d + d, i):
            if buf:
                yield TEXT, "".join(buf)
                buf = []
            yield ESCAPE, d
            i += 2 * n
            continue

        start = i + n
        if start >= length or not _NAME_START.match(sql[start]):
            buf.append(d)
            i = start
            continue

        m = _NAME_CHARS.match(sql, start + 1)
        end = m.end()
        if not sql.startswith(d, end):
            snippet = sql[i:end]
            raise ParseError(f"Unterminated variable placeholder near '{snippet}'")

        if buf:
            yield TEXT, "".join(buf)
            buf = []
        yield VAR, sql[start:end]
        i = end + n

    if buf:
        yield TEXT, "".join(buf)


def find_placeholders(sql: str, delimiter: Optional[str] = None) -> List[str]:
    """Return placeholder names in order of first appearance."""
    seen: List[str] = []
    for kind, value in _scan(sql, delimiter or default.SQL_TEMPLATE_DELIMITER):
        if kind == VAR and value not in seen:
            seen.append(value)
    return seen


def parse_sql(
        sql: str,
        variables: Optional[Sequence[SqlVariable]],
        delimiter: Optional[str] = None,
) -> ParsedSqlEntity:
    """Parse a view template against its declared variables."""
    delimiter = delimiter or default.SQL_TEMPLATE_DELIMITER
    text = (sql or "").strip()
    placeholders = set(find_placeholders(text, delimiter))

    declared: Dict[str, SqlVariable] = {}
    for var in variables or []:
        declared[var.name.strip()] = var

    query_params: Dict[str, str] = {}
    auth_params: Dict[str, List[str]] = {}
    for name, var in declared.items():
        if name not in placeholders:
            continue
        if var.is_query:
            query_params[name] = ",".join(var.default_values or [])
        elif var.is_auth:
            auth_params[name] = list(var.default_values or [])

    logger.debug(
        f"[sql-parse] placeholders={sorted(placeholders)} "
        f"query={sorted(query_params)} auth={sorted(auth_params)}"
    )
    return ParsedSqlEntity(
        sql=text,
        placeholders=placeholders,
        variables=declared,
        query_params=query_params or None,
        auth_params=auth_params or None,
    )


# =========================================================
# Substitution
# =========================================================

def format_auth_value(value: str, variable: Optional[SqlVariable]) -> str:
    """Render one allowed value as a SQL literal."""
    v = str(value)
    if variable is not None:
        if variable.udf:
            return v
        if variable.value_type == "number":
            try:
                float(v)
                return v.strip()
            except ValueError:
                pass
        elif variable.value_type == "boolean" and v.strip().lower() in ("true", "false"):
            return v.strip().upper()
    return "'" + v.replace("'", "''") + "'"


def build_auth_predicate(
        operand: str,
        negate: bool,
        name: str,
        auth_params: Optional[Dict[str, List[str]]],
        variable: Optional[SqlVariable],
) -> str:
    if auth_params is None:
        return ALLOW_PREDICATE

    values = auth_params.get(name)
    if not values:
        return DENY_PREDICATE

    unique: List[str] = []
    for v in values:
        if v not in unique:
            unique.append(v)
    literals = ", ".join(format_auth_value(v, variable) for v in unique)
    op = "NOT IN" if negate else "IN"
    return f"{operand} {op} ({literals})"


def replace_params(
        entity: ParsedSqlEntity,
        delimiter: Optional[str] = None,
) -> str:
    """
    Substitute query values and expand authorization placeholders.

    Authorization placeholders become ``IN`` predicates. When the preceding
    text is a comparison (``col = $v$``, ``col IN ($v$)``, ``col != $v$``) the
    comparison is rewritten; a bare ``$v$`` is expanded as ``v IN (...)``.
    """
    delimiter = delimiter or default.SQL_TEMPLATE_DELIMITER
    query_params = entity.query_params or {}
    out: List[str] = []
    pending_close: Optional[str] = None

    for kind, value in _scan(entity.sql, delimiter):
        if kind == TEXT:
            if pending_close is not None:
                m = re.match(pending_close, value)
                if not m:
                    raise ParseError("Unbalanced authorization predicate in SQL template")
                value = value[m.end():]
                pending_close = None
            out.append(value)
            continue

        if pending_close is not None:
            raise ParseError("Unbalanced authorization predicate in SQL template")

        if kind == ESCAPE:
            out.append(value)
            continue

        variable = entity.variables.get(value)
        if variable is not None and variable.is_auth:
            prefix = "".join(out)
            m = _AUTH_LHS_RE.search(prefix)
            if m:
                operand = m.group("operand")
                negate = m.group("op").strip().lower() in ("!=", "<>") or m.group("op").lower().startswith("not")
                out = [prefix[:m.start()]]
                close = ""
                if m.group("quote"):
                    close += "'"
                if m.group("paren"):
                    close += r"\s*\)"
                pending_close = close or None
            else:
                operand, negate = value, False
            out.append(build_auth_predicate(operand, negate, value, entity.auth_params, variable))
            continue

        if value in query_params:
            out.append(str(query_params[value]))
        else:
            out.append(f"{delimiter}{value}{delimiter}")

    if pending_close is not None:
        raise ParseError("Unbalanced authorization predicate in SQL template")

    return "".join(out)


# =========================================================
# Statement splitting
# =========================================================

def _tokenize(sql: str, dialect: Optional[str]):
    try:
        return sqlglot.tokenize(sql, read=dialect)
    except TokenError as e:
        raise ParseError(f"Unable to tokenize SQL: {e}") from e


def is_query_statement(first_token) -> bool:
    if first_token.token_type == TokenType.L_PAREN:
        return True
    return first_token.text.upper() in QUERY_KEYWORDS


def split_statements(sql: str, dialect: Optional[str] = None) -> Tuple[List[str], List[str]]:
    """
    Split SQL text on top-level ``;`` into (execute_list, query_list).

    Semicolons inside string literals, quoted identifiers or comments do not
    split. Order within each list follows the source text.
    """
    execute_list: List[str] = []
    query_list: List[str] = []
    if not sql or not sql.strip():
        return execute_list, query_list

    statement_tokens: List = []

    def flush():
        if not statement_tokens:
            return
        text = sql[statement_tokens[0].start:statement_tokens[-1].end + 1].strip()
        if text:
            if is_query_statement(statement_tokens[0]):
                query_list.append(text)
            else:
                execute_list.append(text)
        statement_tokens.clear()

    for token in _tokenize(sql, dialect):
        if token.token_type == TokenType.SEMICOLON:
            flush()
        else:
            statement_tokens.append(token)
    flush()

    return execute_list, query_list
