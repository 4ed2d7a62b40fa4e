"""
Read-only SQL executor for card queries.

`execute_readonly` takes the binder's positional form (``$1, $2 ...`` plus an
ordered value list) and:
  1. Opens a READ ONLY transaction (Postgres-enforced)
  2. Rewrites ``$N`` to SQLAlchemy bind parameters -- values are never
     inlined into the SQL text
  3. Enforces a per-statement timeout (statement_timeout)
  4. Converts Decimal/date/datetime to JSON-safe Python types

Driver failures surface as `ExecutionError`; nothing is retried.
"""
from __future__ import annotations

import decimal
import datetime
import re
import uuid
from typing import Any, Sequence

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from dashcore.core.config import get_settings
from dashcore.core.errors import ExecutionError
from dashcore.core.logging import get_logger
from dashcore.db.connection import is_postgres, readonly_connection

logger = get_logger(__name__)

_POSITIONAL_RE = re.compile(r"\$(\d+)\b(::)?")


def _serialise_value(val: Any) -> Any:
    """Convert DB types to JSON-serialisable Python types."""
    if isinstance(val, decimal.Decimal):
        return float(val)
    if isinstance(val, (datetime.date, datetime.datetime, datetime.time)):
        return val.isoformat()
    if isinstance(val, datetime.timedelta):
        return str(val)
    if isinstance(val, uuid.UUID):
        return str(val)
    return val


def to_named_params(sql: str, values: Sequence[Any]) -> tuple[str, dict[str, Any]]:
    """``WHERE a = $1 OR b = $1`` -> ``WHERE a = :p1 OR b = :p1`` + ``{"p1": ...}``.

    A cast directly after a placeholder (``$1::int``) becomes ``(:p1)::int``;
    SQLAlchemy does not recognise ``:p1::int`` as a bind parameter.

    Raises
    ------
    ValueError
        If the SQL references a position with no matching value.
    """
    params = {f"p{i}": v for i, v in enumerate(values, start=1)}

    def _swap(m: re.Match) -> str:
        name = f"p{m.group(1)}"
        if name not in params:
            raise ValueError(f"SQL references ${m.group(1)} but only {len(values)} value(s) were bound")
        if m.group(2):
            return f"(:{name})::"
        return f":{name}"

    return _POSITIONAL_RE.sub(_swap, sql), params


def execute_readonly(
    sql: str,
    values: Sequence[Any] = (),
    timeout_ms: int | None = None,
    engine: Engine | None = None,
) -> list[dict[str, Any]]:
    """Execute a read-only positional query and return rows as serialisable dicts.

    Raises
    ------
    ExecutionError
        If the database rejects or fails the query.
    """
    if timeout_ms is None:
        timeout_ms = get_settings().query_timeout_ms
    try:
        named_sql, params = to_named_params(sql, values)
    except ValueError as exc:
        raise ExecutionError(str(exc)) from exc
    logger.info("Executing SQL (%d chars, %d params)", len(sql), len(params))

    try:
        with readonly_connection(engine) as conn:
            if is_postgres(conn):
                conn.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))

            result = conn.execute(text(named_sql), params)
            columns = list(result.keys())
            rows = [
                {col: _serialise_value(val) for col, val in zip(columns, row)}
                for row in result.fetchall()
            ]
    except SQLAlchemyError as exc:
        logger.exception("SQL execution failed")
        # driver messages can echo the statement; keep only the first line
        lines = str(getattr(exc, "orig", None) or exc).strip().splitlines()
        detail = lines[0] if lines else type(exc).__name__
        raise ExecutionError(f"Query execution failed: {detail}") from exc

    logger.info("Returned %d rows", len(rows))
    return rows
