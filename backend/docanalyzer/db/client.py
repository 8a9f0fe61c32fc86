"""
Table-oriented persistence client.

The analysis pipeline talks to the database only through PersistenceClient:
four operations over the eight tables in models/analysis.py, keyed by the
PostgreSQL table and column names (documents.metadata, not doc_metadata).

  set_user_context(user_id)                     RLS identity for later calls
  insert(table, row)                      → row as written (id, defaults)
  update(table, row_id, values)           → row after update
  select(table, filters, order_by, limit, offset) → list of rows

Rows come back as plain dicts: UUIDs as str, Decimals as float, datetimes as
ISO-8601 strings, so callers can drop them straight into JSON responses.

SQLAlchemyPersistenceClient runs every call in its own transaction.  A write
that succeeded is therefore never undone by a later failing write; partial
persistence is an accepted end state.  Database failures surface as
PersistenceError with the table name as the stage.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Protocol

from sqlalchemy import Column, Table, insert, select, update
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.exc import SQLAlchemyError

from docanalyzer.core.config import settings
from docanalyzer.core.errors import PersistenceError
from docanalyzer.models.analysis import TABLES

logger = logging.getLogger(__name__)


class PersistenceClient(Protocol):
    async def set_user_context(self, user_id: int) -> None: ...

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]: ...

    async def update(self, table: str, row_id: str, values: dict[str, Any]) -> dict[str, Any]: ...

    async def select(
        self,
        table:    str,
        filters:  dict[str, Any] | None = None,
        order_by: str | None = None,
        limit:    int | None = None,
        offset:   int = 0,
    ) -> list[dict[str, Any]]: ...


# ---------------------------------------------------------------------------
# Value conversion
# ---------------------------------------------------------------------------

def to_plain(value: Any) -> Any:
    """UUID → str, Decimal → float, datetime → ISO string; recurses into containers."""
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_plain(v) for v in value]
    return value


def _bind(column: Column, value: Any) -> Any:
    if isinstance(column.type, UUID) and isinstance(value, str):
        return uuid.UUID(value)
    return value


# ---------------------------------------------------------------------------
# SQLAlchemy implementation
# ---------------------------------------------------------------------------

class SQLAlchemyPersistenceClient:
    """
    PersistenceClient over the async engine in db/session.py.

    One instance per request; the user id set with set_user_context() is
    applied (SET LOCAL) at the start of every transaction this client opens.
    """

    def __init__(self, session_scope: Callable | None = None, user_id: int | None = None) -> None:
        if session_scope is None:
            from docanalyzer.db.session import user_session
            session_scope = user_session
        self._session_scope = session_scope
        self._user_id = user_id if user_id is not None else settings.default_user_id

    async def set_user_context(self, user_id: int) -> None:
        self._user_id = user_id

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        tbl = _table(table)
        stmt = insert(tbl).values(_values(tbl, row)).returning(*tbl.columns)
        rows = await self._execute(table, stmt)
        return rows[0]

    async def update(self, table: str, row_id: str, values: dict[str, Any]) -> dict[str, Any]:
        tbl = _table(table)
        id_col = tbl.c.id
        stmt = (
            update(tbl)
            .where(id_col == _bind(id_col, row_id))
            .values(_values(tbl, values))
            .returning(*tbl.columns)
        )
        rows = await self._execute(table, stmt)
        if not rows:
            raise PersistenceError(f"{table} row {row_id} not found", stage=table)
        return rows[0]

    async def select(
        self,
        table:    str,
        filters:  dict[str, Any] | None = None,
        order_by: str | None = None,
        limit:    int | None = None,
        offset:   int = 0,
    ) -> list[dict[str, Any]]:
        tbl = _table(table)
        columns = _columns_by_name(tbl)
        stmt = select(*tbl.columns)
        for name, value in (filters or {}).items():
            col = columns[name]
            stmt = stmt.where(col == _bind(col, value))
        if order_by:
            descending = order_by.startswith("-")
            col = columns[order_by.lstrip("-")]
            stmt = stmt.order_by(col.desc() if descending else col.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)
        return await self._execute(table, stmt)

    async def _execute(self, table: str, stmt) -> list[dict[str, Any]]:
        tbl = _table(table)
        try:
            async with self._session_scope(self._user_id) as session:
                result = await session.execute(stmt)
                fetched = result.all()
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("Persistence | table=%s user=%s failed: %s", table, self._user_id, exc)
            raise PersistenceError(f"{table}: {exc}", stage=table) from exc
        return [
            {col.name: to_plain(value) for col, value in zip(tbl.columns, row)}
            for row in fetched
        ]


def _table(name: str) -> Table:
    try:
        return TABLES[name].__table__
    except KeyError:
        raise PersistenceError(f"Unknown table '{name}'", stage=name) from None


def _columns_by_name(tbl: Table) -> dict[str, Column]:
    return {col.name: col for col in tbl.columns}


def _values(tbl: Table, row: dict[str, Any]) -> dict[Column, Any]:
    columns = _columns_by_name(tbl)
    unknown = set(row) - set(columns)
    if unknown:
        raise PersistenceError(f"Unknown columns for {tbl.name}: {sorted(unknown)}", stage=tbl.name)
    return {columns[name]: _bind(columns[name], value) for name, value in row.items()}
