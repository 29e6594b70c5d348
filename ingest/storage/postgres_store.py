"""Postgres-backed record store using SQLAlchemy Core statements."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any, TypeVar

from sqlalchemy import Table, and_, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql.elements import ColumnElement

import ingest.schema.sql  # noqa: F401  registers tables on Base.metadata
from ingest.core.database import Base, get_session_factory
from ingest.storage.store import Filters, RecordStore, StoreConflictError, StoreUnavailableError, StoreWriteError, is_membership
from ingest.utils.db_retry import UNIQUE_VIOLATION, classify_db_failure, execute_with_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PostgresRecordStore(RecordStore):
  """Implements the record store contract over the mapped tables."""

  def __init__(self, *, session_factory: async_sessionmaker[AsyncSession] | None = None, max_attempts: int = 3) -> None:
    self._session_factory = session_factory or get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")
    self._max_attempts = max_attempts

  def _table(self, name: str) -> Table:
    table = Base.metadata.tables.get(name)
    if table is None:
      raise ValueError(f"Unknown table: {name}")
    return table

  def _where(self, table: Table, filters: Filters) -> ColumnElement[bool]:
    clauses: list[ColumnElement[bool]] = []
    for column_name, value in filters.items():
      column = table.c[column_name]
      if is_membership(value):
        clauses.append(column.in_(list(value)))
      elif value is None:
        clauses.append(column.is_(None))
      else:
        clauses.append(column == value)
    return and_(*clauses)

  async def select(self, table: str, filters: Filters, *, columns: Sequence[str] | None = None, limit: int | None = None) -> list[dict[str, Any]]:
    target = self._table(table)
    selected = [target.c[name] for name in columns] if columns else list(target.c)
    statement = select(*selected).where(self._where(target, filters))
    if limit is not None:
      statement = statement.limit(limit)

    async def _run() -> list[dict[str, Any]]:
      async with self._session_factory() as session:
        result = await session.execute(statement)
        return [dict(row) for row in result.mappings().all()]

    return await self._execute(f"{table}.select", _run)

  async def insert(self, table: str, row: Mapping[str, Any]) -> dict[str, Any]:
    target = self._table(table)
    statement = insert(target).values(**dict(row)).returning(*target.c)

    async def _run() -> dict[str, Any]:
      async with self._session_factory() as session:
        result = await session.execute(statement)
        inserted = dict(result.mappings().one())
        await session.commit()
        return inserted

    return await self._execute(f"{table}.insert", _run)

  async def update(self, table: str, filters: Filters, patch: Mapping[str, Any]) -> list[dict[str, Any]]:
    target = self._table(table)
    statement = update(target).where(self._where(target, filters)).values(**dict(patch)).returning(*target.c)

    async def _run() -> list[dict[str, Any]]:
      async with self._session_factory() as session:
        result = await session.execute(statement)
        rows = [dict(item) for item in result.mappings().all()]
        await session.commit()
        return rows

    return await self._execute(f"{table}.update", _run)

  async def _execute(self, operation_name: str, func: Callable[[], Awaitable[T]]) -> T:
    """Run with transient retries and translate failures into store errors."""
    try:
      return await execute_with_retry(operation_name=operation_name, func=func, max_attempts=self._max_attempts)
    except (ValueError, KeyError):
      raise
    except Exception as exc:
      classification = classify_db_failure(exc)
      if classification.retryable:
        raise StoreUnavailableError(f"{operation_name} failed after {self._max_attempts} attempts: {classification.reason}") from exc
      if classification.category == "integrity_error":
        if classification.sqlstate == UNIQUE_VIOLATION:
          raise StoreConflictError(f"{operation_name}: {classification.reason}") from exc
        raise StoreWriteError(f"{operation_name}: {classification.reason}") from exc
      raise
