"""Lazily created async engine and session factory shared by the store and repositories."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from ingest.config import get_database_settings

_ASYNC_SCHEMES = {"postgres://": "postgresql+asyncpg://", "postgresql://": "postgresql+asyncpg://"}


class Base(DeclarativeBase):
  pass


engine: AsyncEngine | None = None
SessionLocal: async_sessionmaker[AsyncSession] | None = None


def async_database_url(dsn: str | None) -> str | None:
  """Point plain Postgres DSNs at the asyncpg driver."""
  if not dsn:
    return None
  for prefix, replacement in _ASYNC_SCHEMES.items():
    if dsn.startswith(prefix):
      return replacement + dsn[len(prefix) :]
  return dsn


def get_session_factory() -> async_sessionmaker[AsyncSession] | None:
  """Return the process-wide session factory, or None when no DSN is configured."""
  global engine, SessionLocal
  if SessionLocal is not None:
    return SessionLocal
  settings = get_database_settings()
  database_url = async_database_url(settings.pg_dsn)
  if database_url is None:
    return None
  # Store call timeouts belong to the driver; the consumers never impose their own.
  engine = create_async_engine(database_url, echo=settings.debug, pool_pre_ping=True, connect_args={"timeout": settings.pg_connect_timeout})
  SessionLocal = async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)
  return SessionLocal


async def dispose_engine() -> None:
  """Close pooled connections during shutdown."""
  global engine, SessionLocal
  if engine is not None:
    await engine.dispose()
  engine = None
  SessionLocal = None
