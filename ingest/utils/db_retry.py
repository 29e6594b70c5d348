"""Database retry logic with retryable vs non-retryable error classification."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError

logger = logging.getLogger(__name__)

T = TypeVar("T")

UNIQUE_VIOLATION = "23505"

_RETRYABLE_SQLSTATES = {
  "40001": ("serialization_conflict", "Serialization failure - transaction conflict"),
  "40P01": ("deadlock", "Deadlock detected"),
  "08000": ("connectivity_error", "Connection exception"),
  "08003": ("connectivity_error", "Connection does not exist"),
  "08006": ("connectivity_error", "Connection failure"),
  "57P01": ("connectivity_error", "Server shutting down"),
}

_INTEGRITY_SQLSTATES = {
  "23000": "integrity constraint violation",
  "23001": "restrict violation",
  "23502": "not null violation",
  "23503": "foreign key violation",
  "23505": "unique violation",
  "23514": "check constraint violation",
  "23P01": "exclusion constraint violation",
}

_CONNECTIVITY_MARKERS = ("connection", "timeout", "reset", "network", "broken pipe", "lost connection")


@dataclass(frozen=True)
class DBFailureClassification:
  """Classification result for a database failure."""

  retryable: bool
  reason: str
  sqlstate: str | None
  category: str


def extract_sqlstate(exc: BaseException) -> str | None:
  """Extract the Postgres SQLSTATE from a SQLAlchemy exception."""
  if isinstance(exc, DBAPIError) and exc.orig is not None:
    for attribute in ("pgcode", "sqlstate"):
      value = getattr(exc.orig, attribute, None)
      if value:
        return str(value)
  return None


def classify_db_failure(exc: BaseException) -> DBFailureClassification:
  """
  Classify a database failure as retryable or non-retryable.

  Primary signal: Postgres SQLSTATE
  Fallback: exception type and message patterns

  Retryable (transient): serialization failures, deadlocks, dropped connections.
  Non-retryable: integrity violations, schema/SQL errors, permission errors,
  programming errors, anything unknown.
  """
  sqlstate = extract_sqlstate(exc)

  if sqlstate in _RETRYABLE_SQLSTATES:
    category, reason = _RETRYABLE_SQLSTATES[sqlstate]
    return DBFailureClassification(retryable=True, reason=reason, sqlstate=sqlstate, category=category)

  if sqlstate and sqlstate.startswith("23"):
    specific = _INTEGRITY_SQLSTATES.get(sqlstate, "integrity constraint violation")
    return DBFailureClassification(retryable=False, reason=f"Integrity violation: {specific}", sqlstate=sqlstate, category="integrity_error")

  if sqlstate and sqlstate.startswith("42"):
    return DBFailureClassification(retryable=False, reason="Schema/SQL error (undefined table/column, syntax error)", sqlstate=sqlstate, category="schema_error")

  if sqlstate and sqlstate.startswith("28"):
    return DBFailureClassification(retryable=False, reason="Authentication/permission error", sqlstate=sqlstate, category="permission_error")

  if isinstance(exc, IntegrityError):
    return DBFailureClassification(retryable=False, reason="Integrity constraint violation (detected by exception type)", sqlstate=sqlstate, category="integrity_error")

  if isinstance(exc, (AttributeError, TypeError, ValueError, KeyError, IndexError)):
    return DBFailureClassification(retryable=False, reason=f"Programming error: {type(exc).__name__}", sqlstate=sqlstate, category="programming_error")

  if isinstance(exc, (OSError, asyncio.TimeoutError)):
    return DBFailureClassification(retryable=True, reason="Socket-level failure reaching the database", sqlstate=sqlstate, category="connectivity_error")

  if isinstance(exc, (OperationalError, InterfaceError)):
    error_msg = str(exc).lower()
    if any(marker in error_msg for marker in _CONNECTIVITY_MARKERS):
      return DBFailureClassification(retryable=True, reason="Transient connection/network error", sqlstate=sqlstate, category="connectivity_error")
    return DBFailureClassification(retryable=False, reason="Operational error (unknown cause)", sqlstate=sqlstate, category="operational_error_unknown")

  return DBFailureClassification(retryable=False, reason=f"Unknown error type: {type(exc).__name__}", sqlstate=sqlstate, category="unknown_error")


def backoff_delay_ms(attempt: int, *, initial_backoff_ms: int, max_backoff_ms: int, jitter: bool) -> float:
  """Exponential backoff for the given 1-based attempt, capped, with +/-25% jitter."""
  delay = float(min(initial_backoff_ms * (2 ** (attempt - 1)), max_backoff_ms))
  if jitter:
    delay += random.uniform(-delay * 0.25, delay * 0.25)
  return delay


async def execute_with_retry(*, operation_name: str, func: Callable[[], Awaitable[T]], max_attempts: int = 2, initial_backoff_ms: int = 100, max_backoff_ms: int = 2000, jitter: bool = True) -> T:
  """
  Execute a database operation with retry logic for transient failures.

  Args:
    operation_name: Human-readable name for logging (e.g., "questions.insert")
    func: Async callable to execute (should be idempotent)
    max_attempts: Maximum number of attempts (initial + retries)
    initial_backoff_ms: Starting backoff delay in milliseconds
    max_backoff_ms: Maximum backoff delay in milliseconds
    jitter: Add randomness to backoff to avoid thundering herd

  Raises:
    The original exception if non-retryable or attempts are exhausted.
  """
  attempt = 0
  while True:
    attempt += 1
    try:
      result = await func()
      if attempt > 1:
        logger.info("DB operation succeeded after retry: operation=%s, attempt=%d/%d", operation_name, attempt, max_attempts)
      return result

    except Exception as exc:
      classification = classify_db_failure(exc)
      logger.warning(
        "DB operation failed: operation=%s, attempt=%d/%d, category=%s, sqlstate=%s, retryable=%s, reason=%s",
        operation_name,
        attempt,
        max_attempts,
        classification.category,
        classification.sqlstate or "none",
        classification.retryable,
        classification.reason,
      )

      if not classification.retryable or attempt >= max_attempts:
        raise

      backoff_ms = backoff_delay_ms(attempt, initial_backoff_ms=initial_backoff_ms, max_backoff_ms=max_backoff_ms, jitter=jitter)

      logger.info("Retrying DB operation after backoff: operation=%s, attempt=%d/%d, backoff_ms=%.1f, category=%s", operation_name, attempt, max_attempts, backoff_ms, classification.category)
      await asyncio.sleep(backoff_ms / 1000.0)
