"""Storage contract consumed by the result handlers."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol

# Filters map column -> value. A list/tuple/set value is a membership test,
# anything else is an equality test.
Filters = Mapping[str, Any]
MEMBERSHIP_TYPES = (list, tuple, set, frozenset)


class StoreError(Exception):
  """Base class for store failures surfaced to handlers."""


class StoreWriteError(StoreError):
  """A write was rejected permanently (constraint, bad value)."""


class StoreConflictError(StoreWriteError):
  """A write collided with a uniqueness constraint."""


class StoreUnavailableError(StoreError):
  """A transient failure persisted after retries; the message should be redelivered."""


class RecordStore(Protocol):
  """Minimal query capability over relational tables."""

  async def select(self, table: str, filters: Filters, *, columns: Sequence[str] | None = None, limit: int | None = None) -> list[dict[str, Any]]:
    """Return rows matching every filter."""

  async def insert(self, table: str, row: Mapping[str, Any]) -> dict[str, Any]:
    """Insert one row and return it as stored."""

  async def update(self, table: str, filters: Filters, patch: Mapping[str, Any]) -> list[dict[str, Any]]:
    """Apply a patch to matching rows and return the updated rows."""


def is_membership(value: Any) -> bool:
  """Return True when a filter value should be treated as IN (...)."""
  return isinstance(value, MEMBERSHIP_TYPES)
