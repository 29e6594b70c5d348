"""Contracts for user notification dispatch."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True)
class UserNotification:
  """Represents a typed notification addressed to one user."""

  type: str
  payload: dict[str, Any] = field(default_factory=dict)


class Notifier(Protocol):
  """Dispatch contract used by result handlers.

  Delivery is fire-and-forget: implementations log their own failures and never raise.
  """

  async def notify_user(self, user_id: str, notification: UserNotification, *, priority: str = "normal", category: str | None = None) -> None:
    """Deliver a notification to a single user."""
