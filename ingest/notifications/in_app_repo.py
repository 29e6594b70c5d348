"""Persistence for in-app notifications polled by the web client."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ingest.core.database import get_session_factory
from ingest.schema.sql import InAppNotification

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InAppNotificationEntry:
  user_id: str
  template_id: str
  title: str
  body: str
  data: dict[str, Any]


class InAppNotificationSink(Protocol):
  async def insert(self, entry: InAppNotificationEntry) -> str | None:
    """Store an entry and return its id, or None when nothing was stored."""


class InAppNotificationRepository(InAppNotificationSink):
  """Writes one unread row per entry to the notifications table."""

  def __init__(self, *, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = session_factory

  async def insert(self, entry: InAppNotificationEntry) -> str | None:
    session_factory = self._session_factory or get_session_factory()
    if session_factory is None:
      logger.warning("No database configured; in-app notification not stored template_id=%s", entry.template_id)
      return None
    notification_id = str(uuid.uuid4())
    async with session_factory() as session:
      session.add(InAppNotification(id=notification_id, user_id=entry.user_id, template_id=entry.template_id, title=entry.title, body=entry.body, data_json=entry.data, read=False))
      await session.commit()
    return notification_id


class NullInAppNotificationRepository(InAppNotificationSink):
  """Used when persistence is disabled; entries are only logged."""

  async def insert(self, entry: InAppNotificationEntry) -> str | None:
    logger.debug("In-app notification persistence disabled; dropping template_id=%s user_id=%s", entry.template_id, entry.user_id)
    return None
