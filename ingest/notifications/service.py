"""Notification orchestration for ingestion events."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from ingest.notifications.contracts import Notifier, UserNotification
from ingest.notifications.in_app_repo import InAppNotificationEntry, InAppNotificationSink
from ingest.notifications.in_app_templates import render_in_app_template

logger = logging.getLogger(__name__)


class NotificationService(Notifier):
  """Renders user notifications and persists them for in-app polling."""

  def __init__(self, *, in_app_repo: InAppNotificationSink) -> None:
    self._in_app_repo = in_app_repo

  async def notify_user(self, user_id: str, notification: UserNotification, *, priority: str = "normal", category: str | None = None) -> None:
    """Persist an in-app notification; failures are logged and swallowed."""
    try:
      title, body = render_in_app_template(template_id=notification.type, data=notification.payload)
    except ValueError as exc:
      logger.error("In-app notification render failed type=%s user_id=%s error=%s", notification.type, user_id, exc)
      return

    # Delivery metadata rides along with the payload so clients can sort and filter.
    data = {**notification.payload, "priority": priority, "category": category, "sentAt": datetime.now(UTC).isoformat()}
    entry = InAppNotificationEntry(user_id=user_id, template_id=notification.type, title=title, body=body, data=data)
    try:
      notification_id = await self._in_app_repo.insert(entry)
    except Exception as exc:  # noqa: BLE001
      logger.error("In-app notification insert failed type=%s user_id=%s error=%s", notification.type, user_id, exc, exc_info=True)
      return

    logger.info("Notification dispatched type=%s user_id=%s id=%s priority=%s category=%s", notification.type, user_id, notification_id, priority, category)
