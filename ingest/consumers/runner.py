"""Lifecycle management for the enabled result consumers."""

from __future__ import annotations

import asyncio
import logging

from ingest.config import Settings
from ingest.notifications.factory import build_notification_service
from ingest.results.factory import build_router
from ingest.results.router import JobResultRouter
from ingest.services.storage_client import build_storage_client
from ingest.storage.postgres_store import PostgresRecordStore
from ingest.transports.base import ConsumerStatus
from ingest.transports.factory import ConsumerBinding, build_consumers

logger = logging.getLogger(__name__)


class ConsumerRunner:
  """Connects, subscribes and runs every bound consumer; shuts them down in order."""

  def __init__(self, *, bindings: list[ConsumerBinding], router: JobResultRouter) -> None:
    self._bindings = bindings
    self._router = router
    self._tasks: dict[str, asyncio.Task[None]] = {}

  @property
  def consumer_names(self) -> list[str]:
    return [binding.consumer.name for binding in self._bindings]

  async def start(self) -> None:
    """Connect and subscribe every consumer, then start their loops as tasks."""
    for binding in self._bindings:
      consumer = binding.consumer
      await consumer.connect()
      await consumer.subscribe(binding.topic)
      task = asyncio.create_task(consumer.run(self._router.route), name=f"consumer:{consumer.name}")
      task.add_done_callback(self._log_task_exit)
      self._tasks[consumer.name] = task
    logger.info("Started %d result consumer(s): %s", len(self._tasks), ", ".join(self._tasks) or "<none>")

  async def shutdown(self) -> None:
    """Stop all loops, let in-flight messages finish, then disconnect."""
    await asyncio.gather(*(binding.consumer.stop() for binding in self._bindings if binding.consumer.name in self._tasks))
    if self._tasks:
      await asyncio.gather(*self._tasks.values(), return_exceptions=True)
    self._tasks.clear()
    for binding in self._bindings:
      try:
        await binding.consumer.disconnect()
      except Exception as exc:  # noqa: BLE001
        logger.error("Failed to disconnect consumer name=%s error=%s", binding.consumer.name, exc, exc_info=True)
    logger.info("Result consumers shut down")

  async def wait(self) -> None:
    """Block until every consumer loop has exited."""
    if self._tasks:
      await asyncio.gather(*self._tasks.values(), return_exceptions=True)

  def statuses(self) -> list[ConsumerStatus]:
    return [binding.consumer.status() for binding in self._bindings]

  @staticmethod
  def _log_task_exit(task: asyncio.Task[None]) -> None:
    """Log consumer loops that die so a broken transport is not silent."""
    if task.cancelled():
      return
    exc = task.exception()
    if exc is not None:
      logger.error("Consumer loop %s stopped with an error: %s", task.get_name(), exc, exc_info=exc)


def build_consumer_runner(settings: Settings) -> ConsumerRunner:
  """Wire store, storage and notifications into a runner for the enabled transports."""
  store = PostgresRecordStore(max_attempts=settings.db_retry_attempts)
  router = build_router(settings, store=store, storage=build_storage_client(settings), notifier=build_notification_service(settings))
  return ConsumerRunner(bindings=build_consumers(settings), router=router)
