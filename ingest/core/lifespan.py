import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from ingest.core.database import dispose_engine
from ingest.core.logging import initialize_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Start the result consumers with the app and drain them on shutdown."""
  from ingest.config import get_settings
  from ingest.consumers.runner import build_consumer_runner
  from ingest.services.storage_client import build_storage_client

  settings = get_settings()
  logger = logging.getLogger("ingest.core.lifespan")
  initialize_logging(settings)

  # Ensure the captions bucket exists before transcription results arrive.
  try:
    storage_client = build_storage_client(settings)
    await storage_client.ensure_bucket()
    logger.info("Captions bucket ensured: %s", storage_client.bucket_name)
  except Exception as exc:  # noqa: BLE001
    logger.warning("Failed to ensure captions bucket at startup: %s", exc)

  runner = build_consumer_runner(settings)
  app.state.consumer_runner = runner
  await runner.start()
  logger.info("Startup complete - consumers=%s", runner.consumer_names)

  try:
    yield
  finally:
    await runner.shutdown()
    await dispose_engine()
    logger.info("Shutdown complete")
