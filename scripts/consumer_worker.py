"""Run the job result consumers as a standalone worker process."""

from __future__ import annotations

import asyncio
import logging
import signal

from ingest.config import get_settings
from ingest.consumers.runner import build_consumer_runner
from ingest.core.database import dispose_engine
from ingest.core.logging import initialize_logging

logger = logging.getLogger("scripts.consumer_worker")


async def run_worker() -> None:
  """Start all enabled consumers and drain them on SIGINT/SIGTERM."""
  settings = get_settings()
  initialize_logging(settings)

  runner = build_consumer_runner(settings)
  if not runner.consumer_names:
    logger.warning("No consumers enabled; set INGEST_KAFKA_ENABLED or INGEST_SERVICE_BUS_ENABLED.")
    return

  stop_event = asyncio.Event()
  loop = asyncio.get_running_loop()
  for sig in (signal.SIGINT, signal.SIGTERM):
    loop.add_signal_handler(sig, stop_event.set)

  await runner.start()
  logger.info("Consumer worker running; press Ctrl+C to stop.")
  # Exit when a signal arrives or every consumer loop has died.
  waiter = asyncio.create_task(runner.wait())
  stopper = asyncio.create_task(stop_event.wait())
  await asyncio.wait({waiter, stopper}, return_when=asyncio.FIRST_COMPLETED)
  stopper.cancel()

  logger.info("Shutting down consumer worker gracefully...")
  await runner.shutdown()
  await dispose_engine()


def main() -> None:
  asyncio.run(run_worker())


if __name__ == "__main__":
  main()
