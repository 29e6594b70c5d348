"""Shared delivery policy for broker adapters.

Adapters decode a message, hand the envelope to the router and translate the
outcome into a disposition: acknowledge (commit/complete) or leave the message
for redelivery. Malformed messages are acknowledged because redelivering them
can never succeed.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Literal, Protocol

from ingest.results.envelope import JobResultEnvelope
from ingest.results.errors import IncompleteResultError, MalformedMessageError
from ingest.results.models import RouteResult

logger = logging.getLogger(__name__)

Disposition = Literal["ack", "retry"]
MessageHandler = Callable[[JobResultEnvelope], Awaitable[RouteResult]]
EnvelopeDecoder = Callable[[], JobResultEnvelope]


@dataclass(frozen=True)
class ConsumerStatus:
  """Point-in-time view of one consumer, served by the health endpoint."""

  name: str
  connected: bool
  running: bool
  processed: int
  dropped: int
  failed: int


@dataclass
class DeliveryCounters:
  processed: int = 0
  dropped: int = 0
  failed: int = 0


class ResultConsumer(Protocol):
  """Lifecycle contract shared by the broker adapters."""

  @property
  def name(self) -> str:
    """Stable name used in logs and status reports."""

  async def connect(self) -> None:
    """Open the broker connection."""

  async def subscribe(self, topic: str) -> None:
    """Attach to a topic (and, for the bus, the configured subscription)."""

  async def run(self, handler: MessageHandler) -> None:
    """Deliver messages to the handler until stop() is called."""

  async def stop(self) -> None:
    """Stop fetching and wait for in-flight handlers to finish."""

  async def disconnect(self) -> None:
    """Release broker resources."""

  def status(self) -> ConsumerStatus:
    """Return the current status snapshot."""


async def dispatch_message(decode: EnvelopeDecoder, handler: MessageHandler, *, source: str, counters: DeliveryCounters) -> Disposition:
  """Decode and handle one message, returning whether it may be acknowledged."""
  try:
    envelope = decode()
  except MalformedMessageError as exc:
    counters.dropped += 1
    logger.error("Dropping malformed message source=%s error=%s", source, exc)
    return "ack"

  try:
    result = await handler(envelope)
  except IncompleteResultError as exc:
    counters.failed += 1
    logger.error("Incomplete job result left for redelivery source=%s job_type=%s job_id=%s error=%s", source, envelope.job_type, envelope.job_id, exc)
    return "retry"
  except Exception as exc:  # noqa: BLE001
    counters.failed += 1
    logger.error("Job result handling failed; message left for redelivery source=%s job_type=%s job_id=%s error=%s", source, envelope.job_type, envelope.job_id, exc, exc_info=True)
    return "retry"

  if result.status in ("dropped", "ignored"):
    counters.dropped += 1
  else:
    counters.processed += 1
  logger.debug("Job result handled source=%s job_id=%s status=%s", source, envelope.job_id, result.status)
  return "ack"
