"""Dispatch decoded envelopes to the handler for their job type."""

from __future__ import annotations

import logging
from typing import Protocol

from ingest.results.envelope import JOB_TYPE_COMPRESSION, JobResultEnvelope
from ingest.results.models import RouteResult

logger = logging.getLogger(__name__)

# Older compression workers publish under this name.
JOB_TYPE_ALIASES: dict[str, str] = {"video_compression": JOB_TYPE_COMPRESSION}


class JobResultHandler(Protocol):
  """Handler contract for one job type."""

  async def handle(self, envelope: JobResultEnvelope) -> RouteResult:
    """Apply an envelope's effects; raising leaves the message unacknowledged."""


def normalize_job_type(job_type: str) -> str:
  normalized = (job_type or "").strip().lower()
  return JOB_TYPE_ALIASES.get(normalized, normalized)


class JobResultRouter:
  """Registry mapping job types to result handlers."""

  def __init__(self, handlers: dict[str, JobResultHandler]) -> None:
    self._handlers = {normalize_job_type(job_type): handler for job_type, handler in handlers.items()}

  @property
  def job_types(self) -> tuple[str, ...]:
    return tuple(sorted(self._handlers))

  def resolve(self, job_type: str) -> JobResultHandler | None:
    """Resolve the handler for a job type, or None when nothing handles it."""
    return self._handlers.get(normalize_job_type(job_type))

  async def route(self, envelope: JobResultEnvelope) -> RouteResult:
    """Dispatch an envelope; unknown job types are logged and acknowledged."""
    handler = self.resolve(envelope.job_type)
    if handler is None:
      logger.warning("Unknown or unhandled job result type job_type=%s job_id=%s", envelope.job_type, envelope.job_id)
      return RouteResult(status="ignored", detail=f"unhandled job type {envelope.job_type!r}")

    logger.info("Processing job result job_type=%s job_id=%s status=%s worker=%s", normalize_job_type(envelope.job_type), envelope.job_id, envelope.status, envelope.worker_identity)
    return await handler.handle(envelope)
