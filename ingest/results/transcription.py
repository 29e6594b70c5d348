"""Publish transcription results as caption documents."""

from __future__ import annotations

import logging

import msgspec

from ingest.results.envelope import JobResultEnvelope
from ingest.results.errors import IncompleteResultError
from ingest.results.models import RouteResult
from ingest.results.payloads import parse_transcription
from ingest.services.storage_client import CaptionStorage
from ingest.storage.store import RecordStore

logger = logging.getLogger(__name__)


def caption_object_name(video_id: str) -> str:
  return f"videos/{video_id}.json"


class TranscriptionResultHandler:
  """Replaces the caption object for a video and records its public URL."""

  def __init__(self, *, store: RecordStore, storage: CaptionStorage) -> None:
    self._store = store
    self._storage = storage

  async def handle(self, envelope: JobResultEnvelope) -> RouteResult:
    result = parse_transcription(envelope.payload)
    if result is None:
      # Not acknowledged: the broker redelivers and a complete copy may follow.
      raise IncompleteResultError(f"Transcription result {envelope.job_id or '<no job id>'} is missing video_id or transcription")

    object_name = caption_object_name(result.video_id)
    logger.info("Processing transcription result video_id=%s language=%s words=%d", result.video_id, result.language, len(result.words))

    # Delete then upload so a replay ends with exactly one current caption object.
    if await self._storage.delete_if_exists(object_name):
      logger.info("Deleted existing caption file video_id=%s object=%s", result.video_id, object_name)
    await self._storage.upload_json(object_name, msgspec.json.encode(result.caption_document()))
    caption_url = self._storage.public_url(object_name)

    rows = await self._store.update("videos", {"id": result.video_id}, {"transcript_url": caption_url})
    if not rows:
      logger.warning("Transcription result for unknown video video_id=%s", result.video_id)
      return RouteResult(status="dropped", detail=f"video {result.video_id} not found")

    logger.info("Transcription result processed video_id=%s caption_url=%s", result.video_id, caption_url)
    return RouteResult(status="processed", detail=caption_url)
