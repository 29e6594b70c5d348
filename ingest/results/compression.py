"""Apply video compression results to the videos table."""

from __future__ import annotations

import logging

from ingest.results.envelope import JobResultEnvelope
from ingest.results.models import RouteResult
from ingest.results.payloads import extract_uuid, parse_compression
from ingest.storage.store import RecordStore

logger = logging.getLogger(__name__)


class CompressionResultHandler:
  """Writes the compressed video URL onto the video row; replays rewrite the same value."""

  def __init__(self, *, store: RecordStore) -> None:
    self._store = store

  async def handle(self, envelope: JobResultEnvelope) -> RouteResult:
    result = parse_compression(envelope.payload, default_video_id=extract_uuid(envelope.job_id))
    if result is None:
      logger.error("Compression result missing video_id or compressed video URL job_id=%s", envelope.job_id)
      return RouteResult(status="dropped", detail="missing video_id or url")

    video_id = result.video_id
    # The record key is what the producer partitioned on, so it wins over the body.
    if envelope.partition_key and envelope.partition_key != video_id:
      logger.warning("Compression video_id mismatch between key and payload, using key key=%s payload=%s", envelope.partition_key, video_id)
      video_id = envelope.partition_key

    logger.info("Processing compression result video_id=%s job_id=%s status=%s", video_id, envelope.job_id, envelope.status)
    rows = await self._store.update("videos", {"id": video_id}, {"camera_video_url": result.compressed_video_url})
    if not rows:
      logger.warning("Compression result for unknown video video_id=%s", video_id)
      return RouteResult(status="dropped", detail=f"video {video_id} not found")

    logger.info("Compression result applied video_id=%s url=%s", video_id, result.compressed_video_url)
    return RouteResult(status="processed", detail=video_id)
