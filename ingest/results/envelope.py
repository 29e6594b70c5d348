"""Decode transport message bodies into job result envelopes."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import msgspec

from ingest.results.errors import MalformedMessageError

logger = logging.getLogger(__name__)

JOB_TYPE_TRANSCRIPTION = "transcription"
JOB_TYPE_COMPRESSION = "compression"
JOB_TYPE_QUESTION_GENERATION = "question_generation"


class JobResultEnvelope(msgspec.Struct, frozen=True, kw_only=True):
  """Transport-agnostic completion notice emitted by a worker."""

  job_type: str
  job_id: str = msgspec.field(name="jobId", default="")
  payload: Any = None
  status: str = ""
  completion_timestamp: str | None = msgspec.field(name="completionTimestamp", default=None)
  worker_identity: str | None = msgspec.field(name="serverIdentity", default=None)
  assignment_id: str | None = None
  # Log-broker record key; attached by the adapter, never read from the body.
  partition_key: str | None = None

  @property
  def completed_at(self) -> datetime | None:
    """Parse the completion timestamp, returning None when absent or invalid."""
    if not self.completion_timestamp:
      return None
    raw = self.completion_timestamp.strip()
    if raw.endswith("Z"):
      raw = raw[:-1] + "+00:00"
    try:
      return datetime.fromisoformat(raw)
    except ValueError:
      return None


class _LegacyCompressionRecord(msgspec.Struct, frozen=True):
  video_id: str = msgspec.field(name="videoId", default="")
  cloud_url: str = msgspec.field(name="cloudUrl", default="")


def decode_envelope(body: bytes | str | dict[str, Any] | None, *, partition_key: str | None = None) -> JobResultEnvelope:
  """Decode a message body into an envelope, raising MalformedMessageError on bad input."""
  if body is None or body == b"" or body == "" or body == {}:
    raise MalformedMessageError("Empty message body")
  try:
    if isinstance(body, dict):
      envelope = msgspec.convert(body, type=JobResultEnvelope)
    else:
      envelope = msgspec.json.decode(body, type=JobResultEnvelope)
  except (msgspec.DecodeError, msgspec.ValidationError) as exc:
    raise MalformedMessageError(f"Invalid job result envelope: {exc}") from exc

  if not envelope.job_type.strip():
    raise MalformedMessageError("Envelope is missing job_type")
  return msgspec.structs.replace(envelope, partition_key=partition_key)


def decode_compression_record(key: bytes | str | None, value: bytes | str | None) -> JobResultEnvelope:
  """Decode a compression topic record.

  The legacy producer publishes `key = videoId` and `value = {videoId, cloudUrl}`;
  full envelopes on the same topic are decoded as-is.
  """
  document = _record_document(value, kind="compression")
  video_key = _text(key)
  if "job_type" in document:
    return decode_envelope(document, partition_key=video_key)

  if not video_key:
    raise MalformedMessageError("Compression record has no key (videoId)")
  try:
    record = msgspec.convert(document, type=_LegacyCompressionRecord)
  except msgspec.ValidationError as exc:
    raise MalformedMessageError(f"Invalid compression record: {exc}") from exc
  if not record.video_id or not record.cloud_url:
    raise MalformedMessageError(f"Compression record for key {video_key} is missing videoId or cloudUrl")

  payload = {"video_id": record.video_id, "compressed_video_url": record.cloud_url}
  return JobResultEnvelope(job_type=JOB_TYPE_COMPRESSION, job_id=f"compression:{video_key}", payload=payload, status="completed", partition_key=video_key)


def decode_transcription_record(key: bytes | str | None, value: bytes | str | None) -> JobResultEnvelope:
  """Decode a transcription topic record.

  Workers either publish a full envelope or a bare `{video_id, transcription}`
  document; the bare form is wrapped into a transcription envelope.
  """
  document = _record_document(value, kind="transcription")
  record_key = _text(key)
  if "job_type" in document:
    return decode_envelope(document, partition_key=record_key)
  job_id = f"transcription:{document.get('video_id') or record_key or 'unknown'}"
  return JobResultEnvelope(job_type=JOB_TYPE_TRANSCRIPTION, job_id=job_id, payload=document, status="completed", partition_key=record_key)


def decode_envelope_record(key: bytes | str | None, value: bytes | str | None) -> JobResultEnvelope:
  """Decode a record whose value is always a full envelope."""
  return decode_envelope(value, partition_key=_text(key))


def _record_document(value: bytes | str | None, *, kind: str) -> dict[str, Any]:
  if not value:
    raise MalformedMessageError(f"Received empty {kind} record")
  try:
    document = msgspec.json.decode(value)
  except msgspec.DecodeError as exc:
    raise MalformedMessageError(f"Invalid {kind} record: {exc}") from exc
  if not isinstance(document, dict):
    raise MalformedMessageError(f"{kind.capitalize()} record must be a JSON object, got {type(document).__name__}")
  return document


def _text(raw: bytes | str | None) -> str | None:
  if raw is None:
    return None
  if isinstance(raw, bytes):
    try:
      raw = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
      raise MalformedMessageError("Record key is not valid UTF-8") from exc
  value = raw.strip()
  return value or None
