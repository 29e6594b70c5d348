from __future__ import annotations

import json
from datetime import UTC, datetime

import pytest

from ingest.results.envelope import JobResultEnvelope, decode_compression_record, decode_envelope, decode_envelope_record, decode_transcription_record
from ingest.results.errors import MalformedMessageError

WIRE_ENVELOPE = {
  "jobId": "job-42",
  "job_type": "compression",
  "payload": {"video_id": "v1", "compressed_video_url": "https://x/v1.mp4"},
  "status": "completed",
  "completionTimestamp": "2024-05-01T10:15:00Z",
  "serverIdentity": "worker-7",
}


def test_decode_envelope_maps_wire_names() -> None:
  envelope = decode_envelope(json.dumps(WIRE_ENVELOPE).encode())

  assert envelope.job_id == "job-42"
  assert envelope.job_type == "compression"
  assert envelope.payload == {"video_id": "v1", "compressed_video_url": "https://x/v1.mp4"}
  assert envelope.worker_identity == "worker-7"
  assert envelope.completed_at == datetime(2024, 5, 1, 10, 15, tzinfo=UTC)
  assert envelope.partition_key is None


def test_decode_envelope_accepts_text_and_mappings() -> None:
  from_text = decode_envelope(json.dumps(WIRE_ENVELOPE))
  from_mapping = decode_envelope(dict(WIRE_ENVELOPE), partition_key="v1")

  assert from_text.job_id == from_mapping.job_id == "job-42"
  assert from_mapping.partition_key == "v1"


def test_completed_at_is_none_for_unparseable_timestamp() -> None:
  envelope = JobResultEnvelope(job_type="transcription", completion_timestamp="yesterday")

  assert envelope.completed_at is None


@pytest.mark.parametrize("body", [None, b"", "", {}, b"not json", b"[1, 2]", b'{"jobId": "x"}', b'{"job_type": "  "}', b'{"job_type": 5}'])
def test_decode_envelope_rejects_malformed_bodies(body) -> None:
  with pytest.raises(MalformedMessageError):
    decode_envelope(body)


def test_legacy_compression_record_becomes_compression_envelope() -> None:
  envelope = decode_compression_record(b"v1", b'{"videoId": "v1", "cloudUrl": "https://x/v1.mp4"}')

  assert envelope.job_type == "compression"
  assert envelope.partition_key == "v1"
  assert envelope.payload == {"video_id": "v1", "compressed_video_url": "https://x/v1.mp4"}


def test_compression_record_keeps_value_video_id_for_mismatch_detection() -> None:
  envelope = decode_compression_record(b"key-video", b'{"videoId": "body-video", "cloudUrl": "https://x/a.mp4"}')

  assert envelope.partition_key == "key-video"
  assert envelope.payload["video_id"] == "body-video"


@pytest.mark.parametrize(
  ("key", "value"),
  [
    (None, b'{"videoId": "v1", "cloudUrl": "https://x/v1.mp4"}'),
    (b"v1", None),
    (b"v1", b'{"videoId": "v1"}'),
    (b"v1", b"garbage"),
  ],
)
def test_compression_record_without_key_or_fields_is_malformed(key, value) -> None:
  with pytest.raises(MalformedMessageError):
    decode_compression_record(key, value)


def test_compression_topic_also_accepts_full_envelopes() -> None:
  envelope = decode_compression_record(b"v1", json.dumps(WIRE_ENVELOPE).encode())

  assert envelope.job_id == "job-42"
  assert envelope.partition_key == "v1"


def test_bare_transcription_record_is_wrapped() -> None:
  value = json.dumps({"video_id": "v9", "transcription": {"language": "en", "words": []}}).encode()

  envelope = decode_transcription_record(None, value)

  assert envelope.job_type == "transcription"
  assert envelope.job_id == "transcription:v9"
  assert envelope.payload["video_id"] == "v9"


def test_transcription_topic_envelope_is_decoded_as_is() -> None:
  value = json.dumps({**WIRE_ENVELOPE, "job_type": "transcription"}).encode()

  envelope = decode_transcription_record(b"v9", value)

  assert envelope.job_id == "job-42"
  assert envelope.partition_key == "v9"


def test_envelope_record_uses_key_as_partition_key() -> None:
  envelope = decode_envelope_record(b" v1 ", json.dumps(WIRE_ENVELOPE).encode())

  assert envelope.partition_key == "v1"
