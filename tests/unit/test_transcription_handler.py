from __future__ import annotations

import json

import pytest
from fakes import FakeCaptionStorage, InMemoryRecordStore

from ingest.results.envelope import JobResultEnvelope
from ingest.results.errors import IncompleteResultError
from ingest.results.transcription import TranscriptionResultHandler, caption_object_name

PAYLOAD = {"video_id": "v1", "transcription": {"duration": 3.2, "language": "en", "words": [{"text": "hello", "start": 0.0, "end": 0.4}]}}


def _envelope(payload) -> JobResultEnvelope:
  return JobResultEnvelope(job_type="transcription", job_id="job-1", payload=payload, status="completed")


@pytest.mark.anyio
async def test_transcription_uploads_caption_and_records_url() -> None:
  store = InMemoryRecordStore({"videos": [{"id": "v1", "transcript_url": None}]})
  storage = FakeCaptionStorage()

  result = await TranscriptionResultHandler(store=store, storage=storage).handle(_envelope(PAYLOAD))

  assert result.status == "processed"
  document = json.loads(storage.objects["videos/v1.json"])
  assert document == {"video_id": "v1", "transcription": PAYLOAD["transcription"]}
  assert store.rows("videos")[0]["transcript_url"] == "https://storage.googleapis.com/captions/videos/v1.json"


@pytest.mark.anyio
async def test_replay_replaces_existing_caption() -> None:
  store = InMemoryRecordStore({"videos": [{"id": "v1", "transcript_url": None}]})
  storage = FakeCaptionStorage()
  handler = TranscriptionResultHandler(store=store, storage=storage)

  await handler.handle(_envelope(PAYLOAD))
  first_url = store.rows("videos")[0]["transcript_url"]
  await handler.handle(_envelope(PAYLOAD))

  assert storage.deleted == [caption_object_name("v1")]
  assert list(storage.objects) == ["videos/v1.json"]
  assert store.rows("videos")[0]["transcript_url"] == first_url


@pytest.mark.anyio
@pytest.mark.parametrize("payload", [{"transcription": PAYLOAD["transcription"]}, {"video_id": "v1"}, None])
async def test_incomplete_transcription_is_left_for_redelivery(payload) -> None:
  storage = FakeCaptionStorage()

  with pytest.raises(IncompleteResultError):
    await TranscriptionResultHandler(store=InMemoryRecordStore(), storage=storage).handle(_envelope(payload))

  assert storage.objects == {}


@pytest.mark.anyio
async def test_unknown_video_is_dropped() -> None:
  result = await TranscriptionResultHandler(store=InMemoryRecordStore({"videos": []}), storage=FakeCaptionStorage()).handle(_envelope(PAYLOAD))

  assert result.status == "dropped"
