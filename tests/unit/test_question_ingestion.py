"""Behavior of the question generation ingestion engine under redelivery and concurrency."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from fakes import InMemoryRecordStore, RecordingNotifier

from ingest.results.envelope import JobResultEnvelope
from ingest.results.progress import AssignmentProgressTracker
from ingest.results.questions import QuestionGenerationResultHandler
from ingest.storage.store import StoreUnavailableError, StoreWriteError

ASSIGNMENT_ID = "3f1c2b9e-8a7d-4c6e-9b1a-2d3e4f5a6b7c"


def _store(*, total_types: int = 3, questions: list[dict[str, Any]] | None = None) -> InMemoryRecordStore:
  return InMemoryRecordStore(
    {
      "assignments": [{"id": ASSIGNMENT_ID, "lecturer_id": "lecturer-1", "course_id": "course-1", "title": "Week 1 quiz", "total_types": total_types, "generated_types": 0, "status": "processing"}],
      "lecturers": [{"id": "lecturer-1", "user_id": "user-1"}],
      "questions": questions or [],
    }
  )


def _handler(store: InMemoryRecordStore, notifier: RecordingNotifier | None = None, *, probe_limit: int = 1000) -> QuestionGenerationResultHandler:
  progress = AssignmentProgressTracker(store=store, notifier=notifier or RecordingNotifier())
  return QuestionGenerationResultHandler(store=store, progress=progress, probe_limit=probe_limit)


def _envelope(payload: Any, *, job_id: str = f"qgen-{ASSIGNMENT_ID}") -> JobResultEnvelope:
  return JobResultEnvelope(job_type="question_generation", job_id=job_id, payload=payload, status="completed")


def _existing(prompt: str, *, type_: str = "MCQ", order_index: int = 1) -> dict[str, Any]:
  return {"id": f"existing-{prompt}", "assignment_id": ASSIGNMENT_ID, "type": type_, "prompt_markdown": prompt, "order_index": order_index}


def _indexes(store: InMemoryRecordStore, *types: str) -> list[int]:
  return sorted(row["order_index"] for row in store.rows("questions") if row["type"] in types)


def _assignment(store: InMemoryRecordStore) -> dict[str, Any]:
  return store.rows("assignments")[0]


@pytest.mark.anyio
async def test_mixed_batch_numbers_code_and_general_questions_separately() -> None:
  store = _store()
  payload = {"questions": [{"prompt_markdown": "Q1", "type": "MCQ"}, {"prompt_markdown": "Q2", "type": "Code"}]}

  result = await _handler(store).handle(_envelope(payload))

  assert result.status == "processed"
  assert result.summary is not None and result.summary.inserted == 2
  rows = {row["prompt_markdown"]: row for row in store.rows("questions")}
  assert rows["Q1"]["type"] == "MCQ" and rows["Q1"]["order_index"] == 1
  assert rows["Q2"]["type"] == "Code" and rows["Q2"]["order_index"] == 1
  assert rows["Q1"]["points"] == 1
  assert _assignment(store)["generated_types"] == 1


@pytest.mark.anyio
async def test_each_space_is_contiguous_from_one() -> None:
  store = _store()
  payload = [
    {"prompt_markdown": "a", "type": "mcq"},
    {"prompt_markdown": "b", "type": "code"},
    {"prompt_markdown": "c", "type": "fill_in"},
    {"prompt_markdown": "d", "type": "Essay"},
    {"prompt_markdown": "e", "type": "CODE"},
  ]

  await _handler(store).handle(_envelope(payload))

  assert _indexes(store, "MCQ", "Fill_in", "Essay") == [1, 2, 3]
  assert _indexes(store, "Code") == [1, 2]


@pytest.mark.anyio
async def test_redelivery_inserts_nothing_and_advances_progress_once() -> None:
  store = _store()
  handler = _handler(store)
  envelope = _envelope({"data": {"questions": [{"prompt_markdown": "Q1", "type": "MCQ"}, {"prompt_markdown": "Q2", "type": "Essay"}]}})

  first = await handler.handle(envelope)
  second = await handler.handle(envelope)

  assert first.status == "processed"
  assert second.status == "skipped"
  assert second.summary is not None and second.summary.skipped == 2
  assert len(store.rows("questions")) == 2
  assert _assignment(store)["generated_types"] == 1


@pytest.mark.anyio
async def test_concurrent_batches_never_share_an_index() -> None:
  store = _store()
  first = _handler(store)
  second = _handler(store)

  results = await asyncio.gather(
    first.handle(_envelope([{"prompt_markdown": "From replica A", "type": "MCQ"}])),
    second.handle(_envelope([{"prompt_markdown": "From replica B", "type": "Essay"}])),
  )

  assert [result.status for result in results] == ["processed", "processed"]
  assert _indexes(store, "MCQ", "Essay") == [1, 2]
  assert _assignment(store)["generated_types"] == 2


@pytest.mark.anyio
async def test_existing_prompt_is_skipped_even_with_different_type_and_index() -> None:
  store = _store(questions=[_existing("X")])

  result = await _handler(store).handle(_envelope([{"prompt_markdown": "X", "type": "Code", "order_index": 7}]))

  assert result.status == "skipped"
  assert result.summary is not None
  assert result.summary.outcomes[0].reason == "duplicate prompt"
  assert len(store.rows("questions")) == 1
  assert _assignment(store)["generated_types"] == 0


@pytest.mark.anyio
async def test_finalization_notifies_once() -> None:
  store = _store(total_types=3)
  notifier = RecordingNotifier()
  handler = _handler(store, notifier)
  envelopes = [_envelope([{"prompt_markdown": f"Question {n}", "type": kind}]) for n, kind in enumerate(("MCQ", "Essay", "Code"), start=1)]

  for envelope in envelopes:
    await handler.handle(envelope)
  duplicate = await handler.handle(envelopes[-1])

  assignment = _assignment(store)
  assert assignment["generated_types"] == 3
  assert assignment["status"] == "ready_for_review"
  assert duplicate.status == "skipped"
  assert len(notifier.sent) == 1
  user_id, notification, priority, category = notifier.sent[0]
  assert user_id == "user-1"
  assert notification.type == "assignment/ready_for_review"
  assert notification.payload["assignmentId"] == ASSIGNMENT_ID
  assert (priority, category) == ("high", "assignment")


@pytest.mark.anyio
async def test_declared_index_is_kept_when_free_and_probing_continues_above_it() -> None:
  store = _store()

  await _handler(store).handle(_envelope([{"prompt_markdown": "five", "order_index": 5}, {"prompt_markdown": "next"}]))

  rows = {row["prompt_markdown"]: row["order_index"] for row in store.rows("questions")}
  assert rows == {"five": 5, "next": 6}


@pytest.mark.anyio
async def test_declared_index_taken_in_store_or_batch_is_replaced() -> None:
  store = _store(questions=[_existing("persisted", order_index=1)])
  payload = [{"prompt_markdown": "clash with store", "order_index": 1}, {"prompt_markdown": "clash in batch", "order_index": 2}, {"prompt_markdown": "also two", "order_index": 2}]

  await _handler(store).handle(_envelope(payload))

  rows = {row["prompt_markdown"]: row["order_index"] for row in store.rows("questions")}
  assert rows["clash with store"] == 2
  assert rows["clash in batch"] == 3
  assert rows["also two"] == 4


@pytest.mark.anyio
async def test_declared_index_only_conflicts_within_its_own_space() -> None:
  store = _store(questions=[_existing("code one", type_="Code", order_index=1)])

  await _handler(store).handle(_envelope([{"prompt_markdown": "general one", "type": "MCQ", "order_index": 1}]))

  assert _indexes(store, "MCQ") == [1]


@pytest.mark.anyio
async def test_invalid_declared_indexes_fall_back_to_probing() -> None:
  store = _store()

  await _handler(store).handle(_envelope([{"prompt_markdown": "zero", "order_index": 0}, {"prompt_markdown": "text", "order_index": "3"}, {"prompt_markdown": "flag", "order_index": True}]))

  assert _indexes(store, "MCQ") == [1, 2, 3]


@pytest.mark.anyio
async def test_probe_limit_uses_last_candidate() -> None:
  class AlwaysTakenStore(InMemoryRecordStore):
    async def select(self, table, filters, *, columns=None, limit=None):
      if table == "questions" and "order_index" in filters:
        return [{"id": "phantom"}]
      return await super().select(table, filters, columns=columns, limit=limit)

  store = AlwaysTakenStore(_store().tables)

  await _handler(store, probe_limit=3).handle(_envelope([{"prompt_markdown": "crowded"}]))

  assert _indexes(store, "MCQ") == [3]


@pytest.mark.anyio
async def test_rejected_insert_is_counted_and_batch_continues() -> None:
  store = _store()
  store.insert_hook = lambda table, row: StoreWriteError("not null violation") if row.get("prompt_markdown") == "bad" else None

  result = await _handler(store).handle(_envelope([{"prompt_markdown": "bad"}, {"prompt_markdown": "good"}]))

  assert result.status == "processed"
  assert result.summary is not None
  assert [outcome.status for outcome in result.summary.outcomes] == ["error", "inserted"]
  assert result.summary.errors == 1
  assert _assignment(store)["generated_types"] == 1


@pytest.mark.anyio
async def test_unavailable_store_propagates_for_redelivery() -> None:
  store = _store()
  store.insert_hook = lambda table, row: StoreUnavailableError("connection reset")

  with pytest.raises(StoreUnavailableError):
    await _handler(store).handle(_envelope([{"prompt_markdown": "Q1"}]))

  assert _assignment(store)["generated_types"] == 0


@pytest.mark.anyio
async def test_prompt_inserted_by_another_replica_during_index_resolution_is_skipped() -> None:
  class RacingReplicaStore(InMemoryRecordStore):
    prompt_checks = 0

    async def select(self, table, filters, *, columns=None, limit=None):
      rows = await super().select(table, filters, columns=columns, limit=limit)
      if table == "questions" and "prompt_markdown" in filters:
        self.prompt_checks += 1
        if self.prompt_checks == 1:
          # The other replica's insert lands just after our first content check.
          self.rows("questions").append(_existing("Shared", order_index=5))
      return rows

  store = RacingReplicaStore(_store().tables)

  result = await _handler(store).handle(_envelope([{"prompt_markdown": "Shared", "type": "MCQ"}]))

  assert result.status == "skipped"
  assert result.summary is not None
  assert result.summary.outcomes[0].question_id == "existing-Shared"
  assert [row["prompt_markdown"] for row in store.rows("questions")] == ["Shared"]
  assert _assignment(store)["generated_types"] == 0


@pytest.mark.anyio
async def test_empty_prompts_are_skipped() -> None:
  store = _store()

  result = await _handler(store).handle(_envelope([{"prompt_markdown": ""}, {"type": "MCQ"}]))

  assert result.status == "skipped"
  assert result.summary is not None
  assert {outcome.reason for outcome in result.summary.outcomes} == {"empty prompt"}
  assert store.rows("questions") == []


@pytest.mark.anyio
async def test_assignment_id_is_taken_from_job_id_when_payload_has_none() -> None:
  store = _store()

  result = await _handler(store).handle(_envelope([{"prompt_markdown": "Q1"}], job_id=f"assignment-{ASSIGNMENT_ID.upper()}-run-2"))

  assert result.status == "processed"
  assert store.rows("questions")[0]["assignment_id"] == ASSIGNMENT_ID


@pytest.mark.anyio
async def test_unresolvable_assignment_is_dropped() -> None:
  store = _store()

  result = await _handler(store).handle(_envelope([{"prompt_markdown": "Q1"}], job_id="run-without-uuid"))

  assert result.status == "dropped"
  assert store.rows("questions") == []


@pytest.mark.anyio
async def test_envelope_without_questions_is_dropped() -> None:
  store = _store()

  result = await _handler(store).handle(_envelope({"assignment_id": ASSIGNMENT_ID, "questions": []}))

  assert result.status == "dropped"
  assert _assignment(store)["generated_types"] == 0
