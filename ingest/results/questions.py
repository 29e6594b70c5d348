"""Idempotent ingestion of generated assignment questions.

Several consumer replicas may ingest results for the same assignment at once
and brokers redeliver freely. There is no lock; instead every write is
preceded by a re-read of the store:

- a question whose prompt already exists for the assignment is skipped, which
  absorbs duplicate deliveries;
- order indexes are allocated by probing upward from the highest known index
  and checking the store for each candidate;
- if another replica still wins the race for a candidate, the partial unique
  index rejects our insert and the probe continues from the next candidate.

Code questions and all other kinds are numbered in two independent spaces.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import msgspec

from ingest.core.logging import INSPECT_LOGGER_NAME
from ingest.results.envelope import JobResultEnvelope
from ingest.results.models import QuestionBatchSummary, QuestionOutcome, RouteResult
from ingest.results.payloads import GeneratedQuestion, NumberingSpace, declared_order_index, extract_generated_questions, normalize_question_type, numbering_space, resolve_assignment_id, storage_question_type
from ingest.results.progress import AssignmentProgressTracker
from ingest.schema.sql import CODE_STORAGE_TYPES, GENERAL_STORAGE_TYPES
from ingest.storage.store import RecordStore, StoreConflictError, StoreWriteError

logger = logging.getLogger(__name__)
inspect_logger = logging.getLogger(INSPECT_LOGGER_NAME)

_SPACE_STORAGE_TYPES: dict[NumberingSpace, list[str]] = {"code": list(CODE_STORAGE_TYPES), "general": list(GENERAL_STORAGE_TYPES)}


@dataclass
class _BatchState:
  """In-batch index bookkeeping, kept per numbering space."""

  running_max: dict[NumberingSpace, int]
  claimed: dict[NumberingSpace, set[int]] = field(default_factory=lambda: {"code": set(), "general": set()})

  def claim(self, space: NumberingSpace, order_index: int) -> None:
    self.claimed[space].add(order_index)
    if order_index > self.running_max[space]:
      self.running_max[space] = order_index


class QuestionGenerationResultHandler:
  """Inserts each generated question exactly once and advances assignment progress."""

  def __init__(self, *, store: RecordStore, progress: AssignmentProgressTracker, probe_limit: int = 1000) -> None:
    self._store = store
    self._progress = progress
    self._probe_limit = probe_limit

  async def handle(self, envelope: JobResultEnvelope) -> RouteResult:
    run_id = envelope.job_id or "<unknown>"
    questions = extract_generated_questions(envelope.payload)
    assignment_id = resolve_assignment_id(questions=questions, payload=envelope.payload, envelope_assignment_id=envelope.assignment_id, job_id=envelope.job_id)
    if not assignment_id:
      logger.error("Question generation result missing assignment_id (cannot process) run_id=%s job_type=%s", run_id, envelope.job_type)
      return RouteResult(status="dropped", detail="assignment id not resolvable")

    _inspect_payload(run_id=run_id, assignment_id=assignment_id, envelope=envelope)

    if not questions:
      payload_keys = sorted(envelope.payload) if isinstance(envelope.payload, dict) else None
      logger.warning("Question generation result contained no questions assignment_id=%s run_id=%s status=%s payload_keys=%s", assignment_id, run_id, envelope.status, payload_keys)
      return RouteResult(status="dropped", detail="no questions")

    logger.info("Processing question generation result assignment_id=%s run_id=%s question_count=%d status=%s", assignment_id, run_id, len(questions), envelope.status)
    try:
      summary = await self.ingest(assignment_id=assignment_id, run_id=run_id, questions=questions)
      if summary.inserted == 0:
        # A pure duplicate or retry must not advance the counter again.
        logger.warning("No new questions inserted for generation result; skipping progress increment assignment_id=%s run_id=%s", assignment_id, run_id)
        return RouteResult(status="skipped", detail="no new questions", summary=summary)
      await self._progress.record_generated_type(assignment_id, run_id=run_id)
    except Exception:
      logger.exception("Question generation result failed assignment_id=%s run_id=%s", assignment_id, run_id)
      raise
    return RouteResult(status="processed", summary=summary)

  async def ingest(self, *, assignment_id: str, run_id: str, questions: list[GeneratedQuestion]) -> QuestionBatchSummary:
    """Insert a batch sequentially and return per-question outcomes."""
    batch = _BatchState(running_max={"code": await self._persisted_max(assignment_id, "code"), "general": await self._persisted_max(assignment_id, "general")})
    summary = QuestionBatchSummary(assignment_id=assignment_id, run_id=run_id, received=len(questions))
    for position, question in enumerate(questions, start=1):
      outcome = await self._ingest_one(assignment_id=assignment_id, position=position, question=question, batch=batch)
      summary.outcomes.append(outcome)

    logger.info(
      "Inserted generated questions assignment_id=%s run_id=%s inserted=%d skipped=%d errors=%d received=%d",
      assignment_id,
      run_id,
      summary.inserted,
      summary.skipped,
      summary.errors,
      summary.received,
    )
    return summary

  async def _ingest_one(self, *, assignment_id: str, position: int, question: GeneratedQuestion, batch: _BatchState) -> QuestionOutcome:
    if not question.prompt_markdown:
      logger.warning("Skipping generated question with missing prompt_markdown assignment_id=%s position=%d", assignment_id, position)
      return QuestionOutcome(position=position, status="skipped", reason="empty prompt")

    question_type = normalize_question_type(question.type)
    space = numbering_space(question_type)

    existing_id = await self._existing_prompt(assignment_id, question.prompt_markdown)
    if existing_id:
      logger.info("Question already exists, skipping insert assignment_id=%s position=%d existing_question_id=%s", assignment_id, position, existing_id)
      return QuestionOutcome(position=position, status="skipped", reason="duplicate prompt", question_id=existing_id)

    order_index = await self._resolve_index(assignment_id, space, declared_order_index(question.order_index), batch)
    row = _question_row(assignment_id=assignment_id, question=question, storage_type=storage_question_type(question_type))

    for conflict in range(self._probe_limit + 1):
      if conflict:
        order_index = await self._probe(assignment_id, space, batch)
      # A concurrent delivery of this same question may have landed while the index was resolved.
      existing_id = await self._existing_prompt(assignment_id, question.prompt_markdown)
      if existing_id:
        logger.info("Question inserted concurrently, skipping insert assignment_id=%s position=%d existing_question_id=%s", assignment_id, position, existing_id)
        return QuestionOutcome(position=position, status="skipped", reason="duplicate prompt", question_id=existing_id)
      batch.claim(space, order_index)
      try:
        inserted = await self._store.insert("questions", {**row, "order_index": order_index})
      except StoreConflictError:
        logger.info("Order index taken concurrently assignment_id=%s space=%s order_index=%d conflict=%d", assignment_id, space, order_index, conflict + 1)
        continue
      except StoreWriteError as exc:
        logger.error("Failed to insert generated question assignment_id=%s position=%d order_index=%d type=%s error=%s", assignment_id, position, order_index, question_type, exc)
        return QuestionOutcome(position=position, status="error", reason=str(exc), order_index=order_index)
      return QuestionOutcome(position=position, status="inserted", order_index=order_index, question_id=str(inserted.get("id") or row["id"]))

    logger.error("Order index conflicts exceeded probe limit assignment_id=%s position=%d limit=%d", assignment_id, position, self._probe_limit)
    return QuestionOutcome(position=position, status="error", reason="order index contention", order_index=order_index)

  async def _resolve_index(self, assignment_id: str, space: NumberingSpace, declared: int | None, batch: _BatchState) -> int:
    if declared is not None and declared not in batch.claimed[space] and not await self._index_taken(assignment_id, space, declared):
      return declared
    return await self._probe(assignment_id, space, batch)

  async def _probe(self, assignment_id: str, space: NumberingSpace, batch: _BatchState) -> int:
    """Find the next free index above the running maximum, re-reading the store per candidate."""
    candidate = batch.running_max[space]
    for _ in range(self._probe_limit):
      candidate += 1
      if candidate in batch.claimed[space]:
        continue
      if not await self._index_taken(assignment_id, space, candidate):
        return candidate
    logger.warning("Order index probe limit reached; using last candidate assignment_id=%s space=%s candidate=%d limit=%d", assignment_id, space, candidate, self._probe_limit)
    return candidate

  async def _persisted_max(self, assignment_id: str, space: NumberingSpace) -> int:
    rows = await self._store.select("questions", {"assignment_id": assignment_id, "type": _SPACE_STORAGE_TYPES[space]}, columns=("order_index",))
    return max((int(row["order_index"]) for row in rows if row.get("order_index") is not None), default=0)

  async def _index_taken(self, assignment_id: str, space: NumberingSpace, order_index: int) -> bool:
    rows = await self._store.select("questions", {"assignment_id": assignment_id, "order_index": order_index, "type": _SPACE_STORAGE_TYPES[space]}, columns=("id",), limit=1)
    return bool(rows)

  async def _existing_prompt(self, assignment_id: str, prompt_markdown: str) -> str | None:
    rows = await self._store.select("questions", {"assignment_id": assignment_id, "prompt_markdown": prompt_markdown}, columns=("id",), limit=1)
    return str(rows[0]["id"]) if rows else None


def _question_row(*, assignment_id: str, question: GeneratedQuestion, storage_type: str) -> dict[str, Any]:
  return {
    "id": str(uuid.uuid4()),
    "assignment_id": assignment_id,
    "type": storage_type,
    "prompt_markdown": question.prompt_markdown,
    "content_json": dict(question.content_json or {}),
    "explanation": question.explanation,
    "answers": question.answers,
    "points": 1,
    "created_at": datetime.now(UTC),
  }


def _inspect_payload(*, run_id: str, assignment_id: str, envelope: JobResultEnvelope) -> None:
  """Append the raw payload to the inspect log, one JSON document per line."""
  if not inspect_logger.isEnabledFor(logging.INFO):
    return
  try:
    line = msgspec.json.encode({"runId": run_id, "assignmentId": assignment_id, "job_type": envelope.job_type, "payload": envelope.payload}).decode("utf-8")
  except (TypeError, msgspec.EncodeError) as exc:
    logger.warning("Failed to encode question generation payload for inspection assignment_id=%s run_id=%s error=%s", assignment_id, run_id, exc)
    return
  inspect_logger.info(line)
