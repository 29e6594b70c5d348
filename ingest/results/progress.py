"""Assignment generation progress and one-shot finalization."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from ingest.notifications.contracts import Notifier, UserNotification
from ingest.results.errors import ProgressContentionError
from ingest.storage.store import RecordStore

logger = logging.getLogger(__name__)

READY_FOR_REVIEW = "ready_for_review"
READY_FOR_REVIEW_NOTIFICATION = "assignment/ready_for_review"
# Statuses past generation; finalization never moves an assignment back to review.
_TERMINAL_STATUSES = frozenset({READY_FOR_REVIEW, "published", "graded"})
_ASSIGNMENT_COLUMNS = ("id", "lecturer_id", "course_id", "title", "total_types", "generated_types", "status")


@dataclass(frozen=True)
class ProgressUpdate:
  """The assignment state written by one successful increment."""

  assignment_id: str
  generated_types: int
  total_types: int
  status: str
  finalized: bool


def crosses_threshold(*, current: int, total: int) -> bool:
  """True only for the increment that moves the counter onto or past the total."""
  return total > 0 and current < total <= current + 1


class AssignmentProgressTracker:
  """Advances `generated_types` with a compare-and-set so concurrent replicas never lose an increment.

  Only the writer whose increment crosses `total_types` flips the status and
  notifies the lecturer, which makes finalization one-shot without a lock.
  """

  def __init__(self, *, store: RecordStore, notifier: Notifier, max_attempts: int = 5) -> None:
    self._store = store
    self._notifier = notifier
    self._max_attempts = max_attempts

  async def record_generated_type(self, assignment_id: str, *, run_id: str) -> ProgressUpdate | None:
    """Increment the counter exactly once; returns None only when the assignment is gone.

    A lost compare-and-set followed by a higher counter means another writer
    succeeded and is retried freely. `max_attempts` bounds only the rounds in
    which the counter stands still; exhausting them raises ProgressContentionError.
    """
    stalled = 0
    last_seen: int | None = None
    while True:
      rows = await self._store.select("assignments", {"id": assignment_id}, columns=_ASSIGNMENT_COLUMNS, limit=1)
      if not rows:
        logger.error("Assignment not found while recording generation progress assignment_id=%s run_id=%s", assignment_id, run_id)
        return None

      assignment = rows[0]
      current = int(assignment.get("generated_types") or 0)
      total = int(assignment.get("total_types") or 0)
      if last_seen is not None and current == last_seen:
        stalled += 1
        if stalled >= self._max_attempts:
          logger.error("Assignment progress update made no headway after %d attempts assignment_id=%s run_id=%s", stalled, assignment_id, run_id)
          raise ProgressContentionError(f"progress compare-and-set for assignment {assignment_id} stalled at generated_types={current}")
      last_seen = current
      finalize = crosses_threshold(current=current, total=total) and assignment.get("status") not in _TERMINAL_STATUSES

      patch: dict[str, object] = {"generated_types": current + 1, "updated_at": datetime.now(UTC)}
      if finalize:
        patch["status"] = READY_FOR_REVIEW

      updated = await self._store.update("assignments", {"id": assignment_id, "generated_types": current}, patch)
      if not updated:
        logger.info("Assignment progress changed concurrently, retrying assignment_id=%s seen_generated_types=%d", assignment_id, current)
        continue

      row = updated[0]
      status = str(row.get("status") or "")
      logger.info("Updated assignment generation progress assignment_id=%s generated_types=%d total_types=%d status=%s", assignment_id, current + 1, total, status)
      if finalize:
        # The status flip is committed; redelivery would not notify again, so a lookup failure must not propagate.
        try:
          await self._notify_ready_for_review(row)
        except Exception as exc:  # noqa: BLE001
          logger.error("Ready-for-review notification failed assignment_id=%s run_id=%s error=%s", assignment_id, run_id, exc, exc_info=True)
      return ProgressUpdate(assignment_id=assignment_id, generated_types=current + 1, total_types=total, status=status, finalized=finalize)

  async def _notify_ready_for_review(self, assignment: dict) -> None:
    assignment_id = str(assignment.get("id"))
    lecturer_id = assignment.get("lecturer_id")
    if not lecturer_id:
      logger.error("Assignment has no lecturer; skipping ready-for-review notification assignment_id=%s", assignment_id)
      return

    lecturers = await self._store.select("lecturers", {"id": lecturer_id}, columns=("user_id",), limit=1)
    user_id = lecturers[0].get("user_id") if lecturers else None
    if not user_id:
      logger.error("Failed to load lecturer user_id for assignment notification assignment_id=%s lecturer_id=%s", assignment_id, lecturer_id)
      return

    notification = UserNotification(
      type=READY_FOR_REVIEW_NOTIFICATION,
      payload={
        "assignmentId": assignment_id,
        "assignmentTitle": assignment.get("title") or "your assignment",
        "courseId": assignment.get("course_id"),
        "timestamp": datetime.now(UTC).isoformat(),
      },
    )
    await self._notifier.notify_user(str(user_id), notification, priority="high", category="assignment")
    logger.info("Lecturer notified: assignment ready for review assignment_id=%s user_id=%s", assignment_id, user_id)
