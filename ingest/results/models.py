"""Value objects returned by result handlers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

RouteStatus = Literal["processed", "skipped", "dropped", "ignored"]
OutcomeStatus = Literal["inserted", "skipped", "error"]


@dataclass(frozen=True)
class QuestionOutcome:
  """Result of ingesting one generated question."""

  position: int
  status: OutcomeStatus
  reason: str | None = None
  order_index: int | None = None
  question_id: str | None = None


@dataclass
class QuestionBatchSummary:
  """Per-envelope accounting for a question generation result."""

  assignment_id: str
  run_id: str
  received: int
  outcomes: list[QuestionOutcome] = field(default_factory=list)

  @property
  def inserted(self) -> int:
    return sum(1 for outcome in self.outcomes if outcome.status == "inserted")

  @property
  def skipped(self) -> int:
    return sum(1 for outcome in self.outcomes if outcome.status == "skipped")

  @property
  def errors(self) -> int:
    return sum(1 for outcome in self.outcomes if outcome.status == "error")


@dataclass(frozen=True)
class RouteResult:
  """What a handler did with an envelope. Every status is acknowledged."""

  status: RouteStatus
  detail: str | None = None
  summary: QuestionBatchSummary | None = None
