"""Pure normalizers for job-type specific result payloads.

Workers publish several historical payload shapes. Every function here maps
those shapes to one canonical value and has no I/O, so handlers stay focused
on persistence.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Literal

QuestionType = Literal["MCQ", "FillBlank", "Essay", "Code"]
NumberingSpace = Literal["code", "general"]

_UUID_PATTERN = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE)
_NON_LETTERS = re.compile(r"[^A-Z]")

_STORAGE_TYPES: dict[str, str] = {"MCQ": "MCQ", "FillBlank": "Fill_in", "Essay": "Essay", "Code": "Code"}
_FILL_BLANK_ALIASES = {"FILLIN", "FILLBLANK", "FILLINTHEBLANK", "FILLINBLANK"}


@dataclass(frozen=True)
class GeneratedQuestion:
  """One generated question as published by the question workers."""

  prompt_markdown: str
  type: str | None = None
  assignment_id: str | None = None
  order_index: Any = None
  content_json: dict[str, Any] | None = None
  explanation: str | None = None
  answers: Any = None


@dataclass(frozen=True)
class TranscriptionResult:
  video_id: str
  transcription: dict[str, Any] = field(default_factory=dict)

  @property
  def duration(self) -> Any:
    return self.transcription.get("duration")

  @property
  def language(self) -> str | None:
    return self.transcription.get("language")

  @property
  def words(self) -> list[dict[str, Any]]:
    words = self.transcription.get("words")
    return words if isinstance(words, list) else []

  def caption_document(self) -> dict[str, Any]:
    """Return the caption JSON stored for the video player."""
    return {"video_id": self.video_id, "transcription": self.transcription}


@dataclass(frozen=True)
class CompressionResult:
  video_id: str
  compressed_video_url: str


def extract_generated_questions(payload: Any) -> list[GeneratedQuestion]:
  """Normalize `[...]`, `{questions}`, `{data}` and `{data: {questions}}` into questions.

  Entries that are not objects are dropped; a missing prompt is kept as an
  empty string so the caller can count the skip.
  """
  return [_to_question(item) for item in _raw_question_list(payload) if isinstance(item, dict)]


def _raw_question_list(payload: Any) -> list[Any]:
  if not payload:
    return []
  if isinstance(payload, list):
    return payload
  if not isinstance(payload, dict):
    return []
  if isinstance(payload.get("questions"), list):
    return payload["questions"]
  data = payload.get("data")
  if isinstance(data, list):
    return data
  if isinstance(data, dict) and isinstance(data.get("questions"), list):
    return data["questions"]
  return []


def _to_question(item: dict[str, Any]) -> GeneratedQuestion:
  content = item.get("content_json")
  return GeneratedQuestion(
    prompt_markdown=str(item.get("prompt_markdown") or "").strip(),
    type=item.get("type"),
    assignment_id=_clean_str(item.get("assignment_id")),
    order_index=item.get("order_index"),
    content_json=dict(content) if isinstance(content, dict) else None,
    explanation=item.get("explanation"),
    answers=item.get("answers"),
  )


def normalize_question_type(raw: Any) -> QuestionType:
  """Map a free-form type label to the canonical question type; unknown labels become MCQ."""
  label = _NON_LETTERS.sub("", str(raw or "").upper())
  if label in _FILL_BLANK_ALIASES:
    return "FillBlank"
  if label == "ESSAY":
    return "Essay"
  if label == "CODE":
    return "Code"
  return "MCQ"


def storage_question_type(question_type: QuestionType) -> str:
  """Return the value persisted in questions.type."""
  return _STORAGE_TYPES[question_type]


def numbering_space(question_type: QuestionType) -> NumberingSpace:
  """Code questions are numbered separately from every other kind."""
  return "code" if question_type == "Code" else "general"


def declared_order_index(raw: Any) -> int | None:
  """Return a usable declared index, or None when absent or not a positive integer."""
  if isinstance(raw, bool):
    return None
  if isinstance(raw, float) and raw.is_integer():
    raw = int(raw)
  if isinstance(raw, int) and raw > 0:
    return raw
  return None


def resolve_assignment_id(*, questions: list[GeneratedQuestion], payload: Any, envelope_assignment_id: str | None, job_id: str) -> str | None:
  """Resolve the target assignment; the first non-empty candidate wins."""
  candidates: list[str | None] = [questions[0].assignment_id if questions else None]
  if isinstance(payload, dict):
    candidates.append(_clean_str(payload.get("assignment_id")))
    data = payload.get("data")
    if isinstance(data, dict):
      candidates.append(_clean_str(data.get("assignment_id")))
  candidates.append(_clean_str(envelope_assignment_id))
  candidates.append(extract_uuid(job_id))
  for candidate in candidates:
    if candidate:
      return candidate
  return None


def extract_uuid(text: str | None) -> str | None:
  """Return the first UUID embedded in a string, lower-cased."""
  if not text:
    return None
  match = _UUID_PATTERN.search(text)
  return match.group(0).lower() if match else None


def parse_transcription(payload: Any) -> TranscriptionResult | None:
  """Read a transcription payload, flat or nested under `transcription`.

  Returns None when the video id or the transcription body is missing.
  """
  if not isinstance(payload, dict):
    return None
  video_id = _clean_str(payload.get("video_id"))
  body = payload.get("transcription")
  if body is None and "words" in payload:
    body = payload
  if not video_id or not isinstance(body, dict) or not body:
    return None
  if body is payload:
    body = {key: value for key, value in payload.items() if key != "video_id"}
  return TranscriptionResult(video_id=video_id, transcription=dict(body))


def parse_compression(payload: Any, *, default_video_id: str | None = None) -> CompressionResult | None:
  """Read a compression payload; returns None when either field is missing.

  Bus workers historically put the video id in the job id only, so callers may
  pass it as `default_video_id`.
  """
  if not isinstance(payload, dict):
    return None
  video_id = _clean_str(payload.get("video_id") or payload.get("videoId")) or _clean_str(default_video_id)
  url = _clean_str(payload.get("compressed_video_url") or payload.get("cloud_url") or payload.get("cloudUrl"))
  if not video_id or not url:
    return None
  return CompressionResult(video_id=video_id, compressed_video_url=url)


def _clean_str(value: Any) -> str | None:
  if value is None:
    return None
  text = str(value).strip()
  return text or None
