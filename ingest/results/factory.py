"""Wire result handlers to their collaborators."""

from __future__ import annotations

from ingest.config import Settings
from ingest.notifications.contracts import Notifier
from ingest.results.compression import CompressionResultHandler
from ingest.results.envelope import JOB_TYPE_COMPRESSION, JOB_TYPE_QUESTION_GENERATION, JOB_TYPE_TRANSCRIPTION
from ingest.results.progress import AssignmentProgressTracker
from ingest.results.questions import QuestionGenerationResultHandler
from ingest.results.router import JobResultRouter
from ingest.results.transcription import TranscriptionResultHandler
from ingest.services.storage_client import CaptionStorage
from ingest.storage.store import RecordStore


def build_router(settings: Settings, *, store: RecordStore, storage: CaptionStorage, notifier: Notifier) -> JobResultRouter:
  """Build a router with one handler per supported job type."""
  progress = AssignmentProgressTracker(store=store, notifier=notifier, max_attempts=settings.progress_update_attempts)
  return JobResultRouter(
    {
      JOB_TYPE_TRANSCRIPTION: TranscriptionResultHandler(store=store, storage=storage),
      JOB_TYPE_COMPRESSION: CompressionResultHandler(store=store),
      JOB_TYPE_QUESTION_GENERATION: QuestionGenerationResultHandler(store=store, progress=progress, probe_limit=settings.order_index_probe_limit),
    }
  )
