"""Exceptions raised while ingesting job results."""

from __future__ import annotations


class ResultIngestError(Exception):
  """Base class for result ingestion failures."""


class MalformedMessageError(ResultIngestError):
  """Raised when a message body cannot be decoded into an envelope.

  Redelivery cannot repair a structurally bad message, so adapters acknowledge it.
  """


class IncompleteResultError(ResultIngestError):
  """Raised when a result is missing data that a later delivery may carry.

  The message is left unacknowledged so the broker redelivers it.
  """


class ProgressContentionError(ResultIngestError):
  """Raised when the progress compare-and-set keeps failing while the counter stands still.

  Raising leaves the message unacknowledged instead of dropping its increment.
  """
