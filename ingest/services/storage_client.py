"""Object storage helper for transcript caption documents."""

from __future__ import annotations

import logging
import os
from typing import Protocol
from urllib.parse import quote, urlparse, urlunparse

from google.api_core.exceptions import NotFound
from google.auth.credentials import AnonymousCredentials
from google.cloud import storage
from starlette.concurrency import run_in_threadpool

from ingest.config import Settings

logger = logging.getLogger(__name__)

CAPTION_CONTENT_TYPE = "application/json"


class CaptionStorage(Protocol):
  """Operations the transcription handler needs from object storage."""

  async def delete_if_exists(self, object_name: str) -> bool:
    """Remove an object, returning False when nothing was stored."""

  async def upload_json(self, object_name: str, document: bytes) -> None:
    """Store a JSON document, replacing any existing object."""

  def public_url(self, object_name: str) -> str:
    """Return the URL clients use to fetch an object."""


class StorageClient(CaptionStorage):
  """Thin wrapper over GCS and emulator access for caption documents."""

  def __init__(self, settings: Settings) -> None:
    self._bucket_name = settings.captions_bucket
    self._storage_host = settings.gcs_storage_host
    self._public_base_url = settings.storage_public_base_url
    # Ensure emulator endpoint is visible to the SDK in local development.
    if self._storage_host:
      emulator_endpoint = _normalize_emulator_endpoint(self._storage_host)
      os.environ["GCS_STORAGE_EMULATOR_HOST"] = emulator_endpoint
      self._client = storage.Client(project=settings.gcp_project_id or "local-dev", credentials=AnonymousCredentials(), client_options={"api_endpoint": emulator_endpoint})
    else:
      self._client = storage.Client(project=settings.gcp_project_id)

  @property
  def bucket_name(self) -> str:
    """Return the bucket that holds caption objects."""
    return self._bucket_name

  async def ensure_bucket(self) -> None:
    """Create the captions bucket when missing in local/dev flows."""
    # Keep production startup side-effect free; only auto-create in emulator mode.
    if not self._storage_host:
      return
    bucket = self._client.bucket(self._bucket_name)

    def _create_if_missing() -> None:
      if not bucket.exists(client=self._client):
        self._client.create_bucket(bucket)

    await run_in_threadpool(_create_if_missing)

  async def delete_if_exists(self, object_name: str) -> bool:
    bucket = self._client.bucket(self._bucket_name)
    blob = bucket.blob(object_name)
    try:
      await run_in_threadpool(blob.delete)
    except NotFound:
      return False
    logger.debug("Deleted existing caption object bucket=%s object=%s", self._bucket_name, object_name)
    return True

  async def upload_json(self, object_name: str, document: bytes) -> None:
    bucket = self._client.bucket(self._bucket_name)
    blob = bucket.blob(object_name)
    blob.content_type = CAPTION_CONTENT_TYPE
    await run_in_threadpool(blob.upload_from_string, document, CAPTION_CONTENT_TYPE)

  def public_url(self, object_name: str) -> str:
    return build_public_url(bucket=self._bucket_name, object_name=object_name, storage_host=self._storage_host, public_base_url=self._public_base_url)


def build_public_url(*, bucket: str, object_name: str, storage_host: str | None, public_base_url: str | None) -> str:
  """Compute the public URL of an object for the active storage backend."""
  if storage_host:
    endpoint = _normalize_emulator_endpoint(storage_host)
    return f"{endpoint}/storage/v1/b/{bucket}/o/{quote(object_name, safe='')}?alt=media"
  if public_base_url:
    return f"{public_base_url.rstrip('/')}/{object_name}"
  return f"https://storage.googleapis.com/{bucket}/{object_name}"


def build_storage_client(settings: Settings) -> StorageClient:
  """Create a storage client instance with environment-aware credentials."""
  return StorageClient(settings)


def _normalize_emulator_endpoint(raw_endpoint: str) -> str:
  """Normalize emulator endpoint so the SDK receives scheme+host+port only."""
  parsed = urlparse(raw_endpoint)
  if not parsed.scheme or not parsed.netloc:
    return raw_endpoint.rstrip("/")
  return urlunparse((parsed.scheme, parsed.netloc, "", "", "", "")).rstrip("/")
