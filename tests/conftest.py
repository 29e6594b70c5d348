"""Test configuration for importing the ingestion package."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
TESTS_DIR = Path(__file__).resolve().parent
for path in (ROOT, TESTS_DIR):
  if str(path) not in sys.path:
    sys.path.insert(0, str(path))


@pytest.fixture
def anyio_backend() -> str:
  return "asyncio"
