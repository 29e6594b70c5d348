"""Minimal .env support for local runs of the consumers."""

from __future__ import annotations

import os
from collections.abc import Iterable
from pathlib import Path

ENV_FILE_VARIABLE = "INGEST_ENV_FILE"


def default_env_path() -> Path:
  """Return the .env path: INGEST_ENV_FILE when set, else the repo root."""
  override = os.getenv(ENV_FILE_VARIABLE)
  if override:
    return Path(override).expanduser()
  return Path(__file__).resolve().parents[2] / ".env"


def parse_env_lines(lines: Iterable[str]) -> dict[str, str]:
  """Parse KEY=VALUE lines, ignoring comments, blanks and malformed entries."""
  values: dict[str, str] = {}
  for raw_line in lines:
    line = raw_line.strip()
    if line.startswith("export "):
      line = line.removeprefix("export ").lstrip()
    if not line or line.startswith("#"):
      continue
    key, sep, value = line.partition("=")
    key = key.strip()
    if not sep or not key:
      continue
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
      value = value[1:-1]
    values[key] = value
  return values


def load_env_file(path: Path, *, override: bool = False) -> None:
  """Copy a .env file into os.environ; existing variables win unless override is set."""
  if not path.is_file():
    return
  for key, value in parse_env_lines(path.read_text(encoding="utf-8").splitlines()).items():
    if override or key not in os.environ:
      os.environ[key] = value
