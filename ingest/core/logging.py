import logging
import logging.handlers
import sys
import time
import traceback
from pathlib import Path
from types import TracebackType

from ingest.config import Settings

LOG_LINE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"
LOG_FORMATTER = logging.Formatter(LOG_LINE_FORMAT, datefmt=LOG_DATE_FORMAT)
INSPECT_LOGGER_NAME = "ingest.inspect"

# Track logging state
_LOG_FILE_PATH: Path | None = None
_LOGGING_INITIALIZED = False


class TruncatedFormatter(logging.Formatter):
  """Console formatter that keeps the first traceback line and the innermost frames."""

  def __init__(self, fmt: str, *, datefmt: str | None = None, tail_lines: int = 5) -> None:
    super().__init__(fmt, datefmt=datefmt)
    self.tail_lines = tail_lines

  def formatException(self, ei: tuple[type[BaseException] | None, BaseException | None, TracebackType | None]) -> str:  # noqa: N802
    lines = traceback.format_exception(*ei)
    if len(lines) <= self.tail_lines + 1:
      return "".join(lines)
    return "".join([lines[0], "    ...\n", *lines[-self.tail_lines :]])


def _rotated_name(default_name: str) -> str:
  """Name backups app.log-1 instead of app.log.1."""
  parts = default_name.rsplit(".", 1)
  if len(parts) == 2 and parts[1].isdigit():
    return f"{parts[0]}-{parts[1]}"
  return default_name


def _build_handlers(settings: Settings) -> tuple[logging.Handler, logging.Handler, Path]:
  """Create the stdout and rotating file handlers."""
  log_dir = Path(settings.log_dir).resolve()
  try:
    log_dir.mkdir(parents=True, exist_ok=True)
  except OSError as exc:
    raise RuntimeError(f"Failed to create log directory at {log_dir}: {exc}") from exc

  log_path = log_dir / f"ingest_{time.strftime('%Y%m%d_%H%M%S')}.log"

  stream = logging.StreamHandler(sys.stdout)
  stream.setFormatter(TruncatedFormatter(LOG_LINE_FORMAT, datefmt=LOG_DATE_FORMAT))

  file_handler = logging.handlers.RotatingFileHandler(log_path, encoding="utf-8", maxBytes=settings.log_max_bytes, backupCount=settings.log_backup_count)
  file_handler.namer = _rotated_name
  file_handler.setFormatter(LOG_FORMATTER)
  return stream, file_handler, log_path


def _build_inspect_handler(settings: Settings) -> logging.Handler:
  """One JSON document per line, no prefix, so the file can be replayed."""
  inspect_path = Path(settings.log_dir).resolve() / "inspect.log"
  handler = logging.handlers.RotatingFileHandler(inspect_path, encoding="utf-8", maxBytes=settings.log_max_bytes, backupCount=settings.log_backup_count)
  handler.namer = _rotated_name
  handler.setFormatter(logging.Formatter("%(message)s"))
  return handler


def setup_logging(settings: Settings) -> Path:
  """Ensure all loggers use our handlers and propagate to root."""
  stream_handler, file_handler, log_path = _build_handlers(settings)
  for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
    log = logging.getLogger(logger_name)
    log.handlers = [stream_handler, file_handler]
    log.propagate = False

  level = logging.DEBUG if settings.debug else logging.INFO
  logging.basicConfig(level=level, handlers=[stream_handler, file_handler], force=True)
  # Broker clients are chatty at INFO; keep their heartbeat noise out of the service log.
  for noisy in ("aiokafka", "azure", "uamqp"):
    logging.getLogger(noisy).setLevel(logging.WARNING)

  inspect_logger = logging.getLogger(INSPECT_LOGGER_NAME)
  inspect_logger.propagate = False
  if settings.log_result_payloads:
    inspect_logger.handlers = [_build_inspect_handler(settings)]
    inspect_logger.setLevel(logging.INFO)
  else:
    inspect_logger.handlers = [logging.NullHandler()]
  return log_path


def initialize_logging(settings: Settings) -> None:
  """Initialize logging once and log the destination."""
  global _LOG_FILE_PATH, _LOGGING_INITIALIZED
  logger = logging.getLogger("ingest.core.logging")
  if _LOGGING_INITIALIZED:
    return
  log_path = setup_logging(settings)
  _LOG_FILE_PATH = log_path
  _LOGGING_INITIALIZED = True
  logger.info("Logging initialized. Writing to %s", _LOG_FILE_PATH)
