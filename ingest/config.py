"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from ingest.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)


@dataclass(frozen=True)
class Settings:
  """Typed settings for the job-result ingestion service."""

  environment: str
  debug: bool
  log_dir: str
  log_max_bytes: int
  log_backup_count: int
  log_result_payloads: bool
  pg_dsn: str | None
  pg_connect_timeout: int
  db_retry_attempts: int
  kafka_enabled: bool
  kafka_brokers: tuple[str, ...]
  kafka_client_id: str
  kafka_sasl_mechanism: str | None
  kafka_username: str | None
  kafka_password: str | None
  kafka_ssl: bool
  kafka_transcription_topic: str | None
  kafka_transcription_group: str
  kafka_compression_topic: str | None
  kafka_compression_group: str
  kafka_session_timeout_ms: int
  kafka_heartbeat_interval_ms: int
  kafka_retry_backoff_seconds: float
  service_bus_enabled: bool
  service_bus_connection_string: str | None
  service_bus_namespace: str | None
  service_bus_topic: str
  service_bus_subscription: str
  service_bus_max_concurrent_calls: int
  service_bus_max_wait_seconds: float
  service_bus_lock_renewal_seconds: float
  captions_bucket: str
  gcs_storage_host: str | None
  gcp_project_id: str | None
  storage_public_base_url: str | None
  order_index_probe_limit: int
  progress_update_attempts: int


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _parse_brokers(raw: str | None) -> tuple[str, ...]:
  if not raw:
    return ()
  return tuple(broker.strip() for broker in raw.split(",") if broker.strip())


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _positive_float(name: str, default: str) -> float:
  value = float(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive number.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("INGEST_ENV", "development").lower()
  debug = _parse_bool(os.getenv("INGEST_DEBUG"))

  log_max_bytes = _positive_int("INGEST_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("INGEST_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("INGEST_LOG_BACKUP_COUNT must be zero or a positive integer.")

  kafka_enabled = _parse_bool(os.getenv("INGEST_KAFKA_ENABLED"))
  kafka_brokers = _parse_brokers(os.getenv("INGEST_KAFKA_BROKERS"))
  kafka_username = _optional_str(os.getenv("INGEST_KAFKA_USERNAME"))
  kafka_password = _optional_str(os.getenv("INGEST_KAFKA_PASSWORD"))
  kafka_sasl_mechanism = _optional_str(os.getenv("INGEST_KAFKA_SASL_MECHANISM", "SCRAM-SHA-256"))
  kafka_transcription_topic = _optional_str(os.getenv("INGEST_KAFKA_TRANSCRIPTION_TOPIC"))
  kafka_compression_topic = _optional_str(os.getenv("INGEST_KAFKA_COMPRESSION_TOPIC", "finish_compress"))

  # Validate broker settings only when the Kafka consumers are enabled.
  if kafka_enabled:
    if not kafka_brokers:
      raise ValueError("INGEST_KAFKA_BROKERS must be set when Kafka consumers are enabled.")

    if kafka_sasl_mechanism and (not kafka_username or not kafka_password):
      raise ValueError("INGEST_KAFKA_USERNAME and INGEST_KAFKA_PASSWORD must be set when SASL is configured.")

    if not kafka_transcription_topic and not kafka_compression_topic:
      raise ValueError("At least one of INGEST_KAFKA_TRANSCRIPTION_TOPIC or INGEST_KAFKA_COMPRESSION_TOPIC must be set.")

  service_bus_enabled = _parse_bool(os.getenv("INGEST_SERVICE_BUS_ENABLED"))
  service_bus_connection_string = _optional_str(os.getenv("INGEST_SERVICE_BUS_CONNECTION_STRING"))
  service_bus_namespace = _optional_str(os.getenv("INGEST_SERVICE_BUS_NAMESPACE"))

  # Support both connection strings and passwordless namespaces.
  if service_bus_enabled and not service_bus_connection_string and not service_bus_namespace:
    raise ValueError("INGEST_SERVICE_BUS_CONNECTION_STRING or INGEST_SERVICE_BUS_NAMESPACE must be set when Service Bus is enabled.")

  return Settings(
    environment=environment,
    debug=debug,
    log_dir=(os.getenv("INGEST_LOG_DIR") or "./logs").strip(),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_result_payloads=_parse_bool(os.getenv("INGEST_LOG_RESULT_PAYLOADS")),
    pg_dsn=os.getenv("INGEST_PG_DSN") or os.getenv("DATABASE_URL"),
    pg_connect_timeout=_positive_int("INGEST_PG_CONNECT_TIMEOUT", "5"),
    db_retry_attempts=_positive_int("INGEST_DB_RETRY_ATTEMPTS", "3"),
    kafka_enabled=kafka_enabled,
    kafka_brokers=kafka_brokers,
    kafka_client_id=os.getenv("INGEST_KAFKA_CLIENT_ID", "job-result-ingest"),
    kafka_sasl_mechanism=kafka_sasl_mechanism,
    kafka_username=kafka_username,
    kafka_password=kafka_password,
    kafka_ssl=_parse_bool(os.getenv("INGEST_KAFKA_SSL", "true")),
    kafka_transcription_topic=kafka_transcription_topic,
    kafka_transcription_group=os.getenv("INGEST_KAFKA_TRANSCRIPTION_GROUP", "job-result-transcription-consumer"),
    kafka_compression_topic=kafka_compression_topic,
    kafka_compression_group=os.getenv("INGEST_KAFKA_COMPRESSION_GROUP", "job-result-compression-consumer"),
    kafka_session_timeout_ms=_positive_int("INGEST_KAFKA_SESSION_TIMEOUT_MS", "30000"),
    kafka_heartbeat_interval_ms=_positive_int("INGEST_KAFKA_HEARTBEAT_INTERVAL_MS", "3000"),
    kafka_retry_backoff_seconds=_positive_float("INGEST_KAFKA_RETRY_BACKOFF_SECONDS", "1.0"),
    service_bus_enabled=service_bus_enabled,
    service_bus_connection_string=service_bus_connection_string,
    service_bus_namespace=service_bus_namespace,
    service_bus_topic=os.getenv("INGEST_SERVICE_BUS_TOPIC", "job-results"),
    service_bus_subscription=os.getenv("INGEST_SERVICE_BUS_SUBSCRIPTION", "api-server"),
    service_bus_max_concurrent_calls=_positive_int("INGEST_SERVICE_BUS_MAX_CONCURRENT_CALLS", "4"),
    service_bus_max_wait_seconds=_positive_float("INGEST_SERVICE_BUS_MAX_WAIT_SECONDS", "5"),
    service_bus_lock_renewal_seconds=_positive_float("INGEST_SERVICE_BUS_LOCK_RENEWAL_SECONDS", "300"),
    captions_bucket=os.getenv("INGEST_CAPTIONS_BUCKET", "captions"),
    gcs_storage_host=_optional_str(os.getenv("GCS_STORAGE_HOST")),
    gcp_project_id=_optional_str(os.getenv("GCP_PROJECT_ID")),
    storage_public_base_url=_optional_str(os.getenv("INGEST_STORAGE_PUBLIC_BASE_URL")),
    order_index_probe_limit=_positive_int("INGEST_ORDER_INDEX_PROBE_LIMIT", "1000"),
    progress_update_attempts=_positive_int("INGEST_PROGRESS_UPDATE_ATTEMPTS", "5"),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring transport configuration."""
  debug = _parse_bool(os.getenv("INGEST_DEBUG"))
  pg_connect_timeout = _positive_int("INGEST_PG_CONNECT_TIMEOUT", "5")
  pg_dsn = os.getenv("INGEST_PG_DSN") or os.getenv("DATABASE_URL")
  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)
