"""Kafka adapter for job result topics."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from functools import partial
from typing import Any

from aiokafka import AIOKafkaConsumer
from aiokafka.errors import KafkaError
from aiokafka.helpers import create_ssl_context
from aiokafka.structs import ConsumerRecord, TopicPartition

from ingest.config import Settings
from ingest.results.envelope import JobResultEnvelope
from ingest.transports.base import ConsumerStatus, DeliveryCounters, MessageHandler, ResultConsumer, dispatch_message

logger = logging.getLogger(__name__)

RecordDecoder = Callable[[bytes | None, bytes | None], JobResultEnvelope]
ConsumerFactory = Callable[[], AIOKafkaConsumer]

POLL_TIMEOUT_MS = 1000


def build_kafka_consumer(settings: Settings, *, group_id: str) -> AIOKafkaConsumer:
  """Create an unstarted consumer with manual commits and the configured security."""
  options: dict[str, Any] = {
    "bootstrap_servers": list(settings.kafka_brokers),
    "client_id": settings.kafka_client_id,
    "group_id": group_id,
    "enable_auto_commit": False,
    "auto_offset_reset": "earliest",
    "session_timeout_ms": settings.kafka_session_timeout_ms,
    "heartbeat_interval_ms": settings.kafka_heartbeat_interval_ms,
  }
  if settings.kafka_sasl_mechanism:
    options["security_protocol"] = "SASL_SSL" if settings.kafka_ssl else "SASL_PLAINTEXT"
    options["sasl_mechanism"] = settings.kafka_sasl_mechanism
    options["sasl_plain_username"] = settings.kafka_username
    options["sasl_plain_password"] = settings.kafka_password
  else:
    options["security_protocol"] = "SSL" if settings.kafka_ssl else "PLAINTEXT"
  if settings.kafka_ssl:
    options["ssl_context"] = create_ssl_context()
  return AIOKafkaConsumer(**options)


class KafkaResultConsumer(ResultConsumer):
  """Consumes one topic under a consumer group with at-least-once semantics.

  Records within a partition are handled strictly in order; different
  partitions of a fetched batch are handled concurrently. Offsets are
  committed only after a record was handled, and a failed record is re-read
  after a backoff by seeking its partition back.
  """

  def __init__(self, *, name: str, consumer_factory: ConsumerFactory, decoder: RecordDecoder, retry_backoff_seconds: float = 1.0, poll_timeout_ms: int = POLL_TIMEOUT_MS) -> None:
    self._name = name
    self._consumer_factory = consumer_factory
    self._decoder = decoder
    self._retry_backoff_seconds = retry_backoff_seconds
    self._poll_timeout_ms = poll_timeout_ms
    self._consumer: AIOKafkaConsumer | None = None
    self._topic: str | None = None
    self._counters = DeliveryCounters()
    self._stop_requested = False
    self._running = False
    self._drained = asyncio.Event()
    self._drained.set()

  @property
  def name(self) -> str:
    return self._name

  async def connect(self) -> None:
    if self._consumer is not None:
      return
    consumer = self._consumer_factory()
    await consumer.start()
    self._consumer = consumer
    logger.info("Kafka consumer connected name=%s", self._name)

  async def subscribe(self, topic: str) -> None:
    consumer = self._require_consumer()
    consumer.subscribe([topic])
    self._topic = topic
    logger.info("Kafka consumer subscribed name=%s topic=%s", self._name, topic)

  async def run(self, handler: MessageHandler) -> None:
    consumer = self._require_consumer()
    if self._running:
      logger.info("Kafka consumer already running name=%s", self._name)
      return
    self._running = True
    self._stop_requested = False
    self._drained.clear()
    logger.info("Kafka consumer listening name=%s topic=%s", self._name, self._topic)
    try:
      while not self._stop_requested:
        batches = await consumer.getmany(timeout_ms=self._poll_timeout_ms)
        if not batches:
          continue
        await asyncio.gather(*(self._process_partition(consumer, tp, records, handler) for tp, records in batches.items()))
    finally:
      self._running = False
      self._drained.set()
      logger.info("Kafka consumer loop exited name=%s", self._name)

  async def _process_partition(self, consumer: AIOKafkaConsumer, tp: TopicPartition, records: list[ConsumerRecord], handler: MessageHandler) -> None:
    for record in records:
      source = f"{tp.topic}[{tp.partition}]@{record.offset}"
      disposition = await dispatch_message(partial(self._decoder, record.key, record.value), handler, source=source, counters=self._counters)
      if disposition == "retry":
        # Rewind so the next fetch returns this record again; later records in the batch wait for it.
        await asyncio.sleep(self._retry_backoff_seconds)
        consumer.seek(tp, record.offset)
        return
      try:
        await consumer.commit({tp: record.offset + 1})
      except KafkaError as exc:
        # The fetch position is already past this batch; rewind so the rest of it is fetched again.
        logger.warning("Kafka offset commit failed name=%s source=%s error=%s", self._name, source, exc)
        self._rewind(consumer, tp, record.offset + 1)
        return

  def _rewind(self, consumer: AIOKafkaConsumer, tp: TopicPartition, offset: int) -> None:
    try:
      consumer.seek(tp, offset)
    except KafkaError as exc:
      # Revoked partitions resume from the committed offset under their new owner.
      logger.warning("Kafka seek skipped name=%s partition=%s[%d] offset=%d error=%s", self._name, tp.topic, tp.partition, offset, exc)

  async def stop(self) -> None:
    """Stop fetching and wait for the current batch to finish."""
    self._stop_requested = True
    await self._drained.wait()

  async def disconnect(self) -> None:
    if self._consumer is None:
      return
    consumer = self._consumer
    self._consumer = None
    await consumer.stop()
    logger.info("Kafka consumer disconnected name=%s", self._name)

  def status(self) -> ConsumerStatus:
    return ConsumerStatus(
      name=self._name,
      connected=self._consumer is not None,
      running=self._running,
      processed=self._counters.processed,
      dropped=self._counters.dropped,
      failed=self._counters.failed,
    )

  def _require_consumer(self) -> AIOKafkaConsumer:
    if self._consumer is None:
      raise RuntimeError(f"Kafka consumer {self._name} is not connected")
    return self._consumer
