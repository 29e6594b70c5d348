"""Build the broker consumers enabled by configuration."""

from __future__ import annotations

from dataclasses import dataclass
from functools import partial

from ingest.config import Settings
from ingest.results.envelope import decode_compression_record, decode_transcription_record
from ingest.transports.base import ResultConsumer
from ingest.transports.kafka import KafkaResultConsumer, build_kafka_consumer
from ingest.transports.service_bus import ServiceBusResultConsumer, build_service_bus_client


@dataclass(frozen=True)
class ConsumerBinding:
  """A consumer and the topic it should subscribe to."""

  consumer: ResultConsumer
  topic: str


def build_consumers(settings: Settings) -> list[ConsumerBinding]:
  """Return one binding per enabled topic."""
  bindings: list[ConsumerBinding] = []
  if settings.kafka_enabled:
    if settings.kafka_transcription_topic:
      consumer = KafkaResultConsumer(
        name="kafka-transcription",
        consumer_factory=partial(build_kafka_consumer, settings, group_id=settings.kafka_transcription_group),
        decoder=decode_transcription_record,
        retry_backoff_seconds=settings.kafka_retry_backoff_seconds,
      )
      bindings.append(ConsumerBinding(consumer=consumer, topic=settings.kafka_transcription_topic))
    if settings.kafka_compression_topic:
      consumer = KafkaResultConsumer(
        name="kafka-compression",
        consumer_factory=partial(build_kafka_consumer, settings, group_id=settings.kafka_compression_group),
        decoder=decode_compression_record,
        retry_backoff_seconds=settings.kafka_retry_backoff_seconds,
      )
      bindings.append(ConsumerBinding(consumer=consumer, topic=settings.kafka_compression_topic))

  if settings.service_bus_enabled:
    consumer = ServiceBusResultConsumer(
      name="service-bus-job-results",
      subscription=settings.service_bus_subscription,
      client_factory=partial(build_service_bus_client, settings),
      max_concurrent_calls=settings.service_bus_max_concurrent_calls,
      max_wait_seconds=settings.service_bus_max_wait_seconds,
      lock_renewal_seconds=settings.service_bus_lock_renewal_seconds,
    )
    bindings.append(ConsumerBinding(consumer=consumer, topic=settings.service_bus_topic))
  return bindings
