"""Azure Service Bus adapter for the job results topic subscription."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from azure.identity.aio import DefaultAzureCredential
from azure.servicebus import ServiceBusReceivedMessage
from azure.servicebus.aio import AutoLockRenewer, ServiceBusClient, ServiceBusReceiver
from azure.servicebus.exceptions import MessagingEntityNotFoundError, ServiceBusAuthenticationError, ServiceBusAuthorizationError, ServiceBusError

from ingest.config import Settings
from ingest.results.envelope import JobResultEnvelope, decode_envelope
from ingest.results.errors import MalformedMessageError
from ingest.transports.base import ConsumerStatus, DeliveryCounters, MessageHandler, ResultConsumer, dispatch_message

logger = logging.getLogger(__name__)

ClientFactory = Callable[[], tuple[ServiceBusClient, Any]]


def build_service_bus_client(settings: Settings) -> tuple[ServiceBusClient, DefaultAzureCredential | None]:
  """Create a client from a connection string, or passwordless from the namespace."""
  if settings.service_bus_connection_string:
    return ServiceBusClient.from_connection_string(settings.service_bus_connection_string), None
  credential = DefaultAzureCredential()
  return ServiceBusClient(fully_qualified_namespace=settings.service_bus_namespace, credential=credential), credential


def message_body(message: ServiceBusReceivedMessage) -> bytes | str | dict[str, Any]:
  """Return the message body as bytes, text or an already-decoded mapping."""
  body = message.body
  if isinstance(body, (bytes, str, dict)):
    return body
  # Data bodies arrive as an iterable of byte sections.
  try:
    return b"".join(body)
  except TypeError as exc:
    raise MalformedMessageError(f"Unsupported Service Bus body type: {type(body).__name__}") from exc


def decode_message(message: ServiceBusReceivedMessage) -> JobResultEnvelope:
  return decode_envelope(message_body(message))


class ServiceBusResultConsumer(ResultConsumer):
  """Receives from a topic subscription and completes messages only after handling.

  A handler failure abandons the message so the broker redelivers it; the
  message lock is renewed in the background while a handler runs.
  """

  def __init__(
    self,
    *,
    name: str,
    subscription: str,
    client_factory: ClientFactory,
    max_concurrent_calls: int = 4,
    max_wait_seconds: float = 5.0,
    lock_renewal_seconds: float = 300.0,
    receive_backoff_seconds: float = 1.0,
  ) -> None:
    self._name = name
    self._subscription = subscription
    self._client_factory = client_factory
    self._max_concurrent_calls = max_concurrent_calls
    self._max_wait_seconds = max_wait_seconds
    self._lock_renewal_seconds = lock_renewal_seconds
    self._receive_backoff_seconds = receive_backoff_seconds
    self._client: ServiceBusClient | None = None
    self._credential: Any = None
    self._lock_renewer: AutoLockRenewer | None = None
    self._receiver: ServiceBusReceiver | None = None
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
    if self._client is not None:
      return
    self._client, self._credential = self._client_factory()
    self._lock_renewer = AutoLockRenewer(max_lock_renewal_duration=self._lock_renewal_seconds)
    logger.info("Service Bus client created name=%s", self._name)

  async def subscribe(self, topic: str) -> None:
    if self._client is None:
      raise RuntimeError(f"Service Bus consumer {self._name} is not connected")
    self._receiver = self._client.get_subscription_receiver(
      topic_name=topic,
      subscription_name=self._subscription,
      auto_lock_renewer=self._lock_renewer,
      prefetch_count=self._max_concurrent_calls,
    )
    self._topic = topic
    logger.info("Service Bus consumer subscribed name=%s topic=%s subscription=%s", self._name, topic, self._subscription)

  async def run(self, handler: MessageHandler) -> None:
    receiver = self._require_receiver()
    if self._running:
      logger.info("Service Bus consumer already running name=%s", self._name)
      return
    self._running = True
    self._stop_requested = False
    self._drained.clear()
    logger.info("Service Bus consumer listening name=%s topic=%s subscription=%s", self._name, self._topic, self._subscription)
    try:
      while not self._stop_requested:
        try:
          messages = await receiver.receive_messages(max_message_count=self._max_concurrent_calls, max_wait_time=self._max_wait_seconds)
        except (ServiceBusAuthenticationError, ServiceBusAuthorizationError, MessagingEntityNotFoundError):
          raise
        except ServiceBusError as exc:
          logger.warning("Service Bus receive failed name=%s subscription=%s error=%s", self._name, self._subscription, exc)
          await asyncio.sleep(self._receive_backoff_seconds)
          continue
        if not messages:
          continue
        await asyncio.gather(*(self._process(receiver, message, handler) for message in messages))
    finally:
      self._running = False
      self._drained.set()
      logger.info("Service Bus consumer loop exited name=%s", self._name)

  async def _process(self, receiver: ServiceBusReceiver, message: ServiceBusReceivedMessage, handler: MessageHandler) -> None:
    source = f"{self._topic}/{self._subscription}#{message.message_id}"
    disposition = await dispatch_message(lambda: decode_message(message), handler, source=source, counters=self._counters)
    try:
      if disposition == "ack":
        await receiver.complete_message(message)
      else:
        await receiver.abandon_message(message)
    except ServiceBusError as exc:
      # An expired lock means the broker already made the message visible again.
      logger.error("Service Bus settlement failed name=%s source=%s disposition=%s error=%s", self._name, source, disposition, exc)

  async def stop(self) -> None:
    """Stop receiving and wait for in-flight messages to settle."""
    self._stop_requested = True
    await self._drained.wait()

  async def disconnect(self) -> None:
    if self._receiver is not None:
      await self._receiver.close()
      self._receiver = None
    if self._lock_renewer is not None:
      await self._lock_renewer.close()
      self._lock_renewer = None
    if self._client is not None:
      await self._client.close()
      self._client = None
      logger.info("Service Bus consumer disconnected name=%s", self._name)
    if self._credential is not None:
      await self._credential.close()
      self._credential = None

  def status(self) -> ConsumerStatus:
    return ConsumerStatus(
      name=self._name,
      connected=self._client is not None,
      running=self._running,
      processed=self._counters.processed,
      dropped=self._counters.dropped,
      failed=self._counters.failed,
    )

  def _require_receiver(self) -> ServiceBusReceiver:
    if self._receiver is None:
      raise RuntimeError(f"Service Bus consumer {self._name} is not subscribed")
    return self._receiver
