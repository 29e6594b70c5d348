from __future__ import annotations

import asyncio

import httpx
import pytest
from fakes import make_settings, wait_until

from ingest.consumers.runner import ConsumerRunner
from ingest.main import app
from ingest.results.envelope import JobResultEnvelope
from ingest.results.router import JobResultRouter
from ingest.transports.base import ConsumerStatus
from ingest.transports.factory import ConsumerBinding, build_consumers
from ingest.transports.kafka import KafkaResultConsumer
from ingest.transports.service_bus import ServiceBusResultConsumer


class FakeConsumer:
  """Records lifecycle calls and runs until stopped."""

  def __init__(self, name: str, *, fail_disconnect: bool = False) -> None:
    self.name = name
    self.calls: list[str] = []
    self.topic: str | None = None
    self.handler = None
    self._fail_disconnect = fail_disconnect
    self._stopped = asyncio.Event()
    self._running = False

  async def connect(self) -> None:
    self.calls.append("connect")

  async def subscribe(self, topic: str) -> None:
    self.calls.append("subscribe")
    self.topic = topic

  async def run(self, handler) -> None:
    self.calls.append("run")
    self.handler = handler
    self._running = True
    await self._stopped.wait()
    self._running = False

  async def stop(self) -> None:
    self.calls.append("stop")
    self._stopped.set()

  async def disconnect(self) -> None:
    self.calls.append("disconnect")
    if self._fail_disconnect:
      raise RuntimeError("already closed")

  def status(self) -> ConsumerStatus:
    return ConsumerStatus(name=self.name, connected="disconnect" not in self.calls, running=self._running, processed=0, dropped=0, failed=0)


def _runner(*consumers: FakeConsumer) -> ConsumerRunner:
  bindings = [ConsumerBinding(consumer=consumer, topic=f"topic-{consumer.name}") for consumer in consumers]
  return ConsumerRunner(bindings=bindings, router=JobResultRouter({}))


@pytest.mark.anyio
async def test_runner_starts_every_consumer_and_shuts_down_in_order() -> None:
  first, second = FakeConsumer("first"), FakeConsumer("second", fail_disconnect=True)
  runner = _runner(first, second)

  await runner.start()
  await wait_until(lambda: all(status.running for status in runner.statuses()))

  assert runner.consumer_names == ["first", "second"]
  assert first.topic == "topic-first"
  assert first.handler is not None

  await runner.shutdown()

  assert first.calls == ["connect", "subscribe", "run", "stop", "disconnect"]
  # A failing disconnect is logged and does not stop the others.
  assert second.calls[-1] == "disconnect"


@pytest.mark.anyio
async def test_wait_returns_once_loops_exit() -> None:
  consumer = FakeConsumer("only")
  runner = _runner(consumer)
  await runner.start()

  waiter = asyncio.create_task(runner.wait())
  await asyncio.sleep(0)
  assert not waiter.done()

  await consumer.stop()
  await asyncio.wait_for(waiter, timeout=1.0)


def test_build_consumers_follows_enabled_transports() -> None:
  settings = make_settings(
    kafka_enabled=True,
    kafka_brokers=("localhost:9092",),
    kafka_transcription_topic="transcriptions",
    kafka_compression_topic="finish_compress",
    service_bus_enabled=True,
    service_bus_connection_string="Endpoint=sb://example/",
  )

  bindings = build_consumers(settings)

  assert [(binding.consumer.name, binding.topic) for binding in bindings] == [
    ("kafka-transcription", "transcriptions"),
    ("kafka-compression", "finish_compress"),
    ("service-bus-job-results", "job-results"),
  ]
  assert isinstance(bindings[0].consumer, KafkaResultConsumer)
  assert isinstance(bindings[2].consumer, ServiceBusResultConsumer)


def test_build_consumers_returns_nothing_when_disabled() -> None:
  assert build_consumers(make_settings(kafka_enabled=False, service_bus_enabled=False)) == []


@pytest.mark.anyio
async def test_health_reports_consumer_statuses() -> None:
  consumer = FakeConsumer("only")
  runner = _runner(consumer)
  await runner.start()
  await wait_until(lambda: runner.statuses()[0].running)
  app.state.consumer_runner = runner
  try:
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
      healthy = await client.get("/health")
      await runner.shutdown()
      degraded = await client.get("/health")
  finally:
    del app.state.consumer_runner

  assert healthy.status_code == 200
  assert healthy.json()["status"] == "ok"
  assert healthy.json()["consumers"][0]["name"] == "only"
  assert degraded.json()["status"] == "degraded"


@pytest.mark.anyio
async def test_router_handler_is_bound_to_running_consumers() -> None:
  consumer = FakeConsumer("only")
  runner = ConsumerRunner(bindings=[ConsumerBinding(consumer=consumer, topic="t")], router=JobResultRouter({}))
  await runner.start()
  await wait_until(lambda: consumer.handler is not None)

  result = await consumer.handler(JobResultEnvelope(job_type="unknown_kind", job_id="j-1"))

  assert result.status == "ignored"
  await runner.shutdown()
