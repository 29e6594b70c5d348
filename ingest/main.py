from __future__ import annotations

import dataclasses

from fastapi import FastAPI, Request

from ingest.core.lifespan import lifespan

app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)


@app.get("/health", include_in_schema=False)
async def health_check(request: Request) -> dict[str, object]:
  """Report per-consumer delivery status."""
  runner = getattr(request.app.state, "consumer_runner", None)
  statuses = runner.statuses() if runner is not None else []
  healthy = all(status.connected and status.running for status in statuses)
  return {"status": "ok" if healthy else "degraded", "version": "0.1.0", "consumers": [dataclasses.asdict(status) for status in statuses]}
