"""HTTP webhook for enhanced-transaction batches.

POST /webhook accepts a JSON array of raw records and answers with the batch
counters. Individual record failures never change the status code; only a
malformed envelope (400) or an unexpected failure (500) does.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Protocol

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from copytrade_tracker import __version__
from copytrade_tracker.config import Settings, get_settings
from copytrade_tracker.pipeline import BatchResult, Tracker

logger = logging.getLogger(__name__)


class BatchHandler(Protocol):
    async def process_batch(self, records: list[Any]) -> BatchResult: ...


def create_app(settings: Settings | None = None, *, processor: BatchHandler | None = None) -> FastAPI:
    """Build the webhook application.

    Args:
        settings: Application settings. If not provided, uses get_settings().
        processor: Batch handler to use instead of a Tracker built from
            settings (the app then owns no resources).

    Returns:
        FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if processor is not None:
            app.state.processor = processor
            yield
            return

        async with Tracker(settings or get_settings()) as tracker:
            app.state.processor = tracker.processor
            yield

    app = FastAPI(
        title="copytrade-tracker",
        description="Webhook receiver for tracked-wallet swap events",
        version=__version__,
        lifespan=lifespan,
    )

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/webhook")
    async def webhook(request: Request) -> JSONResponse:
        try:
            records = await request.json()
        except ValueError:
            return JSONResponse(status_code=400, content={"error": "Invalid data format"})
        if not isinstance(records, list):
            return JSONResponse(status_code=400, content={"error": "Invalid data format"})

        try:
            result = await request.app.state.processor.process_batch(records)
        except Exception:
            logger.exception("Batch of %d records failed", len(records))
            return JSONResponse(status_code=500, content={"error": "Internal server error"})
        return JSONResponse(status_code=200, content=result.to_dict())

    return app
