"""Application entrypoint for lookalike-server."""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from lookalike_server.api.routes import router
from lookalike_server.backends.factory import create_similarity_engine
from lookalike_server.config import get_settings
from lookalike_server.corpus.client import CorpusClient
from lookalike_server.telemetry import TelemetryRuntime, setup_telemetry, shutdown_telemetry


def configure_logging() -> None:
    """Configure process logging."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Create and attach the similarity engine and corpus client."""
    settings = get_settings()
    telemetry_runtime = TelemetryRuntime()

    try:
        telemetry_runtime = setup_telemetry(app, settings)
    except Exception:
        logging.exception("OpenTelemetry initialization failed; continuing without telemetry")

    app.state.telemetry_runtime = telemetry_runtime
    app.state.similarity_metrics = telemetry_runtime.similarity_metrics

    # The engine is lazy: backend negotiation and model loading run on first request.
    if settings.embedding.enabled:
        app.state.similarity_engine = create_similarity_engine(settings)
    else:
        app.state.similarity_engine = None

    app.state.corpus_client = CorpusClient(
        base_url=settings.corpus.base_url,
        timeout_seconds=settings.corpus.timeout_seconds,
    )

    try:
        yield
    finally:
        try:
            shutdown_telemetry(app, telemetry_runtime)
        except Exception:
            logging.exception("OpenTelemetry shutdown failed")


def create_app() -> FastAPI:
    """Build FastAPI app."""
    settings = get_settings()
    configure_logging()

    app = FastAPI(
        title="Lookalike Server",
        description="Image similarity service backed by MobileNet V2 embeddings",
        version=settings.service_version,
        lifespan=lifespan,
    )
    app.include_router(router)
    return app


app = create_app()


def run() -> None:
    """Run uvicorn server."""
    settings = get_settings()
    port = int(os.environ.get("PORT", settings.server.port))
    uvicorn.run(
        "lookalike_server.main:app",
        host=settings.server.host,
        port=port,
        workers=1,
    )


if __name__ == "__main__":
    run()
