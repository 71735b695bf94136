"""Model provider and engine factory."""

from __future__ import annotations

import httpx

from lookalike_server.backends.base import ModelProvider
from lookalike_server.backends.deterministic import DeterministicModelProvider
from lookalike_server.backends.mobilenet import MobileNetModelProvider
from lookalike_server.config import Settings
from lookalike_server.engine.image_loader import ImageLoader
from lookalike_server.engine.orchestrator import SimilarityEngine


def create_model_provider(settings: Settings) -> ModelProvider:
    """Build model provider from settings."""
    if settings.embedding.backend == "mobilenet_v2":
        return MobileNetModelProvider()
    return DeterministicModelProvider()


def create_similarity_engine(
    settings: Settings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> SimilarityEngine:
    """Wire a fresh engine; nothing is initialized until first use."""
    loader = ImageLoader(
        fetch_timeout_seconds=settings.image.fetch_timeout_seconds,
        max_image_bytes=settings.image.max_image_bytes,
        transport=transport,
    )
    return SimilarityEngine.build(
        provider=create_model_provider(settings),
        preference=settings.embedding.backend_preference,
        image_loader=loader,
    )
