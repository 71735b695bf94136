"""Public entry point composing backend, model, loader, extractor and scorer."""

from __future__ import annotations

import asyncio
import logging

from lookalike_server.backends.base import ComputeBackend, ModelProvider
from lookalike_server.engine.features import EmbeddingVector, FeatureExtractor
from lookalike_server.engine.image_loader import ImageLoader, ImageSource
from lookalike_server.engine.model_cache import ModelCache
from lookalike_server.engine.negotiator import BackendNegotiator, BackendState
from lookalike_server.engine.scoring import cosine_similarity

logger = logging.getLogger(__name__)


def _release_if_produced(task: asyncio.Task[EmbeddingVector]) -> None:
    if task.cancelled() or task.exception() is not None:
        return
    task.result().release()


class SimilarityEngine:
    """Compares image pairs with a shared, lazily initialized model."""

    def __init__(
        self,
        *,
        negotiator: BackendNegotiator,
        model_cache: ModelCache,
        extractor: FeatureExtractor,
        model_name: str,
    ) -> None:
        self.negotiator = negotiator
        self.model_cache = model_cache
        self.extractor = extractor
        self.model_name = model_name

    @classmethod
    def build(
        cls,
        *,
        provider: ModelProvider,
        preference: list[str],
        image_loader: ImageLoader | None = None,
    ) -> SimilarityEngine:
        negotiator = BackendNegotiator(
            preference=preference,
            initializers=provider.backend_initializers(),
            environment_check=provider.check_environment,
        )
        model_cache = ModelCache(negotiator=negotiator, provider=provider)
        extractor = FeatureExtractor(model_cache=model_cache, image_loader=image_loader or ImageLoader())
        return cls(negotiator=negotiator, model_cache=model_cache, extractor=extractor, model_name=provider.name)

    @property
    def state(self) -> BackendState:
        return self.negotiator.state

    @property
    def active_backend(self) -> ComputeBackend | None:
        return self.negotiator.active_backend

    @property
    def live_vectors(self) -> int:
        return self.extractor.live_vectors

    async def extract_features(self, source: ImageSource) -> EmbeddingVector:
        """Caller owns the result and must release it."""
        return await self.extractor.extract_features(source)

    async def compare_images(self, source_a: ImageSource, source_b: ImageSource) -> float:
        """Similarity in [0, 1] between two image sources.

        Both extractions run concurrently. The first failure to complete is
        raised once the other extraction has settled; any vector produced
        along the way is released before returning or raising.
        """
        tasks = [
            asyncio.create_task(self.extractor.extract_features(source_a)),
            asyncio.create_task(self.extractor.extract_features(source_b)),
        ]
        first_error: Exception | None = None
        try:
            for pending in asyncio.as_completed(tasks):
                try:
                    await pending
                except Exception as exc:
                    if first_error is None:
                        first_error = exc
            if first_error is not None:
                raise first_error
            return cosine_similarity(tasks[0].result(), tasks[1].result())
        finally:
            for task in tasks:
                if task.done():
                    _release_if_produced(task)
                else:
                    task.add_done_callback(_release_if_produced)
                    task.cancel()
