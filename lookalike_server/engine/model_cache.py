"""Lazily loaded, process-lifetime embedding model."""

from __future__ import annotations

import asyncio
import logging

from lookalike_server.backends.base import ComputeBackend, ImageEmbeddingModel, ModelProvider
from lookalike_server.engine.negotiator import BackendNegotiator
from lookalike_server.errors import ModelLoadError

logger = logging.getLogger(__name__)


class ModelCache:
    """Loads the model once, after the compute backend is ready.

    A failed load leaves the cache empty, so the next call retries. A caller
    that gives up (timeout, cancellation) does not abort the load in flight;
    the next caller awaits the same load.
    """

    def __init__(self, *, negotiator: BackendNegotiator, provider: ModelProvider) -> None:
        self._negotiator = negotiator
        self._provider = provider
        self._model: ImageEmbeddingModel | None = None
        self._loading: asyncio.Task[ImageEmbeddingModel] | None = None
        self.load_count = 0

    @property
    def model(self) -> ImageEmbeddingModel | None:
        return self._model

    async def get_model(self) -> ImageEmbeddingModel:
        backend = await self._negotiator.ensure_ready()
        if self._model is not None:
            return self._model

        if self._loading is None:
            self.load_count += 1
            self._loading = asyncio.create_task(self._load(backend))
            self._loading.add_done_callback(self._load_finished)
        return await asyncio.shield(self._loading)

    async def _load(self, backend: ComputeBackend) -> ImageEmbeddingModel:
        try:
            model = await asyncio.to_thread(self._provider.load, backend)
        except ModelLoadError:
            logger.exception("Model %s failed to load", self._provider.name)
            raise
        except Exception as exc:
            logger.exception("Model %s failed to load", self._provider.name)
            raise ModelLoadError(f"Failed to load model '{self._provider.name}': {exc}") from exc
        logger.info("Model %s loaded (dimension %d)", model.name, model.dimension)
        self._model = model
        return model

    def _load_finished(self, task: asyncio.Task[ImageEmbeddingModel]) -> None:
        if self._loading is task:
            self._loading = None
        # Marks the error retrieved when every waiter has already gone away.
        if not task.cancelled():
            task.exception()
