"""Feature extraction into releasable embedding vectors."""

from __future__ import annotations

import logging
from collections.abc import Callable
from types import TracebackType

import numpy as np

from lookalike_server.engine.image_loader import ImageLoader, ImageSource
from lookalike_server.engine.model_cache import ModelCache
from lookalike_server.errors import FeatureExtractionError, SimilarityEngineError

logger = logging.getLogger(__name__)


class EmbeddingVector:
    """One-dimensional embedding with an explicit, run-once release."""

    __slots__ = ("_values", "_on_release")

    def __init__(self, values: np.ndarray, on_release: Callable[[], None] | None = None) -> None:
        self._values: np.ndarray | None = values
        self._on_release = on_release

    @property
    def values(self) -> np.ndarray:
        if self._values is None:
            raise RuntimeError("Embedding vector has been released")
        return self._values

    @property
    def released(self) -> bool:
        return self._values is None

    def __len__(self) -> int:
        return len(self.values)

    def release(self) -> None:
        if self._values is None:
            return
        self._values = None
        callback, self._on_release = self._on_release, None
        if callback is not None:
            callback()

    def __enter__(self) -> EmbeddingVector:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()


class FeatureExtractor:
    """Runs the cached model over decoded images."""

    def __init__(self, *, model_cache: ModelCache, image_loader: ImageLoader) -> None:
        self._model_cache = model_cache
        self._image_loader = image_loader
        self._live_vectors = 0

    @property
    def live_vectors(self) -> int:
        """Vectors handed out and not yet released."""
        return self._live_vectors

    async def extract_features(self, source: ImageSource) -> EmbeddingVector:
        model = await self._model_cache.get_model()
        image = await self._image_loader.load_image(source)
        try:
            activation = await model.infer(image)
        except SimilarityEngineError:
            raise
        except Exception as exc:
            logger.exception("Inference failed on a %dx%d image", image.width, image.height)
            raise FeatureExtractionError(f"Inference failed: {exc}") from exc
        finally:
            image.close()

        values = np.asarray(activation, dtype=np.float32).reshape(-1)
        if model.dimension > 0 and values.shape[0] != model.dimension:
            raise FeatureExtractionError(
                f"Model returned an embedding of length {values.shape[0]}, expected {model.dimension}."
            )
        if not np.all(np.isfinite(values)):
            raise FeatureExtractionError("Model returned non-finite embedding values.")

        self._live_vectors += 1
        return EmbeddingVector(values, on_release=self._on_release)

    def _on_release(self) -> None:
        self._live_vectors -= 1
