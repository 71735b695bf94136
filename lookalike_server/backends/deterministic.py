"""Deterministic lightweight image model for local testing."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping

import numpy as np
from PIL import Image

from lookalike_server.backends.base import BackendInitializer, ComputeBackend
from lookalike_server.engine.image_loader import DecodedImage

HISTOGRAM_BINS = 16
THUMBNAIL_SIZE = 8


class DeterministicImageModel:
    """Colour histogram plus grayscale thumbnail features with fixed dimension."""

    name = "deterministic"

    def __init__(self, *, bins: int = HISTOGRAM_BINS, thumbnail_size: int = THUMBNAIL_SIZE) -> None:
        self._bins = bins
        self._thumbnail_size = thumbnail_size
        self.dimension = 3 * bins + thumbnail_size * thumbnail_size

    def _vectorize(self, pixels: np.ndarray) -> np.ndarray:
        pixel_count = max(1, pixels.shape[0] * pixels.shape[1])
        histograms = [
            np.histogram(pixels[..., channel], bins=self._bins, range=(0, 256))[0] / pixel_count
            for channel in range(3)
        ]
        gray = Image.fromarray(pixels).convert("L")
        thumbnail = gray.resize((self._thumbnail_size, self._thumbnail_size), Image.Resampling.BILINEAR)
        values = np.concatenate(
            [np.concatenate(histograms), np.asarray(thumbnail, dtype=np.float32).ravel() / 255.0]
        )
        # Batched activation shape, like a real network's pooled output.
        return values.astype(np.float32).reshape(1, self.dimension)

    async def infer(self, image: DecodedImage) -> np.ndarray:
        return await asyncio.to_thread(self._vectorize, image.pixels)


class DeterministicModelProvider:
    """Provider for the numpy-only model; it only ever runs on the CPU."""

    name = "deterministic"

    def check_environment(self) -> None:
        return None

    def backend_initializers(self) -> Mapping[str, BackendInitializer]:
        return {"cpu": lambda: ComputeBackend(name="cpu", device="cpu")}

    def load(self, backend: ComputeBackend) -> DeterministicImageModel:
        del backend
        return DeterministicImageModel()
