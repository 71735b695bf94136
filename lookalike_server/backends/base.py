"""Model backend protocols."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

if TYPE_CHECKING:
    from lookalike_server.engine.image_loader import DecodedImage


@dataclass(frozen=True, slots=True)
class ComputeBackend:
    """An initialized numeric execution backend."""

    name: str
    device: str


BackendInitializer = Callable[[], ComputeBackend]


class ImageEmbeddingModel(Protocol):
    """Loaded inference unit producing one activation per image."""

    name: str
    dimension: int

    async def infer(self, image: DecodedImage) -> np.ndarray:
        """Run the model over one decoded image."""


class ModelProvider(Protocol):
    """Knows how to prepare a runtime for, and load, one model family."""

    name: str

    def check_environment(self) -> None:
        """Raise ImportError when the numeric runtime is missing."""

    def backend_initializers(self) -> Mapping[str, BackendInitializer]:
        """Named initializers for the compute backends this model can run on."""

    def load(self, backend: ComputeBackend) -> ImageEmbeddingModel:
        """Build the model on an initialized backend. May block."""
