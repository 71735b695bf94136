"""Error taxonomy for the similarity engine."""

from __future__ import annotations

from collections.abc import Sequence


class SimilarityEngineError(Exception):
    """Base class for engine failures."""


class EnvironmentUnsupported(SimilarityEngineError):
    """The numeric runtime required by the model is not available."""


class BackendUnavailable(SimilarityEngineError):
    """Every candidate compute backend failed to initialize."""

    def __init__(self, attempts: Sequence[tuple[str, str]]) -> None:
        self.attempts = list(attempts)
        if self.attempts:
            detail = "; ".join(f"{name}: {reason}" for name, reason in self.attempts)
        else:
            detail = "no backends configured"
        super().__init__(f"No compute backend could be initialized ({detail})")


class ModelLoadError(SimilarityEngineError):
    """Embedding model fetch or construction failed. Safe to retry."""


class ImageDecodeError(SimilarityEngineError):
    """Image source could not be fetched or decoded."""


class FeatureExtractionError(SimilarityEngineError):
    """Inference failed on a decoded image."""


class DimensionMismatch(SimilarityEngineError):
    """Embedding vectors cannot be compared."""
