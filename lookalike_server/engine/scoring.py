"""Bounded cosine similarity."""

from __future__ import annotations

import math

import numpy as np
from numpy.typing import ArrayLike

from lookalike_server.engine.features import EmbeddingVector
from lookalike_server.errors import DimensionMismatch

VectorLike = EmbeddingVector | ArrayLike

SIMILARITY_LABELS = (
    (0.9, "very similar"),
    (0.7, "similar"),
    (0.5, "moderately similar"),
    (0.3, "slightly similar"),
)


def _as_vector(value: VectorLike) -> np.ndarray:
    if isinstance(value, EmbeddingVector):
        value = value.values
    return np.asarray(value, dtype=np.float64)


def cosine_similarity(a: VectorLike, b: VectorLike) -> float:
    """Cosine similarity clamped to [0, 1].

    Zero-norm inputs score 0.0. Mismatched, empty or non-1-D inputs raise
    ``DimensionMismatch`` before anything is computed.
    """
    vec_a = _as_vector(a)
    vec_b = _as_vector(b)
    if vec_a.ndim != 1 or vec_b.ndim != 1:
        raise DimensionMismatch(
            f"Embeddings must be one-dimensional, got shapes {vec_a.shape} and {vec_b.shape}"
        )
    if vec_a.shape[0] == 0 or vec_b.shape[0] == 0:
        raise DimensionMismatch("Embeddings must not be empty")
    if vec_a.shape[0] != vec_b.shape[0]:
        raise DimensionMismatch(f"Embedding lengths differ: {vec_a.shape[0]} != {vec_b.shape[0]}")

    # Max-abs scaling keeps large finite inputs from overflowing the dot product.
    scale_a = float(np.max(np.abs(vec_a)))
    scale_b = float(np.max(np.abs(vec_b)))
    if scale_a == 0.0 or scale_b == 0.0:
        return 0.0
    vec_a = vec_a / scale_a
    vec_b = vec_b / scale_b

    norm_a = float(np.linalg.norm(vec_a))
    norm_b = float(np.linalg.norm(vec_b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    similarity = float(np.dot(vec_a, vec_b)) / (norm_a * norm_b)
    if not math.isfinite(similarity):
        return 0.0
    return max(0.0, min(1.0, similarity))


def similarity_label(score: float) -> str:
    """Human-readable band for a similarity score."""
    for floor, label in SIMILARITY_LABELS:
        if score >= floor:
            return label
    return "not similar"
