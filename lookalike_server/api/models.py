"""API models for lookalike-server."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from lookalike_server.corpus.models import SearchSimilarData, SimilarGroupsData


class SimilarityRequest(BaseModel):
    """Pair of image sources: data URIs or http(s) URLs."""

    image_a: str = Field(min_length=1)
    image_b: str = Field(min_length=1)


class SimilarityResponse(BaseModel):
    """Similarity score for an image pair."""

    object: Literal["similarity"] = "similarity"
    model: str
    similarity: float = Field(ge=0.0, le=1.0)
    percentage: float
    label: str


class FeatureRequest(BaseModel):
    """Single image source."""

    image: str = Field(min_length=1)


class FeatureResponse(BaseModel):
    """Flattened embedding for one image."""

    object: Literal["embedding"] = "embedding"
    model: str
    dimension: int
    embedding: list[float]


class CorpusSearchResponse(BaseModel):
    """Proxied corpus search result."""

    threshold: float
    data: SearchSimilarData


class CorpusGroupsResponse(BaseModel):
    """Proxied corpus grouping result."""

    threshold: float
    data: SimilarGroupsData


class HealthResponse(BaseModel):
    """Health response."""

    status: Literal["ok", "error"] = "error"
    service: str = "lookalike-server"
    version: str = "0.1.0"
    engine_state: str = "uninitialized"
    backend: str = "none"
    model: str = "none"
    embedding_enabled: bool = False


class ErrorPayload(BaseModel):
    """Canonical error payload."""

    code: Literal[
        "invalid_request",
        "invalid_image",
        "upstream_error",
        "upstream_timeout",
        "internal",
    ]
    message: str


class ErrorResponse(BaseModel):
    """Canonical error response."""

    error: ErrorPayload
