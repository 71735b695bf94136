"""FastAPI routes for the image similarity service."""

from __future__ import annotations

import asyncio
import logging
import time

from fastapi import APIRouter, File, Request, UploadFile
from fastapi.responses import JSONResponse

from lookalike_server.api.models import (
    CorpusGroupsResponse,
    CorpusSearchResponse,
    ErrorPayload,
    ErrorResponse,
    FeatureRequest,
    FeatureResponse,
    HealthResponse,
    SimilarityRequest,
    SimilarityResponse,
)
from lookalike_server.config import get_settings
from lookalike_server.corpus.client import CorpusClient, CorpusServiceError, validate_threshold
from lookalike_server.engine.negotiator import BackendState
from lookalike_server.engine.orchestrator import SimilarityEngine
from lookalike_server.engine.scoring import similarity_label
from lookalike_server.errors import (
    BackendUnavailable,
    EnvironmentUnsupported,
    ImageDecodeError,
    ModelLoadError,
)
from lookalike_server.telemetry import NoopSimilarityMetrics, SimilarityMetrics

router = APIRouter()
logger = logging.getLogger(__name__)

ENGINE_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
    504: {"model": ErrorResponse},
}
CORPUS_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    """Build canonical error payload."""
    payload = ErrorResponse(error=ErrorPayload(code=code, message=message))
    return JSONResponse(status_code=status_code, content=payload.model_dump())


def engine_error_response(exc: Exception) -> tuple[str, JSONResponse]:
    """Map an engine failure to a metrics status and an HTTP error."""
    if isinstance(exc, ImageDecodeError):
        return "invalid_image", error_response(400, "invalid_image", str(exc))
    if isinstance(exc, (EnvironmentUnsupported, BackendUnavailable, ModelLoadError)):
        logger.error("Embedding engine unavailable: %s", exc)
        return "upstream_error", error_response(503, "upstream_error", str(exc))
    if isinstance(exc, TimeoutError):
        logger.warning("Embedding engine timed out")
        return "upstream_timeout", error_response(504, "upstream_timeout", "Embedding engine timed out.")
    logger.error("Similarity computation failed", exc_info=exc)
    return "internal", error_response(500, "internal", "Similarity computation failed.")


def get_engine(request: Request) -> SimilarityEngine | None:
    return getattr(request.app.state, "similarity_engine", None)


def get_corpus_client(request: Request) -> CorpusClient | None:
    return getattr(request.app.state, "corpus_client", None)


def get_similarity_metrics(request: Request) -> SimilarityMetrics:
    metrics = getattr(request.app.state, "similarity_metrics", None)
    if metrics is None:
        return NoopSimilarityMetrics()
    return metrics


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(request: Request) -> HealthResponse:
    """Service health and engine readiness."""
    settings = get_settings()
    engine = get_engine(request)
    if engine is None:
        return HealthResponse(
            status="error",
            service=settings.service_name,
            version=settings.service_version,
            embedding_enabled=settings.embedding.enabled,
        )

    backend = engine.active_backend
    return HealthResponse(
        status="error" if engine.state is BackendState.FAILED else "ok",
        service=settings.service_name,
        version=settings.service_version,
        engine_state=engine.state.value,
        backend=backend.name if backend is not None else "none",
        model=engine.model_name,
        embedding_enabled=settings.embedding.enabled,
    )


@router.post(
    "/v1/similarity",
    response_model=SimilarityResponse,
    responses=ENGINE_ERROR_RESPONSES,
    tags=["Similarity"],
)
async def compare_images(request: Request, body: SimilarityRequest):
    """Cosine similarity between two images."""
    started_at = time.perf_counter()
    metrics = get_similarity_metrics(request)

    def record_metrics(status: str) -> None:
        elapsed_ms = (time.perf_counter() - started_at) * 1000.0
        metrics.record(operation="compare", status=status, image_count=2, duration_ms=elapsed_ms)

    engine = get_engine(request)
    if engine is None:
        record_metrics(status="upstream_error")
        return error_response(503, "upstream_error", "Similarity engine is disabled.")

    settings = get_settings()
    try:
        score = await asyncio.wait_for(
            engine.compare_images(body.image_a, body.image_b),
            timeout=settings.embedding.backend_timeout_seconds,
        )
    except Exception as exc:
        status, response = engine_error_response(exc)
        record_metrics(status=status)
        return response

    record_metrics(status="ok")
    return SimilarityResponse(
        model=engine.model_name,
        similarity=score,
        percentage=round(score * 100.0, 2),
        label=similarity_label(score),
    )


@router.post(
    "/v1/features",
    response_model=FeatureResponse,
    responses=ENGINE_ERROR_RESPONSES,
    tags=["Similarity"],
)
async def extract_features(request: Request, body: FeatureRequest):
    """Flattened embedding vector for one image."""
    started_at = time.perf_counter()
    metrics = get_similarity_metrics(request)

    def record_metrics(status: str) -> None:
        elapsed_ms = (time.perf_counter() - started_at) * 1000.0
        metrics.record(operation="features", status=status, image_count=1, duration_ms=elapsed_ms)

    engine = get_engine(request)
    if engine is None:
        record_metrics(status="upstream_error")
        return error_response(503, "upstream_error", "Similarity engine is disabled.")

    settings = get_settings()
    try:
        vector = await asyncio.wait_for(
            engine.extract_features(body.image),
            timeout=settings.embedding.backend_timeout_seconds,
        )
    except Exception as exc:
        status, response = engine_error_response(exc)
        record_metrics(status=status)
        return response

    with vector:
        embedding = vector.values.tolist()

    record_metrics(status="ok")
    return FeatureResponse(model=engine.model_name, dimension=len(embedding), embedding=embedding)


def _resolve_threshold(threshold: float | None, default: float) -> float:
    return validate_threshold(default if threshold is None else threshold)


@router.post(
    "/v1/corpus/search",
    response_model=CorpusSearchResponse,
    responses=CORPUS_ERROR_RESPONSES,
    tags=["Corpus"],
)
async def search_corpus(request: Request, file: UploadFile = File(...), threshold: float | None = None):
    """Search the corpus service for images similar to the upload."""
    settings = get_settings()
    client = get_corpus_client(request)
    if client is None:
        return error_response(503, "upstream_error", "Corpus service is not configured.")

    try:
        resolved = _resolve_threshold(threshold, settings.corpus.default_search_threshold)
    except ValueError as exc:
        return error_response(400, "invalid_request", str(exc))

    content_type = file.content_type or ""
    if not content_type.startswith("image/"):
        return error_response(400, "invalid_request", "Uploaded file must be an image.")

    payload = await file.read()
    if not payload:
        return error_response(400, "invalid_request", "Uploaded file is empty.")

    try:
        data = await client.search_similar(
            payload,
            threshold=resolved,
            filename=file.filename or "image",
            content_type=content_type,
        )
    except CorpusServiceError as exc:
        return error_response(502, "upstream_error", str(exc))

    return CorpusSearchResponse(threshold=resolved, data=data)


@router.get(
    "/v1/corpus/groups",
    response_model=CorpusGroupsResponse,
    responses=CORPUS_ERROR_RESPONSES,
    tags=["Corpus"],
)
async def corpus_groups(request: Request, threshold: float | None = None):
    """Similarity groups computed by the corpus service."""
    settings = get_settings()
    client = get_corpus_client(request)
    if client is None:
        return error_response(503, "upstream_error", "Corpus service is not configured.")

    try:
        resolved = _resolve_threshold(threshold, settings.corpus.default_group_threshold)
    except ValueError as exc:
        return error_response(400, "invalid_request", str(exc))

    try:
        data = await client.similar_groups(threshold=resolved)
    except CorpusServiceError as exc:
        return error_response(502, "upstream_error", str(exc))

    return CorpusGroupsResponse(threshold=resolved, data=data)
