"""HTTP client for the remote corpus search / grouping service."""

from __future__ import annotations

import logging
from typing import TypeVar

import httpx
from pydantic import ValidationError

from lookalike_server.corpus.models import (
    SearchSimilarData,
    SearchSimilarEnvelope,
    SimilarGroupsData,
    SimilarGroupsEnvelope,
)

logger = logging.getLogger(__name__)

SEARCH_SIMILAR_PATH = "/api/image-feature/search-similar"
SIMILAR_GROUPS_PATH = "/api/image-feature/similar-groups"

EnvelopeT = TypeVar("EnvelopeT", SearchSimilarEnvelope, SimilarGroupsEnvelope)


class CorpusServiceError(Exception):
    """The corpus service was unreachable or reported a failure."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def validate_threshold(threshold: float) -> float:
    value = float(threshold)
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"threshold must be within [0, 1], got {threshold}")
    return value


class CorpusClient:
    """Typed async access to search-similar and similar-groups."""

    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = httpx.Timeout(timeout_seconds)
        self._transport = transport

    @property
    def base_url(self) -> str:
        return self._base_url

    async def search_similar(
        self,
        image: bytes,
        *,
        threshold: float,
        filename: str = "image",
        content_type: str = "application/octet-stream",
    ) -> SearchSimilarData:
        """Images in the corpus whose similarity to ``image`` exceeds ``threshold``."""
        params = {"threshold": validate_threshold(threshold)}
        files = {"file": (filename, image, content_type)}
        envelope = await self._request(
            "POST",
            SEARCH_SIMILAR_PATH,
            SearchSimilarEnvelope,
            params=params,
            files=files,
        )
        return envelope.data or SearchSimilarData()

    async def similar_groups(self, *, threshold: float) -> SimilarGroupsData:
        """Connected groups of corpus images above ``threshold``."""
        params = {"threshold": validate_threshold(threshold)}
        envelope = await self._request("GET", SIMILAR_GROUPS_PATH, SimilarGroupsEnvelope, params=params)
        return envelope.data or SimilarGroupsData(threshold=params["threshold"])

    async def _request(
        self,
        method: str,
        path: str,
        envelope_type: type[EnvelopeT],
        **kwargs: object,
    ) -> EnvelopeT:
        url = f"{self._base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.request(method, url, **kwargs)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning("Corpus service request %s %s failed: %s", method, path, exc)
            raise CorpusServiceError(f"Corpus service unreachable: {exc}") from exc

        envelope = self._parse(response, envelope_type)
        if envelope is None:
            raise CorpusServiceError(
                f"Corpus service returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        if not envelope.success:
            raise CorpusServiceError(
                envelope.message or "Corpus service reported a failure",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise CorpusServiceError(
                envelope.message or f"Corpus service returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return envelope

    @staticmethod
    def _parse(response: httpx.Response, envelope_type: type[EnvelopeT]) -> EnvelopeT | None:
        try:
            return envelope_type.model_validate(response.json())
        except (ValueError, ValidationError):
            return None
