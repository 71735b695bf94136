"""Image source fetching and decoding."""

from __future__ import annotations

import asyncio
import base64
import binascii
import io
import logging
from urllib.parse import unquote_to_bytes

import httpx
import numpy as np
from PIL import Image

from lookalike_server.errors import ImageDecodeError

logger = logging.getLogger(__name__)

ImageSource = str | bytes

DEFAULT_FETCH_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_IMAGE_BYTES = 20 * 1024 * 1024


class DecodedImage:
    """RGB pixel buffer owned by a single extraction call."""

    __slots__ = ("_pixels", "width", "height", "channels")

    def __init__(self, pixels: np.ndarray) -> None:
        if pixels.ndim != 3 or pixels.shape[2] != 3:
            raise ValueError(f"Expected an (H, W, 3) pixel buffer, got shape {pixels.shape}")
        self._pixels: np.ndarray | None = pixels
        self.height, self.width, self.channels = (int(dim) for dim in pixels.shape)

    @property
    def pixels(self) -> np.ndarray:
        if self._pixels is None:
            raise RuntimeError("Decoded image has been closed")
        return self._pixels

    @property
    def closed(self) -> bool:
        return self._pixels is None

    def close(self) -> None:
        self._pixels = None


def parse_data_uri(uri: str) -> bytes:
    """Return the payload bytes of a ``data:`` URI."""
    header, sep, data = uri.partition(",")
    if not sep or not header.startswith("data:"):
        raise ImageDecodeError("Malformed data URI")

    params = header[len("data:"):].split(";")
    media_type = params[0].strip().lower()
    if media_type and not media_type.startswith("image/"):
        raise ImageDecodeError(f"Data URI media type '{media_type}' is not an image")

    if "base64" in (param.strip().lower() for param in params[1:]):
        try:
            return base64.b64decode("".join(data.split()), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ImageDecodeError(f"Invalid base64 encoding: {exc}") from exc
    return unquote_to_bytes(data)


def decode_image_bytes(payload: bytes) -> DecodedImage:
    """Fully decode encoded image bytes into an RGB buffer."""
    if not payload:
        raise ImageDecodeError("Image payload is empty")
    try:
        with Image.open(io.BytesIO(payload)) as image:
            # Image.open is lazy; load() surfaces truncated data.
            image.load()
            rgb = image.convert("RGB")
    except (Image.DecompressionBombError, OSError, SyntaxError, ValueError) as exc:
        raise ImageDecodeError(f"Invalid image data: {exc}") from exc
    return DecodedImage(np.array(rgb, dtype=np.uint8))


class ImageLoader:
    """Resolves inline data, raw bytes or remote URLs to decoded images."""

    def __init__(
        self,
        *,
        fetch_timeout_seconds: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
        max_image_bytes: int = DEFAULT_MAX_IMAGE_BYTES,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._fetch_timeout = fetch_timeout_seconds
        self._max_image_bytes = max_image_bytes
        self._transport = transport

    async def load_image(self, source: ImageSource) -> DecodedImage:
        payload = await self._read_source(source)
        return await asyncio.to_thread(decode_image_bytes, payload)

    async def _read_source(self, source: ImageSource) -> bytes:
        if isinstance(source, (bytes, bytearray)):
            payload = bytes(source)
        elif isinstance(source, str):
            stripped = source.strip()
            if stripped[:5].lower() == "data:":
                payload = parse_data_uri(stripped)
            elif stripped.lower().startswith(("http://", "https://")):
                return await self._fetch(stripped)
            else:
                raise ImageDecodeError("Image source must be a data URI or an http(s) URL")
        else:
            raise ImageDecodeError(f"Unsupported image source type {type(source).__name__}")

        self._check_size(len(payload))
        return payload

    def _check_size(self, size: int) -> None:
        if size > self._max_image_bytes:
            raise ImageDecodeError(
                f"Image size {size} bytes exceeds configured limit {self._max_image_bytes}."
            )

    async def _fetch(self, url: str) -> bytes:
        timeout = httpx.Timeout(self._fetch_timeout)
        chunks: list[bytes] = []
        received = 0
        try:
            async with httpx.AsyncClient(
                timeout=timeout,
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                async with client.stream("GET", url) as response:
                    if response.status_code >= 400:
                        raise ImageDecodeError(
                            f"Fetching image from {url} failed with HTTP {response.status_code}"
                        )
                    content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
                    if content_type and not content_type.startswith("image/") and content_type != "application/octet-stream":
                        raise ImageDecodeError(f"Remote resource {url} is not an image ({content_type})")
                    async for chunk in response.aiter_bytes():
                        received += len(chunk)
                        self._check_size(received)
                        chunks.append(chunk)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning("Image fetch failed for %s: %s", url, exc)
            raise ImageDecodeError(f"Failed to fetch image from {url}: {exc}") from exc
        return b"".join(chunks)
