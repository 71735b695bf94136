"""Shared fixtures and fakes for engine tests."""

from __future__ import annotations

import base64
import io
from collections.abc import Callable, Mapping

import numpy as np
import pytest
from PIL import Image

from lookalike_server.backends.base import BackendInitializer, ComputeBackend
from lookalike_server.engine.image_loader import DecodedImage


def make_png(color: tuple[int, int, int] = (200, 30, 30), size: tuple[int, int] = (32, 32)) -> bytes:
    """Encode a solid-colour RGB image as PNG."""
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def make_checkerboard_png(size: int = 64, cell: int = 8) -> bytes:
    pixels = np.full((size, size, 3), 220, dtype=np.uint8)
    for y in range(0, size, cell):
        for x in range(0, size, cell):
            if (x // cell + y // cell) % 2 == 0:
                pixels[y:y + cell, x:x + cell] = (20, 20, 20)
    buffer = io.BytesIO()
    Image.fromarray(pixels).save(buffer, format="PNG")
    return buffer.getvalue()


def to_data_uri(payload: bytes, media_type: str = "image/png") -> str:
    return f"data:{media_type};base64,{base64.b64encode(payload).decode('ascii')}"


class StaticModel:
    """Returns a fixed-length activation computed by ``fn``."""

    name = "static"

    def __init__(self, dimension: int = 4, fn: Callable[[DecodedImage], np.ndarray] | None = None) -> None:
        self.dimension = dimension
        self._fn = fn
        self.calls = 0

    async def infer(self, image: DecodedImage) -> np.ndarray:
        self.calls += 1
        if self._fn is not None:
            return self._fn(image)
        return np.ones((1, self.dimension), dtype=np.float32)


class FakeProvider:
    """Model provider with injectable failures and counters."""

    name = "fake"

    def __init__(
        self,
        *,
        model: object | None = None,
        load_failures: int = 0,
        initializers: Mapping[str, BackendInitializer] | None = None,
        environment_error: Exception | None = None,
    ) -> None:
        self.model = model if model is not None else StaticModel()
        self.load_failures = load_failures
        self.load_calls = 0
        self.loaded_on: list[ComputeBackend] = []
        self._initializers = initializers
        self._environment_error = environment_error

    def check_environment(self) -> None:
        if self._environment_error is not None:
            raise self._environment_error

    def backend_initializers(self) -> Mapping[str, BackendInitializer]:
        if self._initializers is not None:
            return self._initializers
        return {"cpu": lambda: ComputeBackend(name="cpu", device="cpu")}

    def load(self, backend: ComputeBackend) -> object:
        self.load_calls += 1
        if self.load_calls <= self.load_failures:
            raise ConnectionError("simulated weight download failure")
        self.loaded_on.append(backend)
        return self.model


@pytest.fixture
def red_png() -> bytes:
    return make_png((200, 30, 30))


@pytest.fixture
def black_png() -> bytes:
    return make_png((0, 0, 0), size=(48, 48))


@pytest.fixture
def white_png() -> bytes:
    return make_png((255, 255, 255), size=(48, 48))


@pytest.fixture
def truncated_png() -> bytes:
    noise = np.random.default_rng(42).integers(0, 256, size=(64, 64, 3), dtype=np.uint8)
    buffer = io.BytesIO()
    Image.fromarray(noise).save(buffer, format="PNG")
    payload = buffer.getvalue()
    return payload[: len(payload) // 2]
