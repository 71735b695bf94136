from __future__ import annotations

import numpy as np
import pytest

from conftest import FakeProvider, StaticModel, to_data_uri
from lookalike_server.engine.features import EmbeddingVector, FeatureExtractor
from lookalike_server.engine.image_loader import DecodedImage, ImageLoader
from lookalike_server.engine.model_cache import ModelCache
from lookalike_server.engine.negotiator import BackendNegotiator
from lookalike_server.errors import FeatureExtractionError, ImageDecodeError, ModelLoadError


def build_extractor(provider: FakeProvider) -> FeatureExtractor:
    negotiator = BackendNegotiator(preference=["cpu"], initializers=provider.backend_initializers())
    cache = ModelCache(negotiator=negotiator, provider=provider)
    return FeatureExtractor(model_cache=cache, image_loader=ImageLoader())


@pytest.mark.asyncio
async def test_extract_features_flattens_activation(red_png):
    model = StaticModel(dimension=6, fn=lambda image: np.arange(6, dtype=np.float32).reshape(1, 2, 3))
    extractor = build_extractor(FakeProvider(model=model))

    vector = await extractor.extract_features(to_data_uri(red_png))

    assert vector.values.shape == (6,)
    assert vector.values.dtype == np.float32
    assert vector.values.tolist() == [0.0, 1.0, 2.0, 3.0, 4.0, 5.0]
    vector.release()


@pytest.mark.asyncio
async def test_vectors_have_stable_length(red_png, black_png):
    extractor = build_extractor(FakeProvider(model=StaticModel(dimension=5)))

    first = await extractor.extract_features(red_png)
    second = await extractor.extract_features(black_png)

    assert len(first) == len(second) == 5
    first.release()
    second.release()


@pytest.mark.asyncio
async def test_live_vector_accounting(red_png):
    extractor = build_extractor(FakeProvider())

    vector = await extractor.extract_features(red_png)
    assert extractor.live_vectors == 1

    vector.release()
    vector.release()
    assert extractor.live_vectors == 0
    assert vector.released


@pytest.mark.asyncio
async def test_vector_context_manager_releases(red_png):
    extractor = build_extractor(FakeProvider())

    with await extractor.extract_features(red_png) as vector:
        assert extractor.live_vectors == 1
        assert not vector.released

    assert extractor.live_vectors == 0
    with pytest.raises(RuntimeError):
        _ = vector.values


@pytest.mark.asyncio
async def test_inference_failure_is_feature_extraction_error(red_png):
    seen: list[DecodedImage] = []

    def explode(image: DecodedImage) -> np.ndarray:
        seen.append(image)
        raise RuntimeError("kernel crashed")

    extractor = build_extractor(FakeProvider(model=StaticModel(fn=explode)))

    with pytest.raises(FeatureExtractionError, match="kernel crashed"):
        await extractor.extract_features(red_png)

    assert seen[0].closed
    assert extractor.live_vectors == 0


@pytest.mark.asyncio
async def test_image_is_closed_after_successful_inference(red_png):
    seen: list[DecodedImage] = []

    def capture(image: DecodedImage) -> np.ndarray:
        seen.append(image)
        return np.ones(4, dtype=np.float32)

    extractor = build_extractor(FakeProvider(model=StaticModel(fn=capture)))
    with await extractor.extract_features(red_png):
        pass

    assert seen[0].closed


@pytest.mark.asyncio
async def test_wrong_length_is_feature_extraction_error(red_png):
    model = StaticModel(dimension=4, fn=lambda image: np.ones(3, dtype=np.float32))
    extractor = build_extractor(FakeProvider(model=model))

    with pytest.raises(FeatureExtractionError, match="length 3"):
        await extractor.extract_features(red_png)


@pytest.mark.asyncio
async def test_non_finite_output_is_feature_extraction_error(red_png):
    model = StaticModel(dimension=2, fn=lambda image: np.array([np.nan, 1.0], dtype=np.float32))
    extractor = build_extractor(FakeProvider(model=model))

    with pytest.raises(FeatureExtractionError, match="non-finite"):
        await extractor.extract_features(red_png)


@pytest.mark.asyncio
async def test_decode_errors_pass_through_unchanged(truncated_png):
    model = StaticModel()
    extractor = build_extractor(FakeProvider(model=model))

    with pytest.raises(ImageDecodeError):
        await extractor.extract_features(truncated_png)
    assert model.calls == 0


@pytest.mark.asyncio
async def test_model_load_failure_then_retry(red_png):
    provider = FakeProvider(load_failures=1)
    extractor = build_extractor(provider)

    with pytest.raises(ModelLoadError):
        await extractor.extract_features(red_png)

    with await extractor.extract_features(red_png) as vector:
        assert len(vector) == provider.model.dimension
    assert provider.load_calls == 2


def test_release_callback_runs_once():
    calls: list[int] = []
    vector = EmbeddingVector(np.ones(3, dtype=np.float32), on_release=lambda: calls.append(1))

    vector.release()
    vector.release()

    assert calls == [1]
