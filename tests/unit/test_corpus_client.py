from __future__ import annotations

import httpx
import pytest

from lookalike_server.corpus.client import CorpusClient, CorpusServiceError
from lookalike_server.corpus.models import GroupImage, file_type_label


def client_for(handler) -> CorpusClient:
    return CorpusClient(base_url="http://corpus.test/", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_search_similar_parses_results():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "success": True,
                "data": {
                    "images": [
                        {"imageId": 3, "url": "http://cdn/3.png", "md5": "m3", "similarity": 97.2},
                        {"imageId": 9, "url": "http://cdn/9.png", "md5": "m9", "similarity": 81.0},
                    ]
                },
            },
        )

    data = await client_for(handler).search_similar(b"png-bytes", threshold=0.8, filename="q.png", content_type="image/png")

    assert [image.image_id for image in data.images] == [3, 9]
    assert data.images[0].similarity == 97.2
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/api/image-feature/search-similar"
    assert request.url.params["threshold"] == "0.8"
    assert b"png-bytes" in request.content


@pytest.mark.asyncio
async def test_search_similar_with_no_data_is_empty():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": True})

    data = await client_for(handler).search_similar(b"x", threshold=0.5)

    assert data.images == []


@pytest.mark.asyncio
async def test_similar_groups_parses_groups():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "GET"
        assert request.url.path == "/api/image-feature/similar-groups"
        return httpx.Response(
            200,
            json={
                "success": True,
                "data": {
                    "groups": [
                        {
                            "groupId": "g1",
                            "imageCount": 1,
                            "images": [{"id": 5, "url": "http://cdn/5.gif", "fileType": 3, "md5": "m", "createTime": "2024-05-01"}],
                        }
                    ],
                    "groupCount": 1,
                    "totalImages": 1,
                    "threshold": 0.9,
                },
            },
        )

    data = await client_for(handler).similar_groups(threshold=0.9)

    assert data.group_count == 1
    assert data.total_images == 1
    assert data.groups[0].images[0].file_type_label == "GIF"


@pytest.mark.asyncio
async def test_unsuccessful_envelope_raises_with_service_message():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": False, "message": "no features indexed"})

    with pytest.raises(CorpusServiceError, match="no features indexed"):
        await client_for(handler).similar_groups(threshold=0.9)


@pytest.mark.asyncio
async def test_http_error_without_envelope_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="Internal Server Error")

    with pytest.raises(CorpusServiceError) as excinfo:
        await client_for(handler).similar_groups(threshold=0.9)

    assert excinfo.value.status_code == 500


@pytest.mark.asyncio
async def test_transport_error_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(CorpusServiceError, match="unreachable"):
        await client_for(handler).search_similar(b"x", threshold=0.8)


@pytest.mark.asyncio
async def test_malformed_base_url_raises():
    client = CorpusClient(base_url="http://[::1")

    with pytest.raises(CorpusServiceError, match="unreachable"):
        await client.similar_groups(threshold=0.9)


@pytest.mark.asyncio
@pytest.mark.parametrize("threshold", [-0.1, 1.01])
async def test_threshold_must_be_a_fraction(threshold):
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("request should not be sent")

    with pytest.raises(ValueError):
        await client_for(handler).similar_groups(threshold=threshold)


@pytest.mark.parametrize(
    ("code", "label"),
    [(1, "PNG"), (2, "JPG"), (3, "GIF"), (4, "WebP"), (0, "Unknown"), (99, "Unknown"), (None, "Unknown")],
)
def test_file_type_label(code, label):
    assert file_type_label(code) == label


def test_group_image_accepts_snake_case_names():
    image = GroupImage(id=1, url="http://cdn/1.webp", file_type=4)
    assert image.file_type_label == "WebP"
