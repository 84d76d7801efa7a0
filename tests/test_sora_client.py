import json

import httpx
import pytest

from cctv_magic.core.exceptions import UpstreamProviderError
from cctv_magic.services.sora import ReferenceImage, SoraClient

pytestmark = pytest.mark.asyncio

API = "https://api.openai.test/v1/videos"


def _client(handler, api_key="sk-test") -> SoraClient:
    return SoraClient(api_key, base_url=API, transport=httpx.MockTransport(handler))


async def test_create_without_image_sends_json():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["content_type"] = request.headers["Content-Type"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "video_1", "status": "queued", "seconds": "8"})

    sora = _client(handler)
    video = await sora.create_video(prompt="snow", model="sora-2", size="1280x720", seconds=8)
    await sora.aclose()

    assert video.id == "video_1"
    assert video.status == "queued"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["content_type"] == "application/json"
    assert seen["body"] == {"prompt": "snow", "model": "sora-2", "size": "1280x720", "seconds": "8"}


async def test_create_with_image_sends_multipart():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["content_type"] = request.headers["Content-Type"]
        seen["body"] = request.content
        return httpx.Response(200, json={"id": "video_2", "status": "in_progress"})

    sora = _client(handler)
    await sora.create_video(
        prompt="snow",
        model="sora-2",
        size="720x1280",
        seconds=4,
        image=ReferenceImage(data=b"JPEGDATA", filename="reference.jpg"),
    )

    assert seen["content_type"].startswith("multipart/form-data")
    assert b'name="input_reference"; filename="reference.jpg"' in seen["body"]
    assert b"JPEGDATA" in seen["body"]


async def test_error_response_message_is_surfaced():
    def handler(request):
        return httpx.Response(400, json={"error": {"message": "Invalid size", "type": "invalid_request_error"}})

    with pytest.raises(UpstreamProviderError) as exc:
        await _client(handler).create_video(prompt="x", model="sora-2", size="1x1", seconds=8)
    assert exc.value.message == "Invalid size"
    assert exc.value.upstream_status == 400
    assert exc.value.status_code == 502


async def test_missing_id_is_rejected():
    def handler(request):
        return httpx.Response(200, json={"status": "queued"})

    with pytest.raises(UpstreamProviderError) as exc:
        await _client(handler).create_video(prompt="x", model="sora-2", size="1280x720", seconds=8)
    assert exc.value.message == "No video ID returned from OpenAI"


async def test_transport_error_is_upstream_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(UpstreamProviderError):
        await _client(handler).retrieve_video("video_1")


async def test_missing_key_is_rejected_without_request():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    with pytest.raises(UpstreamProviderError):
        await _client(handler, api_key="").retrieve_video("video_1")
    assert calls == []


async def test_retrieve_and_download():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/content"):
            return httpx.Response(200, content=b"MP4BYTES", headers={"Content-Type": "video/mp4"})
        return httpx.Response(
            200,
            json={"id": "video_1", "status": "failed", "error": {"code": "moderation", "message": "Blocked"}},
        )

    sora = _client(handler)
    video = await sora.retrieve_video("video_1")
    assert video.is_failed
    assert video.error_message == "Blocked"
    assert await sora.download_content("video_1") == b"MP4BYTES"
    assert sora.content_url("video_1") == f"{API}/video_1/content"
