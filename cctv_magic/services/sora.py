"""OpenAI Sora videos API client (create, retrieve, download content)."""

from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from cctv_magic.core.exceptions import UpstreamProviderError
from cctv_magic.core.logging import get_logger

log = get_logger(__name__)

DEFAULT_API_URL = "https://api.openai.com/v1/videos"

# Provider statuses: queued, in_progress, completed, failed
COMPLETED = "completed"
FAILED = "failed"


class ProviderError(BaseModel):
    code: str | None = None
    message: str | None = None


class ProviderVideo(BaseModel):
    id: str
    status: str = "queued"
    progress: float | None = None
    model: str | None = None
    seconds: str | int | None = None
    size: str | None = None
    error: ProviderError | None = None

    @property
    def is_completed(self) -> bool:
        return self.status == COMPLETED

    @property
    def is_failed(self) -> bool:
        return self.status == FAILED

    @property
    def error_message(self) -> str | None:
        return self.error.message if self.error else None


@dataclass
class ReferenceImage:
    data: bytes
    filename: str
    content_type: str = "image/jpeg"


def _error_message(response: httpx.Response, default: str) -> str:
    text = response.text
    try:
        body = response.json()
    except ValueError:
        return text or default
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            return err["message"]
        if body.get("message"):
            return body["message"]
    return text or default


class SoraClient:
    """Thin async client; one instance per process, closed on shutdown."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_API_URL,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport, follow_redirects=True)

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            raise UpstreamProviderError("OpenAI API key is not configured")
        return {"Authorization": f"Bearer {self.api_key}"}

    def content_url(self, video_id: str) -> str:
        return f"{self.base_url}/{video_id}/content"

    async def _send(self, method: str, url: str, default_error: str, **kwargs: Any) -> httpx.Response:
        headers = self._headers()
        try:
            response = await self._http.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            log.warning("provider_request_failed", method=method, url=url, error=str(e))
            raise UpstreamProviderError(f"{default_error}: {e}") from e
        if response.is_error:
            message = _error_message(response, default_error)
            log.warning("provider_error_response", method=method, url=url, status=response.status_code, message=message)
            raise UpstreamProviderError(message, upstream_status=response.status_code)
        return response

    @staticmethod
    def _parse_video(response: httpx.Response) -> ProviderVideo:
        try:
            return ProviderVideo.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise UpstreamProviderError("No video ID returned from OpenAI") from e

    async def create_video(
        self,
        *,
        prompt: str,
        model: str,
        size: str,
        seconds: int,
        image: ReferenceImage | None = None,
    ) -> ProviderVideo:
        """Submit a generation job. With an image the request is multipart, else JSON."""
        fields = {"prompt": prompt, "model": model, "size": size, "seconds": str(seconds)}
        if image is not None:
            response = await self._send(
                "POST",
                self.base_url,
                "OpenAI API request failed",
                data=fields,
                files={"input_reference": (image.filename, image.data, image.content_type)},
            )
        else:
            response = await self._send("POST", self.base_url, "OpenAI API request failed", json=fields)
        video = self._parse_video(response)
        log.info("provider_video_created", provider_video_id=video.id, status=video.status, has_image=image is not None)
        return video

    async def retrieve_video(self, video_id: str) -> ProviderVideo:
        response = await self._send("GET", f"{self.base_url}/{video_id}", "Status check failed")
        return self._parse_video(response)

    async def download_content(self, video_id: str) -> bytes:
        response = await self._send("GET", self.content_url(video_id), "Failed to fetch video content")
        return response.content

    async def aclose(self) -> None:
        await self._http.aclose()
