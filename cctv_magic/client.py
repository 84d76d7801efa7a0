"""
Small async client for the HTTP API.

Signs in with a password, submits a generation and polls ``/api/video/status`` with
the same bounded helper the worker uses. Running out of attempts here only stops
waiting; the server keeps tracking the job.
"""

from dataclasses import dataclass
from typing import Any

import httpx

from cctv_magic.services.polling import PollResult, PollStatus, poll_until

DEFAULT_MAX_ATTEMPTS = 60
DEFAULT_INTERVAL = 5.0


class ApiError(Exception):
    def __init__(self, status_code: int, message: str, code: str | None = None, details: dict | None = None):
        self.status_code = status_code
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(f"{status_code}: {message}")


@dataclass
class VideoState:
    video_id: str
    status: str
    video_url: str | None = None
    error: str | None = None


def _classify(state: VideoState) -> PollStatus | None:
    if state.status == "completed":
        return PollStatus.COMPLETED
    if state.status == "failed":
        return PollStatus.FAILED
    return None


class ApiClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._http = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        if response.is_error:
            try:
                err = response.json().get("error") or {}
            except ValueError:
                err = {}
            raise ApiError(
                response.status_code,
                err.get("message") or response.text or response.reason_phrase,
                code=err.get("code"),
                details=err.get("details"),
            )
        return response.json()

    async def login(self, email: str, password: str) -> dict[str, Any]:
        """Session cookie is kept on the underlying client."""
        r = await self._http.post("/api/auth/login", json={"email": email, "password": password})
        return self._json(r)["user"]

    async def credits(self) -> int:
        r = await self._http.get("/api/user/credits")
        return self._json(r)["credits"]

    async def generate(
        self,
        prompt: str,
        *,
        model: str = "sora-2",
        size: str = "1280x720",
        duration: int = 8,
        image: bytes | None = None,
        image_filename: str = "reference.jpg",
    ) -> VideoState:
        data = {"prompt": prompt, "model": model, "size": size, "duration": str(duration)}
        files = {"image": (image_filename, image, "application/octet-stream")} if image is not None else None
        r = await self._http.post("/api/generate", data=data, files=files)
        body = self._json(r)
        return VideoState(video_id=body["videoId"], status=body["status"], video_url=body.get("videoUrl"))

    async def status(self, video_id: str) -> VideoState:
        r = await self._http.get("/api/video/status", params={"videoId": video_id})
        body = self._json(r)
        return VideoState(
            video_id=body["videoId"],
            status=body["status"],
            video_url=body.get("videoUrl"),
            error=body.get("error"),
        )

    async def wait_for_video(
        self,
        video_id: str,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        interval: float = DEFAULT_INTERVAL,
        **kwargs: Any,
    ) -> PollResult[VideoState]:
        return await poll_until(
            lambda: self.status(video_id),
            _classify,
            max_attempts=max_attempts,
            interval=interval,
            retry_on=(httpx.TransportError,),
            **kwargs,
        )

    async def generate_and_wait(self, prompt: str, **kwargs: Any) -> PollResult[VideoState]:
        poll_kwargs = {k: kwargs.pop(k) for k in ("max_attempts", "interval", "sleep") if k in kwargs}
        state = await self.generate(prompt, **kwargs)
        if state.status == "completed":
            return PollResult(status=PollStatus.COMPLETED, value=state, attempts=0)
        return await self.wait_for_video(state.video_id, **poll_kwargs)
