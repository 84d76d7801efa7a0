"""
Drive a VideoJob from pending to completed/failed.

Client polling, the worker poll job, the stale sweep and the provider webhook all end
up in complete_video / fail_video. Both transitions are a conditional update on
``status in PENDING``, so whichever trigger lands first does the relocation or the
refund and the others become no-ops.
"""

import json
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

from beanie import PydanticObjectId
from beanie.operators import In
from pydantic import BaseModel, ConfigDict, ValidationError

from cctv_magic.core.audit import log_event
from cctv_magic.core.exceptions import BadRequestError, UpstreamProviderError
from cctv_magic.core.logging import get_logger
from cctv_magic.core.security import verify_webhook_signature
from cctv_magic.models.video_job import PENDING_STATUSES, VideoJob
from cctv_magic.services import credits as credits_service
from cctv_magic.services.polling import PollStatus, poll_until
from cctv_magic.services.sora import ProviderVideo, SoraClient
from cctv_magic.storage.base import StorageBackend

log = get_logger(__name__)

TIMEOUT_REASON = "Timed out waiting for video generation"


def proxy_url(video_id: Any) -> str:
    return f"/api/video/{video_id}/content"


def storage_key(video: VideoJob) -> str:
    return f"{video.user_id}/{video.id}.mp4"


async def _transition(video: VideoJob, status: str, **fields: Any) -> bool:
    """Move a pending job to ``status``; False if it already left the pending states."""
    now = datetime.utcnow()
    result = await VideoJob.get_motor_collection().update_one(
        {"_id": video.id, "status": {"$in": list(PENDING_STATUSES)}},
        {"$set": {"status": status, "updated_at": now, **fields}},
    )
    return result.modified_count == 1


async def _reload(video: VideoJob) -> VideoJob:
    return await VideoJob.get(video.id) or video


async def complete_video(video: VideoJob, provider: SoraClient, storage: StorageBackend) -> VideoJob:
    """Mark completed with the proxy URL, then try to relocate the asset into our storage."""
    won = await _transition(
        video,
        "completed",
        video_url=proxy_url(video.id),
        completed_at=datetime.utcnow(),
        error=None,
    )
    if not won:
        return await _reload(video)

    if video.job_id:
        try:
            content = await provider.download_content(video.job_id)
            public_url = await storage.put(storage_key(video), content, content_type="video/mp4")
        except Exception:
            log.exception("video_relocation_failed", video_id=str(video.id), provider_video_id=video.job_id)
        else:
            await VideoJob.get_motor_collection().update_one(
                {"_id": video.id},
                {"$set": {"video_url": public_url, "updated_at": datetime.utcnow()}},
            )
            log.info("video_relocated", video_id=str(video.id), bytes=len(content))

    completed = await _reload(video)
    log.info("video_completed", video_id=str(video.id), video_url=completed.video_url)
    await log_event(str(video.user_id), "video_completed", "video_job", str(video.id), {"model": video.model})
    return completed


async def fail_video(video: VideoJob, reason: str) -> VideoJob:
    """Mark failed and give back exactly what was charged for it."""
    won = await _transition(video, "failed", error=reason[:500])
    if not won:
        return await _reload(video)
    balance = await credits_service.refund(video.user_id, video.credits_charged, str(video.id))
    log.info(
        "video_failed",
        video_id=str(video.id),
        reason=reason,
        refunded=video.credits_charged,
        balance_after=balance,
    )
    await log_event(
        str(video.user_id),
        "video_failed",
        "video_job",
        str(video.id),
        {"reason": reason[:200], "refunded": video.credits_charged},
    )
    return await _reload(video)


async def apply_provider_status(
    video: VideoJob,
    remote: ProviderVideo,
    provider: SoraClient,
    storage: StorageBackend,
) -> VideoJob:
    if remote.is_completed:
        return await complete_video(video, provider, storage)
    if remote.is_failed:
        return await fail_video(video, remote.error_message or "Video generation failed")
    return video


async def refresh_video(video: VideoJob, provider: SoraClient, storage: StorageBackend) -> VideoJob:
    """One status query; provider errors leave the job untouched."""
    if not video.is_pending or not video.job_id:
        return video
    try:
        remote = await provider.retrieve_video(video.job_id)
    except UpstreamProviderError as e:
        log.warning("video_refresh_failed", video_id=str(video.id), error=e.message)
        return video
    return await apply_provider_status(video, remote, provider, storage)


def _classify(remote: ProviderVideo) -> PollStatus | None:
    if remote.is_completed:
        return PollStatus.COMPLETED
    if remote.is_failed:
        return PollStatus.FAILED
    return None


async def poll_video(
    video_id: Any,
    provider: SoraClient,
    storage: StorageBackend,
    max_attempts: int,
    interval: float,
    sleep: Callable[[float], Awaitable[Any]] | None = None,
) -> VideoJob | None:
    """Server-side loop; unlike client polling it fails the job when attempts run out."""
    video = await VideoJob.get(PydanticObjectId(video_id))
    if not video or not video.is_pending or not video.job_id:
        return video
    job_id = video.job_id

    def _on_error(exc: BaseException, attempt: int) -> None:
        log.warning("video_poll_error", video_id=str(video_id), attempt=attempt, error=str(exc))

    kwargs: dict[str, Any] = {"sleep": sleep} if sleep is not None else {}
    result = await poll_until(
        lambda: provider.retrieve_video(job_id),
        _classify,
        max_attempts=max_attempts,
        interval=interval,
        retry_on=(UpstreamProviderError,),
        on_error=_on_error,
        **kwargs,
    )
    log.info("video_poll_finished", video_id=str(video_id), outcome=result.status.value, attempts=result.attempts)
    if result.status == PollStatus.COMPLETED:
        return await complete_video(video, provider, storage)
    if result.status == PollStatus.FAILED:
        reason = result.value.error_message if result.value else None
        return await fail_video(video, reason or "Video generation failed")
    return await fail_video(video, TIMEOUT_REASON)


async def sweep_stale_videos(
    provider: SoraClient,
    storage: StorageBackend,
    older_than: timedelta,
    limit: int = 50,
) -> int:
    """Refresh jobs pending longer than ``older_than``; fail those still pending. Returns failed count."""
    cutoff = datetime.utcnow() - older_than
    stale = await VideoJob.find(
        In(VideoJob.status, list(PENDING_STATUSES)),
        VideoJob.created_at < cutoff,
    ).limit(limit).to_list()
    failed = 0
    for video in stale:
        refreshed = await refresh_video(video, provider, storage)
        if refreshed.is_pending:
            await fail_video(refreshed, TIMEOUT_REASON)
            failed += 1
    if stale:
        log.info("stale_videos_swept", checked=len(stale), failed=failed)
    return failed


class VideoWebhookData(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str


class VideoWebhookEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")
    type: str
    data: VideoWebhookData


async def handle_video_webhook(
    payload: bytes,
    signature: str | None,
    timestamp: str | None,
    provider: SoraClient,
    storage: StorageBackend,
    secret: str,
    skip_verification: bool = False,
    tolerance_seconds: int = 300,
) -> dict[str, Any]:
    if secret and not skip_verification:
        verify_webhook_signature(payload, signature, timestamp, secret, tolerance_seconds)
    else:
        log.warning("webhook_verification_skipped", secret_configured=bool(secret))

    try:
        event = VideoWebhookEvent.model_validate(json.loads(payload))
    except (ValueError, ValidationError) as e:
        raise BadRequestError("Invalid webhook payload") from e

    event_kind = event.type.rsplit(".", 1)[-1]
    if event_kind not in ("completed", "failed"):
        log.info("video_webhook_ignored", event_type=event.type, provider_video_id=event.data.id)
        return {"received": True, "message": f"Event type {event.type} not handled"}

    video = await VideoJob.find_one(VideoJob.job_id == event.data.id)
    if not video:
        log.warning("video_webhook_unmatched", event_type=event.type, provider_video_id=event.data.id)
        return {"received": True, "message": "Unknown video"}

    if event_kind == "completed":
        video = await complete_video(video, provider, storage)
    else:
        video = await fail_video(video, "Video generation failed")
    return {"received": True, "videoId": str(video.id), "status": video.status}
