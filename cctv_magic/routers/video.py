from beanie import PydanticObjectId
from bson.errors import InvalidId
from fastapi import APIRouter, Depends, Query, Response

from cctv_magic.core.exceptions import BadRequestError, NotFoundError
from cctv_magic.deps import get_current_user, get_storage_backend, get_video_provider
from cctv_magic.models.user import User
from cctv_magic.models.video_job import VideoJob
from cctv_magic.services import reconciler
from cctv_magic.services.sora import SoraClient
from cctv_magic.storage.base import StorageBackend

router = APIRouter()


async def get_owned_video(video_id: str, user: User) -> VideoJob:
    """Other users' videos are reported as missing."""
    try:
        oid = PydanticObjectId(video_id)
    except (InvalidId, TypeError):
        raise NotFoundError("Video not found")
    video = await VideoJob.get(oid)
    if not video or video.user_id != user.id:
        raise NotFoundError("Video not found")
    return video


@router.get("/status")
async def video_status(
    video_id: str = Query(..., alias="videoId"),
    user: User = Depends(get_current_user),
    provider: SoraClient = Depends(get_video_provider),
    storage: StorageBackend = Depends(get_storage_backend),
):
    """Stored status, refreshed from the provider while still pending."""
    video = await get_owned_video(video_id, user)
    video = await reconciler.refresh_video(video, provider, storage)
    return {
        "videoId": str(video.id),
        "status": video.status,
        "videoUrl": video.video_url,
        "error": video.error,
    }


@router.get("/{video_id}/content")
async def video_content(
    video_id: str,
    user: User = Depends(get_current_user),
    provider: SoraClient = Depends(get_video_provider),
):
    """Stream the provider's asset for videos that could not be relocated."""
    video = await get_owned_video(video_id, user)
    if video.status != "completed":
        raise BadRequestError("Video is not ready", details={"status": video.status})
    if not video.job_id:
        raise NotFoundError("Video content not available")
    content = await provider.download_content(video.job_id)
    return Response(
        content=content,
        media_type="video/mp4",
        headers={"Content-Disposition": f'inline; filename="{video.id}.mp4"'},
    )
