from fastapi import APIRouter, Depends, File, Form, UploadFile

from cctv_magic.core.exceptions import BadRequestError
from cctv_magic.deps import get_current_user, get_poll_scheduler, get_storage_backend, get_video_provider
from cctv_magic.models.user import User
from cctv_magic.services import generation as generation_service
from cctv_magic.services.catalog import DEFAULT_DURATION
from cctv_magic.services.generation import GenerationRequest, UploadedImage
from cctv_magic.services.images import CropBox
from cctv_magic.services.scheduler import PollScheduler
from cctv_magic.services.sora import SoraClient
from cctv_magic.storage.base import StorageBackend

router = APIRouter()

MAX_IMAGE_BYTES = 20 * 1024 * 1024


def _crop_box(x: int | None, y: int | None, width: int | None, height: int | None) -> CropBox | None:
    values = (x, y, width, height)
    if all(v is None for v in values):
        return None
    if any(v is None for v in values):
        raise BadRequestError("crop_x, crop_y, crop_width and crop_height must be given together")
    return CropBox(x=x, y=y, width=width, height=height)


@router.post("/generate")
async def generate_video(
    prompt: str = Form(...),
    model: str = Form("sora-2"),
    size: str | None = Form(None),
    duration: int = Form(DEFAULT_DURATION),
    image: UploadFile | None = File(None),
    crop_x: int | None = Form(None),
    crop_y: int | None = Form(None),
    crop_width: int | None = Form(None),
    crop_height: int | None = Form(None),
    user: User = Depends(get_current_user),
    provider: SoraClient = Depends(get_video_provider),
    storage: StorageBackend = Depends(get_storage_backend),
    scheduler: PollScheduler = Depends(get_poll_scheduler),
):
    """Charge credits and submit a generation; returns completed or processing."""
    uploaded = None
    if image is not None and image.filename:
        content = await image.read()
        if not content:
            raise BadRequestError("Uploaded image is empty")
        if len(content) > MAX_IMAGE_BYTES:
            raise BadRequestError("Image is too large", details={"max_bytes": MAX_IMAGE_BYTES})
        uploaded = UploadedImage(
            content=content,
            filename=image.filename,
            crop=_crop_box(crop_x, crop_y, crop_width, crop_height),
        )
    req = GenerationRequest(prompt=prompt, model=model, size=size, duration=duration, image=uploaded)
    result = await generation_service.submit(
        user, req, provider=provider, storage=storage, scheduler=scheduler
    )
    message = "Video generated" if result.status == "completed" else "Video generation started"
    return {
        "success": True,
        "videoId": result.video_id,
        "status": result.status,
        "videoUrl": result.video_url,
        "message": message,
    }
