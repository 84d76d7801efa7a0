"""Generation orchestrator: validate, charge, submit to the provider, hand off tracking."""

from dataclasses import dataclass, replace
from typing import Literal, Protocol

from beanie import PydanticObjectId

from cctv_magic.core.exceptions import BadRequestError, UpstreamProviderError
from cctv_magic.core.logging import get_logger
from cctv_magic.models.user import User
from cctv_magic.models.video_job import VideoJob
from cctv_magic.services import credits as credits_service
from cctv_magic.services.catalog import DEFAULT_DURATION, LANDSCAPE_SIZE, VIDEO_DURATIONS, VIDEO_SIZES, credit_cost
from cctv_magic.services.images import CropBox, default_size_for, load_image, preprocess_reference_image
from cctv_magic.services.reconciler import complete_video, fail_video
from cctv_magic.services.sora import ReferenceImage, SoraClient
from cctv_magic.storage.base import StorageBackend

log = get_logger(__name__)

MAX_PROMPT_LENGTH = 4000


class Scheduler(Protocol):
    async def schedule(self, video_id: str) -> None: ...


@dataclass
class UploadedImage:
    content: bytes
    filename: str
    crop: CropBox | None = None


@dataclass
class GenerationRequest:
    prompt: str
    model: str
    size: str | None = None
    duration: int = DEFAULT_DURATION
    image: UploadedImage | None = None


@dataclass
class GenerationResult:
    status: Literal["completed", "processing"]
    video_id: str
    video_url: str | None = None


def validate_request(req: GenerationRequest) -> int:
    """Check inputs; return the credit cost."""
    prompt = req.prompt.strip()
    if not prompt:
        raise BadRequestError("Prompt is required")
    if len(prompt) > MAX_PROMPT_LENGTH:
        raise BadRequestError(f"Prompt must be at most {MAX_PROMPT_LENGTH} characters")
    if req.duration not in VIDEO_DURATIONS:
        raise BadRequestError("Invalid duration", details={"allowed": list(VIDEO_DURATIONS)})
    if req.size not in VIDEO_SIZES:
        raise BadRequestError("Invalid size", details={"allowed": list(VIDEO_SIZES)})
    cost = credit_cost(req.model)
    if cost is None:
        raise BadRequestError(f"Unknown model: {req.model}")
    return cost


def resolve_size(req: GenerationRequest) -> str:
    """Explicit size, else the reference image's (or crop's) orientation, else landscape."""
    if req.size:
        return req.size
    if req.image is None:
        return LANDSCAPE_SIZE
    if req.image.crop is not None:
        return default_size_for(req.image.crop.width, req.image.crop.height)
    image = load_image(req.image.content)
    return default_size_for(image.width, image.height)


def _reference_image(req: GenerationRequest) -> ReferenceImage | None:
    if req.image is None:
        return None
    processed = preprocess_reference_image(req.image.content, req.size, req.image.crop)
    return ReferenceImage(data=processed.data, filename="reference.jpg", content_type=processed.content_type)


async def submit(
    user: User,
    req: GenerationRequest,
    *,
    provider: SoraClient,
    storage: StorageBackend,
    scheduler: Scheduler,
) -> GenerationResult:
    req = replace(req, size=resolve_size(req))
    cost = validate_request(req)
    # Decoded before charging so a bad upload costs nothing
    image = _reference_image(req)

    video_id = PydanticObjectId()
    await credits_service.debit(
        user.id,
        cost,
        "generation",
        reference_type="video_job",
        reference_id=str(video_id),
    )
    video = VideoJob(
        id=video_id,
        user_id=user.id,
        prompt=req.prompt.strip(),
        image_url=req.image.filename if req.image else None,
        duration=req.duration,
        model=req.model,
        size=req.size,
        credits_charged=cost,
        status="processing",
    )
    try:
        await video.insert()
    except Exception:
        log.exception("video_insert_failed", video_id=str(video_id), user_id=str(user.id))
        await credits_service.refund(user.id, cost, str(video_id))
        raise

    try:
        remote = await provider.create_video(
            prompt=video.prompt,
            model=video.model,
            size=video.size,
            seconds=video.duration,
            image=image,
        )
    except UpstreamProviderError as e:
        log.warning("video_submit_rejected", video_id=str(video_id), error=e.message)
        await fail_video(video, e.message)
        raise

    video.job_id = remote.id
    await VideoJob.get_motor_collection().update_one({"_id": video_id}, {"$set": {"job_id": remote.id}})
    log.info(
        "video_submitted",
        video_id=str(video_id),
        provider_video_id=remote.id,
        provider_status=remote.status,
        model=video.model,
        cost=cost,
    )

    if remote.is_failed:
        message = remote.error_message or "Video generation failed"
        await fail_video(video, message)
        raise UpstreamProviderError(message)

    if remote.is_completed:
        video = await complete_video(video, provider, storage)
        return GenerationResult(status="completed", video_id=str(video_id), video_url=video.video_url)

    await scheduler.schedule(str(video_id))
    return GenerationResult(status="processing", video_id=str(video_id))
