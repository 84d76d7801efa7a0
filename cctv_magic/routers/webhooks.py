from fastapi import APIRouter, Depends, Header, Request

from cctv_magic.core.config import get_settings
from cctv_magic.deps import get_payment_gateway, get_storage_backend, get_video_provider
from cctv_magic.services import payments as payments_service
from cctv_magic.services import reconciler
from cctv_magic.services.sora import SoraClient
from cctv_magic.services.stripe_gateway import StripeGateway
from cctv_magic.storage.base import StorageBackend

router = APIRouter()


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None, alias="Stripe-Signature"),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    """checkout.session.completed -> credits + transaction (idempotent per session). 400 only on bad signature."""
    body = await request.body()
    return await payments_service.handle_webhook(body, stripe_signature, gateway)


@router.post("/video-complete")
async def video_complete_webhook(
    request: Request,
    signature: str | None = Header(None, alias="X-Webhook-Signature"),
    timestamp: str | None = Header(None, alias="X-Webhook-Timestamp"),
    provider: SoraClient = Depends(get_video_provider),
    storage: StorageBackend = Depends(get_storage_backend),
):
    """Provider push: video.completed / video.failed for a job id."""
    settings = get_settings()
    body = await request.body()
    return await reconciler.handle_video_webhook(
        body,
        signature,
        timestamp,
        provider,
        storage,
        secret=settings.video_webhook_secret,
        skip_verification=settings.video_webhook_skip_verification,
        tolerance_seconds=settings.video_webhook_tolerance_seconds,
    )
