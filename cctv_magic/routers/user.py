from beanie.operators import In
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from cctv_magic.core.exceptions import BadRequestError
from cctv_magic.deps import get_current_user
from cctv_magic.models.credit_ledger import CreditLedgerEntry
from cctv_magic.models.transaction import Transaction
from cctv_magic.models.user import User
from cctv_magic.models.video_job import PENDING_STATUSES, VideoJob
from cctv_magic.routers.auth import user_out
from cctv_magic.services import credits as credits_service
from cctv_magic.services import users as user_service

router = APIRouter()

VIDEO_STATUSES = ("queued", "processing", "completed", "failed")


class ThemeUpdate(BaseModel):
    theme: str


def video_out(v: VideoJob) -> dict:
    return {
        "id": str(v.id),
        "prompt": v.prompt,
        "imageUrl": v.image_url,
        "duration": v.duration,
        "model": v.model,
        "size": v.size,
        "creditsCharged": v.credits_charged,
        "status": v.status,
        "videoUrl": v.video_url,
        "error": v.error,
        "createdAt": v.created_at.isoformat(),
        "completedAt": v.completed_at.isoformat() if v.completed_at else None,
    }


@router.get("")
async def current_user(user: User = Depends(get_current_user)):
    return {"user": user_out(user)}


@router.get("/credits")
async def user_credits(user: User = Depends(get_current_user)):
    """Return current credit balance."""
    return {"credits": await credits_service.get_balance(user.id)}


@router.get("/credits/ledger")
async def credits_ledger(
    user: User = Depends(get_current_user),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Return ledger entries for current user (newest first)."""
    entries = (
        await CreditLedgerEntry.find(CreditLedgerEntry.user_id == user.id)
        .sort(-CreditLedgerEntry.created_at)
        .skip(offset)
        .limit(limit)
        .to_list()
    )
    out = [
        {
            "id": str(e.id),
            "amount": e.amount,
            "balanceAfter": e.balance_after,
            "reason": e.reason,
            "referenceType": e.reference_type,
            "referenceId": e.reference_id,
            "createdAt": e.created_at.isoformat(),
        }
        for e in entries
    ]
    return {"entries": out, "limit": limit, "offset": offset}


@router.get("/transactions")
async def transactions(
    user: User = Depends(get_current_user),
    limit: int = Query(50, ge=1, le=200),
    ascending: bool = False,
):
    order = +Transaction.created_at if ascending else -Transaction.created_at
    rows = await Transaction.find(Transaction.user_id == user.id).sort(order).limit(limit).to_list()
    return {
        "transactions": [
            {
                "id": str(t.id),
                "amount": t.amount,
                "creditsPurchased": t.credits_purchased,
                "stripeSessionId": t.stripe_session_id,
                "status": t.status,
                "createdAt": t.created_at.isoformat(),
            }
            for t in rows
        ]
    }


@router.get("/videos")
async def videos(
    user: User = Depends(get_current_user),
    status: str | None = Query(None, description="Comma-separated statuses"),
    limit: int = Query(50, ge=1, le=200),
    ascending: bool = False,
):
    query = VideoJob.find(VideoJob.user_id == user.id)
    if status:
        wanted = [s.strip() for s in status.split(",") if s.strip()]
        unknown = [s for s in wanted if s not in VIDEO_STATUSES]
        if unknown:
            raise BadRequestError(f"Invalid status: {', '.join(unknown)}", details={"allowed": list(VIDEO_STATUSES)})
        query = query.find(In(VideoJob.status, wanted))
    order = +VideoJob.created_at if ascending else -VideoJob.created_at
    rows = await query.sort(order).limit(limit).to_list()
    return {"videos": [video_out(v) for v in rows]}


@router.get("/videos/recent")
async def recent_videos(
    user: User = Depends(get_current_user),
    limit: int = Query(6, ge=1, le=50),
):
    """Latest completed or still-running videos; failures are left out."""
    rows = (
        await VideoJob.find(
            VideoJob.user_id == user.id,
            In(VideoJob.status, ["completed", *PENDING_STATUSES]),
        )
        .sort(-VideoJob.created_at)
        .limit(limit)
        .to_list()
    )
    return {"videos": [video_out(v) for v in rows]}


@router.get("/theme")
async def get_theme(user: User = Depends(get_current_user)):
    return {"theme": user.theme_preference}


@router.patch("/theme")
async def update_theme(body: ThemeUpdate, user: User = Depends(get_current_user)):
    user = await user_service.set_theme(user, body.theme)
    return {"theme": user.theme_preference}
