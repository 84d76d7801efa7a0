from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from cctv_magic.deps import get_current_user, get_payment_gateway
from cctv_magic.models.user import User
from cctv_magic.services import checkout as checkout_service
from cctv_magic.services.catalog import CREDIT_PACKAGES
from cctv_magic.services.stripe_gateway import StripeGateway

router = APIRouter()


class CheckoutRequest(BaseModel):
    package_id: str = Field(..., alias="packageId")


@router.get("/packages")
async def list_packages():
    return {
        "packages": [
            {
                "id": p.id,
                "name": p.name,
                "description": p.description,
                "priceInCents": p.price_in_cents,
                "credits": p.credits,
            }
            for p in CREDIT_PACKAGES
        ]
    }


@router.post("/create-session")
async def create_session(
    body: CheckoutRequest,
    user: User = Depends(get_current_user),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    """Embedded checkout: the browser mounts Stripe with the client secret."""
    start = await checkout_service.start_checkout(user, body.package_id, gateway=gateway, embedded=True)
    return {"clientSecret": start.client_secret, "sessionId": start.session_id}


@router.post("/payment-link")
async def payment_link(
    body: CheckoutRequest,
    user: User = Depends(get_current_user),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    """Hosted checkout: redirect the browser to the returned URL."""
    start = await checkout_service.start_checkout(user, body.package_id, gateway=gateway, embedded=False)
    return {"paymentLinkUrl": start.url, "sessionId": start.session_id}


@router.get("/verify-session")
async def verify_session(
    session_id: str = Query(..., alias="sessionId"),
    user: User = Depends(get_current_user),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    result = await checkout_service.verify_session(session_id, gateway=gateway)
    return {
        "sessionId": result.session_id,
        "paymentStatus": result.payment_status,
        "status": result.status,
        "amountTotal": result.amount_total,
        "metadata": result.metadata,
        "webhookShouldFire": result.webhook_should_fire,
    }
