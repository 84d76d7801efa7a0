"""Stripe Checkout session creation for catalog packages. Nothing local changes here; the webhook grants credits."""

from dataclasses import dataclass
from typing import Any

from cctv_magic.core.config import get_settings
from cctv_magic.core.exceptions import BadRequestError, NotFoundError, UpstreamProviderError
from cctv_magic.core.logging import get_logger
from cctv_magic.models.user import User
from cctv_magic.services.catalog import CreditPackage, get_package
from cctv_magic.services.stripe_gateway import StripeGateway

log = get_logger(__name__)


@dataclass
class CheckoutStart:
    session_id: str
    url: str | None = None
    client_secret: str | None = None


@dataclass
class SessionVerification:
    session_id: str
    payment_status: str | None
    status: str | None
    amount_total: int | None
    metadata: dict[str, str]

    @property
    def webhook_should_fire(self) -> bool:
        return self.payment_status == "paid" and self.status == "complete"


def session_params(
    user: User,
    package: CreditPackage,
    *,
    embedded: bool,
    success_url: str | None = None,
    cancel_url: str | None = None,
    currency: str = "usd",
) -> dict[str, Any]:
    params: dict[str, Any] = {
        "mode": "payment",
        "line_items": [
            {
                "price_data": {
                    "currency": currency,
                    "product_data": {"name": package.name, "description": package.description},
                    "unit_amount": package.price_in_cents,
                },
                "quantity": 1,
            }
        ],
        "client_reference_id": str(user.id),
        "customer_email": user.email,
        "metadata": {
            "userId": str(user.id),
            "packageId": package.id,
            "credits": str(package.credits),
        },
    }
    if embedded:
        params["ui_mode"] = "embedded"
        params["redirect_on_completion"] = "never"
    else:
        params["success_url"] = success_url
        params["cancel_url"] = cancel_url
    return params


async def start_checkout(
    user: User,
    package_id: str,
    *,
    gateway: StripeGateway,
    embedded: bool = False,
    success_url: str | None = None,
    cancel_url: str | None = None,
) -> CheckoutStart:
    """Embedded sessions return a client secret, hosted ones a redirect URL."""
    package = get_package(package_id)
    if not package:
        raise NotFoundError(f"Unknown package: {package_id}")
    settings = get_settings()
    base = settings.app_base_url.rstrip("/")
    params = session_params(
        user,
        package,
        embedded=embedded,
        success_url=success_url or f"{base}/credits?success=true&session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=cancel_url or f"{base}/credits?canceled=true",
        currency=settings.stripe_currency,
    )
    session = await gateway.create_checkout_session(params)
    if embedded and not session.client_secret:
        raise UpstreamProviderError("Checkout session has no client secret")
    if not embedded and not session.url:
        raise UpstreamProviderError("Checkout session has no URL")
    log.info(
        "checkout_session_created",
        session_id=session.id,
        user_id=str(user.id),
        package_id=package.id,
        embedded=embedded,
    )
    return CheckoutStart(session_id=session.id, url=session.url, client_secret=session.client_secret)


async def verify_session(session_id: str, *, gateway: StripeGateway) -> SessionVerification:
    if not session_id:
        raise BadRequestError("sessionId is required")
    session = await gateway.retrieve_session(session_id)
    return SessionVerification(
        session_id=session.id,
        payment_status=session.payment_status,
        status=session.status,
        amount_total=session.amount_total,
        metadata=session.metadata,
    )
