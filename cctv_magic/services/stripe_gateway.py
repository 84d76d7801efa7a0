"""Stripe Checkout access: session creation/lookup, customer lookup, webhook verification."""

import json
from typing import Any

import stripe
from pydantic import BaseModel, ConfigDict, Field
from starlette.concurrency import run_in_threadpool

from cctv_magic.core.exceptions import BadRequestError, SignatureInvalidError, UpstreamProviderError
from cctv_magic.core.logging import get_logger

log = get_logger(__name__)

WEBHOOK_TOLERANCE_SECONDS = 300


class Price(BaseModel):
    model_config = ConfigDict(extra="ignore")
    unit_amount: int | None = None


class LineItem(BaseModel):
    model_config = ConfigDict(extra="ignore")
    price: Price | None = None
    quantity: int | None = None
    amount_total: int | None = None


class LineItemList(BaseModel):
    model_config = ConfigDict(extra="ignore")
    data: list[LineItem] = Field(default_factory=list)


class CustomerDetails(BaseModel):
    model_config = ConfigDict(extra="ignore")
    email: str | None = None


class CheckoutSession(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    status: str | None = None
    payment_status: str | None = None
    amount_total: int | None = None
    currency: str | None = None
    client_reference_id: str | None = None
    customer: str | None = None
    customer_email: str | None = None
    customer_details: CustomerDetails | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    line_items: LineItemList | None = None
    url: str | None = None
    client_secret: str | None = None
    created: int | None = None

    @property
    def first_line_item_amount(self) -> int | None:
        if self.line_items and self.line_items.data:
            item = self.line_items.data[0]
            if item.price and item.price.unit_amount is not None:
                return item.price.unit_amount
        return None

    @property
    def payer_email(self) -> str | None:
        if self.customer_email:
            return self.customer_email
        return self.customer_details.email if self.customer_details else None


def _plain(obj: Any) -> dict[str, Any]:
    # StripeObject renders itself as JSON
    return json.loads(str(obj))


def _session_from(obj: Any) -> CheckoutSession:
    data = _plain(obj)
    customer = data.get("customer")
    if isinstance(customer, dict):
        data["customer"] = customer.get("id")
    return CheckoutSession.model_validate(data)


class StripeGateway:
    """Per-process Stripe handle; the key is passed per call, never set globally."""

    def __init__(self, api_key: str, webhook_secret: str) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    def construct_event(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        """Verify the ``Stripe-Signature`` header and return the parsed event."""
        if not self.webhook_secret:
            raise SignatureInvalidError("Webhook secret not configured", status_code=400)
        if not signature:
            raise SignatureInvalidError("Missing Stripe-Signature header", status_code=400)
        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise SignatureInvalidError("Webhook payload is not valid UTF-8", status_code=400) from e
        try:
            stripe.WebhookSignature.verify_header(body, signature, self.webhook_secret, WEBHOOK_TOLERANCE_SECONDS)
        except stripe.SignatureVerificationError as e:
            raise SignatureInvalidError("Webhook signature verification failed", status_code=400) from e
        try:
            event = json.loads(payload)
        except ValueError as e:
            raise BadRequestError("Invalid webhook payload") from e
        if not isinstance(event, dict):
            raise BadRequestError("Invalid webhook payload")
        return event

    def _require_key(self) -> None:
        if not self.api_key:
            raise UpstreamProviderError("Payments not configured")

    async def create_checkout_session(self, params: dict[str, Any]) -> CheckoutSession:
        self._require_key()
        try:
            session = await run_in_threadpool(stripe.checkout.Session.create, api_key=self.api_key, **params)
        except stripe.StripeError as e:
            log.warning("stripe_session_create_failed", error=str(e))
            raise UpstreamProviderError("Failed to create checkout session") from e
        return _session_from(session)

    async def retrieve_session(self, session_id: str, expand_line_items: bool = False) -> CheckoutSession:
        self._require_key()
        params: dict[str, Any] = {"expand": ["line_items"]} if expand_line_items else {}
        try:
            session = await run_in_threadpool(
                stripe.checkout.Session.retrieve, session_id, api_key=self.api_key, **params
            )
        except stripe.StripeError as e:
            log.warning("stripe_session_retrieve_failed", session_id=session_id, error=str(e))
            raise UpstreamProviderError(str(e.user_message or "Failed to retrieve checkout session")) from e
        return _session_from(session)

    async def retrieve_customer_email(self, customer_id: str) -> str | None:
        self._require_key()
        try:
            customer = await run_in_threadpool(stripe.Customer.retrieve, customer_id, api_key=self.api_key)
        except stripe.StripeError as e:
            log.warning("stripe_customer_retrieve_failed", customer_id=customer_id, error=str(e))
            raise UpstreamProviderError("Failed to retrieve customer") from e
        data = _plain(customer)
        if data.get("deleted"):
            return None
        return data.get("email")
