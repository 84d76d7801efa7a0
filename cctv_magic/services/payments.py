"""Stripe webhook reconciliation: one credit grant and one Transaction per paid checkout session."""

from typing import Any, Awaitable, Callable

from beanie import PydanticObjectId
from bson.errors import InvalidId
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError

from cctv_magic.core.audit import log_event
from cctv_magic.core.exceptions import UpstreamProviderError
from cctv_magic.core.logging import get_logger
from cctv_magic.models.transaction import Transaction
from cctv_magic.models.user import User
from cctv_magic.services import credits as credits_service
from cctv_magic.services.catalog import CreditPackage, find_package_by_price, get_package
from cctv_magic.services.stripe_gateway import CheckoutSession, StripeGateway

log = get_logger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"

UserResolver = Callable[[CheckoutSession, StripeGateway], Awaitable[User | None]]


def _ack(message: str) -> dict[str, Any]:
    return {"received": True, "message": message}


async def find_user_by_reference(reference: str) -> User | None:
    """A reference is our user id, or the auth provider id for sessions created elsewhere."""
    try:
        user = await User.get(PydanticObjectId(reference))
    except (InvalidId, TypeError):
        user = None
    if user:
        return user
    return await User.find_one(User.auth_id == reference)


async def find_user_by_email(email: str | None) -> User | None:
    if not email:
        return None
    return await User.find_one(User.email == email.strip().lower())


async def resolve_by_reference(session: CheckoutSession, gateway: StripeGateway) -> User | None:
    for reference in (session.client_reference_id, session.metadata.get("userId")):
        if reference:
            user = await find_user_by_reference(reference)
            if user:
                return user
    return None


async def resolve_by_payer_email(session: CheckoutSession, gateway: StripeGateway) -> User | None:
    return await find_user_by_email(session.payer_email)


async def resolve_by_stripe_customer(session: CheckoutSession, gateway: StripeGateway) -> User | None:
    if not session.customer:
        return None
    try:
        email = await gateway.retrieve_customer_email(session.customer)
    except UpstreamProviderError:
        return None
    return await find_user_by_email(email)


# Tried in order; first hit wins
USER_RESOLVERS: tuple[UserResolver, ...] = (
    resolve_by_reference,
    resolve_by_payer_email,
    resolve_by_stripe_customer,
)


async def resolve_user(
    session: CheckoutSession,
    gateway: StripeGateway,
    resolvers: tuple[UserResolver, ...] = USER_RESOLVERS,
) -> User | None:
    for resolver in resolvers:
        user = await resolver(session, gateway)
        if user:
            log.info("payment_user_resolved", session_id=session.id, resolver=resolver.__name__, user_id=str(user.id))
            return user
    return None


async def resolve_package(session: CheckoutSession, gateway: StripeGateway) -> CreditPackage | None:
    """metadata.packageId, then first line item price, then amount_total."""
    package = get_package(session.metadata.get("packageId"))
    if package:
        return package
    amount = session.first_line_item_amount
    if amount is None:
        try:
            expanded = await gateway.retrieve_session(session.id, expand_line_items=True)
            amount = expanded.first_line_item_amount
        except UpstreamProviderError:
            amount = None
    package = find_package_by_price(amount)
    if package:
        return package
    return find_package_by_price(session.amount_total)


async def handle_webhook(payload: bytes, signature: str | None, gateway: StripeGateway) -> dict[str, Any]:
    """
    Verify and apply a Stripe event. Anything past signature verification is acknowledged,
    so Stripe only retries real delivery failures.
    """
    event = gateway.construct_event(payload, signature)
    event_type = event.get("type")
    event_id = event.get("id")
    if event_type != CHECKOUT_COMPLETED:
        log.info("stripe_webhook_ignored", event_id=event_id, event_type=event_type)
        return _ack(f"Event type {event_type} not handled")

    try:
        session = CheckoutSession.model_validate(event.get("data", {}).get("object", {}))
    except (ValidationError, AttributeError):
        log.error("stripe_webhook_malformed_session", event_id=event_id)
        return _ack("Malformed checkout session")

    if session.payment_status != "paid":
        log.warning("stripe_webhook_unpaid", session_id=session.id, payment_status=session.payment_status)
        return _ack(f"Payment status is {session.payment_status}, not processing credits")
    if session.status != "complete":
        log.warning("stripe_webhook_incomplete", session_id=session.id, status=session.status)
        return _ack(f"Session status is {session.status}, not processing credits")

    if await Transaction.find_one(Transaction.stripe_session_id == session.id):
        log.info("stripe_webhook_duplicate", session_id=session.id)
        return _ack("Transaction already processed")

    package = await resolve_package(session, gateway)
    if not package:
        log.error(
            "payment_unreconciled",
            reason="package_not_found",
            session_id=session.id,
            amount_total=session.amount_total,
            metadata=session.metadata,
        )
        return _ack("Unable to determine credit package from session data")

    user = await resolve_user(session, gateway)
    if not user:
        log.error(
            "payment_unreconciled",
            reason="user_not_found",
            session_id=session.id,
            client_reference_id=session.client_reference_id,
            customer=session.customer,
        )
        await log_event(None, "payment_unreconciled", "stripe_session", session.id, {"package_id": package.id})
        return _ack("No user found for session")

    # The unique session id claims the payment before any credit moves
    transaction = Transaction(
        user_id=user.id,
        amount=package.price_in_cents,
        credits_purchased=package.credits,
        stripe_session_id=session.id,
        status="completed",
    )
    try:
        await transaction.insert()
    except DuplicateKeyError:
        log.info("stripe_webhook_duplicate", session_id=session.id)
        return _ack("Transaction already processed")

    try:
        balance = await credits_service.credit(
            user.id,
            package.credits,
            "purchase",
            reference_type="stripe_session",
            reference_id=session.id,
            idempotency_key=f"stripe:{session.id}",
        )
    except Exception:
        # Release the claim so Stripe's retry can apply it
        log.exception("payment_credit_failed", session_id=session.id, user_id=str(user.id))
        await transaction.delete()
        raise

    log.info(
        "payment_credited",
        session_id=session.id,
        user_id=str(user.id),
        package_id=package.id,
        credits=package.credits,
        balance_after=balance,
    )
    await log_event(
        str(user.id),
        "payment_credited",
        "stripe_session",
        session.id,
        {"package_id": package.id, "credits": package.credits, "amount": package.price_in_cents},
    )
    return _ack("Credits added")
