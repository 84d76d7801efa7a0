"""Credits ledger: atomic balance updates on the user document plus an audit trail."""

from beanie import PydanticObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from cctv_magic.core.exceptions import BadRequestError, InsufficientCreditsError, NotFoundError
from cctv_magic.core.logging import get_logger
from cctv_magic.models.credit_ledger import CreditLedgerEntry
from cctv_magic.models.user import User

log = get_logger(__name__)

REASONS = ("generation", "refund", "purchase", "signup_bonus")


async def get_balance(user_id: PydanticObjectId) -> int:
    """Return current balance for user (0 if the user does not exist)."""
    user = await User.get(user_id)
    return user.credits if user else 0


async def _record(
    user_id: PydanticObjectId,
    amount: int,
    balance_after: int,
    reason: str,
    reference_type: str | None,
    reference_id: str | None,
    idempotency_key: str | None,
) -> CreditLedgerEntry:
    entry = CreditLedgerEntry(
        user_id=user_id,
        amount=amount,
        balance_after=balance_after,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
        idempotency_key=idempotency_key,
    )
    await entry.insert()
    return entry


async def debit(
    user_id: PydanticObjectId,
    amount: int,
    reason: str = "generation",
    reference_type: str | None = None,
    reference_id: str | None = None,
) -> int:
    """
    Take ``amount`` credits in one conditional update ("decrement if balance >= amount").
    Raises InsufficientCreditsError without mutating anything when the balance is short.
    Returns balance after.
    """
    if amount <= 0:
        raise BadRequestError("Debit amount must be positive")
    if reason not in REASONS:
        raise BadRequestError(f"Invalid reason: {reason}")
    doc = await User.get_motor_collection().find_one_and_update(
        {"_id": user_id, "credits": {"$gte": amount}},
        {"$inc": {"credits": -amount}},
        return_document=ReturnDocument.AFTER,
    )
    if doc is None:
        user = await User.get(user_id)
        if not user:
            raise NotFoundError("User not found")
        raise InsufficientCreditsError(required=amount, available=user.credits)
    balance_after = doc["credits"]
    await _record(user_id, -amount, balance_after, reason, reference_type, reference_id, None)
    log.info("credits_debited", user_id=str(user_id), amount=amount, balance_after=balance_after, reason=reason)
    return balance_after


async def credit(
    user_id: PydanticObjectId,
    amount: int,
    reason: str,
    reference_type: str | None = None,
    reference_id: str | None = None,
    idempotency_key: str | None = None,
) -> int:
    """
    Add ``amount`` credits and return balance after.
    Idempotency: with an idempotency_key the ledger row is inserted first and the unique
    key index decides the winner; a repeat returns the current balance without applying.
    """
    if amount <= 0:
        raise BadRequestError("Credit amount must be positive")
    if reason not in REASONS:
        raise BadRequestError(f"Invalid reason: {reason}")
    if not idempotency_key:
        balance_after = await _increment(user_id, amount)
        await _record(user_id, amount, balance_after, reason, reference_type, reference_id, None)
    else:
        try:
            entry = await _record(user_id, amount, 0, reason, reference_type, reference_id, idempotency_key)
        except DuplicateKeyError:
            log.info("credits_already_applied", user_id=str(user_id), idempotency_key=idempotency_key)
            return await get_balance(user_id)
        try:
            balance_after = await _increment(user_id, amount)
        except NotFoundError:
            await entry.delete()
            raise
        await entry.set({CreditLedgerEntry.balance_after: balance_after})
    log.info("credits_added", user_id=str(user_id), amount=amount, balance_after=balance_after, reason=reason)
    return balance_after


async def _increment(user_id: PydanticObjectId, amount: int) -> int:
    doc = await User.get_motor_collection().find_one_and_update(
        {"_id": user_id},
        {"$inc": {"credits": amount}},
        return_document=ReturnDocument.AFTER,
    )
    if doc is None:
        raise NotFoundError("User not found")
    return doc["credits"]


async def refund(user_id: PydanticObjectId, amount: int, video_id: str) -> int:
    """Return exactly the amount debited for ``video_id``; keyed so it applies once."""
    return await credit(
        user_id,
        amount,
        "refund",
        reference_type="video_job",
        reference_id=video_id,
        idempotency_key=f"refund:{video_id}",
    )
