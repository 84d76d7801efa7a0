from datetime import datetime

from pymongo.errors import DuplicateKeyError

from cctv_magic.core.audit import log_event
from cctv_magic.core.config import get_settings
from cctv_magic.core.exceptions import BadRequestError
from cctv_magic.core.logging import get_logger
from cctv_magic.models.user import User
from cctv_magic.services import credits as credits_service
from cctv_magic.services.auth_provider import AuthIdentity

log = get_logger(__name__)

THEMES = ("default", "christmas")


async def ensure_user(identity: AuthIdentity) -> User:
    """Return the local user for an auth identity, creating it on first sight."""
    user = await User.find_one(User.auth_id == identity.id)
    if user:
        return user
    user = User(auth_id=identity.id, email=identity.email.strip().lower())
    try:
        await user.insert()
    except DuplicateKeyError:
        # Concurrent first login inserted it already
        existing = await User.find_one(User.auth_id == identity.id)
        if existing:
            return existing
        raise
    log.info("user_created", user_id=str(user.id), email=user.email)
    await log_event(str(user.id), "user_created", "user", str(user.id), {"email": user.email})

    bonus = get_settings().signup_bonus_credits
    if bonus > 0:
        user.credits = await credits_service.credit(
            user.id,
            bonus,
            "signup_bonus",
            reference_type="user",
            reference_id=str(user.id),
            idempotency_key=f"signup_bonus:{user.id}",
        )
    return user


async def record_login(user: User) -> User:
    now = datetime.utcnow()
    await User.get_motor_collection().update_one(
        {"_id": user.id}, {"$set": {"last_login_at": now, "updated_at": now}}
    )
    user.last_login_at = now
    log.info("user_login", user_id=str(user.id))
    await log_event(str(user.id), "user_login", "user", str(user.id), {"email": user.email})
    return user


def session_payload_for_user(user: User) -> dict:
    return {"user_id": str(user.id), "session_version": user.session_version}


async def invalidate_sessions(user: User) -> None:
    """Logout everywhere: cookies carrying the old version stop validating."""
    await User.get_motor_collection().update_one(
        {"_id": user.id},
        {"$inc": {"session_version": 1}, "$set": {"updated_at": datetime.utcnow()}},
    )


async def set_theme(user: User, theme: str) -> User:
    if theme not in THEMES:
        raise BadRequestError(f"Invalid theme: {theme}", details={"allowed": list(THEMES)})
    now = datetime.utcnow()
    await User.get_motor_collection().update_one(
        {"_id": user.id}, {"$set": {"theme_preference": theme, "updated_at": now}}
    )
    user.theme_preference = theme
    user.updated_at = now
    return user
