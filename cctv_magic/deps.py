"""Shared FastAPI dependencies."""

from beanie import PydanticObjectId
from bson.errors import InvalidId
from fastapi import Request

from cctv_magic.core.exceptions import UnauthorizedError, UpstreamProviderError
from cctv_magic.core.security import load_session_cookie
from cctv_magic.models.user import User
from cctv_magic.services.auth_provider import SupabaseAuth
from cctv_magic.services.scheduler import PollScheduler
from cctv_magic.services.sora import SoraClient
from cctv_magic.services.stripe_gateway import StripeGateway
from cctv_magic.storage.base import StorageBackend

SESSION_COOKIE_NAME = "cctv_magic_session"


async def get_current_user(request: Request) -> User:
    """Dependency: load session from cookie and return User."""
    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    if not cookie:
        raise UnauthorizedError("Not authenticated")
    payload = load_session_cookie(cookie)
    if not payload:
        raise UnauthorizedError("Invalid or expired session")
    user_id = payload.get("user_id")
    if not user_id:
        raise UnauthorizedError("Invalid session")
    try:
        user = await User.get(PydanticObjectId(user_id))
    except InvalidId:
        raise UnauthorizedError("Invalid session")
    if not user:
        raise UnauthorizedError("User not found")
    if payload.get("session_version") != user.session_version:
        raise UnauthorizedError("Session invalidated")
    return user


def _state(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise UpstreamProviderError(f"{name} is not available")
    return value


def get_video_provider(request: Request) -> SoraClient:
    return _state(request, "video_provider")


def get_storage_backend(request: Request) -> StorageBackend:
    return _state(request, "storage")


def get_payment_gateway(request: Request) -> StripeGateway:
    return _state(request, "payment_gateway")


def get_auth_provider(request: Request) -> SupabaseAuth:
    return _state(request, "auth_provider")


def get_poll_scheduler(request: Request) -> PollScheduler:
    return _state(request, "poll_scheduler")
