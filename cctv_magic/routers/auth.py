from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field

from cctv_magic.core.config import get_settings
from cctv_magic.core.security import SESSION_MAX_AGE, create_session_cookie
from cctv_magic.deps import SESSION_COOKIE_NAME, get_auth_provider, get_current_user
from cctv_magic.models.user import User
from cctv_magic.services import users as user_service
from cctv_magic.services.auth_provider import SupabaseAuth

router = APIRouter()


class CredentialsRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    password: str = Field(..., min_length=1)


def user_out(user: User) -> dict:
    return {
        "id": str(user.id),
        "email": user.email,
        "credits": user.credits,
        "themePreference": user.theme_preference,
    }


def _set_session(response: Response, user: User) -> None:
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=create_session_cookie(user_service.session_payload_for_user(user)),
        max_age=SESSION_MAX_AGE,
        httponly=True,
        secure=get_settings().is_production,
        samesite="lax",
        path="/",
    )


@router.post("/login")
async def login(
    body: CredentialsRequest,
    response: Response,
    auth: SupabaseAuth = Depends(get_auth_provider),
):
    """Password sign-in; sets the httpOnly session cookie."""
    identity = await auth.sign_in(body.email.strip(), body.password)
    user = await user_service.ensure_user(identity)
    user = await user_service.record_login(user)
    _set_session(response, user)
    return {"user": user_out(user)}


@router.post("/signup")
async def signup(
    body: CredentialsRequest,
    response: Response,
    auth: SupabaseAuth = Depends(get_auth_provider),
):
    """Register. When the provider holds the account for email confirmation no session is set."""
    identity = await auth.sign_up(body.email.strip(), body.password)
    if identity is None:
        return {"user": None, "confirmationRequired": True}
    user = await user_service.ensure_user(identity)
    _set_session(response, user)
    return {"user": user_out(user), "confirmationRequired": False}


@router.post("/logout")
async def logout(response: Response, user: User = Depends(get_current_user)):
    await user_service.invalidate_sessions(user)
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")
    return {"success": True}
