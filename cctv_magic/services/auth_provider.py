"""Supabase Auth: password sign-in and sign-up. Sessions are ours; only the identity comes from here."""

from dataclasses import dataclass

from starlette.concurrency import run_in_threadpool
from supabase import AuthApiError, AuthError, Client, ClientOptions, create_client

from cctv_magic.core.exceptions import BadRequestError, TooManyRequestsError, UnauthorizedError, UpstreamProviderError
from cctv_magic.core.logging import get_logger

log = get_logger(__name__)

INVALID_CREDENTIALS = "Invalid login credentials"
RATE_LIMITED = "Too many login attempts. Please try again later."


@dataclass
class AuthIdentity:
    id: str
    email: str


def _is_rate_limited(e: AuthError) -> bool:
    status = getattr(e, "status", None)
    message = str(getattr(e, "message", "") or e).lower()
    return status == 429 or "too many requests" in message or "rate limit" in message


class SupabaseAuth:
    def __init__(self, url: str, anon_key: str) -> None:
        self.url = url
        self.anon_key = anon_key

    def _client(self) -> Client:
        if not self.url or not self.anon_key:
            raise UpstreamProviderError("Authentication is not configured")
        # One client per call: sign-in stores the session on the client
        return create_client(
            self.url,
            self.anon_key,
            options=ClientOptions(persist_session=False, auto_refresh_token=False),
        )

    def _sign_in(self, email: str, password: str):
        return self._client().auth.sign_in_with_password({"email": email, "password": password})

    def _sign_up(self, email: str, password: str):
        return self._client().auth.sign_up({"email": email, "password": password})

    async def sign_in(self, email: str, password: str) -> AuthIdentity:
        try:
            response = await run_in_threadpool(self._sign_in, email, password)
        except AuthError as e:
            if _is_rate_limited(e):
                log.warning("login_rate_limited", email=email)
                raise TooManyRequestsError(RATE_LIMITED) from e
            # Callers only see the generic message
            log.info("login_rejected", email=email, reason=str(e))
            raise UnauthorizedError(INVALID_CREDENTIALS) from e
        if not response.user or not response.user.email:
            raise UnauthorizedError(INVALID_CREDENTIALS)
        return AuthIdentity(id=response.user.id, email=response.user.email)

    async def sign_up(self, email: str, password: str) -> AuthIdentity | None:
        """Register; None when the provider defers the account (email confirmation pending)."""
        try:
            response = await run_in_threadpool(self._sign_up, email, password)
        except AuthApiError as e:
            if _is_rate_limited(e):
                raise TooManyRequestsError("Too many sign-up attempts. Please try again later.") from e
            log.info("signup_rejected", email=email, reason=e.message)
            raise BadRequestError(e.message or "Sign up failed") from e
        except AuthError as e:
            log.warning("signup_failed", email=email, reason=str(e))
            raise UpstreamProviderError("Sign up failed") from e
        if not response.user or not response.user.email:
            return None
        return AuthIdentity(id=response.user.id, email=response.user.email)
