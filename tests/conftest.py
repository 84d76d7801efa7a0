import os
from dataclasses import dataclass
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

os.environ.setdefault("MONGODB_DB_NAME", "cctv_magic_test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("STORAGE_BACKEND", "local")
os.environ.setdefault("STORAGE_LOCAL_PATH", "/tmp/cctv_magic_test_media")
os.environ.setdefault("VIDEO_WEBHOOK_SECRET", "video-webhook-secret")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")

from fakes import FakeAuth, FakeGateway, FakeProvider, FakeScheduler, FakeStorage  # noqa: E402


@dataclass
class Fakes:
    provider: FakeProvider
    storage: FakeStorage
    gateway: FakeGateway
    auth: FakeAuth
    scheduler: FakeScheduler


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory MongoDB bound to every document model."""
    from cctv_magic.db.init import init_db

    database = AsyncMongoMockClient()["cctv_magic_test"]
    await init_db(database=database)
    yield database


@pytest.fixture
def fakes() -> Fakes:
    return Fakes(
        provider=FakeProvider(),
        storage=FakeStorage(),
        gateway=FakeGateway(),
        auth=FakeAuth(),
        scheduler=FakeScheduler(),
    )


@pytest_asyncio.fixture
async def make_user(db):
    from cctv_magic.models.user import User

    async def _make(credits: int = 0, email: str = "user@example.com", auth_id: str | None = None) -> User:
        user = User(auth_id=auth_id or f"auth-{email}", email=email, credits=credits)
        await user.insert()
        return user

    return _make


@pytest_asyncio.fixture
async def client(db, fakes) -> AsyncGenerator[AsyncClient, None]:
    from cctv_magic import deps
    from cctv_magic.main import app

    app.dependency_overrides[deps.get_video_provider] = lambda: fakes.provider
    app.dependency_overrides[deps.get_storage_backend] = lambda: fakes.storage
    app.dependency_overrides[deps.get_payment_gateway] = lambda: fakes.gateway
    app.dependency_overrides[deps.get_auth_provider] = lambda: fakes.auth
    app.dependency_overrides[deps.get_poll_scheduler] = lambda: fakes.scheduler
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


def login_as(client: AsyncClient, user) -> None:
    """Attach a valid session cookie for ``user``."""
    from cctv_magic.core.security import create_session_cookie
    from cctv_magic.deps import SESSION_COOKIE_NAME
    from cctv_magic.services.users import session_payload_for_user

    client.cookies.set(SESSION_COOKIE_NAME, create_session_cookie(session_payload_for_user(user)))


@pytest.fixture
def login():
    return login_as
