import os

from cryptography.fernet import Fernet

os.environ.setdefault("OAUTH_TOKEN_KEY", Fernet.generate_key().decode())
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import httpx
import pytest
import pytest_asyncio
from firebase_admin import auth as firebase_auth
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from starlingpost.dependencies.auth import get_identity
from starlingpost.dependencies.db import get_session_dep
from starlingpost.dependencies.services import get_adapters, get_state_store
from starlingpost.infrastructure.identity import IdentityError
from starlingpost.infrastructure.state_store import OAuthStateStore
from starlingpost.main import app
from starlingpost.models.linked_account import LinkedAccount  # noqa: F401
from starlingpost.models.post import Post  # noqa: F401
from starlingpost.platforms.registry import build_adapters
from starlingpost.schemas.platform_schema import IdentityClaims

USER_HEADERS = {"Authorization": "Bearer user-token"}
ADMIN_HEADERS = {"Authorization": "Bearer admin-token"}

PLATFORM_ENV = {
    "YOUTUBE_CLIENT_ID": "yt-client",
    "YOUTUBE_CLIENT_SECRET": "yt-secret",
    "YOUTUBE_REDIRECT_URI": "http://test/platforms/youtube/callback",
    "META_APP_ID": "ig-client",
    "META_APP_SECRET": "ig-secret",
    "INSTAGRAM_REDIRECT_URI": "http://test/platforms/instagram/callback",
    "TWITTER_CLIENT_ID": "tw-client",
    "TWITTER_CLIENT_SECRET": "tw-secret",
    "TWITTER_REDIRECT_URI": "http://test/platforms/twitter/callback",
}


class FakeRedis:
    """The two commands OAuthStateStore uses, kept in a dict."""

    def __init__(self):
        self.store = {}
        self.expiry = {}

    async def set(self, key, value, ex=None, nx=False):
        if nx and key in self.store:
            return None
        self.store[key] = value
        self.expiry[key] = ex
        return True

    async def getdel(self, key):
        self.expiry.pop(key, None)
        return self.store.pop(key, None)


class FakeIdentity:
    def __init__(self):
        self.users = {
            "user-token": IdentityClaims(user_id="user-1", email="user@example.com"),
            "admin-token": IdentityClaims(user_id="admin-1", email="admin@example.com", is_admin=True),
        }
        self.claims = {}

    async def verify_token(self, bearer_token):
        if bearer_token not in self.users:
            raise IdentityError("invalid token")
        return self.users[bearer_token]

    async def set_custom_claim(self, user_id, key, value):
        if user_id == "missing-user":
            raise firebase_auth.UserNotFoundError("no user record")
        self.claims.setdefault(user_id, {})[key] = value


class ProviderStub:
    """
    Scripted provider endpoints behind httpx.MockTransport.
    Responses queued for the same route are served in order; the last one repeats.
    """

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, method, url, status=200, json=None, headers=None, exc=None):
        u = httpx.URL(url)
        self.routes.setdefault((method, u.host, u.path), []).append((status, json, headers, exc))

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.host, request.url.path))
        if not queue:
            raise AssertionError(f"unexpected request {request.method} {request.url}")
        status, body, headers, exc = queue.pop(0) if len(queue) > 1 else queue[0]
        if exc is not None:
            raise exc
        return httpx.Response(status, json=body if body is not None else {}, headers=headers)

    @property
    def transport(self):
        return httpx.MockTransport(self.handle)

    def calls(self, path):
        return [r for r in self.requests if r.url.path == path]


def form(request: httpx.Request) -> dict:
    return dict(httpx.QueryParams(request.content.decode()))


def stub_youtube_link(provider, channel_id="UC123", access_token="ya29.first"):
    provider.add("POST", "https://oauth2.googleapis.com/token", json={
        "access_token": access_token,
        "refresh_token": "1//refresh",
        "expires_in": 3599,
        "scope": "https://www.googleapis.com/auth/youtube.upload https://www.googleapis.com/auth/youtube.readonly",
        "token_type": "Bearer",
    })
    provider.add("GET", "https://www.googleapis.com/youtube/v3/channels", json={
        "items": [{"id": channel_id, "snippet": {"title": "Starling Channel"}}],
    })


@pytest.fixture
def platform_env(monkeypatch):
    for key, value in PLATFORM_ENV.items():
        monkeypatch.setenv(key, value)
    return PLATFORM_ENV


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def state_store(fake_redis):
    return OAuthStateStore(fake_redis)


@pytest.fixture
def identity():
    return FakeIdentity()


@pytest.fixture
def provider():
    return ProviderStub()


@pytest.fixture
def adapters(provider):
    return build_adapters(transport=provider.transport)


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'starlingpost.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def session(session_maker):
    async with session_maker() as s:
        yield s


@pytest_asyncio.fixture
async def api(session_maker, state_store, identity, adapters, platform_env):
    async def override_session():
        async with session_maker() as s:
            yield s

    app.dependency_overrides[get_session_dep] = override_session
    app.dependency_overrides[get_state_store] = lambda: state_store
    app.dependency_overrides[get_identity] = lambda: identity
    app.dependency_overrides[get_adapters] = lambda: adapters
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
