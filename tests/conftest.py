import os

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["MAIL_USERNAME"] = ""
os.environ["MAIL_FROM"] = ""
os.environ["GOOGLE_CLIENT_ID"] = ""

import pytest
from fakeredis import aioredis as fake_aioredis
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from authcore.auth.dependencies import (
    build_token_issuer, get_identity_providers, get_mailer, get_token_issuer
)
from authcore.auth.providers import FederatedIdentity, IdentityProvider, IdentityProviderError
from authcore.auth.service import AuthService
from authcore.db.database import get_async_session, get_redis
from authcore.main import app
from authcore.models import Base, UserRole, UserStatus
from authcore.services.credential_store import CredentialStore, UserCandidate

PASSWORD = "Secret123"


class RecordingMailer:
    """Stands in for ``EmailManager``; keeps every message instead of sending it."""

    def __init__(self):
        self.sent = []

    async def send_password_reset_code(self, email, reset_code, user_name="User"):
        self.sent.append({"kind": "password_reset", "to": email, "code": reset_code, "name": user_name})
        return True

    async def send_email_verification_code(self, email, code, user_name="User"):
        self.sent.append({"kind": "email_verification", "to": email, "code": code, "name": user_name})
        return True

    def of_kind(self, kind):
        return [message for message in self.sent if message["kind"] == kind]

    def last_code(self, kind):
        return self.of_kind(kind)[-1]["code"]


class FakeIdentityProvider(IdentityProvider):
    def __init__(self, name, identities=None):
        self.name = name
        self.identities = identities or {}

    async def introspect(self, token):
        identity = self.identities.get(token)
        if identity is None:
            raise IdentityProviderError(f"{self.name} rejected the token")
        return identity


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'authcore.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
async def redis_client():
    client = fake_aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def token_issuer(redis_client):
    return build_token_issuer(redis_client)


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def providers():
    return {
        "google": FakeIdentityProvider(
            "google",
            {
                "google-new": FederatedIdentity(email="grace@example.com", name="Grace Hopper", subject="g-1"),
                "google-known": FederatedIdentity(email="ada@example.com", name="Ada Lovelace", subject="g-2"),
            },
        ),
        "facebook": FakeIdentityProvider(
            "facebook",
            {"facebook-new": FederatedIdentity(email="linus@example.com", name="Linus", subject="fb-1")},
        ),
    }


@pytest.fixture
def service(db, token_issuer, mailer, providers):
    return AuthService(db, token_issuer, mailer, providers)


@pytest.fixture
def make_user(session_maker):
    """Persist a user in its own session and return its id."""

    async def _make_user(
        email="ada@example.com",
        password=PASSWORD,
        first_name="Ada",
        last_name="Lovelace",
        role=UserRole.USER,
        status=UserStatus.ACTIVE,
        email_verified=False,
    ):
        async with session_maker() as session:
            user = await CredentialStore(session).create_user(
                UserCandidate(
                    first_name=first_name,
                    last_name=last_name,
                    email=email,
                    password=password,
                    role=role,
                    status=status,
                    email_verified=email_verified,
                )
            )
            await session.commit()
            return user.id

    return _make_user


@pytest.fixture
async def client(session_maker, redis_client, token_issuer, mailer, providers):
    async def override_get_async_session():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_async_session] = override_get_async_session
    app.dependency_overrides[get_redis] = lambda: redis_client
    app.dependency_overrides[get_token_issuer] = lambda: token_issuer
    app.dependency_overrides[get_mailer] = lambda: mailer
    app.dependency_overrides[get_identity_providers] = lambda: providers

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
