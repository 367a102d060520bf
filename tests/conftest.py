"""Shared test fixtures for the PR Digest API test suite.

Uses an in-memory SQLite database for fast, isolated model/CRUD tests.
Each test gets a fresh database. GitHub is never contacted: tests either
patch the client functions or hand them an httpx.AsyncClient backed by
httpx.MockTransport.
"""

import uuid
from collections.abc import AsyncGenerator

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from prdigest.core.config import Settings, get_settings
from prdigest.db.models import Base, Repository, User
from prdigest.db.session import get_db
from prdigest.main import create_app

# ---------------------------------------------------------------------------
# Test constants
# ---------------------------------------------------------------------------

TEST_SESSION_SECRET = "test-session-secret-for-unit-tests"
TEST_ENCRYPTION_KEY = "0123456789abcdef" * 4
TEST_APP_ID = "12345"
TEST_PUBLIC_APP_URL = "https://demo-tunnel.ngrok-free.app"

STUB_SUBJECT = "user_2abcDEF"
STUB_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
STUB_REPO_ID = uuid.UUID("00000000-0000-0000-0000-000000000100")
STUB_INSTALLATION_ID = 424242
STUB_WEBHOOK_SECRET = "a" * 64


def _generate_test_private_key() -> str:
    """Generate a valid RSA private key (PKCS#1 PEM) for testing."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.TraditionalOpenSSL,
        serialization.NoEncryption(),
    )
    return pem.decode()


TEST_PRIVATE_KEY = _generate_test_private_key()


def make_settings(**overrides) -> Settings:
    values = {
        "github_app_id": TEST_APP_ID,
        "github_private_key": TEST_PRIVATE_KEY,
        "encryption_key": TEST_ENCRYPTION_KEY,
        "public_app_url": TEST_PUBLIC_APP_URL,
        "session_jwt_secret": TEST_SESSION_SECRET,
        "database_url": "sqlite+aiosqlite:///:memory:",
        "sentry_dsn": "",
        "debug": False,
    }
    values.update(overrides)
    return Settings(**values)


def _make_jwt(sub: str = STUB_SUBJECT, *, secret: str = TEST_SESSION_SECRET) -> str:
    """Mint an HS256 session token like the identity provider issues."""
    return jwt.encode(
        {"sub": sub, "email": "dev@prdigest.local", "name": "Dev User"},
        secret,
        algorithm="HS256",
    )


@pytest.fixture
def jwt_token() -> str:
    return _make_jwt()


@pytest.fixture
def test_settings() -> Settings:
    return make_settings()


@pytest.fixture
async def async_engine():
    """Create a fresh async SQLite engine for each test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with session_factory() as session:
        yield session


@pytest.fixture
def app(async_engine, test_settings):
    """FastAPI app with DB + settings dependencies overridden.

    The SlowAPI limiter keeps in-memory buckets across requests in the same
    process; reset them so tests stay isolated.
    """
    from prdigest.core.limiter import limiter

    try:
        limiter.reset()
    except Exception:
        pass

    test_app = create_app(test_settings)

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        session_factory = async_sessionmaker(
            async_engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    test_app.dependency_overrides[get_db] = override_get_db
    test_app.dependency_overrides[get_settings] = lambda: test_settings
    return test_app


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app (no auth)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def seeded_db(db_session) -> AsyncSession:
    """Seed the stub user and one connected repository."""
    user = User(id=STUB_USER_ID, external_id=STUB_SUBJECT, email="dev@prdigest.local")
    db_session.add(user)
    await db_session.flush()

    repo = Repository(
        id=STUB_REPO_ID,
        owner="acme",
        name="api-service",
        installation_id=STUB_INSTALLATION_ID,
        webhook_secret=STUB_WEBHOOK_SECRET,
        created_by=user.id,
    )
    db_session.add(repo)
    await db_session.commit()
    return db_session


@pytest.fixture
async def seeded_client(app, seeded_db, jwt_token) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with a pre-seeded database and valid auth header."""
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"Authorization": f"Bearer {jwt_token}"},
    ) as ac:
        yield ac
