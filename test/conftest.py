"""
Pytest configuration and fixtures for HookCMS tests
"""

from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from hookcms import models  # noqa: F401
from hookcms.context import AppContext
from hookcms.database import Base, get_db
from hookcms.hooks import Hooks
from hookcms.middleware.rate_limit import limiter
from hookcms.models.user import Role, User
from hookcms.seeds import run_seeds
from hookcms.services.auth_service import AuthService
from hookcms.services.sse_manager import SSEBroadcaster
from hookcms.utils.password import hash_password
from main import app

# SQLite in-memory; StaticPool keeps one connection so every session sees the same database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_PASSWORD = "Secret123!"  # nosec B105


@pytest.fixture
async def engine():
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """A seeded database session (roles, capabilities, default options, jobs post type)."""
    async with session_factory() as session:
        await run_seeds(session)
        yield session


@pytest.fixture
def broadcaster() -> SSEBroadcaster:
    return SSEBroadcaster()


@pytest.fixture
def content_dir(tmp_path):
    path = tmp_path / "content"
    (path / "plugins").mkdir(parents=True)
    (path / "themes").mkdir(parents=True)
    return path


@pytest.fixture
def context(session_factory, broadcaster, content_dir) -> AppContext:
    return AppContext(session_factory=session_factory, broadcaster=broadcaster, content_dir=content_dir)


async def make_user(db: AsyncSession, email: str, roles: list[str], username: str | None = None) -> User:
    result = await db.execute(select(Role).where(Role.slug.in_(roles)))
    user = User(
        email=email,
        username=username or email.split("@")[0],
        password=hash_password(TEST_PASSWORD),
        roles=list(result.scalars().all()),
        capabilities=[],
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest.fixture
async def admin_user(db: AsyncSession) -> User:
    return await make_user(db, "admin@example.com", ["administrator"], username="admin")


@pytest.fixture
async def basic_user(db: AsyncSession) -> User:
    return await make_user(db, "user@example.com", ["user"], username="basic")


async def bearer(db: AsyncSession, user: User) -> dict[str, str]:
    tokens = await AuthService(db).issue_tokens(user)
    return {"Authorization": f"Bearer {tokens['accessToken']}"}


@pytest.fixture
async def admin_headers(db: AsyncSession, admin_user: User) -> dict[str, str]:
    return await bearer(db, admin_user)


@pytest.fixture
async def user_headers(db: AsyncSession, basic_user: User) -> dict[str, str]:
    return await bearer(db, basic_user)


@pytest.fixture
async def hooks(db: AsyncSession, context: AppContext, admin_user: User) -> Hooks:
    """Hooks for the administrator, not yet initialized."""
    return Hooks(context, db, admin_user)


@pytest.fixture
async def client(db: AsyncSession, session_factory, context: AppContext) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the real app with the test database and context."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.context = context
    limiter.enabled = False

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()
    limiter.enabled = True
