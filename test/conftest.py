"""
Pytest configuration and fixtures for PTSA service tests
"""

import os
import sys
from collections.abc import AsyncGenerator

# Settings are read at import time, so the environment must be ready first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SECRET_KEY", "k3v9Qz7xL2mP8rT4wY6nB1cF5hJ0sD3g")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("CLERK_WEBHOOK_SECRET", "whsec_dGVzdC1jbGVyay13ZWJob29rLXNlY3JldA==")
os.environ.setdefault("CRON_SECRET", "cron-secret-for-tests-0123456789abcdef")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("GLOBAL_RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("LOG_JSON", "false")

import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))  # noqa: PTH100, PTH118, PTH120

# Import Base first, before importing the app
import ptsa.database as database_module  # noqa: E402
from ptsa.auth import create_access_token  # noqa: E402
from ptsa.database import Base  # noqa: E402
from ptsa.middleware.rate_limit import rate_limiter  # noqa: E402
from ptsa.models.user import User  # noqa: E402

# One in-memory database shared by every session in a test
test_engine = create_async_engine(
    "sqlite+aiosqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionLocal = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

# Replace the app's engine and session maker with test versions
database_module.engine = test_engine
database_module.AsyncSessionLocal = TestSessionLocal

from main import app  # noqa: E402


def auth_headers(user_id: str) -> dict[str, str]:
    """Bearer header for ``user_id``, as the auth provider would issue it."""
    return {"Authorization": f"Bearer {create_access_token({'sub': user_id})}"}


@pytest.fixture(autouse=True)
async def reset_rate_limits():
    await rate_limiter.reset()
    yield


@pytest.fixture(scope="function")
async def setup_test_database():
    """Create a fresh schema for each test function that needs it."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(scope="function")
async def test_db(setup_test_database) -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionLocal() as session:
        yield session


@pytest.fixture
async def client(setup_test_database) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client bound to the app; background tasks finish before each response returns."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http_client:
        yield http_client


@pytest.fixture
def make_user(test_db: AsyncSession):
    """Factory creating a synced user with the given role."""

    async def _make_user(user_id: str, role: str = "member", email: str | None = None, **fields) -> User:
        user = User(
            id=user_id,
            email=email or f"{user_id}@example.com",
            first_name=fields.pop("first_name", "Test"),
            last_name=fields.pop("last_name", user_id.title()),
            role=role,
            **fields,
        )
        test_db.add(user)
        await test_db.commit()
        await test_db.refresh(user)
        return user

    return _make_user


@pytest.fixture
async def admin_user(make_user) -> User:
    return await make_user("user_admin", role="admin")


@pytest.fixture
async def board_user(make_user) -> User:
    return await make_user("user_board", role="board")


@pytest.fixture
async def member_user(make_user) -> User:
    return await make_user("user_member", role="member")
