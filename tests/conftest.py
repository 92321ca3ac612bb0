"""Test configuration for importing the application package."""

from __future__ import annotations

import os

# Settings are read at import time; pin a minimal, deterministic environment first.
os.environ.setdefault("HELPDESK_ALLOWED_ORIGINS", "http://localhost:5173")
os.environ.setdefault("HELPDESK_AUTH_JWT_SECRET", "test-secret-with-enough-entropy-for-hs256")
os.environ.setdefault("HELPDESK_CLEANUP_ENABLED", "false")
os.environ.pop("HELPDESK_PG_DSN", None)
os.environ.pop("DATABASE_URL", None)

import uuid  # noqa: E402
from collections.abc import AsyncIterator, Awaitable, Callable  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.core.database import Base  # noqa: E402
from app.schema.sql import User  # noqa: E402


@pytest.fixture
def anyio_backend():
  return "asyncio"


@pytest.fixture
async def session_factory() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
  # One shared in-memory connection so every session sees the same tables.
  engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool, connect_args={"check_same_thread": False})
  async with engine.begin() as connection:
    await connection.run_sync(Base.metadata.create_all)
  yield async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)
  await engine.dispose()


@pytest.fixture
def make_user(session_factory) -> Callable[..., Awaitable[User]]:
  async def _make_user(*, is_active: bool = True, email: str | None = None) -> User:
    user = User(id=uuid.uuid4(), email=email or f"{uuid.uuid4().hex[:10]}@example.com", full_name="Test User", is_active=is_active)
    async with session_factory() as session:
      session.add(user)
      await session.commit()
    return user

  return _make_user
