"""
Async engine, session factory and declarative base.

Production runs on PostgreSQL through asyncpg. The same engine builder
also accepts an in-memory `sqlite+aiosqlite://` URL, which the test
suite uses; every model sticks to portable column types for that reason.

Sessions are request-scoped. The lifecycle engine commits; this module
only opens, rolls back on error and closes.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from testcase_studio.core.config import settings


class Base(DeclarativeBase):
    """Declarative base shared by every model (and by Alembic autogenerate)."""


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an AsyncEngine suited to the URL's backend.

    In-memory SQLite gets a single shared connection, otherwise each
    session would see its own empty database.
    """
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite" and parsed.database in (None, "", ":memory:"):
        return create_async_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    # pool_pre_ping: drop stale connections before reuse
    return create_async_engine(url, echo=echo, pool_pre_ping=True)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False: returned ORM rows stay readable after commit
    # without an implicit (sync) lazy load.
    return async_sessionmaker(bind=bind, class_=AsyncSession, expire_on_commit=False)


async def create_schema(bind: AsyncEngine) -> None:
    """Create all tables directly from metadata (tests / local sqlite only)."""
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)
async_session_factory = build_session_factory(engine)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request.

    Anything left uncommitted when the request fails is rolled back.
    """
    async with async_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
