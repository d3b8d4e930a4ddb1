# imprints/db/session.py
# Async SQLAlchemy engine and session factory.
# Works with Postgres (asyncpg) and SQLite (aiosqlite, for tests/local use).

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from imprints.core.config import settings

DATABASE_URL = settings.DATABASE_URL


def make_engine(url: str = DATABASE_URL):
    """Creates an async engine; sqlite needs connect_args, Postgres does not."""
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    # pool_pre_ping keeps long-lived Postgres connections healthy
    return create_async_engine(url, connect_args=connect_args, pool_pre_ping=True)


def make_session_factory(bind) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)


engine = make_engine()

SessionLocal = make_session_factory(engine)
