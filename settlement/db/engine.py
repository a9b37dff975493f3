"""Async SQLAlchemy engine + session factory.

SQLite (aiosqlite) for local runs and tests, PostgreSQL (asyncpg) in
production. Row locks taken by payout allocation and referral dedup only
take effect on PostgreSQL; SQLite serializes writers itself.
"""
from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from config.settings import settings


def async_database_url(url: str) -> str:
    """Point plain postgres URLs (as most hosts hand them out) at the asyncpg driver."""
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


_db_url = async_database_url(settings.DATABASE_URL)
_is_sqlite = _db_url.startswith("sqlite")

if _is_sqlite:
    _engine_kwargs: dict = {
        "connect_args": {"check_same_thread": False},
    }
else:
    _engine_kwargs = {
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_pre_ping": True,
        "connect_args": {
            "server_settings": {
                "application_name": "affiliate-settlement",
                "statement_timeout": str(settings.DB_STATEMENT_TIMEOUT_MS),
            },
        },
    }

engine = create_async_engine(_db_url, **_engine_kwargs)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_session() -> AsyncSession:
    """FastAPI dependency: one session per request, committed by the route."""
    async with async_session() as session:
        yield session
