"""Tests for database URL handling."""
from __future__ import annotations

from settlement.db.engine import async_database_url


def test_postgres_urls_use_asyncpg():
    assert async_database_url("postgres://u:p@db/app") == "postgresql+asyncpg://u:p@db/app"
    assert async_database_url("postgresql://u:p@db/app") == "postgresql+asyncpg://u:p@db/app"


def test_async_urls_left_alone():
    assert async_database_url("postgresql+asyncpg://db/app") == "postgresql+asyncpg://db/app"
    assert async_database_url("sqlite+aiosqlite:///settlement.db") == "sqlite+aiosqlite:///settlement.db"
