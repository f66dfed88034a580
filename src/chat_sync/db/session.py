"""Database session configuration."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from chat_sync.core.settings import settings


class Base(DeclarativeBase):
    """Declarative base shared by all ORM models."""


# Ensure model modules are imported so that metadata is populated when create_all runs.
import chat_sync.models  # noqa: E402,F401

SessionFactory = async_sessionmaker[AsyncSession]


def build_engine(url: str | None = None, *, echo: bool | None = None) -> AsyncEngine:
    """Create an async engine for the given URL (defaults to the configured one)."""
    return create_async_engine(
        url or settings.effective_database_url,
        pool_pre_ping=True,
        echo=settings.sql_debug if echo is None else echo,
    )


def build_session_factory(engine: AsyncEngine) -> SessionFactory:
    """Return a session factory bound to ``engine``."""
    return async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


engine = build_engine()

SessionLocal = build_session_factory(engine)


@asynccontextmanager
async def get_db() -> AsyncIterator[AsyncSession]:
    """Yield a database session that is closed on exit."""
    async with SessionLocal() as db:
        yield db


async def create_tables(bind: AsyncEngine | None = None) -> None:
    """Create all database tables."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_tables(bind: AsyncEngine | None = None) -> None:
    """Drop all database tables."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
