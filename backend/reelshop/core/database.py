"""Async SQLAlchemy engine and session configuration."""

from functools import lru_cache

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from reelshop.core.config import settings


class Base(DeclarativeBase):
    """Declarative base for all models."""


@lru_cache(maxsize=None)
def get_engine(database_url: str = settings.DATABASE_URL) -> AsyncEngine:
    """Create the async engine on first use."""
    return create_async_engine(
        database_url,
        echo=settings.DEBUG,
        pool_pre_ping=True,
    )


@lru_cache(maxsize=None)
def get_session_maker(database_url: str = settings.DATABASE_URL) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the engine for ``database_url``."""
    return async_sessionmaker(
        get_engine(database_url),
        expire_on_commit=False,
    )

