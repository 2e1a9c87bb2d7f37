"""
Database Engine and Sessions

One async engine per process, sized from the `database` section of
config/default.yaml. Sessions do not expire objects on commit because the
repository converts records to domain models right after each write.

Usage:
    from studyflow.db.base import async_session_maker

    async with async_session_maker() as db:
        repository = SqlLearningRepository(db)
"""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from studyflow.config import settings, yaml_config

db_config: dict[str, Any] = yaml_config.get("database", {})


def build_engine(url: str = settings.POSTGRES_URL) -> AsyncEngine:
    """Create the async engine with the configured pool limits."""
    return create_async_engine(
        url,
        pool_size=db_config.get("pool_size", 5),
        max_overflow=db_config.get("max_overflow", 10),
        pool_timeout=db_config.get("pool_timeout", 30),
        pool_pre_ping=True,
        echo=settings.DEBUG,
    )


engine = build_engine()
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    """Declarative base for the learning tables."""


# Registers the tables on Base.metadata
from studyflow.db import models_learning  # noqa: F401, E402


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding a session for one request.

    The repository commits each write itself; anything left uncommitted when
    the request fails is rolled back.
    """
    async with async_session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create missing tables on startup."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
