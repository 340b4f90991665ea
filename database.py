"""
Database engine, session factory and declarative base.
"""

from datetime import datetime, timezone
from typing import AsyncGenerator

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from config import DATABASE_URL, SQL_ECHO


def _engine_url(url: str) -> str:
    # Plain postgres URLs go through asyncpg
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


if DATABASE_URL.startswith("sqlite"):
    engine = create_async_engine(DATABASE_URL, echo=SQL_ECHO, future=True)
else:
    engine = create_async_engine(
        _engine_url(DATABASE_URL),
        echo=SQL_ECHO,
        future=True,
        pool_pre_ping=True,
        pool_recycle=300,
    )

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    metadata = MetaData(
        naming_convention={
            "ix": "ix_%(column_0_label)s",
            "uq": "uq_%(table_name)s_%(column_0_name)s",
            "ck": "ck_%(table_name)s_%(constraint_name)s",
            "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
            "pk": "pk_%(table_name)s",
        }
    )


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker:
    """Session factory for work that outlives the request session (background fan-out)."""
    return AsyncSessionLocal


async def create_tables():
    # Import models so every table is registered on Base.metadata
    from storyloom.models import (  # noqa: F401
        announcement, chapter, comment, notification, social, story, user,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
