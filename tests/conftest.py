"""
Shared fixtures: a throwaway SQLite database per test, a session on it,
user/story factories, and an HTTP client wired to the same database.
"""

import itertools

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from database import Base, get_db, get_session_factory
from main import app
from storyloom.models import announcement, chapter, comment, notification, social, story  # noqa: F401
from storyloom.models.story import Genre
from storyloom.models.user import User
from storyloom.services import publication
from storyloom.utils.security import create_access_token


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'storyloom_test.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_user(db):
    counter = itertools.count(1)

    async def _make(name: str = None, role: str = "AUTHOR", is_active: bool = True) -> User:
        n = next(counter)
        user = User(
            full_name=name or f"Reader {n}",
            pseudonym=f"reader{n}",
            role=role,
            is_active=is_active,
        )
        db.add(user)
        await db.commit()
        return user

    return _make


@pytest.fixture
def make_published_story(db):
    """Story published together with its first chapter, committed."""

    async def _make(author: User, title: str = "The Lantern Road"):
        story = await publication.create_story(db, author, title=title, genre=Genre.FANTASY)
        first = await publication.create_chapter(
            db, author, story.id, "Chapter One", "It was raining on the lantern road.",
            is_draft=False, publish_story_too=True,
        )
        await db.commit()
        return story, first

    return _make


def auth_headers(user: User) -> dict:
    token = create_access_token({"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
