"""
View dedup tracker.

Authenticated readers are counted once per chapter; anonymous views are
counted on every call.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storyloom.models.social import ChapterView
from storyloom.models.story import Story
from storyloom.models.user import User
from storyloom.services import ledger, publication
from storyloom.utils.exceptions import NotFound

logger = logging.getLogger(__name__)


async def has_viewed(db: AsyncSession, user_id: int, chapter_id: int) -> bool:
    view_id = await db.scalar(
        select(ChapterView.id).filter(
            ChapterView.user_id == user_id,
            ChapterView.chapter_id == chapter_id
        )
    )
    return view_id is not None


async def increment_chapter_views(db: AsyncSession, user: Optional[User], chapter_id: int) -> bool:
    """Record a view. Returns True when the counters moved."""
    try:
        chapter = await publication.get_chapter(db, chapter_id, user)
    except NotFound:
        # Chapters the reader cannot see count as missing
        logger.warning(f"View for missing chapter {chapter_id} ignored")
        return False

    if user is not None:
        if await has_viewed(db, user.id, chapter_id):
            return False
        db.add(ChapterView(user_id=user.id, chapter_id=chapter_id))
        await db.flush()

    await ledger.increment(db, chapter, "views")
    story = await db.get(Story, chapter.story_id)
    if story:
        await ledger.increment(db, story, "total_views")
    return True
