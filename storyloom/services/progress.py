from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database import utcnow
from storyloom.models.chapter import Chapter
from storyloom.models.social import ReadingProgress
from storyloom.models.story import Story
from storyloom.models.user import User
from storyloom.services import publication
from storyloom.utils.exceptions import NotFound


async def set_progress(db: AsyncSession, user: User, story_id: int, chapter_id: int) -> ReadingProgress:
    chapter = await publication.get_chapter(db, chapter_id, user)
    if chapter.story_id != story_id:
        raise NotFound("Chapter not found")

    progress = await db.scalar(
        select(ReadingProgress).filter(
            ReadingProgress.user_id == user.id,
            ReadingProgress.story_id == story_id
        )
    )
    if progress:
        progress.last_chapter_id = chapter_id
        progress.last_read_at = utcnow()
    else:
        progress = ReadingProgress(
            user_id=user.id,
            story_id=story_id,
            last_chapter_id=chapter_id,
            last_read_at=utcnow(),
        )
        db.add(progress)
    await db.flush()
    return progress


async def get_progress(db: AsyncSession, user: User, story_id: int) -> Optional[dict]:
    """Progress row plus a completion percentage, or None if the story was never opened."""
    progress = await db.scalar(
        select(ReadingProgress).filter(
            ReadingProgress.user_id == user.id,
            ReadingProgress.story_id == story_id
        )
    )
    if not progress:
        return None

    story = await db.get(Story, story_id)
    result = await db.execute(
        select(Chapter.id)
        .filter(Chapter.story_id == story_id, Chapter.is_published.is_(True))
        .order_by(Chapter.chapter_number)
    )
    chapter_ids = list(result.scalars().all())

    total = story.total_chapters if story and story.total_chapters else len(chapter_ids)
    last_read_index = None
    if progress.last_chapter_id in chapter_ids:
        last_read_index = chapter_ids.index(progress.last_chapter_id)

    percent = 0
    if total > 0:
        completed = last_read_index + 1 if last_read_index is not None else 0
        percent = max(0, min(100, round(completed / total * 100)))

    return {
        "story_id": story_id,
        "last_chapter_id": progress.last_chapter_id,
        "last_read_at": progress.last_read_at,
        "last_read_index": last_read_index,
        "percent": percent,
    }
