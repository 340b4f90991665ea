"""
Publication state machine for stories and chapters.

A chapter is either a draft (``is_draft=True, is_published=False``) or
published (``is_draft=False, is_published=True``). A story's
``total_chapters`` counts its published chapters and ``is_published`` holds
while at least one chapter is published. Every command in this module runs
inside the caller's transaction, so a multi-step cascade either commits as a
whole or not at all.
"""

import logging
from typing import List, Optional, Tuple

from sqlalchemy import select, delete, update, func, desc
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from database import utcnow
from storyloom.models.chapter import Chapter, count_words
from storyloom.models.comment import Comment, CommentReaction
from storyloom.models.social import ChapterLike, ChapterView, StoryFollow, ReadingProgress
from storyloom.models.story import Story, Genre
from storyloom.models.user import User
from storyloom.services import ledger, notifications
from storyloom.utils.exceptions import NotFound, NotAuthorized, InvalidArgument, InvalidStateTransition

logger = logging.getLogger(__name__)

STORY_SORTS = {
    "recent": Story.last_updated,
    "popular": Story.total_likes,
    "views": Story.total_views,
    "trending": Story.trending_score,
}


def _require_text(value: str, field: str) -> str:
    if value is None or not value.strip():
        raise InvalidArgument(f"{field} cannot be empty")
    return value


def _require_author(story: Story, user: User) -> None:
    if story.author_id != user.id:
        logger.warning(f"User {user.id} is not the author of story {story.id}")
        raise NotAuthorized("You're not the author of this story")


async def get_story_or_404(db: AsyncSession, story_id: int) -> Story:
    story = await db.get(Story, story_id)
    if not story:
        raise NotFound("Story not found")
    return story


async def get_chapter_or_404(db: AsyncSession, chapter_id: int) -> Chapter:
    chapter = await db.get(Chapter, chapter_id)
    if not chapter:
        raise NotFound("Chapter not found")
    return chapter


async def count_published_chapters(db: AsyncSession, story_id: int, exclude_chapter_id: Optional[int] = None) -> int:
    query = select(func.count()).select_from(Chapter).filter(
        Chapter.story_id == story_id,
        Chapter.is_published.is_(True),
    )
    if exclude_chapter_id is not None:
        query = query.filter(Chapter.id != exclude_chapter_id)
    return await db.scalar(query)


async def _apply_cascade_unpublish(db: AsyncSession, story: Story, exclude_chapter_id: Optional[int] = None) -> bool:
    """Unpublish the story when no published chapter remains. Returns True if it flipped."""
    remaining = await count_published_chapters(db, story.id, exclude_chapter_id)
    if remaining == 0 and story.is_published:
        story.is_published = False
        logger.info(f"Story {story.id} unpublished: no published chapters remain")
        return True
    return False


async def _publish_into_published_story(db: AsyncSession, story: Story, chapter: Chapter) -> None:
    await ledger.increment(db, story, "total_chapters")
    story.last_updated = utcnow()
    notifications.notify_new_chapter(db, story, chapter)
    logger.info(f"Chapter {chapter.id} published in story {story.id}")


async def _publish_with_story(db: AsyncSession, story: Story, chapter: Chapter, author: User) -> None:
    story.is_published = True
    await ledger.increment(db, story, "total_chapters")
    story.last_updated = utcnow()
    notifications.notify_new_story(db, author, story)
    logger.info(f"Story {story.id} published together with chapter {chapter.id}")


async def _is_first_remaining_chapter(db: AsyncSession, chapter: Chapter) -> bool:
    lowest = await db.scalar(
        select(func.min(Chapter.chapter_number)).filter(Chapter.story_id == chapter.story_id)
    )
    return lowest == chapter.chapter_number


# Stories

async def create_story(
        db: AsyncSession,
        author: User,
        title: str,
        genre: Genre,
        description: str = "",
        tags: Optional[List[str]] = None,
) -> Story:
    _require_text(title, "Title")
    story = Story(
        title=title.strip(),
        description=description or "",
        genre=genre,
        tags=list(tags or []),
        author_id=author.id,
        is_completed=False,
        is_published=False,
        total_chapters=0,
        total_views=0,
        total_likes=0,
        total_comments=0,
        last_updated=utcnow(),
    )
    db.add(story)
    if not author.is_writer:
        author.is_writer = True
    await db.flush()
    logger.info(f"User {author.id} created story {story.id}")
    return story


async def update_story(db: AsyncSession, user: User, story_id: int, updates: dict) -> Story:
    """Edit story metadata. Publication flags and counters are not editable here."""
    story = await get_story_or_404(db, story_id)
    _require_author(story, user)

    editable = {"title", "description", "genre", "tags", "is_completed"}
    for field, value in updates.items():
        if field not in editable:
            raise InvalidArgument(f"Field '{field}' cannot be updated")
        if value is None and not Story.__table__.c[field].nullable:
            raise InvalidArgument(f"Field '{field}' cannot be null")
        if field == "title":
            value = _require_text(value, "Title").strip()
        if field == "tags":
            value = list(value or [])
        setattr(story, field, value)

    story.last_updated = utcnow()
    await db.flush()
    return story


async def delete_story(db: AsyncSession, user: User, story_id: int) -> bool:
    """Remove a story with all of its chapters, reactions, follows and progress rows."""
    story = await get_story_or_404(db, story_id)
    if story.author_id != user.id and not user.is_moderator:
        logger.warning(f"User {user.id} tried to delete story {story_id}")
        raise NotAuthorized("You can only delete your own stories")

    chapter_ids = select(Chapter.id).filter(Chapter.story_id == story.id)
    comment_ids = select(Comment.id).filter(Comment.chapter_id.in_(chapter_ids))

    statements = [
        delete(CommentReaction).where(CommentReaction.comment_id.in_(comment_ids)),
        delete(Comment).where(Comment.chapter_id.in_(chapter_ids)),
        delete(ChapterLike).where(ChapterLike.chapter_id.in_(chapter_ids)),
        delete(ChapterView).where(ChapterView.chapter_id.in_(chapter_ids)),
        delete(ReadingProgress).where(ReadingProgress.story_id == story.id),
        delete(StoryFollow).where(StoryFollow.story_id == story.id),
        delete(Chapter).where(Chapter.story_id == story.id),
    ]
    for statement in statements:
        await db.execute(statement.execution_options(synchronize_session=False))

    await db.delete(story)
    await db.flush()
    logger.info(f"Story {story_id} deleted by user {user.id}")
    return True


# Chapters

async def create_chapter(
        db: AsyncSession,
        user: User,
        story_id: int,
        title: str,
        content: str,
        is_draft: bool = True,
        publish_story_too: bool = False,
) -> Chapter:
    story = await get_story_or_404(db, story_id)
    _require_author(story, user)
    _require_text(title, "Title")
    _require_text(content, "Content")

    existing_count = await db.scalar(
        select(func.count()).select_from(Chapter).filter(Chapter.story_id == story.id)
    )
    publish = not is_draft

    if publish and not story.is_published:
        if not (publish_story_too and existing_count == 0):
            logger.warning(f"Rejected publishing a chapter into unpublished story {story.id}")
            raise InvalidStateTransition(
                "This story is not published yet. Publish it together with its first chapter."
            )

    # Stays unique after a middle chapter was deleted
    highest_number = await db.scalar(
        select(func.coalesce(func.max(Chapter.chapter_number), 0)).filter(Chapter.story_id == story.id)
    )
    chapter = Chapter(
        story_id=story.id,
        title=title.strip(),
        content=content,
        chapter_number=max(existing_count, highest_number) + 1,
        word_count=count_words(content),
        views=0,
        likes=0,
        comments=0,
        is_published=publish,
        is_draft=not publish,
    )
    db.add(chapter)
    await db.flush()

    if publish:
        if story.is_published:
            await _publish_into_published_story(db, story, chapter)
        else:
            await _publish_with_story(db, story, chapter, user)

    logger.info(f"Successfully created chapter {chapter.id} for story {story.id}")
    return chapter


async def update_chapter(
        db: AsyncSession,
        user: User,
        chapter_id: int,
        title: Optional[str] = None,
        content: Optional[str] = None,
        is_published: Optional[bool] = None,
        is_draft: Optional[bool] = None,
        publish_story_too: bool = False,
) -> Chapter:
    chapter = await get_chapter_or_404(db, chapter_id)
    story = await get_story_or_404(db, chapter.story_id)
    _require_author(story, user)

    if title is not None:
        _require_text(title, "Title")
    if content is not None:
        _require_text(content, "Content")

    if is_published is not None and is_draft is not None and is_published == is_draft:
        raise InvalidArgument("A chapter cannot be both published and a draft")

    was_published = chapter.is_published
    if is_published is not None:
        will_publish = is_published
    elif is_draft is not None:
        will_publish = not is_draft
    else:
        will_publish = was_published

    publishing = will_publish and not was_published
    unpublishing = was_published and not will_publish

    if publishing and not story.is_published:
        if not (publish_story_too and await _is_first_remaining_chapter(db, chapter)):
            logger.warning(f"Rejected publishing chapter {chapter.id} into unpublished story {story.id}")
            raise InvalidStateTransition(
                "This story is not published yet. Publish it together with its first chapter."
            )

    if title is not None:
        chapter.title = title.strip()
    if content is not None:
        chapter.content = content
        chapter.word_count = count_words(content)
    chapter.is_published = will_publish
    chapter.is_draft = not will_publish
    chapter.updated_at = utcnow()
    story.last_updated = utcnow()

    if publishing:
        if story.is_published:
            await _publish_into_published_story(db, story, chapter)
        else:
            await _publish_with_story(db, story, chapter, user)
    elif unpublishing:
        await ledger.decrement(db, story, "total_chapters")
        await _apply_cascade_unpublish(db, story)
        logger.info(f"Chapter {chapter.id} unpublished from story {story.id}")

    await db.flush()
    return chapter


async def delete_chapter(db: AsyncSession, user: User, chapter_id: int) -> bool:
    """Delete a chapter after removing its likes, views and comments and debiting the story."""
    chapter = await get_chapter_or_404(db, chapter_id)
    story = await get_story_or_404(db, chapter.story_id)
    _require_author(story, user)

    was_published = chapter.is_published
    comment_ids = select(Comment.id).filter(Comment.chapter_id == chapter.id)

    likes_removed = (await db.execute(
        delete(ChapterLike).where(ChapterLike.chapter_id == chapter.id)
        .execution_options(synchronize_session=False)
    )).rowcount
    await db.execute(
        delete(ChapterView).where(ChapterView.chapter_id == chapter.id)
        .execution_options(synchronize_session=False)
    )
    await db.execute(
        delete(CommentReaction).where(CommentReaction.comment_id.in_(comment_ids))
        .execution_options(synchronize_session=False)
    )
    comments_removed = (await db.execute(
        delete(Comment).where(Comment.chapter_id == chapter.id)
        .execution_options(synchronize_session=False)
    )).rowcount
    await db.execute(
        update(ReadingProgress)
        .where(ReadingProgress.last_chapter_id == chapter.id)
        .values(last_chapter_id=None)
        .execution_options(synchronize_session=False)
    )

    deltas = {"total_likes": -likes_removed, "total_comments": -comments_removed}
    if was_published:
        deltas["total_chapters"] = -1
    await ledger.adjust_many(db, story, deltas)

    if was_published:
        await _apply_cascade_unpublish(db, story, exclude_chapter_id=chapter.id)
    story.last_updated = utcnow()

    await db.delete(chapter)
    await db.flush()
    logger.info(f"Chapter {chapter_id} deleted from story {story.id}")
    return True


# Queries

def can_see_unpublished(story: Story, viewer: Optional[User]) -> bool:
    return viewer is not None and (viewer.id == story.author_id or viewer.is_moderator)


async def get_story(db: AsyncSession, story_id: int, viewer: Optional[User] = None) -> Tuple[Story, List[Chapter]]:
    """A story with its published chapters. Unpublished stories are visible to their author only."""
    story = await db.scalar(
        select(Story).options(joinedload(Story.author)).filter(Story.id == story_id)
    )
    if not story or (not story.is_published and not can_see_unpublished(story, viewer)):
        raise NotFound("Story not found")
    return story, await list_published_chapters(db, story.id)


async def get_chapter(db: AsyncSession, chapter_id: int, viewer: Optional[User] = None) -> Chapter:
    chapter = await get_chapter_or_404(db, chapter_id)
    if not chapter.is_published:
        story = await get_story_or_404(db, chapter.story_id)
        if not can_see_unpublished(story, viewer):
            raise NotFound("Chapter not found")
    return chapter


async def list_published_stories(
        db: AsyncSession,
        skip: int = 0,
        limit: int = 20,
        genre: Optional[Genre] = None,
        search: Optional[str] = None,
        sort_by: str = "recent",
) -> Tuple[List[Story], int]:
    if sort_by not in STORY_SORTS:
        raise InvalidArgument("Invalid sort parameter")

    query = select(Story).filter(Story.is_published.is_(True))
    if genre:
        query = query.filter(Story.genre == genre)
    if search:
        search_term = f"%{search}%"
        query = query.filter(
            Story.title.ilike(search_term) |
            Story.description.ilike(search_term)
        )

    total = await db.scalar(select(func.count()).select_from(query.subquery()))

    query = (
        query.options(joinedload(Story.author))
        .order_by(desc(STORY_SORTS[sort_by]), desc(Story.id))
        .offset(skip)
        .limit(limit)
    )
    result = await db.execute(query)
    return list(result.scalars().all()), total


async def list_author_stories(db: AsyncSession, author_id: int, include_unpublished: bool = False) -> List[Story]:
    query = select(Story).options(joinedload(Story.author)).filter(Story.author_id == author_id)
    if not include_unpublished:
        query = query.filter(Story.is_published.is_(True))
    result = await db.execute(query.order_by(desc(Story.last_updated), desc(Story.id)))
    return list(result.scalars().all())


async def list_published_chapters(db: AsyncSession, story_id: int) -> List[Chapter]:
    result = await db.execute(
        select(Chapter)
        .filter(Chapter.story_id == story_id, Chapter.is_published.is_(True))
        .order_by(Chapter.chapter_number)
    )
    return list(result.scalars().all())


async def list_chapters_for_manage(db: AsyncSession, user: User, story_id: int) -> List[Chapter]:
    """All chapters, drafts included, for the story's author."""
    story = await get_story_or_404(db, story_id)
    _require_author(story, user)
    result = await db.execute(
        select(Chapter).filter(Chapter.story_id == story_id).order_by(Chapter.chapter_number)
    )
    return list(result.scalars().all())


async def get_adjacent_chapters(db: AsyncSession, chapter_id: int) -> dict:
    chapter = await db.get(Chapter, chapter_id)
    if not chapter:
        return {"prev_id": None, "next_id": None}

    chapter_ids = [c.id for c in await list_published_chapters(db, chapter.story_id)]
    if chapter.id not in chapter_ids:
        return {"prev_id": None, "next_id": None}

    index = chapter_ids.index(chapter.id)
    return {
        "prev_id": chapter_ids[index - 1] if index > 0 else None,
        "next_id": chapter_ids[index + 1] if index < len(chapter_ids) - 1 else None,
    }
