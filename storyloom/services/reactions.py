"""
Per-user reactions: chapter likes and comment like/dislike with the
auto-hide moderation latch.
"""

import logging
from typing import Optional

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from config import COMMENT_HIDE_THRESHOLD
from storyloom.models.comment import Comment, CommentReaction
from storyloom.models.social import ChapterLike
from storyloom.models.story import Story
from storyloom.models.user import User
from storyloom.services import ledger, publication
from storyloom.utils.exceptions import NotFound

logger = logging.getLogger(__name__)


async def find_chapter_like(db: AsyncSession, user_id: int, chapter_id: int) -> Optional[ChapterLike]:
    return await db.scalar(
        select(ChapterLike).filter(
            and_(
                ChapterLike.user_id == user_id,
                ChapterLike.chapter_id == chapter_id
            )
        )
    )


async def toggle_chapter_like(db: AsyncSession, user: User, chapter_id: int) -> bool:
    """Like or unlike a chapter the user can see. Returns True when the chapter is now liked."""
    chapter = await publication.get_chapter(db, chapter_id, user)
    story = await db.get(Story, chapter.story_id)

    existing = await find_chapter_like(db, user.id, chapter_id)

    if existing:
        await db.delete(existing)
        await ledger.decrement(db, chapter, "likes")
        if story:
            await ledger.decrement(db, story, "total_likes")
        return False

    db.add(ChapterLike(user_id=user.id, chapter_id=chapter_id))
    await db.flush()
    await ledger.increment(db, chapter, "likes")
    if story:
        await ledger.increment(db, story, "total_likes")
    return True


async def has_user_liked_chapter(db: AsyncSession, user: Optional[User], chapter_id: int) -> bool:
    if user is None:
        return False
    like_id = await db.scalar(
        select(ChapterLike.id).filter(
            ChapterLike.user_id == user.id,
            ChapterLike.chapter_id == chapter_id
        )
    )
    return like_id is not None


def _counter(is_like: bool) -> str:
    return "likes" if is_like else "dislikes"


async def react_to_comment(db: AsyncSession, user: User, comment_id: int, is_like: bool) -> bool:
    """Cycle the user's reaction on a comment.

    No reaction -> add it; same reaction again -> remove it; opposite
    reaction -> flip it. Afterwards the comment is hidden once its dislikes
    reach the moderation threshold.
    """
    comment = await db.get(Comment, comment_id)
    if not comment:
        raise NotFound("Comment not found")
    await publication.get_chapter(db, comment.chapter_id, user)

    existing = await db.scalar(
        select(CommentReaction).filter(
            and_(
                CommentReaction.user_id == user.id,
                CommentReaction.comment_id == comment_id
            )
        )
    )

    if existing is None:
        db.add(CommentReaction(user_id=user.id, comment_id=comment_id, is_like=is_like))
        await db.flush()
        await ledger.increment(db, comment, _counter(is_like))
    elif existing.is_like == is_like:
        await db.delete(existing)
        await ledger.decrement(db, comment, _counter(is_like))
    else:
        existing.is_like = is_like
        await ledger.adjust_many(db, comment, {_counter(is_like): 1, _counter(not is_like): -1})

    await _apply_moderation_latch(db, comment)
    return True


async def _apply_moderation_latch(db: AsyncSession, comment: Comment) -> None:
    await db.refresh(comment, attribute_names=["dislikes", "is_hidden"])
    if comment.dislikes >= COMMENT_HIDE_THRESHOLD and not comment.is_hidden:
        comment.is_hidden = True
        logger.info(f"Comment {comment.id} hidden after reaching {comment.dislikes} dislikes")
