"""
Reconciliation pass.

Normal commands maintain counters incrementally through the ledger. This
pass recomputes them from the underlying rows so drift inherited from
older data (or manual edits) can be detected and repaired by a moderator.
"""

import logging
from typing import Dict, List

from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from config import COMMENT_HIDE_THRESHOLD
from storyloom.models.chapter import Chapter
from storyloom.models.comment import Comment, CommentReaction
from storyloom.models.social import ChapterLike
from storyloom.models.story import Story

logger = logging.getLogger(__name__)


def _fix(entity, field: str, expected, drift: Dict[str, tuple]) -> None:
    actual = getattr(entity, field)
    if actual != expected:
        drift[field] = (actual, expected)
        setattr(entity, field, expected)


async def reconcile_story(db: AsyncSession, story: Story) -> Dict[str, tuple]:
    """Recompute one story's aggregates. Returns {field: (was, now)} for every corrected field."""
    drift = {}
    chapter_ids = select(Chapter.id).filter(Chapter.story_id == story.id)

    published = await db.scalar(
        select(func.count()).select_from(Chapter)
        .filter(Chapter.story_id == story.id, Chapter.is_published.is_(True))
    )
    likes = await db.scalar(
        select(func.count()).select_from(ChapterLike).filter(ChapterLike.chapter_id.in_(chapter_ids))
    )
    comments = await db.scalar(
        select(func.count()).select_from(Comment).filter(Comment.chapter_id.in_(chapter_ids))
    )

    _fix(story, "total_chapters", published, drift)
    _fix(story, "is_published", published > 0, drift)
    _fix(story, "total_likes", likes, drift)
    _fix(story, "total_comments", comments, drift)

    if drift:
        logger.warning(f"Story {story.id} drift corrected: {drift}")
    return drift


async def _reconcile_chapters(db: AsyncSession) -> int:
    like_counts = dict((await db.execute(
        select(ChapterLike.chapter_id, func.count()).group_by(ChapterLike.chapter_id)
    )).all())
    comment_counts = dict((await db.execute(
        select(Comment.chapter_id, func.count()).group_by(Comment.chapter_id)
    )).all())

    fixed = 0
    for chapter in (await db.execute(select(Chapter))).scalars():
        drift = {}
        _fix(chapter, "likes", like_counts.get(chapter.id, 0), drift)
        _fix(chapter, "comments", comment_counts.get(chapter.id, 0), drift)
        _fix(chapter, "is_draft", not chapter.is_published, drift)
        if drift:
            fixed += 1
            logger.warning(f"Chapter {chapter.id} drift corrected: {drift}")
    return fixed


async def _reconcile_comments(db: AsyncSession) -> int:
    rows = (await db.execute(
        select(
            CommentReaction.comment_id,
            func.sum(case((CommentReaction.is_like.is_(True), 1), else_=0)),
            func.sum(case((CommentReaction.is_like.is_(False), 1), else_=0)),
        ).group_by(CommentReaction.comment_id)
    )).all()
    counts = {comment_id: (likes, dislikes) for comment_id, likes, dislikes in rows}

    fixed = 0
    for comment in (await db.execute(select(Comment))).scalars():
        likes, dislikes = counts.get(comment.id, (0, 0))
        drift = {}
        _fix(comment, "likes", likes, drift)
        _fix(comment, "dislikes", dislikes, drift)
        # The moderation latch is only ever set, never cleared
        if dislikes >= COMMENT_HIDE_THRESHOLD and not comment.is_hidden:
            _fix(comment, "is_hidden", True, drift)
        if drift:
            fixed += 1
    return fixed


async def reconcile_all(db: AsyncSession) -> dict:
    chapters_fixed = await _reconcile_chapters(db)
    comments_fixed = await _reconcile_comments(db)

    stories: List[dict] = []
    for story in (await db.execute(select(Story))).scalars().all():
        drift = await reconcile_story(db, story)
        if drift:
            stories.append({"story_id": story.id, "fields": sorted(drift)})

    await db.flush()
    return {
        "stories_fixed": len(stories),
        "chapters_fixed": chapters_fixed,
        "comments_fixed": comments_fixed,
        "stories": stories,
    }
