import logging
from typing import List, Optional

from sqlalchemy import select, delete, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from storyloom.models.chapter import Chapter
from storyloom.models.comment import Comment, CommentReaction
from storyloom.models.story import Story
from storyloom.models.user import User
from storyloom.services import ledger, notifications, publication
from storyloom.utils.exceptions import NotFound, NotAuthorized, InvalidArgument

logger = logging.getLogger(__name__)

COMMENT_SORTS = ("recent", "oldest", "likes")


async def create_comment(
        db: AsyncSession,
        user: User,
        chapter_id: int,
        content: str,
        parent_comment_id: Optional[int] = None,
) -> Comment:
    if content is None or not content.strip():
        raise InvalidArgument("Comment cannot be empty")

    chapter = await publication.get_chapter(db, chapter_id, user)

    parent = None
    if parent_comment_id is not None:
        parent = await db.get(Comment, parent_comment_id)
        if not parent or parent.chapter_id != chapter_id:
            raise NotFound("Parent comment not found")
        if parent.parent_comment_id is not None:
            raise InvalidArgument("Replies cannot be replied to")

    comment = Comment(
        chapter_id=chapter_id,
        author_id=user.id,
        parent_comment_id=parent_comment_id,
        content=content.strip(),
        likes=0,
        dislikes=0,
        is_hidden=False,
    )
    db.add(comment)
    await db.flush()

    await ledger.increment(db, chapter, "comments")
    story = await db.get(Story, chapter.story_id)
    if story:
        await ledger.increment(db, story, "total_comments")

    if parent is not None:
        notifications.notify_comment_reply(db, user, parent, comment)

    logger.info(f"User {user.id} commented {comment.id} on chapter {chapter_id}")
    return comment


async def delete_comment(db: AsyncSession, user: User, comment_id: int) -> bool:
    """Delete a comment together with its replies and their reactions."""
    comment = await db.get(Comment, comment_id)
    if not comment:
        raise NotFound("Comment not found")
    if comment.author_id != user.id and not user.is_moderator:
        logger.warning(f"User {user.id} tried to delete comment {comment_id}")
        raise NotAuthorized("Not authorized to delete this comment")

    chapter_id = comment.chapter_id
    thread = or_(Comment.id == comment.id, Comment.parent_comment_id == comment.id)
    thread_ids = select(Comment.id).filter(thread)

    await db.execute(
        delete(CommentReaction).where(CommentReaction.comment_id.in_(thread_ids))
        .execution_options(synchronize_session=False)
    )
    # Replies first so the parent row is never referenced by a live reply
    replies_removed = (await db.execute(
        delete(Comment).where(Comment.parent_comment_id == comment.id)
        .execution_options(synchronize_session=False)
    )).rowcount
    await db.delete(comment)
    await db.flush()

    removed = replies_removed + 1
    chapter = await db.get(Chapter, chapter_id)
    if chapter:
        await ledger.adjust(db, chapter, "comments", -removed)
        story = await db.get(Story, chapter.story_id)
        if story:
            await ledger.adjust(db, story, "total_comments", -removed)

    logger.info(f"Comment {comment_id} deleted by user {user.id} ({removed} rows)")
    return True


async def list_comments(db: AsyncSession, chapter_id: int, sort_by: str = "recent") -> List[dict]:
    """Top-level comments of a chapter, each with its replies oldest first."""
    if sort_by not in COMMENT_SORTS:
        raise InvalidArgument("Invalid sort parameter")

    result = await db.execute(
        select(Comment)
        .options(joinedload(Comment.author))
        .filter(Comment.chapter_id == chapter_id)
        .order_by(Comment.id)
    )
    rows = list(result.scalars().all())

    replies = {}
    top_level = []
    for row in rows:
        if row.parent_comment_id is None:
            top_level.append(row)
        else:
            replies.setdefault(row.parent_comment_id, []).append(row)

    if sort_by == "likes":
        top_level.sort(key=lambda c: c.likes, reverse=True)
    elif sort_by == "recent":
        top_level.reverse()

    return [{"comment": c, "replies": replies.get(c.id, [])} for c in top_level]
