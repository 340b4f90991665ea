from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.exc import IntegrityError
from typing import List

from starlette import status

from storyloom.models.comment import Comment
from storyloom.models.user import User
from storyloom.schemas.comment import CommentCreate, CommentReact, CommentResponse, CommentThread
from storyloom.schemas.common import SuccessResponse
from storyloom.services import comments, notifications, reactions
from storyloom.utils.exceptions import StoryloomError
from dependencies import get_current_user, get_db, get_session_factory
import logging

router = APIRouter()
logger = logging.getLogger(__name__)


def _comment_response(comment: Comment, schema=CommentResponse, **extra):
    data = CommentResponse.model_validate(comment).model_dump()
    data["author_name"] = comment.author.display_name if comment.author else None
    return schema(**data, **extra)


@router.post("/", response_model=CommentResponse, status_code=status.HTTP_201_CREATED)
async def create_comment(
    comment: CommentCreate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    try:
        db_comment = await comments.create_comment(
            db,
            current_user,
            chapter_id=comment.chapter_id,
            content=comment.content,
            parent_comment_id=comment.parent_comment_id,
        )
        await db.commit()
        background_tasks.add_task(notifications.deliver_pending, session_factory)

        response = CommentResponse.model_validate(db_comment)
        response.author_name = current_user.display_name
        return response

    except (HTTPException, StoryloomError):
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error creating comment: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create comment"
        )


@router.get("/chapter/{chapter_id}", response_model=List[CommentThread])
async def list_comments(
    chapter_id: int,
    sort_by: str = Query("recent", pattern="^(recent|oldest|likes)$"),
    db: AsyncSession = Depends(get_db)
):
    threads = await comments.list_comments(db, chapter_id, sort_by=sort_by)
    return [
        _comment_response(
            thread["comment"],
            CommentThread,
            replies=[_comment_response(reply) for reply in thread["replies"]],
        )
        for thread in threads
    ]


@router.post("/{comment_id}/react", response_model=SuccessResponse)
async def react_to_comment(
    comment_id: int,
    reaction: CommentReact,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Like or dislike a comment. Repeating the same reaction removes it."""
    try:
        await reactions.react_to_comment(db, current_user, comment_id, reaction.is_like)
        await db.commit()
        return SuccessResponse()

    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Reaction was already recorded"
        )
    except (HTTPException, StoryloomError):
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error reacting to comment {comment_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update reaction"
        )


@router.delete("/{comment_id}", response_model=SuccessResponse)
async def delete_comment(
    comment_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    try:
        await comments.delete_comment(db, current_user, comment_id)
        await db.commit()
        return SuccessResponse()

    except (HTTPException, StoryloomError):
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error deleting comment {comment_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete comment"
        )
