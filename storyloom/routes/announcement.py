from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from typing import List

from starlette import status

from storyloom.models.user import User
from storyloom.schemas.announcement import (
    AnnouncementCreate, ReplyCreate, AnnouncementResponse, ReplyResponse,
)
from storyloom.schemas.common import SuccessResponse
from storyloom.services import announcements, notifications
from storyloom.utils.exceptions import StoryloomError
from dependencies import get_current_user, get_db, get_session_factory, logger

router = APIRouter()


def _with_author(schema, entity, author: User = None):
    response = schema.model_validate(entity)
    author = author or entity.author
    response.author_name = author.display_name if author else None
    return response


@router.post("/", response_model=AnnouncementResponse, status_code=status.HTTP_201_CREATED)
async def create_announcement(
    announcement: AnnouncementCreate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    """Post an announcement to everyone following the current user."""
    try:
        db_announcement = await announcements.create_announcement(db, current_user, announcement.body)
        await db.commit()
        background_tasks.add_task(notifications.deliver_pending, session_factory)
        return _with_author(AnnouncementResponse, db_announcement, current_user)

    except (HTTPException, StoryloomError):
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error creating announcement: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create announcement"
        )


@router.get("/user/{user_id}", response_model=List[AnnouncementResponse])
async def list_announcements(
    user_id: int,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db)
):
    items = await announcements.list_announcements(db, user_id, skip=skip, limit=limit)
    return [_with_author(AnnouncementResponse, item) for item in items]


@router.delete("/replies/{reply_id}", response_model=SuccessResponse)
async def delete_reply(
    reply_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    try:
        await announcements.delete_reply(db, current_user, reply_id)
        await db.commit()
        return SuccessResponse()

    except (HTTPException, StoryloomError):
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error deleting announcement reply {reply_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete reply"
        )


@router.delete("/{announcement_id}", response_model=SuccessResponse)
async def delete_announcement(
    announcement_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    try:
        await announcements.delete_announcement(db, current_user, announcement_id)
        await db.commit()
        return SuccessResponse()

    except (HTTPException, StoryloomError):
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error deleting announcement {announcement_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete announcement"
        )


@router.post("/{announcement_id}/replies", response_model=ReplyResponse, status_code=status.HTTP_201_CREATED)
async def reply_to_announcement(
    announcement_id: int,
    reply: ReplyCreate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    try:
        db_reply = await announcements.reply_to_announcement(db, current_user, announcement_id, reply.body)
        await db.commit()
        background_tasks.add_task(notifications.deliver_pending, session_factory)
        return _with_author(ReplyResponse, db_reply, current_user)

    except (HTTPException, StoryloomError):
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error replying to announcement {announcement_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to reply to announcement"
        )


@router.get("/{announcement_id}/replies", response_model=List[ReplyResponse])
async def list_replies(announcement_id: int, db: AsyncSession = Depends(get_db)):
    replies = await announcements.list_replies(db, announcement_id)
    return [_with_author(ReplyResponse, reply) for reply in replies]
