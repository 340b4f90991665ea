from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from starlette import status

from storyloom.models.user import User
from storyloom.schemas.notification import NotificationPage, UnreadCount
from storyloom.services import notifications
from storyloom.utils.exceptions import StoryloomError
from dependencies import get_current_user, get_db, logger

router = APIRouter()


@router.get("/", response_model=NotificationPage)
async def list_notifications(
    num_items: int = Query(20, ge=1, le=100),
    cursor: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Newest notifications first. Pass ``continue_cursor`` back to get the next page."""
    return await notifications.list_for_user(db, current_user, num_items=num_items, cursor=cursor)


@router.get("/unread-count", response_model=UnreadCount)
async def unread_count(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return UnreadCount(unread=await notifications.count_unread(db, current_user))


@router.post("/read-all", status_code=status.HTTP_204_NO_CONTENT)
async def mark_all_read(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    try:
        updated = await notifications.mark_all_read(db, current_user)
        await db.commit()
        logger.info(f"User {current_user.id} marked {updated} notifications as read")

    except Exception as e:
        await db.rollback()
        logger.error(f"Error marking notifications read for user {current_user.id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update notifications"
        )


@router.post("/{notification_id}/read", status_code=status.HTTP_204_NO_CONTENT)
async def mark_read(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    try:
        await notifications.mark_read(db, current_user, notification_id)
        await db.commit()

    except (HTTPException, StoryloomError):
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error marking notification {notification_id} read: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update notification"
        )
