from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.exc import IntegrityError
from typing import List, Optional

from starlette import status

from storyloom.flood_protection import chapter_flood_protection
from storyloom.models.chapter import Chapter
from storyloom.models.user import User
from storyloom.schemas.chapter import (
    ChapterCreate, ChapterUpdate, ChapterInDB, AdjacentChapters,
    LikeToggleResponse, LikeStatusResponse,
)
from storyloom.schemas.common import SuccessResponse
from storyloom.services import notifications, publication, reactions, views
from storyloom.utils.exceptions import StoryloomError
from dependencies import get_current_user, get_optional_user, get_db, get_session_factory
import logging

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/", response_model=ChapterInDB, status_code=status.HTTP_201_CREATED)
async def create_chapter(
    chapter: ChapterCreate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    logger.info(f"Attempting to create chapter for story_id: {chapter.story_id}")
    try:
        await chapter_flood_protection.check_rate_limit(current_user.id, db)

        db_chapter = await publication.create_chapter(
            db,
            current_user,
            story_id=chapter.story_id,
            title=chapter.title,
            content=chapter.content,
            is_draft=chapter.is_draft,
            publish_story_too=chapter.publish_story_too,
        )
        await db.commit()
        background_tasks.add_task(notifications.deliver_pending, session_factory)
        return db_chapter

    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Another chapter was added to this story at the same time"
        )
    except (HTTPException, StoryloomError):
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error creating chapter: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An error occurred while creating the chapter"
        )


@router.get("/story/{story_id}", response_model=List[ChapterInDB])
async def list_chapters(
    story_id: int,
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db)
):
    """Published chapters of a story, in reading order."""
    await publication.get_story(db, story_id, current_user)
    return await publication.list_published_chapters(db, story_id)


@router.get("/story/{story_id}/manage", response_model=List[ChapterInDB])
async def list_chapters_for_manage(
    story_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Every chapter of the story, drafts included. Author only."""
    return await publication.list_chapters_for_manage(db, current_user, story_id)


@router.get("/{chapter_id}", response_model=ChapterInDB)
async def get_chapter(
    chapter_id: int,
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db)
):
    return await publication.get_chapter(db, chapter_id, current_user)


@router.put("/{chapter_id}", response_model=ChapterInDB)
async def update_chapter(
    chapter_id: int,
    chapter_update: ChapterUpdate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    try:
        db_chapter = await publication.update_chapter(
            db,
            current_user,
            chapter_id,
            title=chapter_update.title,
            content=chapter_update.content,
            is_published=chapter_update.is_published,
            is_draft=chapter_update.is_draft,
            publish_story_too=chapter_update.publish_story_too,
        )
        await db.commit()
        background_tasks.add_task(notifications.deliver_pending, session_factory)
        return db_chapter

    except (HTTPException, StoryloomError):
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error updating chapter {chapter_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An error occurred while updating the chapter"
        )


@router.delete("/{chapter_id}", response_model=SuccessResponse)
async def delete_chapter(
    chapter_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    try:
        await publication.delete_chapter(db, current_user, chapter_id)
        await db.commit()
        return SuccessResponse()

    except (HTTPException, StoryloomError):
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error deleting chapter {chapter_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An error occurred while deleting the chapter"
        )


@router.get("/{chapter_id}/adjacent", response_model=AdjacentChapters)
async def get_adjacent_chapters(
    chapter_id: int,
    db: AsyncSession = Depends(get_db)
):
    return await publication.get_adjacent_chapters(db, chapter_id)


@router.post("/{chapter_id}/like", response_model=LikeToggleResponse)
async def toggle_chapter_like(
    chapter_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    try:
        liked = await reactions.toggle_chapter_like(db, current_user, chapter_id)
        chapter = await db.get(Chapter, chapter_id)
        await db.commit()
        return LikeToggleResponse(liked=liked, likes=chapter.likes)

    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Like was already recorded"
        )
    except (HTTPException, StoryloomError):
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error toggling like on chapter {chapter_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update like"
        )


@router.get("/{chapter_id}/like", response_model=LikeStatusResponse)
async def get_chapter_like(
    chapter_id: int,
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db)
):
    return LikeStatusResponse(liked=await reactions.has_user_liked_chapter(db, current_user, chapter_id))


@router.post("/{chapter_id}/view", status_code=status.HTTP_204_NO_CONTENT)
async def record_chapter_view(
    chapter_id: int,
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db)
):
    """Count a read. Repeat views by the same user are ignored."""
    try:
        await views.increment_chapter_views(db, current_user, chapter_id)
        await db.commit()

    except IntegrityError:
        # A concurrent request already counted this view
        await db.rollback()
    except (HTTPException, StoryloomError):
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error recording view for chapter {chapter_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to record view"
        )
