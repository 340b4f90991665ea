from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from typing import List, Optional

from starlette import status

from storyloom.flood_protection import story_flood_protection
from storyloom.models.story import Story, Genre
from storyloom.models.user import User
from storyloom.schemas.common import SuccessResponse
from storyloom.schemas.story import (
    StoryCreate, StoryUpdate, StoryListItem, StoryDetailResponse, StoryListResponse,
    ChapterSummary, StoryFollowRequest, FollowedStory, ProgressUpdate, ProgressResponse,
)
from storyloom.schemas.user import FollowToggleResponse
from storyloom.services import follows, progress, publication
from storyloom.utils.exceptions import StoryloomError
from dependencies import get_current_user, get_optional_user, get_db
import logging

router = APIRouter()
logger = logging.getLogger(__name__)


def _story_item(story: Story, author_name: Optional[str] = None) -> StoryListItem:
    item = StoryListItem.model_validate(story)
    item.author_name = author_name
    return item


@router.post("/", response_model=StoryListItem, status_code=status.HTTP_201_CREATED)
async def create_story(
    story: StoryCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Create a new, unpublished story with flood protection."""
    try:
        await story_flood_protection.check_rate_limit(current_user.id, db)

        db_story = await publication.create_story(
            db,
            current_user,
            title=story.title,
            genre=story.genre,
            description=story.description,
            tags=story.tags,
        )
        await db.commit()
        return _story_item(db_story, current_user.display_name)

    except (HTTPException, StoryloomError):
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error creating story: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create story"
        )


@router.get("/", response_model=StoryListResponse)
async def list_stories(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    genre: Optional[Genre] = None,
    search: Optional[str] = Query(None, min_length=2),
    sort_by: str = Query("recent", pattern="^(recent|popular|views|trending)$"),
    db: AsyncSession = Depends(get_db)
):
    """List published stories with filtering, sorting, and pagination."""
    stories, total = await publication.list_published_stories(
        db, skip=skip, limit=limit, genre=genre, search=search, sort_by=sort_by
    )
    return StoryListResponse(
        stories=[_story_item(s, s.author.display_name if s.author else None) for s in stories],
        total=total,
        page=skip // limit + 1,
        per_page=limit
    )


@router.get("/mine", response_model=List[StoryListItem])
async def list_my_stories(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """All stories of the current user, unpublished ones included."""
    stories = await publication.list_author_stories(db, current_user.id, include_unpublished=True)
    return [_story_item(s, current_user.display_name) for s in stories]


@router.get("/following", response_model=List[FollowedStory])
async def list_followed_stories(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    rows = await follows.list_followed_stories(db, current_user)
    return [
        FollowedStory(
            **StoryListItem.model_validate(story).model_dump(),
            is_favorite=follow.is_favorite,
            followed_at=follow.created_at,
        )
        for story, follow in rows
    ]


@router.get("/user/{user_id}", response_model=List[StoryListItem])
async def list_user_stories(
    user_id: int,
    db: AsyncSession = Depends(get_db)
):
    """Published stories of one author."""
    author = await db.get(User, user_id)
    if not author:
        raise HTTPException(status_code=404, detail="User not found")
    stories = await publication.list_author_stories(db, user_id)
    return [_story_item(s, author.display_name) for s in stories]


@router.get("/{story_id}", response_model=StoryDetailResponse)
async def get_story(
    story_id: int,
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db)
):
    """Get a story with its published chapters."""
    story, chapters = await publication.get_story(db, story_id, current_user)
    is_following = await follows.is_following_story(db, current_user, story_id)
    item = _story_item(story, story.author.display_name if story.author else None)
    return StoryDetailResponse(
        **item.model_dump(),
        chapters=[ChapterSummary.model_validate(c) for c in chapters],
        is_following=is_following,
    )


@router.put("/{story_id}", response_model=StoryListItem)
async def update_story(
    story_id: int,
    story_update: StoryUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Update story metadata."""
    try:
        story = await publication.update_story(
            db, current_user, story_id, story_update.model_dump(exclude_unset=True)
        )
        await db.commit()
        return _story_item(story, current_user.display_name)

    except (HTTPException, StoryloomError):
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error updating story {story_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update story"
        )


@router.delete("/{story_id}", response_model=SuccessResponse)
async def delete_story(
    story_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Delete a story with its chapters, follows and reading progress."""
    try:
        await publication.delete_story(db, current_user, story_id)
        await db.commit()
        return SuccessResponse()

    except (HTTPException, StoryloomError):
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error deleting story {story_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete story"
        )


@router.post("/{story_id}/follow", response_model=FollowToggleResponse)
async def toggle_story_follow(
    story_id: int,
    request: Optional[StoryFollowRequest] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    try:
        is_favorite = request.is_favorite if request else False
        following = await follows.toggle_story_follow(db, current_user, story_id, is_favorite)
        await db.commit()
        return FollowToggleResponse(following=following)

    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="You are already following this story"
        )
    except (HTTPException, StoryloomError):
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error toggling follow on story {story_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update story follow"
        )


@router.get("/{story_id}/follow", response_model=FollowToggleResponse)
async def get_story_follow(
    story_id: int,
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db)
):
    return FollowToggleResponse(following=await follows.is_following_story(db, current_user, story_id))


@router.get("/{story_id}/progress", response_model=Optional[ProgressResponse])
async def get_progress(
    story_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await progress.get_progress(db, current_user, story_id)


@router.put("/{story_id}/progress", response_model=ProgressResponse)
async def set_progress(
    story_id: int,
    update: ProgressUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    try:
        await progress.set_progress(db, current_user, story_id, update.chapter_id)
        await db.commit()
        return await progress.get_progress(db, current_user, story_id)

    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Reading progress was updated concurrently"
        )
    except (HTTPException, StoryloomError):
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error saving progress for story {story_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save reading progress"
        )
