from fastapi import HTTPException
from sqlalchemy import select, and_, func
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime, timedelta, timezone

from config import (
    STORY_FLOOD_MAX, STORY_FLOOD_WINDOW_MINUTES,
    CHAPTER_FLOOD_MAX, CHAPTER_FLOOD_WINDOW_MINUTES,
)
from storyloom.models.chapter import Chapter
from storyloom.models.story import Story


class FloodProtection:
    """Anti-flood protection for content creation."""

    resource = "content"

    def __init__(self, max_items: int, time_window: int):
        """
        Initialize flood protection.

        Args:
            max_items: Maximum number of items allowed in time window
            time_window: Time window in minutes
        """
        self.max_items = max_items
        self.time_window = time_window

    def count_query(self, user_id: int, since: datetime):
        raise NotImplementedError

    async def check_rate_limit(self, user_id: int, db: AsyncSession) -> bool:
        """
        Check if user has exceeded the rate limit.

        Args:
            user_id: ID of the user
            db: Database session

        Returns:
            bool: True if user can create the item

        Raises:
            HTTPException: If rate limit is exceeded
        """
        now = datetime.now(timezone.utc)
        time_threshold = now - timedelta(minutes=self.time_window)

        item_count = await db.scalar(self.count_query(user_id, time_threshold))

        if item_count >= self.max_items:
            remaining_time = time_threshold + timedelta(minutes=self.time_window) - now
            minutes = int(remaining_time.total_seconds() / 60)
            seconds = int(remaining_time.total_seconds() % 60)

            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded. You can create new {self.resource} in {minutes} minutes and {seconds} seconds"
            )

        return True


class StoryFloodProtection(FloodProtection):
    resource = "story"

    def count_query(self, user_id: int, since: datetime):
        return select(func.count()).select_from(Story).filter(
            and_(
                Story.author_id == user_id,
                Story.created_at >= since
            )
        )


class ChapterFloodProtection(FloodProtection):
    resource = "chapter"

    def count_query(self, user_id: int, since: datetime):
        # Only chapters of stories owned by the user count
        return select(func.count()).select_from(Chapter).join(
            Story, Story.id == Chapter.story_id
        ).filter(
            and_(
                Story.author_id == user_id,
                Chapter.created_at >= since
            )
        )


story_flood_protection = StoryFloodProtection(STORY_FLOOD_MAX, STORY_FLOOD_WINDOW_MINUTES)
chapter_flood_protection = ChapterFloodProtection(CHAPTER_FLOOD_MAX, CHAPTER_FLOOD_WINDOW_MINUTES)
