"""
Follow graph: directed user->user and user->story edges with toggle semantics.
"""

import logging
from typing import List, Optional

from sqlalchemy import select, and_, func
from sqlalchemy.ext.asyncio import AsyncSession

from storyloom.models.social import UserFollow, StoryFollow
from storyloom.models.story import Story
from storyloom.models.user import User
from storyloom.utils.exceptions import NotFound, InvalidArgument

logger = logging.getLogger(__name__)


async def toggle_user_follow(db: AsyncSession, user: User, target_user_id: int) -> bool:
    """Follow or unfollow ``target_user_id``. Returns True when now following."""
    if user.id == target_user_id:
        raise InvalidArgument("You cannot follow yourself")

    target = await db.get(User, target_user_id)
    if not target:
        raise NotFound("User not found")

    existing = await db.scalar(
        select(UserFollow).filter(
            and_(
                UserFollow.follower_id == user.id,
                UserFollow.followed_id == target_user_id
            )
        )
    )

    if existing:
        await db.delete(existing)
        logger.info(f"User {user.id} unfollowed user {target_user_id}")
        return False

    db.add(UserFollow(follower_id=user.id, followed_id=target_user_id))
    await db.flush()
    logger.info(f"User {user.id} followed user {target_user_id}")
    return True


async def find_story_follow(db: AsyncSession, user_id: int, story_id: int) -> Optional[StoryFollow]:
    return await db.scalar(
        select(StoryFollow).filter(
            and_(
                StoryFollow.user_id == user_id,
                StoryFollow.story_id == story_id
            )
        )
    )


async def toggle_story_follow(db: AsyncSession, user: User, story_id: int, is_favorite: bool = False) -> bool:
    """Follow or unfollow a story. Returns True when now following."""
    story = await db.get(Story, story_id)
    if not story:
        raise NotFound("Story not found")

    existing = await find_story_follow(db, user.id, story_id)

    if existing:
        await db.delete(existing)
        logger.info(f"User {user.id} unfollowed story {story_id}")
        return False

    db.add(StoryFollow(user_id=user.id, story_id=story_id, is_favorite=bool(is_favorite)))
    await db.flush()
    logger.info(f"User {user.id} followed story {story_id}")
    return True


async def is_following_user(db: AsyncSession, user: Optional[User], target_user_id: int) -> bool:
    if user is None or user.id == target_user_id:
        return False
    existing = await db.scalar(
        select(UserFollow.id).filter(
            UserFollow.follower_id == user.id,
            UserFollow.followed_id == target_user_id
        )
    )
    return existing is not None


async def is_following_story(db: AsyncSession, user: Optional[User], story_id: int) -> bool:
    if user is None:
        return False
    existing = await db.scalar(
        select(StoryFollow.id).filter(
            StoryFollow.user_id == user.id,
            StoryFollow.story_id == story_id
        )
    )
    return existing is not None


async def list_followers(db: AsyncSession, user_id: int) -> List[User]:
    result = await db.execute(
        select(User)
        .join(UserFollow, UserFollow.follower_id == User.id)
        .filter(UserFollow.followed_id == user_id)
        .order_by(UserFollow.id.desc())
    )
    return list(result.scalars().all())


async def list_following(db: AsyncSession, user_id: int) -> List[User]:
    result = await db.execute(
        select(User)
        .join(UserFollow, UserFollow.followed_id == User.id)
        .filter(UserFollow.follower_id == user_id)
        .order_by(UserFollow.id.desc())
    )
    return list(result.scalars().all())


async def list_story_follower_ids(db: AsyncSession, story_id: int) -> List[int]:
    result = await db.execute(
        select(StoryFollow.user_id).filter(StoryFollow.story_id == story_id)
    )
    return list(result.scalars().all())


async def list_followed_stories(db: AsyncSession, user: User) -> List[tuple]:
    """(story, follow) pairs for the user's library, most recently followed first."""
    result = await db.execute(
        select(Story, StoryFollow)
        .join(StoryFollow, StoryFollow.story_id == Story.id)
        .filter(StoryFollow.user_id == user.id)
        .order_by(StoryFollow.id.desc())
    )
    return list(result.all())


async def count_followers(db: AsyncSession, user_id: int) -> int:
    return await db.scalar(
        select(func.count()).select_from(UserFollow).filter(UserFollow.followed_id == user_id)
    )


async def count_following(db: AsyncSession, user_id: int) -> int:
    return await db.scalar(
        select(func.count()).select_from(UserFollow).filter(UserFollow.follower_id == user_id)
    )
