from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from typing import List, Optional

from starlette import status

from storyloom.models.user import User
from storyloom.schemas.user import UserInDB, UserPublic, UserProfile, FollowToggleResponse
from storyloom.services import follows
from storyloom.utils.exceptions import StoryloomError, NotFound
from dependencies import get_db, get_current_user, get_optional_user, logger

router = APIRouter()


@router.get("/me", response_model=UserInDB)
async def read_users_me(current_user: User = Depends(get_current_user)):
    """Get current user profile."""
    return current_user


@router.get("/{user_id}", response_model=UserProfile)
async def read_user_profile(
    user_id: int,
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db)
):
    """Public profile with follower counts."""
    user = await db.get(User, user_id)
    if not user or not user.is_active:
        raise NotFound("User not found")

    return UserProfile(
        **UserPublic.model_validate(user).model_dump(),
        followers_count=await follows.count_followers(db, user_id),
        following_count=await follows.count_following(db, user_id),
        is_following=await follows.is_following_user(db, current_user, user_id),
    )


@router.post("/{user_id}/follow", response_model=FollowToggleResponse)
async def toggle_user_follow(
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Follow the user, or stop following if already subscribed."""
    try:
        following = await follows.toggle_user_follow(db, current_user, user_id)
        await db.commit()
        return FollowToggleResponse(following=following)

    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="You are already following this user"
        )
    except (HTTPException, StoryloomError):
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Error toggling follow on user {user_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update follow"
        )


@router.get("/{user_id}/follow", response_model=FollowToggleResponse)
async def get_user_follow(
    user_id: int,
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db)
):
    return FollowToggleResponse(following=await follows.is_following_user(db, current_user, user_id))


@router.get("/{user_id}/followers", response_model=List[UserPublic])
async def list_followers(user_id: int, db: AsyncSession = Depends(get_db)):
    return await follows.list_followers(db, user_id)


@router.get("/{user_id}/following", response_model=List[UserPublic])
async def list_following(user_id: int, db: AsyncSession = Depends(get_db)):
    return await follows.list_following(db, user_id)
