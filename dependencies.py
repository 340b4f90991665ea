import logging
from fastapi import Depends, HTTPException, status

from database import get_db, get_session_factory
from storyloom.models.user import User
from storyloom.utils.security import get_current_user, get_optional_user

logger = logging.getLogger(__name__)


async def get_moderator(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_moderator:
        logger.warning(f"User {current_user.id} attempted a moderator-only action")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Moderator access required"
        )
    return current_user


__all__ = [
    "get_db", "get_session_factory", "get_current_user", "get_optional_user",
    "get_moderator", "logger",
]
