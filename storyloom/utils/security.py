from datetime import datetime, timedelta, timezone
from typing import Optional

import logging
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from storyloom.models.user import User
from storyloom.schemas.user import TokenData
from storyloom.utils.exceptions import (
    CREDENTIALS_EXCEPTION, USER_NOT_FOUND_EXCEPTION, INACTIVE_USER_EXCEPTION,
)
from database import get_db
from config import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES

# Tokens are issued by the external identity provider; this module only resolves them.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token", auto_error=False)
logger = logging.getLogger(__name__)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=int(ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def decode_access_token(token: str) -> TokenData:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id = payload.get("sub")
        if user_id is None:
            raise CREDENTIALS_EXCEPTION
        return TokenData(user_id=int(user_id))
    except (jwt.PyJWTError, ValueError):
        raise CREDENTIALS_EXCEPTION


async def _load_user(token: str, db: AsyncSession) -> User:
    token_data = decode_access_token(token)
    user = await db.get(User, token_data.user_id)
    if user is None:
        logger.warning(f"Token subject {token_data.user_id} does not match any user")
        raise USER_NOT_FOUND_EXCEPTION
    if not user.is_active:
        raise INACTIVE_USER_EXCEPTION
    return user


async def get_current_user(token: str = Depends(oauth2_scheme), db: AsyncSession = Depends(get_db)) -> User:
    return await _load_user(token, db)


async def get_optional_user(
        token: Optional[str] = Depends(optional_oauth2_scheme),
        db: AsyncSession = Depends(get_db)
) -> Optional[User]:
    """Current user, or None for anonymous readers."""
    if not token:
        return None
    return await _load_user(token, db)
