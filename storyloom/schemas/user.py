from pydantic import BaseModel
from typing import Optional
from datetime import datetime


class UserPublic(BaseModel):
    id: int
    full_name: str
    pseudonym: Optional[str] = None
    bio: Optional[str] = None
    role: str
    is_writer: bool

    class Config:
        from_attributes = True


class UserInDB(UserPublic):
    is_active: bool
    created_at: Optional[datetime] = None


class UserProfile(UserPublic):
    followers_count: int
    following_count: int
    is_following: bool


class FollowToggleResponse(BaseModel):
    following: bool


class TokenData(BaseModel):
    user_id: Optional[int] = None
