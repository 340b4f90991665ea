from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional


class AnnouncementCreate(BaseModel):
    body: str = Field(..., min_length=1, max_length=5000)


class ReplyCreate(BaseModel):
    body: str = Field(..., min_length=1, max_length=2000)


class AnnouncementResponse(BaseModel):
    id: int
    author_id: int
    body: str
    reply_count: int
    created_at: Optional[datetime] = None
    author_name: Optional[str] = None

    class Config:
        from_attributes = True


class ReplyResponse(BaseModel):
    id: int
    announcement_id: int
    author_id: int
    body: str
    created_at: Optional[datetime] = None
    author_name: Optional[str] = None

    class Config:
        from_attributes = True
