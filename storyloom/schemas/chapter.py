from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional


class ChapterBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    content: str = Field(..., min_length=1)


class ChapterCreate(ChapterBase):
    story_id: int = Field(..., gt=0)
    is_draft: bool = True
    publish_story_too: bool = False


class ChapterUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    content: Optional[str] = Field(None, min_length=1)
    is_published: Optional[bool] = None
    is_draft: Optional[bool] = None
    publish_story_too: bool = False


class ChapterInDB(ChapterBase):
    id: int
    story_id: int
    chapter_number: int
    word_count: int
    views: int
    likes: int
    comments: int
    is_published: bool
    is_draft: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AdjacentChapters(BaseModel):
    prev_id: Optional[int] = None
    next_id: Optional[int] = None


class LikeToggleResponse(BaseModel):
    liked: bool
    likes: int


class LikeStatusResponse(BaseModel):
    liked: bool
