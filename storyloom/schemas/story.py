from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List
from storyloom.models.story import Genre


class StoryBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field("", max_length=5000)
    genre: Genre
    tags: List[str] = Field(default_factory=list, max_length=20)


class StoryCreate(StoryBase):
    pass


class StoryUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=5000)
    genre: Optional[Genre] = None
    tags: Optional[List[str]] = Field(None, max_length=20)
    is_completed: Optional[bool] = None


class StoryResponse(StoryBase):
    id: int
    author_id: int
    is_completed: bool
    is_published: bool
    total_chapters: int
    total_views: int
    total_likes: int
    total_comments: int
    trending_score: float
    last_updated: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class StoryListItem(StoryResponse):
    author_name: Optional[str] = None


class ChapterSummary(BaseModel):
    id: int
    title: str
    chapter_number: int
    word_count: int
    views: int
    likes: int
    comments: int

    class Config:
        from_attributes = True


class StoryDetailResponse(StoryListItem):
    chapters: List[ChapterSummary]
    is_following: bool


class StoryListResponse(BaseModel):
    stories: List[StoryListItem]
    total: int
    page: int
    per_page: int


class StoryFollowRequest(BaseModel):
    is_favorite: bool = False


class FollowedStory(StoryListItem):
    is_favorite: bool
    followed_at: Optional[datetime] = None


class ProgressUpdate(BaseModel):
    chapter_id: int = Field(..., gt=0)


class ProgressResponse(BaseModel):
    story_id: int
    last_chapter_id: Optional[int] = None
    last_read_at: Optional[datetime] = None
    last_read_index: Optional[int] = None
    percent: int
