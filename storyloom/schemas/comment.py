from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List


class CommentCreate(BaseModel):
    chapter_id: int = Field(..., gt=0)
    content: str = Field(..., min_length=1, max_length=5000)
    parent_comment_id: Optional[int] = None


class CommentReact(BaseModel):
    is_like: bool


class CommentResponse(BaseModel):
    id: int
    chapter_id: int
    author_id: int
    parent_comment_id: Optional[int] = None
    content: str
    likes: int
    dislikes: int
    is_hidden: bool
    created_at: Optional[datetime] = None
    author_name: Optional[str] = None

    class Config:
        from_attributes = True


class CommentThread(CommentResponse):
    replies: List[CommentResponse] = []
