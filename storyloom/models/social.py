from sqlalchemy import Column, Integer, ForeignKey, DateTime, UniqueConstraint, Boolean, Index
from database import Base, utcnow


class ChapterLike(Base):
    __tablename__ = "chapter_likes"
    __table_args__ = (
        UniqueConstraint("user_id", "chapter_id", name="unique_user_chapter_like"),
        Index("ix_chapter_likes_chapter_id", "chapter_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    chapter_id = Column(Integer, ForeignKey("chapters.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class ChapterView(Base):
    """Presence means this reader's view of the chapter has been counted."""
    __tablename__ = "chapter_views"
    __table_args__ = (
        UniqueConstraint("user_id", "chapter_id", name="unique_user_chapter_view"),
        Index("ix_chapter_views_chapter_id", "chapter_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    chapter_id = Column(Integer, ForeignKey("chapters.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class UserFollow(Base):
    __tablename__ = "user_follows"
    __table_args__ = (
        UniqueConstraint("follower_id", "followed_id", name="unique_user_follow"),
        Index("ix_user_follows_followed_id", "followed_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    follower_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    followed_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class StoryFollow(Base):
    __tablename__ = "story_follows"
    __table_args__ = (
        UniqueConstraint("user_id", "story_id", name="unique_user_story_follow"),
        Index("ix_story_follows_story_id", "story_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    story_id = Column(Integer, ForeignKey("stories.id", ondelete="CASCADE"), nullable=False)
    is_favorite = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class ReadingProgress(Base):
    __tablename__ = "reading_progress"
    __table_args__ = (
        UniqueConstraint("user_id", "story_id", name="unique_user_story_progress"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    story_id = Column(Integer, ForeignKey("stories.id", ondelete="CASCADE"), nullable=False, index=True)
    last_chapter_id = Column(Integer, ForeignKey("chapters.id", ondelete="SET NULL"), nullable=True)
    last_read_at = Column(DateTime(timezone=True), default=utcnow)
