from sqlalchemy import Column, Integer, String, Text, ForeignKey, DateTime, Enum, Float, Boolean, JSON
from sqlalchemy.orm import relationship
from database import Base, utcnow
import enum


class Genre(enum.Enum):
    ROMANCE = "romance"
    FANTASY = "fantasy"
    MYSTERY = "mystery"
    SCIFI = "sci-fi"
    HORROR = "horror"
    ADVENTURE = "adventure"
    DRAMA = "drama"
    COMEDY = "comedy"
    THRILLER = "thriller"
    FANFICTION = "fanfiction"


class Story(Base):
    __tablename__ = "stories"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(100), nullable=False, index=True)
    description = Column(Text, nullable=False, default="")
    genre = Column(Enum(Genre), nullable=False, index=True)
    tags = Column(JSON, nullable=False, default=list)
    author_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    is_completed = Column(Boolean, default=False, nullable=False)
    is_published = Column(Boolean, default=False, nullable=False, index=True)

    # Aggregates, maintained only through the counter ledger
    total_chapters = Column(Integer, default=0, nullable=False)
    total_views = Column(Integer, default=0, nullable=False)
    total_likes = Column(Integer, default=0, nullable=False)
    total_comments = Column(Integer, default=0, nullable=False)

    # Written only by the trending job
    trending_score = Column(Float, default=0.0, nullable=False)

    last_updated = Column(DateTime(timezone=True), default=utcnow, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    author = relationship("User")
