from sqlalchemy import Column, Integer, String, Text, ForeignKey, DateTime, Boolean, Enum, Index
from database import Base, utcnow
import enum


class NotificationType(enum.Enum):
    NEW_CHAPTER = "new_chapter"
    NEW_STORY = "new_story"
    COMMENT_REPLY = "comment_reply"
    COMMENT_LIKE = "comment_like"
    NEW_FOLLOWER = "new_follower"
    ANNOUNCEMENT = "announcement"
    ANNOUNCEMENT_REPLY = "announcement_reply"


class Audience(enum.Enum):
    USER_FOLLOWERS = "user_followers"
    STORY_FOLLOWERS = "story_followers"
    DIRECT = "direct"


class JobStatus(enum.Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "is_read"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(Enum(NotificationType), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    related_id = Column(String(255), nullable=True)
    job_id = Column(Integer, ForeignKey("notification_jobs.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class NotificationJob(Base):
    """Outbox row: one fan-out per triggering event, delivered after commit."""
    __tablename__ = "notification_jobs"
    __table_args__ = (
        Index("ix_notification_jobs_status", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    event_type = Column(Enum(NotificationType), nullable=False)
    audience = Column(Enum(Audience), nullable=False)
    audience_id = Column(Integer, nullable=False)
    actor_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    related_id = Column(String(255), nullable=True)
    status = Column(Enum(JobStatus), default=JobStatus.PENDING, nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
