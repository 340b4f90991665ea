"""
Notification fan-out.

Triggering commands never write notifications directly. They enqueue one
NotificationJob (the outbox row) inside their own transaction; a consumer
resolves the audience and writes one Notification per recipient afterwards.
A job is delivered atomically: all of its notifications are committed
together with the job's ``delivered`` status, or none are.
"""

import json
import logging
from typing import List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import NOTIFICATION_MAX_ATTEMPTS, NOTIFICATION_BATCH_SIZE
from database import utcnow
from storyloom.models.notification import (
    Notification, NotificationJob, NotificationType, Audience, JobStatus,
)
from storyloom.models.social import UserFollow, StoryFollow
from storyloom.utils.exceptions import NotFound, InvalidArgument

logger = logging.getLogger(__name__)

MESSAGE_PREVIEW_LENGTH = 140


def enqueue(
        db: AsyncSession,
        event_type: NotificationType,
        audience: Audience,
        audience_id: int,
        title: str,
        message: str,
        related_id: Optional[str] = None,
        actor_id: Optional[int] = None,
) -> NotificationJob:
    job = NotificationJob(
        event_type=event_type,
        audience=audience,
        audience_id=audience_id,
        actor_id=actor_id,
        title=title,
        message=message,
        related_id=related_id,
        status=JobStatus.PENDING,
        attempts=0,
    )
    db.add(job)
    return job


def notify_new_story(db: AsyncSession, author, story) -> NotificationJob:
    return enqueue(
        db,
        NotificationType.NEW_STORY,
        Audience.USER_FOLLOWERS,
        author.id,
        title="New Story Published",
        message=f'{author.display_name} published a new story: "{story.title}"',
        related_id=str(story.id),
        actor_id=author.id,
    )


def notify_new_chapter(db: AsyncSession, story, chapter) -> NotificationJob:
    return enqueue(
        db,
        NotificationType.NEW_CHAPTER,
        Audience.STORY_FOLLOWERS,
        story.id,
        title="New Chapter Published",
        message=f'"{story.title}" has a new chapter: "{chapter.title}"',
        related_id=str(chapter.id),
        actor_id=story.author_id,
    )


def notify_comment_reply(db: AsyncSession, replier, parent_comment, reply) -> Optional[NotificationJob]:
    if parent_comment.author_id == replier.id:
        return None
    return enqueue(
        db,
        NotificationType.COMMENT_REPLY,
        Audience.DIRECT,
        parent_comment.author_id,
        title="New Reply",
        message=f"{replier.display_name or 'Someone'} replied to your comment",
        related_id=str(reply.id),
        actor_id=replier.id,
    )


def _announcement_link(author_id: int, announcement_id: int) -> str:
    return json.dumps({"author_id": str(author_id), "announcement_id": str(announcement_id)})


def notify_announcement(db: AsyncSession, author, announcement) -> NotificationJob:
    return enqueue(
        db,
        NotificationType.ANNOUNCEMENT,
        Audience.USER_FOLLOWERS,
        author.id,
        title=f"{author.display_name or 'An author you follow'} posted an announcement",
        message=announcement.body[:MESSAGE_PREVIEW_LENGTH],
        related_id=_announcement_link(author.id, announcement.id),
        actor_id=author.id,
    )


def notify_announcement_reply(db: AsyncSession, replier, announcement, reply) -> Optional[NotificationJob]:
    if announcement.author_id == replier.id:
        return None
    return enqueue(
        db,
        NotificationType.ANNOUNCEMENT_REPLY,
        Audience.DIRECT,
        announcement.author_id,
        title="New reply to your announcement",
        message=reply.body[:MESSAGE_PREVIEW_LENGTH],
        related_id=_announcement_link(announcement.author_id, announcement.id),
        actor_id=replier.id,
    )


async def resolve_recipients(db: AsyncSession, job: NotificationJob) -> List[int]:
    if job.audience == Audience.USER_FOLLOWERS:
        result = await db.execute(
            select(UserFollow.follower_id).filter(UserFollow.followed_id == job.audience_id)
        )
        return list(result.scalars().all())
    if job.audience == Audience.STORY_FOLLOWERS:
        result = await db.execute(
            select(StoryFollow.user_id).filter(StoryFollow.story_id == job.audience_id)
        )
        return list(result.scalars().all())
    if job.audience == Audience.DIRECT:
        return [job.audience_id]
    raise ValueError(f"Unknown audience {job.audience}")


async def deliver_job(db: AsyncSession, job: NotificationJob) -> int:
    """Write one notification per recipient and mark the job delivered.

    Returns the number of notifications written. The caller commits.
    """
    if job.status != JobStatus.PENDING:
        return 0

    recipients = await resolve_recipients(db, job)
    for recipient_id in recipients:
        db.add(Notification(
            user_id=recipient_id,
            type=job.event_type,
            title=job.title,
            message=job.message,
            is_read=False,
            related_id=job.related_id,
            job_id=job.id,
        ))

    job.attempts += 1
    job.status = JobStatus.DELIVERED
    job.delivered_at = utcnow()
    job.last_error = None
    return len(recipients)


async def _record_failure(db: AsyncSession, job_id: int, error: Exception) -> None:
    job = await db.get(NotificationJob, job_id, populate_existing=True)
    if job is None:
        return
    job.attempts += 1
    job.last_error = str(error)[:1000]
    if job.attempts >= NOTIFICATION_MAX_ATTEMPTS:
        job.status = JobStatus.FAILED
        logger.error(f"Notification job {job_id} gave up after {job.attempts} attempts")
    await db.commit()


async def deliver_pending(session_factory: async_sessionmaker, limit: int = NOTIFICATION_BATCH_SIZE) -> dict:
    """Drain pending outbox jobs, one transaction per job.

    Failures are logged and recorded on the job; they never propagate.
    """
    summary = {"delivered": 0, "failed": 0, "notifications": 0}

    async with session_factory() as db:
        result = await db.execute(
            select(NotificationJob.id)
            .filter(NotificationJob.status == JobStatus.PENDING)
            .order_by(NotificationJob.id)
            .limit(limit)
        )
        job_ids = list(result.scalars().all())

    for job_id in job_ids:
        async with session_factory() as db:
            try:
                job = await db.get(NotificationJob, job_id)
                if job is None:
                    continue
                written = await deliver_job(db, job)
                await db.commit()
                summary["delivered"] += 1
                summary["notifications"] += written
                logger.info(f"Delivered notification job {job_id} ({job.event_type.value}) to {written} recipients")
            except Exception as e:
                await db.rollback()
                summary["failed"] += 1
                logger.error(f"Error delivering notification job {job_id}: {str(e)}")
                try:
                    await _record_failure(db, job_id, e)
                except Exception as record_error:
                    await db.rollback()
                    logger.error(f"Could not record failure for notification job {job_id}: {str(record_error)}")

    return summary


async def list_for_user(db: AsyncSession, user, num_items: int = 20, cursor: Optional[str] = None) -> dict:
    """Newest-first page of the user's notifications.

    The cursor is the id of the last notification of the previous page.
    """
    if num_items < 1:
        raise InvalidArgument("num_items must be positive")

    query = select(Notification).filter(Notification.user_id == user.id)
    if cursor:
        try:
            before_id = int(cursor)
        except ValueError:
            raise InvalidArgument("Invalid cursor")
        query = query.filter(Notification.id < before_id)

    result = await db.execute(query.order_by(Notification.id.desc()).limit(num_items + 1))
    rows = list(result.scalars().all())

    is_done = len(rows) <= num_items
    page = rows[:num_items]
    return {
        "page": page,
        "is_done": is_done,
        "continue_cursor": None if is_done or not page else str(page[-1].id),
    }


async def mark_read(db: AsyncSession, user, notification_id: int) -> None:
    notification = await db.get(Notification, notification_id)
    if not notification or notification.user_id != user.id:
        raise NotFound("Notification not found")
    notification.is_read = True


async def mark_all_read(db: AsyncSession, user) -> int:
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == user.id, Notification.is_read.is_(False))
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


async def count_unread(db: AsyncSession, user) -> int:
    return await db.scalar(
        select(func.count())
        .select_from(Notification)
        .filter(Notification.user_id == user.id, Notification.is_read.is_(False))
    )
