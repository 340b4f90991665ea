import logging
from typing import List

from sqlalchemy import select, delete, desc
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from storyloom.models.announcement import Announcement, AnnouncementReply
from storyloom.models.user import User
from storyloom.services import ledger, notifications
from storyloom.utils.exceptions import NotFound, NotAuthorized, InvalidArgument

logger = logging.getLogger(__name__)


async def create_announcement(db: AsyncSession, author: User, body: str) -> Announcement:
    trimmed = (body or "").strip()
    if not trimmed:
        raise InvalidArgument("Announcement cannot be empty")

    announcement = Announcement(author_id=author.id, body=trimmed, reply_count=0)
    db.add(announcement)
    await db.flush()

    notifications.notify_announcement(db, author, announcement)
    logger.info(f"User {author.id} posted announcement {announcement.id}")
    return announcement


async def reply_to_announcement(db: AsyncSession, user: User, announcement_id: int, body: str) -> AnnouncementReply:
    trimmed = (body or "").strip()
    if not trimmed:
        raise InvalidArgument("Reply cannot be empty")

    announcement = await db.get(Announcement, announcement_id)
    if not announcement:
        raise NotFound("Announcement not found")

    reply = AnnouncementReply(announcement_id=announcement.id, author_id=user.id, body=trimmed)
    db.add(reply)
    await db.flush()

    await ledger.increment(db, announcement, "reply_count")
    notifications.notify_announcement_reply(db, user, announcement, reply)
    return reply


async def delete_announcement(db: AsyncSession, user: User, announcement_id: int) -> bool:
    announcement = await db.get(Announcement, announcement_id)
    if not announcement:
        raise NotFound("Announcement not found")
    if announcement.author_id != user.id and not user.is_moderator:
        raise NotAuthorized()

    await db.execute(
        delete(AnnouncementReply).where(AnnouncementReply.announcement_id == announcement.id)
        .execution_options(synchronize_session=False)
    )
    await db.delete(announcement)
    await db.flush()
    return True


async def delete_reply(db: AsyncSession, user: User, reply_id: int) -> bool:
    """Replies can be removed by their author or by the announcement's author."""
    reply = await db.get(AnnouncementReply, reply_id)
    if not reply:
        raise NotFound("Reply not found")

    announcement = await db.get(Announcement, reply.announcement_id)
    if not announcement:
        raise NotFound("Announcement not found")

    if user.id not in (reply.author_id, announcement.author_id) and not user.is_moderator:
        raise NotAuthorized()

    await db.delete(reply)
    await db.flush()
    await ledger.decrement(db, announcement, "reply_count")
    return True


async def list_announcements(db: AsyncSession, user_id: int, skip: int = 0, limit: int = 20) -> List[Announcement]:
    result = await db.execute(
        select(Announcement)
        .options(joinedload(Announcement.author))
        .filter(Announcement.author_id == user_id)
        .order_by(desc(Announcement.id))
        .offset(skip)
        .limit(limit)
    )
    return list(result.scalars().all())


async def list_replies(db: AsyncSession, announcement_id: int) -> List[AnnouncementReply]:
    result = await db.execute(
        select(AnnouncementReply)
        .options(joinedload(AnnouncementReply.author))
        .filter(AnnouncementReply.announcement_id == announcement_id)
        .order_by(AnnouncementReply.id)
    )
    return list(result.scalars().all())
