import json

import pytest
from sqlalchemy import select, func

from storyloom.models.notification import Notification, NotificationJob, NotificationType, JobStatus
from storyloom.models.story import Genre
from storyloom.services import announcements, follows, notifications, publication
from storyloom.utils.exceptions import NotFound, InvalidArgument


async def all_notifications(db):
    result = await db.execute(select(Notification).order_by(Notification.id))
    return list(result.scalars().all())


class TestFollowGraph:

    async def test_toggle_user_follow(self, db, make_user):
        reader = await make_user()
        author = await make_user()

        assert await follows.toggle_user_follow(db, reader, author.id) is True
        assert await follows.is_following_user(db, reader, author.id) is True
        assert [u.id for u in await follows.list_followers(db, author.id)] == [reader.id]
        assert [u.id for u in await follows.list_following(db, reader.id)] == [author.id]
        assert await follows.count_followers(db, author.id) == 1

        assert await follows.toggle_user_follow(db, reader, author.id) is False
        await db.commit()
        assert await follows.is_following_user(db, reader, author.id) is False
        assert await follows.count_followers(db, author.id) == 0

    async def test_self_follow_is_rejected(self, db, make_user):
        reader = await make_user()
        with pytest.raises(InvalidArgument):
            await follows.toggle_user_follow(db, reader, reader.id)

    async def test_follow_missing_user(self, db, make_user):
        reader = await make_user()
        with pytest.raises(NotFound):
            await follows.toggle_user_follow(db, reader, 9999)

    async def test_toggle_story_follow(self, db, make_user, make_published_story):
        author = await make_user()
        reader = await make_user()
        story, _ = await make_published_story(author)

        assert await follows.toggle_story_follow(db, reader, story.id, is_favorite=True) is True
        assert await follows.list_story_follower_ids(db, story.id) == [reader.id]
        rows = await follows.list_followed_stories(db, reader)
        assert [(s.id, f.is_favorite) for s, f in rows] == [(story.id, True)]

        assert await follows.toggle_story_follow(db, reader, story.id) is False
        assert await follows.is_following_story(db, None, story.id) is False


class TestFanOut:

    async def test_new_story_reaches_each_follower_once(self, db, session_factory, make_user):
        follower = await make_user()
        author = await make_user()
        await follows.toggle_user_follow(db, follower, author.id)
        story = await publication.create_story(db, author, title="Tide", genre=Genre.ADVENTURE)
        await publication.create_chapter(db, author, story.id, "C1", "text", is_draft=False, publish_story_too=True)
        await db.commit()

        summary = await notifications.deliver_pending(session_factory)

        assert summary == {"delivered": 1, "failed": 0, "notifications": 1}
        rows = await all_notifications(db)
        assert len(rows) == 1
        assert rows[0].user_id == follower.id
        assert rows[0].type == NotificationType.NEW_STORY
        assert rows[0].related_id == str(story.id)
        assert rows[0].is_read is False

        # Delivered jobs are not delivered again
        assert (await notifications.deliver_pending(session_factory))["delivered"] == 0
        assert len(await all_notifications(db)) == 1

    async def test_new_chapter_reaches_story_followers(self, db, session_factory, make_user, make_published_story):
        author = await make_user()
        readers = [await make_user() for _ in range(3)]
        story, _ = await make_published_story(author)
        for reader in readers[:2]:
            await follows.toggle_story_follow(db, reader, story.id)
        await db.commit()
        await notifications.deliver_pending(session_factory)

        await publication.create_chapter(db, author, story.id, "C2", "text", is_draft=False)
        await db.commit()
        await notifications.deliver_pending(session_factory)

        rows = [n for n in await all_notifications(db) if n.type == NotificationType.NEW_CHAPTER]
        assert sorted(n.user_id for n in rows) == sorted(r.id for r in readers[:2])

    async def test_failed_delivery_keeps_triggering_write(self, db, session_factory, make_user, monkeypatch):
        follower = await make_user()
        author = await make_user()
        await follows.toggle_user_follow(db, follower, author.id)
        announcement = await announcements.create_announcement(db, author, "Hiatus until spring")
        await db.commit()

        async def unreachable(db, job):
            raise RuntimeError("follower index unavailable")

        monkeypatch.setattr(notifications, "resolve_recipients", unreachable)
        summary = await notifications.deliver_pending(session_factory)

        assert summary["failed"] == 1
        async with session_factory() as check:
            job = await check.scalar(select(NotificationJob))
            assert job.status == JobStatus.PENDING
            assert job.attempts == 1
            assert "follower index unavailable" in job.last_error
            assert await check.scalar(select(func.count()).select_from(Notification)) == 0
            assert await check.get(type(announcement), announcement.id) is not None

    async def test_job_gives_up_after_max_attempts(self, db, session_factory, make_user, monkeypatch):
        author = await make_user()
        await announcements.create_announcement(db, author, "Anyone there?")
        await db.commit()

        async def unreachable(db, job):
            raise RuntimeError("down")

        monkeypatch.setattr(notifications, "resolve_recipients", unreachable)
        monkeypatch.setattr(notifications, "NOTIFICATION_MAX_ATTEMPTS", 2)
        await notifications.deliver_pending(session_factory)
        await notifications.deliver_pending(session_factory)

        async with session_factory() as check:
            job = await check.scalar(select(NotificationJob))
            assert job.status == JobStatus.FAILED
            assert job.attempts == 2

        # Failed jobs are no longer picked up
        assert (await notifications.deliver_pending(session_factory))["failed"] == 0

    async def test_announcement_deep_link(self, db, session_factory, make_user):
        follower = await make_user()
        author = await make_user()
        await follows.toggle_user_follow(db, follower, author.id)
        announcement = await announcements.create_announcement(db, author, "x" * 300)
        await db.commit()

        await notifications.deliver_pending(session_factory)

        (row,) = await all_notifications(db)
        assert row.type == NotificationType.ANNOUNCEMENT
        assert len(row.message) == 140
        assert json.loads(row.related_id) == {
            "author_id": str(author.id),
            "announcement_id": str(announcement.id),
        }


class TestReaderInbox:

    async def _inbox(self, db, session_factory, make_user, size):
        follower = await make_user()
        author = await make_user()
        await follows.toggle_user_follow(db, follower, author.id)
        for i in range(size):
            await announcements.create_announcement(db, author, f"Update {i}")
        await db.commit()
        await notifications.deliver_pending(session_factory)
        return follower

    async def test_pages_newest_first(self, db, session_factory, make_user):
        follower = await self._inbox(db, session_factory, make_user, 5)

        first = await notifications.list_for_user(db, follower, num_items=3)
        assert [n.message for n in first["page"]] == ["Update 4", "Update 3", "Update 2"]
        assert first["is_done"] is False

        second = await notifications.list_for_user(db, follower, num_items=3, cursor=first["continue_cursor"])
        assert [n.message for n in second["page"]] == ["Update 1", "Update 0"]
        assert second["is_done"] is True
        assert second["continue_cursor"] is None

    async def test_bad_cursor(self, db, make_user):
        reader = await make_user()
        with pytest.raises(InvalidArgument):
            await notifications.list_for_user(db, reader, cursor="yesterday")

    async def test_mark_read(self, db, session_factory, make_user):
        follower = await self._inbox(db, session_factory, make_user, 3)
        assert await notifications.count_unread(db, follower) == 3

        newest = (await notifications.list_for_user(db, follower, num_items=1))["page"][0]
        await notifications.mark_read(db, follower, newest.id)
        await db.commit()
        assert await notifications.count_unread(db, follower) == 2

        assert await notifications.mark_all_read(db, follower) == 2
        await db.commit()
        assert await notifications.count_unread(db, follower) == 0

    async def test_mark_read_of_someone_elses_notification(self, db, session_factory, make_user):
        follower = await self._inbox(db, session_factory, make_user, 1)
        intruder = await make_user()
        (row,) = await all_notifications(db)

        with pytest.raises(NotFound):
            await notifications.mark_read(db, intruder, row.id)
        assert row.user_id == follower.id
