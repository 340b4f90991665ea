import math

import pytest
from fastapi import HTTPException
from sqlalchemy import select

from storyloom.flood_protection import StoryFloodProtection, ChapterFloodProtection
from storyloom.models.announcement import AnnouncementReply
from storyloom.models.comment import Comment
from storyloom.models.notification import NotificationJob, NotificationType
from storyloom.models.story import Genre
from storyloom.services import (
    announcements, comments, ledger, progress, publication, reactions, reconcile, trending,
)
from storyloom.utils.exceptions import NotFound, NotAuthorized, InvalidArgument


class TestAnnouncements:

    async def test_reply_counts_and_notifies_author(self, db, make_user):
        author = await make_user()
        reader = await make_user()
        announcement = await announcements.create_announcement(db, author, "  Book two is coming  ")
        assert announcement.body == "Book two is coming"

        reply = await announcements.reply_to_announcement(db, reader, announcement.id, "Can't wait")
        await announcements.reply_to_announcement(db, author, announcement.id, "Soon!")
        await db.commit()

        assert announcement.reply_count == 2
        jobs = (await db.execute(
            select(NotificationJob).filter(NotificationJob.event_type == NotificationType.ANNOUNCEMENT_REPLY)
        )).scalars().all()
        assert len(jobs) == 1
        assert jobs[0].audience_id == author.id
        assert [r.id for r in await announcements.list_replies(db, announcement.id)][0] == reply.id

    async def test_empty_announcement_is_rejected(self, db, make_user):
        author = await make_user()
        with pytest.raises(InvalidArgument):
            await announcements.create_announcement(db, author, " ")

    async def test_reply_deletion_rights(self, db, make_user):
        author = await make_user()
        reader = await make_user()
        stranger = await make_user()
        announcement = await announcements.create_announcement(db, author, "News")
        first = await announcements.reply_to_announcement(db, reader, announcement.id, "One")
        second = await announcements.reply_to_announcement(db, reader, announcement.id, "Two")

        with pytest.raises(NotAuthorized):
            await announcements.delete_reply(db, stranger, first.id)

        await announcements.delete_reply(db, reader, first.id)
        await announcements.delete_reply(db, author, second.id)
        assert announcement.reply_count == 0

    async def test_delete_announcement_removes_replies(self, db, make_user):
        author = await make_user()
        reader = await make_user()
        announcement = await announcements.create_announcement(db, author, "News")
        await announcements.reply_to_announcement(db, reader, announcement.id, "One")

        with pytest.raises(NotAuthorized):
            await announcements.delete_announcement(db, reader, announcement.id)

        await announcements.delete_announcement(db, author, announcement.id)
        await db.commit()

        assert (await db.execute(select(AnnouncementReply))).scalars().all() == []
        assert await announcements.list_announcements(db, author.id) == []


class TestReadingProgress:

    async def test_progress_upsert_and_percent(self, db, make_user, make_published_story):
        author = await make_user()
        reader = await make_user()
        story, first = await make_published_story(author)
        second = await publication.create_chapter(db, author, story.id, "C2", "text", is_draft=False)
        await publication.create_chapter(db, author, story.id, "C3", "text", is_draft=False)
        await publication.create_chapter(db, author, story.id, "C4", "text", is_draft=False)

        assert await progress.get_progress(db, reader, story.id) is None

        await progress.set_progress(db, reader, story.id, first.id)
        await progress.set_progress(db, reader, story.id, second.id)
        await db.commit()

        result = await progress.get_progress(db, reader, story.id)
        assert result["last_chapter_id"] == second.id
        assert result["last_read_index"] == 1
        assert result["percent"] == 50

    async def test_chapter_from_another_story(self, db, make_user, make_published_story):
        author = await make_user()
        reader = await make_user()
        story, _ = await make_published_story(author, title="One")
        _, foreign = await make_published_story(author, title="Two")

        with pytest.raises(NotFound):
            await progress.set_progress(db, reader, story.id, foreign.id)


class TestReconciliation:

    async def test_repairs_drifted_story_counters(self, db, make_user, make_published_story):
        author = await make_user()
        reader = await make_user()
        story, chapter = await make_published_story(author)
        await reactions.toggle_chapter_like(db, reader, chapter.id)
        await comments.create_comment(db, reader, chapter.id, "Nice")
        await ledger.adjust_many(db, story, {"total_chapters": 4, "total_likes": 10, "total_comments": -1})
        await db.commit()

        drift = await reconcile.reconcile_story(db, story)

        assert drift == {
            "total_chapters": (5, 1),
            "total_likes": (11, 1),
            "total_comments": (0, 1),
        }
        assert story.total_chapters == 1
        assert story.total_likes == 1
        assert story.total_comments == 1

    async def test_reconcile_all_reports_and_fixes(self, db, make_user, make_published_story):
        author = await make_user()
        reader = await make_user()
        story, chapter = await make_published_story(author)
        comment = await comments.create_comment(db, author, chapter.id, "Note")
        await reactions.react_to_comment(db, reader, comment.id, is_like=True)
        await ledger.adjust_many(db, chapter, {"likes": 3})
        await ledger.adjust_many(db, comment, {"likes": 2, "dislikes": 12})
        story.is_published = False
        await db.commit()

        report = await reconcile.reconcile_all(db)
        await db.commit()

        assert report["stories_fixed"] == 1
        assert report["chapters_fixed"] == 1
        assert report["comments_fixed"] == 1
        assert "is_published" in report["stories"][0]["fields"]
        assert story.is_published is True
        assert chapter.likes == 0

        refreshed = await db.get(Comment, comment.id, populate_existing=True)
        assert (refreshed.likes, refreshed.dislikes) == (1, 0)

    async def test_clean_data_reports_nothing(self, db, make_user, make_published_story):
        author = await make_user()
        await make_published_story(author)

        report = await reconcile.reconcile_all(db)
        assert report["stories_fixed"] == report["chapters_fixed"] == report["comments_fixed"] == 0


class TestTrendingJob:

    async def test_scores_published_stories_only(self, db, make_user, make_published_story):
        author = await make_user()
        story, _ = await make_published_story(author)
        draft_story = await publication.create_story(db, author, title="Unfinished", genre=Genre.COMEDY)
        await db.commit()

        scored = await trending.run_trending_job(db, lambda s: s.total_chapters * 2)

        assert scored == 1
        assert story.trending_score == 2.0
        assert draft_story.trending_score == 0.0

    def test_load_scorer_accepts_both_path_styles(self):
        assert trending.load_scorer(None) is None
        assert trending.load_scorer("math:fabs") is math.fabs
        assert trending.load_scorer("math.fabs") is math.fabs


class TestFloodProtection:

    async def test_story_limit(self, db, make_user):
        author = await make_user()
        guard = StoryFloodProtection(max_items=2, time_window=20)
        for title in ("One", "Two"):
            assert await guard.check_rate_limit(author.id, db) is True
            await publication.create_story(db, author, title=title, genre=Genre.DRAMA)
        await db.commit()

        with pytest.raises(HTTPException) as exc_info:
            await guard.check_rate_limit(author.id, db)
        assert exc_info.value.status_code == 429

    async def test_chapter_limit_counts_own_stories(self, db, make_user, make_published_story):
        author = await make_user()
        other = await make_user()
        story, _ = await make_published_story(author)
        guard = ChapterFloodProtection(max_items=2, time_window=20)

        assert await guard.check_rate_limit(author.id, db) is True
        await publication.create_chapter(db, author, story.id, "C2", "text")
        await db.commit()

        with pytest.raises(HTTPException):
            await guard.check_rate_limit(author.id, db)
        assert await guard.check_rate_limit(other.id, db) is True
