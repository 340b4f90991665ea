import pytest
from sqlalchemy import select, func

from storyloom.models.comment import Comment, CommentReaction
from storyloom.models.notification import NotificationJob, NotificationType
from storyloom.models.social import ChapterView
from storyloom.models.story import Genre
from storyloom.services import comments, ledger, publication, reactions, views
from storyloom.utils.exceptions import NotFound, NotAuthorized, InvalidArgument


class TestCounterLedger:

    async def test_decrement_is_clamped_at_zero(self, db, make_user, make_published_story):
        author = await make_user()
        story, chapter = await make_published_story(author)

        await ledger.decrement(db, chapter, "likes")
        await ledger.adjust(db, story, "total_likes", -5)

        assert chapter.likes == 0
        assert story.total_likes == 0

    async def test_adjust_many_applies_every_delta(self, db, make_user, make_published_story):
        author = await make_user()
        story, _ = await make_published_story(author)

        await ledger.adjust_many(db, story, {"total_views": 3, "total_comments": 2, "total_chapters": -4})

        assert story.total_views == 3
        assert story.total_comments == 2
        assert story.total_chapters == 0

    async def test_unknown_counter_is_rejected(self, db, make_user, make_published_story):
        author = await make_user()
        story, _ = await make_published_story(author)

        with pytest.raises(ValueError):
            await ledger.increment(db, story, "trending_score")
        with pytest.raises(ValueError):
            await ledger.increment(db, author, "followers")


class TestChapterLikes:

    async def test_toggle_like_and_unlike(self, db, make_user, make_published_story):
        author = await make_user()
        reader = await make_user()
        story, chapter = await make_published_story(author)

        assert await reactions.toggle_chapter_like(db, reader, chapter.id) is True
        assert chapter.likes == 1
        assert story.total_likes == 1
        assert await reactions.has_user_liked_chapter(db, reader, chapter.id) is True

        assert await reactions.toggle_chapter_like(db, reader, chapter.id) is False
        assert chapter.likes == 0
        assert story.total_likes == 0
        assert await reactions.has_user_liked_chapter(db, reader, chapter.id) is False

    async def test_likes_never_go_negative_after_drift(self, db, make_user, make_published_story):
        author = await make_user()
        readers = [await make_user() for _ in range(3)]
        story, chapter = await make_published_story(author)

        for reader in readers:
            await reactions.toggle_chapter_like(db, reader, chapter.id)
        # Counters drifted below the true number of likes
        await ledger.adjust_many(db, chapter, {"likes": -3})
        await ledger.adjust_many(db, story, {"total_likes": -2})

        for reader in readers:
            await reactions.toggle_chapter_like(db, reader, chapter.id)
            assert chapter.likes >= 0
            assert story.total_likes >= 0

        assert chapter.likes == 0
        assert story.total_likes == 0

    async def test_anonymous_has_not_liked(self, db, make_user, make_published_story):
        author = await make_user()
        _, chapter = await make_published_story(author)

        assert await reactions.has_user_liked_chapter(db, None, chapter.id) is False

    async def test_like_missing_chapter(self, db, make_user):
        reader = await make_user()
        with pytest.raises(NotFound):
            await reactions.toggle_chapter_like(db, reader, 404)


class TestViews:

    async def test_authenticated_views_are_counted_once(self, db, make_user, make_published_story):
        author = await make_user()
        reader = await make_user()
        story, chapter = await make_published_story(author)

        results = [await views.increment_chapter_views(db, reader, chapter.id) for _ in range(5)]
        await db.commit()

        assert results == [True, False, False, False, False]
        assert chapter.views == 1
        assert story.total_views == 1
        assert await db.scalar(select(func.count()).select_from(ChapterView)) == 1

    async def test_anonymous_views_always_count(self, db, make_user, make_published_story):
        author = await make_user()
        story, chapter = await make_published_story(author)

        for _ in range(3):
            await views.increment_chapter_views(db, None, chapter.id)

        assert chapter.views == 3
        assert story.total_views == 3

    async def test_view_of_missing_chapter_is_ignored(self, db, make_user):
        reader = await make_user()
        assert await views.increment_chapter_views(db, reader, 12345) is False


class TestCommentReactions:

    async def _comment(self, db, make_user, make_published_story):
        author = await make_user()
        _, chapter = await make_published_story(author)
        comment = await comments.create_comment(db, author, chapter.id, "First!")
        await db.commit()
        return comment

    async def test_same_reaction_twice_removes_it(self, db, make_user, make_published_story):
        comment = await self._comment(db, make_user, make_published_story)
        reader = await make_user()

        await reactions.react_to_comment(db, reader, comment.id, is_like=True)
        assert comment.likes == 1
        await reactions.react_to_comment(db, reader, comment.id, is_like=True)

        assert comment.likes == 0
        assert comment.dislikes == 0
        assert await db.scalar(select(func.count()).select_from(CommentReaction)) == 0

    async def test_opposite_reaction_flips_it(self, db, make_user, make_published_story):
        comment = await self._comment(db, make_user, make_published_story)
        reader = await make_user()

        await reactions.react_to_comment(db, reader, comment.id, is_like=True)
        await reactions.react_to_comment(db, reader, comment.id, is_like=False)
        await db.commit()

        assert comment.likes == 0
        assert comment.dislikes == 1
        rows = (await db.execute(select(CommentReaction))).scalars().all()
        assert [(r.user_id, r.is_like) for r in rows] == [(reader.id, False)]

    async def test_tenth_dislike_hides_comment_for_good(self, db, make_user, make_published_story):
        comment = await self._comment(db, make_user, make_published_story)
        critics = [await make_user() for _ in range(10)]

        for critic in critics[:9]:
            await reactions.react_to_comment(db, critic, comment.id, is_like=False)
        assert comment.is_hidden is False

        await reactions.react_to_comment(db, critics[9], comment.id, is_like=False)
        assert comment.dislikes == 10
        assert comment.is_hidden is True

        for critic in critics:
            await reactions.react_to_comment(db, critic, comment.id, is_like=True)
        await db.commit()

        assert comment.dislikes == 0
        assert comment.likes == 10
        assert comment.is_hidden is True

    async def test_react_to_missing_comment(self, db, make_user):
        reader = await make_user()
        with pytest.raises(NotFound):
            await reactions.react_to_comment(db, reader, 77, is_like=True)


class TestComments:

    async def test_comment_increments_chapter_and_story(self, db, make_user, make_published_story):
        author = await make_user()
        reader = await make_user()
        story, chapter = await make_published_story(author)

        comment = await comments.create_comment(db, reader, chapter.id, "  Lovely opening  ")
        await db.commit()

        assert comment.content == "Lovely opening"
        assert chapter.comments == 1
        assert story.total_comments == 1

    async def test_empty_comment_is_rejected(self, db, make_user, make_published_story):
        author = await make_user()
        _, chapter = await make_published_story(author)

        with pytest.raises(InvalidArgument):
            await comments.create_comment(db, author, chapter.id, "   ")

    async def test_reply_enqueues_job_for_parent_author(self, db, make_user, make_published_story):
        author = await make_user()
        reader = await make_user()
        _, chapter = await make_published_story(author)
        parent = await comments.create_comment(db, author, chapter.id, "Thanks for reading")

        reply = await comments.create_comment(db, reader, chapter.id, "Thanks for writing", parent.id)
        await db.commit()

        job = await db.scalar(
            select(NotificationJob).filter(NotificationJob.event_type == NotificationType.COMMENT_REPLY)
        )
        assert job.audience_id == author.id
        assert job.related_id == str(reply.id)

    async def test_reply_to_own_comment_creates_no_job(self, db, make_user, make_published_story):
        author = await make_user()
        _, chapter = await make_published_story(author)
        parent = await comments.create_comment(db, author, chapter.id, "Author's note")

        await comments.create_comment(db, author, chapter.id, "Addendum", parent.id)
        await db.commit()

        count = await db.scalar(
            select(func.count()).select_from(NotificationJob)
            .filter(NotificationJob.event_type == NotificationType.COMMENT_REPLY)
        )
        assert count == 0

    async def test_reply_to_reply_is_rejected(self, db, make_user, make_published_story):
        author = await make_user()
        reader = await make_user()
        _, chapter = await make_published_story(author)
        parent = await comments.create_comment(db, author, chapter.id, "Top")
        reply = await comments.create_comment(db, reader, chapter.id, "Reply", parent.id)

        with pytest.raises(InvalidArgument):
            await comments.create_comment(db, author, chapter.id, "Nested", reply.id)

    async def test_parent_on_another_chapter_is_not_found(self, db, make_user, make_published_story):
        author = await make_user()
        _, first = await make_published_story(author, title="One")
        _, other = await make_published_story(author, title="Two")
        parent = await comments.create_comment(db, author, first.id, "Here")

        with pytest.raises(NotFound):
            await comments.create_comment(db, author, other.id, "There", parent.id)

    async def test_delete_thread_debits_everything_removed(self, db, make_user, make_published_story):
        author = await make_user()
        reader = await make_user()
        story, chapter = await make_published_story(author)
        parent = await comments.create_comment(db, reader, chapter.id, "Top")
        await comments.create_comment(db, author, chapter.id, "Reply one", parent.id)
        await comments.create_comment(db, reader, chapter.id, "Reply two", parent.id)
        await comments.create_comment(db, author, chapter.id, "Unrelated")
        await reactions.react_to_comment(db, author, parent.id, is_like=True)
        await db.commit()
        assert chapter.comments == 4

        await comments.delete_comment(db, reader, parent.id)
        await db.commit()

        assert chapter.comments == 1
        assert story.total_comments == 1
        assert await db.scalar(select(func.count()).select_from(Comment)) == 1
        assert await db.scalar(select(func.count()).select_from(CommentReaction)) == 0

    async def test_only_author_or_moderator_deletes(self, db, make_user, make_published_story):
        author = await make_user()
        stranger = await make_user()
        moderator = await make_user(role="ADMIN")
        _, chapter = await make_published_story(author)
        comment = await comments.create_comment(db, author, chapter.id, "Mine")

        with pytest.raises(NotAuthorized):
            await comments.delete_comment(db, stranger, comment.id)
        assert await comments.delete_comment(db, moderator, comment.id) is True

    async def test_list_comments_nests_replies(self, db, make_user, make_published_story):
        author = await make_user()
        reader = await make_user()
        _, chapter = await make_published_story(author)
        older = await comments.create_comment(db, reader, chapter.id, "Older")
        newer = await comments.create_comment(db, reader, chapter.id, "Newer")
        reply = await comments.create_comment(db, author, chapter.id, "Reply", older.id)
        await db.commit()

        threads = await comments.list_comments(db, chapter.id)
        assert [t["comment"].id for t in threads] == [newer.id, older.id]
        assert [r.id for r in threads[1]["replies"]] == [reply.id]

        oldest_first = await comments.list_comments(db, chapter.id, sort_by="oldest")
        assert [t["comment"].id for t in oldest_first] == [older.id, newer.id]


class TestDraftVisibility:

    async def _draft(self, db, make_user):
        author = await make_user()
        story = await publication.create_story(db, author, title="Unreleased", genre=Genre.THRILLER)
        draft = await publication.create_chapter(db, author, story.id, "C1", "text")
        await db.commit()
        return author, story, draft

    async def test_reader_cannot_like_a_draft(self, db, make_user):
        _, story, draft = await self._draft(db, make_user)
        reader = await make_user()

        with pytest.raises(NotFound):
            await reactions.toggle_chapter_like(db, reader, draft.id)
        assert draft.likes == 0
        assert story.total_likes == 0

    async def test_views_of_a_draft_are_ignored(self, db, make_user):
        _, story, draft = await self._draft(db, make_user)
        reader = await make_user()

        assert await views.increment_chapter_views(db, None, draft.id) is False
        assert await views.increment_chapter_views(db, reader, draft.id) is False
        assert draft.views == 0
        assert story.total_views == 0
        assert await db.scalar(select(func.count()).select_from(ChapterView)) == 0

    async def test_reader_cannot_comment_on_a_draft(self, db, make_user):
        _, story, draft = await self._draft(db, make_user)
        reader = await make_user()

        with pytest.raises(NotFound):
            await comments.create_comment(db, reader, draft.id, "Early access?")
        assert story.total_comments == 0

    async def test_draft_in_published_story_is_hidden_too(self, db, make_user, make_published_story):
        author = await make_user()
        reader = await make_user()
        story, _ = await make_published_story(author)
        draft = await publication.create_chapter(db, author, story.id, "C2", "text")
        await db.commit()

        with pytest.raises(NotFound):
            await reactions.toggle_chapter_like(db, reader, draft.id)
        assert story.total_likes == 0

    async def test_author_engages_with_own_draft(self, db, make_user):
        author, story, draft = await self._draft(db, make_user)

        note = await comments.create_comment(db, author, draft.id, "Fix the ending")
        assert await reactions.toggle_chapter_like(db, author, draft.id) is True
        await reactions.react_to_comment(db, author, note.id, is_like=True)

        assert story.total_comments == 1
        assert note.likes == 1

    async def test_reader_cannot_react_on_a_draft_comment(self, db, make_user):
        author, _, draft = await self._draft(db, make_user)
        reader = await make_user()
        note = await comments.create_comment(db, author, draft.id, "Private note")
        await db.commit()

        with pytest.raises(NotFound):
            await reactions.react_to_comment(db, reader, note.id, is_like=False)
        assert note.dislikes == 0
