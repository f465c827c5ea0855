"""Tests for CommentRepository."""

from ado_mirror.db.repositories import CommentRepository
from tests.conftest import FEB_01, FEB_02, JAN_15, JAN_16
from tests.factories import make_comment, make_comment_record, make_work_item


class TestCommentRepository:
    """Tests for comment reads and writes."""

    async def test_get_hashes(self, db_session):
        make_work_item(db_session, id=42)
        make_work_item(db_session, id=43)
        await db_session.flush()
        make_comment(db_session, id=1, work_item_id=42, content_hash="a")
        make_comment(db_session, id=2, work_item_id=42, content_hash="b")
        make_comment(db_session, id=3, work_item_id=43, content_hash="c")
        await db_session.flush()

        hashes = await CommentRepository(db_session).get_hashes(42)

        assert hashes == {1: "a", 2: "b"}

    async def test_get_hashes_none(self, db_session):
        assert await CommentRepository(db_session).get_hashes(42) == {}

    async def test_upsert_creates(self, db_session):
        make_work_item(db_session, id=42)
        await db_session.flush()
        record = make_comment_record(id=1001, text="Looks good")

        comment = await CommentRepository(db_session).upsert_comment(record, synced_at=FEB_01)

        assert comment.text == "Looks good"
        assert comment.created_by == "dev@contoso.com"
        assert comment.content_hash == record.content_hash
        assert comment.synced_at == FEB_01

    async def test_upsert_overwrites(self, db_session):
        """A changed comment replaces the stored text and hash."""
        make_work_item(db_session, id=42)
        await db_session.flush()
        repository = CommentRepository(db_session)
        await repository.upsert_comment(make_comment_record(id=1001, text="v1"), synced_at=FEB_01)

        edited = make_comment_record(id=1001, text="v2", modified_date=JAN_16)
        await repository.upsert_comment(edited, synced_at=FEB_02)

        comments = await repository.list_for_work_item(42)
        assert len(comments) == 1
        assert comments[0].text == "v2"
        assert comments[0].modified_date == JAN_16
        assert comments[0].content_hash == edited.content_hash
        assert comments[0].synced_at == FEB_02

    async def test_list_ordered_by_creation(self, db_session):
        make_work_item(db_session, id=42)
        await db_session.flush()
        repository = CommentRepository(db_session)
        await repository.upsert_comment(make_comment_record(id=2, modified_date=JAN_16))
        await repository.upsert_comment(make_comment_record(id=1, modified_date=JAN_15))

        comments = await repository.list_for_work_item(42)

        assert [c.id for c in comments] == [1, 2]


class TestCommentContentHash:
    """Tests for CommentRecord.content_hash."""

    def test_same_content_same_hash(self):
        assert make_comment_record(text="x").content_hash == make_comment_record(text="x").content_hash

    def test_text_changes_hash(self):
        assert make_comment_record(text="x").content_hash != make_comment_record(text="y").content_hash

    def test_modified_date_changes_hash(self):
        first = make_comment_record(modified_date=JAN_15)
        second = make_comment_record(modified_date=JAN_16)

        assert first.content_hash != second.content_hash
