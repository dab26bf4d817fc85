"""
Tests for the List Copier.
"""

from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from app.db.models import StudyItem, StudyList
from app.models.api import ErrorKind
from app.models.domain import ViewerContext
from app.services.copies import ListCopier, generate_slug
from factories import create_mock_item, create_mock_study_list


class TestGenerateSlug:
    @pytest.mark.parametrize(
        "title, expected",
        [
            ("Intro to Rust", "intro-to-rust"),
            ("  C++ & You!  ", "c-you"),
            ("Ünïcode Ñotes", "n-code-otes"),
            ("!!!", "list"),
            ("", "list"),
        ],
    )
    def test_slugs(self, title, expected):
        assert generate_slug(title) == expected

    def test_length_capped(self):
        assert len(generate_slug("a" * 500)) == 200


class TestCopyRefusals:
    """Refusals happen before any write."""

    async def test_anonymous(self, db_session: AsyncMock, invalidator):
        outcome = await ListCopier(db_session, invalidator).copy_list(None, str(uuid4()))

        assert outcome.error_kind is ErrorKind.AUTHENTICATION_REQUIRED

    async def test_malformed_id(self, db_session: AsyncMock, viewer: ViewerContext, invalidator):
        outcome = await ListCopier(db_session, invalidator).copy_list(viewer, "abc")

        assert outcome.error_kind is ErrorKind.VALIDATION_FAILED
        db_session.execute.assert_not_called()

    async def test_missing_or_private_source(
        self, db_session: AsyncMock, viewer: ViewerContext, invalidator
    ):
        outcome = await ListCopier(db_session, invalidator).copy_list(viewer, uuid4())

        assert outcome.error_kind is ErrorKind.NOT_FOUND
        assert outcome.error == "Study list not found"

    async def test_own_list(self, db_session: AsyncMock, viewer: ViewerContext, invalidator):
        source = create_mock_study_list(user_id=viewer.user_id)
        copier = ListCopier(db_session, invalidator)

        with patch.object(copier, "_find_public_list", new_callable=AsyncMock, return_value=source):
            outcome = await copier.copy_list(viewer, source.id)

        assert outcome.error_kind is ErrorKind.CONFLICT
        assert outcome.error == "You cannot copy your own list"
        db_session.add.assert_not_called()

    async def test_already_saved(self, db_session: AsyncMock, viewer: ViewerContext, invalidator):
        source = create_mock_study_list()
        copier = ListCopier(db_session, invalidator)

        with (
            patch.object(copier, "_find_public_list", new_callable=AsyncMock, return_value=source),
            patch.object(copier, "_has_copy", new_callable=AsyncMock, return_value=True),
        ):
            outcome = await copier.copy_list(viewer, source.id)

        assert outcome.error == "You already saved this list"
        db_session.add.assert_not_called()


class TestCopyInsert:
    """Successful copies."""

    def _patched(self, copier, source, items, slug_taken=False):
        return (
            patch.object(copier, "_find_public_list", new_callable=AsyncMock, return_value=source),
            patch.object(copier, "_has_copy", new_callable=AsyncMock, return_value=False),
            patch.object(copier, "_slug_taken", new_callable=AsyncMock, return_value=slug_taken),
            patch.object(copier, "_load_items", new_callable=AsyncMock, return_value=items),
        )

    async def test_copy_is_private_first_and_linked(
        self, db_session: AsyncMock, viewer: ViewerContext, invalidator, invalidation_events
    ):
        source = create_mock_study_list(title="Intro to Rust")
        items = [create_mock_item(source.id, 0), create_mock_item(source.id, 1)]
        copier = ListCopier(db_session, invalidator)
        p1, p2, p3, p4 = self._patched(copier, source, items)

        with p1, p2, p3, p4:
            outcome = await copier.copy_list(viewer, str(source.id))

        assert outcome.success is True
        assert outcome.slug == "intro-to-rust"

        added = [call.args[0] for call in db_session.add.call_args_list]
        copy = added[0]
        assert isinstance(copy, StudyList)
        assert copy.user_id == viewer.user_id
        assert copy.is_public is False
        assert copy.position == 0
        assert copy.copied_from_id == source.id
        assert copy.category == source.category

        copied_items = added[1:]
        assert all(isinstance(item, StudyItem) for item in copied_items)
        assert [item.position for item in copied_items] == [0, 1]
        assert all(item.completed is False for item in copied_items)
        assert all(item.study_list_id == copy.id for item in copied_items)

        # Position shift runs before the insert
        db_session.execute.assert_awaited_once()
        db_session.commit.assert_awaited_once()
        assert invalidation_events.events == [("copy", source.id)]

    async def test_slug_collision_gets_suffix(
        self, db_session: AsyncMock, viewer: ViewerContext, invalidator
    ):
        source = create_mock_study_list(title="Intro to Rust")
        copier = ListCopier(db_session, invalidator)
        p1, p2, p3, p4 = self._patched(copier, source, [], slug_taken=True)

        with p1, p2, p3, p4, patch("app.services.copies._epoch_millis", return_value=1760000000000):
            outcome = await copier.copy_list(viewer, source.id)

        assert outcome.slug == "intro-to-rust-1760000000000"

    async def test_storage_failure(
        self, db_session: AsyncMock, viewer: ViewerContext, invalidator, invalidation_events
    ):
        source = create_mock_study_list()
        db_session.commit = AsyncMock(side_effect=OperationalError("COMMIT", {}, Exception("gone")))
        copier = ListCopier(db_session, invalidator)
        p1, p2, p3, p4 = self._patched(copier, source, [])

        with p1, p2, p3, p4:
            outcome = await copier.copy_list(viewer, source.id)

        assert outcome.error_kind is ErrorKind.INTERNAL
        db_session.rollback.assert_awaited_once()
        assert invalidation_events.events == []
