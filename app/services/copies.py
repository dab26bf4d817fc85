"""
List Copier - saves another user's public list into the viewer's account.

The copy is private, placed first in the viewer's ordering, and records its
source in copied_from_id. That link is what the discovery ranking counts as
a copy.
"""

import re
import time
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import StudyItem, StudyList
from app.models.api import ErrorKind
from app.models.domain import CopyOutcome, ViewerContext
from app.observability.metrics import metrics
from app.observability.tracing import trace_operation
from app.services.feed_cache import FeedInvalidationBus, feed_invalidation
from app.services.votes import parse_list_id

logger = get_logger(__name__)

_NON_SLUG_CHARS = re.compile(r"[^a-z0-9]+")
MAX_SLUG_LENGTH = 200


def generate_slug(title: str) -> str:
    """Lowercase, dash-separated ASCII slug of a title."""
    slug = _NON_SLUG_CHARS.sub("-", title.lower()).strip("-")
    return slug[:MAX_SLUG_LENGTH].rstrip("-") or "list"


def _epoch_millis() -> int:
    return int(time.time() * 1000)


class ListCopier:
    """Copies public lists, refusing own lists and repeat saves."""

    def __init__(
        self, session: AsyncSession, invalidator: FeedInvalidationBus | None = None
    ) -> None:
        self.session = session
        self.invalidator = invalidator or feed_invalidation

    async def copy_list(self, viewer: ViewerContext | None, list_id: UUID | str) -> CopyOutcome:
        """
        Copy a public list into the viewer's account.

        Returns:
            CopyOutcome with the new slug, or the refusal reason
        """
        if viewer is None:
            return self._refuse(ErrorKind.AUTHENTICATION_REQUIRED, "Not authenticated")

        source_id = parse_list_id(list_id)
        if source_id is None:
            return self._refuse(ErrorKind.VALIDATION_FAILED, "Invalid study list id")

        with trace_operation("copies.copy_list", list_id=str(source_id)):
            try:
                source = await self._find_public_list(source_id)
                if source is None:
                    return self._refuse(ErrorKind.NOT_FOUND, "Study list not found")

                if source.user_id == viewer.user_id:
                    return self._refuse(ErrorKind.CONFLICT, "You cannot copy your own list")

                if await self._has_copy(viewer.user_id, source.id):
                    return self._refuse(ErrorKind.CONFLICT, "You already saved this list")

                slug = generate_slug(source.title)
                if await self._slug_taken(viewer.user_id, slug):
                    slug = f"{slug}-{_epoch_millis()}"

                items = await self._load_items(source.id)
                copy = await self._insert_copy(viewer.user_id, source, slug, items)
            except SQLAlchemyError as exc:
                await self.session.rollback()
                metrics.copies_total.labels(outcome="failed").inc()
                metrics.record_error(type(exc).__name__, "copy_list")
                logger.error(
                    "list_copy_failed",
                    user_id=str(viewer.user_id),
                    list_id=str(source_id),
                    error=str(exc),
                )
                return CopyOutcome.failure(ErrorKind.INTERNAL, "Failed to copy study list")

        metrics.copies_total.labels(outcome="copied").inc()
        logger.info(
            "list_copied",
            user_id=str(viewer.user_id),
            source_id=str(source.id),
            copy_id=str(copy.id),
            slug=slug,
            items=len(items),
        )
        await self.invalidator.publish("copy", source.id)
        return CopyOutcome.ok(slug)

    def _refuse(self, kind: ErrorKind, message: str) -> CopyOutcome:
        metrics.copies_total.labels(outcome=kind.value).inc()
        return CopyOutcome.failure(kind, message)

    async def _insert_copy(
        self,
        user_id: UUID,
        source: StudyList,
        slug: str,
        items: list[StudyItem],
    ) -> StudyList:
        """Shift the viewer's lists down one place and insert the copy at the top."""
        # updated_at drives which lists stay private on downgrade; reordering is not an edit
        await self.session.execute(
            update(StudyList)
            .where(StudyList.user_id == user_id)
            .values(position=StudyList.position + 1, updated_at=StudyList.updated_at)
            .execution_options(synchronize_session=False)
        )

        copy = StudyList(
            id=uuid4(),
            user_id=user_id,
            title=source.title,
            slug=slug,
            description=source.description,
            category=source.category,
            is_public=False,
            position=0,
            copied_from_id=source.id,
        )
        self.session.add(copy)
        await self.session.flush()

        for item in items:
            self.session.add(
                StudyItem(
                    study_list_id=copy.id,
                    title=item.title,
                    url=item.url,
                    notes=item.notes,
                    position=item.position,
                    completed=False,
                )
            )

        await self.session.flush()
        await self.session.commit()
        return copy

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _find_public_list(self, list_id: UUID) -> StudyList | None:
        stmt = select(StudyList).where(StudyList.id == list_id, StudyList.is_public.is_(True))
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _has_copy(self, user_id: UUID, source_id: UUID) -> bool:
        stmt = (
            select(StudyList.id)
            .where(StudyList.user_id == user_id, StudyList.copied_from_id == source_id)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def _slug_taken(self, user_id: UUID, slug: str) -> bool:
        stmt = select(StudyList.id).where(StudyList.user_id == user_id, StudyList.slug == slug)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def _load_items(self, list_id: UUID) -> list[StudyItem]:
        stmt = (
            select(StudyItem)
            .where(StudyItem.study_list_id == list_id)
            .order_by(StudyItem.position)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
