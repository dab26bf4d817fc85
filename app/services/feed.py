"""
Feed Service - loads public lists and vote aggregates and builds a feed page.

Every request rescans the public set; scoring and paging are delegated to
app.services.ranking.
"""

import time
from collections.abc import Sequence
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased
from structlog import get_logger

from app.config import settings
from app.db.models import StudyItem, StudyList, User, Vote
from app.models.api import VoteType
from app.models.domain import (
    FeedEntry,
    FeedPage,
    FeedQuery,
    ListSnapshot,
    ViewerContext,
    VoteTally,
)
from app.observability.metrics import metrics
from app.observability.tracing import trace_operation
from app.services.ranking import (
    ScoreWeights,
    href_for,
    paginate,
    rank_lists,
    resolve_category,
)

logger = get_logger(__name__)


class FeedService:
    """Read-only discovery feed assembly."""

    def __init__(
        self,
        session: AsyncSession,
        page_size: int | None = None,
        weights: ScoreWeights | None = None,
    ) -> None:
        self.session = session
        self.page_size = page_size or settings.feed_page_size
        self.weights = weights or ScoreWeights(
            net_votes=settings.score_weight_net_votes,
            copies=settings.score_weight_copies,
            freshness_window_days=settings.freshness_window_days,
        )

    async def fetch_feed(
        self,
        query: FeedQuery,
        viewer: ViewerContext | None = None,
        now: datetime | None = None,
    ) -> FeedPage:
        """
        Build one page of the ranked public feed.

        Args:
            query: Raw cursor and category as received
            viewer: Authenticated caller, if any
            now: Reference time for freshness (defaults to current UTC time)

        Returns:
            FeedPage with entries annotated for the viewer
        """
        started = time.perf_counter()
        now = now or datetime.now(UTC)
        category = resolve_category(query.category)
        viewer_id = viewer.user_id if viewer else None

        with trace_operation("feed.fetch", category=category, cursor=query.cursor) as span:
            snapshots = await self._load_public_lists(category)
            tallies = await self._load_vote_tallies([s.id for s in snapshots])

            ranked = rank_lists(snapshots, tallies, now, self.weights)
            page, next_cursor = paginate(ranked, query.cursor, self.page_size)

            viewer_votes: dict[UUID, VoteType] = {}
            if viewer_id is not None and page:
                viewer_votes = await self._load_viewer_votes(
                    viewer_id, [item.snapshot.id for item in page]
                )

            span.set_attribute("candidates", len(snapshots))
            span.set_attribute("page_size", len(page))

        entries = tuple(
            FeedEntry(
                scored=item,
                current_user_vote=viewer_votes.get(item.snapshot.id),
                href=href_for(item.snapshot, viewer_id),
            )
            for item in page
        )

        duration = time.perf_counter() - started
        metrics.record_feed(
            authenticated=viewer is not None,
            filtered=category is not None,
            candidates=len(snapshots),
            duration=duration,
        )
        logger.debug(
            "feed_served",
            category=category,
            candidates=len(snapshots),
            returned=len(entries),
            has_more=next_cursor is not None,
            duration_ms=round(duration * 1000, 2),
        )

        return FeedPage(
            entries=entries,
            next_cursor=next_cursor,
            is_authenticated=viewer is not None,
            current_user_id=viewer_id,
        )

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _load_public_lists(self, category: str | None) -> list[ListSnapshot]:
        """Public lists of profile-complete owners, with item and copy counts."""
        copies = aliased(StudyList)
        item_count = (
            select(func.count(StudyItem.id))
            .where(StudyItem.study_list_id == StudyList.id)
            .correlate(StudyList)
            .scalar_subquery()
        )
        copy_count = (
            select(func.count(copies.id))
            .where(copies.copied_from_id == StudyList.id)
            .correlate(StudyList)
            .scalar_subquery()
        )

        stmt = (
            select(
                StudyList.id,
                StudyList.title,
                StudyList.slug,
                StudyList.description,
                StudyList.category,
                StudyList.user_id,
                StudyList.created_at,
                User.username,
                User.profile_picture_url,
                User.avatar_url,
                item_count.label("item_count"),
                copy_count.label("copy_count"),
            )
            .join(User, User.id == StudyList.user_id)
            .where(StudyList.is_public.is_(True), User.username.isnot(None))
        )
        if category is not None:
            stmt = stmt.where(StudyList.category == category)

        result = await self.session.execute(stmt)
        return [
            ListSnapshot(
                id=row.id,
                title=row.title,
                slug=row.slug,
                description=row.description,
                category=row.category,
                user_id=row.user_id,
                username=row.username,
                profile_picture_url=row.profile_picture_url,
                avatar_url=row.avatar_url,
                created_at=row.created_at,
                item_count=row.item_count or 0,
                copy_count=row.copy_count or 0,
            )
            for row in result.all()
        ]

    async def _load_vote_tallies(self, list_ids: Sequence[UUID]) -> dict[UUID, VoteTally]:
        """One grouped count over (list, type); lists without votes are absent."""
        if not list_ids:
            return {}

        stmt = (
            select(Vote.study_list_id, Vote.type, func.count(Vote.id))
            .where(Vote.study_list_id.in_(list_ids))
            .group_by(Vote.study_list_id, Vote.type)
        )
        result = await self.session.execute(stmt)

        counts: dict[UUID, dict[str, int]] = {}
        for list_id, vote_type, count in result.all():
            counts.setdefault(list_id, {})[vote_type] = count

        return {
            list_id: VoteTally(
                up=by_type.get(VoteType.UP.value, 0),
                down=by_type.get(VoteType.DOWN.value, 0),
            )
            for list_id, by_type in counts.items()
        }

    async def _load_viewer_votes(
        self, user_id: UUID, list_ids: Sequence[UUID]
    ) -> dict[UUID, VoteType]:
        """The viewer's votes, restricted to the lists on the page."""
        stmt = select(Vote.study_list_id, Vote.type).where(
            Vote.user_id == user_id, Vote.study_list_id.in_(list_ids)
        )
        result = await self.session.execute(stmt)
        return {list_id: VoteType(vote_type) for list_id, vote_type in result.all()}
