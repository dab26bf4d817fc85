"""
Entitlement Downgrade Reconciler.

When a subscription lapses the user drops to the free tier, which allows a
limited number of private lists. Lists over the limit are made public (never
deleted), most recently updated ones kept private, and the user is left a
one-time notice saying how many were converted.

Reconciliation is a pure function of current state: running it again
converts nothing and leaves an existing notice alone, so webhook
redeliveries are harmless.
"""

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import settings
from app.db.models import StudyList, User
from app.exceptions import NotFoundError, ReconciliationError
from app.models.api import Tier
from app.models.domain import (
    ConversionPlan,
    DowngradeNotice,
    ReconciliationResult,
    ViewerContext,
)
from app.observability.metrics import metrics
from app.observability.tracing import trace_operation
from app.services.feed_cache import FeedInvalidationBus, feed_invalidation

logger = get_logger(__name__)


def plan_conversion(private_list_ids: Sequence[UUID], limit: int) -> ConversionPlan:
    """
    Split private lists, ordered most recently updated first, into the
    ones that stay private and the ones to make public.
    """
    if limit < 0:
        raise ValueError(f"limit cannot be negative: {limit}")
    return ConversionPlan(
        keep=tuple(private_list_ids[:limit]),
        convert=tuple(private_list_ids[limit:]),
    )


class DowngradeReconciler:
    """Brings a user's private lists in line with the free tier."""

    def __init__(
        self,
        session: AsyncSession,
        private_list_limit: int | None = None,
        invalidator: FeedInvalidationBus | None = None,
    ) -> None:
        self.session = session
        self.private_list_limit = (
            settings.free_private_list_limit if private_list_limit is None else private_list_limit
        )
        self.invalidator = invalidator or feed_invalidation

    async def reconcile(self, customer_id: str) -> ReconciliationResult | None:
        """
        Downgrade the user behind a billing customer id.

        Tier change, list conversion and notice are committed together.

        Returns:
            The result, or None when no user carries this customer id

        Raises:
            ReconciliationError: On any storage failure (nothing is applied)
        """
        with trace_operation("downgrade.reconcile", customer_id=customer_id) as span:
            try:
                user = await self._lock_user_by_customer(customer_id)
                if user is None:
                    metrics.record_reconciliation("unknown_customer")
                    logger.warning("downgrade_customer_unknown", customer_id=customer_id)
                    return None

                private_ids = await self._load_private_list_ids(user.id)
                plan = plan_conversion(private_ids, self.private_list_limit)

                if plan.convert:
                    await self._make_public(user.id, plan.convert)

                user.tier = Tier.FREE.value
                notice = None
                if plan.convert:
                    notice = DowngradeNotice(privatized_count=len(plan.convert))
                    user.pending_downgrade_notice = notice.to_payload()

                await self.session.flush()
                await self.session.commit()
            except SQLAlchemyError as exc:
                await self.session.rollback()
                metrics.record_reconciliation("failed")
                metrics.record_error(type(exc).__name__, "reconcile")
                logger.error(
                    "downgrade_reconcile_failed",
                    customer_id=customer_id,
                    error=str(exc),
                )
                raise ReconciliationError(customer_id, str(exc)) from exc

            span.set_attribute("converted", len(plan.convert))

        result = ReconciliationResult(
            user_id=user.id,
            tier=Tier.FREE,
            converted_list_ids=plan.convert,
            notice=notice,
        )

        metrics.record_reconciliation("applied", converted=result.converted_count)
        logger.info(
            "downgrade_reconciled",
            user_id=str(user.id),
            customer_id=customer_id,
            kept_private=len(plan.keep),
            converted=result.converted_count,
        )

        if plan.convert:
            await self.invalidator.publish("downgrade")

        return result

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _lock_user_by_customer(self, customer_id: str) -> User | None:
        """Lock user row for update (SELECT FOR UPDATE)."""
        stmt = select(User).where(User.stripe_customer_id == customer_id).with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _load_private_list_ids(self, user_id: UUID) -> list[UUID]:
        """Private list ids, most recently updated first."""
        stmt = (
            select(StudyList.id)
            .where(StudyList.user_id == user_id, StudyList.is_public.is_(False))
            .order_by(StudyList.updated_at.desc(), StudyList.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def _make_public(self, user_id: UUID, list_ids: Sequence[UUID]) -> None:
        stmt = (
            update(StudyList)
            .where(StudyList.id.in_(list_ids), StudyList.user_id == user_id)
            .values(is_public=True)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)


class DowngradeNoticeService:
    """Reads and dismisses the pending downgrade notice."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_notice(self, viewer: ViewerContext) -> DowngradeNotice | None:
        user = await self.session.get(User, viewer.user_id)
        if user is None:
            raise NotFoundError("User", viewer.user_id)
        return DowngradeNotice.from_payload(user.pending_downgrade_notice)

    async def dismiss(self, viewer: ViewerContext) -> bool:
        """Clear the notice. Returns whether one was pending."""
        user = await self.session.get(User, viewer.user_id)
        if user is None:
            raise NotFoundError("User", viewer.user_id)

        was_pending = user.pending_downgrade_notice is not None
        if was_pending:
            user.pending_downgrade_notice = None
            await self.session.flush()
            await self.session.commit()
            logger.info("downgrade_notice_dismissed", user_id=str(viewer.user_id))
        return was_pending
