"""
Billing Service - checkout, subscription management and webhook handling.

Tier changes driven by the payment provider all pass through apply_event;
downgrades are delegated to DowngradeReconciler.
"""

from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import settings
from app.db.models import User
from app.exceptions import (
    DatabaseError,
    ExternalErrorCategory,
    ExternalServiceError,
    LifetimeSoldOutError,
    NoActiveSubscriptionError,
    NotFoundError,
)
from app.models.api import BillingPeriod, Tier
from app.models.domain import ViewerContext
from app.observability.metrics import metrics
from app.services.downgrade import DowngradeReconciler
from app.services.payment_provider import (
    BillingEvent,
    CheckoutIntent,
    CheckoutMode,
    CheckoutSession,
    PaymentProvider,
    SubscriptionInfo,
)

logger = get_logger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"


async def count_lifetime_purchases(session: AsyncSession) -> int:
    """Number of users holding a lifetime purchase."""
    stmt = select(func.count(User.id)).where(User.lifetime_purchase.is_(True))
    result = await session.execute(stmt)
    return int(result.scalar_one())


class BillingService:
    """
    Billing operations for the authenticated viewer and for provider events.

    Customer creation follows the write pattern:
    1. Create at the provider
    2. Flush and commit the linkage
    3. On a unique-constraint race, roll back and read the winner's linkage
    """

    def __init__(
        self,
        session: AsyncSession,
        provider: PaymentProvider,
        reconciler: DowngradeReconciler | None = None,
    ) -> None:
        """Initialize billing service with database session and provider."""
        self.session = session
        self.provider = provider
        self.reconciler = reconciler or DowngradeReconciler(session)

    # ========================================================================
    # Checkout
    # ========================================================================

    async def start_checkout(self, viewer: ViewerContext, period: BillingPeriod) -> CheckoutSession:
        """Create a subscription checkout for the monthly or yearly plan."""
        prices = {
            BillingPeriod.MONTHLY: settings.stripe_price_monthly,
            BillingPeriod.YEARLY: settings.stripe_price_yearly,
        }
        return await self._checkout(viewer, CheckoutMode.SUBSCRIPTION, prices[period])

    async def start_lifetime_checkout(self, viewer: ViewerContext) -> CheckoutSession:
        """
        Create a one-off payment checkout for lifetime premium.

        Raises:
            LifetimeSoldOutError: When every lifetime spot is taken
        """
        claimed = await self.lifetime_purchase_count()
        if claimed >= settings.lifetime_spot_limit:
            logger.info("lifetime_sold_out", user_id=str(viewer.user_id), claimed=claimed)
            raise LifetimeSoldOutError(settings.lifetime_spot_limit)
        return await self._checkout(viewer, CheckoutMode.PAYMENT, settings.stripe_price_lifetime)

    async def lifetime_purchase_count(self) -> int:
        """Number of users holding a lifetime purchase."""
        return await count_lifetime_purchases(self.session)

    async def _checkout(
        self, viewer: ViewerContext, mode: CheckoutMode, price_id: str
    ) -> CheckoutSession:
        if not price_id:
            raise ExternalServiceError(
                ExternalErrorCategory.CONFIGURATION, f"No price configured for {mode.value}"
            )

        user = await self._get_user(viewer.user_id)
        customer_id = await self._ensure_customer(user)

        base_url = settings.app_base_url.rstrip("/")
        intent = CheckoutIntent(
            customer_id=customer_id,
            user_id=str(user.id),
            mode=mode,
            price_id=price_id,
            success_url=f"{base_url}/dashboard?upgraded=true",
            cancel_url=f"{base_url}/dashboard",
        )
        session = await self.provider.create_checkout_session(intent)
        logger.info(
            "checkout_started",
            user_id=str(user.id),
            mode=mode.value,
            session_id=session.session_id,
        )
        return session

    # ========================================================================
    # Subscription
    # ========================================================================

    async def get_subscription_info(self, viewer: ViewerContext) -> SubscriptionInfo | None:
        """The viewer's active subscription, None without one."""
        user = await self._get_user(viewer.user_id)
        if not user.stripe_customer_id:
            return None
        return await self.provider.get_active_subscription(user.stripe_customer_id)

    async def cancel_subscription(self, viewer: ViewerContext) -> SubscriptionInfo:
        """
        Cancel at the end of the current period.

        Raises:
            NoActiveSubscriptionError: When there is nothing to cancel
        """
        subscription = await self.get_subscription_info(viewer)
        if subscription is None:
            raise NoActiveSubscriptionError(viewer.user_id)

        cancelled = await self.provider.cancel_subscription(subscription.subscription_id)
        logger.info(
            "subscription_cancel_scheduled",
            user_id=str(viewer.user_id),
            subscription_id=subscription.subscription_id,
        )
        return cancelled

    # ========================================================================
    # Webhook Events
    # ========================================================================

    async def apply_event(self, event: BillingEvent) -> str:
        """
        Apply a verified provider event to user entitlements.

        Returns:
            Short outcome label (applied, reconciled, unknown_customer,
            skipped_lifetime, ignored)

        Raises:
            DatabaseError: If the tier update cannot be stored
            ReconciliationError: If a downgrade cannot be committed
        """
        if event.event_type == CHECKOUT_COMPLETED:
            outcome = await self._apply_checkout_completed(event)
        elif event.event_type == SUBSCRIPTION_DELETED:
            outcome = await self._apply_downgrade(event)
        elif event.event_type == SUBSCRIPTION_UPDATED:
            if event.subscription_status == "active":
                outcome = await self._apply_reactivation(event)
            else:
                outcome = await self._apply_downgrade(event)
        else:
            outcome = "ignored"

        metrics.record_webhook_event(event.event_type, outcome)
        logger.info(
            "billing_event_applied",
            event_id=event.event_id,
            event_type=event.event_type,
            customer_id=event.customer_id,
            outcome=outcome,
        )
        return outcome

    async def _apply_checkout_completed(self, event: BillingEvent) -> str:
        user_id = _parse_uuid(event.metadata_user_id)
        if user_id is None:
            logger.warning("checkout_event_without_user", event_id=event.event_id)
            return "ignored"

        try:
            user = await self.session.get(User, user_id)
            if user is None:
                logger.warning(
                    "checkout_event_unknown_user", event_id=event.event_id, user_id=str(user_id)
                )
                return "ignored"

            user.tier = Tier.PREMIUM.value
            if event.customer_id:
                user.stripe_customer_id = event.customer_id
            if event.checkout_mode == CheckoutMode.PAYMENT.value:
                user.lifetime_purchase = True

            await self.session.flush()
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error("checkout_event_store_failed", event_id=event.event_id, error=str(exc))
            raise DatabaseError(f"Failed to apply checkout for {user_id}: {exc}") from exc

        return "applied"

    async def _apply_reactivation(self, event: BillingEvent) -> str:
        if not event.customer_id:
            return "ignored"

        try:
            stmt = (
                update(User)
                .where(User.stripe_customer_id == event.customer_id)
                .values(tier=Tier.PREMIUM.value)
                .execution_options(synchronize_session=False)
            )
            await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error(
                "subscription_reactivation_failed",
                customer_id=event.customer_id,
                error=str(exc),
            )
            raise DatabaseError(f"Failed to reactivate {event.customer_id}: {exc}") from exc

        return "applied"

    async def _apply_downgrade(self, event: BillingEvent) -> str:
        if not event.customer_id:
            return "ignored"

        # Lifetime access outlives any subscription the user also held
        if await self._is_lifetime_customer(event.customer_id):
            return "skipped_lifetime"

        result = await self.reconciler.reconcile(event.customer_id)
        if result is None:
            return "unknown_customer"
        return "reconciled"

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _get_user(self, user_id: UUID) -> User:
        user = await self.session.get(User, user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    async def _ensure_customer(self, user: User) -> str:
        """Reuse the stored provider customer or create and store one."""
        if user.stripe_customer_id:
            return user.stripe_customer_id

        user_id = user.id
        customer_id = await self.provider.create_customer(user.email, str(user_id))
        user.stripe_customer_id = customer_id

        try:
            await self.session.flush()
            await self.session.commit()
        except IntegrityError as e:
            # Race condition - another checkout linked a customer first
            logger.error("customer_link_integrity_error", error=str(e), user_id=str(user_id))
            await self.session.rollback()
            winner = await self.session.get(User, user_id, populate_existing=True)
            if winner is None or not winner.stripe_customer_id:
                raise DatabaseError(f"Customer linkage failed: {e}") from e
            return winner.stripe_customer_id

        return customer_id

    async def _is_lifetime_customer(self, customer_id: str) -> bool:
        stmt = select(User.lifetime_purchase).where(User.stripe_customer_id == customer_id)
        result = await self.session.execute(stmt)
        return bool(result.scalar_one_or_none())


def _parse_uuid(value: str | None) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(value)
    except ValueError:
        return None
