"""
API Routes - FastAPI endpoints for discovery, entitlements and billing.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.api.dependencies import get_optional_viewer, get_payment_provider, require_viewer
from app.config import settings
from app.db.session import get_read_db, get_write_db
from app.exceptions import (
    DatabaseError,
    ExternalServiceError,
    LifetimeSoldOutError,
    NoActiveSubscriptionError,
    NotFoundError,
    ReconciliationError,
    SignatureInvalidError,
)
from app.models.api import (
    CancelSubscriptionResponse,
    CheckoutRequest,
    CheckoutResponse,
    CopyResponse,
    DowngradeNoticeResponse,
    ErrorKind,
    FeedItem,
    FeedOwner,
    FeedResponse,
    HealthResponse,
    LifetimeCountResponse,
    SubscriptionInfoResponse,
    VoteRequest,
    VoteResponse,
    WebhookAckResponse,
)
from app.models.domain import FeedEntry, FeedQuery, ViewerContext
from app.services.billing import BillingService, count_lifetime_purchases
from app.services.copies import ListCopier
from app.services.downgrade import DowngradeNoticeService
from app.services.feed import FeedService
from app.services.payment_provider import PaymentProvider
from app.services.votes import VoteLedger

logger = get_logger(__name__)

router = APIRouter()

_OUTCOME_STATUS: dict[ErrorKind, int] = {
    ErrorKind.AUTHENTICATION_REQUIRED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.VALIDATION_FAILED: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _outcome_error(kind: ErrorKind | None, message: str | None) -> HTTPException:
    """Translate a failed operation outcome into an HTTP error."""
    code = status.HTTP_500_INTERNAL_SERVER_ERROR
    if kind is not None:
        code = _OUTCOME_STATUS[kind]
    return HTTPException(status_code=code, detail=message or "Request failed")


def _feed_item(entry: FeedEntry) -> FeedItem:
    snapshot = entry.scored.snapshot
    return FeedItem(
        id=snapshot.id,
        title=snapshot.title,
        slug=snapshot.slug,
        description=snapshot.description,
        category=snapshot.category,
        user_id=snapshot.user_id,
        user=FeedOwner(
            username=snapshot.username,
            profile_picture_url=snapshot.profile_picture_url,
            avatar_url=snapshot.avatar_url,
        ),
        item_count=snapshot.item_count,
        upvotes=entry.scored.tally.up,
        downvotes=entry.scored.tally.down,
        current_user_vote=entry.current_user_vote,
        href=entry.href,
        score=entry.scored.score,
    )


# =============================================================================
# Discovery
# =============================================================================


@router.get("/v1/discovery", response_model=FeedResponse)
async def get_discovery_feed(
    cursor: str | None = None,
    category: str | None = None,
    db: AsyncSession = Depends(get_read_db),
    viewer: ViewerContext | None = Depends(get_optional_viewer),
) -> FeedResponse:
    """
    Ranked feed of public lists.

    Unknown categories and unknown cursors are ignored rather than rejected.
    Read operation - uses replica when configured.
    """
    service = FeedService(db)
    page = await service.fetch_feed(FeedQuery(cursor=cursor, category=category), viewer)

    return FeedResponse(
        lists=[_feed_item(entry) for entry in page.entries],
        next_cursor=page.next_cursor,
        is_authenticated=page.is_authenticated,
        current_user_id=page.current_user_id,
    )


@router.post("/v1/discovery/lists/{list_id}/vote", response_model=VoteResponse)
async def vote_on_list(
    list_id: str,
    request: VoteRequest,
    db: AsyncSession = Depends(get_write_db),
    viewer: ViewerContext = Depends(require_viewer),
) -> VoteResponse:
    """
    Cast, toggle off, or switch the viewer's vote.

    Voting the same direction twice removes the vote.
    """
    ledger = VoteLedger(db)
    outcome = await ledger.cast_vote(viewer, list_id, request.type)

    if not outcome.success:
        raise _outcome_error(outcome.error_kind, outcome.error)

    return VoteResponse(success=True, current_vote=outcome.state)


@router.post("/v1/discovery/lists/{list_id}/copy", response_model=CopyResponse)
async def copy_list(
    list_id: str,
    db: AsyncSession = Depends(get_write_db),
    viewer: ViewerContext = Depends(require_viewer),
) -> CopyResponse:
    """Save a copy of another user's public list as a private list."""
    copier = ListCopier(db)
    outcome = await copier.copy_list(viewer, list_id)

    if not outcome.success or outcome.slug is None:
        raise _outcome_error(outcome.error_kind, outcome.error)

    return CopyResponse(success=True, slug=outcome.slug)


# =============================================================================
# Downgrade Notice
# =============================================================================


@router.get("/v1/me/downgrade-notice", response_model=DowngradeNoticeResponse)
async def get_downgrade_notice(
    db: AsyncSession = Depends(get_read_db),
    viewer: ViewerContext = Depends(require_viewer),
) -> DowngradeNoticeResponse:
    """Pending notice about lists made public by a lapsed subscription."""
    try:
        notice = await DowngradeNoticeService(db).get_notice(viewer)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    if notice is None:
        return DowngradeNoticeResponse(pending=False)
    return DowngradeNoticeResponse(pending=True, privatized_count=notice.privatized_count)


@router.delete("/v1/me/downgrade-notice", response_model=DowngradeNoticeResponse)
async def dismiss_downgrade_notice(
    db: AsyncSession = Depends(get_write_db),
    viewer: ViewerContext = Depends(require_viewer),
) -> DowngradeNoticeResponse:
    """Acknowledge the downgrade notice."""
    try:
        await DowngradeNoticeService(db).dismiss(viewer)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    return DowngradeNoticeResponse(pending=False)


# =============================================================================
# Billing
# =============================================================================


@router.post("/v1/billing/checkout", response_model=CheckoutResponse)
async def start_checkout(
    request: CheckoutRequest,
    db: AsyncSession = Depends(get_write_db),
    viewer: ViewerContext = Depends(require_viewer),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> CheckoutResponse:
    """Start a monthly or yearly subscription checkout."""
    service = BillingService(db, provider)
    try:
        session = await service.start_checkout(viewer, request.period)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ExternalServiceError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.user_message
        ) from exc

    return CheckoutResponse(checkout_url=session.url)


@router.post("/v1/billing/checkout/lifetime", response_model=CheckoutResponse)
async def start_lifetime_checkout(
    db: AsyncSession = Depends(get_write_db),
    viewer: ViewerContext = Depends(require_viewer),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> CheckoutResponse:
    """Start a one-off lifetime premium checkout while spots remain."""
    service = BillingService(db, provider)
    try:
        session = await service.start_lifetime_checkout(viewer)
    except LifetimeSoldOutError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ExternalServiceError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.user_message
        ) from exc

    return CheckoutResponse(checkout_url=session.url)


@router.get("/v1/billing/lifetime/count", response_model=LifetimeCountResponse)
async def get_lifetime_count(
    db: AsyncSession = Depends(get_read_db),
) -> LifetimeCountResponse:
    """How many lifetime spots are claimed. Public."""
    claimed = await count_lifetime_purchases(db)
    limit = settings.lifetime_spot_limit
    return LifetimeCountResponse(claimed=claimed, limit=limit, remaining=max(0, limit - claimed))


@router.get("/v1/billing/subscription", response_model=SubscriptionInfoResponse)
async def get_subscription(
    db: AsyncSession = Depends(get_read_db),
    viewer: ViewerContext = Depends(require_viewer),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> SubscriptionInfoResponse:
    """The viewer's active subscription, if any."""
    service = BillingService(db, provider)
    try:
        info = await service.get_subscription_info(viewer)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ExternalServiceError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.user_message
        ) from exc

    if info is None:
        return SubscriptionInfoResponse(active=False)
    return SubscriptionInfoResponse(
        active=True,
        cancel_at_period_end=info.cancel_at_period_end,
        cancel_at=info.cancel_at,
        current_period_end=info.current_period_end,
    )


@router.post("/v1/billing/subscription/cancel", response_model=CancelSubscriptionResponse)
async def cancel_subscription(
    db: AsyncSession = Depends(get_write_db),
    viewer: ViewerContext = Depends(require_viewer),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> CancelSubscriptionResponse:
    """Cancel the viewer's subscription at the end of the current period."""
    service = BillingService(db, provider)
    try:
        info = await service.cancel_subscription(viewer)
    except (NotFoundError, NoActiveSubscriptionError) as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ExternalServiceError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.user_message
        ) from exc

    return CancelSubscriptionResponse(cancel_at=info.current_period_end)


@router.post("/v1/billing/webhooks/stripe", response_model=WebhookAckResponse)
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_write_db),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> WebhookAckResponse:
    """
    Handle Stripe webhook events.

    Bad signatures get 400 (not retried). Storage failures get 500 so
    Stripe redelivers; every handler is safe to run again.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")

    try:
        event = await provider.verify_webhook(payload, signature)
    except SignatureInvalidError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc

    logger.info(
        "stripe_webhook_received",
        event_id=event.event_id,
        event_type=event.event_type,
    )

    service = BillingService(db, provider)
    try:
        outcome = await service.apply_event(event)
    except (ReconciliationError, DatabaseError) as exc:
        logger.error(
            "stripe_webhook_handler_failed",
            event_id=event.event_id,
            event_type=event.event_type,
            error=str(exc),
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook handler failed",
        ) from exc

    return WebhookAckResponse(status=outcome, event_id=event.event_id)


# =============================================================================
# Health
# =============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))

        return HealthResponse(
            status="healthy",
            database="connected",
            timestamp=datetime.now(UTC).isoformat(),
        )

    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(exc),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc
