"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class VoteType(str, Enum):
    """Vote direction."""

    UP = "UP"
    DOWN = "DOWN"


class Category(str, Enum):
    """Fixed set of study list categories."""

    PROGRAMMING = "programming"
    DESIGN = "design"
    BUSINESS = "business"
    SCIENCE = "science"
    LANGUAGE = "language"
    MUSIC = "music"
    HEALTH = "health"
    WRITING = "writing"
    PERSONAL = "personal"
    OTHER = "other"


CATEGORY_VALUES: frozenset[str] = frozenset(c.value for c in Category)


class Tier(str, Enum):
    """Subscription tier."""

    FREE = "free"
    PREMIUM = "premium"


class BillingPeriod(str, Enum):
    """Subscription billing period."""

    MONTHLY = "monthly"
    YEARLY = "yearly"


class ErrorKind(str, Enum):
    """Failure categories returned by outcome-style operations."""

    AUTHENTICATION_REQUIRED = "authentication_required"
    VALIDATION_FAILED = "validation_failed"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INTERNAL = "internal"


# ============================================================================
# Vote Models
# ============================================================================


class VoteRequest(BaseModel):
    """POST /v1/discovery/lists/{list_id}/vote request body.

    The type is validated by the ledger so malformed values surface as
    ValidationFailed instead of a bare 422 from the framework.
    """

    type: str = Field(..., max_length=16, description="UP or DOWN")


class VoteResponse(BaseModel):
    """POST /v1/discovery/lists/{list_id}/vote response."""

    success: bool
    current_vote: VoteType | None = None


# ============================================================================
# Feed Models
# ============================================================================


class FeedOwner(BaseModel):
    """Public display fields of a list owner."""

    username: str | None
    profile_picture_url: str | None = None
    avatar_url: str | None = None


class FeedItem(BaseModel):
    """One ranked list in the discovery feed."""

    id: UUID
    title: str
    slug: str
    description: str | None
    category: str
    user_id: UUID
    user: FeedOwner
    item_count: int
    upvotes: int
    downvotes: int
    current_user_vote: VoteType | None
    href: str
    score: float


class FeedResponse(BaseModel):
    """GET /v1/discovery response."""

    lists: list[FeedItem]
    next_cursor: UUID | None
    is_authenticated: bool
    current_user_id: UUID | None


# ============================================================================
# Copy Models
# ============================================================================


class CopyResponse(BaseModel):
    """POST /v1/discovery/lists/{list_id}/copy response."""

    success: bool
    slug: str


# ============================================================================
# Downgrade Notice Models
# ============================================================================


class DowngradeNoticeResponse(BaseModel):
    """GET /v1/me/downgrade-notice response."""

    pending: bool
    privatized_count: int = 0


# ============================================================================
# Billing Models
# ============================================================================


class CheckoutRequest(BaseModel):
    """POST /v1/billing/checkout request body."""

    period: BillingPeriod


class CheckoutResponse(BaseModel):
    """Checkout session redirect target."""

    checkout_url: str


class LifetimeCountResponse(BaseModel):
    """GET /v1/billing/lifetime/count response."""

    claimed: int
    limit: int
    remaining: int


class SubscriptionInfoResponse(BaseModel):
    """GET /v1/billing/subscription response."""

    active: bool
    cancel_at_period_end: bool = False
    cancel_at: datetime | None = None
    current_period_end: datetime | None = None


class CancelSubscriptionResponse(BaseModel):
    """POST /v1/billing/subscription/cancel response."""

    cancel_at: datetime | None


class WebhookAckResponse(BaseModel):
    """Stripe webhook acknowledgement."""

    status: str
    event_id: str


# ============================================================================
# Health Models
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    database: str
    timestamp: str
