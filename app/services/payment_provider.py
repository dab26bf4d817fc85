"""
Payment Provider Protocol - Provider-agnostic interface.

NO DICTIONARIES - All data uses strongly typed models.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol


class CheckoutMode(str, Enum):
    """Hosted checkout flavour."""

    SUBSCRIPTION = "subscription"
    PAYMENT = "payment"


@dataclass(frozen=True)
class CheckoutIntent:
    """
    Provider-agnostic checkout request.

    Subscription mode for monthly/yearly plans, payment mode for the
    one-off lifetime purchase.
    """

    customer_id: str
    user_id: str
    mode: CheckoutMode
    price_id: str
    success_url: str
    cancel_url: str


@dataclass(frozen=True)
class CheckoutSession:
    """Created hosted checkout session."""

    session_id: str
    url: str


@dataclass(frozen=True)
class SubscriptionInfo:
    """Active subscription state as reported by the provider."""

    subscription_id: str
    status: str
    cancel_at_period_end: bool
    cancel_at: datetime | None
    current_period_end: datetime | None


@dataclass(frozen=True)
class BillingEvent:
    """
    Provider-agnostic webhook event.

    Only the fields the entitlement logic reads are extracted.
    """

    event_id: str
    event_type: str
    customer_id: str | None
    metadata_user_id: str | None = None
    checkout_mode: str | None = None
    subscription_status: str | None = None


class PaymentProvider(Protocol):
    """
    Payment provider protocol.

    BillingService depends only on this interface; StripeProvider is the
    production implementation.
    """

    async def create_customer(self, email: str, user_id: str) -> str:
        """
        Create a customer record at the provider.

        Returns:
            Provider customer id

        Raises:
            ExternalServiceError: If the provider call fails
        """
        ...

    async def create_checkout_session(self, intent: CheckoutIntent) -> CheckoutSession:
        """
        Create a hosted checkout session.

        Raises:
            ExternalServiceError: If the provider call fails
        """
        ...

    async def get_active_subscription(self, customer_id: str) -> SubscriptionInfo | None:
        """Return the customer's active subscription, if any."""
        ...

    async def cancel_subscription(self, subscription_id: str) -> SubscriptionInfo:
        """Schedule cancellation at the end of the current period."""
        ...

    async def verify_webhook(self, payload: bytes, signature: str) -> BillingEvent:
        """
        Verify and parse webhook event from provider.

        Raises:
            SignatureInvalidError: If signature verification fails
        """
        ...
