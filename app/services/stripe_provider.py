"""
Stripe Payment Provider Implementation.

NO DICTIONARIES - All data uses strongly typed models.
"""

from datetime import UTC, datetime
from typing import Any

import stripe
from structlog import get_logger

from app.exceptions import ExternalErrorCategory, ExternalServiceError, SignatureInvalidError
from app.observability.metrics import metrics
from app.services.payment_provider import (
    BillingEvent,
    CheckoutIntent,
    CheckoutSession,
    SubscriptionInfo,
)

logger = get_logger(__name__)


def classify_stripe_error(exc: Exception) -> ExternalErrorCategory:
    """Map a Stripe SDK error to a coarse category."""
    if isinstance(exc, stripe.RateLimitError):
        return ExternalErrorCategory.RATE_LIMIT
    if isinstance(exc, stripe.APIConnectionError):
        return ExternalErrorCategory.CONNECTION
    if isinstance(
        exc, (stripe.AuthenticationError, stripe.PermissionError, stripe.InvalidRequestError)
    ):
        return ExternalErrorCategory.CONFIGURATION
    if isinstance(exc, stripe.APIError):
        return ExternalErrorCategory.API
    return ExternalErrorCategory.GENERIC


def _from_timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), UTC)


class StripeProvider:
    """
    Stripe payment provider implementation.

    Implements the PaymentProvider protocol for Stripe.
    """

    def __init__(self, api_key: str, webhook_secret: str) -> None:
        """
        Initialize Stripe provider.

        Args:
            api_key: Stripe secret API key
            webhook_secret: Stripe webhook signing secret
        """
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        stripe.api_key = api_key

    def _wrap_error(self, operation: str, exc: stripe.StripeError) -> ExternalServiceError:
        """Log the raw provider error and convert it."""
        category = classify_stripe_error(exc)
        metrics.external_service_errors_total.labels(category=category.value).inc()
        logger.error(
            f"stripe_{operation}_failed",
            category=category.value,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return ExternalServiceError(category, str(exc))

    async def create_customer(self, email: str, user_id: str) -> str:
        """
        Create a Stripe customer tagged with our user id.

        Raises:
            ExternalServiceError: If Stripe API call fails
        """
        try:
            logger.info("creating_stripe_customer", user_id=user_id)
            customer = stripe.Customer.create(email=email, metadata={"userId": user_id})
            logger.info("stripe_customer_created", user_id=user_id, customer_id=customer.id)
            customer_id: str = customer.id
            return customer_id
        except stripe.StripeError as exc:
            raise self._wrap_error("customer_create", exc) from exc

    async def create_checkout_session(self, intent: CheckoutIntent) -> CheckoutSession:
        """
        Create a Stripe Checkout Session.

        Args:
            intent: Checkout details (mode, price, redirect urls)

        Returns:
            Session id and hosted checkout url

        Raises:
            ExternalServiceError: If Stripe API call fails
        """
        try:
            logger.info(
                "creating_stripe_checkout_session",
                customer_id=intent.customer_id,
                mode=intent.mode.value,
            )

            session = stripe.checkout.Session.create(
                customer=intent.customer_id,
                mode=intent.mode.value,
                line_items=[{"price": intent.price_id, "quantity": 1}],
                success_url=intent.success_url,
                cancel_url=intent.cancel_url,
                metadata={"userId": intent.user_id},
            )

            if not session.url:
                raise ExternalServiceError(
                    ExternalErrorCategory.GENERIC, "Checkout session has no url"
                )

            logger.info(
                "stripe_checkout_session_created",
                session_id=session.id,
                mode=intent.mode.value,
            )
            return CheckoutSession(session_id=session.id, url=session.url)

        except stripe.StripeError as exc:
            raise self._wrap_error("checkout_create", exc) from exc

    async def get_active_subscription(self, customer_id: str) -> SubscriptionInfo | None:
        """Return the customer's active Stripe subscription, if any."""
        try:
            subscriptions = stripe.Subscription.list(
                customer=customer_id, status="active", limit=1
            )
        except stripe.StripeError as exc:
            raise self._wrap_error("subscription_list", exc) from exc

        if not subscriptions.data:
            return None
        return self._to_subscription_info(subscriptions.data[0])

    async def cancel_subscription(self, subscription_id: str) -> SubscriptionInfo:
        """Set cancel_at_period_end on a Stripe subscription."""
        try:
            logger.info("cancelling_stripe_subscription", subscription_id=subscription_id)
            subscription = stripe.Subscription.modify(
                subscription_id, cancel_at_period_end=True
            )
        except stripe.StripeError as exc:
            raise self._wrap_error("subscription_cancel", exc) from exc

        info = self._to_subscription_info(subscription)
        logger.info(
            "stripe_subscription_cancel_scheduled",
            subscription_id=subscription_id,
            current_period_end=info.current_period_end.isoformat()
            if info.current_period_end
            else None,
        )
        return info

    async def verify_webhook(self, payload: bytes, signature: str) -> BillingEvent:
        """
        Verify and parse Stripe webhook event.

        Args:
            payload: Raw webhook payload
            signature: Stripe-Signature header value

        Returns:
            Parsed billing event

        Raises:
            SignatureInvalidError: If the signature is missing or wrong
        """
        if not signature:
            logger.warning("stripe_webhook_signature_missing")
            raise SignatureInvalidError("Missing signature")

        try:
            event = stripe.Webhook.construct_event(  # type: ignore[no-untyped-call]
                payload, signature, self.webhook_secret
            )
        except stripe.SignatureVerificationError as exc:
            logger.error("stripe_webhook_verification_failed", error=str(exc))
            raise SignatureInvalidError("Invalid signature") from exc
        except ValueError as exc:
            logger.error("stripe_webhook_parsing_failed", error=str(exc))
            raise SignatureInvalidError(f"Failed to parse Stripe webhook: {exc}") from exc

        logger.info("stripe_webhook_verified", event_id=event.id, event_type=event.type)

        obj = event.data.object
        metadata = obj.get("metadata") or {}
        is_subscription_event = event.type.startswith("customer.subscription.")

        return BillingEvent(
            event_id=event.id,
            event_type=event.type,
            customer_id=obj.get("customer"),
            metadata_user_id=metadata.get("userId"),
            checkout_mode=obj.get("mode"),
            subscription_status=obj.get("status") if is_subscription_event else None,
        )

    def _to_subscription_info(self, subscription: Any) -> SubscriptionInfo:
        """Period end lives on the first subscription item in current API versions."""
        period_end = None
        items = subscription.get("items")
        if items and items.get("data"):
            period_end = items["data"][0].get("current_period_end")
        if period_end is None:
            period_end = subscription.get("current_period_end")

        return SubscriptionInfo(
            subscription_id=subscription.id,
            status=subscription.get("status", "active"),
            cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
            cancel_at=_from_timestamp(subscription.get("cancel_at")),
            current_period_end=_from_timestamp(period_end),
        )
