"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from enum import Enum
from uuid import UUID


class StudyListError(Exception):
    """Base exception for all service errors."""

    pass


class AuthenticationRequiredError(StudyListError):
    """Raised when an operation needs a caller identity and none was given."""

    def __init__(self, message: str = "Not authenticated") -> None:
        self.message = message
        super().__init__(message)


class NotFoundError(StudyListError):
    """Raised when a resource is missing or not visible to the caller."""

    def __init__(self, resource: str, resource_id: UUID | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} not found")


class ExternalErrorCategory(str, Enum):
    """Coarse classes of payment provider failures."""

    RATE_LIMIT = "rate_limit"
    CONNECTION = "connection"
    CONFIGURATION = "configuration"
    API = "api"
    GENERIC = "generic"


USER_FACING_MESSAGES: dict[ExternalErrorCategory, str] = {
    ExternalErrorCategory.RATE_LIMIT: (
        "Too many requests to the payment service. Please try again in a moment."
    ),
    ExternalErrorCategory.CONNECTION: (
        "Could not reach the payment service. Check your connection and try again."
    ),
    ExternalErrorCategory.CONFIGURATION: (
        "The payment service is not configured correctly. Please contact support."
    ),
    ExternalErrorCategory.API: "The payment service returned an error. Please try again.",
    ExternalErrorCategory.GENERIC: "Could not create checkout session. Please try again.",
}


class ExternalServiceError(StudyListError):
    """Raised when the payment provider fails."""

    def __init__(self, category: ExternalErrorCategory, detail: str) -> None:
        self.category = category
        self.detail = detail
        super().__init__(f"Payment provider error ({category.value}): {detail}")

    @property
    def user_message(self) -> str:
        """Fixed message safe to show to end users."""
        return USER_FACING_MESSAGES[self.category]


class SignatureInvalidError(StudyListError):
    """Raised when an inbound billing event cannot be authenticated."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook verification error: {message}")


class ReconciliationError(StudyListError):
    """Raised when a downgrade reconciliation could not be committed.

    Retryable: reconciliation is idempotent.
    """

    def __init__(self, customer_id: str, message: str) -> None:
        self.customer_id = customer_id
        self.message = message
        super().__init__(f"Reconciliation failed for {customer_id}: {message}")


class NoActiveSubscriptionError(StudyListError):
    """Raised when a subscription operation finds nothing to act on."""

    def __init__(self, user_id: UUID) -> None:
        self.user_id = user_id
        super().__init__("No active subscription")


class LifetimeSoldOutError(StudyListError):
    """Raised when every lifetime spot has been claimed."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(f"All {limit} lifetime spots have been claimed.")


class DatabaseError(StudyListError):
    """Raised when database operation fails unexpectedly."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Database error: {message}")
