"""
Tests for custom exceptions.
"""

from uuid import uuid4

import pytest

from app.exceptions import (
    USER_FACING_MESSAGES,
    AuthenticationRequiredError,
    ExternalErrorCategory,
    ExternalServiceError,
    LifetimeSoldOutError,
    NoActiveSubscriptionError,
    NotFoundError,
    ReconciliationError,
    SignatureInvalidError,
    StudyListError,
)


class TestExceptionHierarchy:
    @pytest.mark.parametrize(
        "exc",
        [
            AuthenticationRequiredError(),
            NotFoundError("StudyList", uuid4()),
            ExternalServiceError(ExternalErrorCategory.API, "boom"),
            SignatureInvalidError("Invalid signature"),
            ReconciliationError("cus_1", "deadlock"),
            NoActiveSubscriptionError(uuid4()),
            LifetimeSoldOutError(100),
        ],
    )
    def test_all_derive_from_base(self, exc):
        assert isinstance(exc, StudyListError)

    def test_not_found_names_resource_only(self):
        list_id = uuid4()
        exc = NotFoundError("StudyList", list_id)

        assert str(exc) == "StudyList not found"
        assert exc.resource_id == list_id

    def test_reconciliation_error_keeps_customer(self):
        exc = ReconciliationError("cus_1", "deadlock")

        assert exc.customer_id == "cus_1"
        assert "cus_1" in str(exc)


class TestExternalServiceError:
    def test_every_category_has_a_message(self):
        assert set(USER_FACING_MESSAGES) == set(ExternalErrorCategory)

    @pytest.mark.parametrize("category", list(ExternalErrorCategory))
    def test_user_message_is_fixed_per_category(self, category):
        exc = ExternalServiceError(category, "sk_live_secret leaked in detail")

        assert exc.user_message == USER_FACING_MESSAGES[category]
        assert "sk_live" not in exc.user_message
