"""
Tests for API Routes.

Endpoint tests through TestClient with database, viewer and payment
provider overridden. Services are patched where the route only maps
their results to HTTP.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch
from uuid import uuid4

from fastapi.testclient import TestClient

from app.exceptions import (
    DatabaseError,
    ExternalErrorCategory,
    ExternalServiceError,
    LifetimeSoldOutError,
    NoActiveSubscriptionError,
    ReconciliationError,
    SignatureInvalidError,
)
from app.models.api import ErrorKind, VoteType
from app.models.domain import (
    CopyOutcome,
    DowngradeNotice,
    FeedEntry,
    FeedPage,
    ScoredList,
    ViewerContext,
    VoteOutcome,
    VoteTally,
)
from app.services.payment_provider import BillingEvent, CheckoutSession, SubscriptionInfo
from factories import make_result, make_snapshot

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


# ============================================================================
# Discovery
# ============================================================================


class TestDiscoveryFeed:
    """GET /v1/discovery"""

    def test_anonymous_feed(self, client: TestClient):
        snapshot = make_snapshot(NOW - timedelta(days=2))
        entry = FeedEntry(
            scored=ScoredList(snapshot=snapshot, tally=VoteTally(up=4, down=1), score=21.0),
            current_user_vote=None,
            href=f"/share/{snapshot.id}",
        )
        page = FeedPage(entries=(entry,), next_cursor=None, is_authenticated=False, current_user_id=None)

        with patch(
            "app.api.routes.FeedService.fetch_feed", new_callable=AsyncMock, return_value=page
        ) as mock_fetch:
            response = client.get("/v1/discovery", params={"category": "bogus", "cursor": "x"})

        assert response.status_code == 200
        body = response.json()
        assert body["is_authenticated"] is False
        assert body["next_cursor"] is None
        assert body["lists"][0]["id"] == str(snapshot.id)
        assert body["lists"][0]["upvotes"] == 4
        assert body["lists"][0]["downvotes"] == 1
        assert body["lists"][0]["user"]["username"] == "owner"
        assert body["lists"][0]["href"] == f"/share/{snapshot.id}"

        query, viewer = mock_fetch.call_args[0]
        assert query.category == "bogus"
        assert query.cursor == "x"
        assert viewer is None

    def test_invalid_token_reads_as_anonymous(self, client: TestClient):
        page = FeedPage(entries=(), next_cursor=None, is_authenticated=False, current_user_id=None)

        with patch(
            "app.api.routes.FeedService.fetch_feed", new_callable=AsyncMock, return_value=page
        ) as mock_fetch:
            response = client.get("/v1/discovery", headers={"Authorization": "Bearer garbage"})

        assert response.status_code == 200
        assert mock_fetch.call_args[0][1] is None

    def test_authenticated_feed(self, authenticated_client: TestClient, viewer: ViewerContext):
        snapshot = make_snapshot(NOW)
        entry = FeedEntry(
            scored=ScoredList(snapshot=snapshot, tally=VoteTally(up=1), score=17.0),
            current_user_vote=VoteType.UP,
            href=f"/share/{snapshot.id}",
        )
        page = FeedPage(
            entries=(entry,),
            next_cursor=snapshot.id,
            is_authenticated=True,
            current_user_id=viewer.user_id,
        )

        with patch("app.api.routes.FeedService.fetch_feed", new_callable=AsyncMock, return_value=page):
            response = authenticated_client.get("/v1/discovery")

        body = response.json()
        assert body["is_authenticated"] is True
        assert body["current_user_id"] == str(viewer.user_id)
        assert body["next_cursor"] == str(snapshot.id)
        assert body["lists"][0]["current_user_vote"] == "UP"


class TestVoteEndpoint:
    """POST /v1/discovery/lists/{list_id}/vote"""

    def test_requires_token(self, client: TestClient):
        response = client.post(f"/v1/discovery/lists/{uuid4()}/vote", json={"type": "UP"})

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_vote_recorded(self, authenticated_client: TestClient):
        with patch(
            "app.api.routes.VoteLedger.cast_vote",
            new_callable=AsyncMock,
            return_value=VoteOutcome.ok(VoteType.DOWN),
        ):
            response = authenticated_client.post(
                f"/v1/discovery/lists/{uuid4()}/vote", json={"type": "DOWN"}
            )

        assert response.status_code == 200
        assert response.json() == {"success": True, "current_vote": "DOWN"}

    def test_vote_toggled_off(self, authenticated_client: TestClient):
        with patch(
            "app.api.routes.VoteLedger.cast_vote",
            new_callable=AsyncMock,
            return_value=VoteOutcome.ok(None),
        ):
            response = authenticated_client.post(
                f"/v1/discovery/lists/{uuid4()}/vote", json={"type": "UP"}
            )

        assert response.json()["current_vote"] is None

    def test_failure_kinds_map_to_status(self, authenticated_client: TestClient):
        cases = [
            (ErrorKind.VALIDATION_FAILED, 422),
            (ErrorKind.NOT_FOUND, 404),
            (ErrorKind.CONFLICT, 409),
            (ErrorKind.INTERNAL, 500),
        ]
        for kind, expected in cases:
            with patch(
                "app.api.routes.VoteLedger.cast_vote",
                new_callable=AsyncMock,
                return_value=VoteOutcome.failure(kind, "nope"),
            ):
                response = authenticated_client.post(
                    f"/v1/discovery/lists/{uuid4()}/vote", json={"type": "UP"}
                )

            assert response.status_code == expected
            assert response.json()["detail"] == "nope"

    def test_malformed_type_reaches_ledger(
        self, authenticated_client: TestClient, db_session: AsyncMock
    ):
        """The real ledger rejects it before touching storage."""
        response = authenticated_client.post(
            f"/v1/discovery/lists/{uuid4()}/vote", json={"type": "SIDEWAYS"}
        )

        assert response.status_code == 422
        assert response.json()["detail"] == "Invalid vote type"
        db_session.execute.assert_not_called()

    def test_missing_body_field(self, authenticated_client: TestClient):
        response = authenticated_client.post(f"/v1/discovery/lists/{uuid4()}/vote", json={})

        assert response.status_code == 422


class TestCopyEndpoint:
    """POST /v1/discovery/lists/{list_id}/copy"""

    def test_copied(self, authenticated_client: TestClient):
        with patch(
            "app.api.routes.ListCopier.copy_list",
            new_callable=AsyncMock,
            return_value=CopyOutcome.ok("intro-to-rust"),
        ):
            response = authenticated_client.post(f"/v1/discovery/lists/{uuid4()}/copy")

        assert response.status_code == 200
        assert response.json() == {"success": True, "slug": "intro-to-rust"}

    def test_own_list_conflict(self, authenticated_client: TestClient):
        with patch(
            "app.api.routes.ListCopier.copy_list",
            new_callable=AsyncMock,
            return_value=CopyOutcome.failure(ErrorKind.CONFLICT, "You cannot copy your own list"),
        ):
            response = authenticated_client.post(f"/v1/discovery/lists/{uuid4()}/copy")

        assert response.status_code == 409
        assert response.json()["detail"] == "You cannot copy your own list"


# ============================================================================
# Downgrade Notice
# ============================================================================


class TestDowngradeNoticeEndpoints:
    """GET/DELETE /v1/me/downgrade-notice"""

    def test_pending(self, authenticated_client: TestClient):
        with patch(
            "app.api.routes.DowngradeNoticeService.get_notice",
            new_callable=AsyncMock,
            return_value=DowngradeNotice(privatized_count=3),
        ):
            response = authenticated_client.get("/v1/me/downgrade-notice")

        assert response.json() == {"pending": True, "privatized_count": 3}

    def test_nothing_pending(self, authenticated_client: TestClient):
        with patch(
            "app.api.routes.DowngradeNoticeService.get_notice",
            new_callable=AsyncMock,
            return_value=None,
        ):
            response = authenticated_client.get("/v1/me/downgrade-notice")

        assert response.json() == {"pending": False, "privatized_count": 0}

    def test_unknown_user(self, authenticated_client: TestClient):
        response = authenticated_client.get("/v1/me/downgrade-notice")

        assert response.status_code == 404

    def test_dismiss(self, authenticated_client: TestClient):
        with patch(
            "app.api.routes.DowngradeNoticeService.dismiss",
            new_callable=AsyncMock,
            return_value=True,
        ) as mock_dismiss:
            response = authenticated_client.delete("/v1/me/downgrade-notice")

        assert response.status_code == 200
        assert response.json()["pending"] is False
        mock_dismiss.assert_awaited_once()


# ============================================================================
# Billing
# ============================================================================


class TestCheckoutEndpoints:
    """POST /v1/billing/checkout and /v1/billing/checkout/lifetime"""

    def test_checkout(self, authenticated_client: TestClient):
        with patch(
            "app.api.routes.BillingService.start_checkout",
            new_callable=AsyncMock,
            return_value=CheckoutSession(session_id="cs_1", url="https://checkout.stripe.com/c/cs_1"),
        ):
            response = authenticated_client.post("/v1/billing/checkout", json={"period": "monthly"})

        assert response.status_code == 200
        assert response.json() == {"checkout_url": "https://checkout.stripe.com/c/cs_1"}

    def test_unknown_period(self, authenticated_client: TestClient):
        response = authenticated_client.post("/v1/billing/checkout", json={"period": "weekly"})

        assert response.status_code == 422

    def test_provider_failure_shows_fixed_message(self, authenticated_client: TestClient):
        with patch(
            "app.api.routes.BillingService.start_checkout",
            new_callable=AsyncMock,
            side_effect=ExternalServiceError(ExternalErrorCategory.RATE_LIMIT, "raw stripe text"),
        ):
            response = authenticated_client.post("/v1/billing/checkout", json={"period": "yearly"})

        assert response.status_code == 502
        assert "raw stripe text" not in response.text
        assert response.json()["detail"].startswith("Too many requests")

    def test_lifetime_sold_out(self, authenticated_client: TestClient):
        with patch(
            "app.api.routes.BillingService.start_lifetime_checkout",
            new_callable=AsyncMock,
            side_effect=LifetimeSoldOutError(100),
        ):
            response = authenticated_client.post("/v1/billing/checkout/lifetime")

        assert response.status_code == 409

    def test_lifetime_count_is_public(self, client: TestClient, db_session: AsyncMock):
        db_session.execute = AsyncMock(return_value=make_result(scalar=40))

        response = client.get("/v1/billing/lifetime/count")

        assert response.status_code == 200
        assert response.json() == {"claimed": 40, "limit": 100, "remaining": 60}


class TestSubscriptionEndpoints:
    """GET /v1/billing/subscription and POST /v1/billing/subscription/cancel"""

    def test_no_subscription(self, authenticated_client: TestClient):
        with patch(
            "app.api.routes.BillingService.get_subscription_info",
            new_callable=AsyncMock,
            return_value=None,
        ):
            response = authenticated_client.get("/v1/billing/subscription")

        assert response.json()["active"] is False

    def test_active_subscription(self, authenticated_client: TestClient):
        info = SubscriptionInfo(
            subscription_id="sub_1",
            status="active",
            cancel_at_period_end=False,
            cancel_at=None,
            current_period_end=NOW + timedelta(days=30),
        )
        with patch(
            "app.api.routes.BillingService.get_subscription_info",
            new_callable=AsyncMock,
            return_value=info,
        ):
            response = authenticated_client.get("/v1/billing/subscription")

        body = response.json()
        assert body["active"] is True
        assert body["cancel_at_period_end"] is False
        assert body["current_period_end"].startswith("2026-11-18")

    def test_cancel(self, authenticated_client: TestClient):
        period_end = NOW + timedelta(days=10)
        info = SubscriptionInfo(
            subscription_id="sub_1",
            status="active",
            cancel_at_period_end=True,
            cancel_at=period_end,
            current_period_end=period_end,
        )
        with patch(
            "app.api.routes.BillingService.cancel_subscription",
            new_callable=AsyncMock,
            return_value=info,
        ):
            response = authenticated_client.post("/v1/billing/subscription/cancel")

        assert response.status_code == 200
        assert response.json()["cancel_at"].startswith("2026-10-29")

    def test_cancel_without_subscription(self, authenticated_client: TestClient, viewer: ViewerContext):
        with patch(
            "app.api.routes.BillingService.cancel_subscription",
            new_callable=AsyncMock,
            side_effect=NoActiveSubscriptionError(viewer.user_id),
        ):
            response = authenticated_client.post("/v1/billing/subscription/cancel")

        assert response.status_code == 404


class TestStripeWebhook:
    """POST /v1/billing/webhooks/stripe"""

    def _event(self) -> BillingEvent:
        return BillingEvent(
            event_id="evt_1", event_type="customer.subscription.deleted", customer_id="cus_1"
        )

    def test_bad_signature(self, client: TestClient, payment_provider: AsyncMock):
        payment_provider.verify_webhook.side_effect = SignatureInvalidError("Invalid signature")

        response = client.post(
            "/v1/billing/webhooks/stripe", content=b"{}", headers={"stripe-signature": "bad"}
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid signature"

    def test_applied(self, client: TestClient, payment_provider: AsyncMock):
        payment_provider.verify_webhook.return_value = self._event()

        with patch(
            "app.api.routes.BillingService.apply_event",
            new_callable=AsyncMock,
            return_value="reconciled",
        ):
            response = client.post(
                "/v1/billing/webhooks/stripe", content=b"{}", headers={"stripe-signature": "t=1"}
            )

        assert response.status_code == 200
        assert response.json() == {"status": "reconciled", "event_id": "evt_1"}
        payment_provider.verify_webhook.assert_awaited_once_with(b"{}", "t=1")

    def test_reconcile_failure_asks_for_redelivery(
        self, client: TestClient, payment_provider: AsyncMock
    ):
        payment_provider.verify_webhook.return_value = self._event()

        with patch(
            "app.api.routes.BillingService.apply_event",
            new_callable=AsyncMock,
            side_effect=ReconciliationError("cus_1", "deadlock"),
        ):
            response = client.post(
                "/v1/billing/webhooks/stripe", content=b"{}", headers={"stripe-signature": "t=1"}
            )

        assert response.status_code == 500

    def test_store_failure_asks_for_redelivery(
        self, client: TestClient, payment_provider: AsyncMock
    ):
        payment_provider.verify_webhook.return_value = self._event()

        with patch(
            "app.api.routes.BillingService.apply_event",
            new_callable=AsyncMock,
            side_effect=DatabaseError("gone"),
        ):
            response = client.post(
                "/v1/billing/webhooks/stripe", content=b"{}", headers={"stripe-signature": "t=1"}
            )

        assert response.status_code == 500


# ============================================================================
# Health
# ============================================================================


class TestHealth:
    def test_healthy(self, client: TestClient):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["database"] == "connected"

    def test_unhealthy(self, client: TestClient, db_session: AsyncMock):
        db_session.execute = AsyncMock(side_effect=ConnectionError("refused"))

        response = client.get("/health")

        assert response.status_code == 503
