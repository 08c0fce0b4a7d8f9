"""Tests for the subscription endpoints with the directory and reconciler mocked."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import stripe
from httpx import AsyncClient

from classpace.api.deps import bearer_token
from classpace.billing.exceptions import (
    AuthenticationError,
    ConfigurationError,
    CustomerNotFoundError,
    SubscriptionNotFoundError,
)
from classpace.identity.directory import Principal
from classpace.services.reconciler import RefreshResult

PRINCIPAL = Principal(id="8d1c7b1e-4a5f-4f0e-9c1b-2a3b4c5d6e7f", email="teacher@classpace.test")


def _directory(principal: Principal | None = PRINCIPAL, error: Exception | None = None) -> MagicMock:
    directory = MagicMock()
    directory.verify_token = AsyncMock(return_value=principal, side_effect=error)
    return directory


def _patched(directory: MagicMock, reconciler: MagicMock):
    return (
        patch("classpace.api.v1.subscriptions.get_identity_directory", return_value=directory),
        patch("classpace.api.v1.subscriptions.build_reconciler", return_value=reconciler),
    )


class TestBearerToken:
    def test_strips_scheme(self):
        assert bearer_token("Bearer abc.def") == "abc.def"
        assert bearer_token("bearer abc") == "abc"

    def test_missing_or_wrong_scheme(self):
        assert bearer_token(None) == ""
        assert bearer_token("") == ""
        assert bearer_token("Basic dXNlcg==") == ""


class TestListTiers:
    async def test_public(self, client: AsyncClient):
        response = await client.get("/api/v1/subscriptions/tiers")
        assert response.status_code == 200
        names = {t["name"] for t in response.json()["tiers"]}
        assert names == {"free", "teacher_premium", "student_premium"}


class TestResume:
    async def test_success(self, client: AsyncClient, auth_headers: dict):
        directory = _directory()
        reconciler = MagicMock()
        reconciler.resume_subscription = AsyncMock(
            return_value=datetime(2026, 11, 19, 12, 0, tzinfo=timezone.utc)
        )
        p_dir, p_rec = _patched(directory, reconciler)

        with p_dir, p_rec:
            response = await client.post("/api/v1/subscriptions/resume", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["next_renewal"].startswith("2026-11-19T12:00:00")
        directory.verify_token.assert_awaited_once_with("test-access-token")
        reconciler.resume_subscription.assert_awaited_once_with(PRINCIPAL)

    async def test_null_renewal(self, client: AsyncClient, auth_headers: dict):
        reconciler = MagicMock()
        reconciler.resume_subscription = AsyncMock(return_value=None)
        p_dir, p_rec = _patched(_directory(), reconciler)

        with p_dir, p_rec:
            response = await client.post("/api/v1/subscriptions/resume", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {"success": True, "next_renewal": None}

    @pytest.mark.parametrize(
        "error",
        [
            CustomerNotFoundError("No Stripe customer found"),
            SubscriptionNotFoundError("No cancellable subscription found to resume"),
            stripe.APIConnectionError("network down"),
            ConfigurationError("STRIPE_SECRET_KEY is not set"),
        ],
    )
    async def test_failures_are_500_envelope(self, client: AsyncClient, auth_headers: dict, error):
        reconciler = MagicMock()
        reconciler.resume_subscription = AsyncMock(side_effect=error)
        p_dir, p_rec = _patched(_directory(), reconciler)

        with p_dir, p_rec:
            response = await client.post("/api/v1/subscriptions/resume", headers=auth_headers)

        assert response.status_code == 500
        body = response.json()
        assert set(body) == {"error"}
        assert body["error"]

    async def test_missing_header(self, client: AsyncClient):
        directory = _directory(error=AuthenticationError("No authorization header provided"))
        reconciler = MagicMock()
        reconciler.resume_subscription = AsyncMock()
        p_dir, p_rec = _patched(directory, reconciler)

        with p_dir, p_rec:
            response = await client.post("/api/v1/subscriptions/resume")

        assert response.status_code == 500
        assert response.json() == {"error": "No authorization header provided"}
        directory.verify_token.assert_awaited_once_with("")
        reconciler.resume_subscription.assert_not_awaited()


class TestCancel:
    async def test_success(self, client: AsyncClient, auth_headers: dict):
        reconciler = MagicMock()
        reconciler.cancel_subscription = AsyncMock(
            return_value=datetime(2026, 12, 1, tzinfo=timezone.utc)
        )
        p_dir, p_rec = _patched(_directory(), reconciler)

        with p_dir, p_rec:
            response = await client.post("/api/v1/subscriptions/cancel", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["cancel_at"].startswith("2026-12-01T00:00:00")

    async def test_invalid_token(self, client: AsyncClient):
        directory = _directory(error=AuthenticationError("Authentication error: invalid JWT"))
        p_dir, p_rec = _patched(directory, MagicMock())

        with p_dir, p_rec:
            response = await client.post(
                "/api/v1/subscriptions/cancel", headers={"Authorization": "Bearer nope"}
            )

        assert response.status_code == 500
        assert "invalid JWT" in response.json()["error"]


class TestCheck:
    async def test_subscribed(self, client: AsyncClient, auth_headers: dict):
        reconciler = MagicMock()
        reconciler.refresh_subscription = AsyncMock(
            return_value=RefreshResult(
                subscribed=True,
                tier="teacher_premium",
                product_id="prod_teacher",
                subscription_end=datetime(2026, 11, 1, tzinfo=timezone.utc),
                cancel_at_period_end=True,
            )
        )
        p_dir, p_rec = _patched(_directory(), reconciler)

        with p_dir, p_rec:
            response = await client.post("/api/v1/subscriptions/check", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["subscribed"] is True
        assert data["tier"] == "teacher_premium"
        assert data["product_id"] == "prod_teacher"
        assert data["cancel_at_period_end"] is True

    async def test_free(self, client: AsyncClient, auth_headers: dict):
        reconciler = MagicMock()
        reconciler.refresh_subscription = AsyncMock(
            return_value=RefreshResult(subscribed=False, tier="free")
        )
        p_dir, p_rec = _patched(_directory(), reconciler)

        with p_dir, p_rec:
            response = await client.post("/api/v1/subscriptions/check", headers=auth_headers)

        assert response.json() == {
            "subscribed": False,
            "tier": "free",
            "product_id": None,
            "subscription_end": None,
            "cancel_at_period_end": False,
        }


class TestHealth:
    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
