"""Tests for subscription and entitlement endpoints."""

from datetime import timedelta

import pytest
from fastapi import status
from httpx import AsyncClient

from app.core.time_utils import utcnow


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_missing_token(self, client: AsyncClient) -> None:
        response = await client.get("/api/v1/subscriptions/current")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.headers["www-authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_garbage_token(self, client: AsyncClient) -> None:
        response = await client.get(
            "/api/v1/subscriptions/current", headers={"Authorization": "Bearer not-a-jwt"}
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


class TestPlans:
    @pytest.mark.asyncio
    async def test_list_plans_public(self, client: AsyncClient, plans) -> None:
        response = await client.get("/api/v1/subscriptions/plans")

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert [plan["slug"] for plan in body] == ["monthly", "quarterly", "half-yearly", "annual"]
        assert body[0]["price"] == 59900
        assert body[0]["currency"] == "INR"


class TestCurrentSubscription:
    @pytest.mark.asyncio
    async def test_no_subscription(self, client: AsyncClient, auth_headers) -> None:
        response = await client.get("/api/v1/subscriptions/current", headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {
            "subscription": None,
            "has_access": False,
            "is_trial": False,
            "days_remaining": 0,
        }

    @pytest.mark.asyncio
    async def test_trial_flow(self, client: AsyncClient, auth_headers) -> None:
        created = await client.post("/api/v1/subscriptions/trial", headers=auth_headers)
        assert created.status_code == status.HTTP_201_CREATED
        assert created.json()["status"] == "trial"

        current = await client.get("/api/v1/subscriptions/current", headers=auth_headers)
        body = current.json()
        assert body["has_access"] is True
        assert body["is_trial"] is True
        assert body["days_remaining"] == 7

        again = await client.post("/api/v1/subscriptions/trial", headers=auth_headers)
        assert again.status_code == status.HTTP_400_BAD_REQUEST
        assert again.json()["detail"] == "Subscription already exists"

    @pytest.mark.asyncio
    async def test_lapsed_trial_expired_on_read(
        self, client: AsyncClient, student, auth_headers, make_subscription
    ) -> None:
        now = utcnow()
        await make_subscription(
            student, "trial", trial_started_at=now - timedelta(days=8), trial_expires_at=now - timedelta(days=1)
        )

        response = await client.get("/api/v1/subscriptions/current", headers=auth_headers)

        body = response.json()
        assert body["has_access"] is False
        assert body["subscription"]["status"] == "expired"


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_active(self, client: AsyncClient, student, auth_headers, make_subscription, plans) -> None:
        expires = utcnow() + timedelta(days=12)
        await make_subscription(student, "active", plans["monthly"], subscription_expires_at=expires)

        response = await client.post("/api/v1/subscriptions/cancel", headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["success"] is True
        assert body["access_until"] == expires.isoformat()

        current = (await client.get("/api/v1/subscriptions/current", headers=auth_headers)).json()
        assert current["subscription"]["status"] == "canceled"
        assert current["has_access"] is True

    @pytest.mark.asyncio
    async def test_cancel_trial_rejected(self, client: AsyncClient, auth_headers) -> None:
        await client.post("/api/v1/subscriptions/trial", headers=auth_headers)

        response = await client.post("/api/v1/subscriptions/cancel", headers=auth_headers)

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    @pytest.mark.asyncio
    async def test_cancel_without_subscription(self, client: AsyncClient, auth_headers) -> None:
        response = await client.post("/api/v1/subscriptions/cancel", headers=auth_headers)

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["detail"] == "No subscription found"


class TestEntitlements:
    @pytest.mark.asyncio
    async def test_check_without_subscription(self, client: AsyncClient, auth_headers) -> None:
        response = await client.get(
            "/api/v1/entitlements/check", params={"feature": "doubt_video"}, headers=auth_headers
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {
            "allowed": False,
            "reason": "No subscription found",
            "usage_count": None,
            "limit_value": None,
            "upgrade_required": True,
        }

    @pytest.mark.asyncio
    async def test_trial_allowed(self, client: AsyncClient, auth_headers) -> None:
        await client.post("/api/v1/subscriptions/trial", headers=auth_headers)

        response = await client.get(
            "/api/v1/entitlements/check", params={"feature": "doubt_video"}, headers=auth_headers
        )

        assert response.json()["allowed"] is True
        assert response.json()["reason"] == "trial_active"

    @pytest.mark.asyncio
    async def test_consume_until_forbidden(self, client: AsyncClient, student, auth_headers, make_subscription) -> None:
        await make_subscription(student, "expired")
        body = {"feature_slug": "doubt_video", "increment_usage": True}

        statuses = [
            (await client.post("/api/v1/entitlements/check", json=body, headers=auth_headers)).status_code
            for _ in range(4)
        ]

        assert statuses == [200, 200, 200, 403]
        denied = await client.post("/api/v1/entitlements/check", json=body, headers=auth_headers)
        assert denied.json()["reason"] == "limit_reached"
        assert denied.json()["usage_count"] == 3

    @pytest.mark.asyncio
    async def test_usage_endpoint(self, client: AsyncClient, student, auth_headers, make_subscription) -> None:
        await make_subscription(student, "expired")

        results = [
            (await client.post("/api/v1/entitlements/usage", json={"feature_slug": "doubt_video"}, headers=auth_headers)).json()
            for _ in range(4)
        ]

        assert [result["incremented"] for result in results] == [True, True, True, False]

    @pytest.mark.asyncio
    async def test_denied_check_is_forbidden_without_consuming(self, client: AsyncClient, auth_headers) -> None:
        response = await client.post(
            "/api/v1/entitlements/check", json={"feature_slug": "doubt_video"}, headers=auth_headers
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json() == {
            "allowed": False,
            "reason": "No subscription found",
            "usage_count": None,
            "limit_value": None,
            "upgrade_required": True,
        }

    @pytest.mark.asyncio
    async def test_consume_reports_updated_count(
        self, client: AsyncClient, student, auth_headers, make_subscription
    ) -> None:
        await make_subscription(student, "expired")
        body = {"feature_slug": "doubt_video", "increment_usage": True}

        counts = [
            (await client.post("/api/v1/entitlements/check", json=body, headers=auth_headers)).json()["usage_count"]
            for _ in range(3)
        ]
        peek = await client.post(
            "/api/v1/entitlements/check", json={"feature_slug": "doubt_video"}, headers=auth_headers
        )

        assert counts == [1, 2, 3]
        assert peek.status_code == status.HTTP_403_FORBIDDEN
        assert peek.json()["usage_count"] == 3
