"""
Tests for the referral API routes.
"""

from guitar_dice.config import settings


class TestGenerateCode:
    """Tests for POST /api/referrals/generate-code."""

    async def test_generates_then_reuses(self, async_client, session_resolver, free_user):
        session_resolver.user_id = free_user

        first = await async_client.post("/api/referrals/generate-code")
        second = await async_client.post("/api/referrals/generate-code")

        assert first.status_code == 200
        assert first.json()["message"] == "Referral code generated successfully!"
        assert second.json() == {
            "referralCode": first.json()["referralCode"],
            "message": "You already have a referral code",
        }

    async def test_rate_limited(self, async_client, session_resolver, free_user):
        session_resolver.user_id = free_user

        for _ in range(settings.referral_rate_max):
            await async_client.post("/api/referrals/generate-code")
        response = await async_client.post("/api/referrals/generate-code")

        assert response.status_code == 429
        assert "retryAfter" in response.json()


class TestApply:
    """Tests for POST /api/referrals/apply."""

    async def test_applies_code(self, async_client, session_resolver, make_user):
        await make_user(referral_code="APPLY001")
        session_resolver.user_id = await make_user()

        response = await async_client.post("/api/referrals/apply", json={"referralCode": "apply001"})

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "Referral code applied successfully!",
        }

    async def test_invalid_code(self, async_client, session_resolver, free_user):
        session_resolver.user_id = free_user

        response = await async_client.post("/api/referrals/apply", json={"referralCode": "NOPE0000"})

        assert response.status_code == 400
        assert response.json() == {"success": False, "message": "Invalid referral code"}

    async def test_missing_code(self, async_client, session_resolver, free_user):
        session_resolver.user_id = free_user

        response = await async_client.post("/api/referrals/apply", json={})

        assert response.status_code == 400
        assert response.json()["message"] == "Invalid request data"

    async def test_csrf(self, async_client, session_resolver, free_user):
        session_resolver.user_id = free_user

        response = await async_client.post(
            "/api/referrals/apply",
            json={"referralCode": "ANY00000"},
            headers={"Origin": "https://evil.example.com"},
        )

        assert response.status_code == 403


class TestDashboard:
    """Tests for GET /api/referrals/dashboard."""

    async def test_lists_referrals(self, async_client, session_resolver, make_user):
        referrer = await make_user(referral_code="DASH0001")
        session_resolver.user_id = await make_user()
        await async_client.post("/api/referrals/apply", json={"referralCode": "DASH0001"})

        session_resolver.user_id = referrer
        response = await async_client.get("/api/referrals/dashboard")

        assert response.status_code == 200
        body = response.json()
        assert body["referralCode"] == "DASH0001"
        assert body["totalReferred"] == 1
        assert body["totalRewardsPending"] == 1
        assert body["referralRewardsEarned"] == 0
        assert body["referrals"][0]["rewardGranted"] is False

    async def test_empty_dashboard(self, async_client, session_resolver, free_user):
        session_resolver.user_id = free_user

        response = await async_client.get("/api/referrals/dashboard")

        assert response.json() == {
            "referralCode": None,
            "referrals": [],
            "totalReferred": 0,
            "totalRewardsPending": 0,
            "referralRewardsEarned": 0,
        }
