"""Tests for the HTTP API."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from solvegate.app.core.config import settings
from solvegate.app.exceptions import UpstreamError

ADMIN_TOKEN = "test-admin-token-0123456789"


def _authenticate(client, device_id: str = "dev-1", **extra) -> dict:
    resp = client.post("/auth", json={"device_id": device_id, **extra})
    assert resp.status_code == 200, resp.text
    return resp.json()


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _solve(client, token: str, question: str = "Solve 2x + 3 = 7", subject: str = "math", **extra):
    return client.post(
        "/solve",
        json={"question": question, "subject": subject, **extra},
        headers=_bearer(token),
    )


class TestAuthApi:
    """Session issuance and revocation."""

    def test_device_auth_creates_free_user(self, client):
        body = _authenticate(client, device_model="iPhone15,2", app_version="2.1.0")

        assert body["token"]
        assert body["expires_at"]
        assert body["user"]["tier"] == "free"
        assert body["user"]["daily_limit"] == 5
        assert body["user"]["remaining"] == 5
        assert body["user"]["requires_parental_consent"] is False

    def test_blank_device_id_rejected(self, client):
        resp = client.post("/auth", json={"device_id": "   "})

        assert resp.status_code == 422

    def test_login_with_credentials(self, client):
        token = _authenticate(client)["token"]
        resp = client.post(
            "/me/credentials",
            json={"email": "Student@Example.com", "password": "password-123"},
            headers=_bearer(token),
        )
        assert resp.status_code == 200
        assert resp.json()["email"] == "student@example.com"

        login = client.post(
            "/auth/login", json={"email": "student@example.com", "password": "password-123"}
        )
        assert login.status_code == 200
        assert login.json()["user"]["id"] == resp.json()["id"]

        wrong = client.post(
            "/auth/login", json={"email": "student@example.com", "password": "not-it"}
        )
        assert wrong.status_code == 401
        assert wrong.headers["WWW-Authenticate"] == "Bearer"
        assert wrong.json()["error"] == "unauthenticated"

    def test_logout_revokes_session(self, client):
        token = _authenticate(client)["token"]

        resp = client.post("/auth/logout", headers=_bearer(token))
        assert resp.status_code == 200
        assert resp.json() == {"revoked": True}

        assert client.get("/me", headers=_bearer(token)).status_code == 401

    def test_logout_requires_token(self, client):
        resp = client.post("/auth/logout")

        assert resp.status_code == 401
        assert resp.json()["error"] == "unauthenticated"

    def test_auth_tier_rate_limited(self, client):
        for i in range(5):
            _authenticate(client, device_id=f"dev-{i}")

        resp = client.post("/auth", json={"device_id": "dev-6"})

        assert resp.status_code == 429
        assert resp.json()["error"] == "rate_limit_exceeded"
        assert "Retry-After" in resp.headers


class TestSolveApi:
    """POST /solve."""

    def test_success(self, client, provider):
        token = _authenticate(client)["token"]

        resp = _solve(client, token)

        assert resp.status_code == 200
        body = resp.json()
        assert body["solution"] == provider.text
        assert body["subject"] == "math"
        assert body["tokens_used"] == 400
        assert body["remaining"] == 4
        assert body["quota"]["requests_today"] == 1
        assert resp.headers["X-RateLimit-Limit"] == "10"
        assert "X-Request-ID" in resp.headers

    def test_image_is_forwarded(self, client, provider):
        token = _authenticate(client)["token"]

        resp = _solve(client, token, question="What is shown?", image="aGVsbG8=")

        assert resp.status_code == 200
        assert provider.calls[0]["image"] == "aGVsbG8="

    def test_blank_image_is_ignored(self, client, provider):
        token = _authenticate(client)["token"]

        _solve(client, token, image="  ")

        assert provider.calls[0]["image"] is None

    def test_missing_token(self, client):
        resp = client.post("/solve", json={"question": "Solve x", "subject": "math"})

        assert resp.status_code == 401

    def test_invalid_token(self, client, provider):
        resp = _solve(client, "not-a-real-token")

        assert resp.status_code == 401
        assert resp.json()["error"] == "unauthenticated"
        assert provider.calls == []

    @pytest.mark.parametrize(
        "payload",
        [
            {"question": "Solve x", "subject": "astrology"},
            {"question": "   ", "subject": "math"},
            {"question": "x" * 5001, "subject": "math"},
            {"subject": "math"},
        ],
    )
    def test_invalid_payload(self, client, payload):
        token = _authenticate(client)["token"]

        resp = client.post("/solve", json=payload, headers=_bearer(token))

        assert resp.status_code == 422

    def test_policy_blocked(self, client, provider):
        token = _authenticate(client)["token"]

        resp = _solve(client, token, question="Final exam question 2, do not share")

        assert resp.status_code == 400
        assert resp.json()["error"] == "policy_blocked"
        assert provider.calls == []

    def test_quota_exhausted(self, client, config):
        token = _authenticate(client)["token"]
        for _ in range(5):
            assert _solve(client, token).status_code == 200

        resp = _solve(client, token)

        assert resp.status_code == 429
        body = resp.json()
        assert body["error"] == "quota_exceeded"
        assert body["remaining"] == 0
        assert body["upgrade_url"] == config.upgrade_url
        assert int(resp.headers["Retry-After"]) >= 1

    def test_budget_exhausted(self, client, config):
        token = _authenticate(client)["token"]
        config.daily_budget_cents = 0

        resp = _solve(client, token)

        assert resp.status_code == 503
        assert resp.json()["error"] == "budget_exceeded"
        assert resp.headers["Retry-After"] == "60"

    def test_upstream_failure(self, client, provider):
        token = _authenticate(client)["token"]
        provider.error = UpstreamError()

        resp = _solve(client, token)

        assert resp.status_code == 502
        assert resp.json()["error"] == "upstream_error"
        me = client.get("/me", headers=_bearer(token)).json()
        assert me["requests_today"] == 0


class TestMeApi:
    """The caller's own account."""

    def test_get_me(self, client):
        auth = _authenticate(client)
        _solve(client, auth["token"])

        resp = client.get("/me", headers=_bearer(auth["token"]))

        assert resp.status_code == 200
        body = resp.json()
        assert body["id"] == auth["user"]["id"]
        assert body["requests_today"] == 1
        assert body["requests_total"] == 1
        assert body["remaining"] == 4

    def test_short_password_rejected(self, client):
        token = _authenticate(client)["token"]

        resp = client.post(
            "/me/credentials",
            json={"email": "a@example.com", "password": "short"},
            headers=_bearer(token),
        )

        assert resp.status_code == 422

    def test_email_already_registered(self, client):
        first = _authenticate(client, device_id="dev-a")["token"]
        second = _authenticate(client, device_id="dev-b")["token"]
        payload = {"email": "shared@example.com", "password": "password-123"}
        assert client.post("/me/credentials", json=payload, headers=_bearer(first)).status_code == 200

        resp = client.post("/me/credentials", json=payload, headers=_bearer(second))

        assert resp.status_code == 409
        assert resp.json()["error"] == "conflict"

    def test_under_13_requires_parental_consent(self, client):
        token = _authenticate(client)["token"]

        resp = client.post("/me/age-verification", json={"age": 11}, headers=_bearer(token))

        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_request"

    def test_under_13_with_consent(self, client):
        token = _authenticate(client)["token"]

        resp = client.post(
            "/me/age-verification",
            json={"age": 11, "parental_consent_token": "consent-abc"},
            headers=_bearer(token),
        )

        assert resp.status_code == 200
        assert resp.json()["requires_parental_consent"] is False

    def test_age_13_and_over(self, client):
        token = _authenticate(client)["token"]

        resp = client.post("/me/age-verification", json={"age": 15}, headers=_bearer(token))

        assert resp.status_code == 200

    def test_age_out_of_range(self, client):
        token = _authenticate(client)["token"]

        resp = client.post("/me/age-verification", json={"age": 0}, headers=_bearer(token))

        assert resp.status_code == 422


class TestHistoryApi:
    """GET /history."""

    def test_paginates_newest_first(self, client):
        token = _authenticate(client)["token"]
        for n in range(3):
            assert _solve(client, token, question=f"Solve x + {n} = 10").status_code == 200

        page1 = client.get("/history?page=1&limit=2", headers=_bearer(token)).json()
        page2 = client.get("/history?page=2&limit=2", headers=_bearer(token)).json()

        assert [item["question"] for item in page1["items"]] == [
            "Solve x + 2 = 10",
            "Solve x + 1 = 10",
        ]
        assert page1["pagination"] == {"page": 1, "limit": 2, "total": 3, "total_pages": 2}
        assert [item["question"] for item in page2["items"]] == ["Solve x + 0 = 10"]

    def test_only_own_records(self, client):
        first = _authenticate(client, device_id="dev-a")["token"]
        second = _authenticate(client, device_id="dev-b")["token"]
        _solve(client, first)

        body = client.get("/history", headers=_bearer(second)).json()

        assert body["items"] == []
        assert body["pagination"]["total"] == 0
        assert body["pagination"]["total_pages"] == 0

    def test_limit_bounds(self, client):
        token = _authenticate(client)["token"]

        assert client.get("/history?limit=101", headers=_bearer(token)).status_code == 422
        assert client.get("/history?page=0", headers=_bearer(token)).status_code == 422


class TestAdminApi:
    """Operator endpoints."""

    @pytest.fixture
    def admin_headers(self, monkeypatch):
        monkeypatch.setattr(settings, "admin_token", ADMIN_TOKEN)
        return _bearer(ADMIN_TOKEN)

    def test_disabled_without_configured_token(self, client, monkeypatch):
        monkeypatch.setattr(settings, "admin_token", "")

        resp = client.get("/admin/stats", headers=_bearer("anything"))

        assert resp.status_code == 401

    def test_wrong_token(self, client, admin_headers):
        resp = client.get("/admin/stats", headers=_bearer("wrong"))

        assert resp.status_code == 401

    def test_stats(self, client, admin_headers):
        token = _authenticate(client)["token"]
        _solve(client, token)

        resp = client.get("/admin/stats", headers=admin_headers)

        assert resp.status_code == 200
        body = resp.json()
        assert body["total_users"] == 1
        assert body["premium_users"] == 0
        assert body["total_requests"] == 1
        assert body["daily_calls"] == 1
        assert body["daily_tokens"] == 400
        assert body["daily_cost_cents"] == 1
        assert body["cache"] == "connected"

    def test_grant_premium(self, client, admin_headers):
        auth = _authenticate(client)

        resp = client.post(
            "/admin/entitlements",
            json={"user_id": auth["user"]["id"], "tier": "premium"},
            headers=admin_headers,
        )

        assert resp.status_code == 200
        assert resp.json() == {"user_id": auth["user"]["id"], "tier": "premium"}
        me = client.get("/me", headers=_bearer(auth["token"])).json()
        assert me["tier"] == "premium"
        assert me["daily_limit"] == 999

    def test_unknown_tier(self, client, admin_headers):
        auth = _authenticate(client)

        resp = client.post(
            "/admin/entitlements",
            json={"user_id": auth["user"]["id"], "tier": "platinum"},
            headers=admin_headers,
        )

        assert resp.status_code == 400

    def test_unknown_user(self, client, admin_headers):
        resp = client.post(
            "/admin/entitlements", json={"user_id": 4242, "tier": "premium"}, headers=admin_headers
        )

        assert resp.status_code == 404
        assert resp.json()["error"] == "not_found"


class TestStoreOutage:
    """An unreachable account store maps to 503 store_error outside /solve."""

    @staticmethod
    def _outage():
        return AsyncMock(side_effect=OperationalError("SELECT 1", {}, Exception("database is locked")))

    def test_auth(self, client):
        with patch(
            "solvegate.app.services.session_manager.get_or_create_user_by_device", self._outage()
        ):
            resp = client.post("/auth", json={"device_id": "dev-1"})

        assert resp.status_code == 503
        assert resp.json()["error"] == "store_error"
        assert resp.headers["Retry-After"] == "5"

    def test_me(self, client):
        token = _authenticate(client)["token"]

        with patch("solvegate.app.services.session_manager.get_active_session_user", self._outage()):
            resp = client.get("/me", headers=_bearer(token))

        assert resp.status_code == 503
        assert resp.json()["error"] == "store_error"


class TestHealth:
    """GET /health."""

    def test_healthy(self, client, sync_db_url):
        engine = create_async_engine(sync_db_url, poolclass=NullPool)
        with patch("solvegate.app.main.get_async_engine", return_value=engine):
            resp = client.get("/health")

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["components"]["database"] == {"status": "ok"}
        assert body["components"]["cache"]["status"] == "ok"

    def test_database_down(self, client):
        engine = MagicMock()
        engine.connect.side_effect = OSError("connection refused")
        with patch("solvegate.app.main.get_async_engine", return_value=engine):
            resp = client.get("/health")

        assert resp.status_code == 503
        body = resp.json()
        assert body["status"] == "degraded"
        assert body["components"]["database"]["status"] == "error"

    def test_not_rate_limited(self, client, sync_db_url):
        engine = create_async_engine(sync_db_url, poolclass=NullPool)
        with patch("solvegate.app.main.get_async_engine", return_value=engine):
            resp = client.get("/health")

        assert "X-RateLimit-Limit" not in resp.headers
