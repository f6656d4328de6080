"""
Tests for API Routes.

Route handlers are called directly with mocked services; the error envelope,
validation and rate limiting are exercised through the full app with
dependency overrides.
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from conftest import NOW, create_mock_rule, create_mock_user
from fastapi import HTTPException
from fastapi.testclient import TestClient

from zone.api.dependencies import get_override_service
from zone.api.routes import get_config, heartbeat, init_user, replace_rules, request_unlock, verify_unlock
from zone.db.session import get_db
from zone.exceptions import OverrideForbiddenError, PreconditionFailedError, UserNotFoundError
from zone.main import app
from zone.models.api import (
    ConfigRequest,
    HeartbeatRequest,
    InitRequest,
    RuleInput,
    RulesReplaceRequest,
    UnlockRequest,
    UnlockVerifyRequest,
)
from zone.models.domain import HeartbeatResult, OverrideData, OverrideRequestResult, RuleData, RuleDecision

# ============================================================================
# Direct route calls
# ============================================================================


class TestInitRoute:
    """Tests for init_user."""

    @pytest.mark.asyncio
    async def test_returns_uuid(self, db_session: AsyncMock):
        user_uuid = uuid4()
        with patch("zone.api.routes.LedgerService") as mock_cls:
            mock_cls.return_value.init_user = AsyncMock(return_value=create_mock_user(user_uuid=user_uuid))

            response = await init_user(InitRequest(uuid=user_uuid), db_session)

        assert response.success is True
        assert response.uuid == user_uuid


class TestRulesRoute:
    """Tests for replace_rules."""

    @pytest.mark.asyncio
    async def test_maps_rules_to_output(self, db_session: AsyncMock):
        data = RuleData("example.com", 30.0, 4.0, NOW)
        request = RulesReplaceRequest(uuid=uuid4(), rules=[RuleInput(domain="example.com", dailyLimit=30)])

        with patch("zone.api.routes.LedgerService") as mock_cls:
            mock_cls.return_value.replace_rules = AsyncMock(return_value=[data])

            response = await replace_rules(request, db_session)

        specs = mock_cls.return_value.replace_rules.await_args.args[1]
        assert specs[0].daily_limit_minutes == 30
        assert response.rules[0].used_today == 4.0
        assert response.model_dump(by_alias=True)["rules"][0]["dailyLimit"] == 30.0

    @pytest.mark.asyncio
    async def test_unknown_user_is_404(self, db_session: AsyncMock):
        request = RulesReplaceRequest(uuid=uuid4(), rules=[])
        with patch("zone.api.routes.LedgerService") as mock_cls:
            mock_cls.return_value.replace_rules = AsyncMock(side_effect=UserNotFoundError(request.uuid))

            with pytest.raises(HTTPException) as exc_info:
                await replace_rules(request, db_session)

        assert exc_info.value.status_code == 404
        assert exc_info.value.detail == "User not found"


class TestHeartbeatRoute:
    """Tests for heartbeat."""

    @pytest.mark.asyncio
    async def test_unmatched_domain_still_succeeds(self, db_session: AsyncMock):
        request = HeartbeatRequest(uuid=uuid4(), domain="other.com", seconds=30)
        with patch("zone.api.routes.LedgerService") as mock_cls:
            mock_cls.return_value.ingest = AsyncMock(return_value=HeartbeatResult(matched=False, domain="other.com"))

            response = await heartbeat(request, db_session)

        assert response.success is True


class TestConfigRoute:
    """Tests for get_config."""

    @pytest.mark.asyncio
    async def test_maps_decisions(self, db_session: AsyncMock):
        decision = RuleDecision("example.com", 30.0, 30.0, 0.0, True)
        with patch("zone.api.routes.DecisionService") as mock_cls:
            mock_cls.return_value.get_decisions = AsyncMock(return_value=[decision])

            response = await get_config(ConfigRequest(uuid=uuid4()), db_session)

        dumped = response.model_dump(by_alias=True)
        assert dumped["rules"] == [
            {"domain": "example.com", "dailyLimit": 30.0, "usedToday": 30.0, "block": True, "remaining": 0.0}
        ]


class TestUnlockRoutes:
    """Tests for request_unlock and verify_unlock."""

    @pytest.mark.asyncio
    async def test_request_echoes_code_outside_production(self):
        service = MagicMock()
        service.request_override = AsyncMock(return_value=OverrideRequestResult(sent=True, code="123456", reused=False))

        response = await request_unlock(UnlockRequest(uuid=uuid4(), domain="example.com"), service)

        assert response.sent is True
        assert response.otp == "123456"

    @pytest.mark.asyncio
    async def test_request_hides_code_in_production(self):
        service = MagicMock()
        service.request_override = AsyncMock(return_value=OverrideRequestResult(sent=True, code="123456", reused=False))

        with patch("zone.api.routes.settings") as mock_settings:
            mock_settings.is_production = True
            response = await request_unlock(UnlockRequest(uuid=uuid4(), domain="example.com"), service)

        assert response.otp is None

    @pytest.mark.asyncio
    async def test_request_without_email_is_412(self):
        service = MagicMock()
        service.request_override = AsyncMock(side_effect=PreconditionFailedError("User has no email configured"))

        with pytest.raises(HTTPException) as exc_info:
            await request_unlock(UnlockRequest(uuid=uuid4(), domain="example.com"), service)

        assert exc_info.value.status_code == 412

    @pytest.mark.asyncio
    async def test_verify_failure_is_403_with_reason(self):
        service = MagicMock()
        service.verify_override = AsyncMock(
            side_effect=OverrideForbiddenError(OverrideForbiddenError.EXPIRED)
        )

        with pytest.raises(HTTPException) as exc_info:
            await verify_unlock(UnlockVerifyRequest(uuid=uuid4(), otp="123456"), service)

        assert exc_info.value.status_code == 403
        assert exc_info.value.detail == "OTP has expired. Please request a new one."

    @pytest.mark.asyncio
    async def test_verify_success(self):
        user_uuid = uuid4()
        expires_at = NOW + timedelta(minutes=10)
        service = MagicMock()
        service.verify_override = AsyncMock(return_value=OverrideData(user_uuid, "example.com", expires_at))

        response = await verify_unlock(UnlockVerifyRequest(uuid=user_uuid, otp="123456"), service)

        assert response.model_dump(by_alias=True)["expiresAt"] == expires_at


# ============================================================================
# Full app: envelope, validation, rate limits
# ============================================================================


@pytest.fixture
def client(db_session: AsyncMock):
    """TestClient with database dependencies replaced by the mock session."""

    async def _db():
        yield db_session

    app.dependency_overrides[get_db] = _db
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestErrorEnvelope:
    """Every failure renders {success: false, error}."""

    def test_unknown_user_is_404(self, client: TestClient):
        response = client.post("/api/config", json={"uuid": str(uuid4())})

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "User not found"}

    def test_validation_failure_is_400(self, client: TestClient):
        response = client.post(
            "/api/heartbeat", json={"uuid": str(uuid4()), "domain": "example.com", "seconds": -5}
        )

        body = response.json()
        assert response.status_code == 400
        assert body["success"] is False
        assert body["error"] == "Validation failed"
        assert body["details"]

    def test_invalid_domain_is_400(self, client: TestClient):
        response = client.post(
            "/api/heartbeat", json={"uuid": str(uuid4()), "domain": "not a domain", "seconds": 5}
        )
        assert response.status_code == 400

    def test_non_ascii_digit_otp_is_400(self, client: TestClient):
        response = client.post("/api/unlock/verify", json={"uuid": str(uuid4()), "otp": "١٢٣٤٥٦"})

        assert response.status_code == 400
        assert response.json()["error"] == "Validation failed"

    def test_unknown_route(self, client: TestClient):
        response = client.post("/api/nope", json={})

        assert response.status_code == 404
        assert response.json()["error"] == "Route not found"

    def test_config_for_known_user(self, client: TestClient, db_session: AsyncMock):
        user = create_mock_user(rules=[create_mock_rule(daily_limit_minutes=10, used_today_minutes=10)])
        db_session.execute = AsyncMock(
            return_value=MagicMock(scalar_one_or_none=MagicMock(return_value=user))
        )

        with patch("zone.services.decisions._utc_now", return_value=NOW):
            response = client.post("/api/config", json={"uuid": str(user.uuid)})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["rules"][0]["block"] is True
        assert body["rules"][0]["dailyLimit"] == 10

    def test_unlock_request_without_email_is_412(self, client: TestClient, db_session: AsyncMock):
        user = create_mock_user(email=None)
        db_session.execute = AsyncMock(
            return_value=MagicMock(scalar_one_or_none=MagicMock(return_value=user))
        )

        response = client.post("/api/unlock/request", json={"uuid": str(user.uuid), "domain": "example.com"})

        assert response.status_code == 412
        assert response.json()["success"] is False


class TestRateLimits:
    """Rate limits surface as 429 in the envelope."""

    def test_unlock_request_limited_after_three(self, client: TestClient):
        service = MagicMock()
        service.request_override = AsyncMock(
            return_value=OverrideRequestResult(sent=True, code="123456", reused=False)
        )
        app.dependency_overrides[get_override_service] = lambda: service
        payload = {"uuid": str(uuid4()), "domain": "example.com"}

        statuses = [client.post("/api/unlock/request", json=payload).status_code for _ in range(4)]

        assert statuses == [200, 200, 200, 429]
        limited = client.post("/api/unlock/request", json=payload)
        assert limited.json()["error"] == "Too many OTP requests, please try again later"
        assert int(limited.headers["Retry-After"]) > 0

    def test_limits_are_per_user(self, client: TestClient):
        service = MagicMock()
        service.request_override = AsyncMock(
            return_value=OverrideRequestResult(sent=True, code="123456", reused=False)
        )
        app.dependency_overrides[get_override_service] = lambda: service

        for _ in range(3):
            client.post("/api/unlock/request", json={"uuid": str(uuid4()), "domain": "example.com"})
        response = client.post("/api/unlock/request", json={"uuid": str(uuid4()), "domain": "example.com"})

        assert response.status_code == 200


class TestHealth:
    """Tests for /health."""

    def test_healthy(self, client: TestClient):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["database"] == "connected"

    def test_database_down_is_503(self, client: TestClient, db_session: AsyncMock):
        db_session.execute = AsyncMock(side_effect=ConnectionError("down"))

        response = client.get("/health")

        assert response.status_code == 503
        assert response.json() == {"success": False, "error": "Database unavailable"}

    def test_root(self, client: TestClient):
        assert client.get("/").json()["status"] == "running"

    def test_request_id_echoed(self, client: TestClient):
        response = client.get("/health", headers={"X-Request-ID": "req-7"})

        assert response.headers["X-Request-ID"] == "req-7"

    def test_request_id_generated(self, client: TestClient):
        assert len(client.get("/health").headers["X-Request-ID"]) == 32
