"""
Tests for API request/response models.
"""

import math
from uuid import uuid4

import pytest
from hypothesis import given
from hypothesis import strategies as st
from pydantic import ValidationError

from zone.models.api import (
    EmailUpdateRequest,
    ErrorResponse,
    HeartbeatRequest,
    RuleInput,
    UnlockRequestResponse,
    UnlockVerifyRequest,
)


class TestHeartbeatRequest:
    """Ingestion input validation."""

    @given(st.floats(min_value=0, max_value=1e6, allow_nan=False, allow_infinity=False))
    def test_accepts_finite_non_negative(self, seconds: float):
        assert HeartbeatRequest(uuid=uuid4(), domain="example.com", seconds=seconds).seconds == seconds

    @pytest.mark.parametrize("seconds", [-1, math.inf, math.nan, "abc"])
    def test_rejects_bad_seconds(self, seconds):
        with pytest.raises(ValidationError):
            HeartbeatRequest(uuid=uuid4(), domain="example.com", seconds=seconds)

    def test_rejects_bad_uuid(self):
        with pytest.raises(ValidationError):
            HeartbeatRequest(uuid="not-a-uuid", domain="example.com", seconds=1)

    def test_rejects_bad_domain(self):
        with pytest.raises(ValidationError):
            HeartbeatRequest(uuid=uuid4(), domain="exa mple", seconds=1)


class TestRuleInput:
    def test_camel_case_alias(self):
        assert RuleInput.model_validate({"domain": "a.com", "dailyLimit": 15}).daily_limit == 15

    def test_negative_limit_rejected(self):
        with pytest.raises(ValidationError):
            RuleInput.model_validate({"domain": "a.com", "dailyLimit": -1})

    def test_limit_defaults_to_zero(self):
        assert RuleInput(domain="a.com").daily_limit == 0


class TestEmailUpdateRequest:
    def test_normalised(self):
        assert EmailUpdateRequest(uuid=uuid4(), email="  User@Example.COM ").email == "user@example.com"

    def test_invalid(self):
        with pytest.raises(ValidationError):
            EmailUpdateRequest(uuid=uuid4(), email="not-an-email")


class TestUnlockModels:
    def test_otp_must_be_digits(self):
        with pytest.raises(ValidationError):
            UnlockVerifyRequest(uuid=uuid4(), otp="12ab56")

    def test_otp_length(self):
        with pytest.raises(ValidationError):
            UnlockVerifyRequest(uuid=uuid4(), otp="123")

    def test_otp_omitted_when_none(self):
        dumped = UnlockRequestResponse(success=True, sent=True).model_dump(exclude_none=True)
        assert dumped == {"success": True, "sent": True}


class TestErrorResponse:
    def test_envelope(self):
        assert ErrorResponse(error="boom").model_dump(exclude_none=True) == {
            "success": False,
            "error": "boom",
        }
