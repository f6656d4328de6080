"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
Wire names are camelCase to match the browser extension.
"""

import re
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from zone.domains import is_valid_domain

EMAIL_PATTERN = re.compile(r"^\S+@\S+\.\S+$")


class WireModel(BaseModel):
    """Base for camelCase wire models that also accept snake_case names."""

    model_config = ConfigDict(populate_by_name=True)


def _validate_domain(v: str) -> str:
    v = v.strip()
    if not is_valid_domain(v):
        raise ValueError("Domain must be a valid domain name")
    return v


# ============================================================================
# Error envelope
# ============================================================================


class ErrorResponse(BaseModel):
    """Shared shape of every error response."""

    success: bool = False
    error: str
    details: list[Any] | None = None


# ============================================================================
# Auth / user models
# ============================================================================


class InitRequest(WireModel):
    """POST /api/auth/init request body."""

    uuid: UUID


class InitResponse(WireModel):
    """POST /api/auth/init response."""

    success: bool = True
    uuid: UUID


class EmailUpdateRequest(WireModel):
    """POST /api/auth/email request body."""

    uuid: UUID
    email: str = Field(..., min_length=3, max_length=255)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        """Trim, lower-case and sanity check the address."""
        v = v.strip().lower()
        if not EMAIL_PATTERN.match(v):
            raise ValueError("Email must be a valid email address")
        return v


class EmailUpdateResponse(WireModel):
    """POST /api/auth/email response."""

    success: bool = True
    email: str


class RuleInput(WireModel):
    """One rule in a rules.replace request."""

    domain: str = Field(..., min_length=1, max_length=253)
    daily_limit: float = Field(0, ge=0, alias="dailyLimit", allow_inf_nan=False)

    @field_validator("domain")
    @classmethod
    def validate_domain(cls, v: str) -> str:
        return _validate_domain(v)


class RulesReplaceRequest(WireModel):
    """POST /api/auth/rules request body."""

    uuid: UUID
    rules: list[RuleInput]


class RuleOutput(WireModel):
    """Persisted rule as returned by rules.replace."""

    domain: str
    daily_limit: float = Field(alias="dailyLimit")
    used_today: float = Field(alias="usedToday")
    last_reset: datetime = Field(alias="lastReset")


class RulesReplaceResponse(WireModel):
    """POST /api/auth/rules response."""

    success: bool = True
    rules: list[RuleOutput]


# ============================================================================
# Heartbeat models
# ============================================================================


class HeartbeatRequest(WireModel):
    """POST /api/heartbeat request body."""

    uuid: UUID
    domain: str = Field(..., min_length=1, max_length=253)
    seconds: float = Field(..., ge=0, allow_inf_nan=False)

    @field_validator("domain")
    @classmethod
    def validate_domain(cls, v: str) -> str:
        return _validate_domain(v)


class SuccessResponse(WireModel):
    """Plain acknowledgement."""

    success: bool = True


# ============================================================================
# Decision models
# ============================================================================


class ConfigRequest(WireModel):
    """POST /api/config request body."""

    uuid: UUID


class RuleDecisionOutput(WireModel):
    """Per-rule decision."""

    domain: str
    daily_limit: float = Field(alias="dailyLimit")
    used_today: float = Field(alias="usedToday")
    block: bool
    remaining: float


class ConfigResponse(WireModel):
    """POST /api/config response."""

    success: bool = True
    rules: list[RuleDecisionOutput]


# ============================================================================
# Override models
# ============================================================================


class UnlockRequest(WireModel):
    """POST /api/unlock/request request body."""

    uuid: UUID
    domain: str = Field(..., min_length=1, max_length=253)

    @field_validator("domain")
    @classmethod
    def validate_domain(cls, v: str) -> str:
        return _validate_domain(v)


class UnlockRequestResponse(WireModel):
    """POST /api/unlock/request response. ``otp`` is omitted in production."""

    success: bool
    sent: bool
    otp: str | None = None


class UnlockVerifyRequest(WireModel):
    """POST /api/unlock/verify request body."""

    uuid: UUID
    otp: str = Field(..., min_length=4, max_length=10, pattern=r"^[0-9]+$")


class UnlockVerifyResponse(WireModel):
    """POST /api/unlock/verify response."""

    success: bool = True
    unlocked: bool = True
    domain: str
    expires_at: datetime = Field(alias="expiresAt")


# ============================================================================
# Health
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    database: str
    timestamp: str
