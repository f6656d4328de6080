"""
API Routes - FastAPI endpoints for the usage ledger.

NO DICTIONARIES - All requests/responses use Pydantic models.
Service exceptions are translated to HTTP errors here; the error envelope
itself is rendered by the exception handlers in zone.main.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from zone.api.dependencies import get_override_service, rate_limited
from zone.config import settings
from zone.db.session import get_db
from zone.exceptions import OverrideForbiddenError, PreconditionFailedError, UserNotFoundError
from zone.models.api import (
    ConfigRequest,
    ConfigResponse,
    EmailUpdateRequest,
    EmailUpdateResponse,
    HealthResponse,
    HeartbeatRequest,
    InitRequest,
    InitResponse,
    RuleDecisionOutput,
    RuleOutput,
    RulesReplaceRequest,
    RulesReplaceResponse,
    SuccessResponse,
    UnlockRequest,
    UnlockRequestResponse,
    UnlockVerifyRequest,
    UnlockVerifyResponse,
)
from zone.models.domain import RuleSpec
from zone.services.decisions import DecisionService
from zone.services.ledger import LedgerService
from zone.services.overrides import OverrideService

logger = get_logger(__name__)

router = APIRouter(prefix="/api")
health_router = APIRouter()


def _user_not_found(exc: UserNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")


# ============================================================================
# Auth / user
# ============================================================================


@router.post(
    "/auth/init",
    response_model=InitResponse,
    dependencies=[Depends(rate_limited("api", per_user=False))],
)
async def init_user(
    request: InitRequest,
    db: AsyncSession = Depends(get_db),
) -> InitResponse:
    """Idempotent user creation/lookup."""
    user = await LedgerService(db).init_user(request.uuid)
    return InitResponse(uuid=user.uuid)


@router.post(
    "/auth/email",
    response_model=EmailUpdateResponse,
    dependencies=[Depends(rate_limited("api", per_user=False))],
)
async def update_email(
    request: EmailUpdateRequest,
    db: AsyncSession = Depends(get_db),
) -> EmailUpdateResponse:
    """Set the contact channel for override codes."""
    try:
        email = await LedgerService(db).update_email(request.uuid, request.email)
    except UserNotFoundError as exc:
        raise _user_not_found(exc) from exc
    return EmailUpdateResponse(email=email)


@router.post(
    "/auth/rules",
    response_model=RulesReplaceResponse,
    dependencies=[Depends(rate_limited("api", per_user=False))],
)
async def replace_rules(
    request: RulesReplaceRequest,
    db: AsyncSession = Depends(get_db),
) -> RulesReplaceResponse:
    """
    Replace the user's full rule set.

    Usage and last reset are preserved for domains that survive the edit.
    """
    specs = [RuleSpec(domain=r.domain, daily_limit_minutes=r.daily_limit) for r in request.rules]
    try:
        rules = await LedgerService(db).replace_rules(request.uuid, specs)
    except UserNotFoundError as exc:
        raise _user_not_found(exc) from exc

    return RulesReplaceResponse(
        rules=[
            RuleOutput(
                domain=r.domain,
                daily_limit=r.daily_limit_minutes,
                used_today=r.used_today_minutes,
                last_reset=r.last_reset_at,
            )
            for r in rules
        ]
    )


# ============================================================================
# Ingestion
# ============================================================================


@router.post(
    "/heartbeat",
    response_model=SuccessResponse,
    dependencies=[Depends(rate_limited("api", per_user=False))],
)
async def heartbeat(
    request: HeartbeatRequest,
    db: AsyncSession = Depends(get_db),
) -> SuccessResponse:
    """Fold an incremental usage report into the ledger."""
    try:
        await LedgerService(db).ingest(request.uuid, request.domain, request.seconds)
    except UserNotFoundError as exc:
        raise _user_not_found(exc) from exc
    return SuccessResponse()


# ============================================================================
# Decisions
# ============================================================================


@router.post(
    "/config",
    response_model=ConfigResponse,
    dependencies=[Depends(rate_limited("config"))],
)
async def get_config(
    request: ConfigRequest,
    db: AsyncSession = Depends(get_db),
) -> ConfigResponse:
    """Blocking decision for every rule of the user."""
    try:
        decisions = await DecisionService(db).get_decisions(request.uuid)
    except UserNotFoundError as exc:
        raise _user_not_found(exc) from exc

    return ConfigResponse(
        rules=[
            RuleDecisionOutput(
                domain=d.domain,
                daily_limit=d.daily_limit_minutes,
                used_today=d.used_today_minutes,
                block=d.should_block,
                remaining=d.remaining_minutes,
            )
            for d in decisions
        ]
    )


# ============================================================================
# Overrides
# ============================================================================


@router.post(
    "/unlock/request",
    response_model=UnlockRequestResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(rate_limited("unlock_request"))],
)
async def request_unlock(
    request: UnlockRequest,
    service: OverrideService = Depends(get_override_service),
) -> UnlockRequestResponse:
    """
    Issue an override code and attempt delivery.

    The code is echoed back outside production as a debug convenience.
    """
    try:
        result = await service.request_override(request.uuid, request.domain)
    except UserNotFoundError as exc:
        raise _user_not_found(exc) from exc
    except PreconditionFailedError as exc:
        raise HTTPException(
            status_code=status.HTTP_412_PRECONDITION_FAILED,
            detail=exc.message,
        ) from exc

    return UnlockRequestResponse(
        success=result.sent,
        sent=result.sent,
        otp=None if settings.is_production else result.code,
    )


@router.post(
    "/unlock/verify",
    response_model=UnlockVerifyResponse,
    dependencies=[Depends(rate_limited("unlock_verify"))],
)
async def verify_unlock(
    request: UnlockVerifyRequest,
    service: OverrideService = Depends(get_override_service),
) -> UnlockVerifyResponse:
    """Exchange a pending code for a time-boxed override."""
    try:
        override = await service.verify_override(request.uuid, request.otp)
    except UserNotFoundError as exc:
        raise _user_not_found(exc) from exc
    except OverrideForbiddenError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    return UnlockVerifyResponse(domain=override.domain, expires_at=override.expires_at)


# ============================================================================
# Health
# ============================================================================


@health_router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_db)) -> HealthResponse:
    """Liveness plus a database round trip."""
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("health_check_failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database unavailable",
        ) from e

    return HealthResponse(
        status="healthy",
        database="connected",
        timestamp=datetime.now(UTC).isoformat(),
    )


@health_router.get("/")
async def root() -> dict[str, str]:
    return {"service": settings.api_title, "version": settings.api_version, "status": "running"}
