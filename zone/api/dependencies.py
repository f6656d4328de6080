"""
FastAPI Dependencies - rate limiting and service wiring.
"""

from collections.abc import Awaitable, Callable

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from zone.db.session import get_db
from zone.exceptions import RateLimitExceededError
from zone.observability.metrics import metrics
from zone.services.code_delivery import CodeSender, get_code_sender
from zone.services.overrides import OverrideService
from zone.services.rate_limit import limiters

logger = get_logger(__name__)


def client_ip(request: Request) -> str:
    """Client address, honouring the first X-Forwarded-For hop from the proxy."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def _body_uuid(request: Request) -> str | None:
    try:
        body = await request.json()
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("uuid"), str):
        return body["uuid"]
    return None


def rate_limited(scope: str, per_user: bool = True) -> Callable[[Request], Awaitable[None]]:
    """
    Build a dependency enforcing the limiter for ``scope``.

    The key is the client IP, plus the body's uuid when ``per_user`` is set.

    Usage:
        @router.post("/unlock/request", dependencies=[Depends(rate_limited("unlock_request"))])
    """
    limiter = limiters[scope]

    async def _enforce(request: Request) -> None:
        key = client_ip(request)
        if per_user:
            key = f"{key}:{await _body_uuid(request) or '-'}"

        try:
            limiter.check(key)
        except RateLimitExceededError as e:
            metrics.record_rate_limited(e.scope)
            logger.info("rate_limited", scope=e.scope, retry_after=e.retry_after)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=e.message,
                headers={"Retry-After": str(e.retry_after)},
            ) from e

    return _enforce


def get_override_service(
    db: AsyncSession = Depends(get_db),
    sender: CodeSender = Depends(get_code_sender),
) -> OverrideService:
    """OverrideService bound to the request session and configured sender."""
    return OverrideService(db, sender)
