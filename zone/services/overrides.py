"""
Override Service - single-use codes that grant time-boxed unblocking.

State per user:
    Idle --request--> CodeIssued --verify ok--> Idle (+ ActiveOverride)
    CodeIssued --verify fail--> CodeIssued
    CodeIssued --expiry--> Idle (discarded lazily on the next request/verify)
"""

import secrets
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from zone.config import settings
from zone.db.models import ActiveOverride, User
from zone.domains import normalize_domain
from zone.exceptions import CodeDeliveryError, OverrideForbiddenError, PreconditionFailedError
from zone.models.domain import OverrideData, OverrideRequestResult
from zone.observability.metrics import metrics
from zone.services.code_delivery import CodeSender
from zone.services.ledger import LedgerService

logger = get_logger(__name__)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def generate_code(length: int) -> str:
    """Fixed-length numeric code from a CSPRNG."""
    return "".join(str(secrets.randbelow(10)) for _ in range(length))


def _code_age(user: User, now: datetime) -> timedelta | None:
    created_at = user.pending_created_at
    if created_at is None:
        return None
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=UTC)
    return now - created_at


def has_live_code(user: User, now: datetime, expiry: timedelta) -> bool:
    """A pending code younger than the expiry window."""
    age = _code_age(user, now)
    return bool(user.pending_code) and age is not None and age < expiry


def clear_pending(user: User) -> None:
    user.pending_code = None
    user.pending_domain = None
    user.pending_created_at = None


class OverrideService:
    """Issues and verifies override codes."""

    def __init__(self, session: AsyncSession, sender: CodeSender) -> None:
        self.session = session
        self.sender = sender
        self.ledger = LedgerService(session)

    async def request_override(self, user_uuid: UUID, domain: str) -> OverrideRequestResult:
        """
        Issue a code for ``domain`` and try to deliver it.

        A live pending code is reused rather than regenerated, so a double
        click cannot invalidate the code just sent. Delivery failure leaves
        the pending code in place.

        Raises:
            UserNotFoundError: unknown user
            PreconditionFailedError: no contact channel configured
        """
        user = await self.ledger.get_user(user_uuid)
        if not user.email:
            raise PreconditionFailedError("User has no email configured")

        now = _utc_now()
        expiry = timedelta(minutes=settings.override_code_expiry_minutes)
        if has_live_code(user, now, expiry):
            logger.debug("override_code_reused", user_uuid=str(user_uuid))
            return OverrideRequestResult(sent=True, code=user.pending_code or "", reused=True)

        code = generate_code(settings.override_code_length)
        user.pending_code = code
        user.pending_domain = normalize_domain(domain)
        user.pending_created_at = now
        await self.session.commit()

        metrics.override_codes_issued_total.inc()
        logger.info("override_code_issued", user_uuid=str(user_uuid), domain=user.pending_domain)

        try:
            await self.sender.send_code(user.email, code, user.pending_domain)
            sent = True
        except CodeDeliveryError as e:
            logger.warning("override_code_delivery_failed", user_uuid=str(user_uuid), error=str(e))
            sent = False

        metrics.record_code_delivery(sent)
        return OverrideRequestResult(sent=sent, code=code, reused=False)

    async def verify_override(self, user_uuid: UUID, code: str) -> OverrideData:
        """
        Exchange a pending code for an ActiveOverride.

        Raises:
            UserNotFoundError: unknown user
            OverrideForbiddenError: no pending code, expired code, or mismatch
        """
        user = await self.ledger.get_user(user_uuid)
        now = _utc_now()

        age = _code_age(user, now)
        if not user.pending_code or age is None:
            metrics.record_verification(OverrideForbiddenError.NO_PENDING_CODE)
            raise OverrideForbiddenError(OverrideForbiddenError.NO_PENDING_CODE)

        if age > timedelta(minutes=settings.override_code_expiry_minutes):
            clear_pending(user)
            await self.session.commit()
            metrics.record_verification(OverrideForbiddenError.EXPIRED)
            raise OverrideForbiddenError(OverrideForbiddenError.EXPIRED)

        if not code.isascii() or not secrets.compare_digest(user.pending_code, code):
            metrics.record_verification(OverrideForbiddenError.INVALID_CODE)
            logger.info("override_code_mismatch", user_uuid=str(user_uuid))
            raise OverrideForbiddenError(OverrideForbiddenError.INVALID_CODE)

        domain = user.pending_domain or ""
        expires_at = now + timedelta(minutes=settings.override_duration_minutes)
        user.overrides.append(ActiveOverride(domain=domain, expires_at=expires_at))
        clear_pending(user)
        await self.session.commit()

        metrics.record_verification("unlocked")
        logger.info(
            "override_installed",
            user_uuid=str(user_uuid),
            domain=domain,
            expires_at=expires_at.isoformat(),
        )
        return OverrideData(user_uuid=user_uuid, domain=domain, expires_at=expires_at)
