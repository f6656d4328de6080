"""
Ledger Service - per-user rules and daily usage accounting.

NO DICTIONARIES - All operations use strongly typed domain models.

The daily reset is lazy: a rule's usage is zeroed by the first ingestion of
a new calendar day, never by a background job.
"""

from collections.abc import Sequence
from datetime import UTC, datetime, tzinfo
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from zone.config import settings
from zone.db.models import Rule, User
from zone.domains import normalize_domain
from zone.exceptions import DataIntegrityError, UserNotFoundError
from zone.models.domain import HeartbeatResult, RuleData, RuleSpec
from zone.observability.metrics import metrics
from zone.observability.tracing import trace_operation

logger = get_logger(__name__)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def _is_current_day(timestamp: datetime | None, now: datetime, tz: tzinfo) -> bool:
    """Whether ``timestamp`` falls on the same server calendar day as ``now``."""
    if timestamp is None:
        return False
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)
    return timestamp.astimezone(tz).date() == now.astimezone(tz).date()


def apply_heartbeat(rule: Rule, seconds: float, now: datetime, tz: tzinfo) -> bool:
    """
    Fold one heartbeat into a rule.

    Zeroes the rule first when its last reset is from an earlier day.
    Returns True when that reset happened.
    """
    reset = not _is_current_day(rule.last_reset_at, now, tz)
    if reset:
        rule.used_today_minutes = 0.0
        rule.last_reset_at = now
    rule.used_today_minutes = float(rule.used_today_minutes or 0.0) + seconds / 60
    return reset


def effective_used_minutes(rule: Rule, now: datetime, tz: tzinfo) -> float:
    """Usage as of ``now``; stale usage from an earlier day reads as zero."""
    if not _is_current_day(rule.last_reset_at, now, tz):
        return 0.0
    return float(rule.used_today_minutes or 0.0)


def find_rule(rules: Sequence[Rule], domain: str) -> Rule | None:
    """Exact match on the normalised domain."""
    wanted = normalize_domain(domain)
    for rule in rules:
        if normalize_domain(rule.domain) == wanted:
            return rule
    return None


def merge_rules(existing: Sequence[Rule], specs: Sequence[RuleSpec], now: datetime) -> list[Rule]:
    """
    Build the replacement rule list.

    A spec whose domain already has a rule reuses that row, so usage and the
    last reset carry over; only the limit changes. Duplicate domains in
    ``specs`` keep their first occurrence.
    """
    by_domain = {normalize_domain(r.domain): r for r in existing}
    merged: list[Rule] = []
    seen: set[str] = set()

    for spec in specs:
        domain = normalize_domain(spec.domain)
        if domain in seen:
            continue
        seen.add(domain)

        rule = by_domain.get(domain)
        if rule is None:
            rule = Rule(
                domain=domain,
                used_today_minutes=0.0,
                last_reset_at=now,
            )
        rule.daily_limit_minutes = float(spec.daily_limit_minutes)
        rule.position = len(merged)
        merged.append(rule)

    return merged


def to_rule_data(rule: Rule) -> RuleData:
    return RuleData(
        domain=rule.domain,
        daily_limit_minutes=float(rule.daily_limit_minutes or 0.0),
        used_today_minutes=float(rule.used_today_minutes or 0.0),
        last_reset_at=rule.last_reset_at,
    )


class LedgerService:
    """
    Usage ledger operations.

    Every write is a single read-modify-write of one user's rows; concurrent
    heartbeats for the same user are not serialised.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize ledger service with database session."""
        self.session = session

    async def get_user(self, user_uuid: UUID) -> User:
        """Load a user with rules and overrides, or raise UserNotFoundError."""
        result = await self.session.execute(select(User).where(User.uuid == user_uuid))
        user = result.scalar_one_or_none()
        if user is None:
            raise UserNotFoundError(user_uuid)
        return user

    async def init_user(self, user_uuid: UUID) -> User:
        """
        Idempotent user creation/lookup.

        Handles the race where two tabs initialise the same UUID at once.
        """
        result = await self.session.execute(select(User).where(User.uuid == user_uuid))
        user = result.scalar_one_or_none()
        if user is not None:
            return user

        new_user = User(uuid=user_uuid, last_heartbeat_at=_utc_now())
        self.session.add(new_user)

        try:
            await self.session.flush()
            await self.session.commit()
        except IntegrityError as e:
            logger.warning("user_creation_integrity_error", error=str(e), user_uuid=str(user_uuid))
            await self.session.rollback()
            result = await self.session.execute(select(User).where(User.uuid == user_uuid))
            user = result.scalar_one_or_none()
            if user is None:
                raise DataIntegrityError(f"User creation failed: {e}") from e
            return user

        metrics.users_created_total.inc()
        logger.info("user_created", user_uuid=str(user_uuid))
        return new_user

    async def update_email(self, user_uuid: UUID, email: str) -> str:
        """Set the contact channel used for override codes."""
        user = await self.get_user(user_uuid)
        user.email = email
        await self.session.commit()
        logger.info("user_email_updated", user_uuid=str(user_uuid))
        return email

    async def replace_rules(self, user_uuid: UUID, specs: Sequence[RuleSpec]) -> list[RuleData]:
        """Replace the full rule set, preserving usage for unchanged domains."""
        user = await self.get_user(user_uuid)
        user.rules = merge_rules(user.rules, specs, _utc_now())
        await self.session.flush()
        await self.session.commit()

        logger.info("rules_replaced", user_uuid=str(user_uuid), rule_count=len(user.rules))
        return [to_rule_data(rule) for rule in user.rules]

    async def ingest(self, user_uuid: UUID, domain: str, seconds: float) -> HeartbeatResult:
        """
        Fold an incremental usage report into the ledger.

        Domains without a rule are acknowledged without effect. ``seconds``
        has already been validated as finite and non-negative.
        """
        user = await self.get_user(user_uuid)
        now = _utc_now()
        user.last_heartbeat_at = now

        rule = find_rule(user.rules, domain)
        if rule is None:
            await self.session.commit()
            metrics.record_heartbeat(matched=False, minutes=0.0, reset=False)
            logger.debug("heartbeat_unmatched", user_uuid=str(user_uuid), domain=domain)
            return HeartbeatResult(matched=False, domain=normalize_domain(domain))

        before = float(rule.used_today_minutes or 0.0)
        with trace_operation("heartbeat_apply", domain=rule.domain, seconds=seconds) as span:
            reset = apply_heartbeat(rule, seconds, now, settings.tz)
            span.set_attribute("reset_applied", reset)
        await self.session.commit()

        metrics.record_heartbeat(matched=True, minutes=seconds / 60, reset=reset)
        logger.info(
            "heartbeat_ingested",
            user_uuid=str(user_uuid),
            domain=rule.domain,
            seconds=seconds,
            used_before=round(before, 4),
            used_after=round(rule.used_today_minutes, 4),
            reset_applied=reset,
        )
        return HeartbeatResult(
            matched=True,
            domain=rule.domain,
            used_today_minutes=rule.used_today_minutes,
            reset_applied=reset,
        )
