"""
Decision Service - per-rule blocking decisions.

Read-mostly: the only write is the lazy purge of expired overrides, and it
is skipped when nothing expired.
"""

from collections.abc import Sequence
from datetime import UTC, datetime, tzinfo
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from zone.config import settings
from zone.db.models import ActiveOverride, Rule
from zone.domains import normalize_domain
from zone.models.domain import RuleDecision
from zone.observability.metrics import metrics
from zone.observability.tracing import trace_operation
from zone.services.ledger import LedgerService, effective_used_minutes

logger = get_logger(__name__)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def _aware(ts: datetime) -> datetime:
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=UTC)


def is_override_active(overrides: Sequence[ActiveOverride], domain: str, now: datetime) -> bool:
    """An override is live while its expiry is strictly in the future."""
    wanted = normalize_domain(domain)
    return any(
        normalize_domain(o.domain) == wanted and _aware(o.expires_at) > now for o in overrides
    )


def decide_rule(
    rule: Rule, overrides: Sequence[ActiveOverride], now: datetime, tz: tzinfo
) -> RuleDecision:
    """Blocking decision for a single rule."""
    limit = float(rule.daily_limit_minutes or 0.0)
    used = effective_used_minutes(rule, now, tz)
    should_block = limit > 0 and used >= limit and not is_override_active(overrides, rule.domain, now)
    return RuleDecision(
        domain=rule.domain,
        daily_limit_minutes=limit,
        used_today_minutes=used,
        remaining_minutes=max(0.0, limit - used),
        should_block=should_block,
    )


class DecisionService:
    """Computes the decision table the client caches."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize decision service with database session."""
        self.session = session
        self.ledger = LedgerService(session)

    async def get_decisions(self, user_uuid: UUID) -> list[RuleDecision]:
        """Decisions for every rule of the user, after purging expired overrides."""
        user = await self.ledger.get_user(user_uuid)
        now = _utc_now()

        live = [o for o in user.overrides if _aware(o.expires_at) > now]
        purged = len(user.overrides) - len(live)
        if purged:
            user.overrides = live
            await self.session.commit()
            logger.debug("overrides_purged", user_uuid=str(user_uuid), purged=purged)

        with trace_operation("decisions_compute", user_uuid=str(user_uuid)) as span:
            decisions = [decide_rule(rule, live, now, settings.tz) for rule in user.rules]
            span.set_attribute("rule_count", len(decisions))

        blocked = sum(1 for d in decisions if d.should_block)
        metrics.record_decisions(blocked=blocked, allowed=len(decisions) - blocked, purged=purged)
        return decisions
