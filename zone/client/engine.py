"""
Client Enforcement Engine - local-first blocking decisions.

The persisted snapshot answers every page load immediately. Remote refreshes
run behind three gates (backoff hold, minimum request interval, cache TTL)
so a busy browser never floods the server, and a failing server never
causes a block.
"""

import asyncio
import time
import uuid
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import Any, Protocol

from structlog import get_logger

from zone.client.backoff import Backoff, FetchOutcome
from zone.client.config import ClientSettings
from zone.client.decision import Verdict, evaluate, find_rule
from zone.client.snapshot import (
    LocalOverride,
    Snapshot,
    SnapshotRepository,
    SnapshotRule,
    changed_block_flags,
    reconcile,
)
from zone.client.transport import ZoneApiClient
from zone.domains import normalize_domain

logger = get_logger(__name__)


def _parse_override(data: Mapping[str, Any]) -> LocalOverride | None:
    """Override from a verify response, or None when the body is unusable."""
    domain = data.get("domain")
    expires_at = data.get("expiresAt")
    if not isinstance(domain, str) or not isinstance(expires_at, str):
        return None
    try:
        expiry = datetime.fromisoformat(expires_at.replace("Z", "+00:00"))
    except ValueError:
        return None
    return LocalOverride(domain=domain, expires_at=expiry.timestamp())


class BlockingSurface(Protocol):
    """Whatever renders the block to the user."""

    def show(self, domain: str) -> None: ...

    def hide(self) -> None: ...


class EnforcementEngine:
    """
    Owns the decision state machine for one client.

    State moves ``UNKNOWN -> ALLOWED | BLOCKED`` on a page-load check, a
    refresh response or a pushed snapshot. The surface is shown once per
    transition into BLOCKED and hidden on the way out.
    """

    def __init__(
        self,
        api: ZoneApiClient,
        repository: SnapshotRepository,
        surface: BlockingSurface,
        settings: ClientSettings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.api = api
        self.repository = repository
        self.surface = surface
        self.settings = settings or ClientSettings()
        self.clock = clock
        self.backoff = Backoff(
            self.settings.backoff_base_seconds, self.settings.backoff_cap_seconds
        )
        self.user_uuid: str | None = None
        self.snapshot: Snapshot | None = None
        self.hostname: str | None = None
        self.verdict = Verdict.UNKNOWN
        self.last_request_at: float | None = None
        self.needs_init = False
        self._task: asyncio.Task | None = None
        self._deferred: asyncio.Task | None = None

    async def load(self) -> None:
        """Restore identity and snapshot from the store."""
        self.user_uuid = await self.repository.load_uuid()
        self.snapshot = await self.repository.load_snapshot()

    async def ensure_identity(self) -> str:
        """Return the client UUID, generating and registering one if missing."""
        if self.user_uuid is None:
            self.user_uuid = await self.repository.load_uuid()
        if self.user_uuid is None:
            self.user_uuid = str(uuid.uuid4())
            await self.repository.save_uuid(self.user_uuid)
            self.needs_init = True
        if self.needs_init:
            await self._register()
        return self.user_uuid

    async def _register(self) -> None:
        result = await self.api.init(self.user_uuid)
        self.backoff.record(result.outcome, self.clock())
        if result.ok:
            self.needs_init = False
            logger.info("client_registered", user_uuid=self.user_uuid)
        else:
            logger.warning(
                "client_register_failed", user_uuid=self.user_uuid, outcome=result.outcome.value
            )

    def _apply(self, verdict: Verdict) -> Verdict:
        previous = self.verdict
        self.verdict = verdict
        if verdict is Verdict.BLOCKED and previous is not Verdict.BLOCKED:
            rule = find_rule(self.snapshot, self.hostname) if self.snapshot else None
            self.surface.show(rule.domain if rule else self.hostname)
        elif previous is Verdict.BLOCKED and verdict is not Verdict.BLOCKED:
            self.surface.hide()
        return verdict

    def check_local(self, hostname: str) -> Verdict:
        """Decide from the cached snapshot only; never touches the network."""
        self.hostname = normalize_domain(hostname)
        return self._apply(evaluate(self.snapshot, self.hostname, self.clock()))

    def current_rule(self) -> SnapshotRule | None:
        if self.snapshot is None or self.hostname is None:
            return None
        return find_rule(self.snapshot, self.hostname)

    def invalidate_cache(self) -> None:
        """Make the next refresh ignore the cache TTL."""
        if self.snapshot is not None:
            self.snapshot = Snapshot(
                rules=self.snapshot.rules, fetched_at=None, overrides=self.snapshot.overrides
            )

    def interval_remaining(self, now: float) -> float:
        """Seconds until the minimum request interval allows another call."""
        if self.last_request_at is None:
            return 0.0
        elapsed = now - self.last_request_at
        return max(0.0, self.settings.min_request_interval_seconds - elapsed)

    def _skip_reason(self, now: float) -> str | None:
        if self.backoff.active(now):
            return "backoff"
        if self.interval_remaining(now) > 0:
            return "min_interval"
        if (
            self.snapshot is not None
            and self.snapshot.fetched_at is not None
            and now - self.snapshot.fetched_at < self.settings.cache_ttl_seconds
        ):
            return "cache_fresh"
        return None

    async def refresh(self) -> FetchOutcome | None:
        """
        Fetch authoritative decisions if every gate is open.

        Returns the outcome of the request, or None when a gate skipped it.
        """
        now = self.clock()
        reason = self._skip_reason(now)
        if reason is not None:
            logger.debug("refresh_skipped", reason=reason)
            return None

        # Claimed before the await so overlapping triggers see it.
        self.last_request_at = now

        if self.user_uuid is None or self.needs_init:
            await self.ensure_identity()
            if self.needs_init:
                return FetchOutcome.FAILED

        result = await self.api.fetch_config(self.user_uuid)
        self.backoff.record(result.outcome, self.clock())

        if result.outcome is FetchOutcome.OK:
            await self.apply_snapshot(result.rules or (), fetched_at=self.clock())
        elif result.outcome is FetchOutcome.NOT_FOUND:
            logger.warning("client_user_unknown", user_uuid=self.user_uuid)
            self.needs_init = True
        elif result.outcome is FetchOutcome.THROTTLED:
            logger.info(
                "refresh_throttled",
                failures=self.backoff.consecutive_failures,
                hold_seconds=self.backoff.current_delay,
            )
        else:
            logger.debug("refresh_failed", outcome=result.outcome.value)
        return result.outcome

    async def apply_snapshot(
        self, rules: Iterable[SnapshotRule], fetched_at: float | None = None
    ) -> Snapshot:
        """Replace the snapshot with authoritative rules, persist and re-evaluate."""
        now = self.clock()
        kept = self.snapshot.live_overrides(now) if self.snapshot is not None else ()
        new = reconcile(rules, fetched_at if fetched_at is not None else now, kept)
        flipped = changed_block_flags(self.snapshot, new)
        if flipped:
            logger.info("block_flags_changed", domains=flipped)
        self.snapshot = new
        await self.repository.save_snapshot(new)
        if self.hostname is not None:
            self._apply(evaluate(self.snapshot, self.hostname, self.clock()))
        return new

    async def apply_pushed_snapshot(self, rules: Iterable[SnapshotRule]) -> Snapshot:
        """Accept a snapshot replaced by another part of the client."""
        return await self.apply_snapshot(rules)

    async def set_email(self, email: str) -> bool:
        """Register the contact channel for override codes."""
        user_uuid = await self.ensure_identity()
        result = await self.api.update_email(user_uuid, email)
        if result.ok:
            await self.repository.save_email(email)
        return result.ok

    async def set_rules(self, limits: Mapping[str, float]) -> bool:
        """
        Replace the server rule set with ``{domain: daily_limit_minutes}``.

        Accepted rules become the snapshot at once; the cache is then dropped
        so the next refresh reads authoritative block flags.
        """
        user_uuid = await self.ensure_identity()
        payload = [{"domain": d, "dailyLimit": limit} for d, limit in limits.items()]
        result = await self.api.replace_rules(user_uuid, payload)
        if not result.ok:
            logger.info("rules_replace_rejected", error=result.error)
            return False
        accepted = [
            SnapshotRule.from_wire(r)
            for r in (result.data or {}).get("rules", [])
            if isinstance(r, dict) and r.get("domain")
        ]
        await self.apply_snapshot(accepted)
        self.invalidate_cache()
        return True

    async def request_override(self, domain: str) -> bool:
        """Ask the server to send an override code for ``domain``."""
        user_uuid = await self.ensure_identity()
        result = await self.api.request_unlock(user_uuid, domain)
        if not result.ok:
            logger.info("override_request_rejected", domain=domain, error=result.error)
        return result.ok and bool(result.data and result.data.get("sent"))

    async def verify_override(self, code: str) -> bool:
        """
        Exchange a code for an override.

        On success the override lifts a local block at once and the cache is
        dropped. Decisions are re-read as soon as the minimum request
        interval allows, never sooner.
        """
        user_uuid = await self.ensure_identity()
        result = await self.api.verify_unlock(user_uuid, code)
        if not result.ok:
            logger.info("override_verify_rejected", error=result.error)
            return False
        override = _parse_override(result.data or {})
        if override is not None:
            await self._remember_override(override)
        self.invalidate_cache()
        wait = self.interval_remaining(self.clock())
        if wait > 0:
            self._refresh_later(wait)
        else:
            await self.refresh()
        return True

    def _refresh_later(self, delay: float) -> None:
        if self._deferred is None or self._deferred.done():
            self._deferred = asyncio.create_task(self._deferred_refresh(delay))

    async def _deferred_refresh(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.refresh()

    async def _remember_override(self, override: LocalOverride) -> None:
        now = self.clock()
        current = self.snapshot or Snapshot()
        overrides = (*current.live_overrides(now), override)
        self.snapshot = Snapshot(
            rules=current.rules, fetched_at=current.fetched_at, overrides=overrides
        )
        await self.repository.save_snapshot(self.snapshot)
        logger.info("override_recorded", domain=override.domain, expires_at=override.expires_at)
        if self.hostname is not None:
            self._apply(evaluate(self.snapshot, self.hostname, now))

    async def on_page_load(self, hostname: str) -> Verdict:
        """Local check first; refresh only when the page is not already blocked."""
        verdict = self.check_local(hostname)
        if verdict is Verdict.BLOCKED:
            return verdict
        await self.refresh()
        return self.verdict

    async def tick(self) -> Verdict:
        """
        One periodic check of the current page.

        The snapshot is re-evaluated first so an expired override re-blocks
        without a fetch. A locally blocked page makes no request that cycle.
        """
        if self.hostname is None:
            return self.verdict
        verdict = self._apply(evaluate(self.snapshot, self.hostname, self.clock()))
        if verdict is Verdict.BLOCKED:
            return verdict
        await self.refresh()
        return self.verdict

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.settings.check_interval_seconds)
            await self.tick()

    def start(self) -> None:
        """Start the periodic check task."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def close(self) -> None:
        """Cancel the periodic task and any deferred refresh."""
        for task in (self._task, self._deferred):
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._task = None
        self._deferred = None

    async def reset(self) -> None:
        """Tear down timers and in-memory state; the persisted snapshot stays."""
        await self.close()
        self.backoff.reset()
        self.snapshot = None
        self.hostname = None
        self.verdict = Verdict.UNKNOWN
        self.last_request_at = None
        self.needs_init = False
