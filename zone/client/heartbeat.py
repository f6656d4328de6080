"""
Session timer that reports active time on a limited domain.

A report claims its interval before the request goes out, so a flush that
overlaps a periodic report cannot send the same seconds twice. A rejected
report hands the interval back, carrying the time into the next one.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable

from structlog import get_logger

from zone.client.backoff import FetchOutcome
from zone.client.config import ClientSettings
from zone.client.transport import ZoneApiClient

logger = get_logger(__name__)


class HeartbeatEmitter:
    def __init__(
        self,
        api: ZoneApiClient,
        identity: Callable[[], Awaitable[str]],
        settings: ClientSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.api = api
        self.identity = identity
        self.settings = settings or ClientSettings()
        self.clock = clock
        self.domain: str | None = None
        self.started_at: float | None = None
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self.domain is not None

    def start(self, domain: str) -> None:
        """Start timing ``domain`` and schedule periodic reports."""
        self.domain = domain
        self.started_at = self.clock()
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.settings.heartbeat_interval_seconds)
            await self.report()

    async def report(self) -> FetchOutcome | None:
        """Send the time since the clock started; None when nothing was sent."""
        if self.domain is None or self.started_at is None:
            return None
        now = self.clock()
        previous = self.started_at
        elapsed = now - previous
        if elapsed < self.settings.min_report_seconds:
            return None

        domain = self.domain
        self.started_at = now
        user_uuid = await self.identity()
        result = await self.api.heartbeat(user_uuid, domain, round(elapsed, 3))
        if not result.ok:
            # Only hand back if nothing restarted or stopped the clock meanwhile.
            if self.started_at == now:
                self.started_at = previous
            logger.debug(
                "heartbeat_not_accepted",
                domain=domain,
                seconds=elapsed,
                outcome=result.outcome.value,
            )
        return result.outcome

    async def flush(self) -> FetchOutcome | None:
        """Send one final report and stop the clock."""
        outcome = await self.report()
        self.domain = None
        self.started_at = None
        return outcome

    async def stop(self) -> None:
        """Cancel the periodic task without reporting."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.domain = None
        self.started_at = None
