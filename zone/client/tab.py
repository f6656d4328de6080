"""Glue between browsing events and the engine/emitter pair."""

from zone.client.decision import Verdict
from zone.client.engine import EnforcementEngine
from zone.client.heartbeat import HeartbeatEmitter


class TabController:
    def __init__(self, engine: EnforcementEngine, emitter: HeartbeatEmitter) -> None:
        self.engine = engine
        self.emitter = emitter

    async def on_navigate(self, hostname: str) -> Verdict:
        """Flush time for the previous page, then decide and time the new one."""
        await self.emitter.flush()
        verdict = await self.engine.on_page_load(hostname)
        rule = self.engine.current_rule()
        if rule is not None and verdict is not Verdict.BLOCKED:
            self.emitter.start(rule.domain)
        return verdict

    async def on_focus_lost(self) -> None:
        await self.emitter.flush()

    def on_focus_gained(self, hostname: str) -> Verdict:
        """Resume timing the focused page from the cached snapshot alone."""
        verdict = self.engine.check_local(hostname)
        rule = self.engine.current_rule()
        if rule is not None and verdict is not Verdict.BLOCKED and not self.emitter.running:
            self.emitter.start(rule.domain)
        return verdict

    async def close(self) -> None:
        await self.emitter.flush()
        await self.emitter.stop()
        await self.engine.close()
