"""
Client Snapshot - the locally cached copy of decision-relevant rule state.

Not authoritative. It exists so a blocking decision can be made before any
network call completes, and as the fallback while the server is unreachable.
"""

import asyncio
import json
import os
import tempfile
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from structlog import get_logger

from zone.domains import normalize_domain

logger = get_logger(__name__)

UUID_KEY = "uuid"
EMAIL_KEY = "email"
RULES_KEY = "rules"
LAST_SYNC_KEY = "lastSync"
OVERRIDES_KEY = "overrides"


def _number(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


@dataclass(frozen=True)
class SnapshotRule:
    """Decision-relevant state of one rule."""

    domain: str
    daily_limit: float = 0.0
    used_today: float = 0.0
    block: bool = False

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> "SnapshotRule":
        """Parse a rule from a config response or the persisted store."""
        limit = _number(data.get("dailyLimit"))
        if "usedToday" in data:
            used = _number(data.get("usedToday"))
        elif data.get("remaining") is not None:
            used = max(0.0, limit - _number(data.get("remaining")))
        else:
            used = 0.0
        return cls(
            domain=str(data.get("domain") or ""),
            daily_limit=limit,
            used_today=used,
            block=data.get("block") is True,
        )

    def to_wire(self) -> dict[str, Any]:
        return {
            "domain": self.domain,
            "dailyLimit": self.daily_limit,
            "usedToday": self.used_today,
            "block": self.block,
        }


@dataclass(frozen=True)
class LocalOverride:
    """A verified override as known to the client; expiry is epoch seconds."""

    domain: str
    expires_at: float

    def active(self, now: float) -> bool:
        return self.expires_at > now


@dataclass(frozen=True)
class Snapshot:
    """Ordered rules, overrides the client verified, and when rules were fetched."""

    rules: tuple[SnapshotRule, ...] = field(default_factory=tuple)
    fetched_at: float | None = None
    overrides: tuple[LocalOverride, ...] = field(default_factory=tuple)

    @classmethod
    def from_wire(cls, rules: Iterable[Mapping[str, Any]], fetched_at: float | None) -> "Snapshot":
        parsed = tuple(SnapshotRule.from_wire(r) for r in rules if r and r.get("domain"))
        return cls(rules=parsed, fetched_at=fetched_at)

    def block_flags(self) -> dict[str, bool]:
        return {r.domain: r.block for r in self.rules}

    def live_overrides(self, now: float) -> tuple[LocalOverride, ...]:
        return tuple(o for o in self.overrides if o.active(now))


def reconcile(
    incoming: Iterable[SnapshotRule],
    fetched_at: float,
    overrides: Iterable[LocalOverride] = (),
) -> Snapshot:
    """
    Build the snapshot that replaces the local one after an authoritative read.

    Each domain is replaced wholesale, never deep-merged. The server lists the
    complete rule set, so its order wins and domains it omits are dropped.
    Values are absolute, so applying a late response twice is harmless.
    Client-side overrides are carried over unchanged.
    """
    by_domain: dict[str, SnapshotRule] = {}
    for rule in incoming:
        by_domain.setdefault(normalize_domain(rule.domain), rule)
    return Snapshot(
        rules=tuple(by_domain.values()), fetched_at=fetched_at, overrides=tuple(overrides)
    )


def changed_block_flags(old: Snapshot | None, new: Snapshot) -> list[str]:
    """Domains present in both snapshots whose server block flag flipped."""
    if old is None:
        return []
    before = old.block_flags()
    return [r.domain for r in new.rules if r.domain in before and before[r.domain] != r.block]


class KeyValueStore(Protocol):
    """Per-client persistent key/value storage."""

    async def get(self, key: str) -> Any: ...

    async def set(self, values: Mapping[str, Any]) -> None: ...


class MemoryStore:
    """Volatile store; state is lost when the process exits."""

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})

    async def get(self, key: str) -> Any:
        return self._data.get(key)

    async def set(self, values: Mapping[str, Any]) -> None:
        self._data.update(values)


class JsonFileStore:
    """
    Store backed by a single JSON document.

    Writes go to a temporary file that replaces the target, so a crash never
    leaves a half-written snapshot behind.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("client_store_unreadable", path=str(self.path), error=str(e))
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Mapping[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".zone-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    async def get(self, key: str) -> Any:
        return (await asyncio.to_thread(self._read)).get(key)

    async def set(self, values: Mapping[str, Any]) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
            data.update(values)
            await asyncio.to_thread(self._write, data)


class SnapshotRepository:
    """Typed access to the client's persisted identity and snapshot."""

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    async def load_uuid(self) -> str | None:
        value = await self.store.get(UUID_KEY)
        return value if isinstance(value, str) and value else None

    async def save_uuid(self, user_uuid: str) -> None:
        await self.store.set({UUID_KEY: user_uuid})

    async def load_email(self) -> str | None:
        value = await self.store.get(EMAIL_KEY)
        return value if isinstance(value, str) and value else None

    async def save_email(self, email: str) -> None:
        await self.store.set({EMAIL_KEY: email})

    async def load_snapshot(self) -> Snapshot | None:
        """None when nothing has ever been persisted."""
        rules = await self.store.get(RULES_KEY)
        if not isinstance(rules, list):
            return None
        last_sync = await self.store.get(LAST_SYNC_KEY)
        fetched_at = float(last_sync) if isinstance(last_sync, (int, float)) else None
        snapshot = Snapshot.from_wire((r for r in rules if isinstance(r, dict)), fetched_at)

        stored = await self.store.get(OVERRIDES_KEY)
        overrides = tuple(
            LocalOverride(domain=str(o["domain"]), expires_at=_number(o.get("expiresAt")))
            for o in (stored if isinstance(stored, list) else [])
            if isinstance(o, dict) and o.get("domain")
        )
        return Snapshot(rules=snapshot.rules, fetched_at=fetched_at, overrides=overrides)

    async def save_snapshot(self, snapshot: Snapshot) -> None:
        await self.store.set(
            {
                RULES_KEY: [r.to_wire() for r in snapshot.rules],
                LAST_SYNC_KEY: snapshot.fetched_at,
                OVERRIDES_KEY: [
                    {"domain": o.domain, "expiresAt": o.expires_at} for o in snapshot.overrides
                ],
            }
        )
