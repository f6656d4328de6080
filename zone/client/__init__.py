"""Enforcement client for the Zone API."""

from zone.client.backoff import Backoff, FetchOutcome
from zone.client.config import ClientSettings
from zone.client.decision import Verdict, evaluate
from zone.client.engine import BlockingSurface, EnforcementEngine
from zone.client.heartbeat import HeartbeatEmitter
from zone.client.snapshot import (
    JsonFileStore,
    LocalOverride,
    MemoryStore,
    Snapshot,
    SnapshotRepository,
    SnapshotRule,
)
from zone.client.tab import TabController
from zone.client.transport import ZoneApiClient

__all__ = [
    "Backoff",
    "BlockingSurface",
    "ClientSettings",
    "EnforcementEngine",
    "FetchOutcome",
    "HeartbeatEmitter",
    "JsonFileStore",
    "LocalOverride",
    "MemoryStore",
    "Snapshot",
    "SnapshotRepository",
    "SnapshotRule",
    "TabController",
    "Verdict",
    "ZoneApiClient",
    "evaluate",
]
