"""
Client decision function.

Every trigger (page load, refresh response, pushed snapshot) goes through
``evaluate`` so the local and remote paths cannot drift apart.
"""

from enum import Enum

from zone.client.snapshot import Snapshot, SnapshotRule
from zone.domains import hostname_matches, normalize_domain


class Verdict(str, Enum):
    """Enforcement state for the current page."""

    UNKNOWN = "unknown"
    ALLOWED = "allowed"
    BLOCKED = "blocked"


def find_rule(snapshot: Snapshot, hostname: str) -> SnapshotRule | None:
    """
    First rule, in snapshot order, whose domain covers ``hostname``.

    Overlapping rules (``example.com`` and ``mail.example.com``) are not
    ranked by specificity; the earlier one wins.
    """
    for rule in snapshot.rules:
        if hostname_matches(hostname, rule.domain):
            return rule
    return None


def rule_blocks(rule: SnapshotRule) -> bool:
    """Server block flag, or the limit reached by the cached usage."""
    return rule.block or (rule.daily_limit > 0 and rule.used_today >= rule.daily_limit)


def override_active(snapshot: Snapshot, domain: str, now: float) -> bool:
    wanted = normalize_domain(domain)
    return any(normalize_domain(o.domain) == wanted for o in snapshot.live_overrides(now))


def evaluate(snapshot: Snapshot | None, hostname: str, now: float | None = None) -> Verdict:
    """
    Decide without I/O. No snapshot yet means the state is unknown.

    With ``now`` given, a verified override that has not expired allows the
    page even when the cached usage is over the limit.
    """
    if snapshot is None:
        return Verdict.UNKNOWN
    rule = find_rule(snapshot, hostname)
    if rule is None or not rule_blocks(rule):
        return Verdict.ALLOWED
    if now is not None and override_active(snapshot, rule.domain, now):
        return Verdict.ALLOWED
    return Verdict.BLOCKED
