"""
Tests for the client decision function and backoff.
"""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from zone.client.backoff import Backoff, FetchOutcome
from zone.client.decision import Verdict, evaluate, find_rule, rule_blocks
from zone.client.snapshot import LocalOverride, Snapshot, SnapshotRule


def _snapshot(*rules: SnapshotRule) -> Snapshot:
    return Snapshot(rules=rules, fetched_at=0.0)


# ============================================================================
# evaluate
# ============================================================================


class TestEvaluate:
    """Tests for evaluate."""

    def test_no_snapshot_is_unknown(self):
        assert evaluate(None, "example.com") is Verdict.UNKNOWN

    def test_no_matching_rule_is_allowed(self):
        assert evaluate(_snapshot(SnapshotRule("a.com", 10, 50)), "b.com") is Verdict.ALLOWED

    def test_server_block_flag(self):
        assert evaluate(_snapshot(SnapshotRule("a.com", 10, 0, block=True)), "a.com") is Verdict.BLOCKED

    def test_local_usage_at_limit_blocks(self):
        assert evaluate(_snapshot(SnapshotRule("a.com", 10, 10)), "a.com") is Verdict.BLOCKED

    def test_zero_limit_never_blocks_on_usage(self):
        assert evaluate(_snapshot(SnapshotRule("a.com", 0, 999)), "a.com") is Verdict.ALLOWED

    def test_subdomain_and_www(self):
        snapshot = _snapshot(SnapshotRule("a.com", 10, 10))

        assert evaluate(snapshot, "mail.a.com") is Verdict.BLOCKED
        assert evaluate(snapshot, "WWW.A.COM") is Verdict.BLOCKED
        assert evaluate(snapshot, "nota.com") is Verdict.ALLOWED

    def test_first_match_wins(self):
        broad = SnapshotRule("a.com", 10, 0)
        narrow = SnapshotRule("mail.a.com", 10, 10)

        assert find_rule(_snapshot(broad, narrow), "mail.a.com") is broad
        assert evaluate(_snapshot(broad, narrow), "mail.a.com") is Verdict.ALLOWED
        assert evaluate(_snapshot(narrow, broad), "mail.a.com") is Verdict.BLOCKED

    def test_live_override_allows_over_limit(self):
        snapshot = Snapshot(
            (SnapshotRule("a.com", 10, 10, False),), 0.0, overrides=(LocalOverride("a.com", 100.0),)
        )

        assert evaluate(snapshot, "a.com", now=99.0) is Verdict.ALLOWED
        assert evaluate(snapshot, "a.com", now=100.0) is Verdict.BLOCKED
        assert evaluate(snapshot, "a.com") is Verdict.BLOCKED

    def test_override_for_other_domain_ignored(self):
        snapshot = Snapshot(
            (SnapshotRule("a.com", 10, 10, False),), 0.0, overrides=(LocalOverride("b.com", 100.0),)
        )
        assert evaluate(snapshot, "a.com", now=0.0) is Verdict.BLOCKED

    @given(
        st.floats(min_value=0, max_value=1000, allow_nan=False),
        st.floats(min_value=0, max_value=1000, allow_nan=False),
        st.booleans(),
    )
    def test_block_rule(self, limit: float, used: float, block: bool):
        rule = SnapshotRule("a.com", limit, used, block)
        assert rule_blocks(rule) == (block or (limit > 0 and used >= limit))


# ============================================================================
# Backoff
# ============================================================================


class TestBackoff:
    """Tests for Backoff."""

    def test_initially_clear(self):
        backoff = Backoff(2, 30)

        assert backoff.active(0) is False
        assert backoff.current_delay == 0

    def test_doubles_per_throttle(self):
        backoff = Backoff(2, 30)
        delays = []
        for _ in range(5):
            backoff.record(FetchOutcome.THROTTLED, 0)
            delays.append(backoff.current_delay)

        assert delays == [2, 4, 8, 16, 30]

    def test_hold_measured_from_throttle(self):
        backoff = Backoff(2, 30)
        backoff.record(FetchOutcome.THROTTLED, 100)

        assert backoff.active(101.9) is True
        assert backoff.active(102) is False
        assert backoff.remaining(101) == pytest.approx(1)

    @pytest.mark.parametrize("outcome", [FetchOutcome.OK, FetchOutcome.NOT_FOUND, FetchOutcome.FAILED])
    def test_any_server_response_resets(self, outcome: FetchOutcome):
        backoff = Backoff(2, 30)
        backoff.record(FetchOutcome.THROTTLED, 0)
        backoff.record(FetchOutcome.THROTTLED, 0)

        backoff.record(outcome, 1)

        assert backoff.consecutive_failures == 0
        assert backoff.active(1) is False

    def test_unreachable_leaves_counter(self):
        backoff = Backoff(2, 30)
        backoff.record(FetchOutcome.THROTTLED, 0)

        backoff.record(FetchOutcome.UNREACHABLE, 1)

        assert backoff.consecutive_failures == 1

    @given(
        st.floats(min_value=0.01, max_value=10),
        st.floats(min_value=0.01, max_value=100),
        st.integers(min_value=1, max_value=60),
    )
    def test_delay_bounds(self, base: float, cap: float, throttles: int):
        backoff = Backoff(base, cap)
        for _ in range(throttles):
            backoff.record(FetchOutcome.THROTTLED, 0)

        expected = min(base * 2 ** (throttles - 1), cap)
        assert backoff.current_delay == pytest.approx(expected)
        assert backoff.current_delay <= cap
