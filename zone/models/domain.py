"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True)
class RuleSpec:
    """A rule as submitted by the user, before persistence."""

    domain: str
    daily_limit_minutes: float

    def __post_init__(self) -> None:
        """Validate rule constraints."""
        if not self.domain:
            raise ValueError("domain cannot be empty")
        if self.daily_limit_minutes < 0:
            raise ValueError(f"daily limit cannot be negative: {self.daily_limit_minutes}")


@dataclass(frozen=True)
class RuleData:
    """Immutable rule snapshot after persistence."""

    domain: str
    daily_limit_minutes: float
    used_today_minutes: float
    last_reset_at: datetime


@dataclass(frozen=True)
class RuleDecision:
    """Blocking decision for one rule at one instant."""

    domain: str
    daily_limit_minutes: float
    used_today_minutes: float
    remaining_minutes: float
    should_block: bool


@dataclass(frozen=True)
class HeartbeatResult:
    """Outcome of one ingestion."""

    matched: bool
    domain: str
    used_today_minutes: float | None = None
    reset_applied: bool = False


@dataclass(frozen=True)
class OverrideRequestResult:
    """Outcome of an override code request."""

    sent: bool
    code: str
    reused: bool


@dataclass(frozen=True)
class OverrideData:
    """An installed time-boxed override."""

    user_uuid: UUID
    domain: str
    expires_at: datetime
