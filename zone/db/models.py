"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class User(Base):
    """
    ORM model for users table.

    One row per client-generated UUID. The pending override request lives
    inline because a user has at most one outstanding code.
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    uuid: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False, unique=True)

    # Contact channel for override codes
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Pending override request (at most one)
    pending_code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    pending_domain: Mapped[str | None] = mapped_column(String(253), nullable=True)
    pending_created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Diagnostic only, never used for blocking
    last_heartbeat_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    rules: Mapped[list["Rule"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        order_by="Rule.position",
        lazy="selectin",
    )
    overrides: Mapped[list["ActiveOverride"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        Index("idx_users_last_heartbeat_at", "last_heartbeat_at"),
        Index("idx_users_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<User(id={self.id}, uuid={self.uuid}, rules={len(self.rules)})>"


class Rule(Base):
    """
    ORM model for rules table.

    One tracked domain for one user. used_today_minutes only changes through
    ingestion; rule replacement carries it over for the same domain.
    """

    __tablename__ = "rules"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    domain: Mapped[str] = mapped_column(String(253), nullable=False)
    daily_limit_minutes: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    used_today_minutes: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    last_reset_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    # Insertion order; first-match-wins on the client depends on it
    position: Mapped[int] = mapped_column(nullable=False, default=0)

    user: Mapped[User] = relationship(back_populates="rules")

    __table_args__ = (
        CheckConstraint("daily_limit_minutes >= 0", name="ck_rule_limit_non_negative"),
        CheckConstraint("used_today_minutes >= 0", name="ck_rule_used_non_negative"),
        UniqueConstraint("user_id", "domain", name="uq_rule_user_domain"),
        Index("idx_rules_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Rule(domain={self.domain}, limit={self.daily_limit_minutes}, "
            f"used={self.used_today_minutes:.2f})>"
        )


class ActiveOverride(Base):
    """
    ORM model for active_overrides table.

    A time-boxed suppression of blocking for one domain. Rows are purged
    lazily by decision reads once expired.
    """

    __tablename__ = "active_overrides"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    domain: Mapped[str] = mapped_column(String(253), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    user: Mapped[User] = relationship(back_populates="overrides")

    __table_args__ = (
        Index("idx_active_overrides_user_id", "user_id"),
        Index("idx_active_overrides_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<ActiveOverride(domain={self.domain}, expires_at={self.expires_at})>"
