from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    PrimaryKeyConstraint,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from app.climbclub.constants import COMMITTEE_ROLES, ROLE_COMMITTEE, ROLE_MEMBER, STATUS_PENDING
from app.climbclub.utils import new_id


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("email", name="uq_users_email"),
        UniqueConstraint("calendar_token", name="uq_users_calendar_token"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: new_id("user"))
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    first_name: Mapped[str] = mapped_column(String(128), nullable=False)
    last_name: Mapped[str] = mapped_column(String(128), nullable=False)
    registration_number: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Profile
    emergency_contact_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    emergency_contact_mobile: Mapped[str | None] = mapped_column(String(64), nullable=True)
    pronouns: Mapped[str | None] = mapped_column(String(64), nullable=True)
    dietary_requirements: Mapped[str | None] = mapped_column(Text, nullable=True)
    instagram: Mapped[str | None] = mapped_column(String(128), nullable=True)
    fave_crag: Mapped[str | None] = mapped_column(String(255), nullable=True)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)

    role: Mapped[str] = mapped_column(String(32), nullable=False, default=ROLE_MEMBER)  # member, committee
    membership_status: Mapped[str] = mapped_column(String(32), nullable=False, default=STATUS_PENDING)
    membership_year: Mapped[str | None] = mapped_column(String(16), nullable=True)  # e.g. "2026/2027"
    calendar_token: Mapped[str] = mapped_column(String(64), nullable=False, default=lambda: new_id("cal"))
    # Self-registrations start unverified when verification is switched on.
    email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    committee_roles: Mapped[list["CommitteeRole"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_committee(self) -> bool:
        return self.role == ROLE_COMMITTEE or bool(self.committee_roles)

    @property
    def committee_role_names(self) -> list[str]:
        held = {r.role for r in self.committee_roles}
        return [r for r in COMMITTEE_ROLES if r in held]

    @property
    def primary_committee_role(self) -> str | None:
        names = self.committee_role_names
        return names[0] if names else None


class CommitteeRole(Base):
    __tablename__ = "committee_roles"
    __table_args__ = (PrimaryKeyConstraint("user_id", "role", name="pk_committee_roles"),)

    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role: Mapped[str] = mapped_column(String(64), nullable=False)

    user: Mapped[User] = relationship(back_populates="committee_roles")


class EmailVerification(Base):
    """
    Outstanding email verification code. One per user; a resend replaces it.
    """

    __tablename__ = "email_verifications"
    __table_args__ = (PrimaryKeyConstraint("user_id", name="pk_email_verifications"),)

    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    code: Mapped[str] = mapped_column(String(16), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class PasswordReset(Base):
    """
    Single-use password reset token. Only the SHA-256 of the emailed token is stored.
    """

    __tablename__ = "password_resets"
    __table_args__ = (
        PrimaryKeyConstraint("token_hash", name="pk_password_resets"),
        Index("idx_password_resets_user", "user_id"),
    )

    token_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class ClubSettings(Base):
    """
    Process-wide toggles. Exactly one row (id=1); read it via get_settings().
    """

    __tablename__ = "club_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    elections_open: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class AuditEvent(Base):
    """
    Append-only audit trail event.
    """

    __tablename__ = "audit_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # No FK: events outlive deleted users.
    actor_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    actor_user_email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "session.book"
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. "Session"
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # small JSON string


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.climbclub.modules.membership.models import MembershipType, UserMembership  # noqa: E402,F401
from app.climbclub.modules.sessions.models import Booking, ClubSession, SessionType  # noqa: E402,F401
from app.climbclub.modules.gear.models import GearItem, GearRequest  # noqa: E402,F401
from app.climbclub.modules.elections.models import Candidate, Referendum, ReferendumVote, Vote  # noqa: E402,F401
