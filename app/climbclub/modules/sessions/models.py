from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, PrimaryKeyConstraint, String
from sqlalchemy.orm import Mapped, mapped_column

from app.climbclub.constants import BASIC_MEMBERSHIP, VISIBILITY_ALL
from app.climbclub.models import Base
from app.climbclub.utils import new_id


class SessionType(Base):
    __tablename__ = "session_types"
    __table_args__ = (PrimaryKeyConstraint("id", name="pk_session_types"),)

    id: Mapped[str] = mapped_column(String(64), nullable=False)  # same as label
    label: Mapped[str] = mapped_column(String(128), nullable=False)


class ClubSession(Base):
    """A bookable scheduled event (a climbing session, social, course...)."""

    __tablename__ = "sessions"
    __table_args__ = (
        CheckConstraint("capacity > 0", name="ck_sessions_capacity_positive"),
        Index("idx_sessions_starts_at", "starts_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: new_id("sess"))
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    # ISO-8601 text as entered by the committee; parsed on export.
    starts_at: Mapped[str] = mapped_column(String(64), nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    booked_slots: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    required_membership: Mapped[str] = mapped_column(String(64), nullable=False, default=BASIC_MEMBERSHIP)
    visibility: Mapped[str] = mapped_column(String(32), nullable=False, default=VISIBILITY_ALL)  # all, committee_only

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        PrimaryKeyConstraint("user_id", "session_id", name="pk_bookings"),
        Index("idx_bookings_session", "session_id"),
    )

    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    session_id: Mapped[str] = mapped_column(ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
