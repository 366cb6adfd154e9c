from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, PrimaryKeyConstraint, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.climbclub.constants import STATUS_PENDING
from app.climbclub.models import Base
from app.climbclub.utils import new_id


class MembershipType(Base):
    __tablename__ = "membership_types"
    __table_args__ = (PrimaryKeyConstraint("id", name="pk_membership_types"),)

    id: Mapped[str] = mapped_column(String(64), nullable=False)  # e.g. "comp_team"
    label: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "Comp Team"


class UserMembership(Base):
    __tablename__ = "user_memberships"
    __table_args__ = (
        UniqueConstraint("user_id", "membership_type", "membership_year", name="uq_user_membership"),
        Index("idx_user_memberships_status", "status"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: new_id("umem"))
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    # Not a FK: rows keep their type after the catalog entry is removed.
    membership_type: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=STATUS_PENDING)  # pending, active, rejected
    membership_year: Mapped[str] = mapped_column(String(16), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
