from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, PrimaryKeyConstraint, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.climbclub.models import Base
from app.climbclub.utils import new_id


class Candidate(Base):
    __tablename__ = "candidates"
    __table_args__ = (PrimaryKeyConstraint("user_id", name="pk_candidates"),)

    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role: Mapped[str] = mapped_column(String(128), nullable=False)
    manifesto: Mapped[str] = mapped_column(Text, nullable=False)
    presentation_link: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class Vote(Base):
    __tablename__ = "votes"
    __table_args__ = (
        PrimaryKeyConstraint("user_id", name="pk_votes"),
        Index("idx_votes_candidate", "candidate_id"),
    )

    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    candidate_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class Referendum(Base):
    __tablename__ = "referendums"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: new_id("ref"))
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[str | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)


class ReferendumVote(Base):
    __tablename__ = "referendum_votes"
    __table_args__ = (PrimaryKeyConstraint("user_id", "referendum_id", name="pk_referendum_votes"),)

    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    referendum_id: Mapped[str] = mapped_column(ForeignKey("referendums.id", ondelete="CASCADE"), nullable=False)
    choice: Mapped[str] = mapped_column(String(16), nullable=False)  # yes, no, abstain
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
