from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.climbclub.constants import GEAR_PENDING
from app.climbclub.models import Base
from app.climbclub.utils import new_id


class GearItem(Base):
    __tablename__ = "gear"
    __table_args__ = (Index("idx_gear_name", "name"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: new_id("gear"))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    total_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    available_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)


class GearRequest(Base):
    __tablename__ = "gear_requests"
    __table_args__ = (
        Index("idx_gear_requests_user", "user_id"),
        Index("idx_gear_requests_status", "status"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: new_id("req"))
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    gear_id: Mapped[str] = mapped_column(ForeignKey("gear.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=GEAR_PENDING)  # pending, approved, rejected, returned
    request_date: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    return_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    gear: Mapped[GearItem] = relationship(lazy="selectin")
