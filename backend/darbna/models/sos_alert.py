"""SOS alert model."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from darbna.db.base import Base
from darbna.models.sos_helper import SosHelper


class AlertStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    RESOLVED = "RESOLVED"


class SosAlert(Base):
    """Emergency alert raised by a user at a fixed location.

    Rows are never deleted: resolution (manual or by the expiration sweeper)
    is the only terminal write.
    """

    __tablename__ = "sos_alerts"
    __table_args__ = (
        Index("ix_sos_alerts_status_created_at", "status", "created_at"),
        Index("ix_sos_alerts_status_expire_at", "status", "expire_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=AlertStatus.ACTIVE.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expire_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    helpers: Mapped[list[SosHelper]] = relationship(
        order_by=SosHelper.joined_at,
        lazy="selectin",
        passive_deletes=True,
    )

    @property
    def helper_ids(self) -> list[str]:
        return [h.helper_id for h in self.helpers]

    @property
    def is_active(self) -> bool:
        return self.status == AlertStatus.ACTIVE.value
