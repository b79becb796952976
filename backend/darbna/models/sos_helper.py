"""SOS helper model - a user who accepted to help with an alert."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from darbna.db.base import Base


class SosHelper(Base):
    """Membership of one helper in an alert's helpers set."""

    __tablename__ = "sos_helpers"
    __table_args__ = (
        UniqueConstraint("alert_id", "helper_id", name="uq_sos_helpers_alert_helper"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    alert_id: Mapped[str] = mapped_column(ForeignKey("sos_alerts.id", ondelete="CASCADE"), nullable=False, index=True)
    helper_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
