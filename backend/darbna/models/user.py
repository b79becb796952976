"""User model (the projection the SOS subsystem reads and writes)."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from darbna.db.base import Base


class User(Base):
    """Registered app user. Accounts are created by the auth service."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    username: Mapped[str] = mapped_column(String(80), unique=True, nullable=False)
    phone: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    push_token: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # Written only by the SOS rate limiter
    last_alert_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
