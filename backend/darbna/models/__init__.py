"""SQLAlchemy models."""

from __future__ import annotations

from darbna.models.sos_alert import AlertStatus, SosAlert
from darbna.models.sos_helper import SosHelper
from darbna.models.user import User

__all__ = [
    "AlertStatus",
    "User",
    "SosAlert",
    "SosHelper",
]
