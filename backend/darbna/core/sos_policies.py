"""SOS alert policy constants."""

from __future__ import annotations

from datetime import timedelta

from darbna.core.config import settings

# Minimum time between two SOS alerts raised by the same user
COOLDOWN = timedelta(minutes=settings.sos_cooldown_minutes)

# Active alerts are force-resolved by the sweeper once this has elapsed
ALERT_TTL = timedelta(hours=settings.sos_ttl_hours)

# Upper bound on alerts returned by the nearby listing
ACTIVE_ALERTS_LIMIT = settings.sos_active_limit

# Expo rejects push requests with more messages than this
PUSH_BATCH_LIMIT = 100
