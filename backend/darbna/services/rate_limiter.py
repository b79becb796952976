"""Per-user SOS cooldown."""

from __future__ import annotations

import logging
import math
from datetime import datetime

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from darbna.core.clock import as_utc
from darbna.core.errors import NotFoundError, RateLimitError
from darbna.core.sos_policies import COOLDOWN
from darbna.models.user import User

logger = logging.getLogger(__name__)


def check_and_record(db: Session, user_id: str, now: datetime) -> None:
    """Claim the user's SOS slot or raise RateLimitError.

    The check and the ``last_alert_sent_at`` write are one conditional UPDATE,
    so two racing requests from the same user cannot both pass. Nothing is
    committed here: the caller commits together with the new alert, and a
    rollback leaves the cooldown untouched.
    """
    cutoff = now - COOLDOWN
    result = db.execute(
        update(User)
        .where(User.id == user_id)
        .where(or_(User.last_alert_sent_at.is_(None), User.last_alert_sent_at <= cutoff))
        .values(last_alert_sent_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return

    row = db.execute(select(User.last_alert_sent_at).where(User.id == user_id)).first()
    if row is None:
        raise NotFoundError("User")
    remaining = max(1, seconds_remaining(row[0], now))
    logger.info("SOS blocked by cooldown: user=%s remaining=%ss", user_id, remaining)
    raise RateLimitError(remaining)


def seconds_remaining(last_sent_at: datetime | None, now: datetime) -> int:
    """Whole seconds (rounded up) until the cooldown started at ``last_sent_at`` ends."""
    cooldown_s = int(COOLDOWN.total_seconds())
    if last_sent_at is None:
        return 0
    elapsed = (now - as_utc(last_sent_at)).total_seconds()
    remaining = math.ceil(cooldown_s - elapsed)
    # A timestamp in the future (clock skew) never reports more than one cooldown
    return max(0, min(remaining, cooldown_s))
